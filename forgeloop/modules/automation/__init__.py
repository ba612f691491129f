"""
Automation Module - toolchain access and build validation
"""

from forgeloop.modules.automation.toolchain import (
    CommandResult,
    NodeToolchain,
    PackageManagerType,
    Toolchain,
    terminate_process,
)
from forgeloop.modules.automation.build_validator import (
    BuildResult,
    BuildValidator,
    CompileError,
    RuntimeProbeResult,
    extract_errors,
    summarize_errors,
)
from forgeloop.modules.automation.workspace import clean_build_caches, dependencies_outdated, is_within

__all__ = [
    # Toolchain
    'Toolchain',
    'NodeToolchain',
    'PackageManagerType',
    'CommandResult',
    'terminate_process',

    # Validation
    'BuildValidator',
    'BuildResult',
    'CompileError',
    'RuntimeProbeResult',
    'extract_errors',
    'summarize_errors',

    # Workspace
    'clean_build_caches',
    'dependencies_outdated',
    'is_within',
]
