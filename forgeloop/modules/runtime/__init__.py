"""
Runtime Module - dev-server lifecycle
Port allocation, process supervision and the durable running-projects store
"""

from forgeloop.modules.runtime.port_allocator import find_available_port, is_port_in_use, kill_process_on_port
from forgeloop.modules.runtime.state_store import ProjectRecord, ProjectStateStore
from forgeloop.modules.runtime.process_supervisor import (
    ProcessEvent,
    ProcessEventKind,
    ProcessSupervisor,
    ProjectRuntimeInfo,
)

__all__ = [
    'find_available_port',
    'is_port_in_use',
    'kill_process_on_port',
    'ProjectRecord',
    'ProjectStateStore',
    'ProcessEvent',
    'ProcessEventKind',
    'ProcessSupervisor',
    'ProjectRuntimeInfo',
]
