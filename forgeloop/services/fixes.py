"""
Fix records shared by the Quick-Fix Engine, the config normalizer and the
LLM fixer. A fix is committed the moment its file is written; there is no
rollback.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional


class FixType(str, Enum):
    """Where a fix came from / what it changed"""
    CLIENT_DIRECTIVE = "client_directive"
    MISSING_PACKAGE = "missing_package"
    CONFIG_EXTENSION = "config_extension"
    POSTCSS_PIPELINE = "postcss_pipeline"
    TSCONFIG = "tsconfig"
    STYLE_CONFIG = "style_config"
    LAYOUT = "layout"
    CACHE_CLEANUP = "cache_cleanup"
    LLM_PATCH = "llm_patch"


@dataclass(frozen=True)
class Fix:
    """One change made to the project to resolve a build error"""
    type: FixType
    file: Optional[str]
    description: str
    applied: bool = True

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type.value,
            "file": self.file,
            "description": self.description,
            "applied": self.applied,
        }
