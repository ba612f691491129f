"""
Custom Exceptions for ForgeLoop
===============================

Only resource-acquisition failures (no free port, a process that could not
be spawned) are meant to reach callers. Everything else is raised inside a
single repair attempt and turned into a structured result or a log line.

Usage:
    from forgeloop.core.exceptions import NoPortAvailableError

    try:
        port = await find_available_port()
    except NoPortAvailableError as e:
        logger.error(f"Cannot start project: {e}")
        raise
"""

from typing import Optional, Any, Dict


class ForgeLoopError(Exception):
    """Base exception for all ForgeLoop errors"""

    def __init__(
        self,
        message: str,
        code: str = "INTERNAL_ERROR",
        details: Optional[Dict[str, Any]] = None
    ):
        self.message = message
        self.code = code
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "code": self.code,
            "message": self.message,
            "details": self.details
        }


# ============================================
# Port Errors
# ============================================

class PortUnavailableError(ForgeLoopError):
    """A specific port could not be bound"""

    def __init__(self, port: int, message: Optional[str] = None):
        super().__init__(
            message or f"Port {port} is not available",
            code="PORT_UNAVAILABLE",
            details={"port": port}
        )


class NoPortAvailableError(PortUnavailableError):
    """No free port in the probed range"""

    def __init__(self, base_port: int, max_attempts: int):
        super().__init__(
            base_port,
            f"Could not find an available port after {max_attempts} attempts starting from {base_port}"
        )
        self.code = "NO_PORT_AVAILABLE"
        self.details["max_attempts"] = max_attempts


# ============================================
# Process Errors
# ============================================

class ProcessError(ForgeLoopError):
    """Dev-server process operation failed"""

    def __init__(self, message: str, project_name: Optional[str] = None):
        super().__init__(message, code="PROCESS_ERROR")
        if project_name:
            self.details["project_name"] = project_name


class ProcessSpawnError(ProcessError):
    """Child process could not be spawned at all"""

    def __init__(self, command: str, message: str = "", project_name: Optional[str] = None):
        super().__init__(f"Failed to spawn '{command}': {message}", project_name)
        self.code = "PROCESS_SPAWN_FAILED"
        self.details["command"] = command


class ServerStartTimeoutError(ProcessError):
    """Dev server never answered within the readiness window"""

    def __init__(self, project_name: str, attempts: int):
        super().__init__(
            f"Dev server for '{project_name}' did not become ready after {attempts} attempts",
            project_name
        )
        self.code = "SERVER_START_TIMEOUT"
        self.details["attempts"] = attempts


# ============================================
# Build & Repair Errors
# ============================================

class BuildFailureError(ForgeLoopError):
    """Project build failed"""

    def __init__(self, message: str, output: Optional[str] = None):
        super().__init__(message, code="BUILD_FAILED")
        if output:
            self.details["output"] = output[:1000]  # Truncate long output


class QuickFixInapplicableError(ForgeLoopError):
    """A quick fix recognized nothing it can change"""

    def __init__(self, rule: str, reason: str = "nothing to fix"):
        super().__init__(f"Quick fix '{rule}' not applicable: {reason}", code="QUICK_FIX_INAPPLICABLE")
        self.details["rule"] = rule


class LLMFixParseError(ForgeLoopError):
    """LLM fixer response could not be parsed"""

    def __init__(self, message: str = "Failed to parse fixer response", raw: Optional[str] = None):
        super().__init__(message, code="LLM_FIX_PARSE_FAILED")
        if raw:
            self.details["raw"] = raw[:500]


class RepairExhaustedError(ForgeLoopError):
    """Repair loop used every attempt without a passing build"""

    def __init__(self, attempts: int):
        super().__init__(f"Build still failing after {attempts} attempts", code="REPAIR_EXHAUSTED")
        self.details["attempts"] = attempts


class StaleStateDetectedError(ForgeLoopError):
    """A durable record points at a port nobody is listening on"""

    def __init__(self, project_name: str, port: int):
        super().__init__(
            f"Project '{project_name}' recorded on port {port} is not running",
            code="STALE_STATE",
            details={"project_name": project_name, "port": port}
        )


# ============================================
# Helper function for structured results
# ============================================

def error_response(error: ForgeLoopError) -> Dict[str, Any]:
    """Convert exception to structured error result"""
    return {
        "success": False,
        "error": error.to_dict()
    }
