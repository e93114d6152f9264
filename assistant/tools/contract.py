"""Result/error contract shared by the router, gate and executor."""
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional


class ErrorCode(str, Enum):
    VALIDATION_ERROR = "VALIDATION_ERROR"
    MISSING_ARGUMENT = "MISSING_ARGUMENT"
    UNKNOWN_TOOL = "UNKNOWN_TOOL"
    DENIED_TOOL = "DENIED_TOOL"
    CONFIRMATION_REQUIRED = "CONFIRMATION_REQUIRED"
    DENIED_AGENT_TOOLSET = "DENIED_AGENT_TOOLSET"
    DENIED_PATH_ALLOWLIST = "DENIED_PATH_ALLOWLIST"
    DENIED_COMMAND_ALLOWLIST = "DENIED_COMMAND_ALLOWLIST"
    ROUTING_TIMEOUT = "ROUTING_TIMEOUT"
    ROUTING_NO_MATCH = "ROUTING_NO_MATCH"
    EXEC_ERROR = "EXEC_ERROR"


# Failures the caller can fix (bad input, policy) vs. failures inside the system.
USER_ERRORS = frozenset({
    ErrorCode.VALIDATION_ERROR,
    ErrorCode.MISSING_ARGUMENT,
    ErrorCode.UNKNOWN_TOOL,
    ErrorCode.DENIED_TOOL,
    ErrorCode.CONFIRMATION_REQUIRED,
    ErrorCode.DENIED_AGENT_TOOLSET,
    ErrorCode.DENIED_PATH_ALLOWLIST,
    ErrorCode.DENIED_COMMAND_ALLOWLIST,
    ErrorCode.ROUTING_NO_MATCH,
})

EXIT_OK = 0
EXIT_INTERNAL = 1
EXIT_USER = 2


@dataclass(frozen=True)
class ToolError:
    code: ErrorCode
    message: str
    details: Optional[Dict[str, Any]] = None

    def to_dict(self) -> Dict[str, Any]:
        out = {"code": self.code.value, "message": self.message}
        if self.details:
            out["details"] = dict(self.details)
        return out


@dataclass
class DebugInfo:
    stage: Optional[str] = None
    start: float = field(default_factory=time.time)
    elapsed_ms: float = 0.0
    model: Optional[str] = None
    cache_hit: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "stage": self.stage,
            "start": self.start,
            "elapsed_ms": round(self.elapsed_ms, 2),
            "model": self.model,
            "cache_hit": self.cache_hit,
        }


@dataclass
class ToolResult:
    ok: bool
    result: Any = None
    error: Optional[ToolError] = None
    debug: Optional[DebugInfo] = None

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {"ok": self.ok}
        if self.ok:
            out["result"] = self.result
        elif self.error:
            out["error"] = self.error.to_dict()
        if self.debug:
            out["debug"] = self.debug.to_dict()
        return out

    @property
    def error_code(self) -> Optional[str]:
        return self.error.code.value if self.error else None


def success(result: Any = None) -> ToolResult:
    return ToolResult(ok=True, result=result)


def failure(code: ErrorCode, message: str, details: Optional[Dict[str, Any]] = None) -> ToolResult:
    return ToolResult(ok=False, error=ToolError(code, message, details))


def exit_code_for(result: ToolResult) -> int:
    """Map a result to a process exit status for scripting."""
    if result.ok:
        return EXIT_OK
    if result.error and result.error.code in USER_ERRORS:
        return EXIT_USER
    return EXIT_INTERNAL
