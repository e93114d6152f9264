"""Append-only audit log: one JSON record per tool invocation."""
import logging
import os
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from .storage import JsonlStore
from .tools.contract import ToolResult

logger = logging.getLogger(__name__)

AUDIT_FILENAME = "audit.jsonl"
DEFAULT_MAX_BYTES = 5 * 1024 * 1024
MAX_ARG_CHARS = 100
TRUNCATED = "...[truncated]"
REDACTED = "[redacted]"
_SECRET_MARKERS = ("password", "passwd", "token", "secret", "api_key", "apikey", "authorization")


def _is_secret_key(key: str) -> bool:
    lowered = key.lower()
    return any(m in lowered for m in _SECRET_MARKERS)


def redact_args(args: Dict[str, Any]) -> Dict[str, Any]:
    out: Dict[str, Any] = {}
    for key, value in (args or {}).items():
        if _is_secret_key(key):
            out[key] = REDACTED
        elif isinstance(value, str) and len(value) > MAX_ARG_CHARS:
            out[key] = value[:MAX_ARG_CHARS] + TRUNCATED
        elif isinstance(value, (str, int, float, bool)) or value is None:
            out[key] = value
        else:
            out[key] = repr(value)[:MAX_ARG_CHARS]
    return out


class AuditLog:
    def __init__(self, path: str, store: JsonlStore, enabled: bool = True,
                 max_bytes: Optional[int] = DEFAULT_MAX_BYTES):
        self.path = path
        self.store = store
        self.enabled = enabled
        self.max_bytes = max_bytes

    @classmethod
    def in_dir(cls, data_dir: str, store: JsonlStore, enabled: bool = True,
               max_bytes: Optional[int] = DEFAULT_MAX_BYTES) -> "AuditLog":
        return cls(os.path.join(data_dir, AUDIT_FILENAME), store, enabled, max_bytes)

    @staticmethod
    def make_record(tool: str, args: Dict[str, Any], result: ToolResult, duration_ms: float) -> Dict[str, Any]:
        record: Dict[str, Any] = {
            "ts": datetime.now(timezone.utc).isoformat(),
            "tool": tool,
            "args_redacted": redact_args(args),
            "ok": result.ok,
        }
        if result.error_code:
            record["error_code"] = result.error_code
        record["duration_ms"] = round(duration_ms, 2)
        return record

    async def record(self, tool: str, args: Dict[str, Any], result: ToolResult,
                     duration_ms: float) -> Optional[Dict[str, Any]]:
        """Write one record. Failures are logged and swallowed."""
        if not self.enabled:
            return None
        entry = self.make_record(tool, args, result, duration_ms)
        try:
            await self.store.append(self.path, entry, max_bytes=self.max_bytes)
        except Exception as e:
            logger.warning(f"Audit write failed ({self.path}): {e}")
            return None
        return entry

    async def entries(self):
        return await self.store.read(self.path)
