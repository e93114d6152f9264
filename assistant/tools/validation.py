"""Argument validation against a ToolSpec."""
import logging
import re
from typing import Any, Dict, Optional, Tuple

from .contract import ErrorCode, ToolError
from .registry import ParamSpec, ToolSpec

logger = logging.getLogger(__name__)

# Control argument read by the permission gate, never passed to handlers.
CONFIRM_ARG = "confirm"

_INT_RE = re.compile(r"^[+-]?\d+$")
_TRUE = ("true", "yes", "1")
_FALSE = ("false", "no", "0")


class _Invalid(Exception):
    pass


def _coerce(value: Any, param: ParamSpec) -> Any:
    kind = param.type
    if kind == "string":
        if not isinstance(value, str):
            raise _Invalid("expected string")
    elif kind == "integer":
        if isinstance(value, bool):
            raise _Invalid("expected integer")
        if isinstance(value, float) and value.is_integer():
            value = int(value)
        elif isinstance(value, str) and _INT_RE.match(value.strip()):
            value = int(value.strip())
        elif not isinstance(value, int):
            raise _Invalid("expected integer")
    elif kind == "number":
        if isinstance(value, bool):
            raise _Invalid("expected number")
        if isinstance(value, str):
            try:
                value = float(value.strip())
            except ValueError:
                raise _Invalid("expected number")
        elif not isinstance(value, (int, float)):
            raise _Invalid("expected number")
    elif kind == "boolean":
        value = _coerce_bool(value)
    else:
        raise _Invalid(f"unsupported type {kind}")

    if param.enum and value not in param.enum:
        raise _Invalid(f"must be one of {list(param.enum)}")
    return value


def _coerce_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in _TRUE:
            return True
        if lowered in _FALSE:
            return False
    raise _Invalid("expected boolean")


def validate_args(spec: ToolSpec, args: Any) -> Tuple[Dict[str, Any], Optional[ToolError]]:
    """Check args against spec; returns (clean_args, error).

    Declared params are type-checked and coerced from their string form
    ("3" → 3 for integers). Undeclared keys are dropped.
    """
    if args is None:
        args = {}
    if not isinstance(args, dict):
        return {}, ToolError(ErrorCode.VALIDATION_ERROR, "Arguments must be an object",
                             {"tool": spec.name})

    for name in spec.required:
        if args.get(name) is None:
            return {}, ToolError(
                ErrorCode.MISSING_ARGUMENT,
                f"Missing required argument '{name}' for tool '{spec.name}'",
                {"tool": spec.name, "field": name},
            )

    clean: Dict[str, Any] = {}
    for key, value in args.items():
        if key == CONFIRM_ARG:
            # Only a real boolean counts; "yes" or 1 never confirm.
            if not isinstance(value, bool):
                return {}, ToolError(ErrorCode.VALIDATION_ERROR,
                                     f"Invalid argument '{key}': expected boolean true or false",
                                     {"tool": spec.name, "field": key, "expected": "boolean"})
            clean[key] = value
            continue
        param = spec.parameters.get(key)
        if param is None:
            logger.debug(f"Dropping undeclared argument '{key}' for {spec.name}")
            continue
        if value is None:
            continue
        try:
            clean[key] = _coerce(value, param)
        except _Invalid as e:
            return {}, ToolError(
                ErrorCode.VALIDATION_ERROR,
                f"Invalid argument '{key}' for tool '{spec.name}': {e}",
                {"tool": spec.name, "field": key, "expected": param.type},
            )
    return clean, None
