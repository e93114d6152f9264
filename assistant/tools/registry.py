"""Tool registry: built-in catalog plus validated plugin descriptors, frozen at startup."""
import logging
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Literal, Mapping, Optional, Tuple, Union

from pydantic import BaseModel, Field, model_validator

from .contract import ToolResult

logger = logging.getLogger(__name__)

PARAM_TYPES = ("string", "integer", "number", "boolean")
STATUSES = ("ready", "stub", "experimental")


@dataclass(frozen=True)
class ParamSpec:
    type: str = "string"
    description: str = ""
    enum: Optional[Tuple[Any, ...]] = None


@dataclass(frozen=True)
class ToolSpec:
    name: str
    status: str
    description: str
    required: Tuple[str, ...] = ()
    parameters: Mapping[str, ParamSpec] = field(default_factory=dict)

    def compact(self) -> Dict[str, Any]:
        """Short schema form used in the routing prompt."""
        params = {}
        for pname, p in self.parameters.items():
            entry: Dict[str, Any] = {"type": p.type}
            if p.enum:
                entry["enum"] = list(p.enum)
            params[pname] = entry
        return {"name": self.name, "description": self.description,
                "required": list(self.required), "parameters": params}


Handler = Callable[..., Awaitable[ToolResult]]


@dataclass(frozen=True)
class ToolDef:
    spec: ToolSpec
    handler: Handler
    source: str = "builtin"

    @property
    def name(self) -> str:
        return self.spec.name


@dataclass
class ToolParam:
    name: str
    type: str = "string"
    description: str = ""
    required: bool = True
    enum: Optional[Tuple[Any, ...]] = None


# Closed catalog filled by the @register_tool decorators in tools/builtin/.
_builtins: Dict[str, ToolDef] = {}


def register_tool(
    name: str,
    description: str = "",
    params: Optional[List[ToolParam]] = None,
    status: str = "ready",
):
    """Decorator to register a built-in tool handler."""
    def decorator(func):
        params_ = params or []
        spec = ToolSpec(
            name=name,
            status=status,
            description=description or (func.__doc__ or "").strip(),
            required=tuple(p.name for p in params_ if p.required),
            parameters=MappingProxyType({
                p.name: ParamSpec(p.type, p.description, tuple(p.enum) if p.enum else None)
                for p in params_
            }),
        )
        _builtins[name] = ToolDef(spec=spec, handler=func)
        logger.debug(f"Registered tool: {name}")
        return func
    return decorator


def builtin_tools() -> Dict[str, ToolDef]:
    return dict(_builtins)


# ── Descriptor validation (untrusted plugin input) ───────────

class ParamDescriptor(BaseModel):
    type: Literal["string", "integer", "number", "boolean"]
    description: str = ""
    enum: Optional[List[Union[str, int, float, bool]]] = None


class ToolDescriptor(BaseModel):
    name: str = Field(pattern=r"^[a-z][a-z0-9_.]{0,63}$")
    status: Literal["ready", "stub", "experimental"] = "ready"
    description: str = Field(min_length=1)
    required: List[str] = []
    parameters: Dict[str, ParamDescriptor] = {}

    @model_validator(mode="after")
    def _required_declared(self):
        undeclared = [r for r in self.required if r not in self.parameters]
        if undeclared:
            raise ValueError(f"required params not declared in parameters: {undeclared}")
        if len(set(self.required)) != len(self.required):
            raise ValueError("duplicate names in required")
        return self

    def to_spec(self) -> ToolSpec:
        return ToolSpec(
            name=self.name,
            status=self.status,
            description=self.description,
            required=tuple(self.required),
            parameters=MappingProxyType({
                pname: ParamSpec(p.type, p.description, tuple(p.enum) if p.enum else None)
                for pname, p in self.parameters.items()
            }),
        )


class ToolRegistry:
    """Read-only name → ToolDef map. Build once, pass by reference."""

    def __init__(self, tools: Mapping[str, ToolDef]):
        self._tools = MappingProxyType(dict(tools))

    @classmethod
    def build(
        cls,
        plugin_tools: Iterable[ToolDef] = (),
        builtins: Optional[Mapping[str, ToolDef]] = None,
    ) -> "ToolRegistry":
        tools = dict(builtin_tools() if builtins is None else builtins)
        builtin_names = frozenset(tools)
        for tool in plugin_tools:
            if tool.name in builtin_names:
                logger.warning(f"Plugin tool '{tool.name}' collides with a built-in, ignoring plugin")
                continue
            if tool.name in tools:
                logger.warning(f"Duplicate plugin tool '{tool.name}' from {tool.source}, keeping first")
                continue
            tools[tool.name] = tool
        logger.info(f"Tool registry built: {len(builtin_names)} built-in, {len(tools) - len(builtin_names)} plugin")
        return cls(tools)

    def lookup(self, name: str) -> Optional[ToolDef]:
        return self._tools.get(name)

    def list(self) -> Tuple[ToolSpec, ...]:
        return tuple(self._tools[n].spec for n in sorted(self._tools))

    def __contains__(self, name: object) -> bool:
        return name in self._tools

    def __len__(self) -> int:
        return len(self._tools)

    def descriptions_for_llm(self, names: Optional[Iterable[str]] = None) -> str:
        """Generate one line per tool for the routing prompt."""
        allowed = None if names is None else frozenset(names)
        lines = []
        for spec in self.list():
            if allowed is not None and spec.name not in allowed:
                continue
            if spec.status == "stub":
                continue
            params = []
            for pname, p in spec.parameters.items():
                req = "required" if pname in spec.required else "optional"
                enum = f" one of {list(p.enum)}" if p.enum else ""
                params.append(f"{pname}:{p.type}({req}){enum}")
            params_text = ", ".join(params) if params else "none"
            lines.append(f"- {spec.name}: {spec.description} | params: {params_text}")
        return "\n".join(lines)
