"""Permission gate: deny-list → confirmation → agent toolset → resource confinement.

Every rule is a plain function of (tool call, agent, config). The first
failing rule decides the error. Path rules canonicalize with realpath, which
touches filesystem metadata but never reads or writes file content.
"""
import json
import logging
import os
import shlex
from typing import Any, Dict, Iterable, List, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, ValidationError

from .agents import Agent
from .config import Settings
from .tools.contract import ErrorCode, ToolError
from .tools.registry import ToolSpec
from .tools.validation import CONFIRM_ARG

logger = logging.getLogger(__name__)

PERMISSIONS_FILENAME = "permissions.json"

# Parameter names that carry filesystem paths or command lines.
PATH_PARAMS = ("path", "source", "destination")
COMMAND_PARAMS = ("command",)

# Always refused, whatever allow_paths says.
SENSITIVE_COMPONENTS = frozenset({".git", ".env", "node_modules"})

# Tools whose path arguments are checked as writes.
WRITE_TOOLS = frozenset({"write_file", "delete_file"})


class PermissionsConfig(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore")

    allow_paths: Tuple[str, ...] = ()
    allow_commands: Tuple[str, ...] = ()
    require_confirmation_for: Tuple[str, ...] = ()
    deny_tools: Tuple[str, ...] = ()
    source_path: Optional[str] = None


def deny_all(source_path: Optional[str] = None) -> PermissionsConfig:
    return PermissionsConfig(source_path=source_path)


def permissions_candidates(settings: Settings, explicit: Optional[str] = None) -> List[str]:
    """Lookup order: explicit → ASSISTANT_PERMISSIONS_PATH → base dir → data dir."""
    candidates = []
    for p in (
        explicit,
        settings.permissions_path,
        os.path.join(settings.base_dir, PERMISSIONS_FILENAME),
        os.path.join(settings.data_dir, PERMISSIONS_FILENAME),
    ):
        if not p:
            continue
        p = os.path.abspath(os.path.expanduser(p))
        if p not in candidates:
            candidates.append(p)
    return candidates


def load_permissions(settings: Settings, path: Optional[str] = None) -> PermissionsConfig:
    """Load the first permissions file found. Missing or invalid means deny all."""
    candidates = permissions_candidates(settings, path)
    found = next((c for c in candidates if os.path.isfile(c)), None)
    if found is None:
        logger.warning(f"No permissions file found (checked {', '.join(candidates)}), denying all")
        return deny_all(candidates[0] if candidates else None)

    try:
        with open(found, encoding="utf-8") as f:
            raw = json.load(f)
        if not isinstance(raw, dict):
            raise ValueError("top-level value must be an object")
        config = PermissionsConfig(**{**raw, "source_path": found})
    except (OSError, ValueError, ValidationError) as e:
        logger.error(f"Invalid permissions file {found}: {e}; denying all")
        return deny_all(found)

    logger.info(
        f"Permissions loaded from {found}: allow_paths={len(config.allow_paths)}, "
        f"allow_commands={len(config.allow_commands)}, deny_tools={len(config.deny_tools)}, "
        f"require_confirmation_for={len(config.require_confirmation_for)}"
    )
    return config


# ── Path / command confinement ────────────────────────────────

def _within(path: str, root: str) -> bool:
    if path == root:
        return True
    try:
        return os.path.commonpath([path, root]) == root
    except ValueError:
        return False


def _has_sensitive_component(path: str) -> bool:
    parts = path.replace("\\", "/").split("/")
    return any(p.lower() in SENSITIVE_COMPONENTS for p in parts)


class PathResolver:
    """Resolves user-supplied paths to canonical paths under an allowed root."""

    def __init__(self, base_dir: str, allow_paths: Iterable[str]):
        self.base_dir = os.path.realpath(os.path.abspath(base_dir))
        # Entries are relative to base_dir unless absolute.
        self.roots = tuple(
            os.path.realpath(os.path.join(self.base_dir, os.path.expanduser(p)))
            for p in allow_paths if p and p.strip()
        )

    def canonical(self, raw: str) -> str:
        # realpath resolves symlinks on the existing prefix, then applies
        # the remaining (possibly nonexistent) components.
        return os.path.realpath(os.path.join(self.base_dir, os.path.expanduser(raw)))

    def resolve(self, raw: Any, op: str = "read") -> Union[str, ToolError]:
        if not isinstance(raw, str) or not raw.strip() or "\x00" in raw:
            return ToolError(ErrorCode.DENIED_PATH_ALLOWLIST, "Path is empty or invalid",
                             {"path": raw, "operation": op})
        target = self.canonical(raw.strip())
        root = next((r for r in self.roots if _within(target, r)), None)
        if root is None:
            return ToolError(ErrorCode.DENIED_PATH_ALLOWLIST,
                             f"Path '{raw}' is not allowed for {op} operation",
                             {"path": raw, "resolved": target, "operation": op})
        if _has_sensitive_component(os.path.relpath(target, root)) or _has_sensitive_component(raw):
            return ToolError(ErrorCode.DENIED_PATH_ALLOWLIST,
                             f"Path '{raw}' touches a protected location",
                             {"path": raw, "operation": op})
        return target


class CommandValidator:
    def __init__(self, allow_commands: Iterable[str]):
        self.allowed = frozenset(c.strip() for c in allow_commands if c and c.strip())

    def validate(self, executable: Any) -> Optional[ToolError]:
        if not isinstance(executable, str) or not executable.strip():
            return ToolError(ErrorCode.DENIED_COMMAND_ALLOWLIST, "Command is empty")
        name = executable.strip()
        # The checked name is exactly what gets executed, so no paths.
        if "/" in name or "\\" in name or os.sep in name:
            return ToolError(ErrorCode.DENIED_COMMAND_ALLOWLIST,
                             f"Command '{name}' must be a bare name from allow_commands",
                             {"command": name})
        if name not in self.allowed:
            return ToolError(ErrorCode.DENIED_COMMAND_ALLOWLIST,
                             f"Command '{name}' is not in allow_commands",
                             {"command": name})
        return None

    def split(self, command_line: Any) -> Union[List[str], ToolError]:
        """Split a command line and validate its executable."""
        if not isinstance(command_line, str):
            return ToolError(ErrorCode.DENIED_COMMAND_ALLOWLIST, "Command must be a string")
        try:
            argv = shlex.split(command_line)
        except ValueError as e:
            return ToolError(ErrorCode.DENIED_COMMAND_ALLOWLIST, f"Unparseable command: {e}")
        if not argv:
            return ToolError(ErrorCode.DENIED_COMMAND_ALLOWLIST, "Command is empty")
        err = self.validate(argv[0])
        return err if err else argv


# ── Rules ─────────────────────────────────────────────────────

def check_deny_list(tool_name: str, config: PermissionsConfig) -> Optional[ToolError]:
    if tool_name in config.deny_tools:
        return ToolError(ErrorCode.DENIED_TOOL, f"Tool '{tool_name}' is denied by permissions",
                         {"tool": tool_name})
    return None


def check_confirmation(tool_name: str, args: Dict[str, Any], config: PermissionsConfig) -> Optional[ToolError]:
    if tool_name in config.require_confirmation_for and args.get(CONFIRM_ARG) is not True:
        where = config.source_path or PERMISSIONS_FILENAME
        return ToolError(
            ErrorCode.CONFIRMATION_REQUIRED,
            f"Tool '{tool_name}' requires confirmation. Please retry with 'confirm: true' "
            f"or remove '{tool_name}' from 'require_confirmation_for' in: {where}",
            {"tool": tool_name, "permissions_path": where},
        )
    return None


def check_agent_toolset(tool_name: str, agent: Agent) -> Optional[ToolError]:
    if not agent.allows(tool_name):
        return ToolError(ErrorCode.DENIED_AGENT_TOOLSET,
                         f"Agent '{agent.name}' is not allowed to use '{tool_name}'",
                         {"tool": tool_name, "agent": agent.name})
    return None


def check_confinement(
    spec: ToolSpec,
    args: Dict[str, Any],
    paths: PathResolver,
    commands: CommandValidator,
) -> Optional[ToolError]:
    op = "write" if spec.name in WRITE_TOOLS else "read"
    for pname in PATH_PARAMS:
        if pname in spec.parameters and pname in args:
            resolved = paths.resolve(args[pname], op)
            if isinstance(resolved, ToolError):
                return resolved
    for pname in COMMAND_PARAMS:
        if pname in spec.parameters and pname in args:
            argv = commands.split(args[pname])
            if isinstance(argv, ToolError):
                return argv
    return None


class PermissionGate:
    """Evaluates the rule pipeline in its fixed order."""

    def __init__(self, config: PermissionsConfig, base_dir: str):
        self.config = config
        self.paths = PathResolver(base_dir, config.allow_paths)
        self.commands = CommandValidator(config.allow_commands)

    def check(self, spec: ToolSpec, args: Dict[str, Any], agent: Agent) -> Optional[ToolError]:
        name = spec.name
        return (
            check_deny_list(name, self.config)
            or check_confirmation(name, args, self.config)
            or check_agent_toolset(name, agent)
            or check_confinement(spec, args, self.paths, self.commands)
        )
