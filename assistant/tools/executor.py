"""Tool executor: Validate → PermissionCheck → Dispatch → Complete."""
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from ..agents import Agent, SYSTEM
from ..audit import AuditLog
from ..config import Settings
from ..permissions import CommandValidator, PathResolver, PermissionGate, PermissionsConfig
from ..storage import JsonlStore
from .contract import DebugInfo, ErrorCode, ToolResult, failure
from .registry import ToolRegistry
from .router import ToolCall
from .validation import CONFIRM_ARG, validate_args

logger = logging.getLogger(__name__)


@dataclass
class ExecutorContext:
    """What a handler may touch. Paths and commands go through the gate's checks."""

    paths: PathResolver
    commands: CommandValidator
    settings: Settings
    permissions: PermissionsConfig
    agent: Agent
    store: JsonlStore
    start: float = field(default_factory=time.time)

    def data_path(self, name: str) -> str:
        return self.settings.data_path(name)


class Executor:
    def __init__(
        self,
        registry: ToolRegistry,
        gate: PermissionGate,
        settings: Settings,
        store: JsonlStore,
        audit: Optional[AuditLog] = None,
    ):
        self.registry = registry
        self.gate = gate
        self.settings = settings
        self.store = store
        self.audit = audit

    def context_for(self, agent: Agent) -> ExecutorContext:
        return ExecutorContext(
            paths=self.gate.paths,
            commands=self.gate.commands,
            settings=self.settings,
            permissions=self.gate.config,
            agent=agent,
            store=self.store,
        )

    async def execute(self, call: ToolCall, agent: Agent = SYSTEM) -> ToolResult:
        t0 = time.monotonic()
        debug = DebugInfo(stage=call.stage, model=call.model, cache_hit=call.cache_hit)
        args = call.args if isinstance(call.args, dict) else {}

        result = await self._run(call, args, agent)

        # Complete: debug on every result, then a best-effort audit record.
        debug.elapsed_ms = (time.monotonic() - t0) * 1000
        result.debug = debug
        if self.audit is not None:
            await self.audit.record(call.tool_name, args, result, debug.elapsed_ms)
        logger.info(f"Tool {call.tool_name}: {debug.elapsed_ms:.1f}ms -> "
                    f"{'ok' if result.ok else result.error_code}")
        return result

    async def _run(self, call: ToolCall, args: Dict[str, Any], agent: Agent) -> ToolResult:
        tool = self.registry.lookup(call.tool_name)
        if tool is None:
            logger.warning(f"Unknown tool: {call.tool_name}")
            return failure(ErrorCode.UNKNOWN_TOOL, f"Unknown tool: {call.tool_name}",
                           {"tool": call.tool_name})

        # Validate
        clean, err = validate_args(tool.spec, call.args)
        if err:
            return ToolResult(ok=False, error=err)

        # PermissionCheck
        denied = self.gate.check(tool.spec, clean, agent)
        if denied:
            logger.info(f"Denied {call.tool_name} for agent '{agent.name}': {denied.code.value}")
            return ToolResult(ok=False, error=denied)

        # Dispatch
        handler_args = {k: v for k, v in clean.items() if k != CONFIRM_ARG}
        arg_str = ", ".join(f"{k}={v!r}" for k, v in handler_args.items())
        logger.info(f"Executing tool: {call.tool_name}({arg_str[:200]})")
        ctx = self.context_for(agent)
        try:
            result = await tool.handler(ctx, **handler_args)
        except Exception as e:
            logger.error(f"Tool {call.tool_name} failed: {e}", exc_info=True)
            return failure(ErrorCode.EXEC_ERROR, f"Tool '{call.tool_name}' failed: {e}",
                           {"tool": call.tool_name, "exception": type(e).__name__})

        if not isinstance(result, ToolResult):
            # Plugin handlers may return plain values.
            return ToolResult(ok=True, result=result)
        return result
