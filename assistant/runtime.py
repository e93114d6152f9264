"""Process-wide wiring: one registry, one permissions config, one cache per Runtime."""
import logging
import os
from typing import Any, Dict, Optional, Union

from .agents import Agent, get_agent
from .audit import AuditLog
from .cache import AsyncCache
from .config import Settings, settings as default_settings
from .llm import ChatModel, OpenAIChatModel
from .permissions import PermissionGate, PermissionsConfig, load_permissions
from .storage import JsonlStore
from .tools.contract import ErrorCode, ToolResult, failure
from .tools.executor import Executor
from .tools.plugins import load_plugins
from .tools.registry import ToolRegistry
from .tools.router import Router, ToolCall

logger = logging.getLogger(__name__)

AgentRef = Union[str, Agent, None]


class Runtime:
    def __init__(
        self,
        settings: Settings,
        registry: ToolRegistry,
        permissions: PermissionsConfig,
        chat_model: Optional[ChatModel] = None,
        cache: Optional[AsyncCache] = None,
        store: Optional[JsonlStore] = None,
    ):
        self.settings = settings
        self.registry = registry
        self.cache = cache or AsyncCache(ttl_s=settings.cache_ttl_s)
        self.store = store or JsonlStore()
        self.chat_model = chat_model
        self.audit = AuditLog.in_dir(settings.data_dir, self.store, enabled=settings.audit_enabled,
                                    max_bytes=settings.audit_max_bytes)
        self.router = Router(registry, self.cache, settings, chat_model)
        self._install_permissions(permissions)

    def _install_permissions(self, permissions: PermissionsConfig) -> None:
        self.permissions = permissions
        self.gate = PermissionGate(permissions, self.settings.base_dir)
        self.executor = Executor(self.registry, self.gate, self.settings, self.store, self.audit)

    def reload_permissions(self, path: Optional[str] = None) -> PermissionsConfig:
        """Build a fresh config and gate; cached routes are dropped."""
        self._install_permissions(load_permissions(self.settings, path))
        self.cache.invalidate()
        return self.permissions

    def resolve_agent(self, agent: AgentRef = None) -> Optional[Agent]:
        if isinstance(agent, Agent):
            return agent
        return get_agent(agent or self.settings.default_agent)

    async def run(self, text: str, agent: AgentRef = None) -> ToolResult:
        """Route free text, then execute the resulting call."""
        principal = self.resolve_agent(agent)
        if principal is None:
            return failure(ErrorCode.VALIDATION_ERROR, f"Unknown agent: {agent}", {"field": "agent"})
        try:
            outcome = await self.router.route(text, principal)
            if not outcome.ok:
                return outcome.to_result()
            return await self.executor.execute(outcome.call, principal)
        except Exception as e:
            logger.error(f"Invocation failed: {e}", exc_info=True)
            return failure(ErrorCode.EXEC_ERROR, f"Internal error: {e}")

    async def execute(self, tool_name: str, args: Optional[Dict[str, Any]] = None,
                      agent: AgentRef = None) -> ToolResult:
        """Execute a named tool directly, skipping routing."""
        principal = self.resolve_agent(agent)
        if principal is None:
            return failure(ErrorCode.VALIDATION_ERROR, f"Unknown agent: {agent}", {"field": "agent"})
        call = ToolCall(tool_name=tool_name, args=dict(args or {}), stage="direct")
        try:
            return await self.executor.execute(call, principal)
        except Exception as e:
            logger.error(f"Invocation failed: {e}", exc_info=True)
            return failure(ErrorCode.EXEC_ERROR, f"Internal error: {e}")


def build_runtime(
    settings: Optional[Settings] = None,
    chat_model: Optional[ChatModel] = None,
    permissions_path: Optional[str] = None,
) -> Runtime:
    settings = settings or default_settings
    os.makedirs(settings.data_dir, exist_ok=True)
    registry = ToolRegistry.build(load_plugins(settings.plugins_dir))
    permissions = load_permissions(settings, permissions_path)
    if chat_model is None:
        chat_model = OpenAIChatModel.from_settings(settings)
    return Runtime(settings, registry, permissions, chat_model=chat_model)
