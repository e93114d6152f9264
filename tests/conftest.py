"""Shared fixtures: isolated settings, permissions, registry and runtime under tmp_path."""
import json
from unittest.mock import AsyncMock, MagicMock

import pytest

import assistant.tools  # noqa: F401  registers builtin tools
from assistant.config import Settings
from assistant.permissions import PermissionsConfig
from assistant.runtime import Runtime
from assistant.tools.registry import ToolRegistry


@pytest.fixture
def settings(tmp_path):
    base = tmp_path / "work"
    data = tmp_path / "data"
    base.mkdir()
    data.mkdir()
    return Settings(
        base_dir=str(base),
        data_dir=str(data),
        permissions_path=None,
        plugins_dir=None,
        audit_enabled=True,
        openai_api_key="",
        routing_timeout_s=2.0,
        fallback_max_attempts=3,
        cache_ttl_s=60.0,
        memory_limit=50,
        command_timeout_s=5.0,
        default_agent="system",
    )


@pytest.fixture
def permissions(settings):
    return PermissionsConfig(
        allow_paths=(".",),
        allow_commands=("echo", "ls", "false"),
        source_path=str(settings.base_dir) + "/permissions.json",
    )


@pytest.fixture
def registry():
    return ToolRegistry.build()


@pytest.fixture
def runtime(settings, registry, permissions):
    return Runtime(settings, registry, permissions, chat_model=None)


def make_model(*replies, delay: float = 0.0):
    """Chat model double returning the given raw replies in order (last one repeats)."""
    import asyncio

    replies = list(replies) or ['{"tool": "none", "args": {}}']
    calls = {"n": 0}

    async def complete(messages):
        i = min(calls["n"], len(replies) - 1)
        calls["n"] += 1
        if delay:
            await asyncio.sleep(delay)
        reply = replies[i]
        if isinstance(reply, Exception):
            raise reply
        return reply if isinstance(reply, str) else json.dumps(reply)

    model = MagicMock()
    model.provider = "fake"
    model.model = "fake-1"
    model.complete = AsyncMock(side_effect=complete)
    return model


@pytest.fixture
def fake_model():
    return make_model
