"""Tests for router.py — fast path, heuristic scoring, model fallback with cache/retry/timeout."""
import asyncio

import pytest

from assistant.agents import CODER, SYSTEM
from assistant.cache import AsyncCache
from assistant.tools.contract import ErrorCode
from assistant.tools.registry import ToolRegistry, builtin_tools
from assistant.tools.router import (
    FAST_PATH,
    FAST_RULES,
    HEURISTIC,
    MAX_INPUT_LENGTH,
    MODEL_FALLBACK,
    HeuristicParser,
    Router,
    match_fast_path,
    validate_input,
)


def _router(settings, registry, model=None, **overrides):
    if overrides:
        settings = settings.model_copy(update=overrides)
    return Router(registry, AsyncCache(ttl_s=60), settings, chat_model=model)


class TestFastPath:
    @pytest.mark.parametrize(
        "rule", FAST_RULES, ids=[f"{i}-{r.tool}" for i, r in enumerate(FAST_RULES)]
    )
    def test_examples_match_only_their_rule(self, rule):
        assert rule.examples
        for example in rule.examples:
            owners = [r for r in FAST_RULES if r.pattern.match(example)]
            assert owners == [rule], example

    def test_every_rule_tool_is_builtin(self):
        names = builtin_tools()
        assert {r.tool for r in FAST_RULES} <= set(names)

    @pytest.mark.parametrize("text,tool,args", [
        ("remember: buy milk", "remember", {"text": "buy milk"}),
        ("  Recall:  door code ", "recall", {"query": "door code"}),
        ("todo add file taxes --due 2026-04-15 --priority HIGH", "task_add",
         {"text": "file taxes", "due": "2026-04-15", "priority": "high"}),
        ("task list", "task_list", {}),
        ("task list done", "task_list", {"status": "done"}),
        ("task done #12", "task_done", {"id": 12}),
        ("read url example.com", "read_url", {"url": "example.com"}),
        ("read https://example.com/x", "read_url", {"url": "https://example.com/x"}),
        ("read notes.txt", "read_file", {"path": "notes.txt"}),
        ("write notes.txt hello world", "write_file", {"path": "notes.txt", "content": "hello world"}),
        ("delete_file /etc/passwd", "delete_file", {"path": "/etc/passwd"}),
        ("ls", "list_files", {}),
        ("list files src", "list_files", {"path": "src"}),
        ("run echo hi there", "run_cmd", {"command": "echo hi there"}),
        ("git status", "git_status", {}),
        ("git diff --staged", "git_diff", {"staged": True}),
        ("git diff src/app.py", "git_diff", {"path": "src/app.py"}),
        ("git log -n 5", "git_log", {"limit": 5}),
        ("git log", "git_log", {}),
        ("grep TODO", "grep", {"pattern": "TODO", "path": "."}),
        ("grep fixme src", "grep", {"pattern": "fixme", "path": "src"}),
        ("What time is it?", "get_time", {}),
        ("calc: (3*4)/2", "calculate", {"expression": "(3*4)/2"}),
        ("weather for New York?", "get_weather", {"location": "New York"}),
    ])
    def test_extracts_args(self, text, tool, args):
        call = match_fast_path(text)
        assert call.tool_name == tool
        assert call.args == args
        assert call.stage == FAST_PATH
        assert call.confidence == 1.0

    @pytest.mark.parametrize("text", ["remember:", "remember:    ", "hello there", "read", "reading list"])
    def test_no_match(self, text):
        assert match_fast_path(text) is None

    @pytest.mark.asyncio
    async def test_fast_path_never_calls_model(self, settings, registry, fake_model):
        model = fake_model({"tool": "recall", "args": {"query": "x"}})
        outcome = await _router(settings, registry, model).route("remember: buy milk")
        assert outcome.ok
        assert outcome.stage == FAST_PATH
        assert outcome.call.tool_name == "remember"
        model.complete.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_unregistered_fast_path_tool_falls_through(self, settings):
        tools = {n: t for n, t in builtin_tools().items() if n != "remember"}
        router = _router(settings, ToolRegistry.build(builtins=tools))
        outcome = await router.route("remember: buy milk")
        assert not outcome.ok
        assert outcome.error.code == ErrorCode.ROUTING_NO_MATCH
        assert outcome.stage == MODEL_FALLBACK


class TestInput:
    @pytest.mark.parametrize("text", ["", "   \n\t", None, 42])
    def test_empty_or_non_string(self, text):
        assert validate_input(text).code == ErrorCode.VALIDATION_ERROR

    def test_length_limit(self):
        assert validate_input("x" * MAX_INPUT_LENGTH) is None
        err = validate_input("x" * (MAX_INPUT_LENGTH + 1))
        assert err.code == ErrorCode.VALIDATION_ERROR
        assert err.details["length"] == MAX_INPUT_LENGTH + 1

    @pytest.mark.asyncio
    async def test_route_rejects_before_any_stage(self, settings, registry, fake_model):
        model = fake_model()
        outcome = await _router(settings, registry, model).route("   ")
        assert outcome.error.code == ErrorCode.VALIDATION_ERROR
        assert outcome.stage is None
        model.complete.assert_not_awaited()


class TestHeuristic:
    def test_verb_synonym_and_file_shape(self, registry):
        call = HeuristicParser(registry).parse("show notes.txt")
        assert call.tool_name == "read_file"
        assert call.args == {"path": "notes.txt"}
        assert call.stage == HEURISTIC
        assert 0 < call.confidence <= 1

    def test_trailing_noise_stripped_from_args(self, registry):
        call = HeuristicParser(registry).parse("add buy milk to my tasks")
        assert call.tool_name == "task_add"
        assert call.args == {"text": "buy milk"}

    def test_tie_is_rejected(self, registry):
        # read_file and read_url score the same on the verb alone.
        assert HeuristicParser(registry).parse("show something") is None

    def test_below_threshold(self, registry):
        assert HeuristicParser(registry).parse("please jot down that the wifi code is 1234") is None

    def test_stub_tools_not_scored(self, registry):
        call = HeuristicParser(registry).parse("weather in Paris")
        assert call is None or call.tool_name != "get_weather"

    @pytest.mark.asyncio
    async def test_heuristic_result_memoized(self, settings, registry):
        router = _router(settings, registry)
        first = await router.route("show notes.txt")
        second = await router.route("show notes.txt")
        assert first.stage == second.stage == HEURISTIC
        assert first.call.cache_hit is False
        assert second.call.cache_hit is True
        assert second.call.args == {"path": "notes.txt"}


class TestModelFallback:
    TEXT = "please jot down that the wifi code is 1234"

    @pytest.mark.asyncio
    async def test_success(self, settings, registry, fake_model):
        model = fake_model({"tool": "remember", "args": {"text": "the wifi code is 1234"}, "confidence": 0.9})
        outcome = await _router(settings, registry, model).route(self.TEXT)
        assert outcome.ok
        assert outcome.stage == MODEL_FALLBACK
        assert outcome.model == "fake-1"
        assert outcome.call.tool_name == "remember"
        assert outcome.call.args == {"text": "the wifi code is 1234"}
        assert outcome.call.cache_hit is False
        messages = model.complete.await_args.args[0]
        assert messages[0]["role"] == "system"
        assert "- remember:" in messages[0]["content"]
        assert "get_weather" not in messages[0]["content"]
        assert messages[1] == {"role": "user", "content": self.TEXT}

    @pytest.mark.asyncio
    async def test_second_identical_request_is_cache_hit(self, settings, registry, fake_model):
        model = fake_model({"tool": "remember", "args": {"text": "wifi 1234"}})
        router = _router(settings, registry, model)
        await router.route(self.TEXT)
        outcome = await router.route("  Please jot down that the WIFI code is 1234 ")
        assert outcome.ok
        assert outcome.call.cache_hit is True
        assert model.complete.await_count == 1

    @pytest.mark.asyncio
    async def test_concurrent_identical_requests_share_one_call(self, settings, registry, fake_model):
        model = fake_model({"tool": "remember", "args": {"text": "wifi 1234"}}, delay=0.05)
        router = _router(settings, registry, model)
        a, b = await asyncio.gather(router.route(self.TEXT), router.route(self.TEXT))
        assert a.ok and b.ok
        assert model.complete.await_count == 1
        assert sorted([a.call.cache_hit, b.call.cache_hit]) == [False, True]
        a.call.args["text"] = "mutated"
        assert b.call.args == {"text": "wifi 1234"}

    @pytest.mark.asyncio
    async def test_model_cannot_grant_confirmation(self, settings, registry, fake_model):
        model = fake_model({"tool": "delete_file", "args": {"path": "old.txt", "confirm": True}})
        outcome = await _router(settings, registry, model).route("dispose of the stale draft")
        assert outcome.call.tool_name == "delete_file"
        assert outcome.call.args == {"path": "old.txt"}

    @pytest.mark.asyncio
    async def test_malformed_replies_exhaust_attempts(self, settings, registry, fake_model):
        model = fake_model("not json", '{"args": {}}', "[1, 2]")
        outcome = await _router(settings, registry, model).route(self.TEXT)
        assert outcome.error.code == ErrorCode.ROUTING_NO_MATCH
        assert outcome.error.details["attempts"] == 3
        assert model.complete.await_count == 3

    @pytest.mark.asyncio
    async def test_retry_after_malformed(self, settings, registry, fake_model):
        model = fake_model("```oops", {"tool": "remember", "args": {"text": "wifi 1234"}})
        outcome = await _router(settings, registry, model).route(self.TEXT)
        assert outcome.ok
        assert model.complete.await_count == 2

    @pytest.mark.asyncio
    async def test_invalid_args_retried(self, settings, registry, fake_model):
        model = fake_model(
            {"tool": "task_done", "args": {"id": "three"}},
            {"tool": "task_done", "args": {"id": "3"}},
        )
        outcome = await _router(settings, registry, model).route("i finished the third one")
        assert outcome.call.args == {"id": 3}
        assert model.complete.await_count == 2

    @pytest.mark.asyncio
    async def test_failed_outcomes_not_cached(self, settings, registry, fake_model):
        model = fake_model("garbage", "garbage", "garbage",
                           {"tool": "remember", "args": {"text": "wifi 1234"}})
        router = _router(settings, registry, model)
        assert not (await router.route(self.TEXT)).ok
        outcome = await router.route(self.TEXT)
        assert outcome.ok
        assert outcome.call.cache_hit is False

    @pytest.mark.asyncio
    async def test_model_says_none(self, settings, registry, fake_model):
        model = fake_model({"tool": "none", "args": {}, "confidence": 0})
        outcome = await _router(settings, registry, model).route("tell me a joke")
        assert outcome.error.code == ErrorCode.ROUTING_NO_MATCH
        assert model.complete.await_count == 1

    @pytest.mark.asyncio
    async def test_low_confidence(self, settings, registry, fake_model):
        model = fake_model({"tool": "remember", "args": {"text": "x"}, "confidence": 0.1})
        outcome = await _router(settings, registry, model).route(self.TEXT)
        assert outcome.error.code == ErrorCode.ROUTING_NO_MATCH
        assert outcome.error.details["tool"] == "remember"
        assert model.complete.await_count == 1

    @pytest.mark.asyncio
    async def test_timeout(self, settings, registry, fake_model):
        model = fake_model({"tool": "remember", "args": {"text": "x"}}, delay=1.0)
        router = _router(settings, registry, model, routing_timeout_s=0.05)
        outcome = await router.route(self.TEXT)
        assert outcome.error.code == ErrorCode.ROUTING_TIMEOUT
        assert outcome.stage == MODEL_FALLBACK
        assert outcome.elapsed_ms < 1000

    @pytest.mark.asyncio
    async def test_model_exception_retried(self, settings, registry, fake_model):
        model = fake_model(RuntimeError("503"), {"tool": "remember", "args": {"text": "x"}})
        outcome = await _router(settings, registry, model).route(self.TEXT)
        assert outcome.ok
        assert model.complete.await_count == 2

    @pytest.mark.asyncio
    async def test_agent_sees_only_its_tools(self, settings, registry, fake_model):
        model = fake_model({"tool": "remember", "args": {"text": "x"}})
        outcome = await _router(settings, registry, model).route(self.TEXT, CODER)
        prompt = model.complete.await_args.args[0][0]["content"]
        assert "- read_file:" in prompt
        assert "- remember:" not in prompt
        # A tool outside the agent's set is treated like an unknown tool.
        assert outcome.error.code == ErrorCode.ROUTING_NO_MATCH
        assert model.complete.await_count == 3

    @pytest.mark.asyncio
    async def test_no_model_configured(self, settings, registry):
        outcome = await _router(settings, registry).route(self.TEXT, SYSTEM)
        assert outcome.error.code == ErrorCode.ROUTING_NO_MATCH
        assert outcome.stage == MODEL_FALLBACK

