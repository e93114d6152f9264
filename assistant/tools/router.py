"""Intent router: fast-path patterns, then a keyword heuristic, then the model.

Each stage either yields a ToolCall naming a registered tool or passes the
input on. Only the model fallback does network I/O, and only it is bounded
by the routing timeout.
"""
import asyncio
import logging
import re
import time
from dataclasses import dataclass, replace
from typing import Any, Callable, Dict, FrozenSet, List, Optional, Tuple

from ..agents import Agent, SYSTEM
from ..cache import AsyncCache, make_key
from ..config import Settings
from ..llm import NO_TOOL, ChatModel, build_messages, parse_tool_response, prompt_fingerprint
from .contract import DebugInfo, ErrorCode, ToolError, ToolResult
from .registry import ToolRegistry, ToolSpec
from .validation import CONFIRM_ARG, validate_args

logger = logging.getLogger(__name__)

FAST_PATH = "fast_path"
HEURISTIC = "heuristic"
MODEL_FALLBACK = "model_fallback"

MAX_INPUT_LENGTH = 10_000

HEURISTIC_THRESHOLD = 3.0
HEURISTIC_MARGIN = 1.0
MIN_MODEL_CONFIDENCE = 0.3


@dataclass
class ToolCall:
    tool_name: str
    args: Dict[str, Any]
    stage: str
    confidence: float = 1.0
    cache_hit: bool = False
    model: Optional[str] = None


@dataclass
class RouteOutcome:
    call: Optional[ToolCall] = None
    error: Optional[ToolError] = None
    stage: Optional[str] = None
    elapsed_ms: float = 0.0
    model: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.call is not None

    def to_result(self) -> ToolResult:
        """Failure form for callers that stop at routing."""
        debug = DebugInfo(stage=self.stage, elapsed_ms=self.elapsed_ms, model=self.model)
        return ToolResult(ok=False, error=self.error, debug=debug)


def _no_match(message: str, **details) -> RouteOutcome:
    return RouteOutcome(error=ToolError(ErrorCode.ROUTING_NO_MATCH, message, details or None))


# ── Stage 1: fast path ───────────────────────────────────────

@dataclass(frozen=True)
class FastRule:
    tool: str
    pattern: "re.Pattern"
    extract: Callable[["re.Match"], Optional[Dict[str, Any]]]
    examples: Tuple[str, ...] = ()


_TASK_DUE_RE = re.compile(r"\s--due\s+(\d{4}-\d{2}-\d{2})\b")
_TASK_PRIORITY_RE = re.compile(r"\s--priority\s+(low|medium|high)\b", re.IGNORECASE)


def _task_add_args(m: "re.Match") -> Optional[Dict[str, Any]]:
    rest = " " + m.group("rest")
    args: Dict[str, Any] = {}
    due = _TASK_DUE_RE.search(rest)
    if due:
        args["due"] = due.group(1)
        rest = rest[:due.start()] + rest[due.end():]
    priority = _TASK_PRIORITY_RE.search(rest)
    if priority:
        args["priority"] = priority.group(1).lower()
        rest = rest[:priority.start()] + rest[priority.end():]
    args["text"] = rest.strip()
    return args


def _git_diff_args(m: "re.Match") -> Optional[Dict[str, Any]]:
    args: Dict[str, Any] = {"staged": True} if m.group("staged") else {}
    if m.group("path"):
        args["path"] = m.group("path")
    return args


def _groups(*names: str):
    def extract(m):
        return {n: m.group(n).strip() for n in names if m.group(n) is not None}
    return extract


def _build_rules() -> Tuple[FastRule, ...]:
    """Ordered rule table. Every rule owns a distinct leading keyword shape."""
    rules = [
        # ── Memory ───────────────────────────────────────
        (r"^remember:\s*(?P<text>.+)$", "remember", _groups("text"),
         ("remember: buy milk", "Remember: the door code is 4411")),

        (r"^recall:\s*(?P<query>.+)$", "recall", _groups("query"),
         ("recall: milk", "recall: door code")),

        # ── Tasks ────────────────────────────────────────
        (r"^(?:task|todo)\s+add\s+(?P<rest>.+)$", "task_add", _task_add_args,
         ("task add buy milk", "todo add file taxes --due 2026-04-15 --priority high")),

        (r"^(?:task|todo)\s+list(?:\s+(?P<status>open|done|all))?$", "task_list",
         lambda m: {"status": m.group("status").lower()} if m.group("status") else {},
         ("task list", "todo list done")),

        (r"^(?:task|todo)\s+done\s+#?(?P<id>\d+)$", "task_done",
         lambda m: {"id": int(m.group("id"))},
         ("task done 3", "todo done #12")),

        # ── Files ────────────────────────────────────────
        (r"^read\s+url\s+(?P<url>\S+)$", "read_url", _groups("url"),
         ("read url example.com", "read url https://example.com/a")),

        (r"^read\s+(?P<url>https?://\S+)$", "read_url", _groups("url"),
         ("read https://example.com",)),

        (r"^(?:read|read_file)\s+(?!https?://)(?P<path>(?!url$)\S+)$", "read_file", _groups("path"),
         ("read notes.txt", "read_file docs/plan.md")),

        (r"^(?:write|write_file)\s+(?P<path>\S+)\s+(?P<content>.+)$", "write_file",
         _groups("path", "content"),
         ("write notes.txt hello world", "write_file a/b.md # Title")),

        (r"^(?:delete|delete_file)\s+(?P<path>\S+)$", "delete_file", _groups("path"),
         ("delete old.txt", "delete_file /etc/passwd")),

        (r"^(?:list\s+files|list_files|ls)(?:\s+(?P<path>\S+))?$", "list_files", _groups("path"),
         ("list files", "ls src", "list_files docs")),

        # ── Commands ─────────────────────────────────────
        (r"^(?:run|run_cmd)\s+(?P<command>.+)$", "run_cmd", _groups("command"),
         ("run ls -la", "run_cmd git status")),

        # ── Git and search ───────────────────────────────
        (r"^git\s+status$", "git_status", lambda m: {},
         ("git status", "GIT STATUS")),

        (r"^git\s+diff(?P<staged>\s+--(?:staged|cached))?(?:\s+(?P<path>[^-\s]\S*))?$", "git_diff",
         _git_diff_args,
         ("git diff", "git diff --staged", "git diff src/app.py")),

        (r"^git\s+log(?:\s+(?:-n\s*|--limit\s+|-)?(?P<limit>\d+))?$", "git_log",
         lambda m: {"limit": int(m.group("limit"))} if m.group("limit") else {},
         ("git log", "git log -n 5", "git log --limit 20")),

        (r"^grep\s+(?P<pattern>\S+)(?:\s+(?P<path>\S+))?$", "grep",
         lambda m: {"pattern": m.group("pattern"), "path": m.group("path") or "."},
         ("grep TODO", "grep fixme src")),

        # ── Utilities ────────────────────────────────────
        (r"^(?:what time is it|what's the time|current time|time|date)\??$", "get_time",
         lambda m: {},
         ("time", "what time is it?", "date")),

        (r"^(?:calculate|calc|compute)[:\s]\s*(?P<expression>.+)$", "calculate", _groups("expression"),
         ("calculate 2 + 2", "calc: (3*4)/2")),

        (r"^weather\s+(?:in|for)\s+(?P<location>.+?)\??$", "get_weather", _groups("location"),
         ("weather in Paris", "weather for New York?")),
    ]
    return tuple(
        FastRule(tool, re.compile(pattern, re.IGNORECASE | re.DOTALL), extract, examples)
        for pattern, tool, extract, examples in rules
    )


FAST_RULES = _build_rules()


def match_fast_path(text: str, rules: Tuple[FastRule, ...] = FAST_RULES) -> Optional[ToolCall]:
    """First matching rule wins. Pure: no I/O."""
    text = text.strip()
    for rule in rules:
        m = rule.pattern.match(text)
        if not m:
            continue
        args = rule.extract(m)
        # Empty captured values are not a usable match.
        if args is None or any(v == "" for v in args.values()):
            continue
        return ToolCall(tool_name=rule.tool, args=args, stage=FAST_PATH, confidence=1.0)
    return None


# ── Stage 2: heuristic ───────────────────────────────────────

_WORD_RE = re.compile(r"[a-z0-9]+")
_URL_RE = re.compile(r"^(?:https?://|www\.)\S+$", re.IGNORECASE)
_PATH_RE = re.compile(r"^(?:\.{0,2}/)?[\w\-./]+\.\w{1,8}$|/")

_STOPWORDS = frozenset({
    "a", "an", "the", "to", "my", "me", "please", "for", "of", "on", "at",
    "with", "and", "this", "that", "some", "about", "i", "can", "you", "could",
    "is", "what", "whats", "from", "into", "in", "new", "all",
})

_SYNONYMS = {
    "note": "remember", "save": "remember", "store": "remember", "memorize": "remember",
    "find": "recall", "search": "recall", "lookup": "recall", "retrieve": "recall",
    "show": "read", "open": "read", "cat": "read", "view": "read", "display": "read",
    "create": "write", "erase": "delete", "remove": "delete", "rm": "delete",
    "execute": "run", "exec": "run", "launch": "run", "shell": "run",
    "complete": "done", "finish": "done", "finished": "done", "check": "done",
    "todo": "task", "todos": "task", "tasks": "task", "reminder": "task",
    "compute": "calculate", "eval": "calculate", "evaluate": "calculate", "math": "calculate",
    "clock": "time", "now": "time", "today": "date",
    "fetch": "url", "browse": "url", "download": "url", "website": "url", "page": "url",
    "files": "file", "directory": "files", "folder": "files", "dir": "files",
    "memories": "memory", "notes": "memory",
}


_KNOWN_SINGULARS = frozenset({"task", "file", "memory", "command", "url"})


def _norm(word: str) -> str:
    word = _SYNONYMS.get(word, word)
    if word.endswith("s") and len(word) > 3 and word[:-1] in _KNOWN_SINGULARS:
        word = word[:-1]
    return _SYNONYMS.get(word, word)


def _words(text: str) -> List[str]:
    return _WORD_RE.findall(text.lower())


@dataclass
class _Profile:
    spec: ToolSpec
    name_parts: FrozenSet[str]
    desc_words: FrozenSet[str]
    param_words: FrozenSet[str]


def _profile(spec: ToolSpec) -> _Profile:
    return _Profile(
        spec=spec,
        name_parts=frozenset(_norm(p) for p in spec.name.lower().split("_") if p),
        desc_words=frozenset(_norm(w) for w in _words(spec.description) if w not in _STOPWORDS),
        param_words=frozenset(_norm(w) for p in spec.parameters for w in _words(p)),
    )


def _score(profile: _Profile, verb: str, others: List[str]) -> float:
    score = 0.0
    if verb in profile.name_parts:
        score += 3.0
    elif verb in profile.desc_words:
        score += 1.0
    for tok in others:
        if tok in profile.name_parts:
            score += 2.0
        elif tok in profile.desc_words or tok in profile.param_words:
            score += 0.5
    return score


def _shape_hints(raw_tokens: List[str]) -> List[str]:
    hints = []
    for tok in raw_tokens:
        if _URL_RE.match(tok):
            hints.append("url")
        elif _PATH_RE.search(tok):
            hints.append("file")
    return hints


def _strip_edges(tokens: List[str], noise: FrozenSet[str]) -> List[str]:
    def is_noise(tok):
        low = tok.lower().strip(".,!?:;")
        return low in _STOPWORDS or _norm(low) in noise
    start, end = 0, len(tokens)
    while start < end and is_noise(tokens[start]):
        start += 1
    while end > start and is_noise(tokens[end - 1]):
        end -= 1
    return tokens[start:end]


def _fill_args(spec: ToolSpec, tokens: List[str]) -> Optional[Dict[str, Any]]:
    """Positional fill of required params; the last one takes the remainder."""
    required = list(spec.required)
    if not required:
        return {}
    if len(tokens) < len(required):
        return None
    args: Dict[str, Any] = {}
    for i, name in enumerate(required[:-1]):
        args[name] = tokens[i]
    args[required[-1]] = " ".join(tokens[len(required) - 1:])
    return args


class HeuristicParser:
    """Keyword-overlap scorer over the registry's ready/experimental tools."""

    def __init__(self, registry: ToolRegistry,
                 threshold: float = HEURISTIC_THRESHOLD, margin: float = HEURISTIC_MARGIN):
        self.registry = registry
        self.threshold = threshold
        self.margin = margin
        self._profiles = [_profile(s) for s in registry.list() if s.status != "stub"]

    def parse(self, text: str) -> Optional[ToolCall]:
        raw_tokens = text.strip().split()
        if not raw_tokens:
            return None
        verb = _norm(raw_tokens[0].lower().strip(".,!?:;"))
        others = [_norm(w) for tok in raw_tokens[1:] for w in _words(tok) if w not in _STOPWORDS]
        others = list(dict.fromkeys(others + _shape_hints(raw_tokens[1:])))

        scored = sorted(
            ((_score(p, verb, others), p) for p in self._profiles),
            key=lambda sp: sp[0], reverse=True,
        )
        if not scored:
            return None
        top_score, top = scored[0]
        runner_up = scored[1][0] if len(scored) > 1 else 0.0
        if top_score < self.threshold:
            return None
        if top_score - runner_up < self.margin:
            logger.debug(f"Heuristic tie: {top.spec.name}={top_score} vs runner-up={runner_up}")
            return None

        noise = top.name_parts | {verb}
        arg_tokens = _strip_edges(raw_tokens[1:], noise)
        args = _fill_args(top.spec, arg_tokens)
        if args is None:
            return None
        _, err = validate_args(top.spec, args)
        if err:
            logger.debug(f"Heuristic args rejected for {top.spec.name}: {err.message}")
            return None
        confidence = (top_score - runner_up) / top_score
        return ToolCall(tool_name=top.spec.name, args=args, stage=HEURISTIC,
                        confidence=round(confidence, 3))


# ── Router ───────────────────────────────────────────────────

def validate_input(text: Any) -> Optional[ToolError]:
    if not isinstance(text, str) or not text.strip():
        return ToolError(ErrorCode.VALIDATION_ERROR, "Input is empty", {"field": "input"})
    if len(text) > MAX_INPUT_LENGTH:
        return ToolError(ErrorCode.VALIDATION_ERROR,
                         f"Input exceeds {MAX_INPUT_LENGTH} characters",
                         {"field": "input", "length": len(text)})
    return None


class Router:
    def __init__(
        self,
        registry: ToolRegistry,
        cache: AsyncCache,
        settings: Settings,
        chat_model: Optional[ChatModel] = None,
        rules: Tuple[FastRule, ...] = FAST_RULES,
    ):
        self.registry = registry
        self.cache = cache
        self.settings = settings
        self.chat_model = chat_model
        self.rules = rules
        self.heuristic = HeuristicParser(registry)

    async def route(self, text: str, agent: Agent = SYSTEM) -> RouteOutcome:
        t0 = time.monotonic()
        outcome = await self._route(text, agent)
        outcome.elapsed_ms = (time.monotonic() - t0) * 1000
        if outcome.ok:
            call = outcome.call
            outcome.stage = call.stage
            outcome.model = call.model
            logger.info(f"Router [{call.stage}]: '{text[:80]}' -> {call.tool_name}({call.args}) "
                        f"conf={call.confidence}")
        else:
            logger.info(f"Router: '{str(text)[:80]}' -> {outcome.error.code.value}")
        return outcome

    async def _route(self, text: str, agent: Agent) -> RouteOutcome:
        err = validate_input(text)
        if err:
            return RouteOutcome(error=err)

        call = match_fast_path(text, self.rules)
        if call and call.tool_name in self.registry:
            return RouteOutcome(call=call)

        call = self._heuristic(text)
        if call and call.tool_name in self.registry:
            return RouteOutcome(call=call)

        outcome = await self._model_fallback(text, agent)
        outcome.stage = MODEL_FALLBACK
        return outcome

    def _heuristic(self, text: str) -> Optional[ToolCall]:
        key = make_key("heuristic", text)
        cached = self.cache.get(key)
        if isinstance(cached, ToolCall):
            return replace(cached, args=dict(cached.args), cache_hit=True)
        call = self.heuristic.parse(text)
        if call is not None:
            self.cache.set(key, replace(call, args=dict(call.args)))
        return call

    def _visible_tools(self, agent: Agent) -> List[str]:
        names = [s.name for s in self.registry.list() if s.status != "stub"]
        return [n for n in names if agent.allows(n)]

    async def _model_fallback(self, text: str, agent: Agent) -> RouteOutcome:
        if self.chat_model is None:
            return _no_match("No route matched and no model is configured")

        visible = self._visible_tools(agent)
        if not visible:
            return _no_match(f"Agent '{agent.name}' has no routable tools")

        messages = build_messages(text, self.registry.descriptions_for_llm(visible))
        model = self.chat_model
        key = make_key("route", model.provider, model.model, prompt_fingerprint(messages))

        try:
            outcome, hit = await asyncio.wait_for(
                self.cache.get_or_compute(
                    key,
                    lambda: self._ask_model(messages, frozenset(visible)),
                    should_store=lambda o: o.ok,
                ),
                timeout=self.settings.routing_timeout_s,
            )
        except asyncio.TimeoutError:
            logger.warning(f"Model fallback timed out after {self.settings.routing_timeout_s}s")
            return RouteOutcome(
                error=ToolError(ErrorCode.ROUTING_TIMEOUT,
                                f"Routing timed out after {self.settings.routing_timeout_s}s",
                                {"timeout_s": self.settings.routing_timeout_s}),
                model=model.model,
            )

        if outcome.ok:
            # Shared with other waiters on the same key; hand out a copy.
            call = replace(outcome.call, args=dict(outcome.call.args), cache_hit=hit)
            return RouteOutcome(call=call, model=model.model)
        return RouteOutcome(error=outcome.error, model=model.model)

    async def _ask_model(self, messages: List[Dict[str, str]], visible: FrozenSet[str]) -> RouteOutcome:
        model = self.chat_model
        attempts = max(1, self.settings.fallback_max_attempts)
        problem = ""
        for attempt in range(1, attempts + 1):
            try:
                raw = await model.complete(messages)
            except Exception as e:
                problem = f"model call failed: {e}"
                logger.warning(f"Model fallback attempt {attempt}/{attempts}: {problem}")
                if attempt < attempts:
                    await asyncio.sleep(0.25 * 2 ** (attempt - 1))
                continue

            choice = parse_tool_response(raw)
            if choice is None:
                problem = "malformed response"
                logger.warning(f"Model fallback attempt {attempt}/{attempts}: {problem}")
                continue
            if choice.tool == NO_TOOL:
                return _no_match("Model found no matching tool", attempts=attempt)

            tool = self.registry.lookup(choice.tool)
            if tool is None or choice.tool not in visible:
                problem = f"unknown tool '{choice.tool}'"
                logger.warning(f"Model fallback attempt {attempt}/{attempts}: {problem}")
                continue

            # The model never grants confirmation on the user's behalf.
            choice.args.pop(CONFIRM_ARG, None)
            args, err = validate_args(tool.spec, choice.args)
            if err:
                problem = err.message
                logger.warning(f"Model fallback attempt {attempt}/{attempts}: {problem}")
                continue

            if choice.confidence < MIN_MODEL_CONFIDENCE:
                return _no_match(f"Model confidence {choice.confidence} below threshold",
                                 tool=choice.tool, attempts=attempt)

            return RouteOutcome(call=ToolCall(
                tool_name=choice.tool, args=args, stage=MODEL_FALLBACK,
                confidence=choice.confidence, model=model.model,
            ))

        return _no_match(f"Model fallback gave no valid tool call after {attempts} attempts",
                         attempts=attempts, last_problem=problem)
