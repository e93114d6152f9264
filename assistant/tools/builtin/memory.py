"""Memory tools: remember notes, recall them by keyword."""
import logging
import re
from datetime import datetime, timezone

from ..contract import ErrorCode, ToolResult, failure, success
from ..registry import register_tool, ToolParam

logger = logging.getLogger(__name__)

MEMORY_FILE = "memory.jsonl"
DEFAULT_RECALL_LIMIT = 5

_TERM_RE = re.compile(r"\w+")


@register_tool(
    "remember",
    description="Save a note to long-term memory",
    params=[
        ToolParam("text", description="the note to remember"),
    ],
)
async def remember(ctx, text: str) -> ToolResult:
    text = text.strip()
    if not text:
        return failure(ErrorCode.VALIDATION_ERROR, "Nothing to remember", {"field": "text"})

    entry = {"ts": datetime.now(timezone.utc).isoformat(), "text": text}
    limit = max(1, ctx.settings.memory_limit)

    def add(records):
        records.append(entry)
        if len(records) > limit:
            del records[:-limit]
        return len(records)

    count = await ctx.store.update(ctx.data_path(MEMORY_FILE), add)
    logger.info(f"Memory saved ({count} total): {text[:60]}")
    return success({"saved": text, "ts": entry["ts"], "count": count})


def score_entry(text: str, terms, position: int, total: int) -> float:
    lowered = text.lower()
    hits = sum(lowered.count(t) for t in terms)
    if not hits:
        return 0.0
    # Newer entries win ties.
    return hits + 0.5 * (position + 1) / max(total, 1)


@register_tool(
    "recall",
    description="Search saved memory notes by keyword",
    params=[
        ToolParam("query", description="keywords to look for"),
        ToolParam("limit", type="integer", description="max results", required=False),
    ],
)
async def recall(ctx, query: str, limit: int = DEFAULT_RECALL_LIMIT) -> ToolResult:
    terms = [t.lower() for t in _TERM_RE.findall(query)]
    if not terms:
        return failure(ErrorCode.VALIDATION_ERROR, "Query has no searchable words", {"field": "query"})

    records = await ctx.store.read(ctx.data_path(MEMORY_FILE))
    total = len(records)
    scored = []
    for i, rec in enumerate(records):
        text = rec.get("text")
        if not isinstance(text, str):
            continue
        score = score_entry(text, terms, i, total)
        if score > 0:
            scored.append((score, rec))
    scored.sort(key=lambda sr: sr[0], reverse=True)
    matches = [{"ts": r.get("ts"), "text": r["text"], "score": round(s, 3)}
               for s, r in scored[:max(1, limit)]]
    return success({"query": query, "matches": matches})
