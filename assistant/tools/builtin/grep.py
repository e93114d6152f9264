"""Regex search across files under an allowed path."""
import asyncio
import logging
import os
import re
from typing import Optional

from ..contract import ErrorCode, ToolError, ToolResult, failure, success
from ..registry import register_tool, ToolParam

logger = logging.getLogger(__name__)

MAX_FILE_BYTES = 1024 * 1024
MAX_MATCHES = 1000
# Build output and dependency caches are not worth searching.
_SKIP_DIRS = frozenset({"node_modules", "dist", "coverage", "__pycache__"})


def _walk(ctx, root: str):
    """Yield files under root that ctx.paths still allows, skipping hidden entries."""
    for dirpath, dirnames, filenames in os.walk(root):
        dirnames[:] = sorted(d for d in dirnames if not d.startswith(".") and d not in _SKIP_DIRS)
        for name in sorted(filenames):
            if name.startswith("."):
                continue
            resolved = ctx.paths.resolve(os.path.join(dirpath, name), "read")
            if isinstance(resolved, ToolError) or not os.path.isfile(resolved):
                continue
            yield resolved


def _search(ctx, target: str, regex: "re.Pattern", limit: int):
    files = [target] if os.path.isfile(target) else _walk(ctx, target)
    matches, skipped = [], []
    base = ctx.paths.base_dir
    for path in files:
        rel = os.path.relpath(path, base)
        try:
            if os.path.getsize(path) > MAX_FILE_BYTES:
                skipped.append(rel)
                continue
            with open(path, encoding="utf-8") as f:
                lines = f.read().splitlines()
        except (OSError, UnicodeDecodeError):
            # Binary or unreadable files are passed over, as grep does.
            continue
        for lineno, line in enumerate(lines, start=1):
            for m in regex.finditer(line):
                matches.append({"file": rel, "line": lineno, "text": line.strip(), "match": m.group(0)})
                if len(matches) >= limit:
                    return matches, skipped, True
    return matches, skipped, False


@register_tool(
    "grep",
    description="Search text in files with a regular expression",
    params=[
        ToolParam("pattern", description="regular expression"),
        ToolParam("path", description="file or directory to search in"),
        ToolParam("case_sensitive", type="boolean", description="default false", required=False),
        ToolParam("max_results", type="integer", description="stop after this many matches",
                  required=False),
    ],
)
async def grep(ctx, pattern: str, path: str, case_sensitive: bool = False,
               max_results: Optional[int] = None) -> ToolResult:
    target = ctx.paths.resolve(path, "read")
    if isinstance(target, ToolError):
        return ToolResult(ok=False, error=target)
    if not os.path.exists(target):
        return failure(ErrorCode.EXEC_ERROR, f"Path not found: {path}", {"path": path})
    if not (os.path.isfile(target) or os.path.isdir(target)):
        return failure(ErrorCode.EXEC_ERROR, f"Not a file or directory: {path}", {"path": path})
    try:
        regex = re.compile(pattern, 0 if case_sensitive else re.IGNORECASE)
    except re.error as e:
        return failure(ErrorCode.EXEC_ERROR, f"Invalid regex pattern: {e}", {"pattern": pattern})

    limit = MAX_MATCHES if not max_results or max_results < 1 else min(max_results, MAX_MATCHES)
    matches, skipped, truncated = await asyncio.to_thread(_search, ctx, target, regex, limit)
    logger.info(f"grep '{pattern}' in {target}: {len(matches)} match(es)")
    out = {
        "pattern": pattern,
        "case_sensitive": bool(case_sensitive),
        "count": len(matches),
        "matches": matches,
        "truncated": truncated,
    }
    if skipped:
        out["skipped_files"] = skipped
    return success(out)
