"""Read-only git tools. `git` must be in allow_commands; paths go through ctx.paths."""
import logging
from typing import Optional, Union

from ..contract import ErrorCode, ToolError, ToolResult, failure, success
from ..registry import register_tool, ToolParam
from .command import run_process

logger = logging.getLogger(__name__)

GIT = "git"
GIT_TIMEOUT_S = 10.0
DEFAULT_LOG_LIMIT = 10
MAX_LOG_LIMIT = 50
_FIELD_SEP = "\x1f"


async def _git(ctx, *args: str) -> Union[str, ToolResult]:
    """Run `git <args>` in the base directory; returns stdout or a failed result."""
    err = ctx.commands.validate(GIT)
    if err:
        return ToolResult(ok=False, error=err)
    # The whole work tree is reported on, so the base directory itself must be readable.
    root = ctx.paths.resolve(".", "read")
    if isinstance(root, ToolError):
        return ToolResult(ok=False, error=root)

    timeout = min(GIT_TIMEOUT_S, ctx.settings.command_timeout_s)
    ran = await run_process([GIT, "--no-pager", *args], ctx.paths.base_dir, timeout)
    if isinstance(ran, ToolResult):
        return ran
    exit_code, stdout, stderr = ran
    if exit_code != 0:
        message = stderr.strip() or f"git {args[0]} failed with status {exit_code}"
        return failure(ErrorCode.EXEC_ERROR, message, {"command": [GIT, *args], "exit_code": exit_code})
    return stdout.rstrip()


@register_tool(
    "git_status",
    description="Git working tree status: modified, staged and untracked files",
)
async def git_status(ctx) -> ToolResult:
    out = await _git(ctx, "status", "--short")
    if isinstance(out, ToolResult):
        return out
    files = [
        {"status": line[:2].strip(), "path": line[3:]}
        for line in out.splitlines() if line.strip()
    ]
    summary = f"{len(files)} file(s) changed" if files else "Working tree clean"
    return success({"clean": not files, "files": files, "summary": summary})


@register_tool(
    "git_diff",
    description="Git diff summary of staged or unstaged changes",
    params=[
        ToolParam("staged", type="boolean", description="diff the index instead of the work tree",
                  required=False),
        ToolParam("path", description="limit the diff to this path", required=False),
    ],
)
async def git_diff(ctx, staged: bool = False, path: Optional[str] = None) -> ToolResult:
    args = ["diff"]
    if staged:
        args.append("--staged")
    args.append("--stat")
    if path:
        if path.startswith("-"):
            return failure(ErrorCode.VALIDATION_ERROR, "Path cannot start with '-'",
                           {"field": "path", "path": path})
        resolved = ctx.paths.resolve(path, "read")
        if isinstance(resolved, ToolError):
            return ToolResult(ok=False, error=resolved)
        args += ["--", resolved]

    out = await _git(ctx, *args)
    if isinstance(out, ToolResult):
        return out
    return success({"staged": bool(staged), "diff": out or "(no changes)", "empty": not out})


@register_tool(
    "git_log",
    description="Recent git commits",
    params=[
        ToolParam("limit", type="integer", description=f"number of commits, max {MAX_LOG_LIMIT}",
                  required=False),
    ],
)
async def git_log(ctx, limit: int = DEFAULT_LOG_LIMIT) -> ToolResult:
    limit = max(1, min(int(limit), MAX_LOG_LIMIT))
    fmt = _FIELD_SEP.join(("%h", "%s", "%an", "%ar"))
    out = await _git(ctx, "log", f"-{limit}", f"--format={fmt}")
    if isinstance(out, ToolResult):
        return out
    commits = []
    for line in out.splitlines():
        parts = line.split(_FIELD_SEP)
        if len(parts) != 4:
            logger.debug(f"Skipping unparseable git log line: {line!r}")
            continue
        sha, message, author, date = parts
        commits.append({"hash": sha, "message": message, "author": author, "date": date})
    return success({"count": len(commits), "commits": commits})
