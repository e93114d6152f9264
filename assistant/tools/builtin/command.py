"""Command tool: runs an allow-listed executable without a shell."""
import asyncio
import logging
from typing import List, Tuple, Union

from ..contract import ErrorCode, ToolError, ToolResult, failure, success
from ..registry import register_tool, ToolParam

logger = logging.getLogger(__name__)

MAX_OUTPUT_CHARS = 10_000


def _clip(data: bytes) -> str:
    text = data.decode("utf-8", errors="replace")
    if len(text) > MAX_OUTPUT_CHARS:
        return text[:MAX_OUTPUT_CHARS] + "\n...[truncated]"
    return text


async def run_process(argv: List[str], cwd: str, timeout: float) -> Union[Tuple[int, str, str], ToolResult]:
    """Run argv (already validated) with no shell.

    Returns (exit_code, stdout, stderr), or a failed ToolResult when the
    process cannot start or outlives the timeout.
    """
    try:
        proc = await asyncio.create_subprocess_exec(
            *argv,
            cwd=cwd,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except OSError as e:
        return failure(ErrorCode.EXEC_ERROR, f"Cannot start '{argv[0]}': {e.strerror or e}",
                       {"command": argv[0]})

    try:
        stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=timeout)
    except asyncio.TimeoutError:
        proc.kill()
        await proc.wait()
        return failure(ErrorCode.EXEC_ERROR, f"Command timed out after {timeout}s", {"command": argv[0]})

    logger.info(f"{argv[0]} exited {proc.returncode}")
    return proc.returncode, _clip(stdout), _clip(stderr)


@register_tool(
    "run_cmd",
    description="Run an allowed shell command",
    params=[ToolParam("command", description="command line, e.g. 'ls -la'")],
)
async def run_cmd(ctx, command: str) -> ToolResult:
    argv = ctx.commands.split(command)
    if isinstance(argv, ToolError):
        return ToolResult(ok=False, error=argv)

    ran = await run_process(argv, ctx.paths.base_dir, ctx.settings.command_timeout_s)
    if isinstance(ran, ToolResult):
        return ran
    exit_code, stdout, stderr = ran
    out = {"command": argv, "exit_code": exit_code, "stdout": stdout, "stderr": stderr}
    if exit_code != 0:
        return failure(ErrorCode.EXEC_ERROR, f"Command exited with status {exit_code}", out)
    return success(out)
