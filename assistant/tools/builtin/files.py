"""File tools. Every path goes through ctx.paths, which enforces allow_paths."""
import asyncio
import logging
import os

from ..contract import ErrorCode, ToolError, ToolResult, failure, success
from ..registry import register_tool, ToolParam

logger = logging.getLogger(__name__)

MAX_READ_BYTES = 1024 * 1024
MAX_LIST_ENTRIES = 500
_HIDDEN = frozenset({".git", ".env", "node_modules"})


def _denied(err: ToolError) -> ToolResult:
    return ToolResult(ok=False, error=err)


@register_tool(
    "read_file",
    description="Read a text file",
    params=[ToolParam("path", description="file path relative to the base directory")],
)
async def read_file(ctx, path: str) -> ToolResult:
    resolved = ctx.paths.resolve(path, "read")
    if isinstance(resolved, ToolError):
        return _denied(resolved)
    if not os.path.isfile(resolved):
        return failure(ErrorCode.EXEC_ERROR, f"File not found: {path}", {"path": path})

    def _read():
        with open(resolved, "rb") as f:
            data = f.read(MAX_READ_BYTES + 1)
        return data

    try:
        data = await asyncio.to_thread(_read)
    except OSError as e:
        return failure(ErrorCode.EXEC_ERROR, f"Cannot read {path}: {e.strerror or e}", {"path": path})
    truncated = len(data) > MAX_READ_BYTES
    content = data[:MAX_READ_BYTES].decode("utf-8", errors="replace")
    return success({"path": resolved, "content": content, "truncated": truncated})


@register_tool(
    "write_file",
    description="Write text content to a file, creating parent directories",
    params=[
        ToolParam("path", description="file path relative to the base directory"),
        ToolParam("content", description="text to write"),
    ],
)
async def write_file(ctx, path: str, content: str) -> ToolResult:
    resolved = ctx.paths.resolve(path, "write")
    if isinstance(resolved, ToolError):
        return _denied(resolved)
    if os.path.isdir(resolved):
        return failure(ErrorCode.EXEC_ERROR, f"Is a directory: {path}", {"path": path})

    def _write():
        os.makedirs(os.path.dirname(resolved), exist_ok=True)
        with open(resolved, "w", encoding="utf-8") as f:
            f.write(content)

    try:
        await asyncio.to_thread(_write)
    except OSError as e:
        return failure(ErrorCode.EXEC_ERROR, f"Cannot write {path}: {e.strerror or e}", {"path": path})
    logger.info(f"Wrote {len(content)} chars to {resolved}")
    return success({"path": resolved, "bytes": len(content.encode("utf-8"))})


@register_tool(
    "list_files",
    description="List files in a directory",
    params=[ToolParam("path", description="directory, defaults to the base directory", required=False)],
)
async def list_files(ctx, path: str = ".") -> ToolResult:
    resolved = ctx.paths.resolve(path, "read")
    if isinstance(resolved, ToolError):
        return _denied(resolved)
    if not os.path.isdir(resolved):
        return failure(ErrorCode.EXEC_ERROR, f"Not a directory: {path}", {"path": path})

    def _list():
        entries = []
        with os.scandir(resolved) as it:
            for entry in it:
                if entry.name.lower() in _HIDDEN:
                    continue
                entries.append(entry.name + ("/" if entry.is_dir() else ""))
        return sorted(entries)

    try:
        entries = await asyncio.to_thread(_list)
    except OSError as e:
        return failure(ErrorCode.EXEC_ERROR, f"Cannot list {path}: {e.strerror or e}", {"path": path})
    return success({
        "path": resolved,
        "entries": entries[:MAX_LIST_ENTRIES],
        "truncated": len(entries) > MAX_LIST_ENTRIES,
    })


@register_tool(
    "delete_file",
    description="Delete a file",
    params=[ToolParam("path", description="file path relative to the base directory")],
)
async def delete_file(ctx, path: str) -> ToolResult:
    resolved = ctx.paths.resolve(path, "write")
    if isinstance(resolved, ToolError):
        return _denied(resolved)
    if not os.path.lexists(resolved):
        return failure(ErrorCode.EXEC_ERROR, f"File not found: {path}", {"path": path})
    if os.path.isdir(resolved):
        return failure(ErrorCode.EXEC_ERROR, f"Refusing to delete a directory: {path}", {"path": path})
    try:
        await asyncio.to_thread(os.remove, resolved)
    except OSError as e:
        return failure(ErrorCode.EXEC_ERROR, f"Cannot delete {path}: {e.strerror or e}", {"path": path})
    logger.info(f"Deleted {resolved}")
    return success({"path": resolved, "deleted": True})
