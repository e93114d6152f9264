"""Tool system: contract, registry, router, executor."""
from .contract import ErrorCode, ToolError, ToolResult, exit_code_for
from .registry import register_tool, builtin_tools, ToolParam, ToolSpec, ToolDef, ToolRegistry

# Import builtin tools to trigger @register_tool decorators
from .builtin import *  # noqa
