"""Utility tools: current time and a safe arithmetic evaluator."""
import ast
import math
import operator
from datetime import datetime

from ..contract import ErrorCode, ToolResult, failure, success
from ..registry import register_tool, ToolParam

_BIN_OPS = {
    ast.Add: operator.add,
    ast.Sub: operator.sub,
    ast.Mult: operator.mul,
    ast.Div: operator.truediv,
    ast.FloorDiv: operator.floordiv,
    ast.Mod: operator.mod,
    ast.Pow: operator.pow,
}
_UNARY_OPS = {ast.UAdd: operator.pos, ast.USub: operator.neg}
_FUNCS = {
    "sqrt": math.sqrt, "abs": abs, "round": round, "min": min, "max": max,
    "sin": math.sin, "cos": math.cos, "tan": math.tan, "log": math.log, "exp": math.exp,
}
_CONSTS = {"pi": math.pi, "e": math.e}

MAX_EXPRESSION_CHARS = 200
MAX_EXPONENT = 1000


class UnsafeExpression(ValueError):
    pass


def safe_eval(expression: str):
    """Evaluate +-*/ arithmetic with a few math functions. No names, no attributes."""
    tree = ast.parse(expression.replace("^", "**"), mode="eval")
    return _eval(tree.body)


def _eval(node):
    if isinstance(node, ast.Constant) and isinstance(node.value, (int, float)) and not isinstance(node.value, bool):
        return node.value
    if isinstance(node, ast.BinOp) and type(node.op) in _BIN_OPS:
        left, right = _eval(node.left), _eval(node.right)
        if isinstance(node.op, ast.Pow) and abs(right) > MAX_EXPONENT:
            raise UnsafeExpression("exponent too large")
        return _BIN_OPS[type(node.op)](left, right)
    if isinstance(node, ast.UnaryOp) and type(node.op) in _UNARY_OPS:
        return _UNARY_OPS[type(node.op)](_eval(node.operand))
    if isinstance(node, ast.Name) and node.id in _CONSTS:
        return _CONSTS[node.id]
    if (isinstance(node, ast.Call) and isinstance(node.func, ast.Name)
            and node.func.id in _FUNCS and not node.keywords):
        return _FUNCS[node.func.id](*[_eval(a) for a in node.args])
    raise UnsafeExpression(f"unsupported expression element: {type(node).__name__}")


@register_tool(
    "calculate",
    description="Evaluate an arithmetic expression",
    params=[ToolParam("expression", description="e.g. '(3 + 4) * 2'")],
)
async def calculate(ctx, expression: str) -> ToolResult:
    if len(expression) > MAX_EXPRESSION_CHARS:
        return failure(ErrorCode.VALIDATION_ERROR, "Expression too long", {"field": "expression"})
    try:
        value = safe_eval(expression)
    except (SyntaxError, UnsafeExpression) as e:
        return failure(ErrorCode.VALIDATION_ERROR, f"Invalid expression: {e}", {"field": "expression"})
    except (ArithmeticError, ValueError, TypeError) as e:
        return failure(ErrorCode.EXEC_ERROR, f"Cannot evaluate: {e}", {"expression": expression})
    if isinstance(value, float) and value.is_integer() and abs(value) < 2 ** 53:
        value = int(value)
    return success({"expression": expression, "value": value})


@register_tool("get_time", description="Get the current local date and time")
async def get_time(ctx) -> ToolResult:
    now = datetime.now().astimezone()
    return success({
        "iso": now.isoformat(timespec="seconds"),
        "date": now.strftime("%Y-%m-%d"),
        "time": now.strftime("%H:%M:%S"),
        "weekday": now.strftime("%A"),
        "timezone": now.tzname(),
    })
