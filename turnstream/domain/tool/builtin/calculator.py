from typing import Dict, Any
import ast
import math
import operator

from turnstream.domain.tool.tool_models import ToolDescriptor

EMPTY_EXPRESSION_ERROR = (
    'Error: Missing or empty "expression" parameter. '
    'Please provide a mathematical expression as a string.'
)

CONSTANTS = {"pi": math.pi, "e": math.e, "PI": math.pi, "E": math.e}


def _round_half_up(value: float) -> float:
    return math.floor(value + 0.5)


FUNCTIONS = {
    "sqrt": math.sqrt,
    "abs": abs,
    "sin": math.sin,
    "cos": math.cos,
    "tan": math.tan,
    "asin": math.asin,
    "acos": math.acos,
    "atan": math.atan,
    "atan2": math.atan2,
    "log": math.log,
    "log10": math.log10,
    "log2": math.log2,
    "exp": math.exp,
    "pow": math.pow,
    "floor": math.floor,
    "ceil": math.ceil,
    "round": _round_half_up,
    "min": min,
    "max": max,
}

BINARY_OPERATORS = {
    ast.Add: operator.add,
    ast.Sub: operator.sub,
    ast.Mult: operator.mul,
    ast.Div: operator.truediv,
    ast.Mod: math.fmod,
    ast.Pow: operator.pow,
}

UNARY_OPERATORS = {
    ast.UAdd: operator.pos,
    ast.USub: operator.neg,
}


def _evaluate(node: ast.AST) -> float:
    if isinstance(node, ast.Expression):
        return _evaluate(node.body)
    if isinstance(node, ast.Constant) and isinstance(node.value, (int, float)) and not isinstance(node.value, bool):
        return float(node.value)
    if isinstance(node, ast.Name):
        if node.id in CONSTANTS:
            return CONSTANTS[node.id]
        raise ValueError(f"{node.id} is not defined")
    if isinstance(node, ast.BinOp) and type(node.op) in BINARY_OPERATORS:
        left, right = _evaluate(node.left), _evaluate(node.right)
        if isinstance(node.op, (ast.Div, ast.Mod)) and right == 0:
            raise ValueError("Expression did not evaluate to a valid number")
        return float(BINARY_OPERATORS[type(node.op)](left, right))
    if isinstance(node, ast.UnaryOp) and type(node.op) in UNARY_OPERATORS:
        return UNARY_OPERATORS[type(node.op)](_evaluate(node.operand))
    if isinstance(node, ast.Call) and isinstance(node.func, ast.Name) and not node.keywords:
        function = FUNCTIONS.get(node.func.id)
        if function is None:
            raise ValueError(f"{node.func.id} is not a supported function")
        return float(function(*[_evaluate(arg) for arg in node.args]))
    raise ValueError(f"Unsupported syntax: {type(node).__name__}")


def evaluate_math_expression(expression: str) -> float:
    """Evaluate an arithmetic expression over floats"""
    try:
        tree = ast.parse(expression.strip(), mode="eval")
        result = _evaluate(tree)
    except (SyntaxError, ValueError, TypeError, OverflowError, ZeroDivisionError) as e:
        raise ValueError(f"Failed to evaluate expression: {e}") from e
    if isinstance(result, complex) or not math.isfinite(result):
        raise ValueError("Failed to evaluate expression: Expression did not evaluate to a valid number")
    return result


def format_number(value: float) -> str:
    if value.is_integer() and abs(value) < 1e21:
        return str(int(value))
    return repr(value)


def run_calculator(tool_input: Dict[str, Any]) -> str:
    expression = tool_input.get("expression")
    if not isinstance(expression, str) or not expression.strip():
        return EMPTY_EXPRESSION_ERROR
    return format_number(evaluate_math_expression(expression))


def create_calculator_tool() -> ToolDescriptor:
    return ToolDescriptor(
        name="calculator",
        description=(
            "Evaluates mathematical expressions and returns the numerical result. Supports "
            "+, -, *, /, %, ** and parentheses, the functions sqrt, abs, sin, cos, tan, asin, "
            "acos, atan, atan2, log, log10, log2, exp, pow, floor, ceil, round, min, max and "
            "the constants pi and e."
        ),
        input_schema={
            "type": "object",
            "properties": {
                "expression": {
                    "type": "string",
                    "description": 'The expression to evaluate, e.g. "sqrt(16)" or "(5 + 3) * 2 ** 3"',
                },
            },
            "required": ["expression"],
            "additionalProperties": False,
        },
        eager=True,
        category="builtin",
        execute=run_calculator,
    )
