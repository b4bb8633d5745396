"""Tests for the built-in calculator tool."""

import pytest

from turnstream.domain.tool.builtin.calculator import (
    EMPTY_EXPRESSION_ERROR,
    create_calculator_tool,
    evaluate_math_expression,
    format_number,
    run_calculator,
)


class TestEvaluation:
    @pytest.mark.parametrize("expression,expected", [
        ("1 + 2 * 3", "7"),
        ("(5 + 3) * 2 ** 3", "64"),
        ("sqrt(16)", "4"),
        ("-3 + +2", "-1"),
        ("10 / 4", "2.5"),
        ("7 % 3", "1"),
        ("-7 % 3", "-1"),
        ("max(1, 9, 4) - min(3, 2)", "7"),
        ("round(2.5)", "3"),
        ("round(-2.5)", "-2"),
        ("floor(2.7) + ceil(2.1)", "5"),
        ("atan2(0, 1)", "0"),
        ("log10(1000)", "3"),
        ("pow(2, 10)", "1024"),
    ])
    def test_expressions(self, expression, expected):
        assert run_calculator({"expression": expression}) == expected

    def test_constants(self):
        assert evaluate_math_expression("pi") == pytest.approx(3.141592653589793)
        assert evaluate_math_expression("E") == pytest.approx(2.718281828459045)

    def test_fractional_results_keep_precision(self):
        assert run_calculator({"expression": "1 / 3"}) == "0.3333333333333333"


class TestRejections:
    @pytest.mark.parametrize("expression", [
        "1 / 0",
        "5 % 0",
        "sqrt(-1)",
        "__import__('os')",
        "x + 1",
        "random()",
        "[1, 2]",
        "1 +",
        "'text'",
        "10 ** 400",
        "(-8) ** 0.5",
        "abs(x=1)",
    ])
    def test_invalid_expressions_raise(self, expression):
        with pytest.raises(ValueError, match="Failed to evaluate expression"):
            evaluate_math_expression(expression)

    @pytest.mark.parametrize("tool_input", [{}, {"expression": ""}, {"expression": "   "}, {"expression": 12}])
    def test_missing_expression_returns_guidance(self, tool_input):
        assert run_calculator(tool_input) == EMPTY_EXPRESSION_ERROR


class TestFormatting:
    def test_integral_values_print_as_integers(self):
        assert format_number(4.0) == "4"
        assert format_number(-0.0) == "0"

    def test_huge_values_keep_float_form(self):
        assert format_number(1e22) == "1e+22"


class TestDescriptor:
    def test_calculator_is_eager_builtin(self):
        tool = create_calculator_tool()

        assert tool.name == "calculator"
        assert tool.eager is True
        assert tool.category == "builtin"
        assert "defer_loading" not in tool.get_definition(enable_tool_search=True)
        assert tool.input_schema["required"] == ["expression"]
