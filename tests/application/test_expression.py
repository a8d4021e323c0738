"""
Tests for the sandboxed expression evaluator.
"""

import msgspec
import pytest

from tabflow.application.expression import (
    evaluate_expression,
    js_string,
    loose_equals,
    strict_equals,
    tokenize,
    truthy,
)
from tabflow.domain.exception import ExpressionError
from tabflow.domain.value_object import ForEachState, StepResult

BINDINGS = {
    "vars": {"count": 10, "name": "Ada", "items": [1, 2, 3], "empty": [], "nothing": None, "nested": {"a": {"b": 5}}},
    "steps": {"login": StepResult(result={"hasError": False, "data": "ok"}, success=True)},
    "forEach": ForEachState(item={"status": "done"}, index=0, total=2),
    "loop": msgspec.UNSET,
}


class TestTokenize:
    """Test cases for the tokenizer."""

    def test_tokens(self):
        """Test literals, names, keywords and operators."""
        assert tokenize("a.b >= 1.5 and !'x'") == [
            ("name", "a"),
            ("op", "."),
            ("name", "b"),
            ("op", ">="),
            ("literal", 1.5),
            ("op", "&&"),
            ("op", "!"),
            ("literal", "x"),
            ("eof", None),
        ]

    def test_string_escapes(self):
        """Test escaped quotes inside strings."""
        assert tokenize(r'"say \"hi\""')[0] == ("literal", 'say "hi"')

    def test_unknown_character(self):
        """Test characters outside the grammar are rejected."""
        with pytest.raises(ExpressionError):
            tokenize("a # b")


class TestEvaluateExpression:
    """Test cases for evaluate_expression."""

    @pytest.mark.parametrize(
        "source, expected",
        [
            ("vars.count > 5", True),
            ("vars.count <= 9", False),
            ("vars.count === 10", True),
            ("vars.count !== 10", False),
            ("vars.name == 'Ada'", True),
            ("vars.items.length", 3),
            ("vars.items[1]", 2),
            ("vars.items[vars.items.length - 1]", 3),
            ("vars.nested.a.b + 1", 6),
            ("vars.nested['a']['b'] * 2", 10),
            ("(1 + 2) * 3", 9),
            ("1 + 2 * 3", 7),
            ("7 % 4", 3),
            ("10 / 4", 2.5),
            ("-vars.count", -10),
            ("'n=' + vars.count", "n=10"),
            ("steps.login.success && steps.login.result.data", "ok"),
            ("vars.nothing || 'fallback'", "fallback"),
            ("vars.count > 5 ? 'big' : 'small'", "big"),
            ("forEach.item.status === \"done\"", True),
            ("forEach.index + 1 === forEach.total - 0.5 * 2", True),
            ("not vars.empty", False),
            ("vars.missing === undefined", True),
            ("vars.nothing === null", True),
            ("vars.nothing == undefined", True),
            ("vars.nothing === undefined", False),
            ("true === 1", False),
            ("[1, 2][0]", 1),
            ("'abc'.length", 3),
            ("vars.name < 'Bob'", True),
            ("vars.name < 3", False),
        ],
    )
    def test_expressions(self, source, expected):
        """Test the value of supported expressions."""
        assert evaluate_expression(source, BINDINGS) == expected

    def test_short_circuit_skips_errors(self):
        """Test the right operand is not evaluated when the left decides."""
        assert evaluate_expression("false && loop.index", BINDINGS) is False
        assert evaluate_expression("true || loop.index", BINDINGS) is True

    @pytest.mark.parametrize(
        "source",
        [
            "",
            "vars.count >",
            "(1 + 2",
            "vars.",
            "loop.index",
            "vars.nothing.x",
            "undefinedName",
            "vars.name - 1",
            "1 / 0",
            "a = 1",
            "vars.items.pop()",
        ],
    )
    def test_errors_raise_expression_error(self, source):
        """Test invalid expressions raise ExpressionError."""
        with pytest.raises(ExpressionError):
            evaluate_expression(source, BINDINGS)

    def test_python_attributes_are_not_reachable(self):
        """Test member access only reads data, not Python attributes."""
        assert evaluate_expression("vars.items.__class__", BINDINGS) is msgspec.UNSET
        assert evaluate_expression("forEach.__struct_fields__", BINDINGS) is msgspec.UNSET


class TestValueSemantics:
    """Test cases for truthiness, equality and string forms."""

    def test_truthy(self):
        """Test JavaScript-style truthiness."""
        assert not truthy(None)
        assert not truthy(msgspec.UNSET)
        assert not truthy(0)
        assert not truthy("")
        assert not truthy(float("nan"))
        assert truthy([])
        assert truthy({})
        assert truthy("0")

    def test_strict_equals(self):
        """Test strict equality never coerces."""
        assert strict_equals(1, 1.0)
        assert strict_equals([1, {"a": True}], [1, {"a": True}])
        assert not strict_equals(True, 1)
        assert not strict_equals(None, msgspec.UNSET)
        assert not strict_equals("1", 1)
        assert not strict_equals([1], [True])

    def test_loose_equals(self):
        """Test loose equality only adds null == undefined."""
        assert loose_equals(None, msgspec.UNSET)
        assert not loose_equals(0, None)

    def test_js_string(self):
        """Test the string form used in concatenation and conditions."""
        assert js_string(None) == "null"
        assert js_string(msgspec.UNSET) == "undefined"
        assert js_string(False) == "false"
        assert js_string(4.0) == "4"
        assert js_string(["a", 1]) == '["a",1]'

    def test_js_string_without_json_form(self):
        """Test containers msgspec cannot encode fall back to their str form."""
        value = {"el": object()}

        assert js_string(value) == str(value)
