"""
Tests for application adapters.

This module tests BindingResolver, ConditionEvaluator and ParameterBinder.
"""

import pytest

from tabflow.application.adapter import BindingResolver, ConditionEvaluator, ParameterBinder, to_text
from tabflow.domain.entity import ExecutionContext
from tabflow.domain.port import PluginBase
from tabflow.domain.value_object import StepResult


@pytest.fixture
def ctx() -> ExecutionContext:
    return (
        ExecutionContext.create()
        .set_vars(
            {
                "userId": 123,
                "name": "World",
                "flag": True,
                "none": None,
                "tags": ["red", "green"],
                "profile": {"city": "Seoul"},
                "status": "OK",
                "ratio": 2.5,
            }
        )
        .set_step_result("fetch", StepResult(result={"hasError": False, "message": None, "data": [1, 2, 3]}))
        .set_step_result("broken", StepResult(result={"hasError": True, "message": "no"}, success=False))
    )


class TestToText:
    """Test cases for the template text form."""

    def test_values(self):
        """Test each kind of value renders as expected."""
        assert to_text(None) == ""
        assert to_text(True) == "true"
        assert to_text(False) == "false"
        assert to_text(3) == "3"
        assert to_text(3.0) == "3"
        assert to_text(2.5) == "2.5"
        assert to_text({"a": [1, 2]}) == '{"a":[1,2]}'
        assert to_text("plain") == "plain"


class TestBindingResolver:
    """Test cases for BindingResolver."""

    def setup_method(self):
        """Setup test fixtures."""
        self.resolver = BindingResolver()

    def test_single_token_preserves_type(self, ctx):
        """Test a lone placeholder returns the value itself."""
        assert self.resolver.interpolate("${vars.userId}", ctx) == 123
        assert self.resolver.interpolate("${vars.flag}", ctx) is True
        assert self.resolver.interpolate("${vars.tags}", ctx) == ["red", "green"]
        assert self.resolver.interpolate("${steps.fetch.result.data}", ctx) == [1, 2, 3]
        assert self.resolver.interpolate("${ vars.profile }", ctx) == {"city": "Seoul"}

    def test_single_token_missing_is_none(self, ctx):
        """Test a lone placeholder for a missing path yields None."""
        assert self.resolver.interpolate("${vars.missing}", ctx) is None
        assert self.resolver.interpolate("${vars.none}", ctx) is None

    def test_template_interpolation(self, ctx):
        """Test placeholders embedded in text are stringified."""
        assert self.resolver.interpolate("Hello ${vars.name}!", ctx) == "Hello World!"
        assert self.resolver.interpolate("id=${vars.userId}&on=${vars.flag}", ctx) == "id=123&on=true"
        assert self.resolver.interpolate("[${vars.missing}][${vars.none}]", ctx) == "[][]"
        assert self.resolver.interpolate("p=${vars.profile}", ctx) == 'p={"city":"Seoul"}'

    def test_no_placeholders(self, ctx):
        """Test plain strings are returned as-is."""
        assert self.resolver.interpolate("https://example.com", ctx) == "https://example.com"

    def test_resolve_binding_value_from(self, ctx):
        """Test valueFrom looks up a path and falls back to default on UNSET only."""
        assert self.resolver.resolve_binding({"valueFrom": "vars.userId"}, ctx) == 123
        assert self.resolver.resolve_binding({"valueFrom": "vars.missing", "default": "d"}, ctx) == "d"
        assert self.resolver.resolve_binding({"valueFrom": "vars.none", "default": "d"}, ctx) is None

    def test_resolve_binding_template(self, ctx):
        """Test template interpolates and falls back to default on empty results."""
        assert self.resolver.resolve_binding({"template": "u/${vars.userId}"}, ctx) == "u/123"
        assert self.resolver.resolve_binding({"template": "${vars.missing}", "default": 0}, ctx) == 0
        assert self.resolver.resolve_binding({"template": "", "default": "x"}, ctx) == "x"

    def test_resolve_binding_default_only(self, ctx):
        """Test a binding without valueFrom or template yields its default."""
        assert self.resolver.resolve_binding({"default": [1]}, ctx) == [1]
        assert self.resolver.resolve_binding({}, ctx) is None

    def test_resolve_binding_errors_use_default(self, ctx):
        """Test errors during resolution are replaced by the default."""
        assert self.resolver.resolve_binding({"template": 5, "default": "safe"}, ctx) == "safe"

    def test_resolve_bindings_preserves_structure(self, ctx):
        """Test nested structures are resolved recursively."""
        block = {
            "name": "fetch",
            "url": {"template": "https://api.example.com/users/${vars.userId}"},
            "items": ["${steps.fetch.result.data}", "static", 5],
            "nested": {"value": {"valueFrom": "vars.profile.city"}, "flag": False},
            "nothing": None,
        }

        assert self.resolver.resolve_bindings(block, ctx) == {
            "name": "fetch",
            "url": "https://api.example.com/users/123",
            "items": [[1, 2, 3], "static", 5],
            "nested": {"value": "Seoul", "flag": False},
            "nothing": None,
        }

    def test_resolve_bindings_scalars(self, ctx):
        """Test None and non-string scalars pass through."""
        assert self.resolver.resolve_bindings(None, ctx) is None
        assert self.resolver.resolve_bindings(7, ctx) == 7


class TestConditionEvaluator:
    """Test cases for ConditionEvaluator."""

    def setup_method(self):
        """Setup test fixtures."""
        self.evaluator = ConditionEvaluator()

    def test_missing_condition_holds(self, ctx):
        """Test an absent condition always holds."""
        assert self.evaluator.evaluate(None, ctx) is True
        assert self.evaluator.evaluate({}, ctx) is True
        assert self.evaluator.evaluate({"unrelated": 1}, ctx) is True

    def test_exists(self, ctx):
        """Test exists holds for any value but UNSET, including None."""
        assert self.evaluator.evaluate({"exists": "vars.userId"}, ctx)
        assert self.evaluator.evaluate({"exists": "vars.none"}, ctx)
        assert self.evaluator.evaluate({"exists": "steps.fetch"}, ctx)
        assert not self.evaluator.evaluate({"exists": "vars.missing"}, ctx)

    def test_equals_is_strict(self, ctx):
        """Test equals compares without type coercion."""
        assert self.evaluator.evaluate({"equals": {"left": "vars.status", "right": "OK"}}, ctx)
        assert self.evaluator.evaluate({"equals": {"left": "vars.userId", "right": 123}}, ctx)
        assert self.evaluator.evaluate({"equals": {"left": "vars.userId", "right": 123.0}}, ctx)
        assert self.evaluator.evaluate({"equals": {"left": "steps.fetch.success", "right": True}}, ctx)
        assert not self.evaluator.evaluate({"equals": {"left": "vars.userId", "right": "123"}}, ctx)
        assert not self.evaluator.evaluate({"equals": {"left": "vars.flag", "right": 1}}, ctx)
        assert not self.evaluator.evaluate({"equals": {"left": "vars.missing", "right": None}}, ctx)
        assert self.evaluator.evaluate({"equals": {"left": "vars.none", "right": None}}, ctx)

    def test_not_equals(self, ctx):
        """Test notEquals is the negation of equals."""
        assert self.evaluator.evaluate({"notEquals": {"left": "vars.status", "right": "FAIL"}}, ctx)
        assert not self.evaluator.evaluate({"notEquals": {"left": "vars.status", "right": "OK"}}, ctx)

    def test_contains(self, ctx):
        """Test contains on strings and arrays."""
        assert self.evaluator.evaluate({"contains": {"value": "vars.name", "search": "orl"}}, ctx)
        assert self.evaluator.evaluate({"contains": {"value": "vars.tags", "search": "gre"}}, ctx)
        assert not self.evaluator.evaluate({"contains": {"value": "vars.tags", "search": "blue"}}, ctx)
        assert self.evaluator.evaluate({"contains": {"value": "vars.userId", "search": 23}}, ctx)
        assert self.evaluator.evaluate({"contains": {"value": "vars.missing", "search": "undef"}}, ctx)

    def test_regex(self, ctx):
        """Test regex with and without flags."""
        assert self.evaluator.evaluate({"regex": {"value": "vars.name", "pattern": "^Wor"}}, ctx)
        assert not self.evaluator.evaluate({"regex": {"value": "vars.name", "pattern": "^wor"}}, ctx)
        assert self.evaluator.evaluate({"regex": {"value": "vars.name", "pattern": "^wor", "flags": "i"}}, ctx)

    def test_invalid_regex_is_false(self, ctx):
        """Test a broken pattern makes the condition false instead of raising."""
        assert self.evaluator.evaluate({"regex": {"value": "vars.name", "pattern": "("}}, ctx) is False

    def test_malformed_condition_is_false(self, ctx):
        """Test a JSON condition missing its operands is false."""
        assert self.evaluator.evaluate({"equals": {"right": 1}}, ctx) is False

    def test_combinators(self, ctx):
        """Test and, or and not."""
        yes = {"exists": "vars.name"}
        no = {"exists": "vars.missing"}

        assert self.evaluator.evaluate({"and": [yes, yes]}, ctx)
        assert not self.evaluator.evaluate({"and": [yes, no]}, ctx)
        assert self.evaluator.evaluate({"or": [no, yes]}, ctx)
        assert not self.evaluator.evaluate({"or": [no, no]}, ctx)
        assert self.evaluator.evaluate({"not": no}, ctx)
        assert self.evaluator.evaluate({"and": []}, ctx)
        assert not self.evaluator.evaluate({"or": []}, ctx)

    def test_wrapped_conditions(self, ctx):
        """Test expr and json wrappers."""
        assert self.evaluator.evaluate({"expr": "vars.userId > 100"}, ctx)
        assert not self.evaluator.evaluate({"expr": "vars.userId < 100"}, ctx)
        assert self.evaluator.evaluate({"json": {"equals": {"left": "vars.status", "right": "OK"}}}, ctx)
        assert not self.evaluator.evaluate({"json": {"exists": "vars.missing"}}, ctx)

    def test_json_keys_take_precedence_over_expr(self, ctx):
        """Test a value carrying JSON keys is evaluated as JSON."""
        assert not self.evaluator.evaluate({"exists": "vars.missing", "expr": "true"}, ctx)

    def test_expression_sees_all_bindings(self, ctx):
        """Test expressions read vars, steps, forEach and loop."""
        looping = ctx.enter_for_each({"n": 2}, 1, 3).enter_loop(0, 2)

        assert self.evaluator.evaluate_expression("steps.fetch.result.data.length === 3", looping)
        assert self.evaluator.evaluate_expression("forEach.item.n * forEach.index === 2", looping)
        assert self.evaluator.evaluate_expression("loop.count == 2 && !steps.broken.success", looping)

    def test_expression_errors_are_false(self, ctx):
        """Test parse and evaluation errors are false, never raised."""
        assert self.evaluator.evaluate_expression("vars.userId >", ctx) is False
        assert self.evaluator.evaluate_expression("forEach.item.n > 1", ctx) is False
        assert self.evaluator.evaluate_expression("unknownName", ctx) is False
        assert self.evaluator.evaluate_expression("__import__('os')", ctx) is False


class SamplePlugin(PluginBase):
    """Plugin with typed parameters for binder tests."""

    plugin_name = "binder_sample"

    def execute(self, count: int, ratio: float, enabled: bool, label: str | None = None) -> dict:
        return {"count": count, "ratio": ratio, "enabled": enabled, "label": label}


class KwargsPlugin(PluginBase):
    """Plugin accepting any parameters."""

    plugin_name = "binder_kwargs"

    def execute(self, selector: str, **options) -> dict:
        return {"selector": selector, **options}


class TestParameterBinder:
    """Test cases for ParameterBinder."""

    def setup_method(self):
        """Setup test fixtures."""
        self.binder = ParameterBinder()

    def test_coerces_strings(self):
        """Test string parameters are coerced to the annotated types."""
        bound = self.binder.bind(SamplePlugin(), {"count": "3", "ratio": "0.5", "enabled": "yes", "label": "none"})

        assert bound == {"count": 3, "ratio": 0.5, "enabled": True, "label": None}

    def test_drops_unknown_parameters(self):
        """Test parameters the signature does not name are dropped."""
        bound = self.binder.bind(SamplePlugin(), {"count": 1, "surface_id": 9})

        assert bound == {"count": 1}

    def test_passes_extras_to_kwargs(self):
        """Test extra parameters reach a **kwargs signature untouched."""
        bound = self.binder.bind(KwargsPlugin(), {"selector": "#a", "surface_id": 9, "timeout": "5"})

        assert bound == {"selector": "#a", "surface_id": 9, "timeout": "5"}

    def test_invalid_number_raises(self):
        """Test a non-numeric string for an int parameter raises ValueError."""
        with pytest.raises(ValueError):
            self.binder.bind(SamplePlugin(), {"count": "many"})
