import inspect
import logging
import re
import types
import typing
from collections.abc import Mapping
from typing import Any, Union, get_args, get_origin

import msgspec

from tabflow.application.expression import evaluate_expression, js_string, strict_equals, truthy
from tabflow.application.port import Binder, PlaceholderResolver
from tabflow.domain.entity import ExecutionContext
from tabflow.domain.port import PluginBase
from tabflow.domain.service import get_by_path

logger = logging.getLogger(__name__)


def to_text(value: Any) -> str:
    """String form of a value substituted into a template. Missing values become empty strings."""
    if value is None or value is msgspec.UNSET:
        return ""
    return js_string(value)


class ParameterBinder(Binder):
    """Binds block parameters (accepting mixed types) to plugin execute method arguments with type coercion.

    The bind method accepts parameter dictionaries with mixed-type values,
    and will coerce strings to the target types when necessary.
    """

    def bind(self, plugin: PluginBase, params: dict[str, Any]) -> dict[str, Any]:
        """Binds and coerces parameters to the plugin's execute method signature.

        Parameters the signature does not name are dropped, unless ``execute``
        accepts ``**kwargs``, in which case they are passed through unchanged.
        """
        sig = inspect.signature(plugin.execute)
        hints = typing.get_type_hints(plugin.execute, include_extras=False)
        accepts_any = any(p.kind is inspect.Parameter.VAR_KEYWORD for p in sig.parameters.values())
        bound: dict[str, Any] = {}
        for name, parameter in sig.parameters.items():
            if name == "self" or parameter.kind in (inspect.Parameter.VAR_POSITIONAL, inspect.Parameter.VAR_KEYWORD):
                continue
            if name not in params:
                continue
            target = hints.get(name, Any)
            bound[name] = self._coerce(params[name], target)
        if accepts_any:
            for name, value in params.items():
                bound.setdefault(name, value)
        return bound

    def _coerce(self, value: Any, target_type: Any) -> Any:
        """Coerces a string value to the target type, handling Optional and Union types, including PEP 604 unions."""
        # If already the right type, return as-is
        if target_type is Any or (isinstance(target_type, type) and isinstance(value, target_type)):
            return value
        origin = get_origin(target_type)
        # Handle typing.Union and PEP 604 UnionType (e.g. int | None)
        if isinstance(target_type, types.UnionType) or origin is Union:
            args = get_args(target_type)
            if type(None) in args and (
                value is None or (isinstance(value, str) and value.strip().lower() in {"none", "null", ""})
            ):
                return None
            # Try to coerce to each type in the union (except NoneType)
            for t in args:
                if t is type(None):
                    continue
                try:
                    return self._coerce(value, t)
                except (TypeError, ValueError):
                    continue
            return value
        # Primitive coercions from string
        if isinstance(value, str):
            if target_type is int:
                return int(value)
            if target_type is float:
                return float(value)
            if target_type is bool:
                v = value.strip().lower()
                if v in {"true", "1", "yes", "y"}:
                    return True
                if v in {"false", "0", "no", "n"}:
                    return False
            # Leave as string for anything else
            return value
        return value


class BindingResolver(PlaceholderResolver):
    """Resolves ``${path}`` placeholders and binding objects against an execution context.

    Rules:
    - A string that is exactly one placeholder, like ``"${steps.fetch.result.data}"``,
      resolves to the referenced value as-is (preserving its type).
    - Any other string is interpolated, each placeholder replaced by its text form.
    - A mapping carrying ``valueFrom`` or ``template`` is a binding object and is
      replaced by its resolved value (or its ``default``).
    - Other mappings and lists are walked recursively; everything else passes through.
    """

    _pattern = re.compile(r"\$\{([^}]+)\}")

    def interpolate(self, template: str, ctx: ExecutionContext) -> Any:
        m = self._pattern.fullmatch(template)
        if m:
            value = get_by_path(ctx, m.group(1).strip())
            return None if value is msgspec.UNSET else value

        def repl(match: re.Match) -> str:
            return to_text(get_by_path(ctx, match.group(1).strip()))

        return self._pattern.sub(repl, template)

    def resolve_binding(self, binding: Mapping[str, Any], ctx: ExecutionContext) -> Any:
        """Resolves a ``{valueFrom?, template?, default?}`` binding object, falling back to ``default``."""
        default = binding.get("default")
        try:
            if binding.get("valueFrom") is not None:
                value = get_by_path(ctx, binding["valueFrom"])
                return default if value is msgspec.UNSET else value
            if binding.get("template") is not None:
                value = self.interpolate(binding["template"], ctx)
                return default if value is None or value == "" else value
        except Exception as e:
            logger.debug("Binding %r could not be resolved, using default: %s", binding, e)
            return default
        return default

    def resolve_bindings(self, value: Any, ctx: ExecutionContext) -> Any:
        if value is None:
            return None
        if isinstance(value, str):
            return self.interpolate(value, ctx)
        if isinstance(value, list):
            return [self.resolve_bindings(v, ctx) for v in value]
        if isinstance(value, Mapping):
            if "valueFrom" in value or "template" in value:
                return self.resolve_binding(value, ctx)
            return {k: self.resolve_bindings(v, ctx) for k, v in value.items()}
        return value


class ConditionEvaluator:
    """Evaluates ``when`` and ``switch`` conditions against an execution context.

    A condition is either a JSON condition tree, ``{"expr": "..."}`` holding a
    boolean expression, or ``{"json": <JSON condition>}``. A missing condition
    always holds. Evaluation never raises: any error makes the condition false.
    """

    JSON_KEYS = ("exists", "equals", "notEquals", "contains", "regex", "and", "or", "not")

    _REGEX_FLAGS = {"i": re.IGNORECASE, "m": re.MULTILINE, "s": re.DOTALL}

    def evaluate(self, condition: Any, ctx: ExecutionContext) -> bool:
        if not condition or condition is msgspec.UNSET:
            return True
        if isinstance(condition, Mapping):
            if self.is_json_condition(condition):
                return self.evaluate_json(condition, ctx)
            if condition.get("expr"):
                return self.evaluate_expression(condition["expr"], ctx)
            if condition.get("json"):
                return self.evaluate_json(condition["json"], ctx)
        return True

    def is_json_condition(self, condition: Any) -> bool:
        return isinstance(condition, Mapping) and any(key in condition for key in self.JSON_KEYS)

    def evaluate_json(self, condition: Mapping[str, Any], ctx: ExecutionContext) -> bool:
        try:
            return self._evaluate_json(condition, ctx)
        except Exception as e:
            logger.warning("JSON condition %r failed, treating as false: %s", condition, e)
            return False

    def _evaluate_json(self, condition: Mapping[str, Any], ctx: ExecutionContext) -> bool:
        if "exists" in condition:
            return get_by_path(ctx, condition["exists"]) is not msgspec.UNSET
        if "equals" in condition:
            operands = condition["equals"]
            return strict_equals(get_by_path(ctx, operands["left"]), operands.get("right"))
        if "notEquals" in condition:
            operands = condition["notEquals"]
            return not strict_equals(get_by_path(ctx, operands["left"]), operands.get("right"))
        if "contains" in condition:
            operands = condition["contains"]
            value = get_by_path(ctx, operands["value"])
            search = js_string(operands.get("search", msgspec.UNSET))
            if isinstance(value, (list, tuple)):
                return any(search in js_string(item) for item in value)
            return search in js_string(value)
        if "regex" in condition:
            operands = condition["regex"]
            flags = 0
            for flag in operands.get("flags") or "":
                flags |= self._REGEX_FLAGS.get(flag, 0)
            value = js_string(get_by_path(ctx, operands["value"]))
            return re.search(operands["pattern"], value, flags) is not None
        if "and" in condition:
            return all(self._evaluate_json(c, ctx) for c in condition["and"])
        if "or" in condition:
            return any(self._evaluate_json(c, ctx) for c in condition["or"])
        if "not" in condition:
            return not self._evaluate_json(condition["not"], ctx)
        return False

    def evaluate_expression(self, expr: str, ctx: ExecutionContext) -> bool:
        loop_context = ctx.loop_context
        bindings = {
            "vars": ctx.vars,
            "steps": ctx.steps,
            "forEach": msgspec.UNSET if loop_context.for_each is None else loop_context.for_each,
            "loop": msgspec.UNSET if loop_context.loop is None else loop_context.loop,
        }
        try:
            return truthy(evaluate_expression(expr, bindings))
        except Exception as e:
            logger.warning("Expression %r failed, treating as false: %s", expr, e)
            return False
