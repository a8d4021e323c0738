"""Sandboxed evaluator for condition expressions.

Expressions are small JavaScript-flavoured boolean formulas over the read-only
bindings ``vars``, ``steps``, ``forEach`` and ``loop``::

    vars.count > 10 && steps.login.success
    forEach.item.status === "done" || loop.index >= 3
    not steps.fetch.skipped and steps.fetch.result.data.length > 0

The source is tokenized and parsed by hand into a tiny tree which is then
walked against the bindings. Nothing is ever passed to ``eval``: there are no
calls, no assignments and no access to Python attributes beyond struct fields.

Supported syntax, lowest precedence first:

* ternary ``a ? b : c``
* ``||`` / ``or``, ``&&`` / ``and`` (short-circuit, return an operand)
* ``===``, ``!==``, ``==``, ``!=``
* ``<``, ``<=``, ``>``, ``>=``
* ``+``, ``-`` then ``*``, ``/``, ``%``
* unary ``!`` / ``not``, ``-``, ``+``
* member access ``a.b``, ``a[expr]`` and ``.length`` on lists and strings
* literals: numbers, quoted strings, ``true``, ``false``, ``null``,
  ``undefined``, ``[a, b]`` arrays, and parentheses
"""

import math
import re
from collections.abc import Mapping
from typing import Any

import msgspec

from tabflow.domain.exception import ExpressionError
from tabflow.domain.service import lookup_field

_TOKEN = re.compile(
    r"""
    (?P<ws>\s+)
  | (?P<number>\d+\.\d*|\.\d+|\d+)
  | (?P<string>"(?:[^"\\]|\\.)*"|'(?:[^'\\]|\\.)*')
  | (?P<name>[A-Za-z_$][A-Za-z0-9_$]*)
  | (?P<op>===|!==|==|!=|<=|>=|&&|\|\||[<>!+\-*/%().\[\]?:,])
    """,
    re.VERBOSE,
)

_ESCAPES = {"n": "\n", "t": "\t", "r": "\r", "b": "\b", "f": "\f", "0": "\0"}

_KEYWORD_OPS = {"and": "&&", "or": "||", "not": "!"}

_LITERALS = {"true": True, "false": False, "null": None, "undefined": msgspec.UNSET}


def _unescape(raw: str) -> str:
    return re.sub(r"\\(.)", lambda m: _ESCAPES.get(m.group(1), m.group(1)), raw[1:-1])


def tokenize(source: str) -> list[tuple[str, Any]]:
    """Splits an expression into ``(kind, value)`` tokens, ending with ``("eof", None)``."""
    tokens: list[tuple[str, Any]] = []
    pos = 0
    while pos < len(source):
        match = _TOKEN.match(source, pos)
        if match is None:
            raise ExpressionError(f"Unexpected character {source[pos]!r} at position {pos}")
        pos = match.end()
        kind = match.lastgroup
        text = match.group()
        if kind == "ws":
            continue
        if kind == "number":
            tokens.append(("literal", float(text) if "." in text else int(text)))
        elif kind == "string":
            tokens.append(("literal", _unescape(text)))
        elif kind == "name" and text in _KEYWORD_OPS:
            tokens.append(("op", _KEYWORD_OPS[text]))
        elif kind == "name" and text in _LITERALS:
            tokens.append(("literal", _LITERALS[text]))
        else:
            tokens.append((kind, text))
    tokens.append(("eof", None))
    return tokens


class Parser:
    """Recursive-descent parser producing nested tuples.

    Node shapes: ``("literal", v)``, ``("name", n)``, ``("array", items)``,
    ``("member", obj, key)``, ``("unary", op, operand)``,
    ``("binary", op, left, right)``, ``("logical", op, left, right)`` and
    ``("ternary", test, then, otherwise)``.
    """

    def __init__(self, source: str):
        self.tokens = tokenize(source)
        self.pos = 0

    def parse(self) -> tuple:
        if self.tokens[0][0] == "eof":
            raise ExpressionError("Empty expression")
        node = self._ternary()
        if self._peek()[0] != "eof":
            raise ExpressionError(f"Unexpected token {self._peek()[1]!r}")
        return node

    def _peek(self) -> tuple[str, Any]:
        return self.tokens[self.pos]

    def _advance(self) -> tuple[str, Any]:
        token = self.tokens[self.pos]
        self.pos += 1
        return token

    def _accept(self, *ops: str) -> str | None:
        kind, value = self._peek()
        if kind == "op" and value in ops:
            self.pos += 1
            return value
        return None

    def _expect(self, op: str) -> None:
        if self._accept(op) is None:
            raise ExpressionError(f"Expected {op!r} but found {self._peek()[1]!r}")

    def _ternary(self) -> tuple:
        test = self._or()
        if self._accept("?"):
            then = self._ternary()
            self._expect(":")
            otherwise = self._ternary()
            return ("ternary", test, then, otherwise)
        return test

    def _or(self) -> tuple:
        node = self._and()
        while self._accept("||"):
            node = ("logical", "||", node, self._and())
        return node

    def _and(self) -> tuple:
        node = self._equality()
        while self._accept("&&"):
            node = ("logical", "&&", node, self._equality())
        return node

    def _equality(self) -> tuple:
        node = self._comparison()
        while op := self._accept("===", "!==", "==", "!="):
            node = ("binary", op, node, self._comparison())
        return node

    def _comparison(self) -> tuple:
        node = self._additive()
        while op := self._accept("<", "<=", ">", ">="):
            node = ("binary", op, node, self._additive())
        return node

    def _additive(self) -> tuple:
        node = self._multiplicative()
        while op := self._accept("+", "-"):
            node = ("binary", op, node, self._multiplicative())
        return node

    def _multiplicative(self) -> tuple:
        node = self._unary()
        while op := self._accept("*", "/", "%"):
            node = ("binary", op, node, self._unary())
        return node

    def _unary(self) -> tuple:
        if op := self._accept("!", "-", "+"):
            return ("unary", op, self._unary())
        return self._member()

    def _member(self) -> tuple:
        node = self._primary()
        while True:
            if self._accept("."):
                kind, value = self._advance()
                if kind != "name":
                    raise ExpressionError(f"Expected a property name after '.' but found {value!r}")
                node = ("member", node, ("literal", value))
            elif self._accept("["):
                key = self._ternary()
                self._expect("]")
                node = ("member", node, key)
            else:
                return node

    def _primary(self) -> tuple:
        kind, value = self._advance()
        if kind == "literal":
            return ("literal", value)
        if kind == "name":
            return ("name", value)
        if kind == "op" and value == "(":
            node = self._ternary()
            self._expect(")")
            return node
        if kind == "op" and value == "[":
            items = []
            if not self._accept("]"):
                items.append(self._ternary())
                while self._accept(","):
                    items.append(self._ternary())
                self._expect("]")
            return ("array", items)
        if kind == "eof":
            raise ExpressionError("Unexpected end of expression")
        raise ExpressionError(f"Unexpected token {value!r}")


def is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def truthy(value: Any) -> bool:
    """JavaScript truthiness: empty lists and mappings are truthy, NaN is not."""
    if value is None or value is msgspec.UNSET or value is False:
        return False
    if is_number(value):
        return value != 0 and not math.isnan(value)
    if isinstance(value, str):
        return value != ""
    return True


def strict_equals(left: Any, right: Any) -> bool:
    """Equality without coercion. Booleans never equal numbers and ``None`` never equals UNSET."""
    if left is msgspec.UNSET or right is msgspec.UNSET or left is None or right is None:
        return left is right
    if isinstance(left, bool) or isinstance(right, bool):
        return isinstance(left, bool) and isinstance(right, bool) and left == right
    if is_number(left) and is_number(right):
        return left == right
    if isinstance(left, (list, tuple)) and isinstance(right, (list, tuple)):
        return len(left) == len(right) and all(strict_equals(a, b) for a, b in zip(left, right))
    if isinstance(left, Mapping) and isinstance(right, Mapping):
        return left.keys() == right.keys() and all(strict_equals(left[k], right[k]) for k in left)
    return type(left) is type(right) and left == right


def _is_nullish(value: Any) -> bool:
    return value is None or value is msgspec.UNSET


def loose_equals(left: Any, right: Any) -> bool:
    """Like :func:`strict_equals` except that ``null`` and ``undefined`` are equal."""
    if _is_nullish(left) and _is_nullish(right):
        return True
    return strict_equals(left, right)


def js_string(value: Any) -> str:
    """String form used for concatenation, ``contains`` and ``regex`` conditions."""
    if value is None:
        return "null"
    if value is msgspec.UNSET:
        return "undefined"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, (Mapping, list, tuple, msgspec.Struct)):
        try:
            return msgspec.json.encode(value).decode()
        except (TypeError, msgspec.EncodeError):
            return str(value)
    return str(value)


def _property_key(key: Any) -> str:
    if is_number(key) and float(key).is_integer():
        return str(int(key))
    return js_string(key)


class Evaluator:
    """Walks a parsed expression against a mapping of bindings."""

    def __init__(self, bindings: Mapping[str, Any]):
        self.bindings = bindings

    def evaluate(self, node: tuple) -> Any:
        kind = node[0]
        if kind == "literal":
            return node[1]
        if kind == "name":
            if node[1] not in self.bindings:
                raise ExpressionError(f"{node[1]} is not defined")
            return self.bindings[node[1]]
        if kind == "array":
            return [self.evaluate(item) for item in node[1]]
        if kind == "member":
            obj = self.evaluate(node[1])
            key = _property_key(self.evaluate(node[2]))
            if obj is None or obj is msgspec.UNSET:
                raise ExpressionError(f"Cannot read property {key!r} of {js_string(obj)}")
            return lookup_field(obj, key)
        if kind == "unary":
            return self._unary(node[1], self.evaluate(node[2]))
        if kind == "logical":
            left = self.evaluate(node[2])
            if node[1] == "&&":
                return self.evaluate(node[3]) if truthy(left) else left
            return left if truthy(left) else self.evaluate(node[3])
        if kind == "ternary":
            return self.evaluate(node[2]) if truthy(self.evaluate(node[1])) else self.evaluate(node[3])
        if kind == "binary":
            return self._binary(node[1], self.evaluate(node[2]), self.evaluate(node[3]))
        raise ExpressionError(f"Unknown node {kind!r}")

    @staticmethod
    def _unary(op: str, value: Any) -> Any:
        if op == "!":
            return not truthy(value)
        if not is_number(value):
            raise ExpressionError(f"Unary {op!r} requires a number, got {js_string(value)}")
        return -value if op == "-" else value

    @staticmethod
    def _binary(op: str, left: Any, right: Any) -> Any:
        if op == "===":
            return strict_equals(left, right)
        if op == "!==":
            return not strict_equals(left, right)
        if op == "==":
            return loose_equals(left, right)
        if op == "!=":
            return not loose_equals(left, right)
        if op in ("<", "<=", ">", ">="):
            comparable = (is_number(left) and is_number(right)) or (
                isinstance(left, str) and isinstance(right, str)
            )
            if not comparable:
                return False
            if op == "<":
                return left < right
            if op == "<=":
                return left <= right
            if op == ">":
                return left > right
            return left >= right
        if op == "+" and (isinstance(left, str) or isinstance(right, str)):
            return js_string(left) + js_string(right)
        if not (is_number(left) and is_number(right)):
            raise ExpressionError(f"Operator {op!r} requires numbers, got {js_string(left)} and {js_string(right)}")
        if op == "+":
            return left + right
        if op == "-":
            return left - right
        if op == "*":
            return left * right
        if right == 0:
            raise ExpressionError("Division by zero")
        if op == "/":
            return left / right
        return math.fmod(left, right)


def evaluate_expression(source: str, bindings: Mapping[str, Any]) -> Any:
    """Parses and evaluates ``source`` against ``bindings``.

    Args:
        source: The expression text.
        bindings: Names visible to the expression.

    Returns:
        The value of the expression (not coerced to bool).

    Raises:
        ExpressionError: If the expression cannot be parsed or evaluated.
    """
    return Evaluator(bindings).evaluate(Parser(source).parse())
