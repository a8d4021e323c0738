from collections.abc import Iterable, Mapping
from typing import TYPE_CHECKING, Any

import msgspec

if TYPE_CHECKING:
    from tabflow.domain.entity import ExecutionContext


def lookup_field(obj: Any, key: str) -> Any:
    """Reads one path segment from a value.

    Mappings are read by key, lists, tuples and strings by numeric index (plus ``length``),
    and msgspec Structs by field name. Anything that does not resolve yields ``msgspec.UNSET``.
    """
    if obj is None or obj is msgspec.UNSET:
        return msgspec.UNSET
    if isinstance(obj, Mapping):
        return obj.get(key, msgspec.UNSET)
    if isinstance(obj, (list, tuple, str)):
        if key == "length":
            return len(obj)
        if key.isdecimal() and key.isascii() and int(key) < len(obj):
            return obj[int(key)]
        return msgspec.UNSET
    if isinstance(obj, msgspec.Struct) and key in obj.__struct_fields__:
        return getattr(obj, key)
    return msgspec.UNSET


def walk(root: Any, keys: Iterable[str]) -> Any:
    """Walks ``keys`` down from ``root``, short-circuiting to UNSET on a missing or null intermediate."""
    current = root
    for key in keys:
        if current is None or current is msgspec.UNSET:
            return msgspec.UNSET
        current = lookup_field(current, key)
    return current


def get_by_path(ctx: "ExecutionContext", path: str) -> Any:
    """Resolves a dotted path against the execution context.

    The path is routed to the first sub-context that owns its prefix
    (``steps.``, ``vars.``, ``forEach``/``loop``). Unknown prefixes and missing
    values resolve to ``msgspec.UNSET``; this function never raises.

    Args:
        ctx: The execution context to read from.
        path: A dotted path such as ``steps.login.result.data``.

    Returns:
        The resolved value, or ``msgspec.UNSET`` if nothing is there.
    """
    if not isinstance(path, str):
        return msgspec.UNSET
    for sub_context in (ctx.step_context, ctx.var_context, ctx.loop_context):
        if sub_context.owns(path):
            return sub_context.get_by_path(path)
    return msgspec.UNSET
