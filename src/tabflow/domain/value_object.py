import os
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any, ClassVar

import msgspec

from tabflow.domain.service import walk


@dataclass
class ExecutionOptions:
    """Run-level configuration for the workflow runner.

    ``max_steps`` and ``max_duration_ms`` guard against step graphs that loop
    forever. Both default to ``None`` (unlimited).
    """

    max_steps: int | None = None
    max_duration_ms: float | None = None
    status_message: str = "Running workflow"

    @classmethod
    def from_env(cls) -> "ExecutionOptions":
        """Builds options from ``TABFLOW_*`` environment variables, keeping defaults for unset ones."""
        options = cls()
        max_steps = os.environ.get("TABFLOW_MAX_STEPS")
        if max_steps:
            options.max_steps = int(max_steps)
        max_duration = os.environ.get("TABFLOW_MAX_DURATION_MS")
        if max_duration:
            options.max_duration_ms = float(max_duration)
        status_message = os.environ.get("TABFLOW_STATUS_MESSAGE")
        if status_message:
            options.status_message = status_message
        return options


class BlockResult(msgspec.Struct, rename="camel"):
    """Outcome reported by a block executor for one dispatch."""

    has_error: bool = False
    message: str | None = None
    data: Any = None

    @classmethod
    def from_value(cls, value: Any) -> "BlockResult":
        """Normalises whatever a block executor returned.

        Mappings carrying ``hasError``, ``message`` or ``data`` are read field by
        field; any other value is treated as successful data.
        """
        if isinstance(value, BlockResult):
            return value
        if isinstance(value, Mapping) and not value.keys().isdisjoint(("hasError", "message", "data")):
            message = value.get("message")
            return cls(
                has_error=bool(value.get("hasError")),
                message=None if message is None else str(message),
                data=value.get("data"),
            )
        return cls(data=value)

    def to_dict(self) -> dict[str, Any]:
        """Wire form recorded as a step's ``result``. ``data`` is kept as-is."""
        return {"hasError": self.has_error, "message": self.message, "data": self.data}


class BlockOutcome(msgspec.Struct, frozen=True):
    """Result of running a block through its retry loop (or a repeat of it)."""

    result: Any = None
    success: bool = True
    message: str = ""
    attempts: int = 0


class StepResult(msgspec.Struct, frozen=True):
    """What the context remembers about an executed step."""

    result: Any = None
    success: bool = True
    skipped: bool = False


class ForEachState(msgspec.Struct, frozen=True):
    item: Any
    index: int
    total: int


class LoopState(msgspec.Struct, frozen=True):
    index: int
    count: int


class StepContext(msgspec.Struct, frozen=True):
    """Step results keyed by step id. Entries are added or overwritten, never removed."""

    steps: dict[str, StepResult] = {}

    prefix: ClassVar[str] = "steps."

    def set_step_result(self, step_id: str, result: StepResult) -> "StepContext":
        return StepContext(steps={**self.steps, step_id: result})

    def get_step_result(self, step_id: str) -> StepResult | None:
        return self.steps.get(step_id)

    def has_step(self, step_id: str) -> bool:
        return step_id in self.steps

    def owns(self, path: str) -> bool:
        return path.startswith(self.prefix)

    def get_by_path(self, path: str) -> Any:
        if not self.owns(path):
            return msgspec.UNSET
        remainder = path[len(self.prefix) :]
        if not remainder:
            return msgspec.UNSET
        return walk(self.steps, remainder.split("."))


class VarContext(msgspec.Struct, frozen=True):
    """User-defined variables."""

    vars: dict[str, Any] = {}

    prefix: ClassVar[str] = "vars."

    def set_var(self, key: str, value: Any) -> "VarContext":
        return VarContext(vars={**self.vars, key: value})

    def set_vars(self, values: Mapping[str, Any]) -> "VarContext":
        return VarContext(vars={**self.vars, **values})

    def get_var(self, key: str) -> Any:
        return self.vars.get(key, msgspec.UNSET)

    def has_var(self, key: str) -> bool:
        return key in self.vars

    def owns(self, path: str) -> bool:
        return path.startswith(self.prefix)

    def get_by_path(self, path: str) -> Any:
        if not self.owns(path):
            return msgspec.UNSET
        remainder = path[len(self.prefix) :]
        if not remainder:
            return msgspec.UNSET
        return walk(self.vars, remainder.split("."))


class LoopContext(msgspec.Struct, frozen=True):
    """Iteration state of the innermost repeat, if any."""

    for_each: ForEachState | None = None
    loop: LoopState | None = None

    roots: ClassVar[tuple[str, ...]] = ("forEach", "loop")

    def enter_for_each(self, item: Any, index: int, total: int) -> "LoopContext":
        return LoopContext(for_each=ForEachState(item=item, index=index, total=total), loop=self.loop)

    def enter_loop(self, index: int, count: int) -> "LoopContext":
        return LoopContext(for_each=self.for_each, loop=LoopState(index=index, count=count))

    def exit_loop(self) -> "LoopContext":
        return LoopContext()

    def is_in_for_each(self) -> bool:
        return self.for_each is not None

    def is_in_loop(self) -> bool:
        return self.loop is not None

    def owns(self, path: str) -> bool:
        return path.split(".", 1)[0] in self.roots

    def get_by_path(self, path: str) -> Any:
        if not self.owns(path):
            return msgspec.UNSET
        root = {
            "forEach": msgspec.UNSET if self.for_each is None else self.for_each,
            "loop": msgspec.UNSET if self.loop is None else self.loop,
        }
        return walk(root, path.split("."))
