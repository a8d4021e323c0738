from collections.abc import Mapping
from typing import Any, Literal

import msgspec
from msgspec import structs

from tabflow.domain.value_object import LoopContext, StepContext, StepResult, VarContext


class RetryPolicy(msgspec.Struct, rename="camel", forbid_unknown_fields=True):
    """Retry settings for a step. The wait before attempt k (k > 1) is ``delay_ms * backoff_factor ** (k - 2)``."""

    attempts: int = 1
    delay_ms: float = 0
    backoff_factor: float = 1

    @property
    def max_attempts(self) -> int:
        return max(1, self.attempts)

    def delay_before_next(self, attempt: int) -> float:
        """Milliseconds to wait after the failed ``attempt`` (1-based) before the next one."""
        return self.delay_ms * self.backoff_factor ** (attempt - 1)


class RepeatConfig(msgspec.Struct, kw_only=True, rename="camel", forbid_unknown_fields=True):
    """Runs a step's block (or a whole subtree) once per item or a fixed number of times.

    ``for_each`` is a context path; ``count`` is an int or a path resolving to one.
    """

    for_each: str | None = None
    count: int | str | None = None
    continue_on_error: bool = False
    delay_between: float = 0
    scope: Literal["block", "subtree"] = "block"
    subtree_end: str | None = None


class SwitchCase(msgspec.Struct, forbid_unknown_fields=True):
    when: Any
    next: str


class Step(msgspec.Struct, kw_only=True, rename="camel", forbid_unknown_fields=True):
    """One node of the workflow graph.

    ``block`` is an opaque action payload for the block executor; its string
    values and binding objects are resolved against the context before dispatch.
    A step without a block is always skipped.
    """

    id: str
    title: str | None = None
    when: Any = None
    block: dict[str, Any] | None = None
    repeat: RepeatConfig | None = None
    retry: RetryPolicy | None = None
    timeout_ms: float | None = None
    switch: list[SwitchCase] = []
    on_success: str | None = None
    on_failure: str | None = None
    next: str | None = None
    delay_after_ms: float | None = None
    set_vars: dict[str, Any] | None = None

    @property
    def retry_policy(self) -> RetryPolicy:
        return self.retry if self.retry is not None else RetryPolicy()

    @property
    def repeats_subtree(self) -> bool:
        return self.repeat is not None and self.repeat.scope == "subtree"


class Workflow(msgspec.Struct, kw_only=True, rename="camel", forbid_unknown_fields=True):
    """A versioned graph of steps with an entry point and optional seed variables."""

    version: str = "1"
    id: str | None = None
    title: str | None = None
    description: str | None = None
    start: str
    steps: list[Step]
    vars: dict[str, Any] = {}
    target_url: str | None = None
    default_delay_ms: float | None = None

    def steps_by_id(self) -> dict[str, Step]:
        """Indexes steps by id; a duplicated id is shadowed by its last occurrence."""
        return {step.id: step for step in self.steps}


class ExecutionContext(msgspec.Struct, frozen=True):
    """Immutable state visible to a step: step results, variables and loop state.

    Every setter returns a new context and leaves the receiver untouched.
    """

    step_context: StepContext = msgspec.field(default_factory=StepContext)
    var_context: VarContext = msgspec.field(default_factory=VarContext)
    loop_context: LoopContext = msgspec.field(default_factory=LoopContext)

    @classmethod
    def create(cls) -> "ExecutionContext":
        return cls(step_context=StepContext(), var_context=VarContext(), loop_context=LoopContext())

    def set_step_result(self, step_id: str, result: StepResult) -> "ExecutionContext":
        return structs.replace(self, step_context=self.step_context.set_step_result(step_id, result))

    def set_var(self, key: str, value: Any) -> "ExecutionContext":
        return structs.replace(self, var_context=self.var_context.set_var(key, value))

    def set_vars(self, values: Mapping[str, Any]) -> "ExecutionContext":
        return structs.replace(self, var_context=self.var_context.set_vars(values))

    def enter_for_each(self, item: Any, index: int, total: int) -> "ExecutionContext":
        return structs.replace(self, loop_context=self.loop_context.enter_for_each(item, index, total))

    def enter_loop(self, index: int, count: int) -> "ExecutionContext":
        return structs.replace(self, loop_context=self.loop_context.enter_loop(index, count))

    def exit_loop(self) -> "ExecutionContext":
        return structs.replace(self, loop_context=self.loop_context.exit_loop())

    @property
    def steps(self) -> dict[str, StepResult]:
        return self.step_context.steps

    @property
    def vars(self) -> dict[str, Any]:
        return self.var_context.vars

    def to_plain(self) -> dict[str, Any]:
        """Flattens the context to ``{steps, vars, forEach, loop}``."""
        return {
            "steps": dict(self.step_context.steps),
            "vars": dict(self.var_context.vars),
            "forEach": self.loop_context.for_each,
            "loop": self.loop_context.loop,
        }


class StepTrace(msgspec.Struct, kw_only=True, rename="camel"):
    """Trace entry for one visited step. Never read back by the engine."""

    step_id: str
    skipped: bool
    success: bool
    message: str
    result: Any
    started_at: str
    finished_at: str
    attempts: int


class StepOutcome(msgspec.Struct, frozen=True):
    """What executing one step produced: its trace entry, the updated context and where to go next."""

    trace: StepTrace
    context: ExecutionContext
    next_step_id: str | None = None


class SegmentResult(msgspec.Struct):
    """Traces and final context of a walk along the step graph, and the id the walk stopped at."""

    steps: list[StepTrace]
    context: ExecutionContext
    next_step_id: str | None = None


class RunResult(msgspec.Struct, kw_only=True, rename="camel"):
    """Result of running a workflow: the ordered trace, the surface used and the final context."""

    steps: list[StepTrace]
    surface_id: Any
    context: ExecutionContext
    halted: str | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert the RunResult to a dictionary."""
        return msgspec.to_builtins(
            {
                "steps": self.steps,
                "surfaceId": self.surface_id,
                "context": self.context.to_plain(),
                "halted": self.halted,
            }
        )

    def to_json(self) -> str:
        """Convert the RunResult to a JSON string."""
        return msgspec.json.encode(self.to_dict()).decode()

    def to_yaml(self) -> str:
        """Convert the RunResult to a YAML string."""
        return msgspec.yaml.encode(self.to_dict()).decode()
