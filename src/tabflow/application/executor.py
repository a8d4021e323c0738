import asyncio
import inspect
import logging
import math
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from datetime import datetime, timezone
from typing import Any

import msgspec

from tabflow.application.adapter import ConditionEvaluator
from tabflow.application.port import BlockExecutor, PlaceholderResolver, StepExecutor
from tabflow.domain.entity import ExecutionContext, RepeatConfig, RetryPolicy, Step, StepOutcome, StepTrace
from tabflow.domain.exception import StepTimeoutError
from tabflow.domain.service import get_by_path
from tabflow.domain.value_object import BlockOutcome, BlockResult, StepResult

logger = logging.getLogger(__name__)

Sleep = Callable[[float], Awaitable[Any]]


def utc_now() -> str:
    """Current time as an ISO-8601 UTC timestamp with millisecond precision."""
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


class RetryingBlockRunner:
    """Runs one block through its retry loop.

    Each attempt re-resolves the block's bindings, dispatches it and races the
    dispatch against the step timeout. A timed-out dispatch is not cancelled;
    it keeps running in the background and its result is discarded.
    """

    def __init__(self, block_executor: BlockExecutor, values: PlaceholderResolver, sleep: Sleep = asyncio.sleep):
        self.block_executor = block_executor
        self.values = values
        self.sleep = sleep
        self._orphans: set[asyncio.Future] = set()

    async def run(
        self,
        block: dict[str, Any],
        ctx: ExecutionContext,
        surface_id: Any,
        policy: RetryPolicy,
        timeout_ms: float | None = None,
    ) -> BlockOutcome:
        attempts = 0
        result: Any = None
        success = False
        message = ""
        while attempts < policy.max_attempts:
            attempts += 1
            try:
                bound = self.values.resolve_bindings(block, ctx)
                block_result = BlockResult.from_value(await self._dispatch(bound, surface_id, timeout_ms))
                result = block_result.to_dict()
                success = not block_result.has_error
                message = block_result.message or ""
                if success:
                    break
                logger.debug("Block %r reported an error on attempt %d: %s", block.get("name"), attempts, message)
            except Exception as e:
                success = False
                message = str(e) or "Workflow step error"
                result = {"hasError": True, "message": message}
                logger.warning("Block %r raised on attempt %d: %s", block.get("name"), attempts, message)

            if attempts < policy.max_attempts:
                wait = policy.delay_before_next(attempts)
                if wait > 0:
                    logger.debug("Retrying block %r in %sms", block.get("name"), wait)
                    await self.sleep(wait / 1000)

        return BlockOutcome(result=result, success=success, message=message, attempts=attempts)

    async def _dispatch(self, block: dict[str, Any], surface_id: Any, timeout_ms: float | None) -> Any:
        call = self.block_executor.execute(block, surface_id)
        if not inspect.isawaitable(call):
            return call
        if not timeout_ms or timeout_ms <= 0:
            return await call
        task = asyncio.ensure_future(call)
        done, _ = await asyncio.wait({task}, timeout=timeout_ms / 1000)
        if task in done:
            return task.result()
        self._orphans.add(task)
        task.add_done_callback(self._forget)
        raise StepTimeoutError(timeout_ms)

    def _forget(self, task: asyncio.Future) -> None:
        self._orphans.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.debug("Timed-out block finished with an error: %s", task.exception())


class RepeatStrategy(ABC):
    """Decides what a repeat iterates over and how each iteration is exposed in the context."""

    def __init__(self, config: RepeatConfig):
        self.config = config

    @abstractmethod
    def items(self, ctx: ExecutionContext) -> list[Any]: ...

    @abstractmethod
    def enter(self, ctx: ExecutionContext, item: Any, index: int, total: int) -> ExecutionContext: ...


class ForEachRepeatStrategy(RepeatStrategy):
    """Iterates a list found at a context path. A scalar iterates once, a missing value never."""

    def items(self, ctx: ExecutionContext) -> list[Any]:
        value = get_by_path(ctx, self.config.for_each)
        if isinstance(value, (list, tuple)):
            return list(value)
        if value is None or value is msgspec.UNSET:
            return []
        return [value]

    def enter(self, ctx: ExecutionContext, item: Any, index: int, total: int) -> ExecutionContext:
        return ctx.enter_for_each(item, index, total)


class CountRepeatStrategy(RepeatStrategy):
    """Iterates ``0..count-1``; ``count`` may be a context path."""

    def items(self, ctx: ExecutionContext) -> list[Any]:
        count = self.config.count
        if isinstance(count, str):
            count = get_by_path(ctx, count)
            if count is None or count is msgspec.UNSET:
                count = 0
        if isinstance(count, bool) or not isinstance(count, (int, float)) or not math.isfinite(count):
            raise ValueError(f"repeat count must be a number, got {count!r}")
        return list(range(max(0, int(count))))

    def enter(self, ctx: ExecutionContext, item: Any, index: int, total: int) -> ExecutionContext:
        return ctx.enter_loop(index, total)


class RepeatStrategyFactory:
    """Factory to return the correct RepeatStrategy for a repeat config."""

    @staticmethod
    def get_strategy(config: RepeatConfig) -> RepeatStrategy:
        if config.for_each:
            return ForEachRepeatStrategy(config)
        if config.count is not None:
            return CountRepeatStrategy(config)
        raise ValueError("repeat requires either forEach or count")


class BlockRepeater:
    """Runs a step's block once per repeat iteration, each through the retry loop."""

    def __init__(self, runner: RetryingBlockRunner, sleep: Sleep = asyncio.sleep):
        self.runner = runner
        self.sleep = sleep

    async def run(
        self,
        block: dict[str, Any],
        config: RepeatConfig,
        ctx: ExecutionContext,
        surface_id: Any,
        policy: RetryPolicy,
        timeout_ms: float | None = None,
    ) -> tuple[BlockOutcome, ExecutionContext]:
        try:
            strategy = RepeatStrategyFactory.get_strategy(config)
            items = strategy.items(ctx)
        except (ValueError, OverflowError) as e:
            message = str(e)
            result = {"hasError": True, "message": message, "data": None}
            failed = BlockOutcome(result=result, success=False, message=message)
            return failed, ctx

        results: list[Any] = []
        errors: list[dict[str, Any]] = []
        attempts = 0
        current = ctx
        for index, item in enumerate(items):
            current = strategy.enter(current, item, index, len(items))
            outcome = await self.runner.run(block, current, surface_id, policy, timeout_ms)
            attempts += outcome.attempts
            if outcome.success:
                results.append(outcome.result)
            else:
                errors.append({"index": index, "item": item, "error": outcome.result})
                if not config.continue_on_error:
                    message = f"Repeat failed at index {index}: {outcome.message}"
                    data = {"results": results, "errors": errors, "stoppedAt": index}
                    return (
                        BlockOutcome(
                            result={"hasError": True, "message": message, "data": data},
                            success=False,
                            message=message,
                            attempts=attempts,
                        ),
                        current.exit_loop(),
                    )
                results.append(None)

            if config.delay_between and index < len(items) - 1:
                await self.sleep(config.delay_between / 1000)

        if errors:
            message = f"Completed with {len(errors)} error(s) out of {len(items)}"
        else:
            message = f"Completed {len(items)} iteration(s)"
        outcome = BlockOutcome(
            result={"hasError": False, "message": message, "data": results},
            success=True,
            message=message,
            attempts=attempts,
        )
        return outcome, current.exit_loop()


class WorkflowStepExecutor(StepExecutor):
    """Executes one step: condition check, block dispatch with retry or repeat, result recording and routing.

    Failures never raise. They are reported through ``success=False`` on the
    trace entry and the recorded step result, leaving ``onFailure`` or
    ``switch`` to decide where the run goes next.
    """

    def __init__(
        self,
        block_executor: BlockExecutor,
        values: PlaceholderResolver,
        conditions: ConditionEvaluator,
        sleep: Sleep = asyncio.sleep,
    ):
        self.values = values
        self.conditions = conditions
        self.block_runner = RetryingBlockRunner(block_executor, values, sleep)
        self.repeater = BlockRepeater(self.block_runner, sleep)

    async def execute(self, step: Step, ctx: ExecutionContext, surface_id: Any) -> StepOutcome:
        started_at = utc_now()
        updated = ctx
        skipped = False
        outcome = BlockOutcome()

        if not self.conditions.evaluate(step.when, ctx):
            logger.debug("Skipping step %r: condition not met", step.id)
            skipped = True
        elif step.block is None:
            logger.debug("Skipping step %r: no block", step.id)
            skipped = True
        elif step.repeat is not None and not step.repeats_subtree:
            outcome, updated = await self.repeater.run(
                step.block, step.repeat, ctx, surface_id, step.retry_policy, step.timeout_ms
            )
        else:
            outcome = await self.block_runner.run(step.block, ctx, surface_id, step.retry_policy, step.timeout_ms)

        finished_at = utc_now()
        if not outcome.success:
            logger.warning("Step %r failed after %d attempt(s): %s", step.id, outcome.attempts, outcome.message)

        updated = updated.set_step_result(
            step.id, StepResult(result=outcome.result, success=outcome.success, skipped=skipped)
        )
        if not skipped and step.set_vars:
            updated = updated.set_vars(self._resolve_set_vars(step, updated))

        trace = StepTrace(
            step_id=step.id,
            skipped=skipped,
            success=outcome.success,
            message=outcome.message,
            result=outcome.result,
            started_at=started_at,
            finished_at=finished_at,
            attempts=outcome.attempts,
        )
        return StepOutcome(trace=trace, context=updated, next_step_id=self.next_step_id(step, outcome.success, updated))

    def _resolve_set_vars(self, step: Step, ctx: ExecutionContext) -> dict[str, Any]:
        """Resolves each ``setVars`` entry on its own; an entry that fails to resolve is set to None."""
        values: dict[str, Any] = {}
        for name, binding in step.set_vars.items():
            try:
                values[name] = self.values.resolve_bindings(binding, ctx)
            except Exception as e:
                logger.warning("Step %r: could not resolve setVars entry %r, using None: %s", step.id, name, e)
                values[name] = None
        return values

    def next_step_id(self, step: Step, success: bool, ctx: ExecutionContext) -> str | None:
        """Picks the next step: first matching switch case, then onSuccess/onFailure, then next."""
        for case in step.switch:
            if self.conditions.evaluate(case.when, ctx):
                logger.debug("Step %r: switch matched, next is %r", step.id, case.next)
                return case.next
        if success and step.on_success:
            return step.on_success
        if not success and step.on_failure:
            return step.on_failure
        if step.next:
            return step.next
        logger.debug("Step %r has no next step", step.id)
        return None
