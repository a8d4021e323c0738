import asyncio
import logging
import time
from collections.abc import Callable
from typing import Any

from msgspec import structs

from tabflow.application.adapter import BindingResolver, to_text
from tabflow.application.executor import RepeatStrategyFactory, Sleep, utc_now
from tabflow.application.port import ExecutionStatusController, StepExecutor, TabCreator, WorkflowEngine
from tabflow.domain.entity import ExecutionContext, RunResult, SegmentResult, Step, StepTrace, Workflow
from tabflow.domain.exception import SurfaceCreationError
from tabflow.domain.value_object import ExecutionOptions, StepResult

logger = logging.getLogger(__name__)


class RunGuard:
    """Stops a run that exceeds ``max_steps`` or ``max_duration_ms``. Unlimited by default."""

    def __init__(self, options: ExecutionOptions, clock: Callable[[], float] = time.monotonic):
        self.options = options
        self.clock = clock
        self.started = clock()
        self.steps = 0
        self.halted: str | None = None

    def allows_next(self) -> bool:
        if self.halted is None:
            if self.options.max_steps is not None and self.steps >= self.options.max_steps:
                self.halted = "max_steps"
            elif (
                self.options.max_duration_ms is not None
                and (self.clock() - self.started) * 1000 >= self.options.max_duration_ms
            ):
                self.halted = "max_duration_ms"
            if self.halted is not None:
                logger.warning("Run halted by %s after %d step(s)", self.halted, self.steps)
        return self.halted is None

    def count(self) -> None:
        self.steps += 1


class InMemoryWorkflowRunner(WorkflowEngine):
    """Walks a workflow's step graph on one surface, one step at a time."""

    def __init__(
        self,
        step_executor: StepExecutor,
        tab_creator: TabCreator,
        values: BindingResolver,
        status_controller: ExecutionStatusController | None = None,
        execution_options: ExecutionOptions | None = None,
        sleep: Sleep = asyncio.sleep,
    ):
        self.step_executor = step_executor
        self.tab_creator = tab_creator
        self.values = values
        self.status_controller = status_controller
        self.execution_options = execution_options if execution_options is not None else ExecutionOptions()
        self.sleep = sleep

    async def run(
        self,
        workflow: Workflow,
        target_url: str | None = None,
        activate: bool = False,
        origin_surface_id: Any = None,
    ) -> RunResult:
        """Runs the workflow from its start step and returns the trace.

        Raises:
            ValueError: If neither ``target_url`` nor the workflow names a target URL.
            SurfaceCreationError: If the tab creator cannot provide a surface.
        """
        ctx = ExecutionContext.create()
        if workflow.vars:
            ctx = ctx.set_vars(workflow.vars)

        template = target_url if target_url is not None else workflow.target_url
        if not template:
            raise ValueError("A target URL is required to run a workflow")
        resolved_url = self.values.interpolate(template, ctx)
        if not isinstance(resolved_url, str):
            resolved_url = to_text(resolved_url)

        try:
            surface_id = await self.tab_creator.create(resolved_url, activate, origin_surface_id)
        except Exception as e:
            raise SurfaceCreationError(resolved_url, e) from e

        logger.debug("Running workflow %r on surface %r", workflow.id or workflow.start, surface_id)
        guard = RunGuard(self.execution_options)
        await self._show_status(surface_id)
        try:
            segment = await self.run_segment(workflow.steps_by_id(), workflow, workflow.start, ctx, surface_id, guard)
            return RunResult(steps=segment.steps, surface_id=surface_id, context=segment.context, halted=guard.halted)
        finally:
            await self._hide_status(surface_id)

    async def run_segment(
        self,
        steps_by_id: dict[str, Step],
        workflow: Workflow,
        current_id: str | None,
        ctx: ExecutionContext,
        surface_id: Any,
        guard: RunGuard,
        stop_before: str | None = None,
        skip_repeat: frozenset[str] = frozenset(),
    ) -> SegmentResult:
        """Walks the graph from ``current_id`` until it ends, reaches ``stop_before`` or the guard trips."""
        traces: list[StepTrace] = []
        while current_id is not None and current_id != stop_before:
            if not guard.allows_next():
                break
            step = steps_by_id.get(current_id)
            if step is None:
                logger.debug("Step %r does not exist, ending walk", current_id)
                break

            if step.repeats_subtree and step.id not in skip_repeat:
                segment = await self._run_subtree_repeat(
                    steps_by_id, workflow, step, ctx, surface_id, guard, skip_repeat
                )
                traces.extend(segment.steps)
                ctx = segment.context
                current_id = segment.next_step_id
                continue

            guard.count()
            outcome = await self.step_executor.execute(step, ctx, surface_id)
            traces.append(outcome.trace)
            ctx = outcome.context

            if outcome.next_step_id is not None and not outcome.trace.skipped:
                delay = step.delay_after_ms if step.delay_after_ms is not None else workflow.default_delay_ms
                if delay and delay > 0:
                    await self.sleep(delay / 1000)
            current_id = outcome.next_step_id

        return SegmentResult(steps=traces, context=ctx, next_step_id=current_id)

    async def _run_subtree_repeat(
        self,
        steps_by_id: dict[str, Step],
        workflow: Workflow,
        step: Step,
        ctx: ExecutionContext,
        surface_id: Any,
        guard: RunGuard,
        skip_repeat: frozenset[str],
    ) -> SegmentResult:
        """Runs the segment from ``step`` up to ``subtreeEnd`` once per item, then continues at ``subtreeEnd``."""
        config = step.repeat
        try:
            if not config.subtree_end:
                raise ValueError(f"subtree repeat requires 'subtreeEnd' on step {step.id}")
            strategy = RepeatStrategyFactory.get_strategy(config)
            items = strategy.items(ctx)
        except (ValueError, OverflowError) as e:
            return self._fail_repeat_head(step, ctx, str(e))

        traces: list[StepTrace] = []
        iterations: list[dict[str, Any]] = []
        errors: list[dict[str, Any]] = []
        inner_skip = skip_repeat | {step.id}
        current = ctx
        for index, item in enumerate(items):
            current = strategy.enter(current, item, index, len(items))
            segment = await self.run_segment(
                steps_by_id, workflow, step.id, current, surface_id, guard, config.subtree_end, inner_skip
            )
            traces.extend(segment.steps)
            current = segment.context

            success = all(t.success or t.skipped for t in segment.steps)
            iterations.append(
                {
                    "index": index,
                    "success": success,
                    "steps": [
                        {
                            "stepId": t.step_id,
                            "success": t.success,
                            "skipped": t.skipped,
                            "message": t.message,
                            "result": t.result,
                        }
                        for t in segment.steps
                    ],
                }
            )
            if not success:
                failed = next((t for t in segment.steps if not t.success), None)
                message = failed.message if failed is not None and failed.message else "Subtree iteration failed"
                errors.append({"index": index, "message": message})
                if not config.continue_on_error:
                    break
            if guard.halted is not None:
                break

            if config.delay_between and index < len(items) - 1:
                await self.sleep(config.delay_between / 1000)

        current = current.exit_loop()
        has_error = bool(errors) and not config.continue_on_error
        if errors:
            message = f"Subtree repeat completed with {len(errors)} error(s) out of {len(items)}"
        else:
            message = f"Subtree repeat completed {len(items)} iteration(s)"
        summary = {"hasError": has_error, "message": message, "data": {"iterations": iterations, "errors": errors}}
        current = current.set_step_result(
            step.id, StepResult(result=summary, success=not has_error, skipped=not items)
        )

        for i in range(len(traces) - 1, -1, -1):
            if traces[i].step_id == step.id:
                traces[i] = structs.replace(traces[i], result=summary, success=not has_error, message=message)
                break
        else:
            now = utc_now()
            traces.append(
                StepTrace(
                    step_id=step.id,
                    skipped=not items,
                    success=not has_error,
                    message=message,
                    result=summary,
                    started_at=now,
                    finished_at=now,
                    attempts=0,
                )
            )
        return SegmentResult(steps=traces, context=current, next_step_id=config.subtree_end)

    def _fail_repeat_head(self, step: Step, ctx: ExecutionContext, message: str) -> SegmentResult:
        logger.warning("Step %r cannot repeat its subtree: %s", step.id, message)
        result = {"hasError": True, "message": message, "data": None}
        ctx = ctx.set_step_result(step.id, StepResult(result=result, success=False))
        now = utc_now()
        trace = StepTrace(
            step_id=step.id,
            skipped=False,
            success=False,
            message=message,
            result=result,
            started_at=now,
            finished_at=now,
            attempts=0,
        )
        return SegmentResult(steps=[trace], context=ctx, next_step_id=self.step_executor.next_step_id(step, False, ctx))

    async def _show_status(self, surface_id: Any) -> None:
        if self.status_controller is None:
            return
        try:
            await self.status_controller.show(surface_id, self.execution_options.status_message)
        except Exception as e:
            logger.warning("Could not show execution status on surface %r: %s", surface_id, e)

    async def _hide_status(self, surface_id: Any) -> None:
        if self.status_controller is None:
            return
        try:
            await self.status_controller.hide(surface_id)
        except Exception as e:
            logger.warning("Could not hide execution status on surface %r: %s", surface_id, e)
