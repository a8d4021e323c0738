import asyncio

from tabflow.application.adapter import BindingResolver, ConditionEvaluator, ParameterBinder
from tabflow.application.executor import Sleep, WorkflowStepExecutor
from tabflow.application.port import BlockExecutor, ExecutionStatusController, TabCreator
from tabflow.domain.port import PluginBase
from tabflow.domain.value_object import ExecutionOptions
from tabflow.infrastructure.adapter.in_memory.block_executor import PluginBlockExecutor
from tabflow.infrastructure.adapter.in_memory.plugin_resolver import InMemoryPluginResolver
from tabflow.infrastructure.adapter.in_memory.status import LoggingStatusController
from tabflow.infrastructure.adapter.in_memory.tab_creator import InMemoryTabCreator
from tabflow.infrastructure.adapter.in_memory.task_runner import InMemoryTaskRunner
from tabflow.infrastructure.adapter.in_memory.workflow_engine import InMemoryWorkflowRunner


class InMemoryClient:
    """Wiring of the in-memory adapters around one workflow runner."""

    def __init__(
        self,
        resolver: InMemoryPluginResolver,
        block_executor: BlockExecutor,
        tab_creator: TabCreator,
        status_controller: ExecutionStatusController | None,
        engine: InMemoryWorkflowRunner,
        execution_options: ExecutionOptions,
    ):
        self.resolver = resolver
        self.block_executor = block_executor
        self.tab_creator = tab_creator
        self.status_controller = status_controller
        self.engine = engine
        self.execution_options = execution_options


def create(
    plugins: list[type[PluginBase]] | None = None,
    block_executor: BlockExecutor | None = None,
    tab_creator: TabCreator | None = None,
    status_controller: ExecutionStatusController | None = None,
    execution_options: ExecutionOptions | None = None,
    sleep: Sleep = asyncio.sleep,
) -> InMemoryClient:
    """Builds an in-memory client.

    Blocks run through the plugin registry unless a ``block_executor`` is given.
    Surfaces come from an InMemoryTabCreator and the status indicator is logged
    unless other collaborators are passed in.
    """
    execution_options = execution_options if execution_options is not None else ExecutionOptions()
    resolver = InMemoryPluginResolver(plugins)
    if block_executor is None:
        block_executor = PluginBlockExecutor(
            resolver=resolver, binder=ParameterBinder(), task_runner=InMemoryTaskRunner()
        )
    tab_creator = tab_creator if tab_creator is not None else InMemoryTabCreator()
    status_controller = status_controller if status_controller is not None else LoggingStatusController()

    values = BindingResolver()
    step_executor = WorkflowStepExecutor(
        block_executor=block_executor,
        values=values,
        conditions=ConditionEvaluator(),
        sleep=sleep,
    )
    engine = InMemoryWorkflowRunner(
        step_executor=step_executor,
        tab_creator=tab_creator,
        values=values,
        status_controller=status_controller,
        execution_options=execution_options,
        sleep=sleep,
    )

    return InMemoryClient(
        resolver=resolver,
        block_executor=block_executor,
        tab_creator=tab_creator,
        status_controller=status_controller,
        engine=engine,
        execution_options=execution_options,
    )
