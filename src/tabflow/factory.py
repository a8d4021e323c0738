from tabflow.application.port import BlockExecutor, ExecutionStatusController, TabCreator
from tabflow.client import Client
from tabflow.domain.port import PluginBase
from tabflow.domain.value_object import ExecutionOptions
from tabflow.infrastructure.adapter.in_memory.client import create as create_in_memory_client


def create(
    plugins: list[type[PluginBase]] | None = None,
    *,
    block_executor: BlockExecutor | None = None,
    tab_creator: TabCreator | None = None,
    status_controller: ExecutionStatusController | None = None,
    execution_options: ExecutionOptions | None = None,
) -> Client:
    """
    Factory function to create a Client wired to the in-memory runner.

    Args:
        plugins: Optional list of plugin classes to pre-register; every registered
            plugin is available when omitted
        block_executor: Executes blocks instead of the plugin registry, e.g. a browser bridge
        tab_creator: Provides execution surfaces, defaults to sequential in-memory ids
        status_controller: Shows the running indicator, defaults to logging
        execution_options: Run guard and status settings, defaults to ExecutionOptions.from_env()

    Returns:
        A configured Client instance
    """
    in_memory_client = create_in_memory_client(
        plugins=plugins,
        block_executor=block_executor,
        tab_creator=tab_creator,
        status_controller=status_controller,
        execution_options=execution_options if execution_options is not None else ExecutionOptions.from_env(),
    )

    return Client(engine=in_memory_client.engine, plugin_resolver=in_memory_client.resolver)
