import logging
from typing import Any

from tabflow.application.port import BlockExecutor, Binder, PluginResolver, TaskRunner
from tabflow.domain.value_object import BlockResult

logger = logging.getLogger(__name__)


class PluginBlockExecutor(BlockExecutor):
    """Executes blocks in-process by dispatching on the block's ``name`` to a registered plugin.

    The remaining block fields are bound to the plugin's ``execute`` signature;
    a ``surface_id`` parameter receives the surface the block runs on.
    """

    def __init__(self, resolver: PluginResolver, binder: Binder, task_runner: TaskRunner):
        self.resolver = resolver
        self.binder = binder
        self.task_runner = task_runner

    async def execute(self, block: dict[str, Any], surface_id: Any) -> BlockResult:
        name = block.get("name")
        if not name:
            return BlockResult(has_error=True, message="Block has no name")
        try:
            plugin = self.resolver.resolve(name)
            params = {key: value for key, value in block.items() if key != "name"}
            params["surface_id"] = surface_id
            bound = self.binder.bind(plugin, params)
            result = await self.task_runner.run(plugin, bound)
        except Exception as e:
            message = e.args[0] if isinstance(e, KeyError) and e.args else str(e)
            logger.warning("Block %r failed: %s", name, message)
            return BlockResult(has_error=True, message=message or type(e).__name__)
        return BlockResult.from_value(result)
