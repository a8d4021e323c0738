import inspect
from typing import Any

from tabflow.application.port import TaskRunner
from tabflow.domain.port import PluginBase


class InMemoryTaskRunner(TaskRunner):
    """Runs a plugin in the current event loop. Coroutine ``execute`` methods are awaited."""

    async def run(self, plugin: PluginBase, bound: dict[str, Any]) -> Any:
        result = plugin.execute(**bound)
        if inspect.isawaitable(result):
            return await result
        return result
