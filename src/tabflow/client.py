import asyncio
from pathlib import Path
from typing import Any

from tabflow.application.port import PluginResolver, WorkflowEngine
from tabflow.application.service import load_workflow, load_workflow_file
from tabflow.domain.entity import RunResult, Workflow
from tabflow.domain.port import PluginBase


class Client:
    """
    Unified client façade for workflow execution.

    The Client is the only thing users interact with. It exposes methods like .plugin(),
    .run(), and .load_plugins(). It holds a reference to the workflow runner under the hood.
    """

    def __init__(self, engine: WorkflowEngine, plugin_resolver: PluginResolver):
        """
        Initialize the client with a workflow runner and plugin resolver.

        Args:
            engine: The workflow runner (e.g., InMemoryWorkflowRunner)
            plugin_resolver: The resolver the runner's block executor dispatches through
        """
        self._engine = engine
        self._resolver = plugin_resolver

    @property
    def engine(self) -> WorkflowEngine:
        return self._engine

    def plugin(self, plugin: type[PluginBase]) -> "Client":
        """
        Register a block plugin with the client.

        Args:
            plugin: The plugin class to register

        Returns:
            The client instance for method chaining
        """
        self._resolver.register(plugin)
        return self

    async def run(
        self,
        workflow: dict | Workflow | str | Path,
        target_url: str | None = None,
        activate: bool = False,
        origin_surface_id: Any = None,
    ) -> RunResult:
        """
        Execute a workflow.

        Args:
            workflow: The workflow as a dictionary, a Workflow, or a path to a JSON/YAML file
            target_url: URL template for the execution surface, defaults to the workflow's targetUrl
            activate: Whether the surface should take focus
            origin_surface_id: The surface the run was started from, if any

        Returns:
            The trace, surface id and final context of the run
        """
        if isinstance(workflow, (str, Path)):
            workflow = load_workflow_file(workflow)
        else:
            workflow = load_workflow(workflow)
        return await self._engine.run(
            workflow, target_url=target_url, activate=activate, origin_surface_id=origin_surface_id
        )

    def run_sync(self, workflow: dict | Workflow | str | Path, **kwargs: Any) -> RunResult:
        """Runs a workflow to completion in a fresh event loop. Accepts the same arguments as :meth:`run`."""
        return asyncio.run(self.run(workflow, **kwargs))

    def load_plugins(self) -> list[type[PluginBase]]:
        """
        Get all registered plugins.

        Returns:
            List of registered plugin classes
        """
        return PluginBase._plugins

    @staticmethod
    def get_available_plugins() -> list[type[PluginBase]]:
        """
        Get all available plugin classes (static method).

        Returns:
            List of available plugin classes
        """
        return PluginBase._plugins
