from abc import ABC, abstractmethod
from typing import Any

from tabflow.domain.entity import ExecutionContext, RunResult, Step, StepOutcome, Workflow
from tabflow.domain.port import PluginBase
from tabflow.domain.value_object import BlockResult


class BlockExecutor(ABC):
    """Abstract interface for dispatching a resolved block payload to the page."""

    @abstractmethod
    async def execute(self, block: dict[str, Any], surface_id: Any) -> BlockResult | Any:
        """
        Execute a block on the given surface.

        :param block: The block payload with all bindings resolved
        :type block: dict[str, Any]
        :param surface_id: The execution surface (tab) to run the block on
        :type surface_id: Any
        :returns: A BlockResult, a mapping shaped like one, or plain data
        :rtype: BlockResult | Any
        """


class TabCreator(ABC):
    """Abstract interface for providing an execution surface."""

    @abstractmethod
    async def create(self, target_url: str, activate: bool, origin_surface_id: Any = None) -> Any:
        """
        Open a surface for the given URL.

        :param target_url: The URL to open
        :type target_url: str
        :param activate: Whether the new surface should take focus
        :type activate: bool
        :param origin_surface_id: The surface the run was started from, if any
        :type origin_surface_id: Any
        :returns: The identifier of the created surface
        :rtype: Any
        """


class ExecutionStatusController(ABC):
    """Abstract interface for the on-page "workflow running" indicator."""

    @abstractmethod
    async def show(self, surface_id: Any, message: str | None = None) -> None:
        """
        Show the indicator on a surface.

        :param surface_id: The surface to show the indicator on
        :type surface_id: Any
        :param message: Optional text for the indicator
        :type message: str | None
        """

    @abstractmethod
    async def hide(self, surface_id: Any) -> None:
        """
        Hide the indicator on a surface.

        :param surface_id: The surface to hide the indicator on
        :type surface_id: Any
        """


class WorkflowEngine(ABC):
    """Abstract base class defining the workflow engine interface."""

    @abstractmethod
    async def run(
        self,
        workflow: Workflow,
        target_url: str | None = None,
        activate: bool = False,
        origin_surface_id: Any = None,
    ) -> RunResult:
        """
        Runs the given workflow.

        :param workflow: The workflow to execute
        :type workflow: Workflow
        :param target_url: URL template for the surface, defaults to the workflow's own
        :type target_url: str | None
        :param activate: Whether the created surface should take focus
        :type activate: bool
        :param origin_surface_id: The surface the run was started from, if any
        :type origin_surface_id: Any
        :returns: The trace, surface id and final context of the run
        :rtype: RunResult
        """
        ...


class StepExecutor(ABC):
    """Abstract executor interface for executing one workflow step against a context."""

    @abstractmethod
    async def execute(self, step: Step, ctx: ExecutionContext, surface_id: Any) -> StepOutcome:
        """
        Execute a workflow step.

        :param step: The workflow step to execute
        :type step: Step
        :param ctx: The context produced by the previous steps
        :type ctx: ExecutionContext
        :param surface_id: The surface blocks are dispatched to
        :type surface_id: Any
        :returns: The trace entry, the updated context and the next step id
        :rtype: StepOutcome
        """
        ...

    @abstractmethod
    def next_step_id(self, step: Step, success: bool, ctx: ExecutionContext) -> str | None:
        """
        Decide which step follows ``step``.

        :param step: The step that just ran
        :type step: Step
        :param success: Whether the step succeeded
        :type success: bool
        :param ctx: The context after the step
        :type ctx: ExecutionContext
        :returns: The next step id, or None to end the run
        :rtype: str | None
        """


class TaskRunner(ABC):
    """Abstract interface for running plugin tasks."""

    @abstractmethod
    async def run(self, plugin: PluginBase, bound: dict[str, Any]) -> Any:
        """
        Run a plugin with bound parameters.

        :param plugin: The plugin to run
        :type plugin: PluginBase
        :param bound: Dictionary of bound parameters
        :type bound: dict[str, Any]
        :returns: The result of running the plugin
        :rtype: Any
        """


class PluginResolver(ABC):
    """Abstract base class defining plugin resolution interface."""

    @abstractmethod
    def resolve(self, name: str) -> PluginBase:
        """
        Resolves and returns a plugin instance by its name.

        :param name: The name of the plugin to resolve
        :type name: str
        :returns: The resolved plugin instance
        :rtype: PluginBase
        :raises: KeyError if the plugin is not found
        """
        ...

    @abstractmethod
    def register(self, plugin: type[PluginBase]) -> None:
        """
        Registers a plugin class under its block name.

        :param plugin: The plugin class to register
        :type plugin: type[PluginBase]
        """


class PlaceholderResolver(ABC):
    """Abstract interface for resolving ``${path}`` placeholders and bindings against a context."""

    @abstractmethod
    def resolve_bindings(self, value: Any, ctx: ExecutionContext) -> Any:
        """
        Resolve placeholders and binding objects in any value type.

        :param value: The value that may contain placeholders
        :type value: Any
        :param ctx: The context to resolve against
        :type ctx: ExecutionContext
        :returns: The value with placeholders resolved
        :rtype: Any
        """


class Binder(ABC):
    """Abstract interface for binding parameters to plugin methods."""

    @abstractmethod
    def bind(self, plugin: PluginBase, params: dict[str, Any]) -> dict[str, Any]:
        """
        Bind parameters to a plugin's execute method.

        :param plugin: The plugin to bind parameters for
        :type plugin: PluginBase
        :param params: The parameters to bind
        :type params: dict[str, Any]
        :returns: Dictionary of bound parameters
        :rtype: dict[str, Any]
        """
