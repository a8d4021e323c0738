from tabflow.application.port import PluginResolver
from tabflow.domain.port import PluginBase
from tabflow.infrastructure.provider import get_plugins


class InMemoryPluginResolver(PluginResolver):
    """Resolves block plugins from an in-memory registry."""

    def __init__(self, plugins: list[type[PluginBase]] | None = None):
        """Initializes resolver with optional plugin list, defaulting to every registered plugin."""
        self._registry: dict[str, type[PluginBase]] = {}
        if plugins is None:
            plugins = get_plugins()
        for cls in plugins:
            self.register(cls)

    def register(self, plugin: type[PluginBase]) -> None:
        self._registry[plugin.block_name()] = plugin

    def names(self) -> list[str]:
        return sorted(self._registry)

    def resolve(self, name: str) -> PluginBase:
        """Returns a plugin instance matching the given block name, raises KeyError if not found."""
        try:
            cls = self._registry[name]
        except KeyError:
            raise KeyError(f"No plugin registered for block '{name}'") from None
        return cls()
