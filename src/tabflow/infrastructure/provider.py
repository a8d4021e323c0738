from tabflow.blocks import WaitBlock  # noqa: F401
from tabflow.domain.port import PluginBase


def get_plugins() -> list[type[PluginBase]]:
    """Returns a list of all registered plugin classes."""
    return list(PluginBase._plugins)
