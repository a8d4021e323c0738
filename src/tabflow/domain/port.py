from typing import Any


class PluginBase:
    """Base class for in-process blocks. Enforces an 'execute' method and registers subclasses.

    A subclass handles every block whose ``name`` equals its ``plugin_name``
    (the class name when unset).
    """

    _plugins = []

    plugin_name: str | None = None

    def __init_subclass__(cls, **kwargs):
        """Registers subclass and ensures 'execute' method is defined."""
        super().__init_subclass__(**kwargs)

        if "execute" not in cls.__dict__:
            raise TypeError(f"{cls.__name__} must define a 'execute' method")

        PluginBase._plugins.append(cls)

    @classmethod
    def block_name(cls) -> str:
        return cls.plugin_name or cls.__name__

    def execute(self, *args, **kwargs) -> Any:
        """Abstract execute method to be implemented by plugins."""
        raise NotImplementedError("Plugins must implement the execute method")
