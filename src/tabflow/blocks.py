"""
Built-in blocks that run without a browser.
"""

import asyncio

from tabflow.domain.port import PluginBase

__all__ = [
    "WaitBlock",
]


class WaitBlock(PluginBase):
    """Block that pauses the workflow for ``duration`` milliseconds."""

    plugin_name = "wait"

    async def execute(self, duration: float) -> dict:
        """Waits for the given number of milliseconds."""
        if duration < 0:
            raise ValueError(f"duration must not be negative, got {duration}")
        await asyncio.sleep(duration / 1000)
        return {"data": True}
