import logging
from typing import Any

from tabflow.application.port import ExecutionStatusController

logger = logging.getLogger(__name__)


class LoggingStatusController(ExecutionStatusController):
    """Reports the execution indicator through logging and tracks which surfaces show it."""

    def __init__(self):
        self.visible: dict[Any, str | None] = {}

    async def show(self, surface_id: Any, message: str | None = None) -> None:
        self.visible[surface_id] = message
        logger.info("Surface %r: %s", surface_id, message or "running")

    async def hide(self, surface_id: Any) -> None:
        self.visible.pop(surface_id, None)
        logger.info("Surface %r: done", surface_id)
