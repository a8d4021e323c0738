import itertools
import logging
from typing import Any

from tabflow.application.port import TabCreator

logger = logging.getLogger(__name__)


class InMemoryTabCreator(TabCreator):
    """Hands out sequential surface ids and remembers which URLs were opened."""

    def __init__(self, first_id: int = 1):
        self._ids = itertools.count(first_id)
        self.opened: list[tuple[int, str, bool, Any]] = []

    async def create(self, target_url: str, activate: bool, origin_surface_id: Any = None) -> int:
        surface_id = next(self._ids)
        self.opened.append((surface_id, target_url, activate, origin_surface_id))
        logger.debug("Opened surface %d for %s", surface_id, target_url)
        return surface_id
