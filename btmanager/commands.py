"""Per-device actions offered to the presentation layer."""
from __future__ import annotations

import logging
from typing import Awaitable, Callable, Optional

from btmanager.query import DeviceDetails, QueryFacade

logger = logging.getLogger(__name__)

Connector = Callable[[str], Awaitable[bool]]


class DeviceCommands:
    """Details and connect actions for devices in the active registry.

    Connection management lives outside the discovery core; ``connect``
    hands the address to ``connector`` when one is configured.
    """

    def __init__(self, query: QueryFacade, *, connector: Optional[Connector] = None) -> None:
        self.query = query
        self.connector = connector

    def view_details(self, address: str) -> DeviceDetails:
        return self.query.details(address)

    async def connect(self, address: str) -> bool:
        details = self.query.details(address)
        if self.connector is None:
            logger.info("No connection manager configured; not connecting to %s", details.address)
            return False
        logger.info("Requesting connection to %s", details.address)
        return bool(await self.connector(details.address))


__all__ = ["DeviceCommands", "Connector"]
