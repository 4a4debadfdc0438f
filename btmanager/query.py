"""Read-only snapshot API over the active device registry."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from types import MappingProxyType
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple

from btmanager.errors import UnknownDevice
from btmanager.models.device_record import (
    BondState,
    ConnectionState,
    DeviceCategory,
    DeviceRecord,
)
from btmanager.registry import DeviceRegistry

logger = logging.getLogger(__name__)

_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


@dataclass(frozen=True, slots=True)
class Snapshot:
    """Point-in-time view of the registry, split into display categories."""

    connected_device: Optional[str] = None
    previously_connected: Tuple[str, ...] = ()
    available: Tuple[str, ...] = ()
    connected_candidates: Tuple[str, ...] = ()
    names: Mapping[str, Optional[str]] = field(default_factory=dict)
    taken_at: Optional[datetime] = None

    def __post_init__(self) -> None:
        if not isinstance(self.names, MappingProxyType):
            object.__setattr__(self, "names", MappingProxyType(dict(self.names)))

    @property
    def ambiguous(self) -> bool:
        """True when the platform reports more than one connected device."""
        return len(self.connected_candidates) > 1

    def to_dict(self) -> Dict[str, Any]:
        def entry(address: str) -> Dict[str, Any]:
            return {"address": address, "name": self.names.get(address)}

        return {
            "connected": entry(self.connected_device) if self.connected_device else None,
            "previously_connected": [entry(a) for a in self.previously_connected],
            "available": [entry(a) for a in self.available],
            "connected_candidates": list(self.connected_candidates),
            "ambiguous": self.ambiguous,
            "taken_at": self.taken_at.isoformat() if self.taken_at else None,
        }


@dataclass(frozen=True, slots=True)
class DeviceDetails:
    address: str
    name: Optional[str]
    bond_state: BondState
    connection_state: ConnectionState
    category: DeviceCategory
    first_seen_at: Optional[datetime]
    last_seen_at: Optional[datetime]
    seen_count: int

    @classmethod
    def from_record(cls, record: DeviceRecord) -> "DeviceDetails":
        return cls(
            address=record.id,
            name=record.display_name,
            bond_state=record.bond_state,
            connection_state=record.connection_state,
            category=record.category,
            first_seen_at=record.first_seen_at,
            last_seen_at=record.last_seen_at,
            seen_count=record.seen_count,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "address": self.address,
            "name": self.name,
            "bond_state": self.bond_state.value,
            "connection_state": self.connection_state.value,
            "category": self.category.value,
            "first_seen_at": self.first_seen_at.isoformat() if self.first_seen_at else None,
            "last_seen_at": self.last_seen_at.isoformat() if self.last_seen_at else None,
            "seen_count": self.seen_count,
        }


class QueryFacade:
    """Compute categorized snapshots without touching the adapter.

    ``source`` returns the registry to read; the session swaps in a fresh
    registry on every start, so the facade resolves it on each call.
    """

    def __init__(self, source: Callable[[], DeviceRegistry] | DeviceRegistry) -> None:
        if isinstance(source, DeviceRegistry):
            registry = source
            self._source: Callable[[], DeviceRegistry] = lambda: registry
        else:
            self._source = source

    def snapshot(self) -> Snapshot:
        registry = self._source()
        # records() copies under the registry lock, so everything below sees one state.
        records = registry.records()
        ordered = sorted(enumerate(records), key=_sighting_order)

        connected = [r.id for r in records if r.category is DeviceCategory.CONNECTED]
        previously: List[str] = []
        available: List[str] = []
        for _, record in ordered:
            category = record.category
            if category is DeviceCategory.PREVIOUSLY_CONNECTED:
                previously.append(record.id)
            elif category is DeviceCategory.AVAILABLE:
                available.append(record.id)

        if len(connected) > 1:
            logger.warning(
                "%d devices report connected (%s); showing %s",
                len(connected),
                ", ".join(connected),
                connected[0],
            )

        return Snapshot(
            connected_device=connected[0] if connected else None,
            previously_connected=tuple(previously),
            available=tuple(available),
            connected_candidates=tuple(connected),
            names={r.id: r.display_name for r in records},
            taken_at=datetime.now(timezone.utc),
        )

    def details(self, address: str) -> DeviceDetails:
        record = self._source().get(address)
        if record is None:
            raise UnknownDevice(address)
        return DeviceDetails.from_record(record)

    def category_of(self, address: str) -> DeviceCategory:
        return self.details(address).category


def _sighting_order(item: Tuple[int, DeviceRecord]) -> Tuple[bool, datetime, int]:
    # Never-sighted (bond-only) records first, then by last sighting, then insertion.
    index, record = item
    seen = record.last_seen_at
    if seen is not None and seen.tzinfo is None:
        seen = seen.replace(tzinfo=timezone.utc)
    return (seen is not None, seen or _EPOCH, index)


__all__ = ["QueryFacade", "Snapshot", "DeviceDetails"]
