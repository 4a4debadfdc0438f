"""Canonical, deduplicated store of device records for one discovery session."""
from __future__ import annotations

import logging
import threading
from datetime import datetime
from typing import Dict, Iterator, List, Optional

from btmanager.models.device_record import (
    BondState,
    ConnectionState,
    DeviceRecord,
    normalize_address,
)

logger = logging.getLogger(__name__)


class DeviceRegistry:
    """Set of :class:`DeviceRecord` keyed by case-insensitive address.

    Mutations are expected to come from a single owner (the session's event
    loop); the lock only guarantees that readers on other threads see a
    consistent state before or after each mutation. Every method returns
    copies so callers can never mutate the registry behind its back.
    """

    def __init__(self) -> None:
        self._records: Dict[str, DeviceRecord] = {}
        self._lock = threading.RLock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)

    def __contains__(self, address: object) -> bool:
        if not isinstance(address, str):
            return False
        with self._lock:
            return normalize_address(address) in self._records

    def __iter__(self) -> Iterator[DeviceRecord]:
        return iter(self.records())

    def get(self, address: str) -> Optional[DeviceRecord]:
        with self._lock:
            record = self._records.get(normalize_address(address))
            return record.copy() if record is not None else None

    def records(self) -> List[DeviceRecord]:
        """Return copies of all records in insertion order."""
        with self._lock:
            return [record.copy() for record in self._records.values()]

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------
    def upsert_found(self, address: str, name: Optional[str], seen_at: datetime) -> DeviceRecord:
        with self._lock:
            record = self._records.get(normalize_address(address))
            if record is None:
                record = self._insert(DeviceRecord(id=address, display_name=name or None))
                record.first_seen_at = seen_at
                logger.debug("New device %s (%s)", address, name or "unnamed")
            elif name:
                record.display_name = name
            if record.first_seen_at is None:
                record.first_seen_at = seen_at
            record.last_seen_at = seen_at
            record.seen_count += 1
            return record.copy()

    def seed(self, address: str, name: Optional[str], connected: bool) -> DeviceRecord:
        """Record a device from the bonded-device enumeration."""
        with self._lock:
            record = self._records.get(normalize_address(address))
            if record is None:
                record = self._insert(DeviceRecord(id=address, display_name=name or None))
            elif name:
                record.display_name = name
            record.bond_state = BondState.BONDED
            record.connection_state = ConnectionState.CONNECTED if connected else ConnectionState.DISCONNECTED
            return record.copy()

    def set_bond_state(self, address: str, state: BondState) -> DeviceRecord:
        with self._lock:
            record = self._records.get(normalize_address(address))
            if record is None:
                record = self._insert(DeviceRecord(id=address))
            record.bond_state = state
            if state is not BondState.BONDED and record.is_connected:
                logger.info("Device %s lost its bond; marking disconnected", record.id)
                record.connection_state = ConnectionState.DISCONNECTED
            return record.copy()

    def set_connection_state(self, address: str, connected: bool) -> Optional[DeviceRecord]:
        """Update the live connection state.

        Returns ``None`` when the device is unknown or when marking it
        connected would break the rule that only bonded devices connect.
        """
        with self._lock:
            record = self._records.get(normalize_address(address))
            if record is None:
                logger.warning("Connection change for unknown device %s ignored", address)
                return None
            if connected and not record.is_bonded:
                logger.warning(
                    "Device %s reported connected while %s; ignoring",
                    record.id,
                    record.bond_state.value,
                )
                return None
            record.connection_state = ConnectionState.CONNECTED if connected else ConnectionState.DISCONNECTED
            return record.copy()

    def _insert(self, record: DeviceRecord) -> DeviceRecord:
        self._records[record.key] = record
        return record


__all__ = ["DeviceRegistry"]
