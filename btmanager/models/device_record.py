from __future__ import annotations
from dataclasses import dataclass, replace
from datetime import datetime
from enum import Enum
from typing import Optional


class BondState(str, Enum):
    NOT_BONDED = "not_bonded"
    BONDING = "bonding"
    BONDED = "bonded"

    @classmethod
    def parse(cls, value: object) -> "BondState":
        """Coerce enum members, names or values (``"BONDED"``, ``"bonded"``)."""
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            text = value.strip()
            try:
                return cls(text.lower())
            except ValueError:
                pass
            try:
                return cls[text.upper()]
            except KeyError:
                pass
        raise ValueError(f"unrecognised bond state: {value!r}")


class ConnectionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTED = "connected"


class DeviceCategory(str, Enum):
    CONNECTED = "connected"
    PREVIOUSLY_CONNECTED = "previously_connected"
    AVAILABLE = "available"


def derive_category(bond_state: BondState, connection_state: ConnectionState) -> DeviceCategory:
    if bond_state is BondState.BONDED:
        if connection_state is ConnectionState.CONNECTED:
            return DeviceCategory.CONNECTED
        return DeviceCategory.PREVIOUSLY_CONNECTED
    return DeviceCategory.AVAILABLE


def normalize_address(address: str) -> str:
    """Registry key for an address; hardware addresses compare case-insensitively."""
    return address.strip().upper()


@dataclass
class DeviceRecord:
    """A device known to the current discovery session.

    ``category`` is computed from the bond and connection state on every
    access and is never stored.
    """
    id: str
    display_name: Optional[str] = None
    bond_state: BondState = BondState.NOT_BONDED
    connection_state: ConnectionState = ConnectionState.DISCONNECTED
    last_seen_at: Optional[datetime] = None
    first_seen_at: Optional[datetime] = None
    seen_count: int = 0

    @property
    def key(self) -> str:
        return normalize_address(self.id)

    @property
    def category(self) -> DeviceCategory:
        return derive_category(self.bond_state, self.connection_state)

    @property
    def is_bonded(self) -> bool:
        return self.bond_state is BondState.BONDED

    @property
    def is_connected(self) -> bool:
        return self.connection_state is ConnectionState.CONNECTED

    def copy(self) -> "DeviceRecord":
        return replace(self)
