"""Event types delivered by an adapter subscription."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Optional, Union

from .device_record import BondState


@dataclass(frozen=True, slots=True)
class DeviceHandle:
    """Adapter-side reference to a device, as returned by ``bonded_devices()``."""

    address: str
    name: Optional[str] = None
    connected: bool = False

    @classmethod
    def parse(cls, spec: str) -> "DeviceHandle":
        """Build a handle from ``ADDRESS`` or ``ADDRESS=NAME``."""
        address, _, name = spec.partition("=")
        address = address.strip()
        if not address:
            raise ValueError(f"device spec has no address: {spec!r}")
        return cls(address=address, name=name.strip() or None)


@dataclass(frozen=True, slots=True)
class DeviceFound:
    address: str
    name: Optional[str] = None


@dataclass(frozen=True, slots=True)
class ScanStarted:
    pass


@dataclass(frozen=True, slots=True)
class ScanFinished:
    pass


@dataclass(frozen=True, slots=True)
class BondStateChanged:
    address: str
    state: BondState


@dataclass(frozen=True, slots=True)
class ConnectionStateChanged:
    address: str
    connected: bool


AdapterEvent = Union[DeviceFound, ScanStarted, ScanFinished, BondStateChanged, ConnectionStateChanged]

# Sinks receive either typed events or raw mappings; the reconciler normalizes both.
EventSink = Callable[[Any], None]

__all__ = [
    "DeviceHandle",
    "DeviceFound",
    "ScanStarted",
    "ScanFinished",
    "BondStateChanged",
    "ConnectionStateChanged",
    "AdapterEvent",
    "EventSink",
]
