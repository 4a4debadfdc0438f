"""Data model for the discovery core: device records and adapter events."""
from .device_record import (
    BondState,
    ConnectionState,
    DeviceCategory,
    DeviceRecord,
    derive_category,
    normalize_address,
)
from .events import (
    AdapterEvent,
    BondStateChanged,
    ConnectionStateChanged,
    DeviceFound,
    DeviceHandle,
    EventSink,
    ScanFinished,
    ScanStarted,
)

__all__ = [
    "BondState",
    "ConnectionState",
    "DeviceCategory",
    "DeviceRecord",
    "derive_category",
    "normalize_address",
    "AdapterEvent",
    "BondStateChanged",
    "ConnectionStateChanged",
    "DeviceFound",
    "DeviceHandle",
    "EventSink",
    "ScanFinished",
    "ScanStarted",
]
