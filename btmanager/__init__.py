"""Bluetooth device discovery and state reconciliation."""
from btmanager.adapter import Adapter, AdapterConfig, BleakAdapter
from btmanager.commands import DeviceCommands
from btmanager.config import DiscoveryConfig
from btmanager.errors import (
    AdapterDisabled,
    AdapterUnavailable,
    AlreadyScanning,
    BtManagerError,
    DiscoveryError,
    PermissionDenied,
    UnknownDevice,
)
from btmanager.query import DeviceDetails, QueryFacade, Snapshot
from btmanager.reconciler import EventReconciler, SessionState
from btmanager.registry import DeviceRegistry
from btmanager.session import DiscoverySession

__version__ = "0.1.0"

__all__ = [
    "Adapter",
    "AdapterConfig",
    "BleakAdapter",
    "DeviceCommands",
    "DiscoveryConfig",
    "AdapterDisabled",
    "AdapterUnavailable",
    "AlreadyScanning",
    "BtManagerError",
    "DiscoveryError",
    "PermissionDenied",
    "UnknownDevice",
    "DeviceDetails",
    "QueryFacade",
    "Snapshot",
    "EventReconciler",
    "SessionState",
    "DeviceRegistry",
    "DiscoverySession",
]
