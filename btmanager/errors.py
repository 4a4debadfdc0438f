"""Error types raised by the discovery core."""
from __future__ import annotations


class BtManagerError(Exception):
    """Base class for all btmanager errors."""


class DiscoveryError(BtManagerError):
    """A discovery session could not be started.

    These are precondition failures the caller is expected to handle
    (prompt the user, retry later); the core never retries on its own.
    """

    reason = "discovery_error"


class AdapterUnavailable(DiscoveryError):
    reason = "adapter_unavailable"


class AdapterDisabled(DiscoveryError):
    reason = "adapter_disabled"


class PermissionDenied(DiscoveryError):
    reason = "permission_denied"


class AlreadyScanning(DiscoveryError):
    reason = "already_scanning"


class UnknownDevice(BtManagerError, KeyError):
    """Lookup of an address the active registry has never seen."""

    def __init__(self, address: str) -> None:
        super().__init__(address)
        self.address = address

    def __str__(self) -> str:
        return f"unknown device: {self.address}"


__all__ = [
    "BtManagerError",
    "DiscoveryError",
    "AdapterUnavailable",
    "AdapterDisabled",
    "PermissionDenied",
    "AlreadyScanning",
    "UnknownDevice",
]
