"""Apply adapter events to the device registry."""
from __future__ import annotations

import logging
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Mapping, Optional

from btmanager.journal import SessionJournal
from btmanager.models.device_record import BondState
from btmanager.models.events import (
    AdapterEvent,
    BondStateChanged,
    ConnectionStateChanged,
    DeviceFound,
    ScanFinished,
    ScanStarted,
)
from btmanager.registry import DeviceRegistry

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]

_ADDRESSED = (DeviceFound, BondStateChanged, ConnectionStateChanged)


class SessionState(str, Enum):
    IDLE = "idle"
    SCANNING = "scanning"


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _clean_address(value: Any) -> Optional[str]:
    if not isinstance(value, str):
        return None
    value = value.strip()
    return value or None


def _parse_mapping(raw: Mapping[str, Any]) -> AdapterEvent:
    kind = str(raw.get("kind", "")).strip().lower()
    if kind == "scan_started":
        return ScanStarted()
    if kind == "scan_finished":
        return ScanFinished()

    address = _clean_address(raw.get("address"))
    if address is None:
        raise ValueError(f"{kind or 'event'} without an address")
    if kind == "found":
        name = raw.get("name")
        return DeviceFound(address=address, name=str(name) if name is not None else None)
    if kind == "bond_state_changed":
        return BondStateChanged(address=address, state=BondState.parse(raw.get("state")))
    if kind == "connection_state_changed":
        connected = raw.get("connected")
        if not isinstance(connected, bool):
            raise ValueError(f"connection state must be a bool, got {connected!r}")
        return ConnectionStateChanged(address=address, connected=connected)
    raise ValueError(f"unknown event kind {kind!r}")


class EventReconciler:
    """Normalize raw adapter events and apply them one at a time.

    The reconciler does not reorder anything: events are applied in the
    order :meth:`apply` is called. Callers are responsible for serializing
    those calls onto the registry's owning context.
    """

    def __init__(
        self,
        registry: DeviceRegistry,
        *,
        clock: Clock | None = None,
        journal: SessionJournal | None = None,
    ) -> None:
        self.registry = registry
        self.state = SessionState.IDLE
        self._clock = clock or _utc_now
        self._journal = journal

    def normalize(self, raw: Any) -> Optional[AdapterEvent]:
        """Return a typed event, or ``None`` if ``raw`` is malformed."""
        try:
            if isinstance(raw, (ScanStarted, ScanFinished)):
                return raw
            if isinstance(raw, _ADDRESSED):
                address = _clean_address(raw.address)
                if address is None:
                    raise ValueError(f"{type(raw).__name__} without an address")
                if isinstance(raw, BondStateChanged):
                    return BondStateChanged(address=address, state=BondState.parse(raw.state))
                if isinstance(raw, ConnectionStateChanged):
                    return ConnectionStateChanged(address=address, connected=bool(raw.connected))
                return DeviceFound(address=address, name=raw.name or None)
            if isinstance(raw, Mapping):
                return _parse_mapping(raw)
            raise ValueError(f"unsupported event type {type(raw).__name__}")
        except ValueError as exc:
            logger.warning("Dropping malformed adapter event %r: %s", raw, exc)
            self._journal_log("event_dropped", status="malformed", message=str(exc))
            return None

    def apply(self, raw: Any) -> bool:
        event = self.normalize(raw)
        if event is None:
            return False

        if isinstance(event, DeviceFound):
            is_new = event.address not in self.registry
            record = self.registry.upsert_found(event.address, event.name, self._clock())
            if is_new:
                self._journal_log("device_new", address=record.id, message=record.display_name)
            return True

        if isinstance(event, ScanStarted):
            if self.state is SessionState.IDLE:
                logger.info("Discovery started")
            self.state = SessionState.SCANNING
            return True

        if isinstance(event, ScanFinished):
            if self.state is SessionState.IDLE:
                logger.debug("Scan finished while idle; ignoring")
                return False
            logger.info("Discovery finished")
            self.state = SessionState.IDLE
            return True

        if isinstance(event, BondStateChanged):
            record = self.registry.set_bond_state(event.address, event.state)
            logger.debug("Bond state for %s -> %s", record.id, record.bond_state.value)
            self._journal_log("bond_state", address=record.id, status=record.bond_state.value)
            return True

        if isinstance(event, ConnectionStateChanged):
            record = self.registry.set_connection_state(event.address, event.connected)
            if record is None:
                self._journal_log("event_dropped", address=event.address, status="rejected")
                return False
            self._journal_log("connection_state", address=record.id, status=record.connection_state.value)
            return True

        return False  # pragma: no cover - normalize only returns known types

    def _journal_log(
        self,
        event: str,
        *,
        address: Optional[str] = None,
        status: Optional[str] = None,
        message: Optional[str] = None,
    ) -> None:
        if not self._journal:
            return
        try:
            self._journal.log(event, address=address, status=status, message=message)
        except Exception:  # pragma: no cover - journal I/O must not break reconciliation
            logger.debug("Journal write failed for %s", event, exc_info=True)


__all__ = ["EventReconciler", "SessionState", "Clock"]
