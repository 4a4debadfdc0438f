"""Configuration for discovery sessions."""
from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Mapping, Optional, Sequence

from btmanager.adapter import AdapterConfig
from btmanager.models.events import DeviceHandle

ENV_PREFIX = "BTMANAGER_"


def _split(raw: Optional[str]) -> list[str]:
    if not raw:
        return []
    return [item.strip() for item in raw.split(",") if item.strip()]


def _optional_float(raw: Optional[str], name: str) -> Optional[float]:
    if raw is None or raw.strip() == "":
        return None
    try:
        return float(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be a number, got {raw!r}") from exc


@dataclass(slots=True)
class DiscoveryConfig:
    """Settings shared by the CLI, the HTTP API and :class:`DiscoverySession`.

    ``bonded`` entries use the ``ADDRESS[=NAME]`` form and stand in for the
    platform's bond list when the adapter cannot enumerate it itself.
    """

    connection_poll_interval: Optional[float] = None
    journal_path: Optional[Path] = None
    adapter: Optional[str] = None
    scanning_mode: Optional[str] = None
    service_uuids: Sequence[str] = ()
    address_allowlist: Sequence[str] = ()
    bonded: Sequence[str] = ()
    _handles: tuple[DeviceHandle, ...] = field(init=False, repr=False, default=())

    def __post_init__(self) -> None:
        if self.connection_poll_interval is not None and self.connection_poll_interval <= 0:
            raise ValueError("connection_poll_interval must be positive when provided")
        if self.journal_path is not None:
            self.journal_path = Path(self.journal_path)
        self._handles = tuple(DeviceHandle.parse(spec) for spec in self.bonded)

    @property
    def bonded_handles(self) -> tuple[DeviceHandle, ...]:
        return self._handles

    def adapter_config(self) -> AdapterConfig:
        return AdapterConfig(
            service_uuids=list(self.service_uuids) or None,
            address_allowlist=list(self.address_allowlist) or None,
            scanning_mode=self.scanning_mode,
            adapter=self.adapter,
            bonded=self.bonded_handles,
        )

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "DiscoveryConfig":
        env = os.environ if environ is None else environ

        def get(name: str) -> Optional[str]:
            return env.get(ENV_PREFIX + name)

        journal = get("JOURNAL")
        return cls(
            connection_poll_interval=_optional_float(get("POLL_INTERVAL"), ENV_PREFIX + "POLL_INTERVAL"),
            journal_path=Path(journal) if journal else None,
            adapter=get("ADAPTER") or None,
            scanning_mode=get("SCANNING_MODE") or None,
            service_uuids=_split(get("SERVICE_UUIDS")),
            address_allowlist=_split(get("ADDRESSES")),
            bonded=_split(get("BONDED")),
        )


__all__ = ["DiscoveryConfig", "ENV_PREFIX"]
