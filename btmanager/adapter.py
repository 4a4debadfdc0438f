"""Radio adapter interface and its bleak-backed implementation."""
from __future__ import annotations

import itertools
import logging
import threading
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, Optional, Protocol, Sequence, Set, TYPE_CHECKING, TypeAlias, runtime_checkable

from btmanager.errors import AdapterDisabled
from btmanager.models.events import AdapterEvent, DeviceFound, DeviceHandle, EventSink, ScanFinished, ScanStarted

logger = logging.getLogger(__name__)

try:  # pragma: no cover - bleak is optional in some environments
	from bleak import BleakScanner
	from bleak.backends.scanner import get_platform_scanner_backend_type
except Exception:  # pragma: no cover
	BleakScanner = None  # type: ignore
	get_platform_scanner_backend_type = None  # type: ignore

if TYPE_CHECKING:  # pragma: no cover - typing helper only
	from bleak.backends.device import BLEDevice as _BLEDevice
	from bleak.backends.scanner import AdvertisementData as _AdvertisementData
else:
	_BLEDevice = Any
	_AdvertisementData = Any

BLEDevice: TypeAlias = _BLEDevice
AdvertisementData: TypeAlias = _AdvertisementData

BondProvider = Callable[[], Iterable[DeviceHandle]]
ConnectionProbe = Callable[[DeviceHandle], bool]

# Substrings bleak backends use when the radio exists but is switched off.
_POWERED_OFF_MARKERS = ("turned off", "powered off", "not powered", "notready", "radio is off")


@runtime_checkable
class Adapter(Protocol):
	"""What the discovery core needs from the platform Bluetooth stack."""

	def is_available(self) -> bool: ...

	def is_enabled(self) -> bool: ...

	def bonded_devices(self) -> Set[DeviceHandle]: ...

	def is_device_connected(self, handle: DeviceHandle) -> bool: ...

	def subscribe(self, sink: EventSink) -> Any: ...

	def unsubscribe(self, handle: Any) -> None: ...

	async def start_scan(self) -> None: ...

	async def cancel_scan(self) -> None: ...


@dataclass(slots=True)
class AdapterConfig:
	"""Scanner options and advertisement filters for :class:`BleakAdapter`."""

	service_uuids: Sequence[str] | None = None
	address_allowlist: Sequence[str] | None = None
	name_allowlist: Sequence[str] | None = None
	scanning_mode: Optional[str] = None
	adapter: Optional[str] = None
	bonded: Sequence[DeviceHandle] = ()
	detection_kwargs: Dict[str, Any] = field(default_factory=dict)
	_address_index: Optional[frozenset[str]] = field(init=False, repr=False, default=None)
	_name_index: Optional[tuple[str, ...]] = field(init=False, repr=False, default=None)
	_service_index: Optional[frozenset[str]] = field(init=False, repr=False, default=None)

	def __post_init__(self) -> None:
		if self.scanning_mode is not None and self.scanning_mode not in ("active", "passive"):
			raise ValueError("scanning_mode must be 'active' or 'passive'")
		if self.address_allowlist:
			self._address_index = frozenset(addr.lower() for addr in self.address_allowlist)
		if self.name_allowlist:
			self._name_index = tuple(self.name_allowlist)
		if self.service_uuids:
			self._service_index = frozenset(uuid.lower() for uuid in self.service_uuids)

	def allows(self, device: BLEDevice, advertisement: AdvertisementData | None) -> bool:
		if self._address_index and device.address.lower() not in self._address_index:
			return False

		if self._name_index:
			if _observed_name(device, advertisement) not in self._name_index:
				return False

		if self._service_index:
			observed: set[str] = set()
			if advertisement is not None and advertisement.service_uuids:
				observed.update(uuid.lower() for uuid in advertisement.service_uuids)
			if not observed.issuperset(self._service_index):
				return False

		return True

	def bleak_kwargs(self) -> Dict[str, Any]:
		kwargs = dict(self.detection_kwargs)
		if self.service_uuids and "service_uuids" not in kwargs:
			kwargs["service_uuids"] = list(self.service_uuids)
		if self.adapter and "adapter" not in kwargs:
			kwargs["adapter"] = self.adapter
		if self.scanning_mode and "scanning_mode" not in kwargs:
			kwargs["scanning_mode"] = self.scanning_mode
		return kwargs


def _observed_name(device: BLEDevice, advertisement: AdvertisementData | None) -> Optional[str]:
	if advertisement is not None and getattr(advertisement, "local_name", None):
		return advertisement.local_name
	return device.name or None


class BleakAdapter:
	"""Adapter backed by :class:`bleak.BleakScanner`.

	bleak can scan on every platform but cannot enumerate bonds or query
	link state portably, so bonded devices come from ``bond_provider`` (or
	``config.bonded``) and connection state from ``connection_probe``.
	Events are pushed to subscribers from bleak's callback context.
	"""

	def __init__(
		self,
		config: AdapterConfig | None = None,
		*,
		bond_provider: BondProvider | None = None,
		connection_probe: ConnectionProbe | None = None,
	) -> None:
		self.config = config or AdapterConfig()
		self._bond_provider = bond_provider
		self._connection_probe = connection_probe
		self._sinks: Dict[int, EventSink] = {}
		self._tokens = itertools.count(1)
		self._sink_lock = threading.Lock()
		self._scanner: Optional[Any] = None
		self._powered = True

	def is_available(self) -> bool:
		if BleakScanner is None or get_platform_scanner_backend_type is None:
			logger.info("bleak is not installed; no Bluetooth backend")
			return False
		try:
			get_platform_scanner_backend_type()
		except Exception as exc:
			logger.info("No usable Bluetooth backend: %s", exc)
			return False
		return True

	def is_enabled(self) -> bool:
		return self._powered

	def bonded_devices(self) -> Set[DeviceHandle]:
		if self._bond_provider is not None:
			return set(self._bond_provider())
		return set(self.config.bonded)

	def is_device_connected(self, handle: DeviceHandle) -> bool:
		if self._connection_probe is not None:
			return bool(self._connection_probe(handle))
		return bool(getattr(handle, "connected", False))

	def subscribe(self, sink: EventSink) -> int:
		token = next(self._tokens)
		with self._sink_lock:
			self._sinks[token] = sink
		return token

	def unsubscribe(self, handle: int) -> None:
		with self._sink_lock:
			self._sinks.pop(handle, None)

	async def start_scan(self) -> None:
		if self._scanner is not None:
			return
		if BleakScanner is None:
			raise RuntimeError("bleak is required to scan")
		scanner = BleakScanner(detection_callback=self._on_detection, **self.config.bleak_kwargs())
		try:
			await scanner.start()
		except Exception as exc:
			if any(marker in str(exc).lower() for marker in _POWERED_OFF_MARKERS):
				self._powered = False
				raise AdapterDisabled(str(exc)) from exc
			logger.exception("BLE scan failed to start: %s", exc)
			raise
		self._powered = True
		self._scanner = scanner
		self._emit(ScanStarted())

	async def cancel_scan(self) -> None:
		scanner, self._scanner = self._scanner, None
		if scanner is None:
			return
		try:
			await scanner.stop()
		except Exception as exc:  # pragma: no cover - hardware specific
			logger.warning("BLE scan did not stop cleanly: %s", exc)
		self._emit(ScanFinished())

	def _on_detection(self, device: BLEDevice, advertisement: AdvertisementData | None) -> None:
		if not self.config.allows(device, advertisement):
			return
		self._emit(DeviceFound(address=device.address, name=_observed_name(device, advertisement)))

	def _emit(self, event: AdapterEvent) -> None:
		with self._sink_lock:
			sinks = list(self._sinks.values())
		for sink in sinks:
			try:
				sink(event)
			except Exception:  # pragma: no cover - diagnostic path
				logger.exception("adapter event sink raised for %r", event)


__all__ = [
	"Adapter",
	"AdapterConfig",
	"BleakAdapter",
	"BondProvider",
	"ConnectionProbe",
]
