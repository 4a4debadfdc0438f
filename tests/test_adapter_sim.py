"""Simulation tests for the bleak-backed adapter."""
from __future__ import annotations

import unittest
from types import SimpleNamespace
from typing import Any, List, Optional, Tuple
from unittest import IsolatedAsyncioTestCase
from unittest.mock import patch

from btmanager.adapter import Adapter, AdapterConfig, BleakAdapter
from btmanager.errors import AdapterDisabled
from btmanager.models import DeviceFound, DeviceHandle, ScanFinished, ScanStarted
from btmanager.session import DiscoverySession


class FakeBleakError(Exception):
    """Stands in for bleak.exc.BleakError."""


class FakeBleakScanner:
    """Minimal stand-in for BleakScanner that replays advertisements on start."""

    events: List[Tuple[Any, Any]] = []
    start_error: Optional[BaseException] = None
    instances: List["FakeBleakScanner"] = []

    def __init__(self, detection_callback=None, **kwargs: Any) -> None:
        self.callback = detection_callback
        self.kwargs = kwargs
        self.started = False
        self.stopped = False
        FakeBleakScanner.instances.append(self)

    async def start(self) -> None:
        if FakeBleakScanner.start_error is not None:
            raise FakeBleakScanner.start_error
        self.started = True

    async def stop(self) -> None:
        self.stopped = True

    def replay(self) -> None:
        for device, advertisement in list(self.events):
            self.callback(device, advertisement)


def _adv(local_name=None, service_uuids=None):
    return SimpleNamespace(local_name=local_name, service_uuids=service_uuids or [])


class BleakAdapterSimulationTest(IsolatedAsyncioTestCase):
    def setUp(self) -> None:
        FakeBleakScanner.events = []
        FakeBleakScanner.start_error = None
        FakeBleakScanner.instances = []
        self.received: List[Any] = []

    async def test_detections_become_found_events(self) -> None:
        FakeBleakScanner.events = [
            (SimpleNamespace(address="AA:01", name="Sensor"), _adv()),
            (SimpleNamespace(address="AA:02", name=None), _adv(local_name="Speaker")),
        ]
        adapter = BleakAdapter(AdapterConfig(adapter="hci1", scanning_mode="passive"))
        self.assertIsInstance(adapter, Adapter)
        adapter.subscribe(self.received.append)

        with patch("btmanager.adapter.BleakScanner", FakeBleakScanner):
            await adapter.start_scan()
            scanner = FakeBleakScanner.instances[-1]
            scanner.replay()
            await adapter.cancel_scan()

        self.assertEqual(scanner.kwargs, {"adapter": "hci1", "scanning_mode": "passive"})
        self.assertTrue(scanner.stopped)
        self.assertEqual(
            self.received,
            [ScanStarted(), DeviceFound("AA:01", "Sensor"), DeviceFound("AA:02", "Speaker"), ScanFinished()],
        )

    async def test_filters_drop_unmatched_advertisements(self) -> None:
        FakeBleakScanner.events = [
            (SimpleNamespace(address="AA:01", name="Sensor"), _adv(service_uuids=["180D"])),
            (SimpleNamespace(address="AA:02", name="Other"), _adv(service_uuids=["180F"])),
        ]
        adapter = BleakAdapter(AdapterConfig(service_uuids=["180d"]))
        adapter.subscribe(self.received.append)

        with patch("btmanager.adapter.BleakScanner", FakeBleakScanner):
            await adapter.start_scan()
            FakeBleakScanner.instances[-1].replay()
            await adapter.cancel_scan()

        found = [event for event in self.received if isinstance(event, DeviceFound)]
        self.assertEqual(found, [DeviceFound("AA:01", "Sensor")])

    async def test_unsubscribed_sink_receives_nothing(self) -> None:
        adapter = BleakAdapter()
        token = adapter.subscribe(self.received.append)
        adapter.unsubscribe(token)
        adapter.unsubscribe(token)

        with patch("btmanager.adapter.BleakScanner", FakeBleakScanner):
            await adapter.start_scan()
            await adapter.cancel_scan()
        self.assertEqual(self.received, [])

    async def test_powered_off_radio_disables_adapter(self) -> None:
        FakeBleakScanner.start_error = FakeBleakError("Bluetooth device is turned off")
        adapter = BleakAdapter()

        with patch("btmanager.adapter.BleakScanner", FakeBleakScanner):
            with self.assertRaises(AdapterDisabled):
                await adapter.start_scan()
        self.assertFalse(adapter.is_enabled())

    async def test_other_backend_errors_propagate(self) -> None:
        FakeBleakScanner.start_error = FakeBleakError("org.bluez.Error.InProgress")
        adapter = BleakAdapter()

        with patch("btmanager.adapter.BleakScanner", FakeBleakScanner):
            with self.assertLogs("btmanager.adapter", level="ERROR"):
                with self.assertRaises(FakeBleakError):
                    await adapter.start_scan()
        self.assertTrue(adapter.is_enabled())

    def test_availability_follows_backend_lookup(self) -> None:
        adapter = BleakAdapter()
        with patch("btmanager.adapter.BleakScanner", FakeBleakScanner), patch(
            "btmanager.adapter.get_platform_scanner_backend_type", return_value=object
        ):
            self.assertTrue(adapter.is_available())
        with patch("btmanager.adapter.BleakScanner", FakeBleakScanner), patch(
            "btmanager.adapter.get_platform_scanner_backend_type",
            side_effect=FakeBleakError("Unsupported platform"),
        ):
            self.assertFalse(adapter.is_available())

    def test_bonded_devices_and_connection_probe(self) -> None:
        headset = DeviceHandle("AA:01", "Headset", connected=True)
        watch = DeviceHandle("AA:02", "Watch")

        adapter = BleakAdapter(AdapterConfig(bonded=(headset, watch)))
        self.assertEqual(adapter.bonded_devices(), {headset, watch})
        self.assertTrue(adapter.is_device_connected(headset))
        self.assertFalse(adapter.is_device_connected(watch))

        probed = BleakAdapter(bond_provider=lambda: [watch], connection_probe=lambda h: h.address == "AA:02")
        self.assertEqual(probed.bonded_devices(), {watch})
        self.assertTrue(probed.is_device_connected(watch))

    async def test_session_over_bleak_adapter(self) -> None:
        FakeBleakScanner.events = [(SimpleNamespace(address="CC:03", name="Speaker"), _adv())]
        adapter = BleakAdapter(
            AdapterConfig(bonded=(DeviceHandle("AA:01", "Headset", connected=True), DeviceHandle("AA:02", "Watch")))
        )
        session = DiscoverySession(adapter)

        with patch("btmanager.adapter.BleakScanner", FakeBleakScanner), patch(
            "btmanager.adapter.get_platform_scanner_backend_type", return_value=object
        ):
            async with session.scanning() as query:
                FakeBleakScanner.instances[-1].replay()
                await session.wait_idle()
                snapshot = query.snapshot()

        self.assertEqual(snapshot.connected_device, "AA:01")
        self.assertEqual(snapshot.previously_connected, ("AA:02",))
        self.assertEqual(snapshot.available, ("CC:03",))


if __name__ == "__main__":
    unittest.main()
