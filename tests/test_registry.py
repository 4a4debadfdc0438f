"""Tests for the device registry."""
from __future__ import annotations

import threading
import unittest
from datetime import datetime, timedelta, timezone

from btmanager.models import BondState, ConnectionState, DeviceCategory
from btmanager.registry import DeviceRegistry

T0 = datetime(2024, 1, 1, tzinfo=timezone.utc)


class DeviceRegistryTest(unittest.TestCase):
    def setUp(self) -> None:
        self.registry = DeviceRegistry()

    def test_repeated_sightings_keep_one_record_per_address(self) -> None:
        addresses = ["AA:01", "AA:02", "AA:01", "aa:01", "AA:03", "AA:02"]
        for offset, address in enumerate(addresses):
            self.registry.upsert_found(address, None, T0 + timedelta(seconds=offset))

        self.assertEqual(len(self.registry), 3)
        self.assertEqual([r.id for r in self.registry.records()], ["AA:01", "AA:02", "AA:03"])
        self.assertEqual(self.registry.get("aa:01").seen_count, 3)

    def test_first_sighting_creates_unbonded_disconnected_record(self) -> None:
        record = self.registry.upsert_found("AA:01", "Speaker", T0)
        self.assertEqual(record.bond_state, BondState.NOT_BONDED)
        self.assertEqual(record.connection_state, ConnectionState.DISCONNECTED)
        self.assertEqual(record.last_seen_at, T0)
        self.assertEqual(record.first_seen_at, T0)

    def test_non_empty_name_wins(self) -> None:
        self.registry.upsert_found("AA:01", "", T0)
        self.registry.upsert_found("AA:01", "Speaker", T0 + timedelta(seconds=1))
        self.registry.upsert_found("AA:01", None, T0 + timedelta(seconds=2))
        self.registry.upsert_found("AA:01", "", T0 + timedelta(seconds=3))

        record = self.registry.get("AA:01")
        self.assertEqual(record.display_name, "Speaker")
        self.assertEqual(record.last_seen_at, T0 + timedelta(seconds=3))
        self.assertEqual(record.first_seen_at, T0)

    def test_returned_records_are_copies(self) -> None:
        record = self.registry.upsert_found("AA:01", "Speaker", T0)
        record.bond_state = BondState.BONDED
        self.assertEqual(self.registry.get("AA:01").bond_state, BondState.NOT_BONDED)

    def test_seed_marks_bonded_without_sighting(self) -> None:
        record = self.registry.seed("AA:01", "Headset", connected=True)
        self.assertEqual(record.category, DeviceCategory.CONNECTED)
        self.assertIsNone(record.last_seen_at)

    def test_bond_change_for_unknown_device_creates_minimal_record(self) -> None:
        record = self.registry.set_bond_state("AA:09", BondState.BONDED)
        self.assertEqual(record.id, "AA:09")
        self.assertIsNone(record.display_name)
        self.assertEqual(record.category, DeviceCategory.PREVIOUSLY_CONNECTED)

    def test_connection_requires_bond(self) -> None:
        self.registry.upsert_found("AA:01", None, T0)
        self.assertIsNone(self.registry.set_connection_state("AA:01", True))
        self.assertEqual(self.registry.get("AA:01").connection_state, ConnectionState.DISCONNECTED)

        self.registry.set_bond_state("AA:01", BondState.BONDED)
        record = self.registry.set_connection_state("aa:01", True)
        self.assertEqual(record.category, DeviceCategory.CONNECTED)

    def test_connection_change_for_unknown_device_is_ignored(self) -> None:
        self.assertIsNone(self.registry.set_connection_state("AA:01", False))
        self.assertEqual(len(self.registry), 0)

    def test_losing_bond_disconnects(self) -> None:
        self.registry.seed("AA:01", None, connected=True)
        record = self.registry.set_bond_state("AA:01", BondState.NOT_BONDED)
        self.assertEqual(record.connection_state, ConnectionState.DISCONNECTED)
        self.assertEqual(record.category, DeviceCategory.AVAILABLE)

    def test_discovery_never_implies_connection(self) -> None:
        self.registry.seed("AA:01", None, connected=False)
        record = self.registry.upsert_found("AA:01", "Headset", T0)
        self.assertEqual(record.connection_state, ConnectionState.DISCONNECTED)
        self.assertEqual(record.bond_state, BondState.BONDED)

    def test_concurrent_readers_never_see_connected_without_bond(self) -> None:
        self.registry.upsert_found("AA:01", None, T0)
        violations = []
        done = threading.Event()

        def reader() -> None:
            while not done.is_set():
                for record in self.registry.records():
                    if record.connection_state is ConnectionState.CONNECTED and record.bond_state is not BondState.BONDED:
                        violations.append(record)

        thread = threading.Thread(target=reader)
        thread.start()
        try:
            for _ in range(200):
                self.registry.set_bond_state("AA:01", BondState.BONDED)
                self.registry.set_connection_state("AA:01", True)
                self.registry.set_bond_state("AA:01", BondState.NOT_BONDED)
        finally:
            done.set()
            thread.join()
        self.assertEqual(violations, [])


if __name__ == "__main__":
    unittest.main()
