"""Tests for the command-line interface."""
from __future__ import annotations

import io
import json
import unittest
from contextlib import redirect_stderr, redirect_stdout
from unittest.mock import patch

from btmanager import cli

from tests.fakes import FakeAdapter, handle


class CliTest(unittest.TestCase):
    def _run(self, adapter: FakeAdapter, *argv: str):
        out, err = io.StringIO(), io.StringIO()
        with patch("btmanager.cli.BleakAdapter", lambda *_args, **_kwargs: adapter), patch.dict(
            "os.environ", {}, clear=True
        ), redirect_stdout(out), redirect_stderr(err):
            code = cli.main(list(argv))
        return code, out.getvalue(), err.getvalue()

    def test_scan_json_output(self) -> None:
        adapter = FakeAdapter(bonded=[handle("XX:01", "Headphones"), handle("YY:02")], connected=["XX:01"])
        code, out, _ = self._run(adapter, "scan", "--duration", "0", "--json")

        self.assertEqual(code, 0)
        payload = json.loads(out)
        self.assertEqual(payload["connected"]["address"], "XX:01")
        self.assertEqual(payload["previously_connected"], [{"address": "YY:02", "name": None}])
        self.assertEqual(adapter.cancel_calls, 1)

    def test_scan_reports_disabled_adapter(self) -> None:
        adapter = FakeAdapter(enabled=False)
        code, out, err = self._run(adapter, "scan", "--duration", "0")
        self.assertEqual(code, 2)
        self.assertIn("adapter_disabled", err)
        self.assertEqual(out, "")

    def test_snapshot_rows_flag_extra_connected_devices(self) -> None:
        from btmanager.query import Snapshot

        snapshot = Snapshot(
            connected_device="AA:01",
            available=("CC:03",),
            connected_candidates=("AA:01", "BB:02"),
            names={"AA:01": "Headset", "BB:02": None, "CC:03": "Speaker"},
        )
        rows = cli._snapshot_rows(snapshot)
        self.assertEqual([row["category"] for row in rows], ["connected", "connected (also reported)", "available"])
        self.assertEqual(rows[0]["name"], "Headset")


if __name__ == "__main__":
    unittest.main()
