"""btmanager command-line interface."""
from __future__ import annotations

import argparse
import asyncio
import contextlib
import json
import logging
import signal
import sys
from dataclasses import replace
from pathlib import Path
from typing import Any, Dict, List, Optional

from rich.console import Console
from rich.table import Table

from btmanager.adapter import BleakAdapter
from btmanager.config import DiscoveryConfig
from btmanager.errors import DiscoveryError
from btmanager.query import Snapshot
from btmanager.session import DiscoverySession


def _config_from_args(args: argparse.Namespace) -> DiscoveryConfig:
	config = DiscoveryConfig.from_env()
	overrides: Dict[str, Any] = {}
	if args.bonded:
		overrides["bonded"] = list(args.bonded)
	if args.adapter:
		overrides["adapter"] = args.adapter
	if args.service_uuid:
		overrides["service_uuids"] = list(args.service_uuid)
	if args.address:
		overrides["address_allowlist"] = list(args.address)
	if args.journal:
		overrides["journal_path"] = Path(args.journal)
	if args.poll_interval:
		overrides["connection_poll_interval"] = args.poll_interval
	if not overrides:
		return config
	return replace(config, **overrides)


def _snapshot_rows(snapshot: Snapshot) -> List[Dict[str, Any]]:
	rows: List[Dict[str, Any]] = []
	if snapshot.connected_device:
		rows.append({"category": "connected", "address": snapshot.connected_device})
	for address in snapshot.connected_candidates[1:]:
		rows.append({"category": "connected (also reported)", "address": address})
	rows.extend({"category": "previously connected", "address": a} for a in snapshot.previously_connected)
	rows.extend({"category": "available", "address": a} for a in snapshot.available)
	for row in rows:
		row["name"] = snapshot.names.get(row["address"])
	return rows


async def _cmd_scan(args: argparse.Namespace) -> int:
	config = _config_from_args(args)
	session = DiscoverySession(BleakAdapter(config.adapter_config()), config)
	stop_event = asyncio.Event()

	loop = asyncio.get_running_loop()
	for sig in (signal.SIGINT, signal.SIGTERM):
		with contextlib.suppress(NotImplementedError):
			loop.add_signal_handler(sig, stop_event.set)

	try:
		async with session.scanning() as query:
			with contextlib.suppress(asyncio.TimeoutError):
				await asyncio.wait_for(stop_event.wait(), timeout=args.duration)
			await session.wait_idle()
			snapshot = query.snapshot()
	except DiscoveryError as exc:
		sys.stderr.write(f"btmanager: cannot scan ({exc.reason}): {exc}\n")
		return 2

	if args.json:
		json.dump(snapshot.to_dict(), sys.stdout, indent=2)
		sys.stdout.write("\n")
		return 0

	console = Console()
	table = Table(title="Bluetooth devices", show_lines=False)
	for column in ("category", "address", "name"):
		table.add_column(column.upper())
	for row in _snapshot_rows(snapshot):
		table.add_row(row["category"], row["address"], row["name"] or "Unnamed device")
	console.print(table)
	if snapshot.ambiguous:
		console.print(f"[yellow]{len(snapshot.connected_candidates)} devices report connected[/yellow]")
	return 0


async def _cmd_serve(args: argparse.Namespace) -> int:
	import uvicorn

	server = uvicorn.Server(uvicorn.Config("btmanager.api:app", host=args.host, port=args.port))
	await server.serve()
	return 0


def _build_parser() -> argparse.ArgumentParser:
	parser = argparse.ArgumentParser(description="Bluetooth device discovery and classification")
	parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
	sub = parser.add_subparsers(dest="command", required=True)

	scan = sub.add_parser("scan", help="Run a discovery session and print categorized devices")
	scan.add_argument("--duration", type=float, default=8.0, help="Scan duration in seconds")
	scan.add_argument("--bonded", action="append", help="Bonded device as ADDRESS[=NAME]")
	scan.add_argument("--adapter", help="Bluetooth adapter identifier (e.g. hci0)")
	scan.add_argument("--service-uuid", action="append", help="Only report devices advertising this service", dest="service_uuid")
	scan.add_argument("--address", action="append", help="Only report this device address")
	scan.add_argument("--journal", help="Append session activity to this CSV file")
	scan.add_argument("--poll-interval", type=float, help="Re-poll bonded connection state every N seconds")
	scan.add_argument("--json", action="store_true", help="Output JSON")
	scan.set_defaults(handler=_cmd_scan)

	serve = sub.add_parser("serve", help="Run the HTTP API")
	serve.add_argument("--host", default="127.0.0.1")
	serve.add_argument("--port", type=int, default=8000)
	serve.set_defaults(handler=_cmd_serve)

	return parser


def main(argv: Optional[List[str]] = None) -> int:
	parser = _build_parser()
	args = parser.parse_args(argv)
	logging.basicConfig(
		level=logging.DEBUG if args.verbose else logging.INFO,
		format="%(asctime)s %(levelname)s %(name)s: %(message)s",
	)
	try:
		return asyncio.run(args.handler(args))
	except ValueError as exc:
		parser.error(str(exc))
	return 2


if __name__ == "__main__":
	sys.exit(main())
