from __future__ import annotations
import contextlib, logging, time
from typing import Optional

from fastapi import FastAPI, HTTPException

from btmanager.adapter import Adapter, BleakAdapter
from btmanager.commands import DeviceCommands
from btmanager.config import DiscoveryConfig
from btmanager.errors import (
    AdapterDisabled,
    AdapterUnavailable,
    AlreadyScanning,
    DiscoveryError,
    PermissionDenied,
    UnknownDevice,
)
from btmanager.session import DiscoverySession

logger = logging.getLogger("btmanager.api")

_session: Optional[DiscoverySession] = None
_commands: Optional[DeviceCommands] = None

_STATUS_CODES = {
    AlreadyScanning: 409,
    PermissionDenied: 403,
    AdapterUnavailable: 503,
    AdapterDisabled: 503,
}


def configure(session: DiscoverySession, commands: Optional[DeviceCommands] = None) -> None:
    """Install the session the endpoints operate on."""
    global _session, _commands
    _session = session
    _commands = commands or DeviceCommands(session.query)


def reset() -> None:
    global _session, _commands
    _session = None
    _commands = None


@contextlib.asynccontextmanager
async def _lifespan(_: FastAPI):
    try:
        yield
    finally:
        if _session is not None and _session.active:
            await _session.stop()


app = FastAPI(title="btmanager API", version="0.1.0", lifespan=_lifespan)


def _require_session() -> DiscoverySession:
    session = _session
    if session is None:
        config = DiscoveryConfig.from_env()
        adapter: Adapter = BleakAdapter(config.adapter_config())
        session = DiscoverySession(adapter, config)
        configure(session)
    return session


def _require_commands() -> DeviceCommands:
    session = _require_session()
    commands = _commands
    if commands is None:
        commands = DeviceCommands(session.query)
        configure(session, commands)
    return commands


@app.get("/health")
async def health():
    return {"status": "ok", "time": time.time()}


@app.post("/session/start")
async def start_session():
    session = _require_session()
    try:
        await session.start()
    except DiscoveryError as exc:
        logger.info("Session start rejected: %s", exc)
        status = _STATUS_CODES.get(type(exc), 400)
        raise HTTPException(status_code=status, detail={"error": exc.reason, "message": str(exc)})
    return {"status": "started", "devices": len(session.registry)}


@app.post("/session/stop")
async def stop_session():
    session = _require_session()
    if not session.active:
        return {"status": "idle"}
    await session.stop()
    return {"status": "stopped"}


@app.get("/session")
async def session_status():
    session = _require_session()
    return {
        "active": session.active,
        "state": session.state.value,
        "devices": len(session.registry),
    }


@app.get("/devices")
async def devices():
    return _require_session().query.snapshot().to_dict()


@app.get("/devices/{address}")
async def device_details(address: str):
    try:
        return _require_commands().view_details(address).to_dict()
    except UnknownDevice as exc:
        raise HTTPException(status_code=404, detail=str(exc))


@app.post("/devices/{address}/connect")
async def connect_device(address: str):
    try:
        connected = await _require_commands().connect(address)
    except UnknownDevice as exc:
        raise HTTPException(status_code=404, detail=str(exc))
    if connected:
        status = "requested"
    else:
        status = "unsupported" if _require_commands().connector is None else "failed"
    return {"address": address, "status": status}

