"""Discovery session lifecycle: subscription, scanning and event marshaling."""
from __future__ import annotations

import asyncio
import contextlib
import logging
from typing import Any, AsyncIterator, Callable, ContextManager, Iterable, List, Optional, Tuple

from btmanager.adapter import Adapter
from btmanager.config import DiscoveryConfig
from btmanager.errors import AdapterDisabled, AdapterUnavailable, AlreadyScanning, PermissionDenied
from btmanager.journal import SessionJournal
from btmanager.models.device_record import BondState, normalize_address
from btmanager.models.events import BondStateChanged, ConnectionStateChanged, DeviceHandle, EventSink
from btmanager.query import QueryFacade
from btmanager.reconciler import Clock, EventReconciler, SessionState
from btmanager.registry import DeviceRegistry

logger = logging.getLogger(__name__)

PermissionCheck = Callable[[], bool]
_QueueItem = Tuple[int, Any]


class DiscoverySession:
    """Own one discovery session at a time and the registry it fills.

    Adapter callbacks may arrive on any thread. The sink handed to the
    adapter only enqueues events onto the session's event loop; a single
    worker task applies them to the registry, so every mutation happens on
    that loop in arrival order. Each queued event carries the generation of
    the session that received it, and anything from an older generation is
    discarded once :meth:`stop` has run.
    """

    def __init__(
        self,
        adapter: Adapter,
        config: DiscoveryConfig | None = None,
        *,
        journal: SessionJournal | None = None,
        permission_check: PermissionCheck | None = None,
        clock: Clock | None = None,
    ) -> None:
        self.adapter = adapter
        self.config = config or DiscoveryConfig()
        if journal is None and self.config.journal_path is not None:
            static = {"adapter": self.config.adapter} if self.config.adapter else None
            journal = SessionJournal(self.config.journal_path, static_extra=static)
        self.journal = journal
        self._permission_check = permission_check
        self._clock = clock

        self._registry = DeviceRegistry()
        self._reconciler = EventReconciler(self._registry, clock=clock, journal=journal)
        self.query = QueryFacade(lambda: self._registry)

        self._active = False
        self._generation = 0
        self._subscription: Any = None
        self._queue: Optional[asyncio.Queue[_QueueItem]] = None
        self._tasks: List[asyncio.Task[None]] = []

    @property
    def active(self) -> bool:
        return self._active

    @property
    def state(self) -> SessionState:
        return self._reconciler.state

    @property
    def registry(self) -> DeviceRegistry:
        return self._registry

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------
    async def start(self) -> None:
        if self._active:
            raise AlreadyScanning("a discovery session is already active")
        if self._permission_check is not None and not self._permission_check():
            raise PermissionDenied("Bluetooth scan permission has not been granted")
        if not self.adapter.is_available():
            raise AdapterUnavailable("no Bluetooth adapter is available")
        if not self.adapter.is_enabled():
            raise AdapterDisabled("the Bluetooth adapter is turned off")

        loop = asyncio.get_running_loop()
        self._generation += 1
        generation = self._generation

        registry = DeviceRegistry()
        self._seed(registry, self.adapter.bonded_devices())
        previous = (self._registry, self._reconciler)
        self._registry = registry
        self._reconciler = EventReconciler(registry, clock=self._clock, journal=self.journal)

        queue: asyncio.Queue[_QueueItem] = asyncio.Queue()
        self._queue = queue
        self._active = True
        self._tasks = [asyncio.create_task(self._drain(generation, queue), name=f"btmanager-drain-{generation}")]
        try:
            self._subscription = self.adapter.subscribe(self._make_sink(loop, generation, queue))
            await self.adapter.start_scan()
        except BaseException:
            logger.warning("Discovery session %d failed to start; releasing adapter", generation)
            try:
                await self._teardown(cancel_scan=False)
            finally:
                self._registry, self._reconciler = previous
            raise

        interval = self.config.connection_poll_interval
        if interval:
            self._tasks.append(
                asyncio.create_task(self._poll_connections(interval), name=f"btmanager-poll-{generation}")
            )

        logger.info("Discovery session %d started with %d bonded device(s)", generation, len(registry))
        with self._journal_scope(generation):
            self._journal_log("session_start", status="ok", extra={"bonded": len(registry)})

    async def stop(self) -> None:
        if not self._active:
            return
        generation = self._generation
        await self._teardown(cancel_scan=True)
        logger.info("Discovery session %d stopped with %d device(s)", generation, len(self._registry))
        with self._journal_scope(generation):
            self._journal_log("session_stop", status="ok", extra={"devices": len(self._registry)})

    async def __aenter__(self) -> "DiscoverySession":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.stop()

    @contextlib.asynccontextmanager
    async def scanning(self) -> AsyncIterator[QueryFacade]:
        """Run a session for the duration of the ``async with`` block."""
        await self.start()
        try:
            yield self.query
        finally:
            await self.stop()

    async def wait_idle(self) -> None:
        """Wait until every event delivered so far has been applied."""
        queue = self._queue
        if queue is None:
            return
        # Let call_soon_threadsafe callbacks already scheduled land in the queue.
        await asyncio.sleep(0)
        await queue.join()

    # ------------------------------------------------------------------
    # Connection polling
    # ------------------------------------------------------------------
    async def refresh_connections(self) -> int:
        """Re-query the adapter's live connection state for bonded devices.

        Differences from the registry are queued as regular events and go
        through the reconciler like pushed ones. Returns how many events
        were queued.
        """
        if not self._active or self._queue is None:
            return 0
        generation = self._generation
        queue = self._queue
        observed = await asyncio.to_thread(self._probe_bonded)
        if generation != self._generation:
            return 0

        queued = 0
        for address, connected in observed:
            record = self._registry.get(address)
            if record is None or not record.is_bonded:
                queue.put_nowait((generation, BondStateChanged(address=address, state=BondState.BONDED)))
                queued += 1
            if record is None or record.is_connected != connected:
                queue.put_nowait((generation, ConnectionStateChanged(address=address, connected=connected)))
                queued += 1
        return queued

    async def _poll_connections(self, interval: float) -> None:
        while True:
            await asyncio.sleep(interval)
            try:
                await self.refresh_connections()
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                logger.warning("Connection poll failed: %s", exc)

    def _probe_bonded(self) -> List[Tuple[str, bool]]:
        results: List[Tuple[str, bool]] = []
        for handle in _ordered(self.adapter.bonded_devices()):
            address = _handle_address(handle)
            if address is None:
                continue
            results.append((address, bool(self.adapter.is_device_connected(handle))))
        return results

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------
    def _seed(self, registry: DeviceRegistry, handles: Iterable[DeviceHandle]) -> None:
        for handle in _ordered(handles):
            address = _handle_address(handle)
            if address is None:
                logger.warning("Skipping bonded device without an address: %r", handle)
                continue
            connected = bool(self.adapter.is_device_connected(handle))
            registry.seed(address, getattr(handle, "name", None), connected)
            logger.debug("Seeded bonded device %s (connected=%s)", address, connected)

    def _make_sink(
        self, loop: asyncio.AbstractEventLoop, generation: int, queue: asyncio.Queue[_QueueItem]
    ) -> EventSink:
        def sink(event: Any) -> None:
            if generation != self._generation or not self._active:
                return
            try:
                loop.call_soon_threadsafe(queue.put_nowait, (generation, event))
            except RuntimeError:
                logger.debug("Event loop closed; dropping %r", event)

        return sink

    async def _drain(self, generation: int, queue: asyncio.Queue[_QueueItem]) -> None:
        with self._journal_scope(generation):
            while True:
                event_generation, event = await queue.get()
                try:
                    if event_generation == self._generation and self._active:
                        self._reconciler.apply(event)
                    else:
                        logger.debug("Discarding event from stopped session: %r", event)
                except Exception:
                    logger.exception("Failed to apply adapter event %r", event)
                finally:
                    queue.task_done()

    async def _teardown(self, *, cancel_scan: bool) -> None:
        # Bump the generation first so nothing queued from here on is applied.
        self._active = False
        self._generation += 1
        subscription, self._subscription = self._subscription, None
        tasks, self._tasks = self._tasks, []
        try:
            try:
                if subscription is not None:
                    self.adapter.unsubscribe(subscription)
            finally:
                if cancel_scan:
                    await self.adapter.cancel_scan()
        finally:
            for task in tasks:
                task.cancel()
            for task in tasks:
                with contextlib.suppress(asyncio.CancelledError):
                    await task
            self._queue = None
            self._reconciler.state = SessionState.IDLE

    def _journal_scope(self, generation: int) -> ContextManager[None]:
        if self.journal is None:
            return contextlib.nullcontext()
        return self.journal.scope(session=generation)

    def _journal_log(self, event: str, **payload: Any) -> None:
        if not self.journal:
            return
        try:
            self.journal.log(event, **payload)
        except Exception:  # pragma: no cover - journal I/O must not break the session
            logger.debug("Journal write failed for %s", event, exc_info=True)


def _handle_address(handle: Any) -> Optional[str]:
    address = getattr(handle, "address", None)
    if not isinstance(address, str) or not address.strip():
        return None
    return address.strip()


def _ordered(handles: Iterable[DeviceHandle]) -> List[DeviceHandle]:
    return sorted(handles, key=lambda h: normalize_address(_handle_address(h) or ""))


__all__ = ["DiscoverySession", "PermissionCheck"]
