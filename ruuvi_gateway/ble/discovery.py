"""
Adapter discovery control and the event dispatch loop.

start() runs an asyncio loop on the calling thread. Signals from the
transport are queued with post() and handled one at a time, in delivery
order, by a single dispatcher. A discovery retry runs inside that dispatcher,
so no other event is handled while it backs off.
"""

import asyncio
import logging
import threading
from enum import Enum
from typing import Any, Awaitable, Callable, Optional

from ..exceptions.errors import DiscoveryLostError, TransportCallError
from .transport import ADAPTER_INTERFACE, PROPERTIES_INTERFACE, Transport


logger = logging.getLogger(__name__)

_STOP = object()


class DiscoveryState(Enum):
    """Discovery controller states."""
    IDLE = "idle"
    DISCOVERING = "discovering"
    STOPPED = "stopped"
    FAILED = "failed"


class DiscoveryController:
    """
    Drives adapter discovery and owns the blocking event loop.

    Args:
        transport: Transport to the Bluetooth service
        adapter_name: Adapter to discover on, e.g. "hci0"
        retry_attempts: StartDiscovery attempts after discovery is lost
        retry_delay: Seconds to sleep before each attempt
    """

    def __init__(self, transport: Transport, adapter_name: str = "hci0",
                 retry_attempts: int = 2, retry_delay: float = 1.0):
        self.transport = transport
        self.adapter_name = adapter_name
        self.adapter_path = f"/org/bluez/{adapter_name}"
        self.retry_attempts = retry_attempts
        self.retry_delay = retry_delay

        self._state = DiscoveryState.IDLE
        self._state_lock = threading.Lock()
        self._should_discover = False
        self._stop_requested = threading.Event()

        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._events: Optional[asyncio.Queue] = None

    @property
    def state(self) -> DiscoveryState:
        with self._state_lock:
            return self._state

    @property
    def is_discovering(self) -> bool:
        return self.state is DiscoveryState.DISCOVERING

    def _set_state(self, state: DiscoveryState) -> None:
        with self._state_lock:
            if self._state is not state:
                logger.debug(f"Discovery on {self.adapter_name}: {self._state.value} -> {state.value}")
            self._state = state

    def start(self, setup: Optional[Callable[[], Awaitable[Any]]] = None) -> None:
        """
        Start discovery and dispatch events until stop() is called.

        Args:
            setup: Coroutine function run after connecting, before discovery starts

        Raises:
            TransportConnectionError: If the transport cannot connect
            DiscoveryLostError: If discovery was lost and could not be restarted
        """
        if self.state is not DiscoveryState.IDLE:
            raise RuntimeError(f"Discovery controller already used (state {self.state.value})")

        asyncio.run(self._run(setup))

        if self.state is DiscoveryState.FAILED:
            raise DiscoveryLostError(
                f"Discovery on {self.adapter_name} lost after {self.retry_attempts} restart attempts")

    def stop(self) -> None:
        """
        Request the event loop to stop. Idempotent, never raises.

        Safe to call from any thread and from signal handlers.
        """
        try:
            self._stop_requested.set()
            loop, events = self._loop, self._events
            if loop is None or events is None or loop.is_closed():
                return
            loop.call_soon_threadsafe(events.put_nowait, (_STOP, ()))
        except Exception as e:
            # The loop may have closed between the check and the call.
            logger.debug(f"Ignoring error while stopping discovery: {e}")

    def post(self, handler: Callable[..., Awaitable[Any]], *args: Any) -> None:
        """Queue an async handler for the dispatcher. Thread-safe."""
        loop, events = self._loop, self._events
        if loop is None or events is None or loop.is_closed():
            logger.debug(f"Dropping event for {getattr(handler, '__name__', handler)}, loop not running")
            return
        try:
            loop.call_soon_threadsafe(events.put_nowait, (handler, args))
        except RuntimeError:
            logger.debug("Dropping event, loop closed")

    async def _run(self, setup: Optional[Callable[[], Awaitable[Any]]]) -> None:
        self._events = asyncio.Queue()
        self._loop = asyncio.get_running_loop()

        await self.transport.connect()
        try:
            if self._stop_requested.is_set():
                self._set_state(DiscoveryState.STOPPED)
                return

            try:
                await self.transport.subscribe(
                    self.adapter_path, PROPERTIES_INTERFACE, "PropertiesChanged",
                    lambda interface, changed, invalidated: self.post(
                        self.on_adapter_properties_changed, interface, changed))
            except TransportCallError as e:
                logger.warning(f"Cannot watch discovery state of {self.adapter_name}: {e}")

            if setup is not None:
                await setup()

            await self._set_discovery_filter()

            self._should_discover = True
            logger.info(f"Starting bluetooth discovery on {self.adapter_name}")
            if await self._start_discovery():
                self._set_state(DiscoveryState.DISCOVERING)
            elif not await self.retry_discovery() and not self._stop_requested.is_set():
                self._fail()

            await self._dispatch()
        finally:
            self._should_discover = False
            self._loop = None
            await self.transport.disconnect()

    async def _dispatch(self) -> None:
        while True:
            handler, args = await self._events.get()
            if handler is _STOP:
                break
            try:
                await handler(*args)
            except Exception:
                logger.exception(f"Event handler {getattr(handler, '__name__', handler)} failed")

        self._should_discover = False
        if self.state is DiscoveryState.DISCOVERING:
            await self._stop_discovery()
        if self.state is not DiscoveryState.FAILED:
            self._set_state(DiscoveryState.STOPPED)

    async def _set_discovery_filter(self) -> None:
        try:
            await self.transport.call(self.adapter_path, ADAPTER_INTERFACE, "SetDiscoveryFilter",
                                      "a{sv}", [{"DuplicateData": True}])
        except TransportCallError as e:
            logger.warning(f"Failed to set discovery filter: {e}")

    async def _start_discovery(self) -> bool:
        try:
            await self.transport.call(self.adapter_path, ADAPTER_INTERFACE, "StartDiscovery")
        except TransportCallError as e:
            logger.warning(f"Failed to start discovery: {e}")
            return False
        return True

    async def _stop_discovery(self) -> None:
        logger.info(f"Stopping bluetooth discovery on {self.adapter_name}")
        try:
            await self.transport.call(self.adapter_path, ADAPTER_INTERFACE, "StopDiscovery")
        except TransportCallError as e:
            logger.warning(f"Failed to stop discovery: {e}")

    async def retry_discovery(self, times: Optional[int] = None,
                              backoff: Optional[float] = None) -> bool:
        """
        Reissue StartDiscovery up to times attempts, sleeping backoff before each.

        Returns:
            bool: True if discovery is running again
        """
        times = self.retry_attempts if times is None else times
        backoff = self.retry_delay if backoff is None else backoff

        for attempt in range(1, times + 1):
            await asyncio.sleep(backoff)
            if self._stop_requested.is_set():
                return False

            logger.info(f"Restarting discovery on {self.adapter_name} (attempt {attempt}/{times})")
            if await self._start_discovery():
                self._set_state(DiscoveryState.DISCOVERING)
                return True

        logger.error(f"Could not restart discovery on {self.adapter_name} after {times} attempts")
        return False

    async def on_adapter_properties_changed(self, interface: str, changed: dict) -> None:
        """Detect discovery that stopped while it should still be running."""
        if interface != ADAPTER_INTERFACE or "Discovering" not in changed:
            return

        if changed["Discovering"] or not self._should_discover:
            return

        logger.warning(f"Discovery on {self.adapter_name} stopped unexpectedly")
        if not await self.retry_discovery() and not self._stop_requested.is_set():
            self._fail()

    def _fail(self) -> None:
        self._set_state(DiscoveryState.FAILED)
        self._should_discover = False
        self.stop()
