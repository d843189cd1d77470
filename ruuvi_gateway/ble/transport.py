"""
Transport to the platform Bluetooth service.

The listener components never talk to D-Bus directly. They hold a Transport,
which offers two capabilities: call a method on an object, and subscribe to a
signal of an object. Values crossing this boundary are plain Python values;
D-Bus variants are unwrapped by the D-Bus implementation.
"""

import asyncio
import logging
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from dbus_fast import BusType, Message, MessageType, Variant
from dbus_fast.aio import MessageBus

from ..exceptions.errors import TransportCallError, TransportConnectionError


BLUEZ_SERVICE = "org.bluez"
ADAPTER_INTERFACE = "org.bluez.Adapter1"
DEVICE_INTERFACE = "org.bluez.Device1"
PROPERTIES_INTERFACE = "org.freedesktop.DBus.Properties"
OBJECT_MANAGER_INTERFACE = "org.freedesktop.DBus.ObjectManager"

DBUS_SERVICE = "org.freedesktop.DBus"
DBUS_PATH = "/org/freedesktop/DBus"

logger = logging.getLogger(__name__)

SignalHandler = Callable[..., None]


@dataclass(eq=False)
class Subscription:
    """A registered signal handler for one (path, interface, member)."""
    path: str
    interface: str
    member: str
    handler: SignalHandler = field(repr=False)
    active: bool = True

    @property
    def key(self) -> Tuple[str, str, str]:
        return self.path, self.interface, self.member

    def match_rule(self, sender: str) -> str:
        return (f"type='signal',sender='{sender}',path='{self.path}',"
                f"interface='{self.interface}',member='{self.member}'")


class Transport(ABC):
    """Abstract method-call and signal-subscription capability."""

    @abstractmethod
    async def connect(self) -> None:
        """
        Establish the connection.

        Raises:
            TransportConnectionError: If the service cannot be reached
        """

    @abstractmethod
    async def disconnect(self) -> None:
        """Close the connection. Never raises."""

    @abstractmethod
    async def call(self, path: str, interface: str, member: str,
                   signature: str = "", body: Sequence[Any] = ()) -> List[Any]:
        """
        Call a method and return the reply body.

        Raises:
            TransportCallError: If the call fails or returns an error reply
        """

    @abstractmethod
    async def subscribe(self, path: str, interface: str, member: str,
                        handler: SignalHandler) -> Subscription:
        """
        Route a signal to handler(*body) on the event loop thread.

        Raises:
            TransportCallError: If the subscription cannot be registered
        """

    @abstractmethod
    def unsubscribe(self, subscription: Subscription) -> None:
        """Stop routing a signal. Safe from any thread, never raises."""

    async def get_property(self, path: str, interface: str, name: str) -> Any:
        reply = await self.call(path, PROPERTIES_INTERFACE, "Get", "ss", [interface, name])
        return reply[0]

    async def get_all_properties(self, path: str, interface: str) -> Dict[str, Any]:
        reply = await self.call(path, PROPERTIES_INTERFACE, "GetAll", "s", [interface])
        return reply[0]


def unwrap(value: Any) -> Any:
    """Recursively replace dbus-fast variants by their values."""
    if isinstance(value, Variant):
        return unwrap(value.value)
    if isinstance(value, dict):
        return {key: unwrap(item) for key, item in value.items()}
    if isinstance(value, list):
        return [unwrap(item) for item in value]
    return value


def _variant_for(value: Any) -> Variant:
    if isinstance(value, Variant):
        return value
    if isinstance(value, bool):
        return Variant("b", value)
    if isinstance(value, int):
        return Variant("n", value)
    if isinstance(value, str):
        return Variant("s", value)
    if isinstance(value, (list, tuple)) and all(isinstance(v, str) for v in value):
        return Variant("as", list(value))
    raise TypeError(f"Cannot build a D-Bus variant for {value!r}")


def _wrap_body(signature: str, body: Sequence[Any]) -> List[Any]:
    """Wrap the values of a{sv} arguments given as plain dicts."""
    if "a{sv}" not in signature:
        return list(body)
    return [
        {key: _variant_for(value) for key, value in arg.items()} if isinstance(arg, dict) else arg
        for arg in body
    ]


class DbusTransport(Transport):
    """
    Transport over the system D-Bus using dbus-fast.

    One message handler is installed on the bus; it routes incoming signals
    to the subscriptions registered for their (path, interface, member).
    Routing is local and protected by a lock, so unsubscribe() takes effect
    immediately from any thread; the matching RemoveMatch call is scheduled
    on the event loop.
    """

    def __init__(self, service: str = BLUEZ_SERVICE, bus_type: BusType = BusType.SYSTEM):
        self.service = service
        self.bus_type = bus_type

        self._bus: Optional[MessageBus] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._routes: Dict[Tuple[str, str, str], List[Subscription]] = {}
        self._routes_lock = threading.Lock()

    @property
    def connected(self) -> bool:
        return self._bus is not None and self._bus.connected

    async def connect(self) -> None:
        if self.connected:
            return

        try:
            self._bus = await MessageBus(bus_type=self.bus_type).connect()
        except Exception as e:
            self._bus = None
            raise TransportConnectionError(f"Failed to connect to the system bus: {e}") from e

        self._loop = asyncio.get_running_loop()
        self._bus.add_message_handler(self._route_signal)
        logger.debug(f"Connected to system bus as {self._bus.unique_name}")

    async def disconnect(self) -> None:
        with self._routes_lock:
            for subscriptions in self._routes.values():
                for subscription in subscriptions:
                    subscription.active = False
            self._routes.clear()

        bus, self._bus = self._bus, None
        if bus is None:
            return

        try:
            bus.remove_message_handler(self._route_signal)
            bus.disconnect()
        except Exception as e:
            logger.warning(f"Error closing system bus connection: {e}")

    async def call(self, path: str, interface: str, member: str,
                   signature: str = "", body: Sequence[Any] = ()) -> List[Any]:
        if self._bus is None:
            raise TransportCallError(f"{interface}.{member} on {path}: not connected")

        destination = DBUS_SERVICE if path == DBUS_PATH else self.service
        message = Message(
            destination=destination,
            path=path,
            interface=interface,
            member=member,
            signature=signature,
            body=_wrap_body(signature, body),
        )

        try:
            reply = await self._bus.call(message)
        except Exception as e:
            raise TransportCallError(f"{interface}.{member} on {path} failed: {e}") from e

        if reply is None:
            raise TransportCallError(f"{interface}.{member} on {path}: no reply")

        if reply.message_type == MessageType.ERROR:
            detail = reply.body[0] if reply.body else ""
            raise TransportCallError(
                f"{interface}.{member} on {path} failed: {reply.error_name} - {detail}",
                error_name=reply.error_name,
            )

        return unwrap(reply.body)

    async def subscribe(self, path: str, interface: str, member: str,
                        handler: SignalHandler) -> Subscription:
        subscription = Subscription(path, interface, member, handler)
        await self.call(DBUS_PATH, DBUS_SERVICE, "AddMatch", "s",
                        [subscription.match_rule(self.service)])

        with self._routes_lock:
            self._routes.setdefault(subscription.key, []).append(subscription)
        return subscription

    def unsubscribe(self, subscription: Subscription) -> None:
        with self._routes_lock:
            if not subscription.active:
                return
            subscription.active = False
            routes = self._routes.get(subscription.key, [])
            if subscription in routes:
                routes.remove(subscription)
            if not routes:
                self._routes.pop(subscription.key, None)

        loop = self._loop
        if loop is None or loop.is_closed() or not self.connected:
            return

        try:
            asyncio.run_coroutine_threadsafe(
                self._remove_match(subscription.match_rule(self.service)), loop)
        except RuntimeError as e:
            logger.debug(f"Could not schedule RemoveMatch: {e}")

    async def _remove_match(self, rule: str) -> None:
        try:
            await self.call(DBUS_PATH, DBUS_SERVICE, "RemoveMatch", "s", [rule])
        except TransportCallError as e:
            logger.debug(f"RemoveMatch failed: {e}")

    def _route_signal(self, message: Message) -> None:
        if message.message_type != MessageType.SIGNAL:
            return None

        with self._routes_lock:
            subscriptions = list(self._routes.get((message.path, message.interface, message.member), []))

        if not subscriptions:
            return None

        body = unwrap(message.body)
        for subscription in subscriptions:
            if not subscription.active:
                continue
            try:
                subscription.handler(*body)
            except Exception:
                logger.exception(f"Signal handler for {message.interface}.{message.member} "
                                 f"on {message.path} failed")

        # Returning None leaves the message to other handlers.
        return None
