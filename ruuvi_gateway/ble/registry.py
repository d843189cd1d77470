"""
Tracked devices and the MAC blacklist.

The registry is mutated from the event loop thread (device added/removed)
and from arbitrary threads (blacklist). Every access to the device map goes
through one lock, which blacklist-triggered eviction shares.
"""

import logging
import re
import threading
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Iterable, Iterator, List, Optional, Set

from ..exceptions.errors import TransportCallError
from .transport import DEVICE_INTERFACE, PROPERTIES_INTERFACE, Subscription, Transport


MAC_PATTERN = re.compile(r"^([0-9A-F]{2}:){5}[0-9A-F]{2}$")

logger = logging.getLogger(__name__)


def normalize_mac(mac: str) -> str:
    """
    Return mac in canonical uppercase colon form.

    Raises:
        ValueError: If mac is not a MAC address
    """
    canonical = mac.strip().upper().replace("-", ":")
    if not MAC_PATTERN.match(canonical):
        raise ValueError(f"Invalid MAC address: {mac!r}")
    return canonical


class Blacklist:
    """Thread-safe, append-only set of excluded MAC addresses."""

    def __init__(self, macs: Iterable[str] = ()):
        self._macs: Set[str] = set()
        self._lock = threading.Lock()
        for mac in macs:
            self.add(mac)

    def add(self, mac: str) -> bool:
        """Insert mac; returns False if it was already present."""
        mac = normalize_mac(mac)
        with self._lock:
            if mac in self._macs:
                return False
            self._macs.add(mac)
            return True

    def __contains__(self, mac: str) -> bool:
        with self._lock:
            return mac.upper() in self._macs

    def __len__(self) -> int:
        with self._lock:
            return len(self._macs)

    def snapshot(self) -> List[str]:
        with self._lock:
            return sorted(self._macs)


@dataclass
class DeviceEntry:
    subscription: Subscription
    mac: str


class DeviceRegistry:
    """
    Map of tracked device object paths to their subscription and MAC.

    Args:
        transport: Transport used to resolve MACs and subscribe
        blacklist: Shared blacklist
        dispatch: Queues an async handler on the event loop, dispatch(handler, *args)
        on_properties_changed: Async handler for (path, changed_names)
        on_added: Async handler run once for a newly tracked path
        adapter_path: Only devices below this object path are tracked
    """

    def __init__(self, transport: Transport, blacklist: Blacklist,
                 dispatch: Callable[..., None],
                 on_properties_changed: Callable[[str, List[str]], Awaitable[Any]],
                 on_added: Optional[Callable[[str], Awaitable[Any]]] = None,
                 adapter_path: str = "/org/bluez/hci0"):
        self.transport = transport
        self.blacklist_set = blacklist
        self.dispatch = dispatch
        self.on_properties_changed = on_properties_changed
        self.on_added = on_added
        self.adapter_path = adapter_path.rstrip("/")

        self._devices: Dict[str, DeviceEntry] = {}
        # Reentrant: the packet callback runs while tracking() holds the lock
        # and may itself blacklist a device.
        self._lock = threading.RLock()

    def __contains__(self, path: str) -> bool:
        with self._lock:
            return path in self._devices

    def __len__(self) -> int:
        with self._lock:
            return len(self._devices)

    def devices(self) -> Dict[str, str]:
        """Snapshot of tracked paths and their MACs."""
        with self._lock:
            return {path: entry.mac for path, entry in self._devices.items()}

    @contextmanager
    def tracking(self, path: str) -> Iterator[bool]:
        """Hold the registry lock and yield whether path may emit packets."""
        with self._lock:
            entry = self._devices.get(path)
            yield entry is not None and entry.mac not in self.blacklist_set

    async def add_device(self, path: str, interfaces: Dict[str, Any]) -> bool:
        """
        Start tracking a device announced by InterfacesAdded.

        Returns:
            bool: True if the device is now tracked by this call
        """
        if path in self:
            return False

        if DEVICE_INTERFACE not in interfaces:
            return False

        if not path.startswith(self.adapter_path + "/"):
            logger.debug(f"Ignoring {path}, not on adapter {self.adapter_path}")
            return False

        try:
            mac = str(await self.transport.get_property(path, DEVICE_INTERFACE, "Address")).upper()
        except TransportCallError as e:
            logger.warning(f"Could not resolve address of {path}: {e}")
            return False

        if mac in self.blacklist_set:
            logger.debug(f"Ignoring blacklisted device {mac}")
            return False

        try:
            subscription = await self.transport.subscribe(
                path, PROPERTIES_INTERFACE, "PropertiesChanged",
                lambda interface, changed, invalidated: self._properties_changed(
                    path, interface, changed))
        except TransportCallError as e:
            logger.warning(f"Could not subscribe to {path}: {e}")
            return False

        with self._lock:
            # The MAC may have been blacklisted while we were subscribing.
            admitted = path not in self._devices and mac not in self.blacklist_set
            if admitted:
                self._devices[path] = DeviceEntry(subscription, mac)

        if not admitted:
            self.transport.unsubscribe(subscription)
            return False

        logger.info(f"Tracking device {mac} ({path})")
        if self.on_added is not None:
            await self.on_added(path)
        return True

    def remove_device(self, path: str, interfaces: Iterable[str]) -> bool:
        """
        Stop tracking a device named by InterfacesRemoved.

        Returns:
            bool: True if an entry was removed
        """
        if DEVICE_INTERFACE not in interfaces:
            return False

        with self._lock:
            entry = self._devices.pop(path, None)

        if entry is None:
            return False

        self.transport.unsubscribe(entry.subscription)
        logger.info(f"Device {entry.mac} removed ({path})")
        return True

    def blacklist(self, mac: str) -> List[str]:
        """
        Blacklist mac and evict every tracked device resolved to it.

        Returns:
            List[str]: Object paths that were evicted
        """
        mac = normalize_mac(mac)

        with self._lock:
            if self.blacklist_set.add(mac):
                logger.info(f"Blacklisted {mac}")
            evicted = [(path, entry) for path, entry in self._devices.items() if entry.mac == mac]
            for path, _ in evicted:
                del self._devices[path]

        for path, entry in evicted:
            self.transport.unsubscribe(entry.subscription)
            logger.info(f"Evicted blacklisted device {mac} ({path})")

        return [path for path, _ in evicted]

    def get_blacklist(self) -> List[str]:
        return self.blacklist_set.snapshot()

    def clear(self) -> None:
        """Drop all entries and their subscriptions."""
        with self._lock:
            entries = list(self._devices.values())
            self._devices.clear()

        for entry in entries:
            self.transport.unsubscribe(entry.subscription)

    def _properties_changed(self, path: str, interface: str, changed: Dict[str, Any]) -> None:
        if interface != DEVICE_INTERFACE:
            return
        self.dispatch(self.on_properties_changed, path, list(changed))
