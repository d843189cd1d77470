"""
BLE advertisement listener.

Wires the discovery controller, device registry, blacklist and packet
assembler together behind the small surface the gateway uses.
"""

import logging
from typing import Any, Callable, ContextManager, Dict, List, Optional

from ..exceptions.errors import TransportCallError
from .discovery import DiscoveryController, DiscoveryState
from .packet import AdvertisementRecord, PacketAssembler
from .registry import Blacklist, DeviceRegistry
from .transport import DbusTransport, OBJECT_MANAGER_INTERFACE, Transport


logger = logging.getLogger(__name__)


class BleListener:
    """
    Listens for advertisements of all devices seen by one adapter.

    The callback receives every AdvertisementRecord whose manufacturer data
    changed, on the event loop thread that runs start().

    Example:
        listener = BleListener(print, "hci0")
        threading.Thread(target=listener.start).start()
        ...
        listener.stop()
    """

    def __init__(self, callback: Callable[[AdvertisementRecord], None],
                 adapter_name: str = "hci0",
                 transport: Optional[Transport] = None,
                 retry_attempts: int = 2,
                 retry_delay: float = 1.0):
        if callback is None:
            raise ValueError("BleListener initialized with empty callback")

        self.adapter_name = adapter_name
        self.transport = transport or DbusTransport()

        self._discovery = DiscoveryController(
            self.transport, adapter_name,
            retry_attempts=retry_attempts, retry_delay=retry_delay)
        self._blacklist = Blacklist()
        self._assembler = PacketAssembler(self.transport, callback, gate=self._tracking)
        self._registry = DeviceRegistry(
            self.transport, self._blacklist,
            dispatch=self._discovery.post,
            on_properties_changed=self._assembler.on_properties_changed,
            on_added=self._assembler.emit_packet,
            adapter_path=self._discovery.adapter_path)

    @property
    def is_discovering(self) -> bool:
        return self._discovery.is_discovering

    @property
    def state(self) -> DiscoveryState:
        return self._discovery.state

    def start(self) -> None:
        """
        Discover and dispatch until stop() is called. Blocks.

        Raises:
            TransportConnectionError: If the system bus cannot be reached
            DiscoveryLostError: If discovery stopped and could not be restarted
        """
        try:
            self._discovery.start(setup=self._setup)
        finally:
            self._registry.clear()

    def stop(self) -> None:
        """Stop discovery. Idempotent, never raises, safe from any thread."""
        self._discovery.stop()

    def blacklist(self, mac: str) -> None:
        """Exclude mac from now on; a tracked device with that MAC is evicted."""
        self._registry.blacklist(mac)

    def get_blacklist(self) -> List[str]:
        return self._registry.get_blacklist()

    def devices(self) -> Dict[str, str]:
        """Tracked object paths and their MACs."""
        return self._registry.devices()

    def _tracking(self, path: str) -> ContextManager[bool]:
        return self._registry.tracking(path)

    async def _setup(self) -> None:
        await self.transport.subscribe(
            "/", OBJECT_MANAGER_INTERFACE, "InterfacesAdded",
            lambda path, interfaces: self._discovery.post(
                self._registry.add_device, path, interfaces))
        await self.transport.subscribe(
            "/", OBJECT_MANAGER_INTERFACE, "InterfacesRemoved",
            lambda path, interfaces: self._discovery.post(
                self._remove_device, path, interfaces))

        # Devices BlueZ already knows about never send InterfacesAdded again.
        try:
            reply = await self.transport.call("/", OBJECT_MANAGER_INTERFACE, "GetManagedObjects")
        except TransportCallError as e:
            logger.warning(f"Could not list known devices: {e}")
            return

        objects: Dict[str, Dict[str, Any]] = reply[0] if reply else {}
        for path in sorted(objects):
            self._discovery.post(self._registry.add_device, path, objects[path])

    async def _remove_device(self, path: str, interfaces: List[str]) -> None:
        self._registry.remove_device(path, interfaces)
