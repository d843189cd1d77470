"""
Advertisement records and their assembly from device properties.
"""

import logging
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Callable, ContextManager, Dict, Iterable, Iterator, Optional

from .transport import DEVICE_INTERFACE, Transport


MANUFACTURER_DATA_PROPERTY = "ManufacturerData"

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AdvertisementRecord:
    """One advertisement as seen by the adapter."""
    mac: str = ""
    device_name: str = ""
    manufacturer_id: int = 0
    manufacturer_data: bytes = b""
    signal_strength: int = 0  # dBm

    @classmethod
    def from_properties(cls, properties: Dict[str, Any]) -> 'AdvertisementRecord':
        """
        Build a record from an org.bluez.Device1 property map.

        Missing properties leave the matching field at its zero value.
        """
        mac = str(properties.get("Address", "")).upper()
        device_name = str(properties.get("Name", ""))
        signal_strength = int(properties.get("RSSI", 0))

        manufacturer_id = 0
        manufacturer_data = b""
        entries = properties.get(MANUFACTURER_DATA_PROPERTY) or {}
        if entries:
            manufacturer_id = min(entries)
            manufacturer_data = bytes(entries[manufacturer_id])
            if len(entries) > 1:
                logger.debug(f"{mac} advertises {len(entries)} manufacturer ids, "
                             f"using 0x{manufacturer_id:04X}")

        return cls(
            mac=mac,
            device_name=device_name,
            manufacturer_id=manufacturer_id,
            manufacturer_data=manufacturer_data,
            signal_strength=signal_strength,
        )


def describe_record(record: AdvertisementRecord) -> str:
    """Multi-line dump of an advertisement record."""
    data = " ".join(f"0x{byte:02x}" for byte in record.manufacturer_data)
    return "\n".join([
        f"Ble packet MAC: {record.mac}",
        f"Device name: {record.device_name or '{unnamed}'}",
        f"Signal strength: {record.signal_strength}",
        f"Manufacturer id: 0x{record.manufacturer_id:04X}",
        f"Manufacturer data: {data}",
    ])


@contextmanager
def _always_tracked(path: str) -> Iterator[bool]:
    yield True


class PacketAssembler:
    """
    Turns device property changes into AdvertisementRecords.

    Only a change of ManufacturerData triggers an emission; RSSI-only updates
    are ignored. Emission reads the full property set once and invokes the
    callback synchronously. The optional gate is entered around the callback
    and yields whether the device may still emit.
    """

    def __init__(self, transport: Transport,
                 callback: Callable[[AdvertisementRecord], None],
                 gate: Optional[Callable[[str], ContextManager[bool]]] = None):
        if callback is None:
            raise ValueError("PacketAssembler requires a callback")

        self.transport = transport
        self.callback = callback
        self.gate = gate or _always_tracked

    async def on_properties_changed(self, path: str, changed: Iterable[str]) -> bool:
        """
        Handle a PropertiesChanged notification of a device.

        Returns:
            bool: True if a record was emitted
        """
        if MANUFACTURER_DATA_PROPERTY not in changed:
            return False
        return await self.emit_packet(path)

    async def emit_packet(self, path: str) -> bool:
        """
        Emit a record built from the current properties of the device.

        Raises:
            TransportCallError: If the properties cannot be read
        """
        with self.gate(path) as tracked:
            if not tracked:
                return False

        properties = await self.transport.get_all_properties(path, DEVICE_INTERFACE)
        record = AdvertisementRecord.from_properties(properties)

        with self.gate(path) as tracked:
            if not tracked:
                logger.debug(f"Dropping packet from {record.mac}, device no longer tracked")
                return False
            self.callback(record)
        return True
