"""
BLE discovery over the BlueZ D-Bus service.
"""

from .transport import Transport, DbusTransport, Subscription
from .packet import AdvertisementRecord, PacketAssembler, describe_record
from .registry import Blacklist, DeviceRegistry, normalize_mac
from .discovery import DiscoveryController, DiscoveryState
from .listener import BleListener

__all__ = [
    "Transport",
    "DbusTransport",
    "Subscription",
    "AdvertisementRecord",
    "PacketAssembler",
    "describe_record",
    "Blacklist",
    "DeviceRegistry",
    "normalize_mac",
    "DiscoveryController",
    "DiscoveryState",
    "BleListener",
]
