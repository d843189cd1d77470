"""
Error taxonomy and failure diagnostics.
"""

from .errors import (
    GatewayError,
    TransportError,
    TransportConnectionError,
    TransportCallError,
    DiscoveryLostError,
    DecodeError,
)
from .edge_cases import BluetoothDiagnostics

__all__ = [
    "GatewayError",
    "TransportError",
    "TransportConnectionError",
    "TransportCallError",
    "DiscoveryLostError",
    "DecodeError",
    "BluetoothDiagnostics",
]
