"""
Exception hierarchy for the Ruuvi BLE gateway.
"""

from typing import Optional


class GatewayError(Exception):
    """Base exception for gateway operations."""
    pass


class TransportError(GatewayError):
    """Base exception for Bluetooth service transport failures."""
    pass


class TransportConnectionError(TransportError, ConnectionError):
    """Raised when the connection to the system bus cannot be established."""
    pass


class TransportCallError(TransportError):
    """Raised when a single method call or subscription fails."""

    def __init__(self, message: str, error_name: Optional[str] = None):
        super().__init__(message)
        self.error_name = error_name


class DiscoveryLostError(GatewayError):
    """Raised by a blocking start() when discovery could not be recovered."""
    pass


class DecodeError(GatewayError, ValueError):
    """Raised when a sensor payload cannot be decoded."""
    pass
