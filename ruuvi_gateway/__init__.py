"""
Ruuvi Gateway.

Listens for Ruuvitag BLE advertisements through BlueZ, decodes them and
exports the measurements as Prometheus metrics.
"""

__version__ = "1.0.0"
