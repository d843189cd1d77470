"""
Prometheus exposition of decoded Ruuvitag measurements.
"""

import logging
import threading
from typing import List, Optional, Tuple

from prometheus_client import CollectorRegistry, Counter, Gauge, start_http_server
from prometheus_client.registry import Collector

from ..ruuvi.codec import Measurement


logger = logging.getLogger(__name__)

# (metric name, help, measurement attribute)
MEASUREMENT_GAUGES: List[Tuple[str, str, str]] = [
    ("ruuvi_temperature_celsius", "Ruuvitag temperature in Celsius", "temperature"),
    ("ruuvi_relative_humidity_ratio", "Ruuvitag relative humidity 0-100%", "humidity"),
    ("ruuvi_pressure_pascals", "Ruuvitag pressure in Pascal", "pressure"),
    ("ruuvi_acceleration_total_gs", "Total acceleration of ruuvitag, hypot(x, y, z)", "acceleration_total"),
    ("ruuvi_battery_volts", "Ruuvitag battery voltage", "battery_voltage"),
    ("ruuvi_movement_count", "Ruuvitag movement counter", "movement_counter"),
    ("ruuvi_tx_power_dbm", "Ruuvitag transmit power", "tx_power"),
    ("ruuvi_measurement_count", "Ruuvitag packet measurement sequence number [0-65535]",
     "measurement_sequence"),
    ("ruuvi_rssi_dbm", "Ruuvitag received signal strength rssi", "signal_strength"),
]


class RuuviExposer:
    """
    Holds the per-tag gauges and counters and serves them over HTTP.

    Every series is labelled with the tag MAC. Data format 3 measurements
    leave the series they do not carry untouched.

    Args:
        registry: Registry to register into; a private one is created by default
    """

    def __init__(self, registry: Optional[CollectorRegistry] = None):
        self.registry = registry if registry is not None else CollectorRegistry()
        self._lock = threading.Lock()
        self._server = None
        self._server_thread = None

        self._gauges: List[Tuple[Gauge, str]] = []
        for name, documentation, attribute in MEASUREMENT_GAUGES:
            gauge = Gauge(name, documentation, ["mac"], registry=self.registry)
            self._gauges.append((gauge, attribute))

        self.acceleration = Gauge(
            "ruuvi_acceleration_gs", "Ruuvitag acceleration in Gs",
            ["mac", "axis"], registry=self.registry)
        self.errors = Counter(
            "ruuvi_errors_total", "Number of errors", ["mac"], registry=self.registry)
        self.measurements = Counter(
            "ruuvi_received_measurements_total", "Total count of received measurements",
            ["mac"], registry=self.registry)

    def register(self, collector: Collector) -> None:
        """Export an additional collector, e.g. SystemInfoCollector, on the same endpoint."""
        self.registry.register(collector)

    def update(self, measurement: Measurement) -> None:
        """Record one measurement. Thread-safe."""
        mac = measurement.mac

        with self._lock:
            for gauge, attribute in self._gauges:
                if hasattr(measurement, attribute):
                    gauge.labels(mac=mac).set(getattr(measurement, attribute))

            for axis, value in zip("xyz", measurement.acceleration):
                self.acceleration.labels(mac=mac, axis=axis).set(value)

            self.measurements.labels(mac=mac).inc()
            errors = self.errors.labels(mac=mac)
            if measurement.contains_errors:
                errors.inc()

    def serve(self, address: str = "0.0.0.0", port: int = 9105) -> None:
        """
        Start the HTTP endpoint in a daemon thread.

        Raises:
            OSError: If the address cannot be bound
        """
        self._server, self._server_thread = start_http_server(
            port, addr=address, registry=self.registry)
        logger.info(f"Serving metrics on http://{address}:{port}/metrics")

    def shutdown(self) -> None:
        """Stop the HTTP endpoint if it is running."""
        server, self._server = self._server, None
        if server is None:
            return
        server.shutdown()
        server.server_close()
        if self._server_thread is not None:
            self._server_thread.join(timeout=5)
            self._server_thread = None
        logger.info("Metrics endpoint stopped")
