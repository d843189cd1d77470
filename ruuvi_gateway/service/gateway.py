"""
Gateway service: BLE listener to Prometheus metrics.

The listener runs on a dedicated runner thread. The thread that calls run()
waits for a shutdown request (signal, listener failure or request_shutdown())
and then stops the listener and joins the runner.
"""

import logging
import signal
import threading
from dataclasses import asdict, dataclass, replace
from datetime import datetime
from typing import Any, Dict, Optional

from ..ble.listener import BleListener
from ..ble.packet import AdvertisementRecord, describe_record
from ..exceptions.edge_cases import BluetoothDiagnostics
from ..exceptions.errors import DecodeError, DiscoveryLostError, TransportConnectionError
from ..metrics.exposer import RuuviExposer
from ..metrics.system_info import SystemInfoCollector
from ..ruuvi.codec import RuuviDataFormat, decode, describe, identify_format
from ..utils.config import Config


logger = logging.getLogger(__name__)

SUPPORTED_FORMATS = (RuuviDataFormat.FORMAT_5, RuuviDataFormat.FORMAT_3)


@dataclass
class GatewayStats:
    """Gateway statistics container."""
    start_time: datetime
    packets_received: int = 0
    measurements_decoded: int = 0
    decode_errors: int = 0
    packets_ignored: int = 0
    last_packet_time: Optional[datetime] = None


class RuuviGateway:
    """
    Receives Ruuvitag advertisements and exports them as Prometheus metrics.

    Args:
        config: Gateway configuration
        listener: Listener to use instead of one built from config
        exposer: Exposer to use instead of a new one
    """

    def __init__(self, config: Config,
                 listener: Optional[BleListener] = None,
                 exposer: Optional[RuuviExposer] = None):
        self.config = config
        self.strict = config.decode_strict
        self.log_packets = config.log_packets

        self.exposer = exposer if exposer is not None else RuuviExposer()
        if config.sysinfo_enabled:
            self.exposer.register(SystemInfoCollector())

        self.listener = listener if listener is not None else BleListener(
            self.handle_packet,
            config.ble_adapter,
            retry_attempts=config.ble_retry_attempts,
            retry_delay=config.ble_retry_delay,
        )
        self.diagnostics = BluetoothDiagnostics(config.ble_adapter)

        self._stats = GatewayStats(start_time=datetime.now())
        self._stats_lock = threading.Lock()
        self._shutdown = threading.Event()
        self._runner: Optional[threading.Thread] = None
        self._listener_error: Optional[Exception] = None

    def handle_packet(self, record: AdvertisementRecord) -> None:
        """Packet callback: decode supported formats and update the exposer."""
        with self._stats_lock:
            self._stats.packets_received += 1
            self._stats.last_packet_time = datetime.now()

        if self.log_packets:
            logger.debug(describe_record(record))

        if identify_format(record) not in SUPPORTED_FORMATS:
            with self._stats_lock:
                self._stats.packets_ignored += 1
            return

        try:
            measurement = decode(record, self.strict)
        except DecodeError as e:
            logger.warning(f"Dropping packet from {record.mac}: {e}")
            with self._stats_lock:
                self._stats.decode_errors += 1
            return

        if measurement.contains_errors:
            logger.debug(f"Measurement from {record.mac} has errors: {measurement.error_msg}")
        if self.log_packets:
            logger.debug(describe(measurement))

        self.exposer.update(measurement)
        with self._stats_lock:
            self._stats.measurements_decoded += 1

    def request_shutdown(self) -> None:
        """Ask run() to stop. Safe from any thread and from signal handlers."""
        self._shutdown.set()

    def _signal_handler(self, signum, frame):
        logger.info(f"Received {signal.Signals(signum).name}, initiating graceful shutdown...")
        self.request_shutdown()

    def _install_signal_handlers(self) -> Dict[int, Any]:
        previous = {}
        if threading.current_thread() is not threading.main_thread():
            logger.debug("Not on the main thread, signal handlers not installed")
            return previous

        for signum in (signal.SIGINT, signal.SIGTERM):
            previous[signum] = signal.signal(signum, self._signal_handler)
        return previous

    def _run_listener(self) -> None:
        try:
            self.listener.start()
        except Exception as e:
            self._listener_error = e
            logger.error(f"BLE listener failed: {e}")
        finally:
            self._shutdown.set()

    def run(self, serve_metrics: bool = True, install_signal_handlers: bool = True) -> int:
        """
        Run the gateway until shutdown is requested or the listener dies.

        Returns:
            int: 0 on orderly shutdown, 1 if the listener failed or the
            metrics endpoint could not be started
        """
        for mac in self.config.ble_blacklist:
            self.listener.blacklist(mac)

        if serve_metrics:
            try:
                self.exposer.serve(self.config.exposer_address, self.config.exposer_port)
            except OSError as e:
                logger.error(f"Cannot serve metrics on "
                             f"{self.config.exposer_address}:{self.config.exposer_port}: {e}")
                return 1

        previous_handlers = self._install_signal_handlers() if install_signal_handlers else {}

        logger.info(f"Starting Ruuvi gateway on adapter {self.config.ble_adapter}")
        self._runner = threading.Thread(target=self._run_listener, name="ble-listener", daemon=True)
        self._runner.start()

        try:
            while not self._shutdown.wait(timeout=0.5):
                pass
        finally:
            self.listener.stop()
            self._runner.join(timeout=10)
            if self._runner.is_alive():
                logger.warning("BLE listener did not stop within 10 seconds")

            for signum, handler in previous_handlers.items():
                signal.signal(signum, handler)

            if serve_metrics:
                self.exposer.shutdown()

        status = self.get_status()
        stats = status["stats"]
        logger.info(
            f"Gateway stopped: packets={stats['packets_received']} "
            f"decoded={stats['measurements_decoded']} decode_errors={stats['decode_errors']} "
            f"ignored={stats['packets_ignored']} blacklisted={len(status['blacklist'])}")

        if self._listener_error is not None:
            if isinstance(self._listener_error, (TransportConnectionError, DiscoveryLostError)):
                logger.error(self.diagnostics.handle_listener_error(self._listener_error))
            return 1
        return 0

    def get_statistics(self) -> GatewayStats:
        with self._stats_lock:
            return replace(self._stats)

    def get_status(self) -> Dict[str, Any]:
        """Get gateway status for display."""
        return {
            "adapter": self.config.ble_adapter,
            "discovering": self.listener.is_discovering,
            "tracked_devices": len(self.listener.devices()),
            "blacklist": self.listener.get_blacklist(),
            "stats": asdict(self.get_statistics()),
        }
