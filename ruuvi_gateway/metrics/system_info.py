"""
Host statistics exported next to the sensor metrics.

Values are read with psutil at scrape time. A scrape in which any reading
failed increments sysinfo_errors_count once; the families that could be read
are still exported.
"""

import logging
import threading
from typing import Callable, Iterable, Iterator, List

import psutil
from prometheus_client.core import GaugeMetricFamily, Metric
from prometheus_client.registry import Collector


logger = logging.getLogger(__name__)

Reader = Callable[[], Iterable[Metric]]


def _gauge(name: str, documentation: str, value: float) -> GaugeMetricFamily:
    return GaugeMetricFamily(name, documentation, value=value)


class SystemInfoCollector(Collector):
    """Prometheus collector for memory, cpu, load, network, thermal and disk statistics."""

    def __init__(self):
        self._errors_count = 0
        self._lock = threading.Lock()

    @property
    def errors_count(self) -> int:
        with self._lock:
            return self._errors_count

    def collect(self) -> Iterator[Metric]:
        families: List[Metric] = []
        failed = False

        readers: List[Reader] = [
            self._memory,
            self._processes,
            self._load,
            self._cpu_times,
            self._network,
            self._thermal_sensors,
            self._disks,
        ]
        for reader in readers:
            try:
                families.extend(reader())
            except Exception as e:
                failed = True
                logger.warning(f"System info reader {reader.__name__} failed: {e}")

        if failed:
            with self._lock:
                self._errors_count += 1

        yield from families
        yield _gauge("sysinfo_errors_count", "Number of scrapes containing errors", self.errors_count)

    def _memory(self) -> List[Metric]:
        memory = psutil.virtual_memory()
        swap = psutil.swap_memory()

        families = [
            _gauge("sysinfo_memory_size_bytes", "Total usable memory", memory.total),
            _gauge("sysinfo_memory_free_bytes", "Unused memory", memory.free),
            _gauge("sysinfo_memory_available_bytes",
                   "Memory available for new processes without swapping", memory.available),
            _gauge("sysinfo_swap_size_bytes", "Total swap space", swap.total),
            _gauge("sysinfo_swap_free_bytes", "Unused swap space", swap.free),
        ]

        # Linux only fields
        optional = [
            ("buffers", "sysinfo_memory_buffers_bytes", "Memory used by kernel buffers"),
            ("cached", "sysinfo_memory_cached_bytes", "Memory used by the page cache"),
            ("active", "sysinfo_memory_active_bytes", "Recently used memory"),
            ("inactive", "sysinfo_memory_inactive_bytes", "Memory not recently used"),
            ("shared", "sysinfo_memory_shared_bytes", "Shared memory"),
        ]
        for field_name, name, documentation in optional:
            value = getattr(memory, field_name, None)
            if value is not None:
                families.append(_gauge(name, documentation, value))

        return families

    def _processes(self) -> List[Metric]:
        return [_gauge("sysinfo_processes", "Number of current processes", len(psutil.pids()))]

    def _load(self) -> List[Metric]:
        family = GaugeMetricFamily("sysinfo_avg_load", "Cpu load average", labels=["period"])
        for period, value in zip(("1m", "5m", "15m"), psutil.getloadavg()):
            family.add_metric([period], value)
        return [family]

    def _cpu_times(self) -> List[Metric]:
        times = psutil.cpu_times()

        def total(*names: str) -> float:
            return sum(getattr(times, name, 0.0) for name in names)

        return [
            _gauge("sysinfo_cpu_user_seconds", "Time spent in user mode since boot",
                   total("user", "nice")),
            _gauge("sysinfo_cpu_system_seconds", "Time spent in system mode since boot",
                   total("system")),
            _gauge("sysinfo_cpu_irq_seconds", "Time spent servicing interrupts since boot",
                   total("irq", "softirq")),
            _gauge("sysinfo_cpu_vm_seconds", "Time spent in virtual machines since boot",
                   total("steal", "guest", "guest_nice")),
        ]

    def _network(self) -> List[Metric]:
        counters = psutil.net_io_counters()
        return [
            _gauge("sysinfo_network_in_bytes", "Count of received octets (bytes) since boot",
                   counters.bytes_recv),
            _gauge("sysinfo_network_out_bytes", "Count of sent octets (bytes) since boot",
                   counters.bytes_sent),
        ]

    def _thermal_sensors(self) -> List[Metric]:
        family = GaugeMetricFamily(
            "sysinfo_sensor_temperature_celsius",
            "Temperature of a sensor with its type as a label",
            labels=["type", "label"])

        sensors_temperatures = getattr(psutil, "sensors_temperatures", None)
        if sensors_temperatures is None:
            return [family]

        for sensor_type, readings in sensors_temperatures().items():
            for index, reading in enumerate(readings):
                family.add_metric([sensor_type, reading.label or str(index)], reading.current)
        return [family]

    def _disks(self) -> List[Metric]:
        definitions = [
            ("sysinfo_disk_reads_completed_total", "Number of successful disk reads",
             lambda s: s.read_count),
            ("sysinfo_disk_read_bytes_total", "Amount of data read from disk",
             lambda s: s.read_bytes),
            ("sysinfo_disk_read_time_seconds_total", "Time spent reading from disk",
             lambda s: s.read_time / 1000.0),
            ("sysinfo_disk_writes_completed_total", "Number of successful disk writes",
             lambda s: s.write_count),
            ("sysinfo_disk_write_bytes_total", "Amount of data written to disk",
             lambda s: s.write_bytes),
            ("sysinfo_disk_write_time_seconds_total", "Time spent writing to disk",
             lambda s: s.write_time / 1000.0),
            ("sysinfo_disk_io_time_seconds_total", "Time spent on disk I/O",
             lambda s: getattr(s, "busy_time", 0) / 1000.0),
        ]

        stats = psutil.disk_io_counters(perdisk=True) or {}
        families = []
        for name, documentation, value in definitions:
            family = GaugeMetricFamily(name, documentation, labels=["disk"])
            for disk, stat in sorted(stats.items()):
                family.add_metric([disk], value(stat))
            families.append(family)
        return families
