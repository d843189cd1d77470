"""
Test helper utilities for Ruuvi gateway tests.
"""

import threading
import time
from typing import Callable, List, Optional

from ruuvi_gateway.ble.packet import AdvertisementRecord


class RecordCollector:
    """Thread-safe packet callback that remembers every record."""

    def __init__(self, on_record: Optional[Callable[[AdvertisementRecord], None]] = None):
        self.records: List[AdvertisementRecord] = []
        self.on_record = on_record
        self._lock = threading.Lock()

    def __call__(self, record: AdvertisementRecord) -> None:
        with self._lock:
            self.records.append(record)
        if self.on_record is not None:
            self.on_record(record)

    def macs(self) -> List[str]:
        with self._lock:
            return [record.mac for record in self.records]

    def __len__(self) -> int:
        with self._lock:
            return len(self.records)


def wait_for(predicate: Callable[[], bool], timeout: float = 5.0, interval: float = 0.01) -> bool:
    """Poll predicate until it is true or timeout expires."""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(interval)
    return predicate()


class ThreadRunner:
    """Runs a blocking callable on a thread and keeps its exception."""

    def __init__(self, target: Callable[[], None]):
        self.error: Optional[BaseException] = None
        self._target = target
        self.thread = threading.Thread(target=self._run, daemon=True)

    def _run(self) -> None:
        try:
            self._target()
        except BaseException as e:
            self.error = e

    def start(self) -> "ThreadRunner":
        self.thread.start()
        return self

    def join(self, timeout: float = 5.0) -> bool:
        self.thread.join(timeout)
        return not self.thread.is_alive()
