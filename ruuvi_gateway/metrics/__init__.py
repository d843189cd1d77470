"""
Prometheus metrics for Ruuvitag measurements and host statistics.
"""

from .exposer import RuuviExposer
from .system_info import SystemInfoCollector

__all__ = ["RuuviExposer", "SystemInfoCollector"]
