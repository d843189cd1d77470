"""
Configuration and logging.
"""

from .config import Config, ConfigurationError
from .logging import ProductionLogger, setup_logging

__all__ = ["Config", "ConfigurationError", "ProductionLogger", "setup_logging"]
