"""
Logging configuration for the Ruuvi gateway.
Console, rotating file and syslog handlers, plus per-component log files.
"""

import logging
import logging.handlers
import sys
from pathlib import Path
import colorlog


APP_NAME = "ruuvi_gateway"

# Component logger name -> (log file, record prefix)
COMPONENT_LOGS = {
    "ruuvi_gateway.ble": ("ble.log", "BLE"),
    "ruuvi_gateway.metrics": ("metrics.log", "METRICS"),
}


class ProductionLogger:
    """
    Logging setup for production deployment: colored console output,
    rotating log files and optional syslog for systemd integration.
    """

    def __init__(self,
                 app_name: str = APP_NAME,
                 log_dir: str = "./logs",
                 log_level: str = "INFO",
                 max_file_size: int = 10 * 1024 * 1024,  # 10MB
                 backup_count: int = 5,
                 enable_console: bool = True,
                 enable_syslog: bool = False):

        self.app_name = app_name
        self.log_dir = Path(log_dir)
        self.log_level = getattr(logging, log_level.upper())
        self.max_file_size = max_file_size
        self.backup_count = backup_count
        self.enable_console = enable_console
        self.enable_syslog = enable_syslog

        self.log_dir.mkdir(parents=True, exist_ok=True)

        self._setup_root_logger()
        self._setup_component_loggers()

    def _rotating_handler(self, filename: str) -> logging.Handler:
        return logging.handlers.RotatingFileHandler(
            self.log_dir / filename,
            maxBytes=self.max_file_size,
            backupCount=self.backup_count
        )

    def _setup_root_logger(self):
        """Configure root logger with multiple handlers."""
        root_logger = logging.getLogger()
        root_logger.setLevel(self.log_level)

        root_logger.handlers.clear()

        if self.enable_console:
            console_handler = colorlog.StreamHandler(sys.stdout)
            console_handler.setLevel(self.log_level)
            console_formatter = colorlog.ColoredFormatter(
                '%(log_color)s%(asctime)s [%(levelname)8s] %(name)s: %(message)s',
                datefmt='%Y-%m-%d %H:%M:%S',
                log_colors={
                    'DEBUG': 'cyan',
                    'INFO': 'green',
                    'WARNING': 'yellow',
                    'ERROR': 'red',
                    'CRITICAL': 'red,bg_white',
                }
            )
            console_handler.setFormatter(console_formatter)
            root_logger.addHandler(console_handler)

        file_handler = self._rotating_handler(f"{self.app_name}.log")
        file_handler.setLevel(self.log_level)
        file_handler.setFormatter(logging.Formatter(
            '%(asctime)s [%(levelname)8s] %(name)s [%(process)d:%(thread)d] %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S'
        ))
        root_logger.addHandler(file_handler)

        if self.enable_syslog:
            try:
                syslog_handler = logging.handlers.SysLogHandler(address='/dev/log')
                syslog_handler.setLevel(logging.WARNING)  # Only warnings and errors to syslog
                syslog_handler.setFormatter(logging.Formatter(
                    f'{self.app_name}[%(process)d]: %(levelname)s - %(message)s'
                ))
                root_logger.addHandler(syslog_handler)
            except OSError as e:
                root_logger.warning(f"Could not setup syslog handler: {e}")

    def _setup_component_loggers(self):
        """Give the BLE and metrics components their own log files."""
        for name, (filename, prefix) in COMPONENT_LOGS.items():
            component_logger = logging.getLogger(name)
            for handler in list(component_logger.handlers):
                if isinstance(handler, logging.handlers.RotatingFileHandler):
                    component_logger.removeHandler(handler)
                    handler.close()

            handler = self._rotating_handler(filename)
            handler.setFormatter(logging.Formatter(
                f'%(asctime)s [%(levelname)s] {prefix}: %(name)s: %(message)s'
            ))
            component_logger.addHandler(handler)


def setup_logging(config) -> ProductionLogger:
    """
    Setup logging for the gateway using configuration.

    Args:
        config: Configuration instance

    Returns:
        ProductionLogger instance
    """
    return ProductionLogger(
        log_level=config.log_level,
        log_dir=str(config.log_dir),
        max_file_size=config.log_max_file_size,
        backup_count=config.log_backup_count,
        enable_console=config.log_enable_console,
        enable_syslog=config.log_enable_syslog
    )
