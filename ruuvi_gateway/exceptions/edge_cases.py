"""
Bluetooth failure diagnostics for the Ruuvi BLE gateway.

When the listener dies because the system bus is unreachable or discovery
could not be recovered, the gateway runs these checks and logs a
troubleshooting guide.
"""

import grp
import logging
import os
import subprocess
from pathlib import Path
from typing import List, Tuple

from .errors import DiscoveryLostError, TransportConnectionError


class BluetoothDiagnostics:
    """
    Runs a set of host checks relevant to BLE discovery failures.

    Each check returns a (success, message) tuple; failed checks are
    collected into the troubleshooting guide.
    """

    def __init__(self, adapter: str = "hci0",
                 sysfs_root: Path = Path("/sys/class")):
        self.adapter = adapter
        self.sysfs_root = sysfs_root
        self.logger = logging.getLogger(__name__)

    def run_checks(self) -> List[Tuple[bool, str]]:
        """Run all checks, never raising."""
        checks = [
            self._check_bluetooth_service,
            self._check_adapter_present,
            self._check_rfkill,
            self._check_bluetooth_permissions,
        ]

        results = []
        for check in checks:
            try:
                results.append(check())
            except Exception as e:
                self.logger.debug(f"Diagnostic check {check.__name__} failed: {e}")
                results.append((False, f"Unable to run {check.__name__.lstrip('_')}: {e}"))
        return results

    def handle_listener_error(self, error: Exception) -> str:
        """
        Build a troubleshooting guide for a fatal listener error.

        Args:
            error: Exception that terminated the listener

        Returns:
            str: Multi-line guide
        """
        error_type = type(error).__name__
        self.logger.warning(f"BLE listener error detected: {error_type} - {error}")

        failed = [message for success, message in self.run_checks() if not success]

        guide = [
            "BLE Troubleshooting Guide:",
            "=" * 50,
            f"Error: {error_type}: {error}",
            "",
        ]

        if failed:
            guide.append("Detected problems:")
            guide.extend(f"• {message}" for message in failed)
            guide.append("")

        if isinstance(error, TransportConnectionError):
            guide.extend([
                "The system D-Bus could not be reached:",
                "1. Check dbus is running: systemctl status dbus",
                "2. When running in a container, mount /run/dbus/system_bus_socket",
            ])
        elif isinstance(error, DiscoveryLostError):
            guide.extend([
                "Discovery stopped and could not be restarted:",
                "1. Check bluetooth service: sudo systemctl status bluetooth",
                f"2. Check adapter status: bluetoothctl show (adapter {self.adapter})",
                "3. Restart bluetooth: sudo systemctl restart bluetooth",
            ])
        else:
            guide.extend([
                "If problems persist:",
                "• Check system logs: journalctl -u bluetooth",
                "• Test with: bluetoothctl scan on",
            ])

        return "\n".join(guide)

    def _check_bluetooth_service(self) -> Tuple[bool, str]:
        """Check if bluetooth service is running."""
        try:
            result = subprocess.run(['systemctl', 'is-active', 'bluetooth'],
                                    capture_output=True, text=True)
        except FileNotFoundError:
            return True, "systemctl not available, skipping service check"

        if result.returncode != 0:
            return False, "Bluetooth service is not active. Run: sudo systemctl start bluetooth"
        return True, "Bluetooth service is active"

    def _check_adapter_present(self) -> Tuple[bool, str]:
        """Check that the configured adapter is known to the kernel."""
        adapter_path = self.sysfs_root / "bluetooth" / self.adapter
        if not adapter_path.exists():
            return False, f"Bluetooth adapter {self.adapter} not found. Check hardware connection."
        return True, f"Bluetooth adapter {self.adapter} is present"

    def _check_rfkill(self) -> Tuple[bool, str]:
        """Check that no bluetooth radio is soft or hard blocked."""
        rfkill_root = self.sysfs_root / "rfkill"
        if not rfkill_root.exists():
            return True, "rfkill not available"

        for entry in rfkill_root.iterdir():
            type_file = entry / "type"
            if not type_file.exists() or type_file.read_text().strip() != "bluetooth":
                continue
            for kind in ("soft", "hard"):
                state_file = entry / kind
                if state_file.exists() and state_file.read_text().strip() == "1":
                    return False, f"Bluetooth radio {entry.name} is {kind}-blocked. Run: rfkill unblock bluetooth"

        return True, "Bluetooth radio is not blocked"

    def _check_bluetooth_permissions(self) -> Tuple[bool, str]:
        """Check bluetooth group membership."""
        if os.geteuid() == 0:
            return True, "Running as root"

        try:
            bluetooth_group = grp.getgrnam('bluetooth')
        except KeyError:
            return True, "Bluetooth group does not exist"

        if bluetooth_group.gr_gid in os.getgroups():
            return True, "Bluetooth permissions are correct"

        current_user = os.getenv('USER', 'current user')
        return False, f"User {current_user} not in bluetooth group. Run: sudo usermod -a -G bluetooth {current_user}"
