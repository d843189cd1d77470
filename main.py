#!/usr/bin/env python3
"""
Ruuvi Gateway - Main Entry Point

Receives Ruuvitag advertisements over Bluetooth Low Energy through BlueZ and
exports the decoded measurements as Prometheus metrics.

Usage:
    python main.py --help                 # Show help
    python main.py run                    # Run the gateway
    python main.py decode <hex>           # Decode a manufacturer data payload
    python main.py config                 # Show configuration
    python main.py check                  # Check Bluetooth setup

Environment Setup:
    Copy and configure the environment file:
    cp .env.sample .env
    # Edit .env with your settings

Requirements:
    - Linux with BlueZ and the system D-Bus
    - Bluetooth adapter available
    - Proper permissions for BLE access
"""

import sys

from ruuvi_gateway.cli.commands import cli


def main():
    """Main entry point."""
    try:
        cli()
    except KeyboardInterrupt:
        print("\nInterrupted by user")
        sys.exit(0)


if __name__ == "__main__":
    main()
