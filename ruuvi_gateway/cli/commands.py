"""
Command line interface for the Ruuvi gateway.
Provides the service entry point and offline tools using click and rich.
"""

import sys
from typing import Optional

import click
from rich.console import Console
from rich.table import Table

from .. import __version__
from ..ble.packet import AdvertisementRecord
from ..exceptions.edge_cases import BluetoothDiagnostics
from ..exceptions.errors import DecodeError
from ..ruuvi.codec import (
    FORMAT_5_LENGTH,
    RUUVI_MANUFACTURER_ID,
    RuuviDataFormat,
    decode,
    format_mac,
    identify_format,
)
from ..service.gateway import RuuviGateway
from ..utils.config import Config, ConfigurationError
from ..utils.logging import setup_logging


console = Console()

MEASUREMENT_FIELDS = [
    ("temperature", "Temperature", "°C"),
    ("humidity", "Humidity", "%"),
    ("pressure", "Pressure", "Pa"),
    ("battery_voltage", "Battery voltage", "V"),
    ("tx_power", "Tx power", "dBm"),
    ("movement_counter", "Movement counter", ""),
    ("measurement_sequence", "Measurement sequence", ""),
    ("acceleration_total", "Acceleration total", "g"),
]


def _load_config(ctx: click.Context) -> Config:
    return Config(ctx.obj.get("env_file"))


def _parse_payload(value: str) -> bytes:
    cleaned = value.replace(":", "").replace(" ", "")
    if cleaned.lower().startswith("0x"):
        cleaned = cleaned[2:]
    try:
        return bytes.fromhex(cleaned)
    except ValueError:
        raise click.BadParameter(f"'{value}' is not a hex string", param_hint="PAYLOAD")


@click.group()
@click.version_option(version=__version__, prog_name="ruuvi-gateway")
@click.option("--env-file", type=click.Path(dir_okay=False), default=None,
              help="Environment file to load (default: ./.env)")
@click.pass_context
def cli(ctx, env_file):
    """Ruuvi Gateway - Ruuvitag BLE advertisements to Prometheus metrics."""
    ctx.ensure_object(dict)
    ctx.obj["env_file"] = env_file


@cli.command()
@click.option("--adapter", "-a", default=None, help="Bluetooth adapter, e.g. hci0")
@click.option("--port", "-p", type=int, default=None, help="Metrics port")
@click.option("--address", default=None, help="Metrics bind address")
@click.option("--blacklist", "-b", multiple=True, help="MAC address to ignore (repeatable)")
@click.option("--no-sysinfo", is_flag=True, help="Do not export host statistics")
@click.option("--strict", is_flag=True, help="Drop packets with any invalid field")
@click.pass_context
def run(ctx, adapter, port, address, blacklist, no_sysinfo, strict):
    """Run the gateway until interrupted."""
    config = _load_config(ctx)

    if adapter:
        config.overrides["BLE_ADAPTER"] = adapter
    if port is not None:
        config.overrides["EXPOSER_PORT"] = str(port)
    if address:
        config.overrides["EXPOSER_ADDRESS"] = address
    if blacklist:
        config.overrides["BLE_BLACKLIST"] = ",".join(config.ble_blacklist + list(blacklist))
    if no_sysinfo:
        config.overrides["SYSINFO_ENABLED"] = "false"
    if strict:
        config.overrides["DECODE_STRICT"] = "true"

    try:
        config.validate_configuration()
    except ConfigurationError as e:
        console.print(f"[red]{e}[/red]")
        sys.exit(1)

    setup_logging(config)
    gateway = RuuviGateway(config)
    sys.exit(gateway.run())


@cli.command("decode")
@click.argument("payload")
@click.option("--mac", default=None,
              help="Receiver MAC address (default: the MAC inside a format 5 payload)")
@click.option("--manufacturer-id", default=hex(RUUVI_MANUFACTURER_ID), show_default=True,
              help="Manufacturer id the payload was advertised with")
@click.option("--rssi", type=int, default=0, help="Signal strength to attach")
@click.option("--strict", is_flag=True, help="Fail on the first invalid field")
def decode_command(payload, mac, manufacturer_id, rssi, strict):
    """Decode a hex encoded manufacturer data PAYLOAD."""
    data = _parse_payload(payload)
    try:
        manufacturer = int(manufacturer_id, 0)
    except ValueError:
        raise click.BadParameter(f"'{manufacturer_id}' is not a number", param_hint="--manufacturer-id")

    if mac is None:
        mac = _embedded_mac(data)

    record = AdvertisementRecord(
        mac=mac.upper(),
        manufacturer_id=manufacturer,
        manufacturer_data=data,
        signal_strength=rssi,
    )

    data_format = identify_format(record)
    try:
        measurement = decode(record, strict)
    except DecodeError as e:
        console.print(f"[red]{e}[/red]")
        sys.exit(1)

    if measurement is None:
        console.print(f"[yellow]Not a supported Ruuvi payload: {data_format.name}[/yellow]")
        sys.exit(1)

    table = Table(title=f"Ruuvi data format {int(data_format)}")
    table.add_column("Field", style="cyan")
    table.add_column("Value", style="white")

    table.add_row("MAC", measurement.mac or "[red]mismatch[/red]")
    for attribute, label, unit in MEASUREMENT_FIELDS:
        if hasattr(measurement, attribute):
            value = getattr(measurement, attribute)
            table.add_row(label, f"{value} {unit}".strip())
    for axis, value in zip("XYZ", measurement.acceleration):
        table.add_row(f"Acceleration {axis}", f"{value} g")
    table.add_row("RSSI", f"{measurement.signal_strength} dBm")

    console.print(table)
    if measurement.contains_errors:
        console.print(f"[red]Errors: {measurement.error_msg}[/red]")


def _embedded_mac(data: bytes) -> str:
    if len(data) >= FORMAT_5_LENGTH and data[0] == RuuviDataFormat.FORMAT_5:
        return format_mac(data[18:24])
    return ""


@cli.command("config")
@click.pass_context
def config_command(ctx):
    """Show the effective configuration."""
    config = _load_config(ctx)

    try:
        summary = config.get_summary()
    except ConfigurationError as e:
        console.print(f"[red]{e}[/red]")
        sys.exit(1)

    table = Table(title="Configuration")
    table.add_column("Section", style="cyan")
    table.add_column("Setting", style="white")
    table.add_column("Value", style="green")

    for section, values in summary.items():
        for key, value in values.items():
            if isinstance(value, list):
                value = ", ".join(value) or "-"
            table.add_row(section, key, str(value))
    console.print(table)

    try:
        config.validate_configuration()
    except ConfigurationError as e:
        console.print(f"[red]{e}[/red]")
        sys.exit(1)

    console.print("[green]Configuration is valid[/green]")


@cli.command()
@click.option("--adapter", "-a", default=None, help="Bluetooth adapter, e.g. hci0")
@click.pass_context
def check(ctx, adapter: Optional[str]):
    """Check the Bluetooth service, adapter and permissions."""
    adapter = adapter or _load_config(ctx).ble_adapter
    results = BluetoothDiagnostics(adapter).run_checks()

    table = Table(title=f"Bluetooth checks ({adapter})")
    table.add_column("Status")
    table.add_column("Check")
    for success, message in results:
        table.add_row("[green]OK[/green]" if success else "[red]FAIL[/red]", message)
    console.print(table)

    if not all(success for success, _ in results):
        sys.exit(1)


if __name__ == "__main__":
    cli()
