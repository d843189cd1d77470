"""
Ruuvitag advertisement decoding.

Decodes data format 5 (RAWv2, 24 bytes) and data format 3 (RAWv1, 14 bytes)
manufacturer data into measurement records. All functions are pure.

Every field of a decoded record holds either the converted value or the
field's invalid marker. In lenient mode each invalid field is recorded in
error_msg and decoding continues; in strict mode the first invalid field
raises DecodeError. A payload shorter than its format always raises.
"""

import math
import struct
from dataclasses import dataclass, fields
from enum import IntEnum
from typing import Any, ClassVar, Dict, List, Optional, Tuple, Union

from ..ble.packet import AdvertisementRecord
from ..exceptions.errors import DecodeError


RUUVI_MANUFACTURER_ID = 0x0499

FORMAT_5_LENGTH = 24
FORMAT_3_LENGTH = 14

NAN = float("nan")
INVALID_PRESSURE = 0xFFFFFFFF
INVALID_TX_POWER = -128
INVALID_MOVEMENT_COUNTER = 0xFF

_FORMAT_5_FIELDS = struct.Struct(">hHHhhhHBH")
_FORMAT_3_FIELDS = struct.Struct(">BBBHhhhH")


class RuuviDataFormat(IntEnum):
    """Ruuvi data format identifiers."""
    NOT_RUUVI_TAG = -2
    UNKNOWN_FORMAT = -1
    FORMAT_3 = 3
    FORMAT_4 = 4
    FORMAT_5 = 5
    FORMAT_8 = 8


NOT_RUUVI_TAG = RuuviDataFormat.NOT_RUUVI_TAG
UNKNOWN_FORMAT = RuuviDataFormat.UNKNOWN_FORMAT


@dataclass(frozen=True)
class Measurement5:
    """Decoded data format 5 measurement."""
    data_format: ClassVar[RuuviDataFormat] = RuuviDataFormat.FORMAT_5

    temperature: float = NAN             # Celsius
    humidity: float = NAN                # %RH
    pressure: int = INVALID_PRESSURE     # Pa
    acceleration: Tuple[float, float, float] = (NAN, NAN, NAN)  # g
    battery_voltage: float = NAN         # V
    tx_power: int = INVALID_TX_POWER     # dBm
    movement_counter: int = INVALID_MOVEMENT_COUNTER
    measurement_sequence: int = 0
    mac: str = ""
    signal_strength: int = 0             # dBm
    contains_errors: bool = True
    error_msg: str = ""

    @property
    def acceleration_total(self) -> float:
        return math.hypot(*self.acceleration)


@dataclass(frozen=True)
class Measurement3:
    """Decoded data format 3 measurement."""
    data_format: ClassVar[RuuviDataFormat] = RuuviDataFormat.FORMAT_3

    temperature: float = NAN
    humidity: float = NAN
    pressure: int = INVALID_PRESSURE
    acceleration: Tuple[float, float, float] = (NAN, NAN, NAN)
    battery_voltage: float = NAN
    mac: str = ""
    signal_strength: int = 0
    contains_errors: bool = True
    error_msg: str = ""

    @property
    def acceleration_total(self) -> float:
        return math.hypot(*self.acceleration)


Measurement = Union[Measurement5, Measurement3]


class _FieldValidator:
    """Collects field errors, or raises on the first one in strict mode."""

    def __init__(self, data_format: int, strict: bool):
        self.data_format = data_format
        self.strict = strict
        self.errors: List[str] = []

    def fail(self, message: str) -> None:
        if self.strict:
            raise DecodeError(f"Data format {self.data_format} conversion failed: {message}")
        self.errors.append(message)

    def check_payload(self, data: bytes, length: int) -> None:
        if len(data) < length:
            raise DecodeError(
                f"Data format {self.data_format} conversion failed: "
                f"expected data size {length}, got {len(data)}")
        if len(data) != length:
            self.fail(f"Expected data size {length}, got {len(data)}")
        if data[0] != self.data_format:
            self.fail(f"Expected data format {self.data_format}, got {data[0]}")

    def result(self) -> Dict[str, Any]:
        return {
            "contains_errors": bool(self.errors),
            "error_msg": " - ".join(self.errors),
        }


def identify_format(record: AdvertisementRecord) -> RuuviDataFormat:
    """
    Identify the Ruuvi data format of an advertisement.

    Returns:
        RuuviDataFormat: NOT_RUUVI_TAG for other manufacturers, the format
        for known first bytes, UNKNOWN_FORMAT otherwise
    """
    if record.manufacturer_id != RUUVI_MANUFACTURER_ID:
        return NOT_RUUVI_TAG

    if not record.manufacturer_data:
        return UNKNOWN_FORMAT

    try:
        return RuuviDataFormat(record.manufacturer_data[0])
    except ValueError:
        return UNKNOWN_FORMAT


def format_mac(data: bytes) -> str:
    return ":".join(f"{byte:02X}" for byte in data)


def decode_format_5(record: AdvertisementRecord, strict: bool = False) -> Measurement5:
    """
    Decode a data format 5 (RAWv2) advertisement.

    Args:
        record: Advertisement carrying 24 bytes of manufacturer data
        strict: Raise on the first invalid field instead of recording it

    Returns:
        Measurement5: Decoded record, invalid fields set to their markers

    Raises:
        DecodeError: If the payload is too short, or on any field error in strict mode
    """
    data = record.manufacturer_data
    validator = _FieldValidator(5, strict)
    validator.check_payload(data, FORMAT_5_LENGTH)

    (temperature, humidity, pressure, acc_x, acc_y, acc_z,
     power_info, movement_counter, measurement_sequence) = _FORMAT_5_FIELDS.unpack_from(data, 1)
    battery = power_info >> 5
    tx_power = power_info & 0x1F
    packet_mac = format_mac(data[18:24])

    values: Dict[str, Any] = {}

    if temperature == -0x8000:
        validator.fail("Temperature 0x8000 invalid")
    else:
        values["temperature"] = temperature * 0.005

    if humidity == 0xFFFF:
        validator.fail("Humidity 0xFFFF invalid")
    elif humidity > 40000:
        validator.fail("Humidity > 40 000 (100%) invalid")
    else:
        values["humidity"] = humidity * 0.0025

    if pressure == 0xFFFF:
        validator.fail("Pressure 0xFFFF invalid")
    else:
        values["pressure"] = pressure + 50000

    acceleration = []
    for axis, raw in zip("XYZ", (acc_x, acc_y, acc_z)):
        if raw == -0x8000:
            validator.fail(f"{axis}-acceleration 0x8000 invalid")
            acceleration.append(NAN)
        else:
            acceleration.append(raw / 1000.0)
    values["acceleration"] = tuple(acceleration)

    if battery == 2047:
        validator.fail("Battery voltage 2047 invalid")
    else:
        values["battery_voltage"] = (battery + 1600) / 1000.0

    if tx_power == 31:
        validator.fail("Tx power 31 invalid")
    else:
        values["tx_power"] = -40 + 2 * tx_power

    if movement_counter == 255:
        validator.fail("Movement counter 255 invalid")
    else:
        values["movement_counter"] = movement_counter

    values["measurement_sequence"] = measurement_sequence

    if record.mac.upper() != packet_mac:
        validator.fail("Receiver and packet MAC addresses differ")
        values["mac"] = ""
    else:
        values["mac"] = packet_mac

    return Measurement5(signal_strength=record.signal_strength, **values, **validator.result())


def decode_format_3(record: AdvertisementRecord, strict: bool = False) -> Measurement3:
    """
    Decode a data format 3 (RAWv1) advertisement.

    Temperature is sign-and-magnitude: the top bit of byte 2 is the sign,
    byte 3 holds hundredths. Format 3 carries no MAC, so none is checked.

    Raises:
        DecodeError: If the payload is too short, or on any field error in strict mode
    """
    data = record.manufacturer_data
    validator = _FieldValidator(3, strict)
    validator.check_payload(data, FORMAT_3_LENGTH)

    (humidity, temperature, temperature_fraction, pressure,
     acc_x, acc_y, acc_z, battery) = _FORMAT_3_FIELDS.unpack_from(data, 1)

    celsius = round((temperature & 0x7F) + temperature_fraction / 100.0, 2)
    if temperature & 0x80:
        celsius = -celsius

    return Measurement3(
        temperature=celsius,
        humidity=humidity * 0.5,
        pressure=pressure + 50000,
        acceleration=(acc_x / 1000.0, acc_y / 1000.0, acc_z / 1000.0),
        battery_voltage=battery / 1000.0,
        mac=record.mac.upper(),
        signal_strength=record.signal_strength,
        **validator.result(),
    )


def decode(record: AdvertisementRecord, strict: bool = False) -> Optional[Measurement]:
    """Decode any supported format; None for unsupported advertisements."""
    data_format = identify_format(record)
    if data_format == RuuviDataFormat.FORMAT_5:
        return decode_format_5(record, strict)
    if data_format == RuuviDataFormat.FORMAT_3:
        return decode_format_3(record, strict)
    return None


def describe(measurement: Measurement) -> str:
    """Multi-line dump of a measurement."""
    labels = {
        "temperature": "Temperature",
        "humidity": "Humidity",
        "pressure": "Pressure",
        "battery_voltage": "Battery voltage",
        "tx_power": "Tx power",
        "movement_counter": "Movement counter",
        "measurement_sequence": "Measurement sequence",
        "signal_strength": "Rssi signal strength",
    }

    lines = [
        f"Data from MAC {measurement.mac}",
        f"Ruuvi data format: {int(measurement.data_format)}",
    ]
    names = {f.name for f in fields(measurement)}
    for name, label in labels.items():
        if name in names:
            lines.append(f"{label}: {getattr(measurement, name)}")
    for axis, value in zip("xyz", measurement.acceleration):
        lines.append(f"Acceleration-{axis}: {value}")
    if measurement.contains_errors:
        lines.append(f"Errors: {measurement.error_msg}")
    return "\n".join(lines)
