"""
Ruuvitag data format decoding.
"""

from .codec import (
    RUUVI_MANUFACTURER_ID,
    INVALID_PRESSURE,
    INVALID_TX_POWER,
    INVALID_MOVEMENT_COUNTER,
    Measurement,
    Measurement3,
    Measurement5,
    RuuviDataFormat,
    decode,
    decode_format_3,
    decode_format_5,
    describe,
    identify_format,
)

__all__ = [
    "RUUVI_MANUFACTURER_ID",
    "INVALID_PRESSURE",
    "INVALID_TX_POWER",
    "INVALID_MOVEMENT_COUNTER",
    "Measurement",
    "Measurement3",
    "Measurement5",
    "RuuviDataFormat",
    "decode",
    "decode_format_3",
    "decode_format_5",
    "describe",
    "identify_format",
]
