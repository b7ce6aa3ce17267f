"""A collection of low-level, reusable utilities.

This module provides common helper functions used throughout the library, such
as the shared logger factory, a millisecond timestamp function, unit conversion
helpers and the CRC-16 used by Modbus RTU frames.
"""

import time

from mephew_python_commons.logger_factory import LoggerFactory

logger_factory = LoggerFactory(
    log_files_prefix="modbus_master",
)

#: Reflected generator polynomial of CRC-16/Modbus.
CRC16_POLYNOMIAL = 0xA001


def get_milliseconds() -> int:
    """Returns a monotonic clock reading as an integer number of milliseconds.

    This provides a timestamp suitable for measuring bus silence and for
    calculating deadlines of an exchange that keeps getting busy or acknowledge
    responses. Wall clock adjustments do not affect it.

    Returns:
        int: Milliseconds since an arbitrary, fixed reference point.
    """
    return int(round(time.monotonic() * 1000))


def milliseconds_to_seconds(milliseconds: int | float) -> float:
    """Converts a value from milliseconds to seconds.

    Args:
        milliseconds (int | float): The time duration in milliseconds.

    Returns:
        float: The equivalent time duration in seconds.
    """
    return milliseconds / 1000


def microseconds_to_seconds(microseconds: int | float) -> float:
    """Converts a value from microseconds to seconds.

    Args:
        microseconds (int | float): The time duration in microseconds.

    Returns:
        float: The equivalent time duration in seconds.
    """
    return microseconds * 1e-6


def calculate_crc(data: bytes) -> bytes:
    """Calculates the CRC-16/Modbus checksum of `data`.

    Args:
        data (bytes): The frame bytes to protect, without the CRC itself.

    Returns:
        bytes: The two CRC bytes in wire order (low byte first).
    """
    crc = 0xFFFF
    for byte in data:
        crc ^= byte
        for _ in range(8):
            if crc & 0x0001:
                crc = (crc >> 1) ^ CRC16_POLYNOMIAL
            else:
                crc >>= 1
    return crc.to_bytes(2, "little")
