"""
Core Module - Constants.

============================================================
RESPONSIBILITY
============================================================
Defines probe-wide constants and unit helpers.

- Byte sizes for test file presets and allowance bounds
- Default limits shared by the deal engine and the CLI

============================================================
"""

from typing import Union


# ============================================================
# SYSTEM CONSTANTS
# ============================================================

SYSTEM_NAME = "storage-deal-probe"
SYSTEM_VERSION = "1.0.0"

SECONDS_PER_HOUR = 3600
HOURS_PER_DAY = 24


# ============================================================
# BYTE SIZES
# ============================================================

KIB = 1024
MIB = 1024 * KIB
GIB = 1024 * MIB

BUFFER_SIZE = 64 * KIB
"""Chunk size for test file generation and hashing."""

FILE_SIZE_SMALL = 100 * MIB
FILE_SIZE_MEDIUM = 1 * GIB
FILE_SIZE_LARGE = 5 * GIB

FILE_SIZE_PRESETS = {
    "small": FILE_SIZE_SMALL,
    "medium": FILE_SIZE_MEDIUM,
    "large": FILE_SIZE_LARGE,
}


# ============================================================
# DEAL ENGINE DEFAULTS
# ============================================================

MAX_PENDING_STORAGE_DEALS = 100
MIN_DAILY_ALLOWANCE = 10 * GIB
MAX_DAILY_ALLOWANCE = 250 * GIB

DEAL_MIN_BLOCKS_DURATION = 10000
ATTO_FIL_PER_FIL = 10 ** 18

TEST_FILE_PREFIX = "qab-testfile"


# ============================================================
# FORMATTING
# ============================================================

_UNITS = ["Bytes", "KiB", "MiB", "GiB", "TiB", "PiB", "EiB"]


def format_bytes(size: Union[int, float], decimals: int = 2) -> str:
    """Render a byte count with a binary unit, e.g. ``1.50 GiB``."""
    if size == 0:
        return "0 Bytes"

    value = float(size)
    negative = value < 0
    value = abs(value)

    index = 0
    while value >= 1024 and index < len(_UNITS) - 1:
        value /= 1024
        index += 1

    text = f"{value:.{decimals}f} {_UNITS[index]}"
    return f"-{text}" if negative else text
