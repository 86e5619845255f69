"""
Resource limits applied while extracting uploaded folder archives.

All limits are configurable via environment variables.
"""

import os
from dataclasses import dataclass


def _env_int(name, default):
    """Read an integer env var, returning `default` on missing/invalid/non-positive values."""
    value = os.environ.get(name)
    if value is None:
        return default
    try:
        value = int(value)
    except ValueError:
        return default
    if value <= 0:
        return default
    return value


@dataclass(frozen=True)
class ExtractionLimits:
    max_entries: int = 10_000
    max_total_size: int = 5 * 1024**3
    max_file_size: int = 1 * 1024**3

    @staticmethod
    def from_env():
        return ExtractionLimits(
            max_entries = _env_int('ASYDROP_EXTRACT_MAX_ENTRIES', 10_000),
            max_total_size = _env_int('ASYDROP_EXTRACT_MAX_TOTAL_SIZE', 5 * 1024**3),
            max_file_size = _env_int('ASYDROP_EXTRACT_MAX_FILE_SIZE', 1 * 1024**3),
        )
