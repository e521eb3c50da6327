"""Firmware version ordering.

Versions are compared per numeric component (``1.10.0 > 1.9.0``), never as
plain strings.
"""

from packaging.version import InvalidVersion, Version


def parse_firmware_version(value: str) -> Version:
    """Parse a firmware version string.

    Raises:
        ValueError: If the version cannot be parsed
    """
    try:
        return Version(value.strip().lstrip("vV"))
    except InvalidVersion as e:
        raise ValueError(f"Invalid firmware version: {value!r}") from e


def is_newer(candidate: str, current: str) -> bool:
    """True if ``candidate`` is strictly newer than ``current``."""
    return parse_firmware_version(candidate) > parse_firmware_version(current)
