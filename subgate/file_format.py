"""Tabular file format helpers.

Maps data file extensions to their column separator and parses
human-readable size limits.
"""

from __future__ import annotations

import logging
import re
from typing import Optional, Union

LOGGER = logging.getLogger("subgate.file_format")

# Supported data file extensions and their column separators
COLUMN_SEPARATORS = {
    "tsv": "\t",
    "csv": ",",
}
SUPPORTED_FILE_EXTENSIONS = frozenset(COLUMN_SEPARATORS)

_SIZE_UNITS = {
    "b": 1,
    "kb": 1024,
    "mb": 1024 ** 2,
    "gb": 1024 ** 3,
    "tb": 1024 ** 4,
}
_SIZE_PATTERN = re.compile(r"^\s*(\d+(?:\.\d+)?)\s*([a-zA-Z]*)\s*$")


def extract_file_extension(file_name: str) -> Optional[str]:
    """Return the lower-cased extension of a file name if it is supported.

    Args:
        file_name: Name of the file (only the part after the last dot counts)

    Returns:
        "tsv" or "csv", or None for any other extension
    """
    if not file_name or "." not in file_name:
        LOGGER.debug("File name '%s' has no extension", file_name)
        return None

    extension = file_name.rsplit(".", 1)[-1].lower()
    if extension not in SUPPORTED_FILE_EXTENSIONS:
        LOGGER.debug("Unsupported file extension '%s' for '%s'", extension, file_name)
        return None
    return extension


def get_separator_character(file_name: str) -> Optional[str]:
    """Determine the column separator for a file based on its extension."""
    extension = extract_file_extension(file_name)
    if extension:
        return COLUMN_SEPARATORS[extension]
    return None


def parse_size(size: Union[str, int, float]) -> int:
    """Parse a size such as ``"10mb"``, ``"1.5 KB"`` or ``2048`` into bytes.

    Plain numbers are assumed to be bytes.

    Raises:
        ValueError: If the value cannot be parsed
    """
    if isinstance(size, bool):
        raise ValueError(f"Invalid size: {size!r}")
    if isinstance(size, (int, float)):
        return int(size)

    match = _SIZE_PATTERN.match(size)
    if not match:
        raise ValueError(f"Invalid size: {size!r}")

    number, unit = match.groups()
    multiplier = _SIZE_UNITS.get(unit.lower() or "b")
    if multiplier is None:
        raise ValueError(f"Unknown size unit '{unit}' in {size!r}")
    return int(float(number) * multiplier)
