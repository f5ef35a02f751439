"""Prevalidation of uploaded data files.

Checks performed before a file's records are extracted:
- The file has a supported extension (.tsv or .csv)
- The header line contains every required column of the entity schema
- For edits, the header also contains the ``systemId`` column

Only the header line is read, so arbitrarily large files are cheap to
prevalidate. A failed check is reported as a batch error; nothing is raised.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import List, Optional

from subgate.file_format import get_separator_character
from subgate.models import BatchError, BatchErrorType, UploadedFile
from subgate.schema import Schema

LOGGER = logging.getLogger("subgate.file_validation")

SYSTEM_ID_COLUMN = "systemId"


@dataclass(frozen=True)
class PrevalidationResult:
    """The file handle (unchanged) plus the first error found, if any."""
    file: UploadedFile
    error: Optional[BatchError] = None

    @property
    def is_valid(self) -> bool:
        return self.error is None


def read_headers(file: UploadedFile) -> str:
    """Read only the first line of a file.

    Useful when the file is large and only the column names are needed.
    A UTF-8 byte order mark and the line terminator are stripped.
    """
    with open(file.path, "r", encoding="utf-8-sig", newline="") as handle:
        first_line = handle.readline()
    return first_line.rstrip("\r\n")


def _split_headers(first_line: str, separator: str) -> List[str]:
    return [token.strip() for token in first_line.split(separator)]


def _invalid_extension(file: UploadedFile) -> PrevalidationResult:
    extension = file.original_name.rsplit(".", 1)[-1] if "." in file.original_name else ""
    message = f"Invalid file extension {extension}"
    LOGGER.info("Prevalidation file '%s' failed - %s", file.original_name, message)
    return PrevalidationResult(
        file=file,
        error=BatchError(
            type=BatchErrorType.INVALID_FILE_EXTENSION,
            message=message,
            batch_name=file.original_name,
        ),
    )


def _missing_header(file: UploadedFile, message: str) -> PrevalidationResult:
    LOGGER.info("Prevalidation file '%s' failed - %s", file.original_name, message)
    return PrevalidationResult(
        file=file,
        error=BatchError(
            type=BatchErrorType.MISSING_REQUIRED_HEADER,
            message=message,
            batch_name=file.original_name,
        ),
    )


def find_missing_required_fields(headers: List[str], schema: Schema) -> List[str]:
    """Required field labels absent from the header tokens, sorted."""
    present = set(headers)
    return sorted(label for label in schema.required_field_labels() if label not in present)


def _prevalidate(file: UploadedFile, schema: Schema, require_system_id: bool) -> PrevalidationResult:
    separator = get_separator_character(file.original_name)
    if not separator:
        return _invalid_extension(file)

    headers = _split_headers(read_headers(file), separator)

    if require_system_id and SYSTEM_ID_COLUMN not in headers:
        return _missing_header(file, f"File is missing the column '{SYSTEM_ID_COLUMN}'")

    missing = find_missing_required_fields(headers, schema)
    if missing:
        return _missing_header(file, f"Missing required fields '{json.dumps(missing)}'")

    return PrevalidationResult(file=file)


def prevalidate_new_data_file(file: UploadedFile, schema: Schema) -> PrevalidationResult:
    """Prevalidate a file of new records against an entity schema.

    Args:
        file: The uploaded file to check
        schema: Schema whose required fields must appear as columns

    Returns:
        PrevalidationResult carrying the original file and an error if a check failed
    """
    return _prevalidate(file, schema, require_system_id=False)


def prevalidate_edit_file(file: UploadedFile, schema: Schema) -> PrevalidationResult:
    """Prevalidate a file editing existing records.

    Same checks as :func:`prevalidate_new_data_file`, but the ``systemId``
    column must be present and is checked first.
    """
    return _prevalidate(file, schema, require_system_id=True)
