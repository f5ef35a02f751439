"""Record extraction from uploaded .tsv/.csv files.

Rows are streamed with the csv module. The first row is the header; columns
named by a schema display name are mapped to the canonical field name. The
temporary upload is deleted once reading ends, whatever the outcome.
"""

from __future__ import annotations

import csv
import logging
import re
from typing import Dict, Iterator, List, Sequence

from subgate.exceptions import InvalidFileExtensionError
from subgate.file_format import get_separator_character
from subgate.models import UploadedFile
from subgate.schema import Schema

LOGGER = logging.getLogger("subgate.read_file")

ExtractedRecord = Dict[str, str]

_LEADING_QUOTE = re.compile(r'^"')
_TRAILING_QUOTE = re.compile(r'"$')


def format_for_excel_compatibility(data: str) -> str:
    """Remove quoting artifacts that spreadsheet exports add to a cell.

    Strips one leading and one trailing double quote and collapses doubled
    double quotes into one, then trims whitespace.
    """
    value = data.strip()
    value = _LEADING_QUOTE.sub("", value)
    value = _TRAILING_QUOTE.sub("", value)
    value = value.replace('""', '"')
    return value.strip()


def map_record_to_headers(headers: Sequence[str], row: Sequence[str]) -> ExtractedRecord:
    """Zip a row against the headers; missing trailing cells become ''."""
    record: ExtractedRecord = {}
    for index, header in enumerate(headers):
        value = row[index] if index < len(row) else ""
        record[header] = format_for_excel_compatibility(value or "")
    return record


def _map_headers(raw_headers: Sequence[str], schema: Schema) -> List[str]:
    lookup = schema.lookup
    headers = [lookup.canonical(token.strip()).strip() for token in raw_headers]
    # empty header tokens are dropped
    return [header for header in headers if header]


def iter_file_records(file: UploadedFile, schema: Schema) -> Iterator[ExtractedRecord]:
    """Stream records from an uploaded file.

    The generator owns the temporary file: it is deleted when iteration
    finishes, fails, or the generator is closed early.

    Raises:
        InvalidFileExtensionError: If the file is not .tsv or .csv
    """
    try:
        separator = get_separator_character(file.original_name)
        if not separator:
            raise InvalidFileExtensionError(f"Invalid file extension for '{file.original_name}'")

        headers: List[str] = []
        with open(file.path, "r", encoding="utf-8-sig", newline="") as handle:
            reader = csv.reader(handle, delimiter=separator)
            for row in reader:
                if not headers:
                    headers = _map_headers(row, schema)
                    continue
                yield map_record_to_headers(headers, row)
    finally:
        if file.delete():
            LOGGER.debug("Removed temporary upload %s", file.path)


def parse_file_to_records(file: UploadedFile, schema: Schema) -> List[ExtractedRecord]:
    """Read a whole data file into records.

    Args:
        file: Uploaded file; deleted once parsing ends
        schema: Entity schema used to map display-name headers

    Returns:
        One record per data row, keyed by canonical field name
    """
    records = list(iter_file_records(file, schema))
    LOGGER.info("Extracted %d records from '%s'", len(records), file.original_name)
    return records
