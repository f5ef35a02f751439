"""Sequencing file metadata supplied alongside a clinical data file.

Each entry describes one sequencing file (name, size, checksum, access,
type). The file name encodes a record identifier: the part of the base name
before the first ``-`` (``S1-R1.fastq.gz`` -> ``S1``). Entries are reconciled
against the identifier column of the extracted records before anything is
submitted.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError

from subgate.exceptions import BadRequestError
from subgate.models import BatchError, BatchErrorType

LOGGER = logging.getLogger("subgate.sequencing")

# Analysis service data type assigned to submitted sequencing files
SEQUENCING_DATA_TYPE = "Submitted Reads"


def get_identifier_from_file_name(full_file_name: str) -> str:
    """Derive the record identifier from a sequencing file name.

    Takes the segment before the first ``.``, then the token before the
    first ``-``. Returns '' when nothing can be derived.
    """
    if not full_file_name:
        return ""
    base_name = full_file_name.split(".", 1)[0]
    if not base_name:
        return ""
    return base_name.split("-", 1)[0]


class SequencingFileMetadata(BaseModel):
    """Metadata of one sequencing file, as sent by the submitter."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    file_name: str = Field(..., alias="fileName")
    file_size: int = Field(..., alias="fileSize")
    file_md5sum: str = Field(..., alias="fileMd5sum")
    file_access: str = Field(..., alias="fileAccess")
    file_type: str = Field(..., alias="fileType")

    @property
    def identifier(self) -> str:
        return get_identifier_from_file_name(self.file_name)


_SEQUENCING_LIST = TypeAdapter(List[SequencingFileMetadata])


def _format_validation_error(error: ValidationError) -> str:
    return " | ".join(
        f"{'.'.join(str(p) for p in issue['loc'])} is {issue['msg']}" for issue in error.errors()
    )


def validate_sequencing_metadata(metadata: str) -> List[SequencingFileMetadata]:
    """Parse the ``sequencingMetadata`` request field.

    Raises:
        BadRequestError: If the value is not JSON or does not match the entry shape
    """
    try:
        parsed = json.loads(metadata)
    except (TypeError, ValueError) as e:
        LOGGER.error("Invalid JSON format in sequencing metadata: %s", e)
        raise BadRequestError("Invalid JSON format", details={"field": "sequencingMetadata"}) from e

    try:
        return _SEQUENCING_LIST.validate_python(parsed)
    except ValidationError as e:
        message = _format_validation_error(e)
        LOGGER.error("Sequencing metadata validation failed: %s", message)
        raise BadRequestError(message, details={"field": "sequencingMetadata"}) from e


def parse_sequencing_metadata(metadata: Optional[str]) -> Optional[List[SequencingFileMetadata]]:
    """Lenient variant of :func:`validate_sequencing_metadata`.

    Returns None (and logs) when the value is empty or invalid.
    """
    if not metadata:
        LOGGER.error("Sequencing metadata is empty or undefined.")
        return None
    try:
        return validate_sequencing_metadata(metadata)
    except BadRequestError:
        return None


@dataclass
class ReconciliationResult:
    """Sequencing entries split into matched files and errors."""
    errors: List[BatchError] = field(default_factory=list)
    valid_files: List[SequencingFileMetadata] = field(default_factory=list)


def _incorrect_section(message: str, batch_name: str) -> BatchError:
    return BatchError(type=BatchErrorType.INCORRECT_SECTION, message=message, batch_name=batch_name)


def build_sequencing_files_metadata(
    sequencing_entries: Optional[Sequence[SequencingFileMetadata]],
    extracted_records: Iterable[Mapping[str, str]],
    batch_name: str,
    identifier_column: Optional[str],
) -> ReconciliationResult:
    """Match sequencing entries against the identifier column of the records.

    Args:
        sequencing_entries: Entries in submission order
        extracted_records: Records extracted from the data file
        batch_name: Name of the data file, used in errors
        identifier_column: Record column holding the file identifier

    Returns:
        ReconciliationResult with matched entries in input order. If any entry
        name yields no identifier, only those errors are returned.
    """
    result = ReconciliationResult()
    if not sequencing_entries or not identifier_column:
        return result

    for entry in sequencing_entries:
        if not entry.identifier:
            result.errors.append(
                _incorrect_section(
                    f"Unable to derive an identifier from sequencing file name '{entry.file_name}'",
                    batch_name,
                )
            )
    if result.errors:
        return result

    identifiers = {
        record.get(identifier_column) for record in extracted_records if record.get(identifier_column)
    }

    seen: Dict[str, str] = {}
    for entry in sequencing_entries:
        if entry.identifier not in identifiers:
            result.errors.append(
                _incorrect_section(
                    f"Sequencing file '{entry.file_name}' does not match any record with "
                    f"{identifier_column} '{entry.identifier}'",
                    batch_name,
                )
            )
            continue
        if entry.identifier in seen:
            result.errors.append(
                _incorrect_section(
                    f"Sequencing files '{seen[entry.identifier]}' and '{entry.file_name}' "
                    f"share the identifier '{entry.identifier}'",
                    batch_name,
                )
            )
            continue
        seen[entry.identifier] = entry.file_name
        result.valid_files.append(entry)

    LOGGER.debug(
        "Reconciled %d sequencing entries for '%s': %d valid, %d errors",
        len(sequencing_entries),
        batch_name,
        len(result.valid_files),
        len(result.errors),
    )
    return result


def build_file_metadata(entry: SequencingFileMetadata) -> Dict[str, Any]:
    """File descriptor included in an analysis service payload."""
    return {
        "dataType": SEQUENCING_DATA_TYPE,
        "fileName": entry.file_name,
        "fileSize": entry.file_size,
        "fileMd5sum": entry.file_md5sum,
        "fileAccess": entry.file_access,
        "fileType": entry.file_type,
    }
