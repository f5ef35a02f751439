"""Shared data model for the submission pipeline.

Batch errors, submission results, uploaded file handles, submission file
mappings and manifest entries.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional, Union


def _utc_now_iso() -> str:
    """Return current UTC time in ISO format with Z suffix."""
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


class BatchErrorType(str, Enum):
    """Types of per-file (batch) errors reported back to submitters."""
    INVALID_FILE_EXTENSION = "INVALID_FILE_EXTENSION"
    INVALID_FILE_NAME = "INVALID_FILE_NAME"
    MISSING_REQUIRED_HEADER = "MISSING_REQUIRED_HEADER"
    INCORRECT_SECTION = "INCORRECT_SECTION"


class CreateSubmissionStatus(str, Enum):
    """Status of a submission request."""
    PROCESSING = "PROCESSING"
    INVALID_SUBMISSION = "INVALID_SUBMISSION"


@dataclass(frozen=True)
class BatchError:
    """A recoverable error tied to one uploaded file."""
    type: BatchErrorType
    message: str
    batch_name: str

    def to_dict(self) -> Dict[str, str]:
        return {
            "type": self.type.value,
            "message": self.message,
            "batchName": self.batch_name,
        }


@dataclass
class UploadedFile:
    """Temporary on-disk copy of an uploaded data file.

    The request that created it owns it; the record extractor deletes it.
    """
    path: Path
    original_name: str

    def __post_init__(self):
        self.path = Path(self.path)

    @property
    def exists(self) -> bool:
        return self.path.exists()

    def delete(self) -> bool:
        """Remove the temporary file. Returns False if it was already gone."""
        try:
            os.unlink(self.path)
            return True
        except FileNotFoundError:
            return False


@dataclass
class SubmissionFileMapping:
    """Durable link between a registry submission and an analysis."""
    id: str
    submission_id: int
    analysis_id: str
    record_identifier: str
    system_id: Optional[str] = None
    created_at: str = field(default_factory=_utc_now_iso)
    updated_at: str = field(default_factory=_utc_now_iso)


@dataclass(frozen=True)
class SubmissionManifestEntry:
    """One analysis file registered for a submission."""
    object_id: str
    file_name: str
    md5_sum: str

    def to_dict(self) -> Dict[str, str]:
        return {
            "objectId": self.object_id,
            "fileName": self.file_name,
            "md5Sum": self.md5_sum,
        }

    @classmethod
    def from_analysis_file(cls, analysis_file: Dict[str, Any]) -> "SubmissionManifestEntry":
        """Project an analysis service file record."""
        return cls(
            object_id=analysis_file.get("objectId", ""),
            file_name=analysis_file.get("fileName", ""),
            md5_sum=analysis_file.get("fileMd5sum", ""),
        )


@dataclass(frozen=True)
class SubmissionFileStatus:
    """Manifest entry plus upload state, shown when fetching a submission."""
    object_id: str
    file_name: str
    md5_sum: str
    is_uploaded: bool

    def to_dict(self) -> Dict[str, Any]:
        return {
            "objectId": self.object_id,
            "fileName": self.file_name,
            "md5Sum": self.md5_sum,
            "isUploaded": self.is_uploaded,
        }


@dataclass
class SubmissionResult:
    """Outcome of submitting one data file."""
    success: bool
    submission_id: Optional[int] = None
    errors: List[BatchError] = field(default_factory=list)
    submission_manifest: List[SubmissionManifestEntry] = field(default_factory=list)

    @classmethod
    def failed(
        cls,
        errors: List[BatchError],
        submission_id: Optional[int] = None,
    ) -> "SubmissionResult":
        return cls(success=False, submission_id=submission_id, errors=list(errors))


@dataclass
class SubmitResponse:
    """Aggregated response of a (possibly multi-file) submission request."""
    status: CreateSubmissionStatus
    submission_id: Optional[int] = None
    batch_errors: List[BatchError] = field(default_factory=list)
    submission_manifest: List[SubmissionManifestEntry] = field(default_factory=list)
    in_process_entities: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Union[str, int, List[Any], None]]:
        return {
            "submissionId": self.submission_id,
            "status": self.status.value,
            "batchErrors": [e.to_dict() for e in self.batch_errors],
            "submissionManifest": [m.to_dict() for m in self.submission_manifest],
            "inProcessEntities": list(self.in_process_entities),
        }
