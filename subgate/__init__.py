"""
subgate - clinical data submission gateway.

This package provides:
- Prevalidation and record extraction for .tsv/.csv data files
- Reconciliation of sequencing file metadata against clinical records
- Submission to the Submission Registry and the Analysis Service with
  compensating rollback
- Post-commit linking of sequencing files and record indexing
"""

__version__ = "0.1.0"

from subgate.models import BatchError, BatchErrorType, CreateSubmissionStatus, SubmissionResult
from subgate.schema import Dictionary, Schema

__all__ = [
    "__version__",
    "BatchError",
    "BatchErrorType",
    "CreateSubmissionStatus",
    "Dictionary",
    "Schema",
    "SubmissionResult",
]
