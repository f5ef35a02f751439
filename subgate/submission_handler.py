"""Submission orchestration.

A data file goes through these stages:

    RECEIVED -> EXTRACTED -> SEQUENCING_RECONCILED -> REGISTRY_SUBMITTED
      -> ANALYSIS_SUBMITTED -> MAPPING_PERSISTED -> MANIFEST_BUILT -> DONE

Any gated stage can end in REJECTED. Business-rule failures are returned as
batch errors, never raised. Once the Registry has accepted the records, every
later failure replays the compensation log: the analyses registered so far
are suppressed, stored mappings are removed and the Registry submission is
deleted.
"""

from __future__ import annotations

import csv
import logging
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from subgate.analysis_service import AnalysisServiceClient
from subgate.compensation import CompensationLog
from subgate.config import Settings, get_settings
from subgate.exceptions import (
    AnalysisServiceError,
    BadRequestError,
    InvalidFileExtensionError,
    RepositoryError,
    SubgateException,
)
from subgate.file_repository import SubmissionFileRepository, new_mapping_id
from subgate.file_service import build_submission_manifest
from subgate.file_validation import PrevalidationResult, prevalidate_edit_file, prevalidate_new_data_file
from subgate.models import (
    BatchError,
    BatchErrorType,
    CreateSubmissionStatus,
    SubmissionFileMapping,
    SubmissionResult,
    SubmitResponse,
    UploadedFile,
)
from subgate.populate_template import convert_record_to_payload, prefix_keys
from subgate.read_file import ExtractedRecord, parse_file_to_records
from subgate.registry import RegistrySubmitResult, SubmissionRegistry
from subgate.schema import Dictionary, Schema
from subgate.sequencing import SequencingFileMetadata, build_file_metadata, build_sequencing_files_metadata

LOGGER = logging.getLogger("subgate.submission_handler")

# Converts sequencing metadata into an Analysis Service payload
SEQUENCING_TEMPLATE = "sequencing_payload.json"
DATA_PREFIX = "data."


class SubmissionStage(str, Enum):
    """Pipeline stages of one data file submission."""
    RECEIVED = "received"
    EXTRACTED = "extracted"
    SEQUENCING_RECONCILED = "sequencing_reconciled"
    REGISTRY_SUBMITTED = "registry_submitted"
    ANALYSIS_SUBMITTED = "analysis_submitted"
    MAPPING_PERSISTED = "mapping_persisted"
    MANIFEST_BUILT = "manifest_built"
    DONE = "done"
    REJECTED = "rejected"


def _incorrect_section(message: str, batch_name: str) -> BatchError:
    return BatchError(type=BatchErrorType.INCORRECT_SECTION, message=message, batch_name=batch_name)


def entity_name_from_file_name(file_name: str) -> str:
    """Entity a data file targets: the name before the first dot, lower-cased."""
    return file_name.split(".", 1)[0].lower()


class SubmissionHandler:
    """Runs data files through extraction, the Registry and the Analysis Service."""

    def __init__(
        self,
        registry: SubmissionRegistry,
        analysis_client: Optional[AnalysisServiceClient] = None,
        file_repository: Optional[SubmissionFileRepository] = None,
        settings: Optional[Settings] = None,
    ):
        """Initialize the handler.

        Args:
            registry: Submission Registry collaborator
            analysis_client: Analysis Service client (None disables sequencing submissions)
            file_repository: Mapping store, required with an analysis client
            settings: Application settings (defaults to get_settings())
        """
        if analysis_client is not None and file_repository is None:
            raise ValueError("A file repository is required when an analysis client is configured")
        self.registry = registry
        self.analysis_client = analysis_client
        self.file_repository = file_repository
        self.settings = settings or get_settings()

    @property
    def sequencing_enabled(self) -> bool:
        return self.analysis_client is not None and self.settings.sequencing_configured

    def _stage(self, stage: SubmissionStage, batch_name: str) -> None:
        LOGGER.debug("Submission of '%s' reached stage %s", batch_name, stage.value)

    def _reject(
        self,
        batch_name: str,
        errors: List[BatchError],
        submission_id: Optional[int] = None,
    ) -> SubmissionResult:
        self._stage(SubmissionStage.REJECTED, batch_name)
        return SubmissionResult.failed(errors, submission_id=submission_id)

    def _rollback(
        self,
        compensation: CompensationLog,
        batch_name: str,
        errors: List[BatchError],
        submission_id: Optional[int],
    ) -> SubmissionResult:
        LOGGER.warning(
            "Rolling back submission %s of '%s' (%d steps)", submission_id, batch_name, len(compensation)
        )
        for failure in compensation.rollback():
            errors.append(
                _incorrect_section(f"Rollback incomplete: {failure.description}: {failure.error}", batch_name)
            )
        return self._reject(batch_name, errors, submission_id)

    def _build_sequencing_payloads(
        self,
        entries: Sequence[SequencingFileMetadata],
        records: Sequence[ExtractedRecord],
        organization: str,
    ) -> List[Tuple[SequencingFileMetadata, Dict[str, Any]]]:
        identifier_column = self.settings.identifier_column
        payloads = []
        for entry in entries:
            matched = next((r for r in records if r.get(identifier_column) == entry.identifier), None)
            if matched is None:
                continue
            payload = convert_record_to_payload(
                {"organization": organization, **prefix_keys(matched, DATA_PREFIX)},
                SEQUENCING_TEMPLATE,
                template_dir=self.settings.sequencing_template_dir,
            )
            payload["files"] = [build_file_metadata(entry)]
            payloads.append((entry, payload))
        return payloads

    def handle_submission(
        self,
        file: UploadedFile,
        schema: Schema,
        entity_name: str,
        category_id: int,
        organization: str,
        username: str,
        sequencing_metadata: Optional[Sequence[SequencingFileMetadata]] = None,
    ) -> SubmissionResult:
        """Submit one prevalidated data file and its sequencing files.

        Args:
            file: Uploaded data file; consumed (deleted) by extraction
            schema: Schema of the target entity
            entity_name: Entity name passed to the Registry
            category_id: Registry category
            organization: Submitting organization
            username: Submitting user ('' when anonymous)
            sequencing_metadata: Sequencing file entries, if any

        Returns:
            SubmissionResult; on failure after the Registry accepted the
            records, ``submission_id`` names the rolled back submission
        """
        batch_name = file.original_name
        self._stage(SubmissionStage.RECEIVED, batch_name)

        try:
            records = parse_file_to_records(file, schema)
        except InvalidFileExtensionError as e:
            return self._reject(
                batch_name,
                [BatchError(type=BatchErrorType.INVALID_FILE_EXTENSION, message=e.message, batch_name=batch_name)],
            )
        except (csv.Error, UnicodeDecodeError) as e:
            LOGGER.error("Unable to parse '%s': %s", batch_name, str(e))
            return self._reject(batch_name, [_incorrect_section(f"Unable to parse file: {e}", batch_name)])
        self._stage(SubmissionStage.EXTRACTED, batch_name)

        payloads: List[Tuple[SequencingFileMetadata, Dict[str, Any]]] = []
        if sequencing_metadata:
            reconciliation = build_sequencing_files_metadata(
                sequencing_metadata, records, batch_name, self.settings.identifier_column
            )
            if reconciliation.errors:
                LOGGER.info(
                    "Error validation sequencing file metadata: %s",
                    [e.to_dict() for e in reconciliation.errors],
                )
                return self._reject(batch_name, reconciliation.errors)
            if self.sequencing_enabled:
                payloads = self._build_sequencing_payloads(reconciliation.valid_files, records, organization)
            self._stage(SubmissionStage.SEQUENCING_RECONCILED, batch_name)

        upload_result = self.registry.submit(
            records=records,
            entity_name=entity_name,
            category_id=category_id,
            organization=organization,
            username=username,
        )
        if not upload_result.accepted:
            errors = [_incorrect_section(upload_result.description, batch_name)]
            errors.extend(upload_result.batch_errors)
            return self._reject(batch_name, errors)

        submission_id = upload_result.submission_id
        compensation = CompensationLog()
        compensation.record(
            f"delete registry submission {submission_id}",
            lambda: self.registry.delete_active_submission_by_id(submission_id, username),
        )
        self._stage(SubmissionStage.REGISTRY_SUBMITTED, batch_name)
        LOGGER.info("Registry accepted '%s' as submission %s", batch_name, submission_id)

        if not payloads:
            self._stage(SubmissionStage.DONE, batch_name)
            return SubmissionResult(success=True, submission_id=submission_id)

        try:
            return self._register_sequencing_files(payloads, compensation, batch_name, organization, submission_id)
        except Exception:
            LOGGER.exception(
                "Submission %s of '%s' failed after the Registry accepted it", submission_id, batch_name
            )
            for failure in compensation.rollback():
                LOGGER.error(
                    "Rollback incomplete for submission %s: %s: %s",
                    submission_id,
                    failure.description,
                    failure.error,
                )
            raise

    def _register_sequencing_files(
        self,
        payloads: Sequence[Tuple[SequencingFileMetadata, Dict[str, Any]]],
        compensation: CompensationLog,
        batch_name: str,
        organization: str,
        submission_id: int,
    ) -> SubmissionResult:
        """Register sequencing files, store their mappings and build the manifest.

        Failures replay ``compensation`` and return a failed result.
        """
        # One Analysis Service call per sequencing file, in entry order
        analysis_errors: List[BatchError] = []
        submitted: List[Tuple[SequencingFileMetadata, str]] = []
        for entry, payload in payloads:
            try:
                result = self.analysis_client.submit(organization, payload)
            except AnalysisServiceError as e:
                LOGGER.error("Analysis submission of '%s' failed: %s", entry.file_name, e.message)
                analysis_errors.append(_incorrect_section(e.message, batch_name))
                continue
            analysis_id = result["analysisId"]
            LOGGER.info(
                "Analysis submission result: %s - %s, submissionId: %s",
                result.get("status"),
                analysis_id,
                submission_id,
            )
            submitted.append((entry, analysis_id))
            compensation.record(f"suppress analysis {analysis_id}", self._suppress(organization, analysis_id))

        if analysis_errors:
            return self._rollback(compensation, batch_name, analysis_errors, submission_id)
        self._stage(SubmissionStage.ANALYSIS_SUBMITTED, batch_name)

        mappings = [
            SubmissionFileMapping(
                id=new_mapping_id(),
                submission_id=submission_id,
                analysis_id=analysis_id,
                record_identifier=entry.identifier,
            )
            for entry, analysis_id in submitted
        ]
        # Batch writes flush in chunks, so a failed insert can leave some rows behind
        compensation.record(
            f"delete file mappings of submission {submission_id}",
            lambda: self.file_repository.delete_by_submission_id(submission_id),
        )
        try:
            self.file_repository.insert_many(mappings)
        except RepositoryError as e:
            return self._rollback(
                compensation, batch_name, [_incorrect_section(e.message, batch_name)], submission_id
            )
        self._stage(SubmissionStage.MAPPING_PERSISTED, batch_name)

        try:
            manifest = build_submission_manifest(
                self.analysis_client,
                organization,
                [analysis_id for _, analysis_id in submitted],
                max_workers=self.settings.manifest_max_workers,
            )
        except AnalysisServiceError as e:
            return self._rollback(
                compensation, batch_name, [_incorrect_section(e.message, batch_name)], submission_id
            )
        self._stage(SubmissionStage.MANIFEST_BUILT, batch_name)

        compensation.clear()
        self._stage(SubmissionStage.DONE, batch_name)
        return SubmissionResult(success=True, submission_id=submission_id, submission_manifest=manifest)

    def _suppress(self, organization: str, analysis_id: str) -> Callable[[], None]:
        def action() -> None:
            self.analysis_client.suppress_analysis(organization, analysis_id)
        return action

    def _load_dictionary(self, files: Sequence[UploadedFile], category_id: int) -> Dictionary:
        if not files:
            raise BadRequestError(
                'The "files" parameter is missing or empty. Please include files in the request for processing.'
            )
        dictionary = self.registry.get_active_dictionary_by_category(category_id)
        if dictionary is None:
            raise BadRequestError(f"Dictionary in category '{category_id}' not found")
        return dictionary

    @staticmethod
    def _summarize(response: SubmitResponse) -> SubmitResponse:
        if response.in_process_entities:
            response.status = CreateSubmissionStatus.PROCESSING
            if response.batch_errors:
                LOGGER.info("Submission processed with some errors")
            else:
                LOGGER.info("Submission processed successfully")
        else:
            LOGGER.info("Unable to process the submission")
            response.status = CreateSubmissionStatus.INVALID_SUBMISSION
        return response

    @staticmethod
    def _unexpected_failure(file: UploadedFile, error: Exception) -> BatchError:
        """Batch error for a file whose processing raised; sibling files go on."""
        LOGGER.exception("Failed to process '%s'", file.original_name)
        file.delete()
        message = error.message if isinstance(error, SubgateException) else str(error)
        return _incorrect_section(f"Unable to process file: {message}", file.original_name)

    def _resolve_schema(
        self,
        file: UploadedFile,
        dictionary: Dictionary,
        prevalidate: Callable[[UploadedFile, Schema], PrevalidationResult],
        response: SubmitResponse,
    ) -> Optional[Tuple[str, Schema]]:
        entity_name = entity_name_from_file_name(file.original_name)
        schema = dictionary.find_schema(entity_name)
        if not entity_name or schema is None:
            response.batch_errors.append(
                BatchError(
                    type=BatchErrorType.INVALID_FILE_NAME,
                    message="Invalid entity name for submission",
                    batch_name=file.original_name,
                )
            )
            file.delete()
            return None

        prevalidation = prevalidate(file, schema)
        if not prevalidation.is_valid:
            response.batch_errors.append(prevalidation.error)
            file.delete()
            return None
        return entity_name, schema

    def submit_files(
        self,
        files: Sequence[UploadedFile],
        category_id: int,
        organization: str,
        username: str = "",
        sequencing_metadata: Optional[Sequence[SequencingFileMetadata]] = None,
    ) -> SubmitResponse:
        """Submit several data files, one entity per file.

        Files are processed independently: a rejected file adds batch errors
        and the rest are still submitted.

        Raises:
            BadRequestError: If no files were given or the category has no dictionary
        """
        dictionary = self._load_dictionary(files, category_id)
        LOGGER.info(
            "Upload Submission Request: categoryId '%s' organization '%s' files: '%s'",
            category_id,
            organization,
            [f.original_name for f in files],
        )

        identifier_column = self.settings.identifier_column
        response = SubmitResponse(status=CreateSubmissionStatus.INVALID_SUBMISSION)
        for file in files:
            resolved = self._resolve_schema(file, dictionary, prevalidate_new_data_file, response)
            if resolved is None:
                continue
            entity_name, schema = resolved

            file_sequencing = None
            if sequencing_metadata and identifier_column and schema.has_field(identifier_column):
                file_sequencing = sequencing_metadata

            try:
                result = self.handle_submission(
                    file=file,
                    schema=schema,
                    entity_name=entity_name,
                    category_id=category_id,
                    organization=organization,
                    username=username,
                    sequencing_metadata=file_sequencing,
                )
            except Exception as e:
                response.batch_errors.append(self._unexpected_failure(file, e))
                continue
            if result.success:
                response.submission_id = result.submission_id
                response.in_process_entities.append(entity_name)
                response.submission_manifest.extend(result.submission_manifest)
            else:
                response.batch_errors.extend(result.errors)

        return self._summarize(response)

    def edit_files(
        self,
        files: Sequence[UploadedFile],
        category_id: int,
        organization: str,
        username: str = "",
    ) -> SubmitResponse:
        """Submit edits of existing records; each file must carry ``systemId``.

        Raises:
            BadRequestError: If no files were given or the category has no dictionary
        """
        dictionary = self._load_dictionary(files, category_id)
        LOGGER.info(
            "Edit Submission Request: categoryId '%s' organization '%s' files: '%s'",
            category_id,
            organization,
            [f.original_name for f in files],
        )

        response = SubmitResponse(status=CreateSubmissionStatus.INVALID_SUBMISSION)
        for file in files:
            resolved = self._resolve_schema(file, dictionary, prevalidate_edit_file, response)
            if resolved is None:
                continue
            entity_name, schema = resolved

            try:
                records = parse_file_to_records(file, schema)
            except (csv.Error, UnicodeDecodeError) as e:
                LOGGER.error("Unable to parse '%s': %s", file.original_name, str(e))
                response.batch_errors.append(
                    _incorrect_section(f"Unable to parse file: {e}", file.original_name)
                )
                continue

            try:
                result: RegistrySubmitResult = self.registry.edit_data(
                    records=records,
                    entity_name=entity_name,
                    category_id=category_id,
                    organization=organization,
                    username=username,
                )
            except Exception as e:
                response.batch_errors.append(self._unexpected_failure(file, e))
                continue
            if result.accepted:
                response.submission_id = result.submission_id
                response.in_process_entities.append(entity_name)
            else:
                response.batch_errors.append(_incorrect_section(result.description, file.original_name))
                response.batch_errors.extend(result.batch_errors)

        return self._summarize(response)
