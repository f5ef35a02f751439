"""Operations joining submission file mappings with Analysis Service state.

Used by the orchestrator (manifest), the get-submission and commit routes
(upload status, publishing) and the submitted-data route (record files).
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from typing import Any, Dict, List, Sequence

from subgate.analysis_service import ANALYSIS_STATE_PUBLISHED, AnalysisServiceClient
from subgate.exceptions import AnalysisServiceError
from subgate.file_repository import SubmissionFileRepository
from subgate.models import SubmissionFileMapping, SubmissionFileStatus, SubmissionManifestEntry

LOGGER = logging.getLogger("subgate.file_service")


@dataclass
class PublishResult:
    """Outcome of publishing every analysis mapped to a submission."""
    success: bool
    published: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)


def build_submission_manifest(
    client: AnalysisServiceClient,
    organization: str,
    analysis_ids: Sequence[str],
    max_workers: int = 4,
) -> List[SubmissionManifestEntry]:
    """Collect the files of each analysis into one manifest.

    Lookups run in parallel; the manifest follows the order of
    ``analysis_ids``.

    Raises:
        AnalysisServiceError: If any lookup fails
    """
    if not analysis_ids:
        return []

    files_by_index: Dict[int, List[Dict[str, Any]]] = {}
    with ThreadPoolExecutor(max_workers=max(1, min(max_workers, len(analysis_ids)))) as executor:
        futures = {}
        for index, analysis_id in enumerate(analysis_ids):
            future = executor.submit(client.get_analysis_files, organization, analysis_id)
            futures[future] = index

        for future in as_completed(futures):
            index = futures[future]
            try:
                files_by_index[index] = future.result()
            except AnalysisServiceError as e:
                LOGGER.error("Failed to fetch files of analysis %s: %s", analysis_ids[index], e.message)
                raise

    manifest = [
        SubmissionManifestEntry.from_analysis_file(analysis_file)
        for index in range(len(analysis_ids))
        for analysis_file in files_by_index[index]
    ]
    LOGGER.debug("Built manifest of %d files for %d analyses", len(manifest), len(analysis_ids))
    return manifest


def get_mapped_submission_files(
    repository: SubmissionFileRepository, submission_id: int
) -> List[SubmissionFileMapping]:
    """Mappings recorded for a submission."""
    mappings = repository.get_by_submission_id(submission_id)
    LOGGER.info("Found '%d' files for Submission '%s'", len(mappings), submission_id)
    return mappings


def build_submission_file_metadata(
    repository: SubmissionFileRepository,
    client: AnalysisServiceClient,
    organization: str,
    submission_id: int,
) -> List[SubmissionFileStatus]:
    """Upload status of each file mapped to a submission.

    A file counts as uploaded once its analysis is published. Analyses
    without files are skipped.
    """
    statuses = []
    for mapping in get_mapped_submission_files(repository, submission_id):
        analysis = client.get_analysis_by_id(organization, mapping.analysis_id)
        files = analysis.get("files") or []
        if not files:
            continue
        entry = SubmissionManifestEntry.from_analysis_file(files[0])
        statuses.append(
            SubmissionFileStatus(
                object_id=entry.object_id,
                file_name=entry.file_name,
                md5_sum=entry.md5_sum,
                is_uploaded=analysis.get("analysisState") == ANALYSIS_STATE_PUBLISHED,
            )
        )
    return statuses


def publish_mapped_submission_files(
    repository: SubmissionFileRepository,
    client: AnalysisServiceClient,
    organization: str,
    submission_id: int,
) -> PublishResult:
    """Publish every analysis mapped to a submission.

    A failed publish is recorded and the remaining analyses are still
    attempted.
    """
    mappings = get_mapped_submission_files(repository, submission_id)
    result = PublishResult(success=False)
    for mapping in mappings:
        try:
            client.publish_analysis(organization, mapping.analysis_id)
            result.published.append(mapping.analysis_id)
        except AnalysisServiceError as e:
            LOGGER.warning("Failed to publish analysis %s: %s", mapping.analysis_id, e.message)
            result.failed.append(mapping.analysis_id)

    result.success = len(result.published) == len(mappings)
    if result.success:
        LOGGER.info(
            "Successfully published all %d analyses for submission ID '%s'",
            len(result.published),
            submission_id,
        )
    else:
        LOGGER.info(
            "Published %d/%d analyses for submission ID '%s'. Failed: '%s'",
            len(result.published),
            len(mappings),
            submission_id,
            ", ".join(result.failed),
        )
    return result


def add_analysis_files_to_submitted_record(
    repository: SubmissionFileRepository,
    client: AnalysisServiceClient,
    record: Dict[str, Any],
) -> Dict[str, Any]:
    """Return the record with a ``files`` list when a mapping exists for its systemId."""
    system_id = record.get("systemId")
    if not system_id:
        return record

    mapping = repository.get_by_system_id(system_id)
    if mapping is None:
        return record

    analysis_files = client.get_analysis_files(record.get("organization", ""), mapping.analysis_id)
    return {
        **record,
        "files": [SubmissionManifestEntry.from_analysis_file(f).to_dict() for f in analysis_files],
    }
