"""Post-commit processing.

Runs when the Registry reports a committed submission:

1. Sequencing file mappings of inserted records receive the record's
   permanent systemId.
2. If indexing is enabled for the category, the indexer is asked to
   (re)index every inserted, updated and deleted record. Requests are sent
   serially from a background thread; failures are logged and skipped.
"""

from __future__ import annotations

import logging
import threading
import time
from typing import Callable, List, Optional, Tuple

import httpx

from subgate.config import Settings, get_settings
from subgate.exceptions import RepositoryError
from subgate.file_repository import SubmissionFileRepository
from subgate.registry import CommitEvent, SubmittedRecord

LOGGER = logging.getLogger("subgate.commit_callback")


def find_category_mapping(mappings: Optional[str], category_id: str) -> Optional[Tuple[str, str]]:
    """Find the ``category:index`` pair configured for a category."""
    if not mappings:
        return None
    for pair in mappings.split(","):
        category, _, repository = pair.partition(":")
        if category == category_id:
            return category, repository
    return None


class CommitCallback:
    """Callable invoked with each CommitEvent."""

    def __init__(
        self,
        file_repository: Optional[SubmissionFileRepository] = None,
        settings: Optional[Settings] = None,
        http_client_factory: Optional[Callable[[], httpx.Client]] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.file_repository = file_repository
        self.settings = settings or get_settings()
        self.http_client_factory = http_client_factory or (lambda: httpx.Client(timeout=10.0))
        self._sleep = sleep

    def __call__(self, event: CommitEvent) -> Optional[threading.Thread]:
        """Process a commit event.

        Returns:
            The indexing thread when indexing was started, else None
        """
        if event.inserts:
            try:
                self.update_submission_file_system_ids(event.submission_id, event.inserts)
            except RepositoryError as e:
                LOGGER.error(
                    "Unable to link files of submission %s to system ids: %s", event.submission_id, e.message
                )

        if not self.settings.indexer_enabled or not self.settings.indexer_server_url:
            return None

        mapping = find_category_mapping(self.settings.indexer_mapping, str(event.category_id))
        if not mapping or not mapping[1]:
            LOGGER.info("No index configuration exists for category %s", event.category_id)
            return None

        LOGGER.info(
            "Records to index: inserts:%d, updates:%d, deletes: %d",
            len(event.inserts),
            len(event.updates),
            len(event.deletes),
        )
        records = event.inserts + event.updates + event.deletes
        if not records:
            return None

        base_url = self.index_base_url(mapping[1], event.organization)
        thread = threading.Thread(
            target=self.index_records,
            args=(records, base_url),
            name=f"indexer-{event.submission_id}",
            daemon=True,
        )
        thread.start()
        return thread

    def index_base_url(self, repository_code: str, organization: str) -> str:
        return (
            f"{self.settings.indexer_server_url.rstrip('/')}"
            f"/index/repository/{repository_code}/organization/{organization}/id"
        )

    def update_submission_file_system_ids(
        self, submission_id: int, inserted: List[SubmittedRecord]
    ) -> int:
        """Store the systemId of inserted records on their matching mappings.

        Returns:
            Number of mappings updated
        """
        identifier_column = self.settings.identifier_column
        if (
            not identifier_column
            or not self.settings.sequencing_submission_enabled
            or self.file_repository is None
            or not inserted
        ):
            return 0

        existing = self.file_repository.get_by_submission_id(submission_id)
        if not existing:
            LOGGER.debug("Submission '%s' does not have any files associated", submission_id)
            return 0

        updated = 0
        for record in inserted:
            identifier = record.data.get(identifier_column)
            matched = next((m for m in existing if m.record_identifier == identifier), None)
            if matched is None:
                continue
            try:
                self.file_repository.update_by_id(matched.id, system_id=record.system_id)
            except RepositoryError as e:
                LOGGER.error("Unable to link mapping %s to system id %s: %s", matched.id, record.system_id, e.message)
                continue
            updated += 1
        LOGGER.info("Linked %d submission files of submission %s to system ids", updated, submission_id)
        return updated

    def index_records(self, records: List[SubmittedRecord], base_url: str) -> None:
        """POST each record's systemId to the indexer, one at a time."""
        with self.http_client_factory() as client:
            for record in records:
                url = f"{base_url}/{record.system_id}"
                try:
                    response = client.post(url)
                    if not response.is_success:
                        LOGGER.error("HTTP error! Status: %s", response.status_code)
                except httpx.HTTPError as e:
                    LOGGER.error("Error Indexing server %s: %s", url, str(e))
                self._sleep(self.settings.indexer_request_delay_seconds)
