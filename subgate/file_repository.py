"""DynamoDB persistence for submission file mappings.

Each row links a Registry submission to one Analysis Service analysis and
the record identifier the sequencing file was matched on. Once the Registry
commits the record, the row is updated with the record's systemId.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence

import boto3
from boto3.dynamodb.conditions import Key
from botocore.exceptions import ClientError

from subgate.config import Settings
from subgate.exceptions import RepositoryError
from subgate.models import SubmissionFileMapping

LOGGER = logging.getLogger("subgate.file_repository")

SUBMISSION_ID_INDEX = "submission-id-index"
SYSTEM_ID_INDEX = "system-id-index"

_UPDATABLE_FIELDS = {"analysis_id", "record_identifier", "system_id"}


def _utc_now_iso() -> str:
    """Return current UTC time in ISO format with Z suffix."""
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def new_mapping_id() -> str:
    return str(uuid.uuid4())


class SubmissionFileRepository:
    """DynamoDB-backed store of SubmissionFileMapping rows."""

    def __init__(
        self,
        table_name: str = "subgate-submission-files",
        region: str = "us-west-2",
        profile: Optional[str] = None,
    ):
        """Initialize the repository.

        Args:
            table_name: DynamoDB table for submission file mappings
            region: AWS region
            profile: AWS profile name
        """
        session_kwargs = {"region_name": region}
        if profile:
            session_kwargs["profile_name"] = profile

        session = boto3.Session(**session_kwargs)
        self.dynamodb = session.resource("dynamodb")
        self.table_name = table_name
        self.table = self.dynamodb.Table(table_name)
        LOGGER.info("SubmissionFileRepository bound to table %s", table_name)

    @classmethod
    def from_settings(cls, settings: Settings) -> "SubmissionFileRepository":
        return cls(
            table_name=settings.submission_files_table,
            region=settings.aws_default_region,
            profile=settings.aws_profile,
        )

    def create_table_if_not_exists(self) -> None:
        """Create the mapping table with its submission and systemId indexes."""
        try:
            self.table.load()
            LOGGER.info("Submission files table %s already exists", self.table_name)
            return
        except ClientError as e:
            if e.response["Error"]["Code"] != "ResourceNotFoundException":
                raise

        LOGGER.info("Creating submission files table %s", self.table_name)
        table = self.dynamodb.create_table(
            TableName=self.table_name,
            KeySchema=[
                {"AttributeName": "id", "KeyType": "HASH"},
            ],
            AttributeDefinitions=[
                {"AttributeName": "id", "AttributeType": "S"},
                {"AttributeName": "submission_id", "AttributeType": "N"},
                {"AttributeName": "system_id", "AttributeType": "S"},
            ],
            GlobalSecondaryIndexes=[
                {
                    "IndexName": SUBMISSION_ID_INDEX,
                    "KeySchema": [
                        {"AttributeName": "submission_id", "KeyType": "HASH"},
                    ],
                    "Projection": {"ProjectionType": "ALL"},
                },
                {
                    # Sparse: rows gain a system_id only after commit
                    "IndexName": SYSTEM_ID_INDEX,
                    "KeySchema": [
                        {"AttributeName": "system_id", "KeyType": "HASH"},
                    ],
                    "Projection": {"ProjectionType": "ALL"},
                },
            ],
            BillingMode="PAY_PER_REQUEST",
        )
        table.wait_until_exists()
        LOGGER.info("Submission files table created successfully")

    @staticmethod
    def _mapping_to_item(mapping: SubmissionFileMapping) -> Dict[str, Any]:
        item = {
            "id": mapping.id,
            "submission_id": mapping.submission_id,
            "analysis_id": mapping.analysis_id,
            "record_identifier": mapping.record_identifier,
            "created_at": mapping.created_at,
            "updated_at": mapping.updated_at,
        }
        if mapping.system_id:
            item["system_id"] = mapping.system_id
        return item

    @staticmethod
    def _item_to_mapping(item: Dict[str, Any]) -> SubmissionFileMapping:
        return SubmissionFileMapping(
            id=item["id"],
            submission_id=int(item["submission_id"]),
            analysis_id=item["analysis_id"],
            record_identifier=item.get("record_identifier", ""),
            system_id=item.get("system_id"),
            created_at=item.get("created_at", ""),
            updated_at=item.get("updated_at", ""),
        )

    def _query_index(self, index_name: str, key_name: str, value: Any) -> List[Dict[str, Any]]:
        items: List[Dict[str, Any]] = []
        query_kwargs: Dict[str, Any] = {
            "IndexName": index_name,
            "KeyConditionExpression": Key(key_name).eq(value),
        }
        while True:
            response = self.table.query(**query_kwargs)
            items.extend(response.get("Items", []))
            last_key = response.get("LastEvaluatedKey")
            if last_key is None:
                return items
            query_kwargs["ExclusiveStartKey"] = last_key

    def get_by_system_id(self, system_id: str) -> Optional[SubmissionFileMapping]:
        """Mapping of a committed record, or None."""
        try:
            items = self._query_index(SYSTEM_ID_INDEX, "system_id", system_id)
        except ClientError as e:
            LOGGER.error("Failed to get submission file by systemId %s: %s", system_id, str(e))
            raise RepositoryError() from e
        if not items:
            return None
        return self._item_to_mapping(items[0])

    def get_by_submission_id(self, submission_id: int) -> List[SubmissionFileMapping]:
        """All mappings of a submission, oldest first."""
        try:
            items = self._query_index(SUBMISSION_ID_INDEX, "submission_id", submission_id)
        except ClientError as e:
            LOGGER.error("Failed to get submission files for submission %s: %s", submission_id, str(e))
            raise RepositoryError() from e
        mappings = [self._item_to_mapping(item) for item in items]
        return sorted(mappings, key=lambda m: m.created_at)

    def insert_many(self, mappings: Sequence[SubmissionFileMapping]) -> List[SubmissionFileMapping]:
        """Store mappings with one batch write.

        Returns:
            The stored rows, in input order
        """
        if not mappings:
            return []
        try:
            with self.table.batch_writer() as batch:
                for mapping in mappings:
                    batch.put_item(Item=self._mapping_to_item(mapping))
        except ClientError as e:
            LOGGER.error("Failed to insert %d submission files: %s", len(mappings), str(e))
            raise RepositoryError() from e
        LOGGER.info(
            "Stored %d submission file mappings for submission %s",
            len(mappings),
            mappings[0].submission_id,
        )
        return list(mappings)

    def update_by_id(self, mapping_id: str, **fields: Any) -> None:
        """Update selected attributes of one mapping.

        Raises:
            ValueError: If an unknown attribute is given
            RepositoryError: If the update fails
        """
        unknown = set(fields) - _UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"Cannot update fields: {sorted(unknown)}")

        fields["updated_at"] = _utc_now_iso()
        update_parts = []
        values: Dict[str, Any] = {}
        for name, value in fields.items():
            update_parts.append(f"{name} = :{name}")
            values[f":{name}"] = value

        try:
            self.table.update_item(
                Key={"id": mapping_id},
                UpdateExpression="SET " + ", ".join(update_parts),
                ExpressionAttributeValues=values,
                ConditionExpression="attribute_exists(id)",
            )
        except ClientError as e:
            LOGGER.error("Failed to update submission file %s: %s", mapping_id, str(e))
            raise RepositoryError() from e

    def delete_by_submission_id(self, submission_id: int) -> int:
        """Delete every mapping of a submission.

        Returns:
            Number of rows deleted
        """
        mappings = self.get_by_submission_id(submission_id)
        try:
            with self.table.batch_writer() as batch:
                for mapping in mappings:
                    batch.delete_item(Key={"id": mapping.id})
        except ClientError as e:
            LOGGER.error("Failed to delete submission files of submission %s: %s", submission_id, str(e))
            raise RepositoryError() from e
        return len(mappings)
