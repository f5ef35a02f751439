"""
Tests for file_repository.py - DynamoDB storage of submission file mappings.
"""

import pytest
from unittest.mock import MagicMock, patch

from botocore.exceptions import ClientError

from subgate.exceptions import RepositoryError
from subgate.file_repository import (
    SUBMISSION_ID_INDEX,
    SYSTEM_ID_INDEX,
    SubmissionFileRepository,
    new_mapping_id,
)
from subgate.models import SubmissionFileMapping


def _client_error(code="InternalServerError", operation="Query"):
    return ClientError({"Error": {"Code": code, "Message": "failure"}}, operation)


@pytest.fixture
def mock_dynamodb():
    """Mock DynamoDB resource."""
    with patch("subgate.file_repository.boto3.Session") as mock_session:
        mock_dynamodb_resource = MagicMock()
        mock_session.return_value.resource.return_value = mock_dynamodb_resource
        yield mock_dynamodb_resource


@pytest.fixture
def repository(mock_dynamodb):
    """Create a SubmissionFileRepository with a mocked table."""
    repo = SubmissionFileRepository(table_name="test-submission-files")
    repo.table = MagicMock()
    return repo


def _item(mapping_id, submission_id=42, created_at="2024-01-01T00:00:00Z", system_id=None):
    item = {
        "id": mapping_id,
        "submission_id": submission_id,
        "analysis_id": f"analysis-{mapping_id}",
        "record_identifier": "S1",
        "created_at": created_at,
        "updated_at": created_at,
    }
    if system_id:
        item["system_id"] = system_id
    return item


class TestCreateTable:
    """Tests for table creation."""

    def test_existing_table_is_kept(self, repository, mock_dynamodb):
        repository.create_table_if_not_exists()
        mock_dynamodb.create_table.assert_not_called()

    def test_missing_table_is_created_with_indexes(self, repository, mock_dynamodb):
        repository.table.load.side_effect = _client_error("ResourceNotFoundException", "DescribeTable")

        repository.create_table_if_not_exists()

        kwargs = mock_dynamodb.create_table.call_args.kwargs
        assert kwargs["TableName"] == "test-submission-files"
        index_names = [i["IndexName"] for i in kwargs["GlobalSecondaryIndexes"]]
        assert index_names == [SUBMISSION_ID_INDEX, SYSTEM_ID_INDEX]
        mock_dynamodb.create_table.return_value.wait_until_exists.assert_called_once()

    def test_other_errors_propagate(self, repository):
        repository.table.load.side_effect = _client_error("AccessDeniedException", "DescribeTable")
        with pytest.raises(ClientError):
            repository.create_table_if_not_exists()


class TestInsertMany:
    """Tests for batch inserts."""

    def test_insert_writes_every_mapping(self, repository):
        batch = repository.table.batch_writer.return_value.__enter__.return_value
        mappings = [
            SubmissionFileMapping(id=new_mapping_id(), submission_id=42, analysis_id="A1", record_identifier="S1"),
            SubmissionFileMapping(id=new_mapping_id(), submission_id=42, analysis_id="A2", record_identifier="S2"),
        ]

        stored = repository.insert_many(mappings)

        assert stored == mappings
        assert batch.put_item.call_count == 2
        first_item = batch.put_item.call_args_list[0].kwargs["Item"]
        assert first_item["analysis_id"] == "A1"
        # Uncommitted rows stay out of the sparse systemId index
        assert "system_id" not in first_item

    def test_empty_insert_is_noop(self, repository):
        assert repository.insert_many([]) == []
        repository.table.batch_writer.assert_not_called()

    def test_insert_failure_raises_repository_error(self, repository):
        batch = repository.table.batch_writer.return_value.__enter__.return_value
        batch.put_item.side_effect = _client_error(operation="BatchWriteItem")
        mapping = SubmissionFileMapping(id="m1", submission_id=42, analysis_id="A1", record_identifier="S1")

        with pytest.raises(RepositoryError) as exc_info:
            repository.insert_many([mapping])
        assert "submission files" in exc_info.value.message


class TestQueries:
    """Tests for index queries."""

    def test_get_by_submission_id_follows_pagination(self, repository):
        repository.table.query.side_effect = [
            {"Items": [_item("m2", created_at="2024-01-02T00:00:00Z")], "LastEvaluatedKey": {"id": "m2"}},
            {"Items": [_item("m1", created_at="2024-01-01T00:00:00Z")]},
        ]

        mappings = repository.get_by_submission_id(42)

        assert [m.id for m in mappings] == ["m1", "m2"]
        second_call = repository.table.query.call_args_list[1].kwargs
        assert second_call["IndexName"] == SUBMISSION_ID_INDEX
        assert second_call["ExclusiveStartKey"] == {"id": "m2"}

    def test_get_by_system_id(self, repository):
        repository.table.query.return_value = {"Items": [_item("m1", system_id="SYS1")]}

        mapping = repository.get_by_system_id("SYS1")

        assert mapping.system_id == "SYS1"
        assert mapping.submission_id == 42
        assert repository.table.query.call_args.kwargs["IndexName"] == SYSTEM_ID_INDEX

    def test_get_by_system_id_not_found(self, repository):
        repository.table.query.return_value = {"Items": []}
        assert repository.get_by_system_id("SYS9") is None

    def test_query_failure_raises_repository_error(self, repository):
        repository.table.query.side_effect = _client_error()
        with pytest.raises(RepositoryError):
            repository.get_by_submission_id(42)


class TestUpdateAndDelete:
    """Tests for updates and deletes."""

    def test_update_sets_fields_and_timestamp(self, repository):
        repository.update_by_id("m1", system_id="SYS1")

        kwargs = repository.table.update_item.call_args.kwargs
        assert kwargs["Key"] == {"id": "m1"}
        assert kwargs["UpdateExpression"] == "SET system_id = :system_id, updated_at = :updated_at"
        assert kwargs["ExpressionAttributeValues"][":system_id"] == "SYS1"
        assert kwargs["ConditionExpression"] == "attribute_exists(id)"

    def test_update_rejects_unknown_fields(self, repository):
        with pytest.raises(ValueError):
            repository.update_by_id("m1", submission_id=7)
        repository.table.update_item.assert_not_called()

    def test_update_failure_raises_repository_error(self, repository):
        repository.table.update_item.side_effect = _client_error("ConditionalCheckFailedException", "UpdateItem")
        with pytest.raises(RepositoryError):
            repository.update_by_id("missing", system_id="SYS1")

    def test_delete_by_submission_id(self, repository):
        repository.table.query.return_value = {"Items": [_item("m1"), _item("m2")]}
        batch = repository.table.batch_writer.return_value.__enter__.return_value

        deleted = repository.delete_by_submission_id(42)

        assert deleted == 2
        batch.delete_item.assert_any_call(Key={"id": "m1"})
        batch.delete_item.assert_any_call(Key={"id": "m2"})
