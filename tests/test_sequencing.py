"""Tests for sequencing.py - sequencing metadata parsing and reconciliation."""

import json

import pytest

from subgate.exceptions import BadRequestError
from subgate.models import BatchErrorType
from subgate.sequencing import (
    SEQUENCING_DATA_TYPE,
    SequencingFileMetadata,
    build_file_metadata,
    build_sequencing_files_metadata,
    get_identifier_from_file_name,
    parse_sequencing_metadata,
    validate_sequencing_metadata,
)


def _entry(file_name: str) -> SequencingFileMetadata:
    return SequencingFileMetadata(
        fileName=file_name,
        fileSize=1024,
        fileMd5sum="d41d8cd98f00b204e9800998ecf8427e",
        fileAccess="controlled",
        fileType="FASTQ",
    )


class TestGetIdentifierFromFileName:
    """Tests for get_identifier_from_file_name."""

    @pytest.mark.parametrize("name,expected", [
        ("S1-R1.fastq.gz", "S1"),
        ("S1.fastq.gz", "S1"),
        ("SAMPLE_7-lane2-R2.bam", "SAMPLE_7"),
        ("", ""),
        (".hidden", ""),
    ])
    def test_identifiers(self, name, expected):
        assert get_identifier_from_file_name(name) == expected


class TestValidateSequencingMetadata:
    """Tests for validate_sequencing_metadata and parse_sequencing_metadata."""

    def test_parses_aliases_and_coerces_size(self):
        text = json.dumps([{
            "fileName": "S1-R1.fastq.gz",
            "fileSize": "2048",
            "fileMd5sum": "abc",
            "fileAccess": "open",
            "fileType": "FASTQ",
        }])
        entries = validate_sequencing_metadata(text)

        assert len(entries) == 1
        assert entries[0].file_size == 2048
        assert entries[0].identifier == "S1"

    def test_invalid_json_raises_bad_request(self):
        with pytest.raises(BadRequestError) as exc_info:
            validate_sequencing_metadata("[not json")
        assert exc_info.value.message == "Invalid JSON format"

    def test_missing_field_is_reported_with_path(self):
        text = json.dumps([{"fileName": "S1.fastq", "fileSize": 1, "fileMd5sum": "x", "fileAccess": "open"}])
        with pytest.raises(BadRequestError) as exc_info:
            validate_sequencing_metadata(text)
        assert "0.fileType is Field required" in exc_info.value.message

    def test_lenient_parse_returns_none(self):
        assert parse_sequencing_metadata("") is None
        assert parse_sequencing_metadata("{}") is None
        assert parse_sequencing_metadata("[]") == []


class TestBuildSequencingFilesMetadata:
    """Tests for build_sequencing_files_metadata."""

    def test_splits_matched_and_unmatched(self):
        result = build_sequencing_files_metadata(
            [_entry("S1-R1.fastq.gz"), _entry("S2-R1.fastq.gz")],
            [{"sample_id": "S1"}],
            "sample.tsv",
            "sample_id",
        )

        assert [f.file_name for f in result.valid_files] == ["S1-R1.fastq.gz"]
        assert len(result.errors) == 1
        error = result.errors[0]
        assert error.type == BatchErrorType.INCORRECT_SECTION
        assert "S2" in error.message
        assert error.batch_name == "sample.tsv"

    def test_preserves_entry_order(self):
        result = build_sequencing_files_metadata(
            [_entry("S3-R1.fq"), _entry("S1-R1.fq"), _entry("S2-R1.fq")],
            [{"sample_id": "S1"}, {"sample_id": "S2"}, {"sample_id": "S3"}],
            "sample.tsv",
            "sample_id",
        )
        assert [f.identifier for f in result.valid_files] == ["S3", "S1", "S2"]
        assert result.errors == []

    def test_duplicate_identifier_is_an_error(self):
        result = build_sequencing_files_metadata(
            [_entry("S1-R1.fq"), _entry("S1-R2.fq")],
            [{"sample_id": "S1"}],
            "sample.tsv",
            "sample_id",
        )
        assert len(result.valid_files) == 1
        assert len(result.errors) == 1
        assert "S1-R2.fq" in result.errors[0].message

    def test_underivable_identifier_short_circuits(self):
        result = build_sequencing_files_metadata(
            [_entry(".fastq"), _entry("S9-R1.fq")],
            [{"sample_id": "S1"}],
            "sample.tsv",
            "sample_id",
        )
        assert result.valid_files == []
        assert len(result.errors) == 1
        assert ".fastq" in result.errors[0].message

    def test_no_identifier_column_yields_nothing(self):
        result = build_sequencing_files_metadata([_entry("S1-R1.fq")], [{"sample_id": "S1"}], "sample.tsv", None)
        assert result.errors == []
        assert result.valid_files == []


def test_build_file_metadata():
    metadata = build_file_metadata(_entry("S1-R1.fastq.gz"))
    assert metadata == {
        "dataType": SEQUENCING_DATA_TYPE,
        "fileName": "S1-R1.fastq.gz",
        "fileSize": 1024,
        "fileMd5sum": "d41d8cd98f00b204e9800998ecf8427e",
        "fileAccess": "controlled",
        "fileType": "FASTQ",
    }
