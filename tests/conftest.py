"""Pytest configuration and shared fixtures."""

import itertools

import pytest

from subgate.config import get_settings_for_testing
from subgate.models import UploadedFile
from subgate.schema import Dictionary, Schema, SchemaField

_upload_counter = itertools.count()


@pytest.fixture
def make_upload(tmp_path):
    """Factory writing an uploaded data file to a temporary path."""
    def _make(original_name: str, content: str) -> UploadedFile:
        path = tmp_path / f"upload-{next(_upload_counter)}"
        path.write_text(content, encoding="utf-8")
        return UploadedFile(path=path, original_name=original_name)
    return _make


@pytest.fixture
def donor_schema():
    """Donor schema with one display-named required field."""
    return Schema(
        name="donor",
        fields=(
            SchemaField(name="submitter_donor_id", display_name="Submitter Donor ID", required=True),
            SchemaField(name="gender", required=True),
            SchemaField(name="age"),
        ),
    )


@pytest.fixture
def sample_schema():
    """Sample schema carrying the sequencing identifier column."""
    return Schema(
        name="sample",
        fields=(
            SchemaField(name="submitter_sample_id", required=True),
            SchemaField(name="sample_type"),
            SchemaField(name="submitter_donor_id"),
        ),
    )


@pytest.fixture
def dictionary(donor_schema, sample_schema):
    """Active dictionary with the donor and sample schemas."""
    return Dictionary(name="clinical", version="1.0", schemas=(donor_schema, sample_schema))


@pytest.fixture
def settings():
    """Settings with sequencing and indexing disabled."""
    return get_settings_for_testing()


@pytest.fixture
def sequencing_settings():
    """Settings with sequencing submissions enabled."""
    return get_settings_for_testing(
        sequencing_submission_enabled=True,
        sequencing_submission_url="http://analysis.test",
        sequencing_submission_filename_identifier_column="submitter_sample_id",
        manifest_max_workers=2,
    )
