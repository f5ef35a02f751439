"""Tests for config.py - environment-driven settings."""

import pytest
from pydantic import ValidationError

from subgate.config import get_settings_for_testing


class TestSettingsValidation:
    """Tests for field and model validators."""

    def test_defaults(self):
        settings = get_settings_for_testing()

        assert settings.subgate_env == "development"
        assert settings.is_development is True
        assert settings.sequencing_configured is False
        assert settings.get_upload_limit_bytes() == 10 * 1024 * 1024

    def test_environment_is_normalized(self):
        assert get_settings_for_testing(subgate_env="Production", cors_origins="https://a.test").is_production

    def test_unknown_environment_rejected(self):
        with pytest.raises(ValidationError):
            get_settings_for_testing(subgate_env="qa")

    @pytest.mark.parametrize("mapping", ["1:clinical", "1:clinical,2:other_index"])
    def test_valid_indexer_mapping(self, mapping):
        assert get_settings_for_testing(indexer_mapping=mapping).indexer_mapping == mapping

    @pytest.mark.parametrize("mapping", ["1", "1:clinical,", "1-clinical", "1:clinical;2:other"])
    def test_invalid_indexer_mapping(self, mapping):
        with pytest.raises(ValidationError) as exc_info:
            get_settings_for_testing(indexer_mapping=mapping)
        assert "category:index" in str(exc_info.value)

    def test_indexer_requires_url_and_mapping(self):
        with pytest.raises(ValidationError) as exc_info:
            get_settings_for_testing(indexer_enabled=True, indexer_server_url="http://indexer.test")
        assert "INDEXER_MAPPING" in str(exc_info.value)

    def test_sequencing_requires_url(self):
        with pytest.raises(ValidationError):
            get_settings_for_testing(sequencing_submission_enabled=True)

    def test_invalid_upload_limit(self):
        with pytest.raises(ValidationError):
            get_settings_for_testing(server_upload_limit="ten megabytes")

    def test_blank_identifier_column(self):
        settings = get_settings_for_testing(
            sequencing_submission_enabled=True,
            sequencing_submission_url="http://analysis.test",
            sequencing_submission_filename_identifier_column="  ",
        )
        assert settings.identifier_column is None
        assert settings.sequencing_configured is False


class TestCorsOrigins:
    """Tests for CORS origin parsing."""

    def test_origins_are_split(self):
        settings = get_settings_for_testing(cors_origins="https://a.test, https://b.test")
        assert settings.get_cors_origins() == ["https://a.test", "https://b.test"]

    def test_wildcard_rejected_in_production(self):
        settings = get_settings_for_testing(subgate_env="production", cors_origins="*")
        with pytest.raises(ValueError):
            settings.get_cors_origins()
