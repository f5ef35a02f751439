"""Tests for populate_template.py - payload templating."""

import json

import pytest

from subgate.exceptions import TemplateError
from subgate.populate_template import convert_record_to_payload, fill_template, load_template, prefix_keys


class TestFillTemplate:
    """Tests for fill_template."""

    def test_substitutes_trimmed_keys(self):
        assert fill_template("{{ a }}-{{b}}", {"a": "1", "b": "2"}) == "1-2"

    def test_missing_key_becomes_empty(self):
        assert fill_template('"{{ nope }}"', {}) == '""'

    def test_values_are_json_escaped(self):
        filled = fill_template('{"v": "{{ v }}"}', {"v": 'say "hi"\\'})
        assert json.loads(filled) == {"v": 'say "hi"\\'}


class TestConvertRecordToPayload:
    """Tests for convert_record_to_payload."""

    def test_bundled_sequencing_template(self):
        record = {
            "organization": "TEST-CA",
            **prefix_keys({"submitter_sample_id": "S1", "submitter_donor_id": "D1"}, "data."),
        }
        payload = convert_record_to_payload(record, "sequencing_payload.json")

        assert payload["studyId"] == "TEST-CA"
        assert payload["samples"][0]["submitterSampleId"] == "S1"
        assert payload["samples"][0]["donor"]["submitterDonorId"] == "D1"
        assert payload["samples"][0]["sampleType"] == ""
        assert payload["files"] == []

    def test_custom_template_dir(self, tmp_path):
        (tmp_path / "custom.json").write_text('{"id": "{{ id }}"}')
        assert convert_record_to_payload({"id": "X"}, "custom.json", template_dir=str(tmp_path)) == {"id": "X"}

    def test_malformed_output_raises(self, tmp_path):
        (tmp_path / "broken.json").write_text('{"id": {{ id }}}')
        with pytest.raises(TemplateError):
            convert_record_to_payload({"id": "not-a-number"}, "broken.json", template_dir=str(tmp_path))

    def test_missing_template_raises(self, tmp_path):
        with pytest.raises(TemplateError):
            load_template("absent.json", template_dir=str(tmp_path))


def test_prefix_keys():
    assert prefix_keys({"a": 1, "b": 2}, "data.") == {"data.a": 1, "data.b": 2}
