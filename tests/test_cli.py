"""Tests for the subgate command line."""

import json

import pytest
from typer.testing import CliRunner

from subgate import __version__
from subgate.cli import app

runner = CliRunner()

DONOR_SCHEMA_YAML = """\
name: donor
fields:
  - name: submitter_donor_id
    meta:
      displayName: Submitter Donor ID
    restrictions:
      required: true
  - name: gender
    restrictions:
      required: true
  - name: age
"""

DICTIONARY_YAML = """\
name: clinical
version: "1.0"
dictionary:
  - name: donor
    fields:
      - name: submitter_donor_id
        restrictions:
          required: true
"""


@pytest.fixture
def schema_file(tmp_path):
    path = tmp_path / "donor.yaml"
    path.write_text(DONOR_SCHEMA_YAML)
    return path


class TestVersion:
    def test_version(self):
        result = runner.invoke(app, ["version"])
        assert result.exit_code == 0
        assert __version__ in result.output


class TestValidate:
    """Tests for `subgate validate`."""

    def test_valid_file(self, tmp_path, schema_file):
        data = tmp_path / "donor.tsv"
        data.write_text("Submitter Donor ID\tgender\nD1\tfemale\n")

        result = runner.invoke(app, ["validate", str(data), "--schema", str(schema_file)])

        assert result.exit_code == 0
        assert "is valid" in result.output
        assert data.exists()

    def test_missing_header_exits_1(self, tmp_path, schema_file):
        data = tmp_path / "donor.tsv"
        data.write_text("Submitter Donor ID\nD1\n")

        result = runner.invoke(app, ["validate", str(data), "-s", str(schema_file)])

        assert result.exit_code == 1
        assert "MISSING_REQUIRED_HEADER" in result.output

    def test_edit_requires_system_id(self, tmp_path, schema_file):
        data = tmp_path / "donor.tsv"
        data.write_text("Submitter Donor ID\tgender\nD1\tfemale\n")

        result = runner.invoke(app, ["validate", str(data), "-s", str(schema_file), "--edit"])

        assert result.exit_code == 1

    def test_schema_picked_from_dictionary(self, tmp_path):
        dictionary = tmp_path / "dictionary.yaml"
        dictionary.write_text(DICTIONARY_YAML)
        data = tmp_path / "donor.csv"
        data.write_text("submitter_donor_id\nD1\n")

        result = runner.invoke(app, ["validate", str(data), "-s", str(dictionary)])

        assert result.exit_code == 0

    def test_unknown_entity_in_dictionary(self, tmp_path):
        dictionary = tmp_path / "dictionary.yaml"
        dictionary.write_text(DICTIONARY_YAML)
        data = tmp_path / "sample.csv"
        data.write_text("submitter_sample_id\nS1\n")

        result = runner.invoke(app, ["validate", str(data), "-s", str(dictionary)])

        assert result.exit_code == 1


class TestExtract:
    """Tests for `subgate extract`."""

    def test_extract_to_file_keeps_input(self, tmp_path, schema_file):
        data = tmp_path / "donor.tsv"
        data.write_text('Submitter Donor ID\tgender\n"D1"\tfemale\n')
        output = tmp_path / "records.json"

        result = runner.invoke(app, ["extract", str(data), "-s", str(schema_file), "-o", str(output)])

        assert result.exit_code == 0
        assert json.loads(output.read_text()) == [{"submitter_donor_id": "D1", "gender": "female"}]
        assert data.exists()

    def test_invalid_extension_exits_1(self, tmp_path, schema_file):
        data = tmp_path / "donor.txt"
        data.write_text("Submitter Donor ID\tgender\nD1\tfemale\n")

        result = runner.invoke(app, ["extract", str(data), "-s", str(schema_file)])

        assert result.exit_code == 1
