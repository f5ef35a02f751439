"""Fill JSON payload templates with record values.

Templates are JSON files containing ``{{ field }}`` placeholders. Bundled
templates live in ``subgate/templates``; a deployment can point
``SEQUENCING_TEMPLATE_DIR`` at its own directory.
"""

from __future__ import annotations

import json
import logging
import re
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

from subgate.exceptions import TemplateError

LOGGER = logging.getLogger("subgate.populate_template")

TEMPLATE_DIR = Path(__file__).resolve().parent / "templates"
PLACEHOLDER_PATTERN = re.compile(r"{{(.*?)}}")


@lru_cache(maxsize=32)
def _read_template(path: str) -> str:
    return Path(path).read_text(encoding="utf-8")


def load_template(template_name: str, template_dir: Optional[str] = None) -> str:
    """Return the raw text of a named template.

    Raises:
        TemplateError: If the template does not exist
    """
    directory = Path(template_dir) if template_dir else TEMPLATE_DIR
    path = directory / template_name
    if not path.is_file():
        raise TemplateError(f"Template '{template_name}' not found in {directory}")
    return _read_template(str(path))


def _escape(value: Any) -> str:
    # Values land inside JSON string literals
    return json.dumps("" if value is None else str(value))[1:-1]


def fill_template(template: str, record: Mapping[str, Any]) -> str:
    """Substitute every placeholder; unknown keys become ''."""
    return PLACEHOLDER_PATTERN.sub(lambda m: _escape(record.get(m.group(1).strip(), "")), template)


def convert_record_to_payload(
    record: Mapping[str, Any],
    template_name: str,
    template_dir: Optional[str] = None,
) -> Dict[str, Any]:
    """Convert a record into a service payload using a template.

    Args:
        record: Flat mapping of placeholder keys to values
        template_name: Template file name, e.g. ``sequencing_payload.json``
        template_dir: Optional directory overriding the bundled templates

    Returns:
        The parsed payload

    Raises:
        TemplateError: If the filled template is not valid JSON
    """
    filled = fill_template(load_template(template_name, template_dir), record)
    try:
        return json.loads(filled)
    except ValueError as e:
        LOGGER.error("Template '%s' produced invalid JSON: %s", template_name, e)
        raise TemplateError(f"Invalid JSON after template fill: {e}") from e


def prefix_keys(record: Mapping[str, Any], prefix: str) -> Dict[str, Any]:
    """Return a copy of a flat mapping with every key prefixed."""
    return {f"{prefix}{key}": value for key, value in record.items()}
