"""Dictionary schemas supplied by the submission registry.

A dictionary groups one schema per entity type. Each schema field has a
canonical name, an optional display name used as the column header in
uploaded files, and a required flag.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

LOGGER = logging.getLogger("subgate.schema")


@dataclass(frozen=True)
class SchemaField:
    """A single field of an entity schema."""
    name: str  # Canonical field name
    display_name: Optional[str] = None  # Column header shown to submitters
    required: bool = False

    @property
    def label(self) -> str:
        """Header label expected in uploaded files (display name preferred)."""
        return self.display_name or self.name

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SchemaField":
        """Build a field from the registry's dictionary JSON.

        ``restrictions.required`` marks a field as required when the key is
        present and not explicitly false.
        """
        meta = data.get("meta") or {}
        restrictions = data.get("restrictions") or {}
        display_name = meta.get("displayName")
        if "required" in restrictions:
            required = restrictions.get("required") is not False
        else:
            required = bool(data.get("required", False))
        return cls(
            name=data["name"],
            display_name=str(display_name) if display_name else None,
            required=required,
        )


@dataclass(frozen=True)
class FieldNameLookup:
    """Bidirectional header/field-name map built once per schema."""
    display_to_name: Dict[str, str]
    name_to_label: Dict[str, str]

    def canonical(self, header: str) -> str:
        """Map a header (display name or canonical name) to the canonical name."""
        return self.display_to_name.get(header, header)

    def label(self, name: str) -> str:
        """Map a canonical field name to its header label."""
        return self.name_to_label.get(name, name)


@dataclass(frozen=True)
class Schema:
    """Entity schema from a registry dictionary."""
    name: str
    fields: Tuple[SchemaField, ...] = ()
    description: Optional[str] = None
    _lookup: Dict[str, FieldNameLookup] = field(
        default_factory=dict, init=False, repr=False, compare=False, hash=False
    )

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Schema":
        """Build a schema from the registry's dictionary JSON."""
        return cls(
            name=data["name"],
            fields=tuple(SchemaField.from_dict(f) for f in data.get("fields", [])),
            description=data.get("description"),
        )

    @property
    def field_names(self) -> List[str]:
        return [f.name for f in self.fields]

    def has_field(self, name: str) -> bool:
        """True if the schema defines a field with this canonical name."""
        return any(f.name == name for f in self.fields)

    def required_field_labels(self) -> List[str]:
        """Header labels of required fields (display name preferred over name)."""
        return [f.label for f in self.fields if f.required]

    @property
    def lookup(self) -> FieldNameLookup:
        """Header lookup for this schema, computed on first use."""
        cached = self._lookup.get("lookup")
        if cached is None:
            cached = FieldNameLookup(
                display_to_name={f.label: f.name for f in self.fields},
                name_to_label={f.name: f.label for f in self.fields},
            )
            self._lookup["lookup"] = cached
        return cached


@dataclass(frozen=True)
class Dictionary:
    """A versioned set of entity schemas for one category."""
    name: str
    version: str
    schemas: Tuple[Schema, ...] = ()

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Dictionary":
        """Build a dictionary from the registry's JSON.

        Accepts either ``{"dictionary": [...]}`` or ``{"schemas": [...]}``.
        """
        schemas = data.get("dictionary")
        if schemas is None:
            schemas = data.get("schemas", [])
        return cls(
            name=data.get("name", ""),
            version=str(data.get("version", "")),
            schemas=tuple(Schema.from_dict(s) for s in schemas),
        )

    def find_schema(self, entity_name: str) -> Optional[Schema]:
        """Find a schema by entity name (case-insensitive)."""
        if not entity_name:
            return None
        wanted = entity_name.lower()
        for schema in self.schemas:
            if schema.name.lower() == wanted:
                return schema
        LOGGER.debug("No schema named '%s' in dictionary %s", entity_name, self.name)
        return None
