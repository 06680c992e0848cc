"""Type and compatibility catalog for dynamic table columns."""

from __future__ import annotations

from .data.loaders import get_data_type_mapping
from .errors import ValidationError

# purpose: answer which view types, editors and migration targets a logical type allows
# inputs: logical data type or view type names
# outputs: frozensets drawn from data/data_type_mapping.json
# status: active

SYSTEM_COLUMNS: tuple[str, ...] = ("id", "created_at", "updated_at", "created_by")

TEXT_TYPES = frozenset({"text", "varchar", "char"})
NUMERIC_TYPES = frozenset({"int", "bigint", "decimal", "float", "double"})
TEMPORAL_TYPES = frozenset({"date", "timestamp", "timestamptz"})
JSON_TYPES = frozenset({"json", "jsonb"})


def _section(name: str) -> dict[str, tuple[str, ...]]:
    return get_data_type_mapping()[name]


def data_types() -> frozenset[str]:
    return frozenset(_section("dataTypeViewTypeMapping"))


def view_types() -> frozenset[str]:
    return frozenset(_section("viewTypeEditors"))


def allowed_view_types(data_type: str) -> frozenset[str]:
    """Return the UI view types a logical data type may be rendered with."""

    mapping = _section("dataTypeViewTypeMapping")
    if data_type not in mapping:
        raise ValidationError(f"Invalid data type: {data_type}")
    return frozenset(mapping[data_type])


def allowed_editors(view_type: str) -> frozenset[str]:
    """Return the editors a view type may be edited with."""

    mapping = _section("viewTypeEditors")
    if view_type not in mapping:
        raise ValidationError(f"Invalid view type: {view_type}")
    return frozenset(mapping[view_type])


def migration_targets(data_type: str) -> frozenset[str]:
    """Return the data types an existing column of ``data_type`` may be retyped to."""

    mapping = _section("migrationCompatibility")
    if data_type not in mapping:
        raise ValidationError(f"Invalid data type: {data_type}")
    return frozenset(mapping[data_type])


def validate_column_triple(data_type: str, view_type: str, view_editor: str) -> None:
    """Raise ``ValidationError`` unless the triple is a catalog member."""

    if view_type not in allowed_view_types(data_type):
        raise ValidationError(
            f"View type '{view_type}' is not compatible with data type '{data_type}'"
        )
    if view_editor not in allowed_editors(view_type):
        raise ValidationError(
            f"Editor '{view_editor}' is not compatible with view type '{view_type}'"
        )


def is_text_type(data_type: str) -> bool:
    return data_type in TEXT_TYPES


def is_numeric_type(data_type: str) -> bool:
    return data_type in NUMERIC_TYPES


def is_temporal_type(data_type: str) -> bool:
    return data_type in TEMPORAL_TYPES


def facet_kind(data_type: str, *, is_relation: bool = False) -> str | None:
    """Return the facet family used for a column, or None when it has none."""

    if is_relation:
        return "relation"
    if is_text_type(data_type):
        return "text"
    if is_numeric_type(data_type):
        return "number"
    if data_type == "boolean":
        return "boolean"
    if is_temporal_type(data_type):
        return "date"
    return None
