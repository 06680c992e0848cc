"""Classify requested column identifiers.

``parse_columns`` turns the column list of a query request into
``ParsedColumn`` entries the compiler can render. Plain names pass through,
``base.path`` on a relation column follows the relation, and ``base.path`` on
any other column traverses the stored JSON value.
"""

from __future__ import annotations

from dataclasses import dataclass

from ..catalog import JSON_TYPES, SYSTEM_COLUMNS
from ..errors import ValidationError
from ..schemas import ColumnDefinition

STANDARD = "standard"
RELATION = "relation"
JSON_PATH = "json_path"


@dataclass(frozen=True)
class RelationInfo:
    target_table: str
    target_field: str
    display_path: tuple[str, ...]


@dataclass(frozen=True)
class ParsedColumn:
    original: str
    column: str
    alias: str
    kind: str = STANDARD
    json_path: tuple[str | int, ...] = ()
    relation: RelationInfo | None = None


def _dedupe(names) -> list[str]:
    return list(dict.fromkeys(names))


def _path_segments(path: str) -> tuple[str | int, ...]:
    segments = path.split(".")
    if any(not segment for segment in segments):
        raise ValidationError(f"Invalid column path: {path}")
    return tuple(int(segment) if segment.isdigit() else segment for segment in segments)


def parse_column(spec: str, columns: list[ColumnDefinition]) -> ParsedColumn:
    """Classify one identifier against the declared columns."""

    declared = {column.name: column for column in columns}
    base, dot, path = spec.partition(".")
    if base not in declared and base not in SYSTEM_COLUMNS:
        raise ValidationError(f"Unknown column '{base}'")
    if not dot:
        return ParsedColumn(spec, spec, spec)

    column = declared.get(base)
    if column is not None and column.is_relation and column.relation_setting is not None:
        setting = column.relation_setting
        display = path or setting.display_column
        if any(not part for part in display.split(".")):
            raise ValidationError(f"Invalid column path: {spec}")
        return ParsedColumn(
            spec,
            base,
            spec,
            RELATION,
            relation=RelationInfo(setting.target_table, setting.target_column, tuple(display.split("."))),
        )
    if column is None or column.data_type not in JSON_TYPES:
        raise ValidationError(f"Column '{base}' does not support path traversal")
    return ParsedColumn(spec, base, spec, JSON_PATH, json_path=_path_segments(path))


def parse_columns(
    requested: list[str],
    columns: list[ColumnDefinition],
    mandatory: tuple[str, ...] | list[str] = (),
) -> list[ParsedColumn]:
    """Expand and classify the requested column list.

    ``*`` anywhere in ``requested`` selects every system and declared column.
    System columns always come first, followed by ``mandatory`` entries and
    then the request, each name kept once in first-seen order.
    """

    if "*" in requested:
        names = _dedupe([*SYSTEM_COLUMNS, *(column.name for column in columns), *mandatory])
    else:
        names = _dedupe([*SYSTEM_COLUMNS, *mandatory, *requested])
    return [parse_column(name, columns) for name in names]
