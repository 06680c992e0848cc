import pytest

from dyntables.catalog import SYSTEM_COLUMNS
from dyntables.errors import ValidationError
from dyntables.schemas import ColumnDefinition
from dyntables.services.column_parser import JSON_PATH, RELATION, STANDARD, parse_columns

COLUMNS = [
    ColumnDefinition(name="name", data_type="text", view_type="text", view_editor="input"),
    ColumnDefinition(name="meta", data_type="jsonb", view_type="json", view_editor="json_editor"),
    ColumnDefinition(
        name="owner",
        data_type="uuid",
        view_type="relation",
        view_editor="select",
        is_relation=True,
        relation_setting={"target_table": "people", "display_column": "full_name"},
    ),
]


def test_star_returns_full_set_without_duplicates():
    expected = [*SYSTEM_COLUMNS, "name", "meta", "owner"]
    for requested in (["*"], ["name", "*"], ["*", "id", "name"]):
        parsed = parse_columns(requested, COLUMNS)
        assert [p.column for p in parsed] == expected
        assert all(p.kind == STANDARD for p in parsed)


def test_system_and_mandatory_columns_come_first():
    parsed = parse_columns(["name", "id"], COLUMNS, mandatory=["owner"])
    assert [p.alias for p in parsed] == [*SYSTEM_COLUMNS, "owner", "name"]


def test_dotted_relation_and_json_path():
    parsed = {p.original: p for p in parse_columns(["owner.email", "owner.", "meta.tags.0"], COLUMNS)}
    relation = parsed["owner.email"]
    assert relation.kind == RELATION
    assert relation.relation.target_table == "people"
    assert relation.relation.target_field == "id"
    assert relation.relation.display_path == ("email",)
    assert parsed["owner."].relation.display_path == ("full_name",)
    json_path = parsed["meta.tags.0"]
    assert json_path.kind == JSON_PATH
    assert json_path.column == "meta"
    assert json_path.json_path == ("tags", 0)


def test_unknown_columns_fail_fast():
    with pytest.raises(ValidationError, match="Unknown column"):
        parse_columns(["nope"], COLUMNS)
    with pytest.raises(ValidationError, match="path traversal"):
        parse_columns(["name.first"], COLUMNS)
