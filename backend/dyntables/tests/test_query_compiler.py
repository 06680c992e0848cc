import pytest
import sqlalchemy as sa
from sqlalchemy.dialects import sqlite

from dyntables import models
from dyntables.database import build_engine
from dyntables.errors import ValidationError
from dyntables.schemas import ColumnDefinition, SortSpec
from dyntables.services.column_parser import parse_columns
from dyntables.services.ddl import build_table
from dyntables.services.query_compiler import (
    BATCH,
    SUBQUERY,
    QueryCompiler,
    choose_relation_strategy,
    compile_count,
    compile_select,
    hidden_key_label,
)
from dyntables.services.tables import TableRef, TableResolver

PEOPLE = [ColumnDefinition(name="full_name", data_type="text", view_type="text", view_editor="input")]
TASKS = [
    ColumnDefinition(name="title", data_type="text", view_type="text", view_editor="input"),
    ColumnDefinition(name="score", data_type="int", view_type="number", view_editor="input"),
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


@pytest.fixture
def compiler():
    engine = build_engine("sqlite://")
    people = models.TableSchema(slug="people", columns=[c.model_dump(mode="json") for c in PEOPLE])
    resolver = TableResolver(engine, "t1", lambda slug: people if slug == "people" else None)
    table = build_table(TableRef(None, "company_t1__tasks"), TASKS, "sqlite")
    return QueryCompiler(table, TASKS, resolver)


def _sql(statement):
    return str(statement.compile(dialect=sqlite.dialect()))


def test_choose_relation_strategy():
    assert choose_relation_strategy(50, "auto") == SUBQUERY
    assert choose_relation_strategy(500, "auto") == BATCH
    assert choose_relation_strategy(500, SUBQUERY) == SUBQUERY


def test_filter_values_are_bound_parameters(compiler):
    hostile = "x'; DROP TABLE tasks; --"
    compiled = compiler.compile(parse_columns(["*"], TASKS), filters={"title": hostile}, limit=10)
    sql = compiled.select.compile(dialect=sqlite.dialect())
    assert "DROP TABLE" not in str(sql)
    assert hostile in sql.params.values()


def test_search_uses_one_parameter_for_all_text_columns(compiler):
    compiled = compiler.compile(parse_columns(["title"], TASKS), search="50%_off")
    sql = compiled.select.compile(dialect=sqlite.dialect())
    assert sql.params["search_term"] == "%50/%/_off%"
    assert "ESCAPE" in str(sql)


def test_count_shares_filters_without_paging(compiler):
    compiled = compiler.compile(parse_columns(["*"], TASKS), filters={"score": "3"}, limit=5, offset=10)
    count_sql = _sql(compiled.count)
    assert "count(*)" in count_sql
    assert "LIMIT" not in count_sql
    assert "score" in count_sql
    assert "LIMIT" in _sql(compiled.select)


def test_default_sort_is_newest_first(compiler):
    compiled = compiler.compile(parse_columns(["title"], TASKS))
    assert "ORDER BY company_t1__tasks.created_at DESC" in _sql(compiled.select)
    compiled = compiler.compile(parse_columns(["title"], TASKS), sort=[SortSpec(field="score", direction="asc")])
    assert "ORDER BY company_t1__tasks.score ASC" in _sql(compiled.select)


def test_relation_column_strategies(compiler):
    parsed = parse_columns(["owner.full_name"], TASKS)
    subquery = compiler.compile(parsed, strategy=SUBQUERY)
    assert subquery.deferred_relations == []
    assert "company_t1__people" in _sql(subquery.select)

    batch = compiler.compile(parsed, strategy=BATCH)
    assert [p.alias for p in batch.deferred_relations] == ["owner.full_name"]
    assert hidden_key_label("owner.full_name") in [c.name for c in batch.select.selected_columns]


def test_json_path_filter(compiler):
    clauses = compiler.where_clauses({"meta.flags.active": True}, None)
    assert len(clauses) == 1


def test_unknown_relation_target_and_filter_column(compiler):
    with pytest.raises(ValidationError):
        compiler.where_clauses({"missing": 1}, None)
    with pytest.raises(ValidationError):
        compiler.where_clauses({"score": "three"}, None)


def test_compile_count_helper():
    table = build_table(TableRef(None, "company_t1__tasks"), TASKS, "sqlite")
    sql = _sql(compile_count(table, TASKS, filters={"title": "a"}))
    assert sql.startswith("SELECT count(*)")


def test_compile_select_helper(compiler):
    compiled = compile_select(
        compiler.table,
        parse_columns(["title", "meta.tags.0"], TASKS),
        TASKS,
        compiler.tables,
        filters={"title": "a"},
        limit=7,
    )
    assert "meta.tags.0" in [c.name for c in compiled.select.selected_columns]
    assert compiled.deferred_relations == []
