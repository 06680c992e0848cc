import uuid
from decimal import Decimal

import pytest
import sqlalchemy as sa

from dyntables import models
from dyntables.database import build_engine
from dyntables.errors import ValidationError
from dyntables.schemas import AggColumnSpec, ColumnDefinition, RelationColumnSpec
from dyntables.services import ddl, facets, query_service, resolver
from dyntables.services.column_parser import parse_column
from dyntables.services.tables import TableResolver, physical_ref

PEOPLE = [ColumnDefinition(name="full_name", data_type="text", view_type="text", view_editor="input")]
ORDERS = [
    ColumnDefinition(name="person", data_type="uuid", view_type="text", view_editor="input"),
    ColumnDefinition(name="status", data_type="text", view_type="text", view_editor="input"),
    ColumnDefinition(name="amount", data_type="decimal", view_type="number", view_editor="input"),
]

ALICE = uuid.uuid4()
BOB = uuid.uuid4()


@pytest.fixture
def env():
    engine = build_engine("sqlite://")
    catalog = {
        "people": models.TableSchema(slug="people", columns=[c.model_dump(mode="json") for c in PEOPLE]),
        "orders": models.TableSchema(slug="orders", columns=[c.model_dump(mode="json") for c in ORDERS]),
    }
    with engine.begin() as conn:
        people = ddl.create_table(conn, physical_ref(conn, "t1", "people"), PEOPLE)
        orders = ddl.create_table(conn, physical_ref(conn, "t1", "orders"), ORDERS)
        owner = uuid.uuid4()
        conn.execute(sa.insert(people).values(id=ALICE, created_by=owner, full_name="Alice"))
        conn.execute(sa.insert(people).values(id=BOB, created_by=owner, full_name="Bob"))
        for status, amount in (("open", "10.5"), ("open", "4.5"), ("done", "5")):
            conn.execute(
                sa.insert(orders).values(
                    id=uuid.uuid4(), created_by=owner, person=ALICE, status=status, amount=Decimal(amount)
                )
            )
        yield conn, TableResolver(conn, "t1", catalog.get)
    engine.dispose()


def _records():
    return [{"id": ALICE}, {"id": BOB}, {"id": None}]


def test_relation_columns_attach_foreign_rows(env):
    conn, tables = env
    records = [{"person_id": str(ALICE)}, {"person_id": str(uuid.uuid4())}, {"person_id": "not-a-uuid"}]
    spec = RelationColumnSpec(
        label="person", local_key="person_id", foreign_table="people", foreign_key="id", display_columns=["full_name"]
    )
    resolver.attach_relations(conn, records, [spec], tables)
    assert records[0]["person"]["full_name"] == "Alice"
    assert records[1]["person"] is None
    assert records[2]["person"] is None


def test_count_and_sum_aggregates_use_identity_for_unmatched(env):
    conn, tables = env
    records = _records()
    specs = [
        AggColumnSpec(label="orders", local_key="id", foreign_table="orders", foreign_key="person", function="count"),
        AggColumnSpec(
            label="spent",
            local_key="id",
            foreign_table="orders",
            foreign_key="person",
            function="sum",
            function_field="amount",
        ),
    ]
    resolver.attach_aggregates(conn, records, specs, tables)
    assert [r["orders"] for r in records] == [3, 0, 0]
    assert records[0]["spent"] == pytest.approx(20.0)
    assert records[1]["spent"] is None


def test_grouped_aggregate_returns_lists(env):
    conn, tables = env
    records = _records()
    spec = AggColumnSpec(
        label="by_status",
        local_key="id",
        foreign_table="orders",
        foreign_key="person",
        function="count",
        group_by=["status"],
    )
    resolver.attach_aggregates(conn, records, [spec], tables)
    assert sorted((g["status"], g["value"]) for g in records[0]["by_status"]) == [("done", 1), ("open", 2)]
    assert records[1]["by_status"] == []
    assert records[1]["by_status"] is not records[2]["by_status"]


def test_array_agg_decodes_on_sqlite(env):
    conn, tables = env
    records = _records()
    spec = AggColumnSpec(
        label="statuses",
        local_key="id",
        foreign_table="orders",
        foreign_key="person",
        function="array_agg",
        function_field="status",
    )
    resolver.attach_aggregates(conn, records, [spec], tables)
    assert sorted(records[0]["statuses"]) == ["done", "open", "open"]


def test_unsupported_aggregates_are_rejected(env):
    conn, tables = env
    with pytest.raises(ValidationError, match="string_agg"):
        resolver.attach_aggregates(
            conn,
            _records(),
            [
                AggColumnSpec(
                    label="s",
                    local_key="id",
                    foreign_table="orders",
                    foreign_key="person",
                    function="string_agg",
                    function_field="status",
                )
            ],
            tables,
        )
    with pytest.raises(ValidationError, match="function_field"):
        resolver.attach_aggregates(
            conn,
            _records(),
            [AggColumnSpec(label="s", local_key="id", foreign_table="orders", foreign_key="person", function="max")],
            tables,
        )


def test_unknown_foreign_table(env):
    conn, tables = env
    spec = RelationColumnSpec(
        label="x", local_key="id", foreign_table="ghosts", foreign_key="id", display_columns=["id"]
    )
    with pytest.raises(ValidationError, match="Unknown table"):
        resolver.attach_relations(conn, _records(), [spec], tables)


def test_dotted_relations_resolve_in_one_batch(env):
    conn, tables = env
    orders = tables.table("orders")
    records = [dict(row._mapping) for row in conn.execute(sa.select(orders.c.person.label("__key__person.full_name")))]
    parsed = parse_column(
        "person.full_name",
        [
            ColumnDefinition(
                name="person",
                data_type="uuid",
                view_type="relation",
                view_editor="select",
                is_relation=True,
                relation_setting={"target_table": "people"},
            )
        ],
    )
    resolver.attach_dotted_relations(conn, records, [parsed], tables)
    assert [r["person.full_name"] for r in records] == ["Alice"] * 3
    assert all("__key__person.full_name" not in r for r in records)


def test_generate_facets(env):
    conn, tables = env
    orders = tables.resolve("orders")
    result = facets.generate_facets(conn, orders.table, ["status", "amount", "created_at", "missing"], orders.columns, tables)
    assert set(result) == {"status", "amount", "created_at"}
    assert result["status"]["values"] == ["open", "done"]
    assert result["amount"]["min"] == pytest.approx(4.5)
    assert result["amount"]["count"] == 3
    assert result["created_at"]["type"] == "date"


def test_fan_out_on_in_memory_database_runs_on_the_request_connection(env):
    conn, _ = env
    orders = sa.Table(physical_ref(conn, "t1", "orders").name, sa.MetaData(), autoload_with=conn)
    jobs = {
        "total": lambda c: c.execute(sa.select(sa.func.count()).select_from(orders)).scalar_one(),
        "open": lambda c: c.execute(
            sa.select(sa.func.count()).select_from(orders).where(orders.c.status == "open")
        ).scalar_one(),
    }
    assert query_service.fan_out(conn.engine, jobs, conn) == {"total": 3, "open": 2}
