from datetime import date

from dyntables.services import views


def test_kanban_buckets_in_first_seen_order():
    records = [{"id": 1, "status": "done"}, {"id": 2, "status": None}, {"id": 3, "status": "done"}]
    boards = views.build_kanban(records, "status")
    assert [(b["status"], b["count"]) for b in boards] == [("done", 2), ("No Status", 1)]
    assert [r["id"] for r in boards[0]["records"]] == [1, 3]


def test_tree_respects_max_depth():
    records = [{"id": 1, "parent": None, "name": "a"}, {"id": 2, "parent": 1, "name": "b"}, {"id": 3, "parent": 2, "name": "c"}]
    shallow = views.build_tree(records, "parent", "name", max_depth=1)
    assert len(shallow) == 1
    assert shallow[0]["label"] == "a"
    assert shallow[0]["children"] == []

    full = views.build_tree(records, "parent", "name")
    assert full[0]["children"][0]["children"][0]["id"] == 3


def test_tree_matches_parent_values_by_text():
    records = [{"id": "7", "parent": None, "name": "root"}, {"id": 8, "parent": 7, "name": "leaf"}]
    tree = views.build_tree(records, "parent", "name")
    assert [child["id"] for child in tree[0]["children"]] == [8]


def test_breadcrumb_stops_on_cycles():
    rows = {"a": {"name": "A", "id": "a", "parent": "b"}, "b": {"name": "B", "id": "b", "parent": "a"}}
    result = views.walk_breadcrumb(rows.get, "a", "name", "id", "parent", max_depth=10)
    assert result["depth"] == 2
    assert [item["label"] for item in result["breadcrumb"]] == ["B", "A"]


def test_breadcrumb_directions_and_depth_cap():
    rows = {n: {"name": f"n{n}", "id": n, "parent": n - 1 if n > 1 else None} for n in range(1, 6)}
    current_first = views.walk_breadcrumb(rows.get, 5, "name", "id", "parent", direction="current_to_root")
    assert [item["value"] for item in current_first["breadcrumb"]] == ["5", "4", "3", "2", "1"]
    capped = views.walk_breadcrumb(rows.get, 5, "name", "id", "parent", max_depth=2)
    assert capped["depth"] == 2
    assert [item["label"] for item in capped["breadcrumb"]] == ["n4", "n5"]


def test_dropdown_dedupes_and_orders_by_label():
    records = [{"name": "B", "id": 2}, {"name": "A", "id": 1}, {"name": "A", "id": 1}, {"name": "", "id": 9}]
    result = views.build_dropdown(records, "name", "id")
    assert [option["label"] for option in result["options"]] == ["A", "B"]
    assert result["total"] == 2
    assert result["has_more"] is False

    limited = views.build_dropdown(records, "name", "id", include_empty=True, limit=2)
    assert limited["has_more"] is True
    assert len(limited["options"]) == 2


def test_dropdown_groups():
    records = [{"n": "b", "v": 1, "g": "y"}, {"n": "a", "v": 2, "g": "y"}, {"n": "c", "v": 3, "g": "x"}]
    result = views.build_dropdown(records, "n", "v", group_by="g")
    assert [(o["group"], o["label"]) for o in result["options"]] == [("x", "c"), ("y", "a"), ("y", "b")]


def test_gantt_tasks_and_timeline():
    records = [
        {"id": 1, "name": "design", "start": "2024-01-01", "end": "2024-01-05", "progress": 100, "owner": "ann"},
        {"id": 2, "name": "build", "start": date(2024, 1, 5), "end": date(2024, 1, 15), "progress": 40},
        {"id": 3, "name": "ship", "start": "2024-02-01", "end": "2024-02-02", "progress": 0},
    ]
    result = views.build_gantt(
        records,
        task_name_column="name",
        start_date_column="start",
        end_date_column="end",
        progress_column="progress",
    )
    first = result["tasks"][0]
    assert first["name"] == "design"
    assert first["duration"] == 4
    assert first["owner"] == "ann"
    timeline = result["timeline"]
    assert timeline["project_start"].startswith("2024-01-01")
    assert timeline["project_end"].startswith("2024-02-02")
    assert timeline["tasks_count"] == 3
    assert (timeline["completed_tasks"], timeline["in_progress_tasks"], timeline["not_started_tasks"]) == (1, 1, 1)

    january = views.build_gantt(
        records,
        task_name_column="name",
        start_date_column="start",
        end_date_column="end",
        date_range=("2024-01-10", "2024-01-31"),
    )
    assert [task["id"] for task in january["tasks"]] == [2]


def test_chart_series_grouped_and_flat():
    rows = [
        {"x_value": "jan", "series": "a", "y_value": 1},
        {"x_value": "jan", "series": "b", "y_value": 2},
        {"x_value": "feb", "series": "a", "y_value": 3},
    ]
    grouped = views.build_chart_series(rows, "bar", "count", grouped=True)
    assert grouped["labels"] == ["jan", "feb"]
    assert grouped["datasets"] == [{"label": "a", "data": [1.0, 3.0]}, {"label": "b", "data": [2.0, 0]}]

    pie = views.build_chart_series(rows, "pie", "count", grouped=True)
    assert pie["datasets"] == [{"label": "count", "data": [3.0, 3.0]}]
