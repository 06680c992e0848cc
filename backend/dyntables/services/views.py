"""Pure transforms from flat record lists to view-specific shapes."""

from __future__ import annotations

import math
from collections import defaultdict
from datetime import date, datetime, timezone
from typing import Any, Callable, Iterable, Mapping

# purpose: kanban, tree, gantt, dropdown, breadcrumb and chart shapes
# inputs: list of record dicts already fetched by the query service
# status: active

NO_STATUS = "No Status"


def _key(value: Any) -> Any:
    if value is None:
        return None
    if isinstance(value, (dict, list)):
        return repr(value)
    return str(value)


def build_kanban(records: Iterable[Mapping[str, Any]], status_column: str) -> list[dict]:
    """Bucket records by ``status_column`` in first-seen order."""

    boards: dict[Any, dict] = {}
    for record in records:
        status = record.get(status_column)
        if status is None or status == "":
            status = NO_STATUS
        board = boards.setdefault(_key(status), {"status": status, "records": [], "count": 0})
        board["records"].append(dict(record))
        board["count"] += 1
    return list(boards.values())


def build_tree(
    records: Iterable[Mapping[str, Any]],
    parent_column: str,
    label_column: str,
    root_value: Any = None,
    max_depth: int = 10,
) -> list[dict]:
    """Nest records under their parents, never deeper than ``max_depth`` levels."""

    by_parent: dict[Any, list[Mapping[str, Any]]] = defaultdict(list)
    for record in records:
        by_parent[_key(record.get(parent_column))].append(record)

    def children(parent: Any, depth: int) -> list[dict]:
        if depth >= max_depth:
            return []
        return [
            {
                **record,
                "label": record.get(label_column),
                "children": children(_key(record.get("id")), depth + 1),
            }
            for record in by_parent.get(parent, [])
        ]

    return children(_key(root_value), 0)


def _as_datetime(value: Any) -> datetime | None:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, date):
        parsed = datetime(value.year, value.month, value.day)
    else:
        text = str(value).strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            return None
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


def _as_progress(value: Any) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return 0.0


def _duration_days(start: datetime | None, end: datetime | None) -> int | None:
    if start is None or end is None:
        return None
    return math.ceil(abs((end - start).total_seconds()) / 86400)


def build_gantt(
    records: Iterable[Mapping[str, Any]],
    *,
    task_name_column: str,
    start_date_column: str,
    end_date_column: str,
    progress_column: str | None = None,
    dependency_column: str | None = None,
    category_column: str | None = None,
    assignee_column: str | None = None,
    status_column: str | None = None,
    date_range: tuple[Any, Any] | None = None,
) -> dict:
    """Turn records into gantt tasks plus timeline statistics."""

    consumed = {"id", task_name_column, start_date_column, end_date_column}
    tasks = []
    for record in records:
        start = _as_datetime(record.get(start_date_column))
        end = _as_datetime(record.get(end_date_column))
        task: dict[str, Any] = {
            "id": record.get("id"),
            "name": record.get(task_name_column),
            "start": start.isoformat() if start else None,
            "end": end.isoformat() if end else None,
            "duration": _duration_days(start, end),
        }
        if progress_column:
            task["progress"] = _as_progress(record.get(progress_column))
        if dependency_column:
            dependencies = record.get(dependency_column)
            if dependencies is None or dependencies == "":
                task["dependencies"] = []
            elif isinstance(dependencies, list):
                task["dependencies"] = dependencies
            else:
                task["dependencies"] = [dependencies]
        if category_column:
            task["category"] = record.get(category_column)
        if assignee_column:
            task["assignee"] = record.get(assignee_column)
        if status_column:
            task["status"] = record.get(status_column)
        for name, value in record.items():
            if name not in consumed:
                task.setdefault(name, value)
        tasks.append((task, start, end))

    if date_range is not None:
        range_start, range_end = (_as_datetime(bound) for bound in date_range)
        tasks = [
            entry
            for entry in tasks
            if entry[1] is not None
            and entry[2] is not None
            and entry[1] <= range_end
            and entry[2] >= range_start
        ]

    starts = [start for _, start, _ in tasks if start is not None]
    ends = [end for _, _, end in tasks if end is not None]
    durations = [task["duration"] for task, _, _ in tasks if task["duration"] is not None]
    progress = [_as_progress(task.get("progress")) for task, _, _ in tasks] if progress_column else []
    project_start = min(starts) if starts else None
    project_end = max(ends) if ends else None

    timeline: dict[str, Any] = {
        "project_start": project_start.isoformat() if project_start else None,
        "project_end": project_end.isoformat() if project_end else None,
        "total_duration": _duration_days(project_start, project_end) or 0,
        "tasks_count": len(tasks),
        "average_task_duration": round(sum(durations) / len(durations)) if durations else 0,
        "completed_tasks": sum(1 for value in progress if value >= 100),
        "in_progress_tasks": sum(1 for value in progress if 0 < value < 100),
        "not_started_tasks": sum(1 for value in progress if value <= 0),
    }
    grouping = status_column or category_column
    if grouping:
        counts: dict[str, int] = {}
        for task, _, _ in tasks:
            bucket = task.get("status" if status_column else "category")
            label = NO_STATUS if bucket is None or bucket == "" else str(bucket)
            counts[label] = counts.get(label, 0) + 1
        timeline["status_counts"] = counts

    return {"tasks": [task for task, _, _ in tasks], "timeline": timeline, "total": len(tasks)}


def _blank(value: Any) -> bool:
    return value is None or value == ""


def build_dropdown(
    records: Iterable[Mapping[str, Any]],
    label: str,
    value: str,
    *,
    group_by: str | None = None,
    include_empty: bool = False,
    distinct: bool = True,
    limit: int = 100,
    order_by_label: bool = True,
) -> dict:
    """Build dropdown options: drop blanks, dedupe, order and cut to ``limit``."""

    options = []
    seen = set()
    for record in records:
        option = {"label": record.get(label), "value": record.get(value)}
        if group_by:
            option["group"] = record.get(group_by)
        if not include_empty and (_blank(option["label"]) or _blank(option["value"])):
            continue
        if distinct:
            marker = (_key(option["label"]), _key(option["value"]))
            if marker in seen:
                continue
            seen.add(marker)
        options.append(option)

    if group_by:
        options.sort(key=lambda item: ("" if item.get("group") is None else str(item["group"]),
                                       "" if item["label"] is None else str(item["label"])))
    elif order_by_label:
        options.sort(key=lambda item: "" if item["label"] is None else str(item["label"]))

    return {"options": options[:limit], "total": min(len(options), limit), "has_more": len(options) > limit}


def walk_breadcrumb(
    fetch: Callable[[Any], Mapping[str, Any] | None],
    start_id: Any,
    label_column: str,
    value_column: str,
    parent_column: str,
    max_depth: int = 50,
    direction: str = "root_to_current",
) -> dict:
    """Follow parent pointers from ``start_id``; stops on cycles and at ``max_depth``."""

    trail = []
    visited = set()
    current = start_id
    while current is not None and len(trail) < max_depth and _key(current) not in visited:
        visited.add(_key(current))
        record = fetch(current)
        if record is None:
            break
        trail.append(
            {
                "label": "" if record.get(label_column) is None else str(record.get(label_column)),
                "value": "" if record.get(value_column) is None else str(record.get(value_column)),
            }
        )
        current = record.get(parent_column)
    if direction == "root_to_current":
        trail.reverse()
    return {"breadcrumb": trail, "depth": len(trail)}


def build_chart_series(
    rows: Iterable[Mapping[str, Any]],
    chart_type: str,
    y_label: str,
    grouped: bool = False,
) -> dict:
    """Shape ``x_value``/``y_value``/``series`` rows into labels and datasets."""

    rows = list(rows)
    labels = list(dict.fromkeys(_chart_label(row.get("x_value")) for row in rows))
    if chart_type == "pie" or not grouped:
        values = {}
        for row in rows:
            label = _chart_label(row.get("x_value"))
            values[label] = values.get(label, 0) + _number(row.get("y_value"))
        return {"labels": labels, "datasets": [{"label": y_label, "data": [values[label] for label in labels]}]}

    series: dict[str, dict[str, float]] = {}
    for row in rows:
        name = _chart_label(row.get("series"))
        series.setdefault(name, {})[_chart_label(row.get("x_value"))] = _number(row.get("y_value"))
    datasets = [
        {"label": name, "data": [points.get(label, 0) for label in labels]}
        for name, points in series.items()
    ]
    return {"labels": labels, "datasets": datasets}


def _chart_label(value: Any) -> str:
    if value is None:
        return "null"
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    return str(value)


def _number(value: Any) -> float:
    if value is None:
        return 0
    try:
        return float(value)
    except (TypeError, ValueError):
        return 0
