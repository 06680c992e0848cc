import json
import uuid

from .conftest import client, session_headers, column, create_table

COLUMNS = [
    column("title", nullable=False),
    column("status"),
    column("amount", "decimal", "number"),
    column("done", "boolean", "boolean", "checkbox", default=False),
]


def _setup(client):
    headers = session_headers()
    create_table(client, headers, "tasks", COLUMNS)
    return headers


def test_record_crud(client):
    headers = _setup(client)
    resp = client.post("/api/records/tasks", json={"title": "write docs", "status": "open"}, headers=headers)
    assert resp.status_code == 201, resp.text
    record = resp.json()
    assert record["title"] == "write docs"
    assert record["done"] is False
    assert record["created_by"] == headers["X-User-Id"]
    record_id = record["id"]

    fetched = client.get(f"/api/records/tasks/{record_id}", headers=headers)
    assert fetched.status_code == 200
    assert fetched.json()["status"] == "open"

    updated = client.put(f"/api/records/tasks/{record_id}", json={"status": "done", "done": True}, headers=headers)
    assert updated.status_code == 200, updated.text
    assert updated.json()["status"] == "done"
    assert updated.json()["title"] == "write docs"

    assert client.delete(f"/api/records/tasks/{record_id}", headers=headers).status_code == 204
    assert client.get(f"/api/records/tasks/{record_id}", headers=headers).status_code == 404
    assert client.get("/api/records/tasks/not-a-uuid", headers=headers).status_code == 404


def test_record_validation_errors(client):
    headers = _setup(client)
    assert client.post("/api/records/tasks", json={"status": "open"}, headers=headers).status_code == 400
    assert client.post("/api/records/tasks", json={"title": "a", "colour": "red"}, headers=headers).status_code == 400
    assert client.post("/api/records/tasks", json={"title": "a", "amount": "lots"}, headers=headers).status_code == 400
    assert client.post("/api/records/tasks", json={"title": "a", "id": str(uuid.uuid4())}, headers=headers).status_code == 400

    record = client.post("/api/records/tasks", json={"title": "a"}, headers=headers).json()
    resp = client.put(f"/api/records/tasks/{record['id']}", json={}, headers=headers)
    assert resp.status_code == 400
    assert resp.json()["detail"] == "No fields to update"
    resp = client.put(f"/api/records/tasks/{record['id']}", json={"title": None}, headers=headers)
    assert resp.status_code == 400


def test_batch_insert_reports_failed_items(client):
    headers = _setup(client)
    resp = client.post(
        "/api/records/tasks/batch",
        json={"records": [{"title": "one"}, {"amount": 5}, {"title": "three", "done": "yes"}]},
        headers=headers,
    )
    assert resp.status_code == 201, resp.text
    body = resp.json()
    assert body["total"] == 2
    assert [r["title"] for r in body["records"]] == ["one", "three"]
    assert [e["index"] for e in body["errors"]] == [1]
    assert "required" in body["errors"][0]["error"]

    listing = client.get("/api/records/tasks", headers=headers).json()
    assert listing["total"] == 2


def test_empty_batch_is_rejected(client):
    headers = _setup(client)
    assert client.post("/api/records/tasks/batch", json={"records": []}, headers=headers).status_code == 400


def test_list_records_with_filters_search_and_order(client):
    headers = _setup(client)
    for title, status in (("alpha", "open"), ("beta", "done"), ("gamma", "open")):
        client.post("/api/records/tasks", json={"title": title, "status": status}, headers=headers)

    resp = client.get(
        "/api/records/tasks",
        params={"filters": json.dumps({"status": "open"}), "order_by": "title", "order_direction": "asc"},
        headers=headers,
    )
    assert resp.status_code == 200, resp.text
    body = resp.json()
    assert body["total"] == 2
    assert [r["title"] for r in body["records"]] == ["alpha", "gamma"]

    searched = client.get("/api/records/tasks", params={"search": "ET"}, headers=headers).json()
    assert [r["title"] for r in searched["records"]] == ["beta"]

    paged = client.get(
        "/api/records/tasks", params={"limit": 1, "offset": 1, "order_by": "title", "order_direction": "ASC"}, headers=headers
    ).json()
    assert paged["total"] == 3
    assert [r["title"] for r in paged["records"]] == ["beta"]

    assert client.get("/api/records/tasks", params={"filters": "[1]"}, headers=headers).status_code == 400
    assert client.get("/api/records/tasks", params={"filters": json.dumps({"nope": 1})}, headers=headers).status_code == 400


def test_updated_at_moves_forward(client):
    headers = _setup(client)
    record = client.post("/api/records/tasks", json={"title": "a"}, headers=headers).json()
    updated = client.put(f"/api/records/tasks/{record['id']}", json={"status": "x"}, headers=headers).json()
    assert updated["updated_at"] >= record["updated_at"]
    assert updated["created_at"] == record["created_at"]
