import uuid

from dyntables import permissions
from .conftest import client, db_session, session_headers, column, create_table


def test_other_users_see_nothing_until_shared(client):
    owner = session_headers()
    create_table(client, owner, "secrets", [column("value")])
    record = client.post("/api/records/secrets", json={"value": "x"}, headers=owner).json()

    stranger = session_headers(tenant_id=owner["X-Tenant-Id"])
    assert client.get("/api/schemas/secrets", headers=stranger).status_code == 404
    assert client.get("/api/schemas", headers=stranger).json() == []
    assert client.get(f"/api/records/secrets/{record['id']}", headers=stranger).status_code == 404
    assert client.post("/api/records/secrets/query/table", json={}, headers=stranger).status_code == 404

    other_tenant = session_headers(user_id=owner["X-User-Id"])
    assert client.get("/api/schemas/secrets", headers=other_tenant).status_code == 404


def test_viewer_can_read_but_not_write(client):
    owner = session_headers()
    create_table(client, owner, "docs", [column("body")])
    record = client.post("/api/records/docs", json={"body": "x"}, headers=owner).json()

    viewer = session_headers(tenant_id=owner["X-Tenant-Id"])
    shared = client.post("/api/schemas/docs/share", json={"user_id": viewer["X-User-Id"]}, headers=owner)
    assert shared.status_code == 200, shared.text

    assert client.get("/api/schemas/docs", headers=viewer).status_code == 200
    assert client.get("/api/records/docs", headers=viewer).json()["total"] == 1
    assert client.post("/api/records/docs", json={"body": "y"}, headers=viewer).status_code == 403
    assert client.put(f"/api/records/docs/{record['id']}", json={"body": "y"}, headers=viewer).status_code == 403
    assert client.delete(f"/api/records/docs/{record['id']}", headers=viewer).status_code == 403
    assert client.put("/api/schemas/docs", json={"label": "Mine"}, headers=viewer).status_code == 403
    assert client.delete("/api/schemas/docs", headers=viewer).status_code == 403
    assert (
        client.post("/api/schemas/docs/share", json={"user_id": str(uuid.uuid4())}, headers=viewer).status_code == 403
    )


def test_editor_can_write_records_and_sharing_with_everyone(client):
    owner = session_headers()
    create_table(client, owner, "wiki", [column("body")])
    editor = session_headers(tenant_id=owner["X-Tenant-Id"])
    client.post("/api/schemas/wiki/share", json={"user_id": editor["X-User-Id"], "relation": "editor"}, headers=owner)
    resp = client.post("/api/records/wiki", json={"body": "hello"}, headers=editor)
    assert resp.status_code == 201

    anyone = session_headers(tenant_id=owner["X-Tenant-Id"])
    assert client.get("/api/schemas/wiki", headers=anyone).status_code == 404
    client.post("/api/schemas/wiki/share", json={"user_id": "*"}, headers=owner)
    assert client.get("/api/schemas/wiki", headers=anyone).status_code == 200

    bad = client.post("/api/schemas/wiki/share", json={"user_id": editor["X-User-Id"], "relation": "owner"}, headers=owner)
    assert bad.status_code == 400


def test_permission_ladder(db_session):
    tenant = str(uuid.uuid4())
    subject = permissions.user_subject("u1")
    obj = permissions.schema_object("s1")
    permissions.grant(db_session, tenant, subject, "editor", obj)
    db_session.commit()
    assert permissions.check_permission(db_session, tenant, subject, "viewer", obj)
    assert permissions.check_permission(db_session, tenant, subject, "editor", obj)
    assert not permissions.check_permission(db_session, tenant, subject, "admin", obj)
    assert not permissions.check_permission(db_session, tenant, subject, "superuser", obj)
    assert not permissions.check_permission(db_session, str(uuid.uuid4()), subject, "viewer", obj)


def test_revoke_by_prefix_only_touches_matching_objects(db_session):
    tenant = str(uuid.uuid4())
    subject = permissions.user_subject("u1")
    permissions.grant(db_session, tenant, subject, "owner", permissions.record_object("s_1", "r1"))
    permissions.grant(db_session, tenant, subject, "owner", permissions.record_object("s_1", "r2"))
    permissions.grant(db_session, tenant, subject, "owner", permissions.record_object("sx1", "r3"))
    db_session.commit()
    removed = permissions.revoke_object(db_session, tenant, permissions.record_prefix("s_1"), prefix=True)
    db_session.commit()
    assert removed == 2
    assert permissions.check_permission(
        db_session, tenant, subject, "viewer", permissions.record_object("sx1", "r3")
    )
