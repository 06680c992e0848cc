import os
os.environ["TESTING"] = "1"
os.environ["DATABASE_URL"] = "sqlite:///./test_dyntables.db"
import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import sessionmaker

import sys
from pathlib import Path

import uuid

sys.path.append(str(Path(__file__).resolve().parents[2]))

Path("test_dyntables.db").unlink(missing_ok=True)

from dyntables.main import app
from dyntables.database import Base, engine, get_db

TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base.metadata.drop_all(bind=engine)
Base.metadata.create_all(bind=engine)

def override_get_db():
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()

app.dependency_overrides[get_db] = override_get_db


@pytest.fixture
def client():
    with TestClient(app) as c:
        yield c


@pytest.fixture
def db_session():
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()


def session_headers(tenant_id: str | None = None, user_id: str | None = None):
    """
    purpose: identity headers the upstream gateway would forward
    outputs: dict with X-Tenant-Id and X-User-Id, fresh ids unless given
    """

    return {
        "X-Tenant-Id": tenant_id or str(uuid.uuid4()),
        "X-User-Id": user_id or str(uuid.uuid4()),
    }


def column(name: str, data_type: str = "text", view_type: str = "text", view_editor: str = "input", **extra):
    return {"name": name, "data_type": data_type, "view_type": view_type, "view_editor": view_editor, **extra}


def create_table(client, headers, slug: str, columns: list[dict], **extra):
    payload = {"slug": slug, "label": slug.title(), "description": f"{slug} table", "columns": columns, **extra}
    resp = client.post("/api/schemas", json=payload, headers=headers)
    assert resp.status_code == 201, resp.text
    return resp.json()
