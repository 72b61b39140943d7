import os
import tempfile
from uuid import uuid4

# Settings are read at import time; point the metadata store at a scratch file
# and make sure no real provider keys leak into the tests.
_TMP_DIR = tempfile.mkdtemp(prefix="ares-tests-")
os.environ["METADATA_DB_PATH"] = os.path.join(_TMP_DIR, "meta.sqlite")
os.environ["OPENAI_API_KEY"] = ""
os.environ["GEMINI_API_KEY"] = ""
os.environ.pop("ADMIN_EMAIL", None)

import pytest
from fastapi.testclient import TestClient

from ares.main import app
from ares.models import Base, PodAccess, SessionLocal, User, engine_meta, init_db


@pytest.fixture(autouse=True)
def fresh_db():
    Base.metadata.drop_all(bind=engine_meta)
    init_db()
    yield


@pytest.fixture
def client():
    with TestClient(app) as c:
        yield c


@pytest.fixture
def make_org(client):
    """Create an organization through the API and return the JSON response."""

    def _make(account_type: str = "INDIVIDUAL", name: str = "Acme Analytics"):
        email = f"{uuid4().hex[:8]}@example.com"
        r = client.post(
            "/api/orgs",
            json={"name": name, "accountType": account_type, "adminName": "Ada", "adminEmail": email},
        )
        assert r.status_code == 200, r.text
        return r.json()

    return _make


@pytest.fixture
def make_pod(client):
    def _make(admin_id: str, name: str = "Sales"):
        r = client.post("/api/pods", params={"actorId": admin_id}, json={"name": name})
        assert r.status_code == 200, r.text
        pods = r.json()["pods"]
        return [p for p in pods if p["name"] == name][-1]

    return _make


@pytest.fixture
def add_member():
    """Insert a non-admin user into an org, optionally with a pod role."""

    def _add(org_id: str, pod_id: str | None = None, role: str | None = None) -> str:
        db = SessionLocal()
        try:
            uid = str(uuid4())
            db.add(User(id=uid, org_id=org_id, name="Member", email=f"{uid[:8]}@example.com", role="member"))
            if pod_id and role:
                db.add(PodAccess(id=str(uuid4()), user_id=uid, pod_id=pod_id, role=role))
            db.commit()
            return uid
        finally:
            db.close()

    return _add
