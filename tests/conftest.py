import os
from pathlib import Path
from typing import Iterator
from urllib.parse import parse_qs, urlparse

import pytest
from sqlalchemy.orm import Session, sessionmaker

# Configure settings before importing modules that read them
os.environ.setdefault("SESSION_SECRET", "test-session-secret")
os.environ["APP_BASE_URL"] = "http://localhost:8000"
os.environ["EMAIL_ENABLED"] = "0"
os.environ["RATE_LIMIT_LIMIT"] = "1000"
os.environ.pop("REDEEM_CODES", None)
os.environ.pop("DEFAULT_PLAN", None)

from fastapi.testclient import TestClient

from propass import db as propass_db
from propass import models
from propass.app import app


@pytest.fixture
def db_path(tmp_path: Path) -> Path:
    return tmp_path / "propass.sqlite3"


@pytest.fixture
def session_factory(db_path: Path) -> Iterator[sessionmaker]:
    """Sessions on a fresh file-backed SQLite database (safe across threads)."""
    engine = propass_db.get_engine(f"sqlite:///{db_path}")
    models.Base.metadata.create_all(engine)
    yield sessionmaker(bind=engine, autocommit=False, autoflush=False)
    engine.dispose()


@pytest.fixture
def db_session(session_factory: sessionmaker) -> Iterator[Session]:
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def client(db_path: Path, monkeypatch) -> Iterator[TestClient]:
    """App client bound to its own database file."""
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{db_path}")
    propass_db.reset_engine()
    with TestClient(app) as test_client:
        yield test_client
    propass_db.reset_engine()


def sign_in(test_client: TestClient, email: str) -> None:
    """Complete the magic-link flow so the client's cookie jar holds a session."""
    resp = test_client.post("/auth/request-link", json={"email": email})
    assert resp.status_code == 202, resp.text
    link = resp.json()["dev_link"]
    token = parse_qs(urlparse(link).query)["token"][0]
    callback = test_client.get("/auth/callback", params={"token": token}, follow_redirects=False)
    assert callback.status_code == 302, callback.text


@pytest.fixture
def login():
    return sign_in
