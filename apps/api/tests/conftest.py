"""
Pytest configuration for the escape proctoring API
"""
import os
import time

# must be set before escape_proctor.db creates its engine
os.environ["DATABASE_URL"] = "sqlite://"
os.environ.pop("LOG_DIR", None)

import pytest
from fastapi.testclient import TestClient

from escape_proctor import config
from escape_proctor.db import engine, SessionLocal, Base
from escape_proctor.models import Team


@pytest.fixture(autouse=True)
def fresh_db():
    """Every test starts from empty tables and a freshly read config."""
    config.reset_config()
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    yield


@pytest.fixture
def db():
    session = SessionLocal()
    yield session
    session.close()


@pytest.fixture
def now():
    # whole milliseconds keep float arithmetic exact in assertions
    return float(int(time.time() * 1000))


@pytest.fixture
def make_team(db):
    """Insert a team row; batch 1 and level 1 unless overridden"""
    def _make(team_id="T1", **fields):
        values = dict(team_name=f"Team {team_id}", batch=1, status="not_started",
                      current_level=1, score=0, penalty=0, tab_switch_count=0)
        values.update(fields)
        team = Team(team_id=team_id, **values)
        db.add(team)
        db.commit()
        db.refresh(team)
        return team
    return _make


@pytest.fixture
def reload(db):
    """Re-read a team, bypassing the session's identity map"""
    def _reload(team_id="T1"):
        db.expire_all()
        return db.query(Team).filter_by(team_id=team_id).first()
    return _reload


@pytest.fixture(scope="session")
def app():
    from escape_proctor.main import app
    return app


@pytest.fixture
def client(app):
    return TestClient(app)


@pytest.fixture
def exam_headers():
    return {"x-exam": config.section("auth")["exam_token"]}


@pytest.fixture
def admin_headers():
    return {"x-admin": config.section("auth")["admin_password"]}
