"""Pytest configuration and fixtures."""

from typing import Optional

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from database import Base
from poet_engine import PoetEngine
from stores import CycleStore, PoetStateStore


VALID_NEXT = "Write about the hum of a server room at four in the morning, alone"


def labelled_response(poem="neon rain\non a dead screen", title="Neon Rain", next_prompt=VALID_NEXT):
    return f"POEM: {poem}\nTITLE: {title}\nNEXT: {next_prompt}"


class FakeModel:
    """Scripted stand-in for the chat model; None entries mean no content."""

    def __init__(self, responses=None):
        self.responses = list(responses or [])
        self.prompts: list[str] = []

    async def __call__(self, prompt: str) -> Optional[str]:
        self.prompts.append(prompt)
        if not self.responses:
            return None
        return self.responses.pop(0)


@pytest.fixture(autouse=True)
def _quiet_telemetry(monkeypatch):
    monkeypatch.setenv("POET_TELEMETRY_ENABLED", "0")


@pytest.fixture
def db_session():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    Session = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    db = Session()
    try:
        yield db
    finally:
        db.close()
        engine.dispose()


@pytest.fixture
def fake_model():
    return FakeModel()


@pytest.fixture
def poet(db_session, fake_model):
    return PoetEngine(
        CycleStore(db_session),
        PoetStateStore(db_session),
        fake_model,
        requery_on_fallback=False,
        clock=lambda: 7,
    )


@pytest.fixture
def session_factory(tmp_path):
    """Sessions on one file-backed database, for tests that need separate connections."""
    engine = create_engine(
        f"sqlite:///{tmp_path / 'poet.db'}",
        connect_args={"check_same_thread": False},
    )
    Base.metadata.create_all(bind=engine)
    Session = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    opened = []

    def _open():
        db = Session()
        opened.append(db)
        return db

    try:
        yield _open
    finally:
        for db in opened:
            db.close()
        engine.dispose()
