import os

os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("APP_ENV", "test")

from pathlib import Path
from typing import Any, Dict, List, Optional

import pytest
from sqlalchemy.orm import sessionmaker

from src.agency_csv.database import build_engine
from src.agency_csv.models import Base


@pytest.fixture()
def engine(tmp_path: Path):
    engine = build_engine(f"sqlite:///{tmp_path / 'agency_csv_test.db'}")
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture()
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=True, bind=engine)


@pytest.fixture()
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture()
def write_csv(tmp_path: Path):
    """Write text to a CSV file under tmp_path and return its path"""
    counter = {"n": 0}

    def _write(content: str, name: Optional[str] = None) -> str:
        counter["n"] += 1
        path = tmp_path / (name or f"upload_{counter['n']}.csv")
        path.write_text(content, encoding="utf-8", newline="")
        return str(path)

    return _write


class Stored:
    def __init__(self, id: int, tenant_id: str, record: Dict[str, Any]):
        self.id = id
        self.tenant_id = tenant_id
        self.record = dict(record)


class InMemoryStore:
    """EntityStore keeping records in a list, keyed on email"""

    def __init__(self, key_field: str = "email"):
        self.key_field = key_field
        self.records: List[Stored] = []
        self.calls: List[str] = []

    def find_by_key(self, tenant_id: str, key: str):
        self.calls.append("find")
        for stored in self.records:
            value = str(stored.record.get(self.key_field) or "").lower()
            if stored.tenant_id == tenant_id and value == key.lower():
                return stored
        return None

    def insert(self, tenant_id: str, record):
        self.calls.append("insert")
        stored = Stored(len(self.records) + 1, tenant_id, record)
        self.records.append(stored)
        return stored.id

    def update(self, entity_id, record) -> bool:
        self.calls.append("update")
        for stored in self.records:
            if stored.id == entity_id:
                stored.record.update(record)
                return True
        return False


@pytest.fixture()
def memory_store():
    return InMemoryStore()
