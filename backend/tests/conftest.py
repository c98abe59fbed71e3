from collections.abc import Iterator
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

from family_finance.config import Settings, load_settings
from family_finance.main import create_app
from family_finance.persistence import Repositories
from family_finance.store import RecordStore


@pytest.fixture
def db_path(tmp_path: Path) -> Path:
    return tmp_path / "finance.db"


@pytest.fixture
def store(db_path: Path) -> Iterator[RecordStore]:
    with RecordStore.open(db_path, busy_timeout=2.0) as opened:
        yield opened


@pytest.fixture
def repos(store: RecordStore) -> Repositories:
    return Repositories(store)


@pytest.fixture
def app_settings(tmp_path: Path, db_path: Path) -> Settings:
    return load_settings(db_path=str(db_path), upload_dir=str(tmp_path / "uploads"), log_json=False)


@pytest.fixture
def client(app_settings: Settings) -> Iterator[TestClient]:
    with TestClient(create_app(app_settings)) as test_client:
        yield test_client
