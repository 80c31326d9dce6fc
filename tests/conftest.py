import pytest
from fastapi.testclient import TestClient

from database import SEED_DATA, MemoryStore, get_store
from main import app


@pytest.fixture
def store():
    return MemoryStore(SEED_DATA)


@pytest.fixture
def client(store):
    app.dependency_overrides[get_store] = lambda: store
    yield TestClient(app)
    app.dependency_overrides.clear()
