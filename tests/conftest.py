import pytest
from fastapi.testclient import TestClient

from app import create_app
from backend import RoomRegistry
from signaling import SignalingService


@pytest.fixture
def registry():
    return RoomRegistry()


@pytest.fixture
async def service(registry):
    svc = SignalingService(registry=registry, keepalive_interval=60)
    yield svc
    await svc.shutdown()


@pytest.fixture
def app():
    return create_app(keepalive_interval=60)


@pytest.fixture
def http(app):
    with TestClient(app) as client:
        yield client
