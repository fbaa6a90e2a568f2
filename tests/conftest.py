import os

# Must be set before config is imported anywhere.
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["STORAGE_MODE"] = "server"
os.environ["PASSWORD_HASH_ROUNDS"] = "1000"

import pytest

from local_storage import LocalStorage, MemoryKeyValueStore
from service import build_local_service, build_server_service
from database import make_engine
from helpers import FakeClock
from sql_storage import SQLStorage


@pytest.fixture
def sql_storage():
    return SQLStorage(make_engine("sqlite://"))


@pytest.fixture
def local_storage():
    return LocalStorage(MemoryKeyValueStore())


@pytest.fixture(params=["server", "local"])
def storage(request):
    """Both backends, for behaviour the contract promises is identical."""
    if request.param == "server":
        return SQLStorage(make_engine("sqlite://"))
    return LocalStorage(MemoryKeyValueStore())


@pytest.fixture
def server_service():
    return build_server_service("sqlite://")


@pytest.fixture
def local_service():
    return build_local_service(MemoryKeyValueStore())


@pytest.fixture(params=["server", "local"])
def service(request):
    if request.param == "server":
        return build_server_service("sqlite://")
    return build_local_service(MemoryKeyValueStore())


@pytest.fixture
def clock():
    return FakeClock()
