import logging
import os
from logging import LogRecord
from pathlib import Path
from typing import List

import gconf
import pytest
import pytest_asyncio
from asgi_lifespan import LifespanManager
from httpx import AsyncClient, ASGITransport

import access_core
from access_core.db.database import init_token_store, shutdown_token_store
from access_core.db.db_connection import db_conn
from access_core.db.memory_store import TinyTokenStore
from access_core.db.util import truncate_all_tables
from access_core.service.redemption import RedemptionCoordinator

CONFIG_FILE = Path(__file__).parent.parent / "config.yml"


def requires_test_env(env: str):
    return pytest.mark.skipif(
        os.environ.get("TEST_ENV") != env,
        reason=f"requires TEST_ENV={env}",
    )


@pytest.fixture(autouse=True, scope="session")
def load_config():
    gconf.load(str(CONFIG_FILE))


@pytest.fixture(autouse=True)
def config_override(request):
    if os.environ.get("TEST_ENV") == "postgres":
        backend_override = {}
    else:
        backend_override = {"db": {"backend": "tinydb", "tinydb_path": ""}}

    # Detects the variable named *config_override* of a test module
    module_override = getattr(request.module, "config_override", {})

    # Detects the annotation named @pytest.mark.config_override of a test function
    function_override_mark = request.node.get_closest_marker("config_override")
    function_override = function_override_mark.args[0] if function_override_mark else {}

    with gconf.override_conf(backend_override), gconf.override_conf(module_override), gconf.override_conf(
        function_override
    ):
        yield


@pytest.fixture
def store() -> TinyTokenStore:
    return TinyTokenStore()


@pytest.fixture
def coordinator(store) -> RedemptionCoordinator:
    return RedemptionCoordinator(store)


@pytest_asyncio.fixture
async def pg_coordinator() -> RedemptionCoordinator:
    with gconf.override_conf({"db": {"backend": "postgres"}}):
        store = await init_token_store()
        async with db_conn() as conn:
            await truncate_all_tables(conn)
        yield RedemptionCoordinator(store)
        await shutdown_token_store(store)


@pytest_asyncio.fixture
async def app():
    app = access_core.create_app()
    async with LifespanManager(app):
        yield app


@pytest_asyncio.fixture
async def api_client(app) -> AsyncClient:
    async with AsyncClient(transport=ASGITransport(app=app), base_url="https://init") as client:
        yield client


class MemoryLogHandler(logging.Handler):
    def __init__(self):
        super().__init__()
        self.records: List[LogRecord] = []

    def emit(self, record):
        self.records.append(record)


@pytest.fixture
def memory_logger():
    memory_handler = MemoryLogHandler()
    root_logger = logging.getLogger()
    root_logger.addHandler(memory_handler)
    access_logger = logging.getLogger("access_core")
    previous_level = access_logger.level
    access_logger.setLevel(logging.DEBUG)
    yield memory_handler
    access_logger.setLevel(previous_level)
    root_logger.removeHandler(memory_handler)
