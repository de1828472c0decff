"""
Pytest fixtures for gateway tests
"""

import copy
import json
from collections import namedtuple
from typing import Any, Dict

import httpx
import pytest
from fastapi.testclient import TestClient

from gateway.main import app
from gateway.services.dispatcher import ProxyDispatcher
from gateway.services.table_store import TableStore
from gateway.utils.dependencies import dispatcher_dependency, table_store_dependency

from samples import LLAMA_BODY, NEMO_ROUTES, FakeBackend

GatewayHarness = namedtuple("GatewayHarness", ["client", "store", "backend"])


@pytest.fixture
def sample_config() -> Dict[str, Any]:
    """Route and mock tables mirroring the platform deployment"""
    return {
        "routes": copy.deepcopy(NEMO_ROUTES),
        "mocks": [
            {
                "name": "llama",
                "pattern": "/v1/models/meta/llama-3.2-1b-instruct",
                "status_code": 200,
                "body": LLAMA_BODY,
            }
        ],
    }


@pytest.fixture
def backend() -> FakeBackend:
    return FakeBackend()


@pytest.fixture
def make_gateway(backend):
    """Build a TestClient whose dispatcher talks to the fake backend"""

    def _make(config: Dict[str, Any], add_forwarded_headers: bool = True) -> GatewayHarness:
        store = TableStore.from_mapping(config)
        client = httpx.AsyncClient(transport=httpx.MockTransport(backend))
        dispatcher = ProxyDispatcher(store, client, add_forwarded_headers=add_forwarded_headers)
        app.dependency_overrides[table_store_dependency] = lambda: store
        app.dependency_overrides[dispatcher_dependency] = lambda: dispatcher
        return GatewayHarness(TestClient(app), store, backend)

    yield _make
    app.dependency_overrides.clear()


@pytest.fixture
def config_file(tmp_path, sample_config):
    """Write a config to disk and return its path"""

    def _write(config: Dict[str, Any] = None, name: str = "gateway.yaml") -> str:
        path = tmp_path / name
        path.write_text(json.dumps(sample_config if config is None else config))
        return str(path)

    return _write
