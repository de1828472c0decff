"""
Unit tests for TableStore and configuration loading
"""

import asyncio
from unittest.mock import patch

import pytest

from gateway.models.gateway_config import InvalidConfigurationError
from gateway.services.table_store import TableStore, build_tables, load_config_file, parse_config


def _tables_config(tag: str):
    return {
        "routes": [{"prefix": "/v1/models", "backend": f"http://{tag}:8000"}],
        "mocks": [{"pattern": "/v1/version", "body": tag, "content_type": "text/plain"}],
    }


class TestParseConfig:
    """Test configuration validation"""

    def test_route_mapping_short_form(self):
        config = parse_config({"routes": {"/v1/models": "http://a:8000", "/v1/datasets": "http://b:3000"}})

        assert [r.prefix for r in config.routes] == ["/v1/models", "/v1/datasets"]
        assert config.routes[1].backend == "http://b:3000"

    def test_empty_document_is_empty_tables(self):
        config = parse_config(None)

        assert config.routes == []
        assert config.mocks == []

    def test_non_mapping_is_rejected(self):
        with pytest.raises(InvalidConfigurationError):
            parse_config(["not", "a", "mapping"])

    def test_unknown_keys_are_rejected(self):
        with pytest.raises(InvalidConfigurationError) as excinfo:
            parse_config({"routes": [], "upstreams": []})

        assert excinfo.value.errors

    @pytest.mark.parametrize("route", [
        {"prefix": "v1/models", "backend": "http://a"},
        {"prefix": "/v1/models", "backend": "not a url"},
        {"prefix": "/v1/models", "backend": "ftp://a/files"},
        {"prefix": "/v1/models"},
    ])
    def test_invalid_routes_are_rejected(self, route):
        with pytest.raises(InvalidConfigurationError):
            parse_config({"routes": [route]})

    def test_invalid_status_code_is_rejected(self):
        with pytest.raises(InvalidConfigurationError) as excinfo:
            parse_config({"mocks": [{"pattern": "/a", "status_code": 99}]})

        assert excinfo.value.errors[0]["loc"][:3] == ["mocks", 0, "status_code"]

    def test_build_tables(self, sample_config):
        tables = build_tables(parse_config(sample_config), version=3, source="test")

        assert tables.version == 3
        assert len(tables.routes) == 10
        assert len(tables.mocks) == 1
        assert tables.summary()["source"] == "test"


class TestConfigFile:
    """Test reading configuration files"""

    def test_load_yaml_file(self, tmp_path):
        path = tmp_path / "gateway.yaml"
        path.write_text(
            "routes:\n"
            "  - prefix: /v1/models\n"
            "    backend: http://entity-store:8000/v1/models\n"
            "mocks:\n"
            "  - pattern: /v1/models/{namespace}/{name}\n"
            "    body:\n"
            "      name: '{{ name }}'\n"
        )

        store = TableStore.from_file(str(path))

        assert store.config_path == str(path)
        assert store.current.version == 1
        assert store.current.mocks.resolve("GET", "/v1/models/meta/x").body == b'{"name": "x"}'

    def test_missing_file(self, tmp_path):
        with pytest.raises(InvalidConfigurationError) as excinfo:
            load_config_file(str(tmp_path / "absent.yaml"))

        assert "not found" in str(excinfo.value)

    def test_invalid_yaml(self, tmp_path):
        path = tmp_path / "broken.yaml"
        path.write_text("routes: [unclosed\n")

        with pytest.raises(InvalidConfigurationError):
            load_config_file(str(path))


class TestTableStoreReload:
    """Test atomic, all-or-nothing reloads"""

    @pytest.mark.asyncio
    async def test_load_mapping_swaps_tables(self):
        store = TableStore.from_mapping(_tables_config("old"))

        tables = await store.load_mapping(_tables_config("new"))

        assert tables is store.current
        assert tables.version == 2
        assert store.current.routes.match("/v1/models/x").route.backend == "http://new:8000"

    @pytest.mark.asyncio
    async def test_invalid_mapping_keeps_previous_tables(self):
        store = TableStore.from_mapping(_tables_config("old"))
        before = store.current
        invalid = _tables_config("new")
        invalid["mocks"].append({"pattern": "/v1/models/{namespace}", "body": "{{ name }}"})

        with pytest.raises(InvalidConfigurationError):
            await store.load_mapping(invalid)

        assert store.current is before
        assert store.last_error is not None
        assert store.current.routes.match("/v1/models/x").route.backend == "http://old:8000"

    @pytest.mark.asyncio
    async def test_successful_reload_clears_last_error(self):
        store = TableStore.from_mapping(_tables_config("old"))
        with pytest.raises(InvalidConfigurationError):
            await store.load_mapping({"routes": [{"prefix": "bad", "backend": "http://a"}]})

        await store.load_mapping(_tables_config("new"))

        assert store.last_error is None
        assert store.last_reload_at is not None

    @pytest.mark.asyncio
    async def test_load_file_remembers_path(self, config_file, sample_config):
        store = TableStore()
        path = config_file()

        await store.load_file(path)
        sample_config["routes"] = sample_config["routes"][:2]
        config_file(sample_config)
        tables = await store.load_file()

        assert store.config_path == path
        assert tables.version == 2
        assert len(tables.routes) == 2

    @pytest.mark.asyncio
    async def test_load_file_without_path(self):
        with pytest.raises(InvalidConfigurationError):
            await TableStore().load_file()

    @pytest.mark.asyncio
    async def test_concurrent_readers_never_see_mixed_tables(self):
        """Every snapshot's route and mock come from the same config"""
        store = TableStore.from_mapping(_tables_config("tag0"))
        seen = []

        async def reader():
            for _ in range(200):
                tables = store.current
                await asyncio.sleep(0)
                backend = tables.routes.match("/v1/models/x").route.backend
                body = tables.mocks.resolve("GET", "/v1/version").body.decode()
                seen.append((backend, body))

        async def reloader():
            for i in range(1, 50):
                await store.load_mapping(_tables_config(f"tag{i}"))
                await asyncio.sleep(0)
                with pytest.raises(InvalidConfigurationError):
                    await store.load_mapping({"routes": [{"prefix": "/x"}]})

        await asyncio.gather(reader(), reader(), reader(), reloader())

        assert seen
        for backend, body in seen:
            assert backend == f"http://{body}:8000"
        assert store.current.version == 50

    @pytest.mark.asyncio
    async def test_non_json_mock_body_is_rejected_not_raised(self, config_file, tmp_path):
        store = TableStore.from_file(config_file())
        path = tmp_path / "dated.yaml"
        path.write_text(
            "mocks:\n"
            "  - pattern: /v1/models/meta/llama\n"
            "    body:\n"
            "      released: 2024-01-01\n"
        )

        with pytest.raises(InvalidConfigurationError):
            await store.load_file(str(path))

        assert store.current.version == 1
        assert "JSON" in store.last_error

    @pytest.mark.asyncio
    async def test_file_is_read_off_the_event_loop(self, config_file):
        store = TableStore()

        with patch("gateway.services.table_store.asyncio.to_thread", wraps=asyncio.to_thread) as to_thread:
            await store.load_file(config_file())

        to_thread.assert_called_once_with(load_config_file, store.config_path)
