"""
Table Store
Holds the active route/mock snapshot and swaps it atomically on reload
"""

import os
import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Mapping, Optional

import yaml
import structlog
from pydantic import ValidationError

from gateway.models.gateway_config import GatewayConfig, InvalidConfigurationError
from gateway.services.mock_responder import MockResponder
from gateway.services.route_table import RouteTable

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class GatewayTables:
    """Immutable snapshot of everything a request is resolved against"""
    routes: RouteTable = field(default_factory=RouteTable)
    mocks: MockResponder = field(default_factory=MockResponder)
    default_backend: Optional[str] = None
    version: int = 0
    source: str = "empty"
    loaded_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def summary(self) -> Dict[str, Any]:
        return {
            "version": self.version,
            "source": self.source,
            "loaded_at": self.loaded_at.isoformat(),
            "route_count": len(self.routes),
            "mock_count": len(self.mocks),
            "default_backend": self.default_backend,
        }

    def describe(self) -> Dict[str, Any]:
        data = self.summary()
        data["routes"] = self.routes.describe()
        data["mocks"] = self.mocks.describe()
        return data


def parse_config(data: Any) -> GatewayConfig:
    """Validate a raw mapping into a GatewayConfig"""
    if data is None:
        data = {}
    if not isinstance(data, Mapping):
        raise InvalidConfigurationError(
            f"Gateway configuration must be a mapping, got {type(data).__name__}"
        )
    try:
        return GatewayConfig.model_validate(dict(data))
    except ValidationError as e:
        errors = [
            {"loc": list(err["loc"]), "msg": err["msg"], "type": err["type"]}
            for err in e.errors()
        ]
        raise InvalidConfigurationError(
            f"Gateway configuration is invalid ({len(errors)} error(s))", errors=errors
        ) from e


def build_tables(config: GatewayConfig, version: int = 0, source: str = "config") -> GatewayTables:
    """Compile every route and mock; any failure rejects the whole config"""
    return GatewayTables(
        routes=RouteTable.from_config(config.routes),
        mocks=MockResponder.from_config(config.mocks),
        default_backend=config.default_backend,
        version=version,
        source=source,
    )


def load_config_file(path: str) -> Any:
    """Read a YAML (or JSON) configuration file"""
    if not os.path.isfile(path):
        raise InvalidConfigurationError(f"Configuration file not found: {path}")
    try:
        with open(path, 'r') as f:
            return yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise InvalidConfigurationError(f"Configuration file {path} is not valid YAML: {e}") from e
    except OSError as e:
        raise InvalidConfigurationError(f"Configuration file {path} could not be read: {e}") from e


class TableStore:
    """
    Read-mostly holder of the active GatewayTables.

    Readers take ``current`` once per request and never lock. Reloads are
    serialized and replace the snapshot with a single assignment, so a request
    sees either the old tables or the new ones in full.
    """

    def __init__(self, tables: Optional[GatewayTables] = None, config_path: Optional[str] = None):
        self._tables = tables or GatewayTables()
        self._lock = asyncio.Lock()
        self.config_path = config_path
        self.last_error: Optional[str] = None
        self.last_reload_at: Optional[datetime] = None

    @classmethod
    def from_mapping(cls, data: Any, source: str = "config") -> "TableStore":
        """Build a store synchronously, e.g. at startup or in tests"""
        return cls(build_tables(parse_config(data), version=1, source=source))

    @classmethod
    def from_file(cls, path: str) -> "TableStore":
        tables = build_tables(parse_config(load_config_file(path)), version=1, source=path)
        return cls(tables, config_path=path)

    @property
    def current(self) -> GatewayTables:
        return self._tables

    async def load_file(self, path: Optional[str] = None) -> GatewayTables:
        """Reload from path (or the last loaded file)"""
        path = path or self.config_path
        if not path:
            raise InvalidConfigurationError("No configuration file configured for reload")
        async with self._lock:
            try:
                data = await asyncio.to_thread(load_config_file, path)
            except InvalidConfigurationError as e:
                self._reject(e, source=path)
                raise
            tables = self._build(data, source=path)
            self.config_path = path
            return tables

    async def load_mapping(self, data: Any, source: str = "api") -> GatewayTables:
        """Replace the tables with an in-memory configuration"""
        async with self._lock:
            return self._build(data, source=source)

    def _reject(self, error: InvalidConfigurationError, source: str) -> None:
        self.last_error = error.message
        logger.warning(
            "Configuration rejected, keeping active tables",
            source=source,
            error=error.message,
            active_version=self._tables.version,
        )

    def _build(self, data: Any, source: str) -> GatewayTables:
        try:
            config = parse_config(data)
            tables = build_tables(config, version=self._tables.version + 1, source=source)
        except InvalidConfigurationError as e:
            self._reject(e, source)
            raise
        except Exception as e:
            error = InvalidConfigurationError(f"Configuration could not be compiled: {e}")
            self._reject(error, source)
            raise error from e

        self._tables = tables
        self.last_error = None
        self.last_reload_at = tables.loaded_at
        logger.info(
            "Gateway tables loaded",
            source=source,
            version=tables.version,
            routes=len(tables.routes),
            mocks=len(tables.mocks),
        )
        return tables


_table_store: Optional[TableStore] = None


def get_table_store() -> TableStore:
    """Get the process-wide table store"""
    global _table_store
    if _table_store is None:
        _table_store = TableStore()
    return _table_store


def set_table_store(store: TableStore) -> TableStore:
    global _table_store
    _table_store = store
    return store
