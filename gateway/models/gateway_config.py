"""
Gateway configuration models
Pydantic schemas for route/mock tables and admin requests
"""

from enum import Enum
from typing import Any, Dict, List, Optional, Union

import httpx
from pydantic import BaseModel, ConfigDict, Field, field_validator


class InvalidConfigurationError(Exception):
    """Raised when a route/mock table cannot be loaded"""

    def __init__(self, message: str, errors: Optional[List[Dict[str, Any]]] = None):
        super().__init__(message)
        self.message = message
        self.errors = errors or []


class MatchKind(str, Enum):
    """How a mock pattern is compared against the request path"""
    EXACT = "exact"
    TEMPLATE = "template"
    REGEX = "regex"


def _validate_backend_url(v: str) -> str:
    try:
        url = httpx.URL(v)
    except Exception as e:
        raise ValueError(f'Invalid backend URL {v!r}: {e}')
    if url.scheme not in ("http", "https") or not url.host:
        raise ValueError(f'Backend URL must be an absolute http(s) URL, got {v!r}')
    return v


class RouteConfig(BaseModel):
    """A path prefix forwarded to a backend base URL"""
    model_config = ConfigDict(extra="forbid")

    prefix: str = Field(..., min_length=1, description="Path prefix, e.g. /v1/models")
    backend: str = Field(..., description="Backend base URL")
    name: Optional[str] = Field(None, description="Label used in logs and admin output")
    strip_prefix: bool = Field(default=True, description="Drop the matched prefix before forwarding")

    @field_validator('prefix')
    @classmethod
    def validate_prefix(cls, v):
        if not v.startswith("/"):
            raise ValueError('Route prefix must start with "/"')
        if "?" in v or "#" in v:
            raise ValueError('Route prefix must not contain a query or fragment')
        return v

    @field_validator('backend')
    @classmethod
    def validate_backend(cls, v):
        return _validate_backend_url(v)


class MockConfig(BaseModel):
    """A statically configured substitute response"""
    model_config = ConfigDict(extra="forbid")

    pattern: str = Field(..., min_length=1, description="Exact path, path template or regex")
    match: Optional[MatchKind] = Field(None, description="Pattern kind; inferred when omitted")
    status_code: int = Field(default=200, ge=100, le=599)
    content_type: str = Field(default="application/json")
    body: Union[str, Dict[str, Any], List[Any]] = Field(default="")
    headers: Dict[str, str] = Field(default_factory=dict)
    methods: Optional[List[str]] = Field(None, description="Restrict to these HTTP methods")
    priority: int = Field(default=0, description="Higher priority entries are tried first")
    name: Optional[str] = None

    @field_validator('methods')
    @classmethod
    def normalize_methods(cls, v):
        if v is None:
            return v
        if not v:
            raise ValueError('Methods list cannot be empty; omit it to match any method')
        return [m.upper() for m in v]

    @property
    def kind(self) -> MatchKind:
        if self.match is not None:
            return self.match
        return MatchKind.TEMPLATE if "{" in self.pattern else MatchKind.EXACT


class GatewayConfig(BaseModel):
    """Complete route and mock table configuration"""
    model_config = ConfigDict(extra="forbid")

    routes: List[RouteConfig] = Field(default_factory=list)
    mocks: List[MockConfig] = Field(default_factory=list)
    default_backend: Optional[str] = None

    @field_validator('routes', mode='before')
    @classmethod
    def expand_route_mapping(cls, v):
        # Accept the short form {prefix: backend}
        if isinstance(v, dict):
            return [{"prefix": prefix, "backend": backend} for prefix, backend in v.items()]
        return v

    @field_validator('default_backend')
    @classmethod
    def validate_default_backend(cls, v):
        if v is None:
            return v
        return _validate_backend_url(v)


class ReloadRequest(BaseModel):
    """Admin request to reload the tables from a file"""
    path: Optional[str] = Field(None, description="Config file to load; defaults to the active one")
