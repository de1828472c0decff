"""
Route Table
Longest-prefix mapping of request paths to backend base URLs
"""

from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence, Tuple

from gateway.models.gateway_config import RouteConfig


@dataclass(frozen=True)
class Route:
    """A path prefix forwarded to a backend base URL"""
    prefix: str
    backend: str
    name: Optional[str] = None
    strip_prefix: bool = True

    @classmethod
    def from_config(cls, config: RouteConfig) -> "Route":
        return cls(
            prefix=config.prefix,
            backend=config.backend,
            name=config.name,
            strip_prefix=config.strip_prefix,
        )

    @property
    def normalized_prefix(self) -> str:
        # "/" normalizes to "" so that every path continues it at a boundary
        return self.prefix.rstrip("/")

    @property
    def specificity(self) -> int:
        return len(self.normalized_prefix)

    def matches(self, path: str) -> bool:
        prefix = self.normalized_prefix
        if not prefix:
            return True
        return path == prefix or path.startswith(prefix + "/")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "prefix": self.prefix,
            "backend": self.backend,
            "name": self.name,
            "strip_prefix": self.strip_prefix,
        }


def join_url(base: str, path: str, query: str = "") -> str:
    """Append a path (and raw query string) to a backend base URL"""
    url = base.rstrip("/")
    if path:
        url += path if path.startswith("/") else "/" + path
    if query:
        url += "?" + query
    return url


@dataclass(frozen=True)
class RouteMatch:
    """A matched route and the part of the path left after its prefix"""
    route: Route
    path: str

    @property
    def remainder(self) -> str:
        if not self.route.strip_prefix:
            return self.path
        return self.path[len(self.route.normalized_prefix):]

    def target_url(self, query: str = "") -> str:
        return join_url(self.route.backend, self.remainder, query)


class RouteTable:
    """Immutable set of routes, most specific prefix first"""

    def __init__(self, routes: Sequence[Route] = ()):
        self._declared: Tuple[Route, ...] = tuple(routes)
        # sorted() is stable, so equal-length prefixes keep declaration order
        self._routes: Tuple[Route, ...] = tuple(
            sorted(self._declared, key=lambda r: -r.specificity)
        )

    @classmethod
    def from_config(cls, configs: Sequence[RouteConfig]) -> "RouteTable":
        return cls([Route.from_config(c) for c in configs])

    def __len__(self) -> int:
        return len(self._routes)

    def __iter__(self):
        return iter(self._routes)

    def match(self, path: str) -> Optional[RouteMatch]:
        """Return the longest matching prefix for path, or None"""
        for route in self._routes:
            if route.matches(path):
                return RouteMatch(route=route, path=path)
        return None

    def describe(self) -> List[Dict[str, Any]]:
        return [route.to_dict() for route in self._declared]
