"""
Mock Responder
Static or templated responses keyed by request path, evaluated before routing
"""

import re
import json
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Pattern, Sequence, Tuple

from jinja2 import StrictUndefined, Template, TemplateError, TemplateSyntaxError, meta
from jinja2.sandbox import SandboxedEnvironment

from gateway.models.gateway_config import InvalidConfigurationError, MatchKind, MockConfig

# Variables available to every body template in addition to path captures
BUILTIN_VARIABLES = frozenset({"path", "method"})

_PLACEHOLDER = re.compile(r"\{([A-Za-z_][A-Za-z0-9_]*)(?::([A-Za-z_]+))?\}")
_CONVERTERS = {
    None: "[^/]+",
    "path": ".+",
}
_TEMPLATE_MARKERS = ("{{", "{%", "{#")

_jinja_env = SandboxedEnvironment(
    undefined=StrictUndefined,
    autoescape=False,
    keep_trailing_newline=True,
)


class MalformedMockTemplateError(InvalidConfigurationError):
    """A mock body references a variable its pattern does not capture"""
    pass


class MockRenderError(Exception):
    """A mock body template failed while rendering a request"""
    pass


@dataclass(frozen=True)
class MockResult:
    """Outcome of a mock lookup"""
    matched: bool
    status_code: int = 0
    content_type: str = ""
    body: bytes = b""
    headers: Dict[str, str] = field(default_factory=dict)
    entry: Optional["MockEntry"] = None


NO_MATCH = MockResult(matched=False)


def compile_path_template(template: str) -> Tuple[Pattern, int]:
    """
    Convert '/v1/models/{namespace}/{name}' into a regex with named groups.
    Callers match it with fullmatch().

    Returns:
        The compiled pattern and the number of literal characters in the template
    """
    parts = []
    literals = []
    position = 0
    for placeholder in _PLACEHOLDER.finditer(template):
        literals.append(template[position:placeholder.start()])
        parts.append(re.escape(literals[-1]))
        name, converter = placeholder.group(1), placeholder.group(2)
        if converter not in _CONVERTERS:
            raise ValueError(f"unknown placeholder type '{converter}' for '{name}'")
        parts.append(f"(?P<{name}>{_CONVERTERS[converter]})")
        position = placeholder.end()
    literals.append(template[position:])
    parts.append(re.escape(literals[-1]))

    if any("{" in literal or "}" in literal for literal in literals):
        raise ValueError("malformed placeholder")
    return re.compile("".join(parts)), sum(len(literal) for literal in literals)


def _is_template(text: str) -> bool:
    return any(marker in text for marker in _TEMPLATE_MARKERS)


def _compile_body(body: Any, referenced: set) -> Any:
    """Compile template strings in a body, collecting referenced variables"""
    if isinstance(body, str):
        if not _is_template(body):
            return body
        ast = _jinja_env.parse(body)
        referenced.update(meta.find_undeclared_variables(ast))
        return _jinja_env.from_string(body)
    if isinstance(body, dict):
        return {key: _compile_body(value, referenced) for key, value in body.items()}
    if isinstance(body, list):
        return [_compile_body(item, referenced) for item in body]
    return body


def _contains_template(body: Any) -> bool:
    if isinstance(body, Template):
        return True
    if isinstance(body, dict):
        return any(_contains_template(value) for value in body.values())
    if isinstance(body, list):
        return any(_contains_template(item) for item in body)
    return False


def _render_body(body: Any, context: Dict[str, Any]) -> Any:
    if isinstance(body, Template):
        return body.render(context)
    if isinstance(body, dict):
        return {key: _render_body(value, context) for key, value in body.items()}
    if isinstance(body, list):
        return [_render_body(item, context) for item in body]
    return body


@dataclass(frozen=True)
class MockEntry:
    """A compiled mock: pattern, response and ordering keys"""
    pattern: str
    kind: MatchKind
    status_code: int
    content_type: str
    body: Any
    headers: Dict[str, str]
    methods: Optional[Tuple[str, ...]]
    priority: int
    index: int
    literal_length: int
    name: Optional[str] = None
    regex: Optional[Pattern] = None
    structured: bool = False
    templated: bool = False
    static_body: Optional[bytes] = None

    @property
    def sort_key(self) -> Tuple[int, int, int, int]:
        exact_rank = 0 if self.kind == MatchKind.EXACT else 1
        return (-self.priority, exact_rank, -self.literal_length, self.index)

    @property
    def captures(self) -> frozenset:
        if self.regex is None:
            return frozenset()
        return frozenset(self.regex.groupindex)

    def match(self, method: str, path: str) -> Optional[Dict[str, str]]:
        """Return the path captures if this entry serves the request, else None"""
        if self.methods is not None and method.upper() not in self.methods:
            return None
        if self.kind == MatchKind.EXACT:
            return {} if path == self.pattern else None
        m = self.regex.fullmatch(path)
        if m is None:
            return None
        # Optional groups that did not take part render as empty strings
        return m.groupdict(default="")

    def render(self, method: str, path: str, captures: Dict[str, str]) -> bytes:
        if self.static_body is not None:
            return self.static_body
        context = {"path": path, "method": method.upper()}
        context.update(captures)
        try:
            rendered = _render_body(self.body, context)
        except TemplateError as e:
            raise MockRenderError(f"Mock '{self.label}' failed to render: {e}") from e
        if self.structured:
            return json.dumps(rendered).encode("utf-8")
        return rendered.encode("utf-8")

    @property
    def label(self) -> str:
        return self.name or self.pattern

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "pattern": self.pattern,
            "match": self.kind.value,
            "status_code": self.status_code,
            "content_type": self.content_type,
            "methods": list(self.methods) if self.methods else None,
            "priority": self.priority,
            "captures": sorted(self.captures),
            "templated": self.templated,
        }


def compile_mock(config: MockConfig, index: int) -> MockEntry:
    """
    Compile a mock configuration into a MockEntry

    Raises:
        InvalidConfigurationError: pattern is not a valid path, template or regex
        MalformedMockTemplateError: body template is invalid or references
            variables the pattern does not capture
    """
    kind = config.kind
    label = config.name or config.pattern
    regex = None
    literal_length = len(config.pattern)

    try:
        if kind == MatchKind.TEMPLATE:
            regex, literal_length = compile_path_template(config.pattern)
        elif kind == MatchKind.REGEX:
            regex = re.compile(config.pattern)
            literal_length = 0
    except (re.error, ValueError) as e:
        raise InvalidConfigurationError(
            f"Mock '{label}' has an invalid {kind.value} pattern: {e}",
            errors=[{"loc": ["mocks", index, "pattern"], "msg": str(e)}],
        ) from e

    if kind == MatchKind.EXACT and not config.pattern.startswith("/"):
        raise InvalidConfigurationError(
            f"Mock '{label}' exact pattern must start with '/'",
            errors=[{"loc": ["mocks", index, "pattern"], "msg": "must start with '/'"}],
        )

    referenced: set = set()
    try:
        body = _compile_body(config.body, referenced)
    except TemplateSyntaxError as e:
        raise MalformedMockTemplateError(
            f"Mock '{label}' body is not a valid template: {e}",
            errors=[{"loc": ["mocks", index, "body"], "msg": str(e)}],
        ) from e

    available = BUILTIN_VARIABLES | (frozenset(regex.groupindex) if regex is not None else frozenset())
    unknown = sorted(referenced - available)
    if unknown:
        raise MalformedMockTemplateError(
            f"Mock '{label}' body references unknown capture(s): {', '.join(unknown)}",
            errors=[{
                "loc": ["mocks", index, "body"],
                "msg": f"unknown capture(s) {unknown}; available: {sorted(available)}",
            }],
        )

    structured = isinstance(config.body, (dict, list))
    if structured:
        # YAML dates and other non-JSON leaves would otherwise fail per request
        try:
            serialized = json.dumps(config.body)
        except (TypeError, ValueError) as e:
            raise InvalidConfigurationError(
                f"Mock '{label}' body is not JSON serializable: {e}",
                errors=[{"loc": ["mocks", index, "body"], "msg": str(e)}],
            ) from e

    templated = _contains_template(body)
    static_body = None
    if not templated:
        static_body = (serialized if structured else config.body).encode("utf-8")

    return MockEntry(
        pattern=config.pattern,
        kind=kind,
        status_code=config.status_code,
        content_type=config.content_type,
        body=body,
        headers=dict(config.headers),
        methods=tuple(config.methods) if config.methods else None,
        priority=config.priority,
        index=index,
        literal_length=literal_length,
        name=config.name,
        regex=regex,
        structured=structured,
        templated=templated,
        static_body=static_body,
    )


class MockResponder:
    """Ordered, immutable mock table"""

    def __init__(self, entries: Sequence[MockEntry] = ()):
        self._declared: Tuple[MockEntry, ...] = tuple(entries)
        self._entries: Tuple[MockEntry, ...] = tuple(sorted(self._declared, key=lambda e: e.sort_key))

    @classmethod
    def from_config(cls, configs: Sequence[MockConfig]) -> "MockResponder":
        return cls([compile_mock(config, index) for index, config in enumerate(configs)])

    def __len__(self) -> int:
        return len(self._entries)

    def find(self, method: str, path: str) -> Optional[Tuple[MockEntry, Dict[str, str]]]:
        for entry in self._entries:
            captures = entry.match(method, path)
            if captures is not None:
                return entry, captures
        return None

    def resolve(self, method: str, path: str) -> MockResult:
        """Return the response of the first matching entry, or NO_MATCH"""
        found = self.find(method, path)
        if found is None:
            return NO_MATCH
        entry, captures = found
        return MockResult(
            matched=True,
            status_code=entry.status_code,
            content_type=entry.content_type,
            body=entry.render(method, path, captures),
            headers=entry.headers,
            entry=entry,
        )

    def describe(self) -> List[Dict[str, Any]]:
        return [entry.to_dict() for entry in self._declared]
