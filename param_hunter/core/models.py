"""
Shared data models for Param Hunter.

Requests are immutable values: every probe is derived from the original
target rather than rewriting a shared object.
"""

import dataclasses
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Set

from .helpers import generate_id


class AttackLocation(str, Enum):
    """Where candidate parameters are injected."""
    QUERY = "query"
    HEADERS = "headers"
    BODY = "body"


class AnomalyType(str, Enum):
    """Kinds of deviation from the learned baseline."""
    STATUS_CODE = "status_code"
    HEADERS = "headers"
    REFLECTION = "reflection"
    BODY = "body"
    REDIRECT = "redirect"
    SIMILARITY = "similarity"


class RequestContext(str, Enum):
    """Stage of a session that sent a probe."""
    LEARNING = "learning"
    DISCOVERY = "discovery"
    NARROWER = "narrower"
    CALIBRATION = "calibration"
    AUTOPILOT = "autopilot"


class MiningSessionState(str, Enum):
    """Lifecycle state of a mining session."""
    PENDING = "pending"
    LEARNING = "learning"
    RUNNING = "running"
    PAUSED = "paused"
    COMPLETED = "completed"
    ERROR = "error"
    CANCELED = "canceled"
    TIMEOUT = "timeout"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATES


TERMINAL_STATES = frozenset({
    MiningSessionState.COMPLETED,
    MiningSessionState.ERROR,
    MiningSessionState.CANCELED,
    MiningSessionState.TIMEOUT,
})


class MiningSessionPhase(str, Enum):
    """Coarse stage of a session, orthogonal to its state."""
    LEARNING = "learning"
    DISCOVERY = "discovery"
    IDLE = "idle"


def _find_header(headers: Dict[str, List[str]], name: str) -> Optional[List[str]]:
    wanted = name.lower()
    for key, values in headers.items():
        if key.lower() == wanted:
            return values
    return None


@dataclass(frozen=True)
class Request:
    """An HTTP request to send, or the target that probes derive from."""
    host: str
    port: int = 443
    tls: bool = True
    method: str = "GET"
    path: str = "/"
    query: str = ""
    headers: Dict[str, List[str]] = field(default_factory=dict)
    body: str = ""
    context: RequestContext = RequestContext.DISCOVERY
    id: str = field(default_factory=generate_id)

    @property
    def scheme(self) -> str:
        return "https" if self.tls else "http"

    @property
    def url(self) -> str:
        default_port = 443 if self.tls else 80
        netloc = self.host if self.port == default_port else f"{self.host}:{self.port}"
        url = f"{self.scheme}://{netloc}{self.path or '/'}"
        if self.query:
            url += f"?{self.query}"
        return url

    @property
    def target(self) -> str:
        """Request target as written on the request line."""
        path = self.path or "/"
        return f"{path}?{self.query}" if self.query else path

    @property
    def raw(self) -> str:
        """HTTP/1.1 wire form of the request."""
        lines = [f"{self.method} {self.target} HTTP/1.1"]
        if _find_header(self.headers, "host") is None:
            lines.append(f"Host: {self.host}")
        for name, values in self.headers.items():
            for value in values:
                lines.append(f"{name}: {value}")
        return "\r\n".join(lines) + "\r\n\r\n" + (self.body or "")

    def header(self, name: str) -> Optional[List[str]]:
        """Case-insensitive header lookup."""
        return _find_header(self.headers, name)

    def replace(self, **changes) -> "Request":
        """Return a new request with the given fields changed and a fresh id."""
        changes.setdefault("id", generate_id())
        return dataclasses.replace(self, **changes)


@dataclass
class Response:
    """An HTTP response. Header names are stored lower-cased."""
    status: int
    headers: Dict[str, List[str]] = field(default_factory=dict)
    body: str = ""
    raw: str = ""
    time: float = 0.0
    request_id: Optional[str] = None

    def __post_init__(self):
        normalized: Dict[str, List[str]] = {}
        for name, values in self.headers.items():
            if isinstance(values, str):
                values = [values]
            normalized.setdefault(name.lower(), []).extend(values)
        self.headers = normalized
        if self.body is None:
            self.body = ""

    def header(self, name: str) -> Optional[List[str]]:
        return self.headers.get(name.lower())

    def first_header(self, name: str) -> Optional[str]:
        values = self.header(name)
        return values[0] if values else None


@dataclass
class RequestResponse:
    """A sent request paired with the response it produced."""
    request: Request
    response: Response


@dataclass(frozen=True)
class Parameter:
    """
    A candidate parameter and the random value it carries for one probe.

    ``verbatim`` names are already in wire form and are not percent-encoded
    again by the request builder.
    """
    name: str
    value: str
    verbatim: bool = False


@dataclass(frozen=True)
class Anomaly:
    """A detected deviation of a response from the learned baseline."""
    kind: AnomalyType
    which: Optional[str] = None
    from_value: Optional[str] = None
    to_value: Optional[str] = None

    def __str__(self):
        detail = f" ({self.which})" if self.which else ""
        if self.from_value is not None or self.to_value is not None:
            detail += f": {self.from_value} -> {self.to_value}"
        return f"{self.kind.value}{detail}"


@dataclass
class StableFactors:
    """
    Response characteristics learned from the baseline probes.

    Each factor carries the learned value and whether it held across every
    sample. Only stable factors take part in anomaly detection.
    """
    status_code: int
    status_code_stable: bool = True
    reflections_count: int = 0
    reflection_stable: bool = True
    headers_stable: bool = True
    unstable_headers: Set[str] = field(default_factory=set)
    body_stable: bool = True
    redirect_target: Optional[str] = None
    redirect_stable: bool = True
    similarity: float = 1.0
    similarity_stable: bool = True

    def merge(self, other: "StableFactors") -> "StableFactors":
        """Combine with another sample: AND the flags, union unstable headers."""
        return StableFactors(
            status_code=self.status_code,
            status_code_stable=self.status_code_stable and other.status_code_stable,
            reflections_count=self.reflections_count,
            reflection_stable=(
                self.reflection_stable
                and other.reflection_stable
                and self.reflections_count == other.reflections_count
            ),
            headers_stable=self.headers_stable and other.headers_stable,
            unstable_headers=self.unstable_headers | other.unstable_headers,
            body_stable=self.body_stable and other.body_stable,
            redirect_target=other.redirect_target,
            redirect_stable=self.redirect_stable and other.redirect_stable,
            similarity=min(self.similarity, other.similarity),
            similarity_stable=self.similarity_stable and other.similarity_stable,
        )


@dataclass
class Finding:
    """A parameter isolated by bisection."""
    parameter: Parameter
    request_response: RequestResponse
    anomaly_kind: AnomalyType
    anomaly: Optional[Anomaly] = None


@dataclass
class AdditionalChecksResult:
    """How the target treats special characters in parameter names."""
    handles_special_characters: bool = True
    handles_encoded_special_characters: bool = True
