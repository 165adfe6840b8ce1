"""Shared data models for the injection scanner."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, Optional, Union

from injectscan.core.errors import ConfigError

EXTRACTION_METHODS = ("regex", "html", "json")


# ── CSRF ───────────────────────────────────────────────────────

@dataclass(frozen=True)
class CsrfConfig:
    """Where and how to obtain an anti-CSRF token."""
    token_url: str
    extraction_method: str          # "regex", "html" or "json"
    token_selector: str = ""        # regex pattern or CSS selector
    json_pointer: Optional[str] = None
    headers: Dict[str, str] = field(default_factory=dict)
    cache_duration: Optional[int] = None   # seconds, None = forever

    def __post_init__(self):
        if self.extraction_method not in EXTRACTION_METHODS:
            raise ConfigError(
                f"Invalid extraction method {self.extraction_method!r} "
                f"(expected one of {', '.join(EXTRACTION_METHODS)})")
        if self.extraction_method == "json" and not self.json_pointer:
            raise ConfigError("JSON pointer not configured for json extraction")
        if self.extraction_method != "json" and self.json_pointer:
            raise ConfigError(
                "JSON pointer is only valid with the json extraction method")


@dataclass
class CsrfCache:
    token: Optional[str] = None
    expiry: Optional[float] = None  # absolute epoch seconds

    def valid(self, now: float) -> bool:
        if self.token is None:
            return False
        return self.expiry is None or now < self.expiry


# ── Injection targets ──────────────────────────────────────────

@dataclass(frozen=True)
class HeaderTarget:
    """Payload goes into the request header *name*."""
    name: str
    location: str = field(default="header", init=False)


@dataclass(frozen=True)
class BodyFieldTarget:
    """Payload goes into the form field *name* of a POST body."""
    name: str
    location: str = field(default="body", init=False)


Target = Union[HeaderTarget, BodyFieldTarget]


# ── Scan data ──────────────────────────────────────────────────

@dataclass(frozen=True)
class Baseline:
    """Captured data from a clean (payloadless) request."""
    status: int
    duration_ms: int
    body_size: int


@dataclass(frozen=True)
class ScanResult:
    """Outcome of one (target, payload) test."""
    target: str
    payload: str
    status: int
    duration_ms: int
    body_size: int
    suspicious: bool = False
    reason: Optional[str] = None

    @property
    def header(self) -> str:
        return self.target

    def __str__(self):
        flag = "SUSPICIOUS" if self.suspicious else "ok"
        return (f"[{flag}] {self.target}: payload={self.payload!r} "
                f"(HTTP {self.status}, {self.duration_ms} ms, {self.body_size} B)")


@dataclass
class FailedTest:
    """A single test that could not be completed."""
    target: str
    payload: str
    error: str


@dataclass
class RequestDebugInfo:
    url: str
    method: str
    headers: Dict[str, str]
    body: Optional[str] = None
    timestamp: datetime = field(
        default_factory=lambda: datetime.now(timezone.utc))


class ScanState(Enum):
    IDLE = "idle"
    BASELINE_ESTABLISHED = "baseline_established"
    SCANNING = "scanning"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class ScanConfig:
    """Everything a scan run is built from (mirrors the CLI flags)."""
    url: str
    payload_file: str
    header_file: Optional[str] = None
    fields_file: Optional[str] = None
    method: str = "GET"
    timeout_ms: int = 3000
    body_injection: bool = False
    injection_field: str = "id"
    csrf_field: str = "csrf_token"
    csrf_cookie_field: Optional[str] = None
    csrf_token: Optional[str] = None
    csrf: Optional[CsrfConfig] = None
    debug: bool = False
    debug_file: str = "debug_requests_log.txt"
    verbose: int = 1
    delay: float = 0.1              # seconds between tests
