import math
import time
from typing import Callable, Dict, Optional, Tuple
from urllib.parse import quote, urlsplit

import httpx

from injectscan.core.errors import (
    BaselineError, ConfigError, InvalidMethodError, ReadError, TransportError,
)
from injectscan.core.models import (
    Baseline, BodyFieldTarget, HeaderTarget, RequestDebugInfo, ScanResult, Target,
)

HTTP_METHODS = {"GET", "POST", "PUT", "DELETE", "PATCH",
                "HEAD", "OPTIONS", "TRACE", "CONNECT"}

_BROWSER_HDRS = (
    ("User-Agent", "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 "
                   "(KHTML, like Gecko) Chrome/135.0.0.0 Safari/537.36"),
    ("Accept", "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8"),
    ("Accept-Language", "en-US,en;q=0.7"),
    ("Connection", "keep-alive"),
)

FORM_CTYPE = "application/x-www-form-urlencoded"

TIME_FACTOR = 2          # slower than 2x baseline
SIZE_DIFF_PCT = 20.0     # body size differs by more than 20%
CONNECT_TIMEOUT = 10.0


def classify(baseline: Optional[Baseline], status: int, duration_ms: int,
             body_size: int) -> Tuple[bool, Optional[str]]:
    """
    Compare one response against *baseline*.
    Returns (suspicious, reason); every triggered heuristic contributes to reason.
    """
    if baseline is None:
        return False, None

    reasons = []
    if duration_ms > baseline.duration_ms * TIME_FACTOR:
        reasons.append(
            f"Response time significantly higher than baseline "
            f"({duration_ms} ms vs {baseline.duration_ms} ms)")

    if baseline.body_size:
        size_pct = abs(body_size - baseline.body_size) / baseline.body_size * 100
    else:
        size_pct = math.inf if body_size else 0.0
    if size_pct > SIZE_DIFF_PCT:
        reasons.append(
            f"Response size significantly different from baseline "
            f"({body_size} B vs {baseline.body_size} B)")

    if status != baseline.status:
        reasons.append(f"Status code changed from {baseline.status} to {status}")

    return bool(reasons), "; ".join(reasons) or None


def encode_form_value(payload: str) -> str:
    """URL-encode a payload, keeping spaces, ';' and '--' readable for strict form parsers."""
    return (quote(payload, safe="")
            .replace("%20", "+")
            .replace("%3B", ";")
            .replace("%2D%2D", "--"))


def _set_header(headers: Dict[str, str], name: str, value: str) -> None:
    for k in [k for k in headers if k.lower() == name.lower()]:
        del headers[k]
    headers[name] = value


class AnomalyScanner:
    """
    Sends injected requests and flags responses that drift from a baseline.

    Usage:
        async with AnomalyScanner(timeout_ms=3000) as scanner:
            await scanner.establish_baseline(url)
            result = await scanner.test_injection(url, HeaderTarget("X-Id"), "'")
    """

    def __init__(
        self,
        timeout_ms: int = 3000,
        logger=None,
        request_logger=None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        clock: Callable[[], float] = time.perf_counter,
    ):
        self.timeout_ms = timeout_ms
        self.logger = logger
        self.request_logger = request_logger
        self.clock = clock
        self.baseline: Optional[Baseline] = None
        self.client = httpx.AsyncClient(
            verify=False,
            follow_redirects=True,
            max_redirects=10,
            timeout=httpx.Timeout(timeout_ms * 2 / 1000, connect=CONNECT_TIMEOUT),
            transport=transport,
        )

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        await self.aclose()

    async def aclose(self):
        await self.client.aclose()

    # ── baseline ───────────────────────────────────────────────

    async def establish_baseline(self, url: str) -> Baseline:
        """Issue one clean GET and store it as the comparison point."""
        try:
            request = self.client.build_request("GET", url)
            status, duration_ms, body_size = await self._timed_send(request, url)
        except (TransportError, ReadError, httpx.InvalidURL) as exc:
            raise BaselineError(f"Failed to establish baseline for {url}: {exc}") from exc

        self.baseline = Baseline(status, duration_ms, body_size)
        if self.logger:
            self.logger.debug(f"Baseline for {url}: {self.baseline}")
        return self.baseline

    # ── single test ────────────────────────────────────────────

    def build_request(
        self,
        url: str,
        target: Target,
        payload: str,
        method: str = "GET",
        csrf_token: Optional[str] = None,
        csrf_field: str = "csrf_token",
        csrf_cookie_field: Optional[str] = None,
    ) -> Tuple[str, Dict[str, str], Optional[str]]:
        """Return (method, headers, body) for one injected request."""
        verb = method.strip().upper()
        if verb not in HTTP_METHODS:
            raise InvalidMethodError(f"Invalid HTTP method: {method!r}")

        headers: Dict[str, str] = {"Host": urlsplit(url).netloc}
        for name, value in _BROWSER_HDRS:
            headers[name] = value

        if csrf_token is not None:
            headers["Cookie"] = f"{csrf_cookie_field or csrf_field}={csrf_token}"

        body = None
        if isinstance(target, HeaderTarget):
            _set_header(headers, target.name, payload)
        elif isinstance(target, BodyFieldTarget):
            if verb != "POST":
                raise ConfigError(f"Body injection requires POST, got {verb}")
            body = f"{target.name}={encode_form_value(payload)}"
            if csrf_token is not None:
                body += f"&{csrf_field}={csrf_token}"
            headers["Content-Type"] = FORM_CTYPE
            headers["Content-Length"] = str(len(body.encode("utf-8")))
        else:
            raise ConfigError(f"Unknown injection target: {target!r}")

        return verb, headers, body

    async def test_injection(
        self,
        url: str,
        target: Target,
        payload: str,
        method: str = "GET",
        csrf_token: Optional[str] = None,
        csrf_field: str = "csrf_token",
        csrf_cookie_field: Optional[str] = None,
    ) -> ScanResult:
        verb, headers, body = self.build_request(
            url, target, payload, method, csrf_token, csrf_field, csrf_cookie_field)

        if self.request_logger is not None:
            self.request_logger.log_request(RequestDebugInfo(
                url=url, method=verb, headers=dict(headers), body=body))

        try:
            request = self.client.build_request(
                verb, url, headers=headers,
                content=body.encode("utf-8") if body is not None else None)
        except (ValueError, httpx.InvalidURL) as exc:
            raise TransportError(f"Cannot build request for {url}: {exc}") from exc

        status, duration_ms, body_size = await self._timed_send(request, url)
        suspicious, reason = classify(self.baseline, status, duration_ms, body_size)

        return ScanResult(
            target=target.name,
            payload=payload,
            status=status,
            duration_ms=duration_ms,
            body_size=body_size,
            suspicious=suspicious,
            reason=reason,
        )

    async def _timed_send(self, request: httpx.Request, url: str) -> Tuple[int, int, int]:
        """Send *request*; latency is measured up to the response headers."""
        start = self.clock()
        try:
            resp = await self.client.send(request, stream=True)
        except httpx.HTTPError as exc:
            raise TransportError(f"Failed to send request to {url}: {exc}") from exc
        duration_ms = int((self.clock() - start) * 1000)

        try:
            content = await resp.aread()
        except httpx.HTTPError as exc:
            raise ReadError(f"Failed to read response body from {url}: {exc}") from exc
        finally:
            await resp.aclose()

        return resp.status_code, duration_ms, len(content)
