"""CSRF token fetching, extraction and caching.

A token is fetched from a dedicated endpoint and pulled out of the response
body with one of three strategies:
  1. regex — capture group 1 of the first match
  2. html  — ``value`` attribute of the first element matching a CSS selector
  3. json  — string found at an RFC 6901 JSON pointer

The token is cached (optionally with an expiry) so a scan only pays for the
fetch once per cache window.
"""

import asyncio
import json
import re
import time
from typing import Any, Callable, Optional

import httpx
import soupsieve
from bs4 import BeautifulSoup

from injectscan.core.errors import (
    ConfigError, ExtractionError, FetchError, ReadError,
)
from injectscan.core.models import CsrfCache, CsrfConfig


# ── Extraction strategies ──────────────────────────────────────

class RegexExtractor:
    method = "regex"

    def __init__(self, pattern: str):
        self.pattern = pattern

    def extract(self, body: str) -> str:
        try:
            rx = re.compile(self.pattern)
        except re.error as exc:
            raise ExtractionError(f"Invalid regex pattern {self.pattern!r}: {exc}") from exc
        m = rx.search(body)
        if m is None or rx.groups < 1 or m.group(1) is None:
            raise ExtractionError("Token not found with regex")
        return m.group(1)


class HtmlExtractor:
    method = "html"

    def __init__(self, selector: str):
        self.selector = selector

    def extract(self, body: str) -> str:
        soup = BeautifulSoup(body, 'html.parser')
        try:
            element = soup.select_one(self.selector)
        except soupsieve.SelectorSyntaxError as exc:
            raise ExtractionError(f"Invalid CSS selector {self.selector!r}: {exc}") from exc
        if element is None:
            raise ExtractionError("Token not found in HTML")
        value = element.get("value")
        if value is None:
            raise ExtractionError(
                f"Element matching {self.selector!r} has no value attribute")
        return value


def resolve_pointer(document: Any, pointer: str) -> Any:
    """Resolve an RFC 6901 JSON pointer, raising KeyError when it dangles."""
    if pointer == "":
        return document
    if not pointer.startswith("/"):
        raise KeyError(pointer)

    current = document
    for token in pointer[1:].split("/"):
        token = token.replace("~1", "/").replace("~0", "~")
        if isinstance(current, dict):
            current = current[token]
        elif isinstance(current, list):
            if not token.isdigit() or (len(token) > 1 and token[0] == "0"):
                raise KeyError(token)
            index = int(token)
            if index >= len(current):
                raise KeyError(token)
            current = current[index]
        else:
            raise KeyError(token)
    return current


class JsonExtractor:
    method = "json"

    def __init__(self, pointer: Optional[str]):
        if not pointer:
            raise ConfigError("JSON pointer not configured")
        self.pointer = pointer

    def extract(self, body: str) -> str:
        try:
            document = json.loads(body)
        except ValueError as exc:
            raise ExtractionError(f"Invalid JSON response: {exc}") from exc
        try:
            value = resolve_pointer(document, self.pointer)
        except KeyError:
            raise ExtractionError(f"Token not found in JSON at {self.pointer}") from None
        if not isinstance(value, str):
            raise ExtractionError(
                f"Value at {self.pointer} is {type(value).__name__}, not a string")
        return value


def build_extractor(config: CsrfConfig):
    """Pick the extraction strategy named by *config*."""
    if config.extraction_method == "regex":
        return RegexExtractor(config.token_selector)
    if config.extraction_method == "html":
        return HtmlExtractor(config.token_selector)
    if config.extraction_method == "json":
        return JsonExtractor(config.json_pointer)
    raise ConfigError(f"Invalid extraction method: {config.extraction_method!r}")


# ── Provider ───────────────────────────────────────────────────

class CsrfTokenProvider:
    """
    Fetches and caches an anti-CSRF token.

    Usage:
        async with CsrfTokenProvider(config) as provider:
            token = await provider.get_token()
    """

    def __init__(
        self,
        config: CsrfConfig,
        cache: Optional[CsrfCache] = None,
        client: Optional[httpx.AsyncClient] = None,
        clock: Callable[[], float] = time.time,
        logger=None,
    ):
        self.config = config
        self.cache = cache if cache is not None else CsrfCache()
        self.extractor = build_extractor(config)
        self.clock = clock
        self.logger = logger
        self._owns_client = client is None
        self.client = client or httpx.AsyncClient(
            verify=False, follow_redirects=True, timeout=10)
        # held across check, fetch and store so concurrent callers share one fetch
        self._lock = asyncio.Lock()

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        await self.aclose()

    async def aclose(self):
        if self._owns_client:
            await self.client.aclose()

    async def get_token(self) -> str:
        async with self._lock:
            if self.cache.valid(self.clock()):
                return self.cache.token

            token = self.extractor.extract(await self._fetch())

            self.cache.token = token
            if self.config.cache_duration is not None:
                self.cache.expiry = self.clock() + self.config.cache_duration
            else:
                self.cache.expiry = None

            if self.logger:
                self.logger.debug(f"CSRF token refreshed from {self.config.token_url}")
            return token

    async def _fetch(self) -> str:
        url = self.config.token_url
        request = self.client.build_request(
            "GET", url, headers=dict(self.config.headers))
        try:
            resp = await self.client.send(request, stream=True)
        except httpx.HTTPError as exc:
            raise FetchError(f"Failed to fetch CSRF token from {url}: {exc}") from exc
        try:
            await resp.aread()
        except httpx.HTTPError as exc:
            raise ReadError(f"Failed to read CSRF token response from {url}: {exc}") from exc
        finally:
            await resp.aclose()
        return resp.text
