import asyncio
import json

import httpx
import pytest

from conftest import BrokenStream, ManualClock
from injectscan.core.csrf import (
    CsrfTokenProvider, HtmlExtractor, JsonExtractor, RegexExtractor,
    build_extractor, resolve_pointer,
)
from injectscan.core.errors import (
    ConfigError, ExtractionError, FetchError, ReadError,
)
from injectscan.core.models import CsrfCache, CsrfConfig

TOKEN_URL = "http://example.test/login"

LOGIN_PAGE = """
<html><body>
  <form method="post" action="/login">
    <input type="text" name="username">
    <input type="hidden" name="csrf_token" value="tok-html-42">
    <input type="hidden" name="nonce">
  </form>
</body></html>
"""


# ── strategies ──────────────────────────────────────────────────

def test_regex_returns_first_group():
    ex = RegexExtractor(r'name="csrf_token" value="([^"]+)"')
    assert ex.extract(LOGIN_PAGE) == "tok-html-42"


@pytest.mark.parametrize("pattern", [r'value="nope-([^"]+)"', r'csrf_token', r'([a-z'])
def test_regex_failures(pattern):
    with pytest.raises(ExtractionError):
        RegexExtractor(pattern).extract(LOGIN_PAGE)


def test_html_returns_value_attribute():
    assert HtmlExtractor("input[name=csrf_token]").extract(LOGIN_PAGE) == "tok-html-42"


@pytest.mark.parametrize("selector", ["input[name=missing]", "input[name=nonce]", "input["])
def test_html_failures(selector):
    with pytest.raises(ExtractionError):
        HtmlExtractor(selector).extract(LOGIN_PAGE)


def test_json_resolves_pointer():
    body = json.dumps({"data": {"csrf": "tok-json"}})
    assert JsonExtractor("/data/csrf").extract(body) == "tok-json"


@pytest.mark.parametrize("body", [
    '{"data": {"csrf": 1234}}',
    '{"data": {}}',
    '<html>not json</html>',
])
def test_json_failures(body):
    with pytest.raises(ExtractionError):
        JsonExtractor("/data/csrf").extract(body)


def test_json_requires_pointer():
    with pytest.raises(ConfigError):
        JsonExtractor(None)


def test_resolve_pointer_escapes_and_indexes():
    doc = {"a/b": {"m~n": ["x", "y"]}}
    assert resolve_pointer(doc, "/a~1b/m~0n/1") == "y"
    assert resolve_pointer(doc, "") is doc
    with pytest.raises(KeyError):
        resolve_pointer(doc, "/a~1b/m~0n/2")
    with pytest.raises(KeyError):
        resolve_pointer(doc, "a")


def test_build_extractor_follows_config():
    cfg = CsrfConfig(TOKEN_URL, "json", json_pointer="/token")
    assert isinstance(build_extractor(cfg), JsonExtractor)
    assert isinstance(build_extractor(CsrfConfig(TOKEN_URL, "html", "input")), HtmlExtractor)


@pytest.mark.parametrize("kwargs", [
    dict(extraction_method="xpath", token_selector="//input"),
    dict(extraction_method="json"),
    dict(extraction_method="regex", token_selector="(.*)", json_pointer="/token"),
])
def test_config_validation(kwargs):
    with pytest.raises(ConfigError):
        CsrfConfig(TOKEN_URL, **kwargs)


# ── provider ────────────────────────────────────────────────────

class TokenServer:
    """Hands out a new token on every request."""

    def __init__(self):
        self.requests = []

    def __call__(self, request):
        self.requests.append(request)
        return httpx.Response(200, json={"token": f"tok-{len(self.requests)}"})


def json_config(**kw):
    return CsrfConfig(TOKEN_URL, "json", json_pointer="/token", **kw)


def test_provider_fetches_with_configured_headers():
    server = TokenServer()
    cfg = json_config(headers={"X-Requested-With": "XMLHttpRequest"})

    async def go():
        async with httpx.AsyncClient(transport=httpx.MockTransport(server)) as client:
            return await CsrfTokenProvider(cfg, client=client).get_token()

    assert asyncio.run(go()) == "tok-1"
    assert server.requests[0].url == TOKEN_URL
    assert server.requests[0].headers["X-Requested-With"] == "XMLHttpRequest"


def test_provider_html_strategy():
    cfg = CsrfConfig(TOKEN_URL, "html", "input[name=csrf_token]")

    async def go():
        transport = httpx.MockTransport(lambda r: httpx.Response(200, text=LOGIN_PAGE))
        async with httpx.AsyncClient(transport=transport) as client:
            return await CsrfTokenProvider(cfg, client=client).get_token()

    assert asyncio.run(go()) == "tok-html-42"


def test_token_cached_until_expiry():
    server = TokenServer()
    clock = ManualClock()
    cache = CsrfCache()

    async def go():
        async with httpx.AsyncClient(transport=httpx.MockTransport(server)) as client:
            provider = CsrfTokenProvider(json_config(cache_duration=60), cache=cache,
                                         client=client, clock=clock)
            first = await provider.get_token()
            clock.now += 30
            second = await provider.get_token()
            clock.now += 31
            third = await provider.get_token()
            return first, second, third

    first, second, third = asyncio.run(go())
    assert first == second == "tok-1"
    assert third == "tok-2"
    assert len(server.requests) == 2
    assert cache.token == "tok-2"
    assert cache.expiry == clock.now + 60


def test_token_without_duration_is_cached_forever():
    server = TokenServer()
    clock = ManualClock()

    async def go():
        async with httpx.AsyncClient(transport=httpx.MockTransport(server)) as client:
            provider = CsrfTokenProvider(json_config(), client=client, clock=clock)
            first = await provider.get_token()
            clock.now += 10 ** 6
            return first, await provider.get_token(), provider.cache

    first, second, cache = asyncio.run(go())
    assert first == second == "tok-1"
    assert cache.expiry is None
    assert len(server.requests) == 1


def test_concurrent_callers_share_one_fetch():
    server = TokenServer()

    async def go():
        async with httpx.AsyncClient(transport=httpx.MockTransport(server)) as client:
            provider = CsrfTokenProvider(json_config(), client=client)
            return await asyncio.gather(*(provider.get_token() for _ in range(5)))

    assert asyncio.run(go()) == ["tok-1"] * 5
    assert len(server.requests) == 1


def test_extraction_failure_is_not_cached():
    cfg = CsrfConfig(TOKEN_URL, "regex", r'token=(\w+)')
    cache = CsrfCache()

    async def go():
        transport = httpx.MockTransport(lambda r: httpx.Response(200, text="no token here"))
        async with httpx.AsyncClient(transport=transport) as client:
            await CsrfTokenProvider(cfg, cache=cache, client=client).get_token()

    with pytest.raises(ExtractionError):
        asyncio.run(go())
    assert cache.token is None


def test_fetch_failure():
    def handler(request):
        raise httpx.ConnectError("refused", request=request)

    async def go():
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            await CsrfTokenProvider(json_config(), client=client).get_token()

    with pytest.raises(FetchError, match="example.test"):
        asyncio.run(go())


def test_read_failure():
    async def go():
        transport = httpx.MockTransport(lambda r: httpx.Response(200, stream=BrokenStream()))
        async with httpx.AsyncClient(transport=transport) as client:
            await CsrfTokenProvider(json_config(), client=client).get_token()

    with pytest.raises(ReadError):
        asyncio.run(go())
