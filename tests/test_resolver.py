from contextlib import asynccontextmanager

import asyncio
import httpx
import pytest
from playwright.async_api import TimeoutError as PWTimeoutError

from photo_crawler.config import load_config
from photo_crawler.resolver import (
    HttpxProbe,
    PhotoResolver,
    ResolutionError,
    discover,
    is_candidate_request,
    photo_page_url,
    upgrade_candidate,
)

IMG_SMALL = "https://live.staticflickr.com/65535/101_abc_s.jpg"
IMG_LARGE = "https://live.staticflickr.com/65535/101_abc.jpg"


class StubRequest:
    def __init__(self, url):
        self.url = url


class StubRoute:
    def __init__(self):
        self.action = None

    async def abort(self):
        self.action = "abort"

    async def continue_(self):
        self.action = "continue"


class StubPage:
    """Replays a fixed list of outbound requests through the route handler during goto()."""

    def __init__(self, requests=(), goto_raises=None, raise_after_requests=False):
        self.requests = list(requests)
        self.goto_raises = goto_raises
        self.raise_after_requests = raise_after_requests
        self.handler = None
        self.routes = []
        self.goto_calls = []

    async def route(self, pattern, handler):
        self.pattern = pattern
        self.handler = handler

    async def goto(self, url, wait_until=None, timeout=None):
        self.goto_calls.append((url, wait_until, timeout))
        if self.goto_raises and not self.raise_after_requests:
            raise self.goto_raises
        for u in self.requests:
            r = StubRoute()
            await self.handler(r, StubRequest(u))
            self.routes.append((u, r))
        if self.goto_raises:
            raise self.goto_raises


class SessionFactory:
    def __init__(self, page):
        self.page = page
        self.acquired = 0
        self.released = 0

    def __call__(self):
        @asynccontextmanager
        async def _session():
            self.acquired += 1
            try:
                yield self.page
            finally:
                self.released += 1
        return _session()


class StubProbe:
    def __init__(self, result=True, raises=None):
        self.result = result
        self.raises = raises
        self.calls = []

    async def __call__(self, url):
        self.calls.append(url)
        if self.raises:
            raise self.raises
        return self.result


def _cfg(**kw):
    return load_config().with_overrides(**kw)


# ---------------------------
# URL helpers
# ---------------------------

def test_photo_page_url_and_candidate_matching():
    assert photo_page_url("12345@N00", 101, "https://www.flickr.com/photos/{owner}/{item}") == \
        "https://www.flickr.com/photos/12345@N00/101"
    assert is_candidate_request(IMG_SMALL, 101, (".jpg", ".png"))
    assert is_candidate_request("https://x/101_a.PNG", 101, (".jpg", ".png"))
    assert not is_candidate_request("https://x/999_a.jpg", 101, (".jpg",))
    assert not is_candidate_request("https://x/101/app.js", 101, (".jpg",))


def test_upgrade_candidate():
    assert upgrade_candidate(IMG_SMALL, ("_s",)) == IMG_LARGE
    assert upgrade_candidate("https://x/a/101_s.jpg?x=1", ("_s",)) == "https://x/a/101.jpg?x=1"
    assert upgrade_candidate(IMG_LARGE, ("_s",)) is None
    # a bare suffix is not a stem
    assert upgrade_candidate("https://x/_s.jpg", ("_s",)) is None
    # only the filename counts, not directories
    assert upgrade_candidate("https://x/img_s/101.jpg", ("_s",)) is None


# ---------------------------
# Discovery
# ---------------------------

@pytest.mark.asyncio
async def test_discover_captures_and_aborts_first_match():
    page = StubPage(requests=[
        "https://www.flickr.com/app.js",
        IMG_SMALL,
        "https://live.staticflickr.com/65535/101_abc_m.jpg",
    ])
    url = await discover(page, "https://p/101", 101, extensions=(".jpg",), wait_until="networkidle", timeout_ms=1000)
    assert url == IMG_SMALL
    actions = dict((u, r.action) for u, r in page.routes)
    assert actions["https://www.flickr.com/app.js"] == "continue"
    assert actions[IMG_SMALL] == "abort"
    assert actions["https://live.staticflickr.com/65535/101_abc_m.jpg"] == "continue"
    assert page.pattern == "**/*"
    assert page.goto_calls == [("https://p/101", "networkidle", 1000)]


@pytest.mark.asyncio
async def test_discover_returns_none_without_match():
    page = StubPage(requests=["https://www.flickr.com/app.js"])
    assert await discover(page, "https://p/1", 101, extensions=(".jpg",), wait_until="load", timeout_ms=1) is None


@pytest.mark.asyncio
async def test_discover_timeout_after_capture_keeps_candidate():
    page = StubPage(requests=[IMG_SMALL], goto_raises=PWTimeoutError("idle never reached"), raise_after_requests=True)
    url = await discover(page, "https://p/101", 101, extensions=(".jpg",), wait_until="networkidle", timeout_ms=1)
    assert url == IMG_SMALL


@pytest.mark.asyncio
async def test_discover_timeout_without_capture_raises():
    page = StubPage(goto_raises=PWTimeoutError("slow"))
    with pytest.raises(PWTimeoutError):
        await discover(page, "https://p/101", 101, extensions=(".jpg",), wait_until="networkidle", timeout_ms=1)


# ---------------------------
# Resolver
# ---------------------------

@pytest.mark.asyncio
async def test_resolve_upgrades_when_probe_succeeds():
    sessions = SessionFactory(StubPage(requests=[IMG_SMALL]))
    probe = StubProbe(result=True)
    resolver = PhotoResolver(sessions, probe, _cfg())

    assert await resolver.resolve("A", 101) == IMG_LARGE
    assert probe.calls == [IMG_LARGE]
    assert sessions.acquired == sessions.released == 1


@pytest.mark.asyncio
async def test_resolve_keeps_original_when_probe_fails():
    resolver = PhotoResolver(SessionFactory(StubPage(requests=[IMG_SMALL])), StubProbe(result=False), _cfg())
    assert await resolver.resolve("A", 101) == IMG_SMALL


@pytest.mark.asyncio
async def test_resolve_skips_probe_without_suffix():
    probe = StubProbe()
    resolver = PhotoResolver(SessionFactory(StubPage(requests=[IMG_LARGE])), probe, _cfg())
    assert await resolver.resolve("A", 101) == IMG_LARGE
    assert probe.calls == []


@pytest.mark.asyncio
async def test_resolve_none_when_nothing_discovered():
    probe = StubProbe()
    resolver = PhotoResolver(SessionFactory(StubPage()), probe, _cfg())
    assert await resolver.resolve("A", 102) is None
    assert probe.calls == []


@pytest.mark.asyncio
async def test_navigation_failure_is_resolution_error_and_session_released():
    sessions = SessionFactory(StubPage(goto_raises=RuntimeError("net::ERR_NAME_NOT_RESOLVED")))
    resolver = PhotoResolver(sessions, StubProbe(), _cfg())

    with pytest.raises(ResolutionError) as ei:
        await resolver.resolve("A", 101)
    assert ei.value.owner_id == "A"
    assert ei.value.item_id == 101
    assert isinstance(ei.value.cause, RuntimeError)
    assert sessions.acquired == sessions.released == 1


@pytest.mark.asyncio
async def test_probe_network_failure_is_resolution_error():
    resolver = PhotoResolver(
        SessionFactory(StubPage(requests=[IMG_SMALL])),
        StubProbe(raises=httpx.ConnectError("refused")),
        _cfg(),
    )
    with pytest.raises(ResolutionError):
        await resolver.resolve("A", 101)


@pytest.mark.asyncio
async def test_item_timeout_is_resolution_error_and_session_released():
    class HangingPage(StubPage):
        async def goto(self, url, wait_until=None, timeout=None):
            await asyncio.sleep(10)

    sessions = SessionFactory(HangingPage())
    resolver = PhotoResolver(sessions, StubProbe(), _cfg())
    resolver.cfg = resolver.cfg.with_overrides(item_timeout_s=1)

    with pytest.raises(ResolutionError) as ei:
        await resolver.resolve("A", 101)
    assert isinstance(ei.value.cause, asyncio.TimeoutError)
    assert sessions.released == 1


# ---------------------------
# httpx probe
# ---------------------------

def _probe_with(handler, **cfg_kw):
    cfg = _cfg(probe_retry_initial_delay_ms=0, probe_retry_max_delay_ms=0, probe_retry_jitter_ms=0, **cfg_kw)
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return HttpxProbe(client, cfg), client


@pytest.mark.asyncio
async def test_httpx_probe_status_mapping():
    seen = []

    def handler(request):
        seen.append(request.method)
        return httpx.Response(200 if request.url.path.endswith("ok.jpg") else 404)

    probe, client = _probe_with(handler)
    async with client:
        assert await probe("https://img/ok.jpg") is True
        assert await probe("https://img/missing.jpg") is False
    assert seen == ["HEAD", "HEAD"]


@pytest.mark.asyncio
async def test_httpx_probe_retries_transport_errors():
    calls = {"n": 0}

    def handler(request):
        calls["n"] += 1
        if calls["n"] == 1:
            raise httpx.ConnectError("reset", request=request)
        return httpx.Response(200)

    probe, client = _probe_with(handler, probe_max_attempts=2)
    async with client:
        assert await probe("https://img/a.jpg") is True
    assert calls["n"] == 2
