"""Tests for the offline cache transport."""
from __future__ import annotations

import asyncio

import httpx
import pytest

from cemap_quiz.offline_cache import (
    ACTIVATED,
    INSTALLED,
    NEW,
    OFFLINE_API_BODY,
    CacheStorage,
    OfflineCacheTransport,
)

BASE = "http://quiz.test"


class FakeNetwork:
    """Serves a few shell assets and echoes API paths; can be switched off."""

    def __init__(self):
        self.online = True
        self.pages = {
            "/": b"<html>shell</html>",
            "/favicon.svg": b"<svg/>",
            "/manifest.json": b'{"name": "CeMAP Quiz"}',
            "/app.js": b"console.log('v1')",
        }
        self.calls = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.calls.append((request.method, request.url.path))
        if not self.online:
            raise httpx.ConnectError("network down", request=request)
        if request.url.path.startswith("/api/"):
            return httpx.Response(200, json={"path": request.url.path})
        body = self.pages.get(request.url.path)
        if body is None:
            return httpx.Response(404, text="missing")
        return httpx.Response(200, content=body, headers={"X-Version": "1"})


@pytest.fixture
def network():
    return FakeNetwork()


@pytest.fixture
def storage(tmp_path):
    s = CacheStorage(tmp_path / "cache.db")
    yield s
    s.close()


@pytest.fixture
def cache(storage, network):
    return OfflineCacheTransport(storage, transport=httpx.MockTransport(network))


async def send(transport, path, method="GET", **headers):
    request = httpx.Request(method, BASE + path, headers=headers)
    return await transport.handle_async_request(request)


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_install_seeds_static_and_activates(self, cache, storage):
        assert cache.state == NEW
        assert await cache.install(BASE)
        assert cache.state == ACTIVATED
        assert cache.controlling
        assert storage.count("cemap-static-v1") == 3

    @pytest.mark.asyncio
    async def test_install_all_or_nothing(self, cache, storage, network):
        del network.pages["/manifest.json"]
        assert not await cache.install(BASE)
        assert cache.state == INSTALLED
        assert not cache.controlling
        assert storage.count("cemap-static-v1") == 0

    @pytest.mark.asyncio
    async def test_install_offline(self, cache, network):
        network.online = False
        assert not await cache.install(BASE)
        assert cache.state == INSTALLED

    @pytest.mark.asyncio
    async def test_skip_waiting_after_failed_install(self, cache, network):
        network.online = False
        await cache.install(BASE)
        await cache.handle_message({"type": "SKIP_WAITING"})
        assert cache.state == ACTIVATED
        resp = await send(cache, "/api/topics")
        assert resp.status_code == 503

    @pytest.mark.asyncio
    async def test_activate_drops_old_namespaces(self, cache, storage):
        storage.open("cemap-static-v0")
        storage.open("cemap-quiz-v0")
        await cache.install(BASE)
        assert set(storage.keys()) == {"cemap-static-v1"}

    @pytest.mark.asyncio
    async def test_clear_cache(self, cache, storage):
        await cache.install(BASE)
        await send(cache, "/app.js")
        await cache.handle_message({"type": "CLEAR_CACHE"})
        assert storage.keys() == []
        assert storage.count("cemap-static-v1") == 0

    @pytest.mark.asyncio
    async def test_unknown_message_ignored(self, cache):
        await cache.handle_message({"type": "PING"})
        await cache.handle_message({})
        assert cache.state == NEW

    @pytest.mark.asyncio
    async def test_not_controlling_passes_through(self, cache, network):
        network.online = False
        with pytest.raises(httpx.ConnectError):
            await send(cache, "/api/topics")


class TestApiRequests:
    @pytest.mark.asyncio
    async def test_network_first(self, cache, storage):
        await cache.install(BASE)
        resp = await send(cache, "/api/topics")
        assert resp.status_code == 200
        assert resp.json() == {"path": "/api/topics"}
        assert storage.count("cemap-quiz-v1") == 0

    @pytest.mark.asyncio
    async def test_offline_indicator_never_cached_body(self, cache, network):
        await cache.install(BASE)
        await send(cache, "/api/topics")
        network.online = False
        resp = await send(cache, "/api/topics")
        assert resp.status_code == 503
        assert resp.json() == OFFLINE_API_BODY

    @pytest.mark.asyncio
    async def test_api_post_offline(self, cache, network):
        await cache.install(BASE)
        network.online = False
        resp = await send(cache, "/api/high-scores", method="POST")
        assert resp.status_code == 503


class TestStaticRequests:
    @pytest.mark.asyncio
    async def test_cached_copy_served_offline(self, cache, network):
        await cache.install(BASE)
        network.online = False
        resp = await send(cache, "/")
        assert resp.status_code == 200
        assert resp.content == b"<html>shell</html>"
        assert resp.headers["x-version"] == "1"
        await cache.drain()  # failed revalidation is swallowed

    @pytest.mark.asyncio
    async def test_miss_fetches_and_caches(self, cache, storage, network):
        await cache.install(BASE)
        resp = await send(cache, "/app.js")
        assert resp.content == b"console.log('v1')"
        assert storage.count("cemap-quiz-v1") == 1
        network.online = False
        assert (await send(cache, "/app.js")).content == b"console.log('v1')"
        await cache.drain()

    @pytest.mark.asyncio
    async def test_stale_while_revalidate(self, cache, network):
        await cache.install(BASE)
        await send(cache, "/app.js")
        network.pages["/app.js"] = b"console.log('v2')"

        stale = await send(cache, "/app.js")
        assert stale.content == b"console.log('v1')"
        assert cache.pending == 1
        await cache.drain()
        assert cache.pending == 0

        fresh = await send(cache, "/app.js")
        assert fresh.content == b"console.log('v2')"
        await cache.drain()

    @pytest.mark.asyncio
    async def test_runtime_copy_wins_over_static(self, cache, network):
        await cache.install(BASE)
        network.pages["/"] = b"<html>new shell</html>"
        await send(cache, "/")
        await cache.drain()
        assert (await send(cache, "/")).content == b"<html>new shell</html>"
        await cache.drain()

    @pytest.mark.asyncio
    async def test_errors_not_cached(self, cache, storage):
        await cache.install(BASE)
        resp = await send(cache, "/nope")
        assert resp.status_code == 404
        assert storage.count("cemap-quiz-v1") == 0

    @pytest.mark.asyncio
    async def test_offline_navigation_page(self, cache, network):
        await cache.install(BASE)
        network.online = False
        resp = await send(cache, "/results", **{"Sec-Fetch-Mode": "navigate"})
        assert resp.status_code == 200
        assert "Offline" in resp.text
        assert resp.headers["content-type"].startswith("text/html")

    @pytest.mark.asyncio
    async def test_offline_miss_raises(self, cache, network):
        await cache.install(BASE)
        network.online = False
        with pytest.raises(httpx.ConnectError):
            await send(cache, "/app.js")

    @pytest.mark.asyncio
    async def test_non_get_bypasses_cache(self, cache, storage, network):
        await cache.install(BASE)
        await send(cache, "/app.js", method="POST")
        assert ("POST", "/app.js") in network.calls
        assert storage.count("cemap-quiz-v1") == 0

    @pytest.mark.asyncio
    async def test_non_http_scheme_passes_through(self, cache, storage, network):
        await cache.install(BASE)
        request = httpx.Request("GET", "ftp://quiz.test/app.js")
        await cache.handle_async_request(request)
        assert storage.count("cemap-quiz-v1") == 0


class TestShutdown:
    @pytest.mark.asyncio
    async def test_aclose_cancels_revalidation(self, tmp_path):
        release = asyncio.Event()

        async def slow(request):
            await release.wait()
            return httpx.Response(200, content=b"late")

        storage = CacheStorage(tmp_path / "cache.db")
        cache = OfflineCacheTransport(storage, transport=httpx.MockTransport(slow))
        storage.put(
            cache.runtime_cache,
            httpx.Request("GET", BASE + "/app.js"),
            httpx.Response(200, content=b"early"),
        )
        await cache.activate()

        resp = await send(cache, "/app.js")
        assert resp.content == b"early"
        task = next(iter(cache._bg_tasks))
        await cache.aclose()
        assert task.cancelled()
        assert cache.pending == 0
