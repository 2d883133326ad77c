"""Offline cache layer for the client shell.

``OfflineCacheTransport`` sits between ``httpx.AsyncClient`` and the real
network transport and behaves like the browser service worker of the web app:

* API calls (``/api/...``) go network-first; when the network is down the
  caller gets a 503 JSON body flagged ``offline`` instead of an exception.
  API responses are never cached.
* Other GETs are served cache-first. A hit returns the stored copy at once and
  refreshes the runtime cache in a detached background task.
* Nothing is intercepted until the layer is activated (``install`` activates
  straight away by skipping the waiting phase).

Cached responses live in a small SQLite file, grouped into named namespaces so
that a version bump can drop the old ones on activation.
"""
from __future__ import annotations

import asyncio
import json
import logging
import sqlite3
import time
from pathlib import Path
from urllib.parse import urljoin

import httpx

log = logging.getLogger("cemap_quiz.cache")

NEW = "new"
INSTALLING = "installing"
INSTALLED = "installed"
ACTIVATING = "activating"
ACTIVATED = "activated"

STATIC_ASSETS = ("/", "/favicon.svg", "/manifest.json")

OFFLINE_API_BODY = {"error": "Offline - API unavailable", "offline": True}
OFFLINE_PAGE = (
    "<html><body><h1>Offline</h1>"
    "<p>Please check your internet connection.</p></body></html>"
)

# Bodies are stored decoded, so these no longer describe them.
_DROP_HEADERS = {"content-encoding", "content-length", "transfer-encoding", "connection"}

CACHE_SCHEMA = """
CREATE TABLE IF NOT EXISTS cache_namespaces (
    name TEXT PRIMARY KEY,
    created_at INTEGER NOT NULL
);

CREATE TABLE IF NOT EXISTS cache_entries (
    namespace TEXT NOT NULL,
    method TEXT NOT NULL,
    url TEXT NOT NULL,
    status_code INTEGER NOT NULL,
    headers_json TEXT NOT NULL,
    body BLOB NOT NULL,
    stored_at INTEGER NOT NULL,
    PRIMARY KEY (namespace, method, url)
);
"""


def _clean_headers(headers: httpx.Headers) -> list[tuple[str, str]]:
    return [(k, v) for k, v in headers.multi_items() if k.lower() not in _DROP_HEADERS]


class CacheStorage:
    """Namespaced response store keyed by (method, url)."""

    def __init__(self, path: Path | str = ":memory:"):
        self.path = path
        self.conn = sqlite3.connect(str(path), check_same_thread=False)
        self.conn.row_factory = sqlite3.Row
        self.conn.executescript(CACHE_SCHEMA)
        self.conn.commit()

    def open(self, namespace: str) -> None:
        self.conn.execute(
            "INSERT OR IGNORE INTO cache_namespaces (name, created_at) VALUES (?, ?)",
            (namespace, time.time_ns()),
        )
        self.conn.commit()

    def keys(self) -> list[str]:
        rows = self.conn.execute(
            "SELECT name FROM cache_namespaces ORDER BY created_at"
        ).fetchall()
        return [r[0] for r in rows]

    def delete(self, namespace: str) -> bool:
        cur = self.conn.execute("DELETE FROM cache_namespaces WHERE name = ?", (namespace,))
        self.conn.execute("DELETE FROM cache_entries WHERE namespace = ?", (namespace,))
        self.conn.commit()
        return cur.rowcount > 0

    def put(self, namespace: str, request: httpx.Request, response: httpx.Response) -> None:
        """Store *response* (already read) for *request*, replacing any previous copy."""
        self.open(namespace)
        self.conn.execute(
            "INSERT OR REPLACE INTO cache_entries (namespace, method, url, status_code, "
            "headers_json, body, stored_at) VALUES (?, ?, ?, ?, ?, ?, ?)",
            (
                namespace,
                request.method,
                str(request.url),
                response.status_code,
                json.dumps(_clean_headers(response.headers)),
                response.content,
                time.time_ns(),
            ),
        )
        self.conn.commit()

    def match(self, request: httpx.Request) -> httpx.Response | None:
        """Most recently stored copy for *request* across all namespaces."""
        row = self.conn.execute(
            "SELECT status_code, headers_json, body FROM cache_entries "
            "WHERE method = ? AND url = ? ORDER BY stored_at DESC, rowid DESC LIMIT 1",
            (request.method, str(request.url)),
        ).fetchone()
        if row is None:
            return None
        headers = [tuple(pair) for pair in json.loads(row["headers_json"])]
        return httpx.Response(row["status_code"], headers=headers, content=row["body"])

    def count(self, namespace: str) -> int:
        row = self.conn.execute(
            "SELECT COUNT(*) FROM cache_entries WHERE namespace = ?", (namespace,)
        ).fetchone()
        return row[0]

    def close(self) -> None:
        self.conn.close()


class OfflineCacheTransport(httpx.AsyncBaseTransport):
    def __init__(
        self,
        storage: CacheStorage,
        transport: httpx.AsyncBaseTransport | None = None,
        version: str = "v1",
        api_prefix: str = "/api/",
        static_assets: tuple[str, ...] = STATIC_ASSETS,
    ):
        self.storage = storage
        self._network = transport or httpx.AsyncHTTPTransport()
        self.static_cache = f"cemap-static-{version}"
        self.runtime_cache = f"cemap-quiz-{version}"
        self.api_prefix = api_prefix
        self.static_assets = static_assets
        self.state = NEW
        self.controlling = False
        self._bg_tasks: set[asyncio.Task] = set()

    # ── Lifecycle ─────────────────────────────────────────────────────────

    async def install(self, base_url: str) -> bool:
        """Pre-cache the shell assets, then activate.

        All-or-nothing: if any asset fails, nothing is stored and the layer
        stays installed but inactive.
        """
        self.state = INSTALLING
        log.info("Installing...")
        fetched = []
        try:
            for path in self.static_assets:
                request = httpx.Request("GET", urljoin(base_url, path))
                response = await self._fetch(request)
                if response.status_code != 200:
                    raise httpx.HTTPStatusError(
                        f"{response.status_code} for {request.url}",
                        request=request,
                        response=response,
                    )
                fetched.append((request, response))
        except httpx.HTTPError as exc:
            self.state = INSTALLED
            log.error("Installation failed: %s", exc)
            return False

        self.storage.open(self.static_cache)
        for request, response in fetched:
            self.storage.put(self.static_cache, request, response)
        self.state = INSTALLED
        log.info("Installation complete (%d assets)", self.storage.count(self.static_cache))
        await self.skip_waiting()
        return True

    async def activate(self) -> None:
        self.state = ACTIVATING
        log.info("Activating...")
        allowed = {self.static_cache, self.runtime_cache}
        for name in self.storage.keys():
            if name not in allowed:
                log.info("Deleting old cache: %s", name)
                self.storage.delete(name)
        self.state = ACTIVATED
        self.controlling = True
        log.info("Activation complete")

    async def skip_waiting(self) -> None:
        if self.state != ACTIVATED:
            await self.activate()

    async def handle_message(self, message: dict) -> None:
        kind = (message or {}).get("type")
        if kind == "SKIP_WAITING":
            await self.skip_waiting()
        elif kind == "CLEAR_CACHE":
            for name in self.storage.keys():
                self.storage.delete(name)
            log.info("All caches cleared")

    # ── Dispatch ──────────────────────────────────────────────────────────

    async def handle_async_request(self, request: httpx.Request) -> httpx.Response:
        if not self.controlling or request.url.scheme not in ("http", "https"):
            return await self._network.handle_async_request(request)

        if request.url.path.startswith(self.api_prefix):
            return await self._network_first(request)

        if request.method != "GET":
            return await self._network.handle_async_request(request)

        return await self._cache_first(request)

    async def _network_first(self, request: httpx.Request) -> httpx.Response:
        try:
            return await self._fetch(request)
        except httpx.TransportError as exc:
            log.info("API unavailable (%s): %s", request.url.path, exc)
            return httpx.Response(503, json=OFFLINE_API_BODY)

    async def _cache_first(self, request: httpx.Request) -> httpx.Response:
        cached = self.storage.match(request)
        if cached is not None:
            self._revalidate(request)
            return cached

        try:
            response = await self._fetch(request)
        except httpx.TransportError as exc:
            log.error("Fetch failed: %s", exc)
            if request.headers.get("sec-fetch-mode") == "navigate":
                return httpx.Response(200, html=OFFLINE_PAGE)
            raise
        if response.status_code == 200:
            self.storage.put(self.runtime_cache, request, response)
        return response

    async def _fetch(self, request: httpx.Request) -> httpx.Response:
        """Network round-trip with the body fully read."""
        response = await self._network.handle_async_request(request)
        body = await response.aread()
        return httpx.Response(
            response.status_code,
            headers=_clean_headers(response.headers),
            content=body,
        )

    # ── Background revalidation ───────────────────────────────────────────

    def _revalidate(self, request: httpx.Request) -> None:
        fresh = httpx.Request(request.method, request.url, headers=request.headers)
        task = asyncio.create_task(self._refresh(fresh))
        self._bg_tasks.add(task)
        task.add_done_callback(self._bg_tasks.discard)

    async def _refresh(self, request: httpx.Request) -> None:
        try:
            response = await self._fetch(request)
        except httpx.HTTPError as exc:
            log.debug("Revalidation of %s failed: %s", request.url, exc)
            return
        if response.status_code == 200:
            self.storage.put(self.runtime_cache, request, response)

    @property
    def pending(self) -> int:
        return len(self._bg_tasks)

    async def drain(self) -> None:
        """Wait for in-flight revalidations to finish."""
        while self._bg_tasks:
            await asyncio.gather(*list(self._bg_tasks), return_exceptions=True)

    async def aclose(self) -> None:
        for task in list(self._bg_tasks):
            task.cancel()
        if self._bg_tasks:
            await asyncio.gather(*list(self._bg_tasks), return_exceptions=True)
        await self._network.aclose()
        self.storage.close()
