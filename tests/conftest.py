"""Shared fixtures: a local HTTP upstream serving rule lists."""
from __future__ import annotations

import asyncio
from email.utils import formatdate

import pytest
import pytest_asyncio
from aiohttp import web
from aiohttp.test_utils import TestServer

from rulesync.config import RefreshConfig


class FakeUpstream:
    """Serves documents by path and honours If-Modified-Since."""

    def __init__(self) -> None:
        self.documents: dict[str, dict] = {}
        self.requests: list[tuple[str, str | None]] = []
        self.statuses: list[int] = []
        self.server: TestServer | None = None

    def serve(
        self,
        path: str,
        body: bytes = b"",
        status: int = 200,
        last_modified: float = 0.0,
        delay: float = 0.0,
        truncate_after: int | None = None,
    ) -> str:
        self.documents[path] = {
            "body": body,
            "status": status,
            "last_modified": last_modified,
            "delay": delay,
            "truncate_after": truncate_after,
        }
        return self.url(path)

    def url(self, path: str) -> str:
        return str(self.server.make_url(path))

    def hits(self, path: str) -> int:
        return sum(1 for p, _ in self.requests if p == path)

    async def handle(self, request: web.Request) -> web.StreamResponse:
        self.requests.append((request.path, request.headers.get("If-Modified-Since")))
        doc = self.documents.get(request.path)
        if doc is None:
            self.statuses.append(404)
            return web.Response(status=404, reason="Not Found")

        if doc["delay"]:
            await asyncio.sleep(doc["delay"])

        headers = {}
        if doc["last_modified"]:
            headers["Last-Modified"] = formatdate(doc["last_modified"], usegmt=True)

        if doc["status"] != 200:
            self.statuses.append(doc["status"])
            return web.Response(status=doc["status"], headers=headers)

        since = request.if_modified_since
        if since is not None and doc["last_modified"] and int(doc["last_modified"]) <= since.timestamp():
            self.statuses.append(304)
            return web.Response(status=304, headers=headers)

        self.statuses.append(200)
        if doc["truncate_after"] is None:
            return web.Response(body=doc["body"], headers=headers)

        # Send part of the body, then stall past the client's read timeout.
        headers["Content-Length"] = str(len(doc["body"]))
        response = web.StreamResponse(headers=headers)
        await response.prepare(request)
        await response.write(doc["body"][: doc["truncate_after"]])
        await asyncio.sleep(1.0)
        return response


@pytest_asyncio.fixture
async def upstream():
    fake = FakeUpstream()
    app = web.Application()
    app.router.add_route("GET", "/{name:.*}", fake.handle)
    server = TestServer(app)
    await server.start_server()
    fake.server = server
    yield fake
    await server.close()


@pytest.fixture
def config(tmp_path):
    return RefreshConfig(mirror_dir=tmp_path / "mirrors")
