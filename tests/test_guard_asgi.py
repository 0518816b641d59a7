"""ASGI adapter tests: body replay, short-circuits and response headers."""

from __future__ import annotations

import json

import pytest
from starlette.applications import Starlette
from starlette.requests import Request
from starlette.responses import JSONResponse
from starlette.routing import Route
from starlette.testclient import TestClient

from users_api.middleware.context_injector import ContextInjector
from users_api.middleware.guard_asgi import GuardMiddleware
from users_api.middleware.pipeline import Middleware, MiddlewarePipeline
from users_api.middleware.request_guard import RequestGuard


async def _echo(request: Request) -> JSONResponse:
    body = await request.body()
    return JSONResponse({
        "body": body.decode("utf-8"),
        "content_length": request.headers.get("content-length"),
    })


_echo_app = Starlette(routes=[Route("/echo", _echo, methods=["GET", "POST"])])


def _guarded_client(pipeline: MiddlewarePipeline | None) -> TestClient:
    return TestClient(GuardMiddleware(_echo_app, get_pipeline=lambda: pipeline))


@pytest.fixture
def pipeline() -> MiddlewarePipeline:
    pipeline = MiddlewarePipeline()
    pipeline.add(ContextInjector())
    pipeline.add(RequestGuard())
    return pipeline


class TestPassThrough:
    def test_clean_body_forwarded_unchanged(self, pipeline):
        client = _guarded_client(pipeline)
        raw = '{"name": "bob"}'
        resp = client.post("/echo", content=raw, headers={"content-type": "application/json"})

        assert resp.status_code == 200
        assert resp.json()["body"] == raw
        assert resp.headers["x-content-type-options"] == "nosniff"
        assert resp.headers["x-ratelimit-limit"] == "100"

    def test_scrubbed_body_replaces_original(self, pipeline):
        client = _guarded_client(pipeline)
        resp = client.post("/echo", json={"bio": "<script>alert(1)</script>hello", "n": [1, "javascript:x"]})

        data = resp.json()
        forwarded = json.loads(data["body"])
        assert forwarded == {"bio": "hello", "n": [1, "x"]}
        assert data["content_length"] == str(len(data["body"].encode("utf-8")))

    def test_request_id_header_added(self, pipeline):
        client = _guarded_client(pipeline)
        resp = client.get("/echo", headers={"x-request-id": "client-abc"})

        assert len(resp.headers["x-request-id"]) == 8
        assert resp.headers["x-original-request-id"] == "client-abc"

    def test_no_pipeline_means_no_guard(self):
        client = _guarded_client(None)
        resp = client.post("/echo", json={"bio": "<script>x</script>"})

        assert json.loads(resp.json()["body"]) == {"bio": "<script>x</script>"}
        assert "x-content-type-options" not in resp.headers


class TestShortCircuit:
    def test_oversized_body_rejected(self, pipeline):
        client = _guarded_client(pipeline)
        resp = client.post("/echo", content=b"x" * 1_048_577, headers={"content-type": "application/json"})

        assert resp.status_code == 413
        assert resp.json() == {
            "success": False,
            "error": "Request entity too large",
            "maxSize": "1048576 bytes",
        }

    def test_rejection_has_no_guard_headers(self, pipeline):
        client = _guarded_client(pipeline)
        resp = client.post("/echo", content="hello", headers={"content-type": "text/plain"})

        assert resp.status_code == 415
        assert "x-content-type-options" not in resp.headers
        assert "x-ratelimit-limit" not in resp.headers
        # Request ID is still echoed
        assert "x-request-id" in resp.headers

    def test_broken_middleware_returns_502(self):
        class Exploding(Middleware):
            async def process_request(self, request, context):
                raise RuntimeError("boom")

        pipeline = MiddlewarePipeline()
        pipeline.add(Exploding())
        resp = _guarded_client(pipeline).get("/echo")
        assert resp.status_code == 502


def _scope(headers: list[tuple[bytes, bytes]]) -> dict:
    return {
        "type": "http",
        "method": "POST",
        "scheme": "http",
        "server": ("testserver", 80),
        "path": "/echo",
        "root_path": "",
        "query_string": b"",
        "headers": headers,
    }


class TestBodyLimit:
    def test_chunked_body_over_limit_rejected(self, pipeline):
        def chunks():
            for _ in range(3):
                yield b"x" * 500_000

        client = _guarded_client(pipeline)
        resp = client.post("/echo", content=chunks(), headers={"content-type": "application/json"})

        assert resp.status_code == 413
        assert resp.json()["maxSize"] == "1048576 bytes"
        assert "x-content-type-options" not in resp.headers

    def test_chunked_body_within_limit_forwarded(self, pipeline):
        def chunks():
            yield b'{"a": '
            yield b'"b"}'

        client = _guarded_client(pipeline)
        resp = client.post("/echo", content=chunks(), headers={"content-type": "application/json"})

        assert resp.status_code == 200
        assert resp.json()["body"] == '{"a": "b"}'

    @pytest.mark.asyncio
    async def test_reading_stops_once_limit_passed(self, pipeline):
        received = []
        sent = []

        async def receive():
            received.append(1)
            return {"type": "http.request", "body": b"x" * 400_000, "more_body": True}

        async def send(message):
            sent.append(message)

        guarded = GuardMiddleware(_echo_app, get_pipeline=lambda: pipeline)
        await guarded(_scope([(b"content-type", b"application/json")]), receive, send)

        assert sent[0]["status"] == 413
        assert len(received) == 3

    @pytest.mark.asyncio
    async def test_declared_oversize_body_not_read(self, pipeline):
        received = []
        sent = []

        async def receive():
            received.append(1)
            return {"type": "http.request", "body": b"{}", "more_body": False}

        async def send(message):
            sent.append(message)

        headers = [(b"content-type", b"application/json"), (b"content-length", b"2000000")]
        guarded = GuardMiddleware(_echo_app, get_pipeline=lambda: pipeline)
        await guarded(_scope(headers), receive, send)

        assert sent[0]["status"] == 413
        assert received == []

    def test_disabled_guard_sets_no_limit(self, pipeline):
        pipeline.set_enabled("RequestGuard", False)
        client = _guarded_client(pipeline)

        def chunks():
            for _ in range(3):
                yield b"x" * 500_000

        resp = client.post("/echo", content=chunks(), headers={"content-type": "application/json"})
        assert resp.status_code == 200
        assert len(resp.json()["body"]) == 1_500_000
