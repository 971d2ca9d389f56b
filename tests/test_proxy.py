"""End-to-end tests for the /api/* proxy route."""
import json

import anyio
import httpx
import pytest
from conftest import ChunkStream

GENERATE = {"endpoint": "/api/generate", "model": "llama3"}


def test_buffered_generate_records_tokens(make_client, read_metric):
    """Non-streamed generate: counts, bytes and token usage."""
    request_body = b'{"model":"llama3","prompt":"Hi","stream":false}'
    upstream_body = b'{"response":"...","eval_count":10,"prompt_eval_count":3}'
    seen = {}

    def upstream(request):
        seen["url"] = str(request.url)
        seen["body"] = request.content
        return httpx.Response(200, content=upstream_body, headers={"content-type": "application/json"})

    client = make_client(upstream)
    response = client.post("/api/generate", content=request_body, headers={"content-type": "application/json"})

    assert response.status_code == 200
    assert response.content == upstream_body
    assert seen["url"] == "http://ollama.test:11434/api/generate"
    assert seen["body"] == request_body

    assert read_metric("ollama_proxy_requests_total", status="200", stream="false", **GENERATE) == 1
    assert read_metric("ollama_proxy_request_duration_seconds_count", stream="false", **GENERATE) == 1
    assert read_metric("ollama_proxy_request_bytes_in_total", stream="false", **GENERATE) == len(request_body)
    assert read_metric("ollama_proxy_response_bytes_out_total", stream="false", **GENERATE) == len(upstream_body)
    assert read_metric("ollama_proxy_prompt_tokens_total", **GENERATE) == 3
    assert read_metric("ollama_proxy_completion_tokens_total", **GENERATE) == 10


def test_buffered_without_token_fields(make_client, read_metric):
    client = make_client(lambda request: httpx.Response(200, json={"models": []}))

    response = client.post("/api/generate", json={"model": "llama3", "stream": False})

    assert response.status_code == 200
    assert read_metric("ollama_proxy_requests_total", status="200", stream="false", **GENERATE) == 1
    assert read_metric("ollama_proxy_prompt_tokens_total", **GENERATE) is None
    assert read_metric("ollama_proxy_completion_tokens_total", **GENERATE) is None


def test_streamed_generate_counts_bytes_only(make_client, read_metric):
    """Streamed generate: 500 bytes relayed, token counters untouched."""
    chunks = [b"x" * 100 for _ in range(4)] + [b'{"done":true,"eval_count":5}'.ljust(100)]

    def upstream(request):
        return httpx.Response(
            200,
            headers={"content-type": "application/x-ndjson"},
            stream=ChunkStream(chunks),
        )

    client = make_client(upstream)
    response = client.post("/api/generate", json={"model": "llama3", "stream": True})

    assert response.status_code == 200
    assert response.content == b"".join(chunks)
    assert response.headers["content-type"] == "application/x-ndjson"

    assert read_metric("ollama_proxy_response_bytes_out_total", stream="true", **GENERATE) == 500
    assert read_metric("ollama_proxy_requests_total", status="200", stream="true", **GENERATE) == 1
    assert read_metric("ollama_proxy_request_duration_seconds_count", stream="true", **GENERATE) == 1
    assert read_metric("ollama_proxy_prompt_tokens_total", **GENERATE) is None
    assert read_metric("ollama_proxy_completion_tokens_total", **GENERATE) is None


def test_upstream_unreachable_returns_502(make_client, read_metric):
    def upstream(request):
        raise httpx.ConnectError("connection refused", request=request)

    client = make_client(upstream)
    response = client.post("/api/generate", json={"model": "llama3", "stream": False})

    assert response.status_code == 502
    error = response.json()["error"]
    assert error["code"] == "NETWORK_ERROR"
    assert error["source"] == "upstream"

    assert read_metric("ollama_proxy_requests_total", status="502", stream="false", **GENERATE) == 1
    assert read_metric("ollama_proxy_request_duration_seconds_count", stream="false", **GENERATE) == 1
    assert read_metric("ollama_proxy_response_bytes_out_total", stream="false", **GENERATE) is None


def test_empty_body_uses_default_labels(make_client, read_metric):
    seen = {}

    def upstream(request):
        seen["content_type"] = request.headers.get("content-type")
        seen["body"] = request.content
        return httpx.Response(200, content=b"{}")

    client = make_client(upstream)
    response = client.post("/api/generate", content=b"")

    assert response.status_code == 200
    assert seen["body"] == b""
    assert seen["content_type"] == "application/json"
    labels = {"endpoint": "/api/generate", "model": "unknown", "stream": "true"}
    assert read_metric("ollama_proxy_requests_total", status="200", **labels) == 1
    assert read_metric("ollama_proxy_request_bytes_in_total", **labels) == 0
    assert read_metric("ollama_proxy_response_bytes_out_total", **labels) == 2


def test_get_with_query_is_forwarded_verbatim(make_client, read_metric):
    seen = {}

    def upstream(request):
        seen["method"] = request.method
        seen["path"] = request.url.path
        seen["query"] = request.url.query
        return httpx.Response(200, json={"models": [{"name": "llama3"}]})

    client = make_client(upstream)
    response = client.get("/api/tags?verbose=true&name=a%20b")

    assert response.status_code == 200
    assert response.json() == {"models": [{"name": "llama3"}]}
    assert seen == {"method": "GET", "path": "/api/tags", "query": b"verbose=true&name=a%20b"}
    assert read_metric(
        "ollama_proxy_requests_total",
        endpoint="/api/tags", model="unknown", status="200", stream="true",
    ) == 1


@pytest.mark.parametrize("method", ["PUT", "DELETE", "PATCH", "PROPFIND"])
def test_any_method_is_forwarded(make_client, read_metric, method):
    seen = {}

    def upstream(request):
        seen["method"] = request.method
        return httpx.Response(200, content=b"{}")

    client = make_client(upstream)
    response = client.request(method, "/api/delete", json={"model": "llama3"})

    assert response.status_code == 200
    assert seen["method"] == method
    assert read_metric(
        "ollama_proxy_requests_total",
        endpoint="/api/delete", model="llama3", status="200", stream="true",
    ) == 1


def test_upstream_error_status_is_relayed_and_labelled(make_client, read_metric):
    def upstream(request):
        return httpx.Response(404, json={"error": "model 'nope' not found"})

    client = make_client(upstream)
    response = client.post("/api/chat", json={"model": "nope", "stream": False})

    assert response.status_code == 404
    assert response.json() == {"error": "model 'nope' not found"}
    assert read_metric(
        "ollama_proxy_requests_total",
        endpoint="/api/chat", model="nope", status="404", stream="false",
    ) == 1


def test_upstream_headers_are_copied(make_client):
    def upstream(request):
        return httpx.Response(
            200,
            headers=[("x-ollama", "1"), ("set-cookie", "a=1"), ("set-cookie", "b=2")],
            content=b"{}",
        )

    client = make_client(upstream)
    response = client.post("/api/generate", json={"model": "llama3", "stream": False})

    assert response.headers["x-ollama"] == "1"
    assert response.headers.get_list("set-cookie") == ["a=1", "b=2"]


@pytest.mark.parametrize("stream", [False, True])
def test_upstream_breaking_off_mid_body_is_counted_once(make_client, read_metric, stream):
    def upstream(request):
        return httpx.Response(
            200,
            stream=ChunkStream([b'{"response":"partial'], error=httpx.RemoteProtocolError("peer closed")),
        )

    client = make_client(upstream)
    response = client.post("/api/generate", json={"model": "llama3", "stream": stream})

    assert response.status_code == 200
    labels = dict(GENERATE, stream="true" if stream else "false")
    assert read_metric("ollama_proxy_requests_total", status="200", **labels) == 1
    assert read_metric("ollama_proxy_request_duration_seconds_count", **labels) == 1
    assert read_metric("ollama_proxy_prompt_tokens_total", **GENERATE) is None


def test_client_headers_are_forwarded(make_client):
    seen = {}

    def upstream(request):
        seen["headers"] = request.headers
        return httpx.Response(200, content=b"{}")

    client = make_client(upstream)
    client.post(
        "/api/embed",
        json={"model": "nomic-embed-text", "input": "hi"},
        headers={"authorization": "Bearer token", "x-request-source": "test"},
    )

    assert seen["headers"]["authorization"] == "Bearer token"
    assert seen["headers"]["x-request-source"] == "test"
    assert seen["headers"]["host"] == "ollama.test:11434"


def test_each_request_counted_once(make_client, read_metric):
    client = make_client(lambda request: httpx.Response(200, content=b"{}"))

    for _ in range(3):
        client.post("/api/generate", json={"model": "llama3", "stream": False})
    client.post("/api/generate", json={"model": "llama3"})

    assert read_metric("ollama_proxy_requests_total", status="200", stream="false", **GENERATE) == 3
    assert read_metric("ollama_proxy_request_duration_seconds_count", stream="false", **GENERATE) == 3
    assert read_metric("ollama_proxy_requests_total", status="200", stream="true", **GENERATE) == 1


def test_model_label_hook(make_client, read_metric):
    allowed = {"llama3"}
    client = make_client(
        lambda request: httpx.Response(200, content=b"{}"),
        model_label=lambda model: model if model in allowed else "other",
    )

    client.post("/api/generate", json={"model": "random-1234", "stream": False})

    assert read_metric(
        "ollama_proxy_requests_total",
        endpoint="/api/generate", model="other", status="200", stream="false",
    ) == 1
    assert read_metric(
        "ollama_proxy_requests_total",
        endpoint="/api/generate", model="random-1234", status="200", stream="false",
    ) is None


def _scope(path="/api/generate", method="POST"):
    return {
        "type": "http",
        "asgi": {"version": "3.0"},
        "http_version": "1.1",
        "method": method,
        "scheme": "http",
        "path": path,
        "raw_path": path.encode(),
        "query_string": b"",
        "root_path": "",
        "headers": [(b"host", b"proxy.local"), (b"content-type", b"application/json")],
        "client": ("127.0.0.1", 50000),
        "server": ("proxy.local", 8080),
    }


@pytest.mark.asyncio
async def test_unreadable_body_returns_400_without_metrics(make_app, registry):
    calls = []

    def upstream(request):
        calls.append(request)
        return httpx.Response(200)

    app = make_app(upstream)
    messages = [
        {"type": "http.request", "body": b'{"model": "lla', "more_body": True},
        {"type": "http.disconnect"},
    ]
    sent = []

    async def receive():
        return messages.pop(0) if messages else {"type": "http.disconnect"}

    async def send(message):
        sent.append(message)

    await app(_scope(), receive, send)

    assert sent[0]["status"] == 400
    body = json.loads(b"".join(m.get("body", b"") for m in sent[1:]))
    assert body["error"]["code"] == "BAD_REQUEST"
    assert calls == []
    samples = [s for family in registry.collect() for s in family.samples]
    assert samples == []


@pytest.mark.asyncio
async def test_client_gone_before_upstream_answers_is_abandoned(make_app, read_metric):
    cancelled = anyio.Event()

    async def upstream(request):
        try:
            await anyio.sleep_forever()
        finally:
            cancelled.set()

    app = make_app(upstream)
    body = b'{"model":"llama3","stream":false}'
    messages = [{"type": "http.request", "body": body, "more_body": False}]

    async def receive():
        if messages:
            return messages.pop(0)
        return {"type": "http.disconnect"}

    async def send(message):
        pass

    with anyio.fail_after(5):
        await app(_scope(), receive, send)

    assert cancelled.is_set()
    assert read_metric("ollama_proxy_request_bytes_in_total", stream="false", **GENERATE) == len(body)
    assert read_metric("ollama_proxy_requests_total", status="200", stream="false", **GENERATE) is None
    assert read_metric("ollama_proxy_requests_total", status="502", stream="false", **GENERATE) is None
    assert read_metric("ollama_proxy_request_duration_seconds_count", stream="false", **GENERATE) is None
