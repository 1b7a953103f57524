from __future__ import annotations

import json
from typing import Any, Callable

import httpx
import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from difybridge.bridge import ChatBridge
from difybridge.config import Settings
from difybridge.dify import DifyClient
from difybridge.routers.chat import get_chat_bridge, router


def _sse(*payloads: dict[str, Any]) -> bytes:
    return b"".join(f"data: {json.dumps(p)}\n\n".encode("utf-8") for p in payloads)


HELLO_TRANSCRIPT = _sse(
    {"event": "message", "answer": "Hi", "created_at": 1700000000},
    {
        "event": "message_end",
        "metadata": {
            "usage": {"prompt_tokens": 5, "completion_tokens": 2, "total_tokens": 7}
        },
    },
)


def make_client(
    handler: Callable[[httpx.Request], httpx.Response],
    **settings_overrides: Any,
) -> TestClient:
    settings = Settings(dify_api_key="test-key", **settings_overrides)
    http_client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    bridge = ChatBridge(settings, DifyClient(settings, http_client=http_client))

    app = FastAPI()
    app.dependency_overrides[get_chat_bridge] = lambda: bridge
    app.include_router(router)
    return TestClient(app)


def _backend(body: bytes, status_code: int = 200, *, seen: list | None = None):
    def handler(request: httpx.Request) -> httpx.Response:
        if seen is not None:
            seen.append(json.loads(request.content))
        return httpx.Response(
            status_code,
            content=body,
            headers={"content-type": "text/event-stream"},
        )

    return handler


def _sse_payloads(text: str) -> list[str]:
    return [
        block[len("data: ") :]
        for block in text.split("\n\n")
        if block.startswith("data: ")
    ]


def test_aggregate_completion_returns_single_json_body():
    seen: list[dict[str, Any]] = []
    client = make_client(_backend(HELLO_TRANSCRIPT, seen=seen))

    response = client.post(
        "/v1/chat/completions",
        json={
            "model": "gpt-4o",
            "messages": [
                {"role": "user", "content": "hi"},
                {"role": "assistant", "content": "hello"},
                {"role": "user", "content": "how are you"},
            ],
        },
    )

    assert response.status_code == 200
    body = response.json()
    assert body["model"] == "gpt-4o"
    assert body["choices"][0]["message"] == {"role": "assistant", "content": "Hi"}
    assert body["usage"] == {"prompt_tokens": 5, "completion_tokens": 2, "total_tokens": 7}
    assert seen[0]["response_mode"] == "streaming"
    assert seen[0]["query"].endswith("Here is my question:\nhow are you")


def test_streaming_completion_emits_openai_chunks():
    client = make_client(_backend(HELLO_TRANSCRIPT))

    response = client.post(
        "/v1/chat/completions",
        json={
            "model": "gpt-4o",
            "stream": True,
            "messages": [{"role": "user", "content": "hi"}],
        },
    )

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/event-stream")
    payloads = _sse_payloads(response.text)
    assert payloads[-1] == "[DONE]"
    assert payloads.count("[DONE]") == 1
    first, stop = (json.loads(p) for p in payloads[:-1])
    assert first["object"] == "chat.completion.chunk"
    assert first["model"] == "gpt-4o"
    assert first["choices"][0]["delta"] == {"content": "Hi"}
    assert stop["choices"][0]["finish_reason"] == "stop"


def test_streaming_error_before_content_returns_500_with_error_frame():
    transcript = _sse({"event": "error", "code": "quota", "message": "out of quota"})
    client = make_client(_backend(transcript))

    response = client.post(
        "/v1/chat/completions",
        json={"stream": True, "messages": [{"role": "user", "content": "hi"}]},
    )

    assert response.status_code == 500
    assert _sse_payloads(response.text) == [
        json.dumps({"error": "out of quota"}),
        "[DONE]",
    ]


def test_aggregate_error_event_returns_generic_500():
    transcript = _sse({"event": "error", "code": "quota", "message": "out of quota"})
    client = make_client(_backend(transcript))

    response = client.post(
        "/chat/completions",
        json={"messages": [{"role": "user", "content": "hi"}]},
    )

    assert response.status_code == 500
    assert response.json() == {
        "error": "An error occurred while processing the request."
    }


@pytest.mark.parametrize("stream", [True, False])
def test_backend_rejection_is_passed_through(stream: bool):
    error_body = b'{"code": "app_unavailable", "message": "App unavailable"}'

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            404, content=error_body, headers={"content-type": "application/json"}
        )

    client = make_client(handler)

    response = client.post(
        "/v1/chat/completions",
        json={"stream": stream, "messages": [{"role": "user", "content": "hi"}]},
    )

    assert response.status_code == 404
    assert response.content == error_body


def test_malformed_content_is_rejected_before_backend_call():
    calls: list[dict[str, Any]] = []
    client = make_client(_backend(HELLO_TRANSCRIPT, seen=calls))

    response = client.post(
        "/v1/chat/completions",
        json={
            "messages": [
                {"role": "user", "content": [{"type": "video", "video": {}}]}
            ]
        },
    )

    assert response.status_code == 400
    assert "error" in response.json()
    assert calls == []


def test_empty_messages_are_rejected_with_400():
    calls: list[dict[str, Any]] = []
    client = make_client(_backend(HELLO_TRANSCRIPT, seen=calls))

    response = client.post("/v1/chat/completions", json={"messages": []})

    assert response.status_code == 400
    assert response.json() == {"error": "messages must not be empty"}
    assert calls == []


@pytest.mark.parametrize("stream", [False, True])
def test_bare_string_content_part_is_rejected_with_400(stream: bool):
    calls: list[dict[str, Any]] = []
    client = make_client(_backend(HELLO_TRANSCRIPT, seen=calls))

    response = client.post(
        "/v1/chat/completions",
        json={"stream": stream, "messages": [{"role": "user", "content": ["hi"]}]},
    )

    assert response.status_code == 400
    assert response.json() == {"error": "Content parts must be objects"}
    assert calls == []


def test_invalid_inline_image_is_rejected():
    client = make_client(_backend(HELLO_TRANSCRIPT))

    response = client.post(
        "/v1/chat/completions",
        json={
            "messages": [
                {
                    "role": "user",
                    "content": [
                        {"type": "image_url", "image_url": {"url": "data:image/png,raw"}}
                    ],
                }
            ]
        },
    )

    assert response.status_code == 400
    assert response.json() == {"error": "Invalid base64 data"}


def test_model_defaults_to_configured_label():
    client = make_client(_backend(HELLO_TRANSCRIPT), default_model="my-dify-app")

    response = client.post(
        "/v1/chat/completions",
        json={"messages": [{"role": "user", "content": "hi"}]},
    )

    assert response.json()["model"] == "my-dify-app"


def test_unexpected_failure_returns_message():
    def handler(request: httpx.Request) -> httpx.Response:
        raise RuntimeError("kaboom")

    client = make_client(handler)

    response = client.post(
        "/v1/chat/completions",
        json={"messages": [{"role": "user", "content": "hi"}]},
    )

    assert response.status_code == 500
    assert response.json() == {"error": "kaboom"}
