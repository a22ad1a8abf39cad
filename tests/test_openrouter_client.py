import json
from typing import Any, Callable

import httpx
import pytest
from pydantic import AnyHttpUrl, SecretStr

from voice_relay.config import Settings
from voice_relay.openrouter import (
    OpenRouterClient,
    OpenRouterConfigurationError,
    OpenRouterError,
)


def make_client(
    handler: Callable[[httpx.Request], httpx.Response],
    **overrides: Any,
) -> OpenRouterClient:
    options: dict[str, Any] = {
        "openrouter_api_key": SecretStr("test"),
        "openrouter_base_url": AnyHttpUrl("https://example.com/api/v1"),
    }
    options.update(overrides)
    settings = Settings(**options)
    http_client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return OpenRouterClient(settings, http_client=http_client)


@pytest.mark.asyncio
async def test_complete_posts_prompt_and_returns_text() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={"choices": [{"text": "  Take your time.  "}]})

    client = make_client(
        handler,
        openrouter_app_name="Voice Relay",
        default_model="openai/gpt-4o",
        max_tokens=150,
    )

    assert await client.complete("PROMPT") == "Take your time."

    request = seen[0]
    assert str(request.url) == "https://example.com/api/v1/completions"
    assert request.headers["Authorization"] == "Bearer test"
    assert request.headers["X-Title"] == "Voice Relay"
    body = json.loads(request.content)
    assert body == {
        "model": "openai/gpt-4o",
        "prompt": "PROMPT",
        "max_tokens": 150,
        "stream": False,
    }


@pytest.mark.asyncio
async def test_temperature_is_sent_when_configured() -> None:
    bodies: list[dict[str, Any]] = []

    def handler(request: httpx.Request) -> httpx.Response:
        bodies.append(json.loads(request.content))
        return httpx.Response(200, json={"choices": [{"text": "ok"}]})

    client = make_client(handler, temperature=0.4)
    await client.complete("hi")

    assert bodies[0]["temperature"] == 0.4


@pytest.mark.asyncio
async def test_chat_shaped_choice_is_accepted() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            200, json={"choices": [{"message": {"role": "assistant", "content": "Hello."}}]}
        )

    assert await make_client(handler).complete("hi") == "Hello."


@pytest.mark.asyncio
async def test_empty_completion_returns_empty_string() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"choices": [{"text": None}]})

    assert await make_client(handler).complete("hi") == ""


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "payload",
    [
        {"choices": []},
        {"nothing": True},
        ["not", "an", "object"],
        {"choices": [{"text": 42}]},
        {"error": {"message": "provider unavailable"}},
    ],
)
async def test_malformed_responses_raise(payload: Any) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json=payload)

    with pytest.raises(OpenRouterError) as exc_info:
        await make_client(handler).complete("hi")

    assert exc_info.value.status_code == 502


@pytest.mark.asyncio
async def test_http_error_status_is_preserved() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(429, json={"error": {"message": "Rate limited"}})

    with pytest.raises(OpenRouterError) as exc_info:
        await make_client(handler).complete("hi")

    assert exc_info.value.status_code == 429
    assert exc_info.value.detail == {"message": "Rate limited"}


@pytest.mark.asyncio
async def test_non_json_body_raises_bad_gateway() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, content=b"<html>oops</html>")

    with pytest.raises(OpenRouterError) as exc_info:
        await make_client(handler).complete("hi")

    assert exc_info.value.status_code == 502


@pytest.mark.asyncio
async def test_transport_errors_are_wrapped() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(OpenRouterError) as exc_info:
        await make_client(handler).complete("hi")

    assert exc_info.value.status_code == 502
    assert "connection refused" in str(exc_info.value)


@pytest.mark.asyncio
@pytest.mark.parametrize("api_key", [None, SecretStr("   ")])
async def test_missing_api_key_raises_configuration_error(api_key: SecretStr | None) -> None:
    calls: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return httpx.Response(200, json={"choices": [{"text": "unused"}]})

    client = make_client(handler, openrouter_api_key=api_key)

    with pytest.raises(OpenRouterConfigurationError):
        await client.complete("hi")
    assert calls == []


def test_referer_headers_follow_settings(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("REFERER", "https://app.example.com")

    settings = Settings(openrouter_api_key=SecretStr("test"))
    headers = OpenRouterClient(settings)._headers  # type: ignore[attr-defined]

    assert headers["HTTP-Referer"].rstrip("/") == "https://app.example.com"
    assert headers["Referer"].rstrip("/") == "https://app.example.com"
