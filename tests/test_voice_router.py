from __future__ import annotations

from datetime import date
from pathlib import Path

import pytest
from fakes import StubBackend
from fastapi import FastAPI
from fastapi.testclient import TestClient
from pydantic import SecretStr
from starlette.websockets import WebSocketDisconnect

from voice_relay.app import create_app
from voice_relay.config import Settings
from voice_relay.routers.voice import router
from voice_relay.schemas.voice import GENERIC_ERROR_MESSAGE
from voice_relay.services.response_generator import RESTING_REPLY, ResponseGenerator
from voice_relay.services.voice_session import VoiceSessionRegistry


def make_client(backend: StubBackend) -> tuple[TestClient, VoiceSessionRegistry]:
    app = FastAPI()
    generator = ResponseGenerator(backend, today_provider=lambda: date(2025, 7, 4))
    registry = VoiceSessionRegistry(generator, greeting_cue_delay=0, reply_cue_delay=0)
    app.state.voice_sessions = registry
    app.include_router(router)
    return TestClient(app), registry


def test_config_then_text_conversation() -> None:
    client, registry = make_client(StubBackend("Use the camera app."))

    with client.websocket_connect("/api/voice") as ws:
        ws.send_json({"type": "config", "seniorName": "Alice"})
        greeting = ws.receive_json()
        assert greeting["type"] == "transcript"
        assert greeting["role"] == "assistant"
        assert "Alice" in greeting["text"]
        assert ws.receive_json() == {"type": "speaking"}
        assert ws.receive_json() == {"type": "listening"}
        assert len(registry) == 1

        ws.send_json({"type": "text", "text": "How do I take a photo?"})
        assert ws.receive_json() == {"type": "speaking"}
        assert ws.receive_json() == {
            "type": "transcript",
            "role": "assistant",
            "text": "Use the camera app.",
        }
        assert ws.receive_json() == {"type": "listening"}

    assert len(registry) == 0


def test_backend_failure_reply_is_a_normal_transcript() -> None:
    client, _ = make_client(StubBackend(RuntimeError("quota exceeded")))

    with client.websocket_connect("/api/voice") as ws:
        ws.send_json({"type": "text", "text": "Hello"})
        assert ws.receive_json() == {"type": "speaking"}
        assert ws.receive_json() == {
            "type": "transcript",
            "role": "assistant",
            "text": RESTING_REPLY,
        }
        assert ws.receive_json() == {"type": "listening"}


def test_malformed_message_keeps_connection_usable() -> None:
    client, _ = make_client(StubBackend("Still here."))

    with client.websocket_connect("/api/voice") as ws:
        ws.send_text("{not json")
        assert ws.receive_json() == {"type": "error", "message": GENERIC_ERROR_MESSAGE}

        ws.send_json({"type": "unknown"})
        assert ws.receive_json() == {"type": "error", "message": GENERIC_ERROR_MESSAGE}

        ws.send_json({"type": "text", "text": "Are you there?"})
        assert ws.receive_json() == {"type": "speaking"}
        assert ws.receive_json()["text"] == "Still here."


def test_audio_frames_are_acknowledged() -> None:
    client, _ = make_client(StubBackend("unused"))

    with client.websocket_connect("/api/voice") as ws:
        ws.send_bytes(b"\x01" * 2000)
        assert ws.receive_json() == {"type": "listening"}


def test_missing_registry_closes_connection() -> None:
    app = FastAPI()
    app.include_router(router)
    client = TestClient(app)

    with pytest.raises(WebSocketDisconnect) as exc_info:
        with client.websocket_connect("/api/voice") as ws:
            ws.receive_json()

    assert exc_info.value.code == 1011


def test_create_app_wires_voice_endpoint_and_health(tmp_path: Path) -> None:
    settings = Settings(
        openrouter_api_key=SecretStr("test"),
        greeting_cue_delay=0,
        reply_cue_delay=0,
        transcript_log_dir=tmp_path / "voice",
        app_log_dir=tmp_path / "app",
    )
    app = create_app(settings, backend=StubBackend("Hi Alice."), configure_logging=False)

    with TestClient(app) as client:
        health = client.get("/api/health")
        assert health.status_code == 200
        assert health.json() == {
            "status": "ok",
            "active_voice_sessions": 0,
            "model": settings.default_model,
        }

        with client.websocket_connect("/api/voice") as ws:
            ws.send_json({"type": "config", "seniorName": "Alice"})
            assert "Alice" in ws.receive_json()["text"]
            assert client.get("/api/health").json()["active_voice_sessions"] == 1

        assert client.get("/api/health").json()["active_voice_sessions"] == 0
