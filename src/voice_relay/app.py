"""Application factory for the voice relay service."""

from __future__ import annotations

import logging
import os
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .config import PROJECT_ROOT, Settings, get_settings
from .logging_handlers import DateStampedFileHandler, cleanup_old_logs
from .logging_settings import LoggingSettings, parse_logging_settings
from .openrouter import OpenRouterClient
from .routers.voice import router as voice_router
from .services.response_generator import CompletionBackend, ResponseGenerator
from .services.transcript_logging import TranscriptLogWriter
from .services.voice_session import VoiceSessionRegistry

_LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
_LOG_DATEFMT = "%Y-%m-%d %H:%M:%S"


def _resolve_under(base: Path, p: Path) -> Path:
    # Allow absolute paths as-is (useful for tests and external mounts).
    if p.is_absolute():
        return p.resolve()
    resolved = (base / p).resolve()
    if not resolved.is_relative_to(base):
        raise ValueError(f"Configured path {resolved} escapes project root {base}")
    return resolved


def _configure_logging(log_settings: LoggingSettings, app_log_dir: Path) -> None:
    """Configure logging from LOG_LEVEL / LOG_FILE and the logging settings file."""
    # Load .env file first to ensure LOG_FILE is available
    load_dotenv()

    env_level = os.getenv("LOG_LEVEL")
    if env_level:
        log_level = getattr(logging, env_level.upper(), logging.INFO)
    else:
        log_level = log_settings.terminal_level or logging.WARNING

    formatter = logging.Formatter(_LOG_FORMAT, datefmt=_LOG_DATEFMT)
    handlers: list[logging.Handler] = []

    if log_settings.terminal_level is not None or env_level:
        console_handler = logging.StreamHandler()
        console_handler.setFormatter(formatter)
        console_handler.setLevel(log_level)
        handlers.append(console_handler)

    log_file = os.getenv("LOG_FILE")
    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_path, encoding="utf-8")
        file_handler.setFormatter(formatter)
        handlers.append(file_handler)

    if log_settings.sessions_level is not None:
        session_handler = DateStampedFileHandler(app_log_dir, prefix="relay", delay=True)
        session_handler.setFormatter(formatter)
        session_handler.setLevel(log_settings.sessions_level)
        handlers.append(session_handler)

    if not handlers:
        handlers.append(logging.NullHandler())

    root_level = log_settings.root_level(log_level)
    logging.basicConfig(level=root_level, handlers=handlers, force=True)

    logging.getLogger("voice_relay").setLevel(root_level)
    for name in ("uvicorn", "uvicorn.access", "uvicorn.error"):
        logging.getLogger(name).setLevel(log_level)

    # Quiet noisy HTTP client libraries unless debugging
    http_level = log_level if log_level <= logging.DEBUG else logging.WARNING
    logging.getLogger("httpx").setLevel(http_level)
    logging.getLogger("httpcore").setLevel(http_level)


def create_app(
    settings: Optional[Settings] = None,
    *,
    backend: Optional[CompletionBackend] = None,
    configure_logging: bool = True,
) -> FastAPI:
    settings = settings or get_settings()

    log_settings = parse_logging_settings(PROJECT_ROOT / "logging_settings.conf")
    app_log_dir = _resolve_under(PROJECT_ROOT, settings.app_log_dir)
    transcript_log_dir = _resolve_under(PROJECT_ROOT, settings.transcript_log_dir)

    if configure_logging:
        _configure_logging(log_settings, app_log_dir)
    logger = logging.getLogger(__name__)

    completion_client: OpenRouterClient | None = None
    if backend is None:
        completion_client = OpenRouterClient(settings)
        backend = completion_client

    generator = ResponseGenerator(backend)
    transcript_logger = TranscriptLogWriter(
        transcript_log_dir, min_level=log_settings.transcripts_level
    )
    registry = VoiceSessionRegistry.from_settings(
        settings, generator, transcript_logger=transcript_logger
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        cleanup_old_logs(
            [app_log_dir, transcript_log_dir],
            log_settings.retention_hours,
            logger,
        )
        if settings.openrouter_api_key is None:
            logger.warning(
                "OPENROUTER_API_KEY is not set; voice replies will fail until it is configured"
            )
        logger.info("Voice WebSocket server initialized on /api/voice")
        try:
            yield
        finally:
            await registry.close_all()
            if completion_client is not None:
                await completion_client.aclose()

    app = FastAPI(
        title="Voice Relay",
        version="0.1.0",
        description="Real-time voice conversation relay powered by OpenRouter.",
        lifespan=lifespan,
    )

    app.state.settings = settings
    app.state.voice_sessions = registry
    app.state.response_generator = generator

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_allow_origins,
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(voice_router)

    @app.get("/api/health", tags=["health"])
    async def healthcheck() -> dict[str, str | int]:
        return {
            "status": "ok",
            "active_voice_sessions": len(registry),
            "model": settings.default_model,
        }

    return app


__all__ = ["create_app"]
