"""OpenRouter text completion client."""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Mapping, Sequence

import httpx
from fastapi import status

from .config import Settings

logger = logging.getLogger(__name__)


class OpenRouterError(Exception):
    """Wrap transport or API failures when communicating with OpenRouter."""

    def __init__(self, status_code: int, detail: Any):
        super().__init__(str(detail))
        self.status_code = status_code
        self.detail = detail


class OpenRouterConfigurationError(RuntimeError):
    """Raised when the client is used without credentials."""


class OpenRouterClient:
    """Client responsible for single-shot text completions from OpenRouter."""

    _client_lock: asyncio.Lock = asyncio.Lock()
    _client_pool: dict[tuple[str, float], httpx.AsyncClient] = {}

    def __init__(
        self, settings: Settings, *, http_client: httpx.AsyncClient | None = None
    ):
        self._settings = settings
        self._http_client = http_client

    def _client_key(self) -> tuple[str, float]:
        return (self._base_url, float(self._settings.request_timeout))

    async def _get_http_client(self) -> httpx.AsyncClient:
        if self._http_client is not None:
            return self._http_client

        key = self._client_key()
        client = self.__class__._client_pool.get(key)
        if client is not None:
            return client

        async with self.__class__._client_lock:
            client = self.__class__._client_pool.get(key)
            if client is None:
                timeout = httpx.Timeout(self._settings.request_timeout, connect=10.0)
                limits = httpx.Limits(
                    max_connections=50,
                    max_keepalive_connections=20,
                )
                client = httpx.AsyncClient(
                    timeout=timeout,
                    limits=limits,
                    http2=True,
                )
                self.__class__._client_pool[key] = client
        return client

    def _api_key(self) -> str:
        secret = self._settings.openrouter_api_key
        value = secret.get_secret_value().strip() if secret is not None else ""
        if not value:
            raise OpenRouterConfigurationError(
                "OPENROUTER_API_KEY environment variable is not set"
            )
        return value

    @property
    def _headers(self) -> dict[str, str]:
        headers = {
            "Authorization": f"Bearer {self._api_key()}",
            "Content-Type": "application/json",
            "Accept": "application/json",
        }
        if self._settings.openrouter_app_url:
            referer = str(self._settings.openrouter_app_url)
            headers["HTTP-Referer"] = referer
            headers["Referer"] = referer
        if self._settings.openrouter_app_name:
            headers["X-Title"] = self._settings.openrouter_app_name
        return headers

    @property
    def _base_url(self) -> str:
        """Return the OpenRouter API base URL without a trailing slash."""

        return str(self._settings.openrouter_base_url).rstrip("/")

    def _build_payload(self, prompt: str) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "model": self._settings.default_model,
            "prompt": prompt,
            "max_tokens": self._settings.max_tokens,
            "stream": False,
        }
        if self._settings.temperature is not None:
            payload["temperature"] = self._settings.temperature
        return payload

    async def complete(self, prompt: str) -> str:
        """Return the completion text for ``prompt`` (possibly empty)."""

        headers = self._headers
        payload = self._build_payload(prompt)
        url = f"{self._base_url}/completions"

        client = await self._get_http_client()
        logger.debug(
            "Requesting completion: model=%s prompt_chars=%d",
            payload["model"],
            len(prompt),
        )
        try:
            response = await client.post(url, headers=headers, json=payload)
        except httpx.HTTPError as exc:
            raise OpenRouterError(status.HTTP_502_BAD_GATEWAY, str(exc)) from exc

        if response.status_code >= 400:
            detail = self._extract_error_detail(response.content)
            raise OpenRouterError(response.status_code, detail)

        try:
            body = response.json()
        except ValueError as exc:
            raise OpenRouterError(status.HTTP_502_BAD_GATEWAY, str(exc)) from exc

        return self._extract_completion_text(body)

    @staticmethod
    def _extract_completion_text(payload: Any) -> str:
        if not isinstance(payload, Mapping):
            raise OpenRouterError(
                status.HTTP_502_BAD_GATEWAY, "Completion response is not an object"
            )
        if payload.get("error"):
            raise OpenRouterError(status.HTTP_502_BAD_GATEWAY, payload["error"])
        choices = payload.get("choices")
        if not isinstance(choices, Sequence) or isinstance(choices, str) or not choices:
            raise OpenRouterError(
                status.HTTP_502_BAD_GATEWAY, "Completion response missing choices"
            )
        choice = choices[0]
        if not isinstance(choice, Mapping):
            raise OpenRouterError(
                status.HTTP_502_BAD_GATEWAY, "Completion response missing choice"
            )

        text = choice.get("text")
        if text is None:
            # Some providers answer completions in chat shape.
            message = choice.get("message")
            if isinstance(message, Mapping):
                text = message.get("content")
        if text is None:
            return ""
        if not isinstance(text, str):
            raise OpenRouterError(
                status.HTTP_502_BAD_GATEWAY, "Completion text is not a string"
            )
        return text.strip()

    async def aclose(self) -> None:
        await self.__class__.aclose_shared()

    @classmethod
    async def aclose_shared(cls) -> None:
        async with cls._client_lock:
            clients = list(cls._client_pool.values())
            cls._client_pool.clear()
        for client in clients:
            try:
                await client.aclose()
            except Exception:  # pragma: no cover - best effort cleanup
                pass

    @staticmethod
    def _extract_error_detail(raw: bytes) -> Any:
        if not raw:
            return "OpenRouter returned an empty error response."
        try:
            text = raw.decode("utf-8")
        except UnicodeDecodeError:
            text = raw.decode("utf-8", errors="ignore")
        try:
            payload = json.loads(text)
        except json.JSONDecodeError:
            return text
        if isinstance(payload, dict):
            return payload.get("error") or payload
        return payload


__all__ = ["OpenRouterClient", "OpenRouterConfigurationError", "OpenRouterError"]
