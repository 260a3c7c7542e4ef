from __future__ import annotations

import logging
from typing import Any

import httpx

from citeguard.core.config import Settings
from citeguard.domain.errors import ExternalServiceError

logger = logging.getLogger(__name__)


class CompletionClient:
    """Thin client for an OpenAI-compatible chat completions endpoint."""

    def __init__(
        self,
        *,
        api_url: str,
        api_key: str | None,
        model: str,
        timeout_seconds: float = 60.0,
        temperature: float = 0.2,
        max_tokens: int = 2000,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.api_url = api_url
        self.api_key = api_key
        self.model = model
        self.timeout_seconds = timeout_seconds
        self.temperature = temperature
        self.max_tokens = max_tokens
        self._client = client

    @classmethod
    def from_settings(cls, settings: Settings, *, client: httpx.AsyncClient | None = None) -> "CompletionClient":
        return cls(
            api_url=settings.completion_api_url,
            api_key=settings.completion_api_key,
            model=settings.completion_model,
            timeout_seconds=settings.completion_timeout_seconds,
            temperature=settings.completion_temperature,
            max_tokens=settings.completion_max_tokens,
            client=client,
        )

    async def complete(self, *, system: str, user: str) -> str:
        if not self.api_key:
            raise ExternalServiceError("completion API key is not configured")

        payload = {
            "model": self.model,
            "messages": [
                {"role": "system", "content": system},
                {"role": "user", "content": user},
            ],
            "temperature": self.temperature,
            "max_tokens": self.max_tokens,
        }
        headers = {"Authorization": f"Bearer {self.api_key}", "Content-Type": "application/json"}

        try:
            if self._client is not None:
                response = await self._client.post(
                    self.api_url, json=payload, headers=headers, timeout=self.timeout_seconds
                )
            else:
                async with httpx.AsyncClient(timeout=self.timeout_seconds) as client:
                    response = await client.post(self.api_url, json=payload, headers=headers)
        except httpx.TimeoutException as exc:
            raise ExternalServiceError("completion API timed out") from exc
        except httpx.HTTPError as exc:
            raise ExternalServiceError("completion API unavailable") from exc

        if response.status_code < 200 or response.status_code >= 300:
            logger.warning(
                "completion API error status=%s body=%s",
                response.status_code,
                response.text[:200],
            )
            raise ExternalServiceError(
                f"completion API error: {response.status_code}",
                status_code=response.status_code,
            )

        content = _extract_content(response)
        if content is None:
            raise ExternalServiceError("completion API returned no content", status_code=response.status_code)
        return content


def _extract_content(response: httpx.Response) -> str | None:
    try:
        body: Any = response.json()
    except ValueError:
        return None
    if not isinstance(body, dict):
        return None
    choices = body.get("choices")
    if not isinstance(choices, list) or not choices:
        return None
    message = choices[0].get("message") if isinstance(choices[0], dict) else None
    if not isinstance(message, dict):
        return None
    content = message.get("content")
    return content if isinstance(content, str) else None
