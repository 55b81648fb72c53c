"""Shared aiohttp plumbing for the JSON-over-HTTPS model providers."""

from __future__ import annotations

import asyncio
import json
import random
from typing import Any, Dict

import aiohttp

from ..errors import ConfigurationError, ProviderResponseError

RETRIABLE_STATUSES = frozenset({408, 409, 429, 500, 502, 503, 504})
ERROR_BODY_CHARS = 300


def backoff_delay(attempt: int) -> float:
    return min(4.0, 0.35 * attempt + random.random() * 0.2)


class JsonHttpClient:
    """Owns one lazily created session and posts JSON payloads to a single endpoint.

    ``transport_retries`` only covers connection errors and retriable HTTP
    statuses inside one provider attempt; provider-level fallback is the
    caller's business.
    """

    provider_name = "provider"
    display_name = "Provider"
    api_key_env = "API_KEY"

    def __init__(
        self,
        api_key: str,
        timeout_seconds: float,
        base_url: str,
        transport_retries: int = 1,
    ) -> None:
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.timeout = aiohttp.ClientTimeout(total=timeout_seconds)
        self.transport_retries = max(1, int(transport_retries))
        self._session: aiohttp.ClientSession | None = None

    @property
    def configured(self) -> bool:
        return bool(self.api_key)

    async def start(self) -> None:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self.timeout)

    async def close(self) -> None:
        if self._session and not self._session.closed:
            await self._session.close()

    def _endpoint(self) -> str:
        raise NotImplementedError

    def _headers(self) -> Dict[str, str]:
        return {"Content-Type": "application/json"}

    async def _post_once(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        if self._session is None or self._session.closed:
            await self.start()
        assert self._session is not None

        async with self._session.post(self._endpoint(), json=payload, headers=self._headers()) as response:
            text = await response.text()
            if response.status != 200:
                raise ProviderResponseError(
                    f"{self.display_name} error {response.status}: {text[:ERROR_BODY_CHARS]}",
                    provider=self.provider_name,
                    retryable=response.status in RETRIABLE_STATUSES,
                )
            data = json.loads(text)
        if not isinstance(data, dict):
            raise ProviderResponseError(f"{self.display_name} returned a non-object body", provider=self.provider_name)
        return data

    async def _request(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        if not self.api_key:
            raise ConfigurationError(f"{self.api_key_env} is not set")

        last_error: ProviderResponseError | None = None
        for attempt in range(1, self.transport_retries + 1):
            try:
                return await self._post_once(payload)
            except asyncio.CancelledError:
                raise
            except ProviderResponseError as exc:
                if not exc.retryable:
                    raise
                last_error = exc
            except (aiohttp.ClientError, json.JSONDecodeError) as exc:
                last_error = ProviderResponseError(
                    f"{self.display_name} request failed: {exc or exc.__class__.__name__}",
                    provider=self.provider_name,
                    retryable=True,
                )

            if attempt < self.transport_retries:
                await asyncio.sleep(backoff_delay(attempt))

        assert last_error is not None
        raise last_error
