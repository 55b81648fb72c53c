from __future__ import annotations

import json
import logging
import re
from typing import Any, Dict, List, Sequence

from ..common import extract_first_json_object
from ..errors import ProviderResponseError
from .http import JsonHttpClient

logger = logging.getLogger("lxt_core.openai")

_SCHEMA_UNSUPPORTED_RE = re.compile(r"json_schema|text\.format|not supported|unsupported", re.IGNORECASE)
_ROLES = frozenset({"system", "user", "assistant"})


class OpenAIClient(JsonHttpClient):
    """Thin Responses API client: plain text replies and schema-constrained JSON."""

    provider_name = "openai"
    display_name = "OpenAI"
    api_key_env = "OPENAI_API_KEY"

    def __init__(
        self,
        api_key: str,
        model: str,
        timeout_seconds: float,
        temperature: float | None = None,
        max_output_tokens: int = 0,
        base_url: str = "https://api.openai.com",
    ) -> None:
        super().__init__(api_key, timeout_seconds, base_url)
        self.model = model
        self.temperature = temperature
        self.max_output_tokens = int(max_output_tokens) if int(max_output_tokens) > 0 else None

    def _endpoint(self) -> str:
        return f"{self.base_url}/v1/responses"

    def _headers(self) -> Dict[str, str]:
        return {**super()._headers(), "Authorization": f"Bearer {self.api_key}"}

    @staticmethod
    def _map_messages(messages: List[Dict[str, str]], images: Sequence[str] = ()) -> List[Dict[str, Any]]:
        mapped: List[Dict[str, Any]] = []
        for message in messages:
            content = str(message.get("content", "")).strip()
            if not content:
                continue
            role = str(message.get("role", "")).strip().lower()
            mapped.append({"role": role if role in _ROLES else "user", "content": content})

        attachments = [
            {"type": "input_image", "image_url": str(image).strip()} for image in images if str(image or "").strip()
        ]
        if not attachments:
            return mapped
        if mapped and mapped[-1]["role"] == "user":
            mapped[-1]["content"] = [{"type": "input_text", "text": mapped[-1]["content"]}, *attachments]
        else:
            mapped.append({"role": "user", "content": attachments})
        return mapped

    def _base_payload(
        self,
        messages: List[Dict[str, str]],
        *,
        temperature: float | None,
        max_output_tokens: int | None,
        images: Sequence[str] = (),
    ) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"model": self.model, "input": self._map_messages(messages, images)}
        chosen_temperature = self.temperature if temperature is None else temperature
        if chosen_temperature is not None:
            payload["temperature"] = float(chosen_temperature)
        tokens = self.max_output_tokens if max_output_tokens is None else max_output_tokens
        if tokens:
            payload["max_output_tokens"] = int(tokens)
        return payload

    @staticmethod
    def _extract_text(data: Dict[str, Any]) -> str:
        direct = data.get("output_text")
        if isinstance(direct, str) and direct.strip():
            return direct.strip()
        chunks: List[str] = []
        for item in data.get("output") or []:
            if not isinstance(item, dict):
                continue
            for part in item.get("content") or []:
                text = part.get("text") if isinstance(part, dict) else None
                if isinstance(text, str) and text.strip():
                    chunks.append(text.strip())
        return "\n".join(chunks).strip()

    @staticmethod
    def _extract_parsed(data: Dict[str, Any]) -> Dict[str, Any] | None:
        parsed = data.get("output_parsed")
        if isinstance(parsed, dict):
            return parsed
        for item in data.get("output") or []:
            if not isinstance(item, dict):
                continue
            for part in item.get("content") or []:
                if isinstance(part, dict) and isinstance(part.get("json"), dict):
                    return part["json"]
        return None

    async def chat(
        self,
        messages: List[Dict[str, str]],
        temperature: float | None = None,
        max_output_tokens: int | None = None,
        images: Sequence[str] = (),
    ) -> str:
        payload = self._base_payload(
            messages,
            temperature=temperature,
            max_output_tokens=max_output_tokens,
            images=images,
        )
        text = self._extract_text(await self._request(payload))
        if not text:
            raise ProviderResponseError("OpenAI empty response", provider=self.provider_name)
        return text

    async def json_chat(
        self,
        messages: List[Dict[str, str]],
        schema: Dict[str, Any],
        schema_name: str = "result",
        temperature: float = 0.2,
        max_output_tokens: int = 900,
    ) -> Dict[str, Any]:
        payload = self._base_payload(messages, temperature=temperature, max_output_tokens=max_output_tokens)
        payload["text"] = {
            "format": {
                "type": "json_schema",
                "name": schema_name,
                "strict": True,
                "schema": schema,
            }
        }
        try:
            data = await self._request(payload)
        except ProviderResponseError as exc:
            if exc.retryable or not _SCHEMA_UNSUPPORTED_RE.search(str(exc)):
                raise
            logger.info("OpenAI model %s rejected json_schema, retrying as JSON-in-text", self.model)
            return await self._json_in_text(messages, schema, temperature, max_output_tokens)

        parsed = self._extract_parsed(data) or extract_first_json_object(self._extract_text(data))
        if parsed is None:
            return await self._json_in_text(messages, schema, temperature, max_output_tokens)
        return parsed

    async def _json_in_text(
        self,
        messages: List[Dict[str, str]],
        schema: Dict[str, Any],
        temperature: float,
        max_output_tokens: int,
    ) -> Dict[str, Any]:
        strict_messages = list(messages)
        strict_messages.append(
            {
                "role": "system",
                "content": (
                    "Return ONLY one JSON object matching this schema exactly. No markdown. No extra text. "
                    f"Schema: {json.dumps(schema, separators=(',', ':'))}"
                ),
            }
        )
        payload = self._base_payload(strict_messages, temperature=temperature, max_output_tokens=max_output_tokens)
        data = await self._request(payload)
        parsed = self._extract_parsed(data) or extract_first_json_object(self._extract_text(data))
        if parsed is None:
            raise ProviderResponseError("OpenAI returned no JSON", provider=self.provider_name)
        return parsed
