from __future__ import annotations

import json
import logging
import re
from typing import Any, Dict, List, Sequence

from ..common import extract_first_json_object
from ..errors import ProviderResponseError
from .http import JsonHttpClient

logger = logging.getLogger("lxt_core.gemini")

_DATA_URL_RE = re.compile(r"^data:(?P<mime>[\w.+-]+/[\w.+-]+);base64,(?P<data>.+)$", re.DOTALL)


class GeminiClient(JsonHttpClient):
    """generateContent client. System turns become ``systemInstruction``."""

    provider_name = "gemini"
    display_name = "Gemini"
    api_key_env = "GEMINI_API_KEY"

    def __init__(
        self,
        api_key: str,
        model: str,
        timeout_seconds: float,
        temperature: float = 0.6,
        max_output_tokens: int = 0,
        base_url: str = "https://generativelanguage.googleapis.com",
    ) -> None:
        super().__init__(api_key, timeout_seconds, base_url)
        self.model = model
        self.temperature = temperature
        self.max_output_tokens = int(max_output_tokens) if int(max_output_tokens) > 0 else None

    def _endpoint(self) -> str:
        return f"{self.base_url}/v1beta/models/{self.model}:generateContent?key={self.api_key}"

    @staticmethod
    def _image_part(image: str) -> Dict[str, Any]:
        match = _DATA_URL_RE.match(image.strip())
        if match is None:
            # Remote URLs are not fetched; the model gets the link as text.
            return {"text": f"Attached image URL: {image.strip()}"}
        return {"inlineData": {"mimeType": match.group("mime"), "data": match.group("data").strip()}}

    @classmethod
    def _build_contents(cls, messages: List[Dict[str, str]], images: Sequence[str] = ()) -> Dict[str, Any]:
        instructions: List[str] = []
        turns: List[Dict[str, Any]] = []
        for message in messages:
            text = str(message.get("content", "")).strip()
            if not text:
                continue
            role = str(message.get("role", "")).strip().lower()
            if role == "system":
                instructions.append(text)
            else:
                turns.append({"role": "model" if role == "assistant" else "user", "parts": [{"text": text}]})

        attachments = [cls._image_part(image) for image in images if str(image or "").strip()]
        if attachments:
            if turns and turns[-1]["role"] == "user":
                turns[-1]["parts"].extend(attachments)
            else:
                turns.append({"role": "user", "parts": attachments})

        body: Dict[str, Any] = {"contents": turns}
        if instructions:
            body["systemInstruction"] = {"parts": [{"text": "\n\n".join(instructions)}]}
        return body

    def _generation_config(self, temperature: float | None, max_output_tokens: int | None) -> Dict[str, Any]:
        config: Dict[str, Any] = {"temperature": self.temperature if temperature is None else temperature}
        tokens = self.max_output_tokens if max_output_tokens is None else max_output_tokens
        if tokens:
            config["maxOutputTokens"] = int(tokens)
        return config

    @classmethod
    def _extract_text(cls, data: Dict[str, Any]) -> str:
        candidates = data.get("candidates") or []
        if not candidates:
            blocked = (data.get("promptFeedback") or {}).get("blockReason")
            reason = f"blocked response: {blocked}" if blocked else "no candidates"
            raise ProviderResponseError(f"Gemini returned {reason}", provider=cls.provider_name)

        first = candidates[0]
        parts = (first.get("content") or {}).get("parts") or []
        text = "\n".join(
            part["text"].strip() for part in parts if isinstance(part.get("text"), str) and part["text"].strip()
        )
        if text:
            return text
        finish = first.get("finishReason")
        suffix = f" (finishReason={finish})" if finish else ""
        raise ProviderResponseError(f"Gemini empty response{suffix}", provider=cls.provider_name)

    async def chat(
        self,
        messages: List[Dict[str, str]],
        temperature: float | None = None,
        max_output_tokens: int | None = None,
        images: Sequence[str] = (),
    ) -> str:
        payload = self._build_contents(messages, images)
        payload["generationConfig"] = self._generation_config(temperature, max_output_tokens)
        return self._extract_text(await self._request(payload))

    async def json_chat(
        self,
        messages: List[Dict[str, str]],
        schema: Dict[str, Any],
        schema_name: str = "result",
        temperature: float = 0.2,
        max_output_tokens: int = 900,
    ) -> Dict[str, Any]:
        # Gemini's responseSchema dialect differs from JSON Schema, so the schema travels in the prompt.
        instruction = (
            "Return only one valid JSON object with no markdown and no additional commentary. "
            f"JSON schema ({schema_name}): {json.dumps(schema, separators=(',', ':'))}"
        )
        payload = self._build_contents([*messages, {"role": "system", "content": instruction}])
        config = self._generation_config(temperature, max_output_tokens)
        config["responseMimeType"] = "application/json"
        payload["generationConfig"] = config

        raw = self._extract_text(await self._request(payload))
        parsed = extract_first_json_object(raw)
        if parsed is None:
            logger.warning("Gemini returned no JSON object (%s chars)", len(raw))
            raise ProviderResponseError(f"Gemini returned no JSON. Raw: {raw[:240]}", provider=self.provider_name)
        return parsed
