"""Outbound calls to the LLM checker, with one strict retry on bad JSON.

Outcomes are returned as values, not raised:

- ``GatewayOk``: candidates were parsed (possibly empty after a failed retry)
- ``TransportFailure``: the upstream could not be reached or answered non-2xx
- ``ParseFailure``: only seen between attempts; ``check`` never returns it
"""
from dataclasses import dataclass, field
from typing import Any, List, Optional, Union

import httpx
from loguru import logger

from periksakata.config import Settings
from periksakata.json_repair import MalformedOutput, parse_model_output
from periksakata.utils.prompt import SYSTEM_PROMPT, build_strict_prompt, build_user_prompt


@dataclass(frozen=True)
class GatewayOk:
    candidates: List[Any] = field(default_factory=list)
    retried: bool = False
    degraded: bool = False


@dataclass(frozen=True)
class TransportFailure:
    reason: str
    status_code: Optional[int] = None


@dataclass(frozen=True)
class ParseFailure:
    error: str


GatewayResult = Union[GatewayOk, TransportFailure, ParseFailure]


class LLMGateway:
    def __init__(self, settings: Settings, client: httpx.AsyncClient):
        self.settings = settings
        self._client = client

    @property
    def configured(self) -> bool:
        if self.settings.llm_provider == "ollama":
            return True
        return bool(self.settings.openai_api_key)

    @property
    def model(self) -> str:
        return self.settings.model_name

    async def check(self, text: str) -> Union[GatewayOk, TransportFailure]:
        first = await self._attempt(build_user_prompt(text), self.settings.llm_temperature)
        if not isinstance(first, ParseFailure):
            return first

        logger.warning(f"Primary JSON parse failed, attempting strict retry: {first.error}")
        second = await self._attempt(build_strict_prompt(text), 0.0)
        if isinstance(second, TransportFailure):
            return second
        if isinstance(second, ParseFailure):
            logger.error(f"Strict retry JSON parse failed: {second.error}")
            return GatewayOk([], retried=True, degraded=True)
        return GatewayOk(second.candidates, retried=True)

    async def _attempt(self, user_prompt: str, temperature: float) -> GatewayResult:
        try:
            if self.settings.llm_provider == "ollama":
                content = await self._call_ollama(user_prompt, temperature)
            else:
                content = await self._call_openai(user_prompt, temperature)
        except httpx.HTTPError as e:
            logger.error(f"LLM request failed: {e!r}")
            return TransportFailure(reason=type(e).__name__)
        if isinstance(content, TransportFailure):
            return content

        try:
            parsed = parse_model_output(content)
        except MalformedOutput as e:
            logger.debug(f"Raw model output: {content!r}")
            return ParseFailure(str(e))

        suggestions = parsed.get("suggestions")
        return GatewayOk(suggestions if isinstance(suggestions, list) else [])

    async def _call_openai(self, user_prompt: str, temperature: float) -> Union[str, TransportFailure]:
        url = f"{self.settings.openai_base_url.rstrip('/')}/chat/completions"
        headers = {
            "Authorization": f"Bearer {self.settings.openai_api_key}",
            "Content-Type": "application/json",
        }
        body = {
            "model": self.settings.openai_model,
            "messages": [
                {"role": "system", "content": SYSTEM_PROMPT},
                {"role": "user", "content": user_prompt},
            ],
            "temperature": temperature,
            "max_tokens": self.settings.llm_max_tokens,
            "response_format": {"type": "json_object"},
        }
        resp = await self._client.post(url, headers=headers, json=body, timeout=self.settings.llm_timeout)
        if resp.status_code != 200:
            logger.error(f"OpenAI API error: {resp.status_code} {resp.text}")
            return TransportFailure(reason="http_status", status_code=resp.status_code)
        try:
            data = resp.json()
            return data["choices"][0]["message"]["content"] or ""
        except (ValueError, KeyError, IndexError, TypeError):
            logger.error(f"No usable response from OpenAI API: {resp.text}")
            return TransportFailure(reason="empty_response", status_code=resp.status_code)

    async def _call_ollama(self, user_prompt: str, temperature: float) -> Union[str, TransportFailure]:
        url = f"{self.settings.ollama_base_url.rstrip('/')}/api/generate"
        body = {
            "model": self.settings.ollama_model,
            "system": SYSTEM_PROMPT,
            "prompt": user_prompt,
            "stream": False,
            "format": "json",
            "options": {
                "temperature": temperature,
                "num_predict": self.settings.llm_max_tokens,
            },
        }
        resp = await self._client.post(url, json=body, timeout=self.settings.llm_timeout)
        if resp.status_code != 200:
            logger.error(f"Ollama error: {resp.status_code} {resp.text}")
            return TransportFailure(reason="http_status", status_code=resp.status_code)
        try:
            data = resp.json()
        except ValueError:
            return TransportFailure(reason="empty_response", status_code=resp.status_code)
        return str(data.get("response", "")).strip() if isinstance(data, dict) else ""
