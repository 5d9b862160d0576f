"""Provider transports for routed model calls."""
from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any, Dict, Tuple

import httpx

from janus.errors import ProviderError, ProviderUnavailableError

logger = logging.getLogger(__name__)


@dataclass
class InvokeResult:
    """Result from one provider call. Token counts are as reported by the provider."""
    text: str = ""
    input_tokens: int = 0
    output_tokens: int = 0
    latency_ms: int = 0


def _as_int(value: Any) -> int:
    try:
        return max(0, int(value or 0))
    except (TypeError, ValueError):
        return 0


class ProviderClient:
    """Base HTTP client. Subclasses build the request and parse the response body."""

    name = "base"
    default_base_url = ""

    def __init__(
        self,
        api_key: str | None = None,
        base_url: str | None = None,
        timeout: float = 120.0,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self.api_key = api_key or ""
        self.base_url = (base_url or self.default_base_url).rstrip("/")
        self.timeout = timeout
        self._http = http_client

    @property
    def available(self) -> bool:
        return bool(self.api_key)

    async def generate(
        self,
        model: str,
        prompt: str,
        max_tokens: int = 250,
        temperature: float = 0.0,
    ) -> InvokeResult:
        if not self.available:
            raise ProviderUnavailableError(f'Provider "{self.name}" is not configured.')

        url, headers, body = self._build_request(model, prompt, max_tokens, temperature)
        start = time.perf_counter()
        try:
            response = await self._post(url, headers, body)
        except httpx.TimeoutException as exc:
            raise ProviderError(f"{self.name} API timeout after {self.timeout}s") from exc
        except httpx.HTTPError as exc:
            raise ProviderError(f"{self.name} transport error: {exc}") from exc
        latency_ms = int((time.perf_counter() - start) * 1000)

        if response.status_code != 200:
            raise ProviderError(f"{self.name} HTTP {response.status_code}: {response.text[:500]}")
        try:
            data = response.json()
        except ValueError as exc:
            raise ProviderError(f"{self.name} returned a non-JSON body") from exc

        text, input_tokens, output_tokens = self._parse_response(data if isinstance(data, dict) else {})
        logger.debug("%s %s: %d in / %d out in %dms", self.name, model, input_tokens, output_tokens, latency_ms)
        return InvokeResult(
            text=text,
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            latency_ms=latency_ms,
        )

    async def _post(self, url: str, headers: Dict[str, str], body: Dict[str, Any]) -> httpx.Response:
        if self._http is not None:
            return await self._http.post(url, headers=headers, json=body, timeout=self.timeout)
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            return await client.post(url, headers=headers, json=body)

    def _build_request(
        self, model: str, prompt: str, max_tokens: int, temperature: float
    ) -> Tuple[str, Dict[str, str], Dict[str, Any]]:
        raise NotImplementedError

    def _parse_response(self, data: Dict[str, Any]) -> Tuple[str, int, int]:
        raise NotImplementedError


class AnthropicClient(ProviderClient):
    name = "anthropic"
    default_base_url = "https://api.anthropic.com/v1"
    api_version = "2023-06-01"

    def _build_request(self, model, prompt, max_tokens, temperature):
        headers = {
            "x-api-key": self.api_key,
            "anthropic-version": self.api_version,
            "content-type": "application/json",
        }
        body = {
            "model": model,
            "max_tokens": max_tokens,
            "temperature": temperature,
            "messages": [{"role": "user", "content": prompt}],
        }
        return f"{self.base_url}/messages", headers, body

    def _parse_response(self, data):
        blocks = data.get("content") or []
        text = "".join(block.get("text", "") for block in blocks if isinstance(block, dict))
        usage = data.get("usage") or {}
        return text, _as_int(usage.get("input_tokens")), _as_int(usage.get("output_tokens"))


class OpenAIClient(ProviderClient):
    name = "openai"
    default_base_url = "https://api.openai.com/v1"

    def _build_request(self, model, prompt, max_tokens, temperature):
        headers = {"Authorization": f"Bearer {self.api_key}"}
        body = {
            "model": model,
            "messages": [{"role": "user", "content": prompt}],
            "max_tokens": max_tokens,
            "temperature": temperature,
        }
        return f"{self.base_url}/chat/completions", headers, body

    def _parse_response(self, data):
        choices = data.get("choices") or []
        text = ""
        if choices and isinstance(choices[0], dict):
            text = (choices[0].get("message") or {}).get("content") or ""
        usage = data.get("usage") or {}
        return text, _as_int(usage.get("prompt_tokens")), _as_int(usage.get("completion_tokens"))


class OpenRouterClient(OpenAIClient):
    """OpenRouter speaks the OpenAI chat completions protocol."""
    name = "openrouter"
    default_base_url = "https://openrouter.ai/api/v1"


class GeminiClient(ProviderClient):
    name = "gemini"
    default_base_url = "https://generativelanguage.googleapis.com/v1beta"

    def _build_request(self, model, prompt, max_tokens, temperature):
        model_path = model if model.startswith("models/") else f"models/{model}"
        url = f"{self.base_url}/{model_path}:generateContent?key={self.api_key}"
        body = {
            "contents": [{"role": "user", "parts": [{"text": prompt}]}],
            "generationConfig": {
                "maxOutputTokens": max_tokens,
                "temperature": temperature,
            },
        }
        return url, {}, body

    def _parse_response(self, data):
        text = ""
        for candidate in data.get("candidates") or []:
            parts = (candidate.get("content") or {}).get("parts") or []
            text += "".join(part.get("text", "") for part in parts if isinstance(part, dict))
        usage = data.get("usageMetadata") or {}
        output = usage.get("candidatesTokenCount") or usage.get("totalTokenCount")
        return text, _as_int(usage.get("promptTokenCount")), _as_int(output)


CLIENT_CLASSES = {
    "anthropic": AnthropicClient,
    "openai": OpenAIClient,
    "openrouter": OpenRouterClient,
    "gemini": GeminiClient,
}


def build_clients(
    providers: Dict[str, Any],
    timeout: float = 120.0,
    http_client: httpx.AsyncClient | None = None,
) -> Dict[str, ProviderClient]:
    """Build one client per known provider from the ``providers`` config section."""
    clients: Dict[str, ProviderClient] = {}
    for name, cls in CLIENT_CLASSES.items():
        entry = providers.get(name) or {}
        if not isinstance(entry, dict):
            entry = {}
        clients[name] = cls(
            api_key=entry.get("api_key"),
            base_url=entry.get("base_url"),
            timeout=timeout,
            http_client=http_client,
        )
    return clients
