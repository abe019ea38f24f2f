"""HTTP client for an OpenAI-compatible chat-completions server (llama.cpp style)."""

from __future__ import annotations

import copy
import json
import logging
import random
import time
from dataclasses import dataclass
from json import JSONDecodeError
from pathlib import Path
from typing import Any, Optional

import httpx
from diskcache import Cache
from jsonschema import ValidationError, validate

from .errors import LLMResponseError
from .utils import stable_hash

logger = logging.getLogger(__name__)

RETRY_STATUSES = frozenset({429, 502, 503, 504})
RETRY_EXCEPTIONS = (httpx.ConnectTimeout, httpx.ReadTimeout, httpx.PoolTimeout)


@dataclass(slots=True)
class LLMConfig:
    """Configuration for connecting to the completion server."""

    endpoint: str = "http://127.0.0.1:8080/v1"
    model: str = "glm-4.5-air"
    temperature: float = 0.2
    top_p: float = 0.95
    max_tokens: int = 2048
    timeout: float = 60.0
    global_seed: Optional[int] = 0
    max_retries: int = 3
    backoff_base: float = 0.5
    backoff_max: float = 5.0
    cache_ttl: Optional[int] = None

    def __post_init__(self) -> None:
        if self.max_retries < 0:
            raise ValueError("max_retries cannot be negative")
        if self.timeout <= 0:
            raise ValueError("timeout must be positive")


class LLMClient:
    """Thin HTTP client with response caching, retries and schema validation."""

    def __init__(self, config: Optional[LLMConfig] = None, cache_dir: Optional[Path] = None) -> None:
        self.config = config or LLMConfig()
        self.cache_dir = cache_dir
        self._client = httpx.Client(timeout=self.config.timeout)
        self._cache: Optional[Cache] = None
        if cache_dir is not None:
            directory = Path(cache_dir).expanduser()
            directory.mkdir(parents=True, exist_ok=True)
            self._cache = Cache(str(directory), timeout=0.1)

    def generate_text(
        self,
        prompt: dict[str, Any],
        *,
        schema: Optional[dict[str, Any]] = None,
        parse_json: bool = False,
    ) -> Any:
        """Send one prompt; with ``schema`` the reply content must be matching JSON."""

        prepared = self._prepare_prompt(prompt)
        return self._invoke(prepared, schema=schema, parse_json=parse_json)

    def close(self) -> None:
        self._client.close()
        if self._cache is not None:
            self._cache.close()

    def _invoke(
        self,
        prompt: dict[str, Any],
        schema: Optional[dict[str, Any]] = None,
        parse_json: bool = False,
    ) -> Any:
        payload = self._build_payload(prompt)
        cache_key = stable_hash([payload])

        if self._cache is not None:
            cached = self._cache.get(cache_key)
            if cached is not None:
                logger.debug("LLM cache hit %s", cache_key[:12])
                return self._post_process(cached, schema=schema, parse_json=parse_json)

        response = self._post_with_retry(f"{self.config.endpoint}/chat/completions", payload)
        response.raise_for_status()
        try:
            data = response.json()
        except JSONDecodeError as exc:
            raise LLMResponseError("LLM server returned a non-JSON body") from exc

        result = self._post_process(data, schema=schema, parse_json=parse_json)
        if self._cache is not None:
            self._cache.set(cache_key, data, expire=self.config.cache_ttl)
        return result

    def _post_with_retry(self, url: str, payload: dict[str, Any]) -> httpx.Response:
        """POST with exponential backoff on timeouts and transient statuses."""

        retries = 0
        while True:
            try:
                response = self._client.post(url, json=payload)
            except RETRY_EXCEPTIONS as exc:
                if retries >= self.config.max_retries:
                    raise
                logger.info("Transient timeout (%s) calling %s, retrying", type(exc).__name__, url)
                self._backoff(retries)
                retries += 1
                continue

            if response.status_code in RETRY_STATUSES and retries < self.config.max_retries:
                logger.info("LLM server answered %s, retrying", response.status_code)
                self._backoff(retries)
                retries += 1
                continue
            return response

    def _backoff(self, attempt: int) -> None:
        cap = min(self.config.backoff_max, self.config.backoff_base * (2**attempt))
        time.sleep(random.uniform(0, cap))

    def _build_payload(self, prompt: dict[str, Any]) -> dict[str, Any]:
        messages = prompt.get("messages")
        if not messages:
            raise ValueError("prompt must include 'messages'")

        payload: dict[str, Any] = {
            "model": prompt.get("model", self.config.model),
            "messages": messages,
            "temperature": prompt.get("temperature", self.config.temperature),
            "top_p": prompt.get("top_p", self.config.top_p),
            "max_tokens": prompt.get("max_tokens", self.config.max_tokens),
        }
        if prompt.get("seed") is not None:
            payload["seed"] = int(prompt["seed"])
        if "response_format" in prompt:
            payload["response_format"] = prompt["response_format"]
        return payload

    def _prepare_prompt(self, prompt: dict[str, Any]) -> dict[str, Any]:
        prepared = copy.deepcopy(prompt)
        if prepared.get("seed") is None:
            derived = self._derive_seed(prepared)
            if derived is not None:
                prepared["seed"] = derived
        return prepared

    def _derive_seed(self, prompt: dict[str, Any]) -> Optional[int]:
        if self.config.global_seed is None:
            return None
        fingerprint = stable_hash([prompt.get("model", self.config.model), prompt.get("messages")])
        return (self.config.global_seed + int(fingerprint[:16], 16)) % 2_147_483_647

    def _post_process(
        self,
        response: dict[str, Any],
        *,
        schema: Optional[dict[str, Any]],
        parse_json: bool,
    ) -> Any:
        if schema is None and not parse_json:
            return response

        content = _strip_fences(self._extract_content(response))
        try:
            parsed = json.loads(content)
        except JSONDecodeError as exc:
            raise LLMResponseError("LLM response is not valid JSON", response=response) from exc

        if schema is not None:
            try:
                validate(instance=parsed, schema=schema)
            except ValidationError as exc:
                raise LLMResponseError(
                    f"LLM response failed schema validation: {exc.message}", response=response
                ) from exc

        return parsed if parse_json else response

    def _extract_content(self, response: dict[str, Any]) -> str:
        choices = response.get("choices")
        if not choices:
            raise LLMResponseError("LLM response missing choices", response=response)
        message = choices[0].get("message")
        if not isinstance(message, dict):
            raise LLMResponseError("LLM response missing message payload", response=response)
        content = message.get("content")
        if not isinstance(content, str) or not content.strip():
            raise LLMResponseError("LLM response content is empty", response=response)
        return content

    def __enter__(self) -> "LLMClient":
        return self

    def __exit__(self, *_: object) -> None:
        self.close()


def _strip_fences(content: str) -> str:
    """Drop a surrounding markdown code fence, which local models often add."""

    text = content.strip()
    if text.startswith("```"):
        text = text.split("\n", 1)[1] if "\n" in text else ""
        if text.rstrip().endswith("```"):
            text = text.rstrip()[:-3]
    return text.strip()
