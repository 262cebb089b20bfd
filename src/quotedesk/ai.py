"""Summary: LLM backends used for quote classification and extraction.

Importance: Centralizes LLM access for classification and extraction prompts.
Alternatives: Call provider SDKs directly in each pipeline step.
"""

from __future__ import annotations

import json
import re
import time
import urllib.error
import urllib.request
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any

from quotedesk.config import AppConfig

JSON_OBJECT_PATTERN = re.compile(r"\{[\s\S]*\}")


class AiProvider(ABC):
    """Summary: Contract every LLM backend implements for the quote desk.

    Importance: Pipeline steps stay identical whether the model is local, hosted or scripted.
    Alternatives: Hardwire one hosted model into the prompts module.
    """

    @abstractmethod
    def generate_text(
        self, prompt: str, purpose: str, system_prompt: str | None = None
    ) -> tuple[str, int]:
        """Summary: Answer one prompt and report how long the model took.

        Importance: Standardizes AI outputs for downstream parsers.
        Alternatives: Hand raw vendor payloads to the prompt parsers.
        """


class MockAiProvider(AiProvider):
    """Summary: Scripted backend replaying canned replies per prompt purpose.

    Importance: Enables offline runs and repeatable tests with scripted replies per purpose.
    Alternatives: Record and replay real model transcripts.
    """

    def __init__(self, responses: dict[str, str | list[str]] | None = None) -> None:
        """Summary: Initialize the mock with optional scripted responses.

        Importance: A list of responses is consumed in order, a string is reused.
        Alternatives: Load fixture responses from files.
        """

        self._responses = {
            key: list(value) if isinstance(value, list) else value
            for key, value in (responses or {}).items()
        }
        self.calls: list[tuple[str, str]] = []

    def generate_text(
        self, prompt: str, purpose: str, system_prompt: str | None = None
    ) -> tuple[str, int]:
        """Summary: Return the scripted response or echo the prompt.

        Importance: An echo contains no JSON, so parsers fall back to safe defaults.
        Alternatives: Raise when no response is scripted.
        """

        started = time.time()
        self.calls.append((purpose, prompt))
        scripted = self._responses.get(purpose)
        if isinstance(scripted, list):
            response = scripted.pop(0) if scripted else f"[mock:{purpose}] {prompt[:240]}"
        elif scripted is not None:
            response = scripted
        else:
            response = f"[mock:{purpose}] {prompt[:240]}"
        latency_ms = int((time.time() - started) * 1000)
        return response, latency_ms


class OllamaProvider(AiProvider):
    """Summary: Backend for a self-hosted Ollama model.

    Importance: Supports privacy-sensitive deployments on local hardware.
    Alternatives: Serve the model behind an OpenAI-compatible proxy.
    """

    def __init__(self, base_url: str, model: str, timeout: int = 60) -> None:
        self._base_url = base_url.rstrip("/")
        self._model = model
        self._timeout = timeout

    def generate_text(
        self, prompt: str, purpose: str, system_prompt: str | None = None
    ) -> tuple[str, int]:
        """Summary: Send one non-streaming generate request to Ollama.

        Importance: Enables local inference for classification and extraction.
        Alternatives: Stream tokens and join them locally.
        """

        body: dict[str, Any] = {
            "model": self._model,
            "prompt": prompt,
            "stream": False,
            "options": {"temperature": 0},
        }
        if system_prompt:
            body["system"] = system_prompt
        request = urllib.request.Request(
            url=f"{self._base_url}/api/generate",
            data=json.dumps(body).encode("utf-8"),
            headers={"Content-Type": "application/json"},
            method="POST",
        )
        started = time.time()
        try:
            with urllib.request.urlopen(request, timeout=self._timeout) as response:
                raw = json.loads(response.read().decode("utf-8"))
        except urllib.error.URLError as exc:
            raise RuntimeError(f"Ollama request failed: {exc}") from exc
        latency_ms = int((time.time() - started) * 1000)
        return raw.get("response", ""), latency_ms


class OpenAiProvider(AiProvider):
    """Summary: Backend for hosted OpenAI chat models.

    Importance: Default production provider for classification and extraction.
    Alternatives: Run every arbitration on a local Ollama model.
    """

    def __init__(self, api_key: str, model: str, max_tokens: int = 1000, timeout: int = 60) -> None:
        """Summary: Keep the key, model and token ceiling for later calls.

        Importance: Stores credentials and generation limits for future requests.
        Alternatives: Read the key from the environment on every call.
        """

        self._api_key = api_key
        self._model = model
        self._max_tokens = max_tokens
        self._timeout = timeout

    def generate_text(
        self, prompt: str, purpose: str, system_prompt: str | None = None
    ) -> tuple[str, int]:
        """Summary: Ask the chat completions endpoint for one deterministic answer.

        Importance: Temperature zero keeps classification and extraction repeatable.
        Alternatives: Sample at a higher temperature and vote.
        """

        payload = {
            "model": self._model,
            "messages": [
                {
                    "role": "system",
                    "content": system_prompt or f"You are QuoteDesk. Task: {purpose}.",
                },
                {"role": "user", "content": prompt},
            ],
            "temperature": 0,
            "max_tokens": self._max_tokens,
        }
        request = urllib.request.Request(
            url="https://api.openai.com/v1/chat/completions",
            data=json.dumps(payload).encode("utf-8"),
            headers={
                "Content-Type": "application/json",
                "Authorization": f"Bearer {self._api_key}",
            },
            method="POST",
        )
        started = time.time()
        try:
            with urllib.request.urlopen(request, timeout=self._timeout) as response:
                raw = json.loads(response.read().decode("utf-8"))
        except urllib.error.URLError as exc:
            raise RuntimeError(f"OpenAI request failed: {exc}") from exc
        latency_ms = int((time.time() - started) * 1000)
        content = raw["choices"][0]["message"]["content"]
        return content, latency_ms


@dataclass(frozen=True)
class AiProviderFactory:
    """Summary: Picks the LLM backend named in the configuration.

    Importance: The CLI, API and tests resolve backends the same way.
    Alternatives: Let each entrypoint construct its own backend.
    """

    config: AppConfig

    def build(self) -> AiProvider:
        """Summary: Instantiate the configured backend, falling back to the mock.

        Importance: Ensures consistent provider selection across entrypoints.
        Alternatives: Raise on unknown provider names.
        """

        if self.config.ai_provider == "ollama":
            return OllamaProvider(self.config.ollama_url, self.config.ollama_model)
        if self.config.ai_provider == "openai":
            if not self.config.openai_api_key:
                raise ValueError("OPENAI_API_KEY is required for openai provider")
            return OpenAiProvider(self.config.openai_api_key, self.config.openai_model)
        return MockAiProvider()

    def model_name(self) -> str:
        """Return the model name used by the configured provider."""

        if self.config.ai_provider == "openai":
            return self.config.openai_model
        if self.config.ai_provider == "ollama":
            return self.config.ollama_model
        return "mock"


def extract_json_object(text: str) -> dict[str, Any] | None:
    """Summary: Locate and parse the JSON object in a free-text LLM reply.

    Importance: Models often wrap JSON in prose or code fences.
    Alternatives: Use provider JSON modes and trust the output.
    """

    match = JSON_OBJECT_PATTERN.search(text)
    if match:
        parsed = _loads_object(match.group(0))
        if parsed is not None:
            return parsed
    candidate = _first_balanced_object(text)
    if candidate is None:
        return None
    return _loads_object(candidate)


def _loads_object(raw: str) -> dict[str, Any] | None:
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError:
        return None
    return parsed if isinstance(parsed, dict) else None


def _first_balanced_object(text: str) -> str | None:
    """Summary: Return the first brace-balanced substring, ignoring braces inside strings.

    Importance: Recovers the object when trailing prose contains stray braces.
    Alternatives: Give up after the greedy match fails.
    """

    start = text.find("{")
    if start < 0:
        return None
    depth = 0
    in_string = False
    escaped = False
    for index in range(start, len(text)):
        char = text[index]
        if in_string:
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == '"':
                in_string = False
            continue
        if char == '"':
            in_string = True
        elif char == "{":
            depth += 1
        elif char == "}":
            depth -= 1
            if depth == 0:
                return text[start : index + 1]
    return None


def truncate_body(body: str, limit: int = 800) -> str:
    """Summary: Bound the email body included in prompts.

    Importance: Keeps prompt size and cost predictable.
    Alternatives: Summarize long emails before prompting.
    """

    return body if len(body) <= limit else body[:limit] + "..."
