"""Multi-provider LLM adapter used as the content oracle (Ollama, OpenAI-compatible, Anthropic, Gemini)."""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

import requests

from .config import DEFAULT_LLM_MODEL, load_llm_settings
from .errors import OracleError, TransientOracleError
from .retry import RetryPolicy, is_retryable_status

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 120
MAX_OUTPUT_TOKENS = 8192


def _post_json(name: str, url: str, payload: Dict[str, Any], headers: Dict[str, str], timeout: int) -> Dict[str, Any]:
    """POST a JSON payload and decode the JSON reply, classifying HTTP failures."""
    response = requests.post(
        url,
        json=payload,
        headers={"Content-Type": "application/json", **headers},
        timeout=timeout,
    )
    status = response.status_code
    if status >= 400:
        message = f"{name} returned HTTP {status}: {response.text[:200]}"
        if is_retryable_status(status):
            raise TransientOracleError(message, status=status)
        raise OracleError(message, status=status)
    try:
        return response.json()
    except ValueError as exc:
        raise OracleError(f"{name} returned a non-JSON body") from exc


class LLMProvider:
    """Base class for LLM providers."""

    name = "llm"

    def generate(self, prompt: str) -> str:
        """Generate a response from the LLM."""
        raise NotImplementedError


class OllamaProvider(LLMProvider):
    """Ollama local LLM provider."""

    name = "ollama"

    def __init__(self, model: str, endpoint: str, timeout: int = DEFAULT_TIMEOUT):
        self.model = model
        self.endpoint = endpoint
        self.timeout = timeout

    def generate(self, prompt: str) -> str:
        parsed = _post_json(
            self.name,
            self.endpoint,
            {
                "model": self.model,
                "prompt": prompt,
                "stream": False,
                "options": {"temperature": 0.2},
            },
            {},
            self.timeout,
        )
        return parsed.get("response") or ""


class OpenAICompatibleProvider(LLMProvider):
    """OpenAI chat-completions API (also Groq, OpenRouter and other compatible gateways)."""

    def __init__(self, name: str, model: str, api_key: str, endpoint: str, timeout: int = DEFAULT_TIMEOUT):
        self.name = name
        self.model = model
        self.api_key = api_key
        self.endpoint = endpoint
        self.timeout = timeout

    def generate(self, prompt: str) -> str:
        if not self.api_key:
            raise OracleError(f"{self.name} API key is not configured")
        parsed = _post_json(
            self.name,
            self.endpoint,
            {
                "model": self.model,
                "messages": [{"role": "user", "content": prompt}],
                "temperature": 0.2,
                "max_tokens": MAX_OUTPUT_TOKENS,
            },
            {"Authorization": f"Bearer {self.api_key}"},
            self.timeout,
        )
        return self._extract_response(parsed)

    @staticmethod
    def _extract_response(parsed: dict) -> str:
        """Extract response text, handling reasoning models that return empty content."""
        try:
            msg = parsed["choices"][0]["message"]
        except (KeyError, IndexError, TypeError) as exc:
            raise OracleError("chat completion response has no choices") from exc
        content = msg.get("content") or ""
        if content.strip():
            return content
        # Reasoning models put output in 'reasoning' field
        reasoning = msg.get("reasoning") or ""
        if reasoning.strip():
            return reasoning
        for detail in msg.get("reasoning_details") or []:
            if isinstance(detail, dict) and detail.get("text", "").strip():
                return detail["text"]
        return content


class AnthropicProvider(LLMProvider):
    """Anthropic Claude API provider."""

    name = "anthropic"

    def __init__(self, model: str, api_key: str, timeout: int = DEFAULT_TIMEOUT):
        self.model = model
        self.api_key = api_key
        self.endpoint = "https://api.anthropic.com/v1/messages"
        self.timeout = timeout

    def generate(self, prompt: str) -> str:
        if not self.api_key:
            raise OracleError("anthropic API key is not configured")
        parsed = _post_json(
            self.name,
            self.endpoint,
            {
                "model": self.model,
                "messages": [{"role": "user", "content": prompt}],
                "max_tokens": MAX_OUTPUT_TOKENS,
                "temperature": 0.2,
            },
            {"x-api-key": self.api_key, "anthropic-version": "2023-06-01"},
            self.timeout,
        )
        try:
            return parsed["content"][0]["text"]
        except (KeyError, IndexError, TypeError) as exc:
            raise OracleError("anthropic response has no text content") from exc


class GeminiProvider(LLMProvider):
    """Google Gemini API provider."""

    name = "gemini"

    def __init__(self, model: str, api_key: str, timeout: int = DEFAULT_TIMEOUT):
        self.model = model
        self.api_key = api_key
        self.endpoint = f"https://generativelanguage.googleapis.com/v1beta/models/{model}:generateContent"
        self.timeout = timeout

    def generate(self, prompt: str) -> str:
        if not self.api_key:
            raise OracleError("gemini API key is not configured")
        parsed = _post_json(
            self.name,
            f"{self.endpoint}?key={self.api_key}",
            {
                "contents": [{"parts": [{"text": prompt}]}],
                "generationConfig": {
                    "temperature": 0.2,
                    "maxOutputTokens": MAX_OUTPUT_TOKENS,
                },
            },
            {},
            self.timeout,
        )
        try:
            return parsed["candidates"][0]["content"]["parts"][0]["text"]
        except (KeyError, IndexError, TypeError) as exc:
            raise OracleError("gemini response has no candidates") from exc


class LocalLLM:
    """Content oracle: one configured provider behind a retry policy."""

    def __init__(
        self,
        model: Optional[str] = None,
        provider: Optional[str] = None,
        api_key: Optional[str] = None,
        endpoint: Optional[str] = None,
    ):
        """Initialize LLM with provider selection.

        Args:
            model: Model name (defaults to config or "qwen2.5-coder:7b")
            provider: "ollama", "groq", "openai", "anthropic", "gemini" or "openrouter"
            api_key: API key for cloud providers (defaults to config)
            endpoint: Custom endpoint (defaults to config)
        """
        settings = load_llm_settings()
        self.provider_name = (provider or settings["provider"]).lower()
        self.model = model or settings["model"]
        self.api_key = api_key or settings["api_key"]
        self.endpoint = endpoint or settings["endpoint"]

        self.provider = self._create_provider()

    def _create_provider(self) -> LLMProvider:
        """Create the appropriate provider based on configuration."""
        name = self.provider_name
        default_model = self.model == DEFAULT_LLM_MODEL

        if name == "groq":
            model = "llama-3.3-70b-versatile" if default_model else self.model
            return OpenAICompatibleProvider(
                "groq", model, self.api_key, "https://api.groq.com/openai/v1/chat/completions",
            )
        elif name in ("openai", "openrouter"):
            fallback_endpoint = {
                "openai": "https://api.openai.com/v1/chat/completions",
                "openrouter": "https://openrouter.ai/api/v1/chat/completions",
            }[name]
            endpoint = self.endpoint if self.endpoint and "11434" not in self.endpoint else fallback_endpoint
            model = ("gpt-4o-mini" if name == "openai" else "google/gemini-2.0-flash-exp:free") if default_model else self.model
            return OpenAICompatibleProvider(name, model, self.api_key, endpoint)
        elif name == "anthropic":
            model = "claude-3-5-sonnet-20241022" if default_model else self.model
            return AnthropicProvider(model, self.api_key)
        elif name == "gemini":
            model = "gemini-2.0-flash" if default_model else self.model
            return GeminiProvider(model, self.api_key)
        else:  # Default to Ollama
            return OllamaProvider(self.model, self.endpoint)

    def generate(self, prompt: str, max_retries: int = 2, retry_delay_ms: int = 800) -> str:
        """Generate text, retrying transient failures with backoff.

        Non-retryable errors (bad key, 4xx other than 408/409/429) propagate
        immediately; transient ones propagate once the retries run out.
        """
        policy = RetryPolicy(max_attempts=max_retries + 1, base_delay_ms=retry_delay_ms)
        text = policy.call(self.provider.generate, prompt)
        logger.debug("%s returned %d chars", self.provider_name, len(text or ""))
        return text or ""
