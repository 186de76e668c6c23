"""
Activity Core
LLM Gateway.

Chat completions for the dedup oracle over Anthropic or OpenAI, whichever
has a key. Model ids route by prefix; calls retry with capped backoff and
the configured timeout is passed to the SDK client.

Usage:
    from activity_core.ai.gateway import LLMGateway
    gw = LLMGateway(app=flask_app)
    result = gw.chat(
        messages=[{"role": "user", "content": "..."}],
        purpose="dedup_decision",
    )
"""

import logging
import os
import time
from abc import ABC, abstractmethod

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 30


# ── Providers ─────────────────────────────────────────────────────────────────

class LLMProvider(ABC):
    """One vendor SDK behind ``chat(messages, model) -> dict``.

    The returned dict always has content, prompt_tokens, completion_tokens
    and model. SDK clients are built on first use.
    """

    default_model = ""
    api_key_env = ""

    def __init__(self, timeout=DEFAULT_TIMEOUT_SECONDS):
        self.api_key = os.getenv(self.api_key_env, "")
        self.timeout = timeout
        self._client = None

    @property
    def client(self):
        if self._client is None:
            self._client = self._build_client()
        return self._client

    @abstractmethod
    def _build_client(self): ...

    @abstractmethod
    def chat(self, messages: list, model: str, **kwargs) -> dict: ...


class AnthropicProvider(LLMProvider):
    default_model = "claude-3-5-haiku-20241022"
    api_key_env = "ANTHROPIC_API_KEY"

    def _build_client(self):
        import anthropic
        return anthropic.Anthropic(api_key=self.api_key, timeout=self.timeout)

    def chat(self, messages: list, model: str, **kwargs) -> dict:
        system = "\n\n".join(m["content"] for m in messages if m["role"] == "system")
        params = {
            "model": model,
            "messages": [m for m in messages if m["role"] != "system"],
            "max_tokens": kwargs.get("max_tokens", 2048),
            "temperature": kwargs.get("temperature", 0.0),
        }
        if system:
            params["system"] = system
        response = self.client.messages.create(**params)
        return {
            "content": "".join(block.text for block in response.content
                               if getattr(block, "type", "text") == "text"),
            "prompt_tokens": response.usage.input_tokens,
            "completion_tokens": response.usage.output_tokens,
            "model": model,
        }


class OpenAIProvider(LLMProvider):
    default_model = "gpt-4o-mini"
    api_key_env = "OPENAI_API_KEY"

    def _build_client(self):
        import openai
        return openai.OpenAI(api_key=self.api_key, timeout=self.timeout)

    def chat(self, messages: list, model: str, **kwargs) -> dict:
        # The dedup prompt always asks for a JSON object
        response = self.client.chat.completions.create(
            model=model,
            messages=messages,
            max_tokens=kwargs.get("max_tokens", 2048),
            temperature=kwargs.get("temperature", 0.0),
            response_format={"type": "json_object"},
        )
        return {
            "content": response.choices[0].message.content,
            "prompt_tokens": response.usage.prompt_tokens,
            "completion_tokens": response.usage.completion_tokens,
            "model": model,
        }


_PROVIDER_CLASSES = {"anthropic": AnthropicProvider, "openai": OpenAIProvider}


# ── Gateway ───────────────────────────────────────────────────────────────────

def provider_for_model(model: str) -> str | None:
    """Vendor name for a model id, by prefix; None when unknown."""
    if model.startswith("claude"):
        return "anthropic"
    if model.startswith(("gpt", "o1", "o3", "o4")):
        return "openai"
    return None


class LLMGateway:
    """
    Retrying router over the providers that have an API key in the env.

    ``is_available()`` is False when no key is set; callers use it to skip
    the call and degrade.
    """

    def __init__(self, app=None, timeout=None, default_model=None):
        cfg = app.config if app is not None else {}
        self.timeout = timeout or cfg.get("LLM_TIMEOUT_SECONDS", DEFAULT_TIMEOUT_SECONDS)
        self.default_model = (default_model
                              or cfg.get("LLM_DEFAULT_CHAT_MODEL")
                              or os.getenv("LLM_DEFAULT_CHAT_MODEL")
                              or AnthropicProvider.default_model)
        self._providers: dict[str, LLMProvider] = {
            name: cls(timeout=self.timeout)
            for name, cls in _PROVIDER_CLASSES.items()
            if os.getenv(cls.api_key_env)
        }

    def is_available(self) -> bool:
        return bool(self._providers)

    def _get_provider(self, model: str) -> tuple[LLMProvider, str, str]:
        """(provider, provider_name, model); another configured vendor if the model's has no key."""
        if not self._providers:
            raise RuntimeError("No LLM provider configured (set ANTHROPIC_API_KEY or OPENAI_API_KEY)")

        name = provider_for_model(model)
        if name in self._providers:
            return self._providers[name], name, model

        fallback_name, fallback = next(iter(self._providers.items()))
        logger.warning("No provider for model %s, using %s/%s",
                       model, fallback_name, fallback.default_model)
        return fallback, fallback_name, fallback.default_model

    def chat(self, messages: list, model: str | None = None, *, purpose: str = "",
             max_retries: int = 3, **kwargs) -> dict:
        """
        Run a chat completion, retrying with backoff (1s, 2s, 4s, 4s, ...).

        Returns:
            Provider dict plus ``latency_ms`` and ``provider``.

        Raises:
            RuntimeError: no provider configured, or every attempt failed.
        """
        provider, provider_name, model = self._get_provider(model or self.default_model)

        last_error = None
        for attempt in range(1, max_retries + 1):
            started = time.monotonic()
            try:
                result = provider.chat(messages, model, **kwargs)
            except Exception as exc:
                last_error = exc
                logger.warning("LLM %s attempt %d/%d failed: %s",
                               purpose or "call", attempt, max_retries, exc)
                if attempt < max_retries:
                    time.sleep(min(2 ** (attempt - 1), 4))
                continue

            result["latency_ms"] = int((time.monotonic() - started) * 1000)
            result["provider"] = provider_name
            logger.debug("LLM %s ok via %s/%s, tokens %s+%s",
                         purpose or "call", provider_name, model,
                         result.get("prompt_tokens"), result.get("completion_tokens"),
                         extra={"duration_ms": result["latency_ms"]})
            return result

        raise RuntimeError(f"LLM call failed after {max_retries} retries: {last_error}")
