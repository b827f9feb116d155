"""Hosted text-generation clients.

Both clients expose the same call used by :class:`~inkwell.services.llm_gateway.LLMGateway`::

    generate_response(prompt, *, system=None, max_new_tokens=None,
                      temperature=None, top_p=None) -> str

``AnthropicTextClient`` talks to the Anthropic Messages API and is the default
provider.  ``OpenAIUnifiedGenerator`` auto-selects between the OpenAI Responses,
Chat Completions and legacy Completions APIs depending on the model name.

SDK errors are re-raised as :class:`LLMServiceError` so callers only have to
handle one exception family, whatever the provider.
"""

from __future__ import annotations

import logging
from typing import Any, List, Mapping, Optional

import anthropic
import openai

LOGGER = logging.getLogger(__name__)

DEFAULT_ANTHROPIC_MODEL = "claude-opus-4-20250514"
DEFAULT_OPENAI_MODEL = "gpt-4o-mini"


class LLMServiceError(RuntimeError):
    """Raised when the text-generation service cannot produce a reply."""


class LLMConfigurationError(LLMServiceError):
    """Raised when no credential is configured for the text-generation service."""


class AnthropicTextClient:
    def __init__(self, api_key: str, model_name: Optional[str] = None, default_max_tokens: int = 1024) -> None:
        self.api_key = (api_key or "").strip()
        if not self.api_key:
            raise LLMConfigurationError("ANTHROPIC_API_KEY is not configured.")
        self.model_name = (model_name or DEFAULT_ANTHROPIC_MODEL).strip()
        self.default_max_tokens = int(default_max_tokens or 1024)
        self._client = anthropic.Anthropic(api_key=self.api_key)

    def generate_response(
        self,
        prompt: str,
        *,
        system: Optional[str] = None,
        max_new_tokens: Optional[int] = None,
        temperature: Optional[float] = None,
        top_p: Optional[float] = None,
    ) -> str:
        if not isinstance(prompt, str) or not prompt.strip():
            raise ValueError("prompt must be a non-empty string.")
        max_tokens = int(max_new_tokens if max_new_tokens is not None else self.default_max_tokens)
        if max_tokens <= 0:
            raise ValueError("max_new_tokens must be positive.")

        kwargs: dict = {
            "model": self.model_name,
            "max_tokens": max_tokens,
            "messages": [{"role": "user", "content": prompt}],
        }
        if system:
            kwargs["system"] = system
        if temperature is not None:
            kwargs["temperature"] = float(temperature)
        if top_p is not None:
            kwargs["top_p"] = float(top_p)

        try:
            response = self._client.messages.create(**kwargs)
        except anthropic.APIError as exc:
            LOGGER.error("Anthropic request failed: %s", exc)
            raise LLMServiceError(f"Anthropic request failed: {exc}") from exc

        return self._extract_text(response)

    @staticmethod
    def _extract_text(response: Any) -> str:
        blocks = getattr(response, "content", None) or []
        parts: List[str] = []
        for block in blocks:
            if getattr(block, "type", None) == "text":
                parts.append(str(getattr(block, "text", "") or ""))
        return "\n".join(part for part in parts if part).strip()


class OpenAIUnifiedGenerator:
    """
    Unified wrapper that auto-selects between Responses, Chat Completions,
    and legacy Completions APIs depending on the model name.

    - GPT-5 / o3 / o4 / 4.1(x) → Responses API
    - GPT-4 / 4o / 3.5 (chatty models) → Chat Completions API
    - Very old text-* models → Legacy Completions API
    """

    def __init__(self, model_name: Optional[str], api_key: str, default_max_tokens: int = 1024) -> None:
        self.model_name = (model_name or DEFAULT_OPENAI_MODEL).strip()
        self.api_key = (api_key or "").strip()
        if not self.api_key:
            raise LLMConfigurationError("OPENAI_API_KEY is not configured.")
        self.default_max_tokens = int(default_max_tokens or 1024)
        self._client = openai.OpenAI(api_key=self.api_key)

    # ---------------- heuristics ----------------
    def _uses_responses_api(self) -> bool:
        name = self.model_name.lower()
        return name.startswith(("gpt-5", "o3", "o4", "gpt-4.1", "gpt-4o-reasoning"))

    def _uses_chat_completions(self) -> bool:
        if self._uses_responses_api():
            return False
        name = self.model_name.lower()
        legacy_prefixes = ("text-", "code-", "ada", "babbage", "curie", "davinci")
        return not name.startswith(legacy_prefixes)

    # ---------------- public API ----------------
    def generate_response(
        self,
        prompt: str,
        *,
        system: Optional[str] = None,
        max_new_tokens: Optional[int] = None,
        temperature: Optional[float] = None,
        top_p: Optional[float] = None,
    ) -> str:
        if not isinstance(prompt, str) or not prompt.strip():
            raise ValueError("prompt must be a non-empty string.")
        max_tokens = int(max_new_tokens if max_new_tokens is not None else self.default_max_tokens)
        if max_tokens <= 0:
            raise ValueError("max_new_tokens must be positive.")

        try:
            if self._uses_responses_api():
                return self._call_responses(prompt, system, max_tokens, temperature, top_p)
            if self._uses_chat_completions():
                return self._call_chat(prompt, system, max_tokens, temperature, top_p)
            return self._call_legacy(prompt, system, max_tokens, temperature, top_p)
        except openai.OpenAIError as exc:
            LOGGER.error("OpenAI request failed: %s", exc)
            raise LLMServiceError(f"OpenAI request failed: {exc}") from exc

    # ---------------- internal callers ----------------
    def _call_responses(
        self,
        prompt: str,
        system: Optional[str],
        max_tokens: int,
        temperature: Optional[float],
        top_p: Optional[float],
    ) -> str:
        payload = {
            key: value
            for key, value in {
                "model": self.model_name,
                "input": prompt,
                "instructions": system or None,
                "max_output_tokens": max_tokens,
                "temperature": float(temperature) if temperature is not None else None,
                "top_p": float(top_p) if top_p is not None else None,
                "tool_choice": "none",
                "reasoning": {"effort": "low"},
            }.items()
            if value is not None
        }

        resp = self._client.responses.create(**payload)
        text = (getattr(resp, "output_text", None) or "").strip()
        if text:
            return text

        raise LLMServiceError(
            f"Model returned no text content. Raw response (truncated): {self._shorten_debug(str(resp))}"
        )

    def _call_chat(
        self,
        prompt: str,
        system: Optional[str],
        max_tokens: int,
        temperature: Optional[float],
        top_p: Optional[float],
    ) -> str:
        messages: List[Mapping[str, str]] = []
        if system:
            messages.append({"role": "system", "content": system})
        messages.append({"role": "user", "content": prompt})
        kwargs: dict = {
            "model": self.model_name,
            "messages": messages,
            "max_tokens": max_tokens,
            "n": 1,
        }
        if temperature is not None:
            kwargs["temperature"] = float(temperature)
        if top_p is not None:
            kwargs["top_p"] = float(top_p)

        resp = self._client.chat.completions.create(**kwargs)
        text = self._extract_text_from_chat(resp).strip()
        if text:
            return text
        raise LLMServiceError(
            f"Chat completion returned no text. Raw response (truncated): {self._shorten_debug(str(resp))}"
        )

    def _call_legacy(
        self,
        prompt: str,
        system: Optional[str],
        max_tokens: int,
        temperature: Optional[float],
        top_p: Optional[float],
    ) -> str:
        full_prompt = f"{system}\n\n{prompt}" if system else prompt
        kwargs: dict = {
            "model": self.model_name,
            "prompt": full_prompt,
            "max_tokens": max_tokens,
            "n": 1,
        }
        if temperature is not None:
            kwargs["temperature"] = float(temperature)
        if top_p is not None:
            kwargs["top_p"] = float(top_p)

        resp = self._client.completions.create(**kwargs)
        choices = getattr(resp, "choices", []) or []
        text = str(getattr(choices[0], "text", "") or "").strip() if choices else ""
        if text:
            return text
        raise LLMServiceError(
            f"Legacy completion returned no text. Raw response (truncated): {self._shorten_debug(str(resp))}"
        )

    @staticmethod
    def _extract_text_from_chat(resp: Any) -> str:
        choices = getattr(resp, "choices", []) or []
        if not choices:
            return ""
        first = choices[0]
        msg = getattr(first, "message", None)
        content = msg.get("content") if isinstance(msg, dict) else getattr(msg, "content", None)
        if isinstance(content, list):
            parts = [
                str(part.get("text") or "")
                for part in content
                if isinstance(part, dict) and part.get("type") == "text"
            ]
            return "\n".join(part for part in parts if part)
        return str(content or "")

    @staticmethod
    def _shorten_debug(s: str, limit: int = 1200) -> str:
        s = s.replace("\n", " ")
        return (s[:limit] + "…") if len(s) > limit else s


def build_text_client(config: Mapping[str, Any]):
    """Construct the configured client, or ``None`` when no credential is set.

    Called once while the application is created so a missing or unknown
    provider is reported at start-up instead of on the first request.
    """

    provider = str(config.get("LLM_PROVIDER") or "anthropic").strip().lower()
    model_name = config.get("LLM_MODEL")

    if provider == "anthropic":
        api_key = config.get("ANTHROPIC_API_KEY")
        if not api_key:
            LOGGER.warning("ANTHROPIC_API_KEY not configured; AI features will report a configuration error.")
            return None
        return AnthropicTextClient(api_key=api_key, model_name=model_name)

    if provider == "openai":
        api_key = config.get("OPENAI_API_KEY")
        if not api_key:
            LOGGER.warning("OPENAI_API_KEY not configured; AI features will report a configuration error.")
            return None
        return OpenAIUnifiedGenerator(model_name=model_name, api_key=api_key)

    raise LLMConfigurationError(f"Unsupported LLM_PROVIDER '{provider}'. Use 'anthropic' or 'openai'.")


def missing_credential_message(config: Mapping[str, Any]) -> str:
    provider = str(config.get("LLM_PROVIDER") or "anthropic").strip().lower()
    key_name = "OPENAI_API_KEY" if provider == "openai" else "ANTHROPIC_API_KEY"
    return f"{key_name} is not configured. Add it to your .env file."
