"""
Provider-agnostic LLM client for ChartQA.

One `generate()` call covers Anthropic, OpenAI and Google Gemini. The
retriever uses it three ways: question reasoning, hypothetical chart
passages and the final answer. SDKs are imported only for the provider
actually configured.
"""

from __future__ import annotations

import hashlib
import logging
from typing import Callable, Dict, Optional

from .config import LLMConfig
from .errors import GenerationError

logger = logging.getLogger("chartqa.common.llm_client")

SUPPORTED_PROVIDERS = ("anthropic", "openai", "google")


class LLMClient:
    """Text generation against a single configured provider."""

    def __init__(
        self,
        provider: str = "google",
        model: str = "",
        anthropic_api_key: Optional[str] = None,
        openai_api_key: Optional[str] = None,
        google_api_key: Optional[str] = None,
        temperature: float = 0.3,
    ) -> None:
        self.provider = (provider or "google").lower()
        self.model = model
        self.temperature = temperature
        self._client = None
        self._google_models: Dict[str, object] = {}

        if self.provider not in SUPPORTED_PROVIDERS:
            logger.warning("Unsupported LLM provider: %s", self.provider)
            return

        api_key = {
            "anthropic": anthropic_api_key,
            "openai": openai_api_key,
            "google": google_api_key,
        }[self.provider]
        if not api_key:
            logger.info("%s API key not provided, LLM client unavailable", self.provider)
            return

        init = getattr(self, f"_init_{self.provider}")
        try:
            self._client = init(api_key)
        except ImportError as e:
            logger.warning("SDK for %s not installed: %s", self.provider, e)
        except Exception as e:
            logger.warning("Failed to initialize %s client: %s", self.provider, e)

    @classmethod
    def from_config(cls, config: LLMConfig, temperature: float = 0.3) -> "LLMClient":
        return cls(
            provider=config.provider,
            model=config.model,
            anthropic_api_key=config.anthropic_api_key or None,
            openai_api_key=config.openai_api_key or None,
            google_api_key=config.google_api_key or None,
            temperature=temperature,
        )

    @property
    def is_available(self) -> bool:
        return self._client is not None

    # ------------------------------------------------------------------
    # Provider setup

    @staticmethod
    def _init_anthropic(api_key: str):
        import anthropic

        return anthropic.Anthropic(api_key=api_key)

    @staticmethod
    def _init_openai(api_key: str):
        from openai import OpenAI

        return OpenAI(api_key=api_key)

    @staticmethod
    def _init_google(api_key: str):
        import google.generativeai as genai

        genai.configure(api_key=api_key)
        # The module itself; models are built per system prompt
        return genai

    # ------------------------------------------------------------------
    # Generation

    def generate(
        self,
        prompt: str,
        *,
        system: Optional[str] = None,
        max_tokens: int = 500,
        timeout: float = 30.0,
    ) -> str:
        """Return the model's stripped text reply.

        Raises GenerationError when no client is configured. Provider SDK
        errors propagate to the caller, which owns the fallback.
        """
        if not self.is_available:
            raise GenerationError("LLM client is not available")

        handler: Callable[..., str] = getattr(self, f"_generate_{self.provider}")
        return handler(prompt, system, max_tokens, timeout).strip()

    def _generate_anthropic(self, prompt: str, system: Optional[str], max_tokens: int, timeout: float) -> str:
        kwargs = {}
        if system:
            kwargs["system"] = system
        response = self._client.messages.create(
            model=self.model,
            max_tokens=max_tokens,
            temperature=self.temperature,
            messages=[{"role": "user", "content": prompt}],
            timeout=timeout,
            **kwargs,
        )
        return response.content[0].text

    def _generate_openai(self, prompt: str, system: Optional[str], max_tokens: int, timeout: float) -> str:
        messages = [{"role": "user", "content": prompt}]
        if system:
            messages.insert(0, {"role": "system", "content": system})
        response = self._client.chat.completions.create(
            model=self.model,
            max_tokens=max_tokens,
            temperature=self.temperature,
            messages=messages,
            timeout=timeout,
        )
        return response.choices[0].message.content or ""

    def _generate_google(self, prompt: str, system: Optional[str], max_tokens: int, timeout: float) -> str:
        response = self._google_model(system).generate_content(
            prompt,
            generation_config={
                "max_output_tokens": max_tokens,
                "temperature": self.temperature,
            },
            request_options={"timeout": timeout},
        )
        return response.text

    def _google_model(self, system: Optional[str]):
        """GenerativeModel for this system prompt, cached by prompt hash"""
        key = hashlib.md5((system or "").encode()).hexdigest()
        model = self._google_models.get(key)
        if model is None:
            kwargs = {"model_name": self.model}
            if system:
                kwargs["system_instruction"] = system
            model = self._client.GenerativeModel(**kwargs)
            self._google_models[key] = model
        return model
