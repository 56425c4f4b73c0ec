import os
import logging
from typing import Any, Dict, Optional

from remedy.core.errors import LanguageModelUnavailable
from .base import LanguageModel

logger = logging.getLogger(__name__)

DEFAULT_MODELS = {
    "openai": "gpt-4-turbo-preview",
    "anthropic": "claude-3-opus-20240229",
}


class CloudLanguageModel(LanguageModel):
    """
    Language model backed by the OpenAI or Anthropic APIs.

    Requires OPENAI_API_KEY or ANTHROPIC_API_KEY environment variables.
    Every failure surfaces as LanguageModelUnavailable so callers can fall
    back to the deterministic pipeline.
    """

    def __init__(self, provider: str = "auto", model: Optional[str] = None, timeout: float = 30.0):
        self.provider = provider
        self.model = model
        self.timeout = timeout
        self.client = None
        self._init_client()

    def _init_client(self):
        """Initialize the API client."""
        openai_key = os.environ.get("OPENAI_API_KEY")
        anthropic_key = os.environ.get("ANTHROPIC_API_KEY")

        if self.provider == "auto":
            if openai_key:
                self.provider = "openai"
            elif anthropic_key:
                self.provider = "anthropic"
            else:
                raise LanguageModelUnavailable(
                    "No API keys found. Set OPENAI_API_KEY or ANTHROPIC_API_KEY."
                )

        if self.provider == "openai":
            if not openai_key:
                raise LanguageModelUnavailable("OPENAI_API_KEY is not set")
            try:
                from openai import OpenAI
            except ImportError:
                raise LanguageModelUnavailable("Please install openai: pip install remedy[ai]")
            self.client = OpenAI(api_key=openai_key, timeout=self.timeout, max_retries=0)

        elif self.provider == "anthropic":
            if not anthropic_key:
                raise LanguageModelUnavailable("ANTHROPIC_API_KEY is not set")
            try:
                from anthropic import Anthropic
            except ImportError:
                raise LanguageModelUnavailable("Please install anthropic: pip install remedy[ai]")
            self.client = Anthropic(api_key=anthropic_key, timeout=self.timeout, max_retries=0)

        else:
            raise LanguageModelUnavailable(f"Unknown provider '{self.provider}'")

        self.model = self.model or DEFAULT_MODELS[self.provider]
        logger.info(f"[CloudLanguageModel] Initialized using {self.provider} ({self.model})")

    def complete(self, prompt: str, options: Optional[Dict[str, Any]] = None) -> str:
        options = options or {}
        timeout = options.get("timeout", self.timeout)
        system = options.get("system", "You are an expert in browser test automation.")
        temperature = options.get("temperature", 0.3)
        max_tokens = options.get("max_tokens", 2000)

        try:
            if self.provider == "openai":
                response = self.client.chat.completions.create(
                    model=self.model,
                    messages=[
                        {"role": "system", "content": system},
                        {"role": "user", "content": prompt},
                    ],
                    temperature=temperature,
                    max_tokens=max_tokens,
                    timeout=timeout,
                )
                return response.choices[0].message.content or ""

            message = self.client.messages.create(
                model=self.model,
                max_tokens=max_tokens,
                temperature=temperature,
                system=system,
                messages=[{"role": "user", "content": prompt}],
                timeout=timeout,
            )
            return message.content[0].text
        except Exception as e:
            # SDK errors (timeouts, rate limits, connection) all mean "unavailable"
            raise LanguageModelUnavailable(f"{self.provider} request failed: {e}") from e
