from abc import ABC, abstractmethod
from typing import Any, Dict, Optional


class LanguageModel(ABC):
    """Abstract base class for language-model backends."""

    @abstractmethod
    def complete(self, prompt: str, options: Optional[Dict[str, Any]] = None) -> str:
        """
        Return the model's completion for ``prompt``.

        Args:
            prompt: The full user prompt.
            options: Provider-neutral knobs. ``timeout`` (seconds) must be
                honoured; ``temperature``, ``max_tokens`` and ``system``
                are optional.

        Raises:
            LanguageModelUnavailable: On timeout, network failure or
                missing credentials.
        """
        pass
