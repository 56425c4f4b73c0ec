"""Language-model backends for AI-assisted repair."""

from remedy.layers.intelligence.language.base import LanguageModel
from remedy.layers.intelligence.language.cloud_model import CloudLanguageModel

__all__ = ["LanguageModel", "CloudLanguageModel"]
