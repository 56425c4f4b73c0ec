"""Intelligence Layer - Classification, ranking and chain analysis."""

from remedy.layers.intelligence.classifier import FailureClassifier
from remedy.layers.intelligence.ranker import FixRanker
from remedy.layers.intelligence.chains import ChainAnalyzer
from remedy.layers.intelligence.ai_advisor import AIFixAdvisor

__all__ = ["FailureClassifier", "FixRanker", "ChainAnalyzer", "AIFixAdvisor"]
