"""
Configuration - Run settings and tunable repair constants.

The confidence constants have no derivation beyond what worked in practice,
so every one of them is a named field that callers can override.
"""

from dataclasses import dataclass, field
from typing import Optional

from remedy.core.errors import ConfigError


@dataclass
class RepairConstants:
    """Confidence constants and limits used across the repair pipeline."""
    similarity_threshold: float = 0.6
    learned_fix: float = 0.9
    wrong_element_type: float = 0.9
    ui_interference: float = 0.85
    not_visible_scroll: float = 0.7
    not_visible_wait: float = 0.8
    not_enabled_skip: float = 0.9
    not_clickable_force: float = 0.6
    dynamic_loading_wait: float = 0.6
    not_found_skip: float = 0.8
    unknown_retry: float = 0.3
    minimum_confidence: float = 0.3
    drift_penalty: float = 0.8
    chain_skip: float = 0.9
    ai_acceptance: float = 0.7
    # Weights multiplied by similarity for element_not_found alternatives
    structural_weight: float = 0.8
    text_weight: float = 0.7
    fuzzy_weight: float = 0.8
    max_alternatives: int = 8
    max_pattern_attempts: int = 10
    interference_window: int = 5
    hover_timeout_ms: int = 2000
    dynamic_wait_timeout_ms: int = 10000

    def weight_for(self, origin: str) -> float:
        return {
            "structural": self.structural_weight,
            "text": self.text_weight,
            "fuzzy": self.fuzzy_weight,
        }[origin]


@dataclass
class RepairConfig:
    """Configuration for one repair run."""
    url: str
    goal: str = ""
    results_dir: str = "./test-results"
    result_file: Optional[str] = None
    route_file: Optional[str] = None
    enable_ai: bool = False
    auto_execute: bool = False
    headless: bool = True
    ai_model: Optional[str] = None
    ai_provider: str = "auto"
    ai_timeout: float = 30.0
    patterns_file: Optional[str] = None
    report_dir: str = "./remedy_reports"
    timeout: int = 10  # seconds, per step when re-running a route
    constants: RepairConstants = field(default_factory=RepairConstants)

    def validate(self) -> None:
        """Raise ConfigError for settings that make a run impossible."""
        if not self.url or not self.url.strip():
            raise ConfigError("A target URL is required")
        if self.ai_timeout <= 0:
            raise ConfigError(f"ai_timeout must be positive, got {self.ai_timeout}")
        if self.timeout <= 0:
            raise ConfigError(f"timeout must be positive, got {self.timeout}")
