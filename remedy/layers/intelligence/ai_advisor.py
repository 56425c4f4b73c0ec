"""
AI Fix Advisor - Language-model-assisted repair proposals.

The advisor asks a LanguageModel for a fix per failed step and turns its
JSON answer into a FixProposal. It never retries and never falls back on
its own: LanguageModelUnavailable propagates so that the engine can switch
to the deterministic pipeline exactly once.
"""

from dataclasses import replace
import json
import logging
from typing import Any, Dict, List, Optional, Sequence

from remedy.core.config import RepairConstants
from remedy.core.errors import ConfigError
from remedy.core.models import (
    ActionKind,
    ElementDescriptor,
    FailureRecord,
    FixKind,
    FixProposal,
    PatternKey,
    StepStatus,
)
from remedy.layers.intelligence.language.base import LanguageModel
from remedy.layers.memory.pattern_store import PatternStore
from remedy.layers.sense.dom_snapshot import summarize_snapshot

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = """You are an expert in browser test automation.
You repair failed steps of recorded UI tests.

Reply with a single JSON object:
- "rootCause": why the step failed.
- "fixedStep": {"action", "target", "value", "force"} for the repaired step.
  action is one of load, click, doubleClick, hover, fill, keyPress, check,
  uncheck, selectOption, setInputFiles, scroll, assertVisible, assertText,
  waitForSelector, waitForURL, waitForLoadState, waitForTimeout, skip.
- "alternatives": other selectors worth trying.
- "confidence": float 0.0-1.0.
- "explanation": one sentence for the test owner.
- "implementable": false if the step cannot be repaired automatically.
"""


def parse_response(text: str) -> Dict[str, Any]:
    """
    Extract the JSON object from a model reply.

    Models often wrap JSON in a markdown fence, so the fenced block is
    preferred and the outermost braces are the fallback. Raises ValueError
    when no object can be decoded.
    """
    content = text or ""
    if "```json" in content:
        content = content.split("```json")[1].split("```")[0].strip()
    elif "{" in content:
        content = content[content.find("{"):content.rfind("}") + 1]
    data = json.loads(content)
    if not isinstance(data, dict):
        raise ValueError("model reply is not a JSON object")
    return data


class AIFixAdvisor:
    """
    Turn language-model answers into FixProposals.

    Example:
        >>> advisor = AIFixAdvisor(CloudLanguageModel(), timeout=20)
        >>> proposal = advisor.advise(failure, url, goal, snapshot)
        >>> proposal.source
        'language_model'
    """

    def __init__(
        self,
        model: LanguageModel,
        constants: Optional[RepairConstants] = None,
        timeout: float = 30.0,
        pattern_store: Optional[PatternStore] = None,
    ):
        self.model = model
        self.constants = constants or RepairConstants()
        self.timeout = timeout
        self.pattern_store = pattern_store

    def advise(
        self,
        failure: FailureRecord,
        url: str,
        goal: str,
        snapshot: Sequence[ElementDescriptor] = (),
    ) -> Optional[FixProposal]:
        """
        One proposal for ``failure``, or None if the reply was unusable.

        Raises:
            LanguageModelUnavailable: propagated from the model.
        """
        prompt = self.build_prompt(failure, url, goal, snapshot)
        reply = self.model.complete(prompt, {
            "timeout": self.timeout,
            "temperature": 0.3,
            "max_tokens": 2000,
            "system": SYSTEM_PROMPT,
        })
        try:
            data = parse_response(reply)
        except ValueError as e:
            logger.warning(f"[AIFixAdvisor] Unparsable reply for step {failure.index}: {e}")
            return None
        return self.to_proposal(failure, data)

    def build_prompt(
        self,
        failure: FailureRecord,
        url: str,
        goal: str,
        snapshot: Sequence[ElementDescriptor] = (),
    ) -> str:
        step = failure.step
        alternatives = []
        if failure.resolution:
            alternatives = [c.selector for c in failure.resolution.alternatives]
        return f"""
PAGE: {url}
USER INTENT: {goal or "Not provided"}

FAILED STEP (index {failure.index}):
- label: {step.label}
- action: {step.action.value}
- target: {step.target}
- value: {step.value if step.value is not None else ""}
- error: {failure.error_text}
- classified as: {failure.kind.value}

ALTERNATIVE SELECTORS THAT EXIST:
{chr(10).join(f"- {s}" for s in alternatives) or "None"}

CURRENT PAGE (Interactive Elements):
{summarize_snapshot(snapshot) or "Unavailable"}

PREVIOUS FIX ATTEMPTS:
{self._history_text(failure) or "None"}

How should this step be repaired? Respond in JSON.
"""

    def to_proposal(self, failure: FailureRecord, data: Dict[str, Any]) -> Optional[FixProposal]:
        if not data.get("implementable", True):
            return None
        fixed = data.get("fixedStep") or {}
        if not isinstance(fixed, dict):
            return None

        step = failure.step
        try:
            action = ActionKind.parse(fixed.get("action", step.action.value))
            value = fixed.get("value", step.value)
            resulting = replace(
                step,
                action=action,
                target=str(fixed.get("target") or step.target),
                value=None if value is None else str(value),
                status=StepStatus.PENDING,
                error=None,
                force=bool(fixed.get("force", False)),
            )
            confidence = min(max(float(data.get("confidence", 0.0)), 0.0), 1.0)
        except (ConfigError, TypeError, ValueError) as e:
            logger.warning(f"[AIFixAdvisor] Discarding malformed fix for step {failure.index}: {e}")
            return None

        return FixProposal(
            kind=self._infer_kind(failure, resulting),
            confidence=confidence,
            rationale=str(data.get("explanation") or data.get("rootCause") or "language model suggestion"),
            resulting_step=resulting,
            source="language_model",
        )

    @staticmethod
    def _infer_kind(failure: FailureRecord, resulting) -> FixKind:
        step = failure.step
        if resulting.action == ActionKind.SKIP:
            return FixKind.SKIP
        if resulting.action != step.action or resulting.value != step.value:
            return FixKind.ACTION_CORRECTION
        if resulting.target != step.target:
            return FixKind.ALTERNATIVE_SELECTOR
        if resulting.force:
            return FixKind.FORCE_ACTION
        return FixKind.WAIT_THEN_RETRY

    def _history_text(self, failure: FailureRecord) -> str:
        if self.pattern_store is None:
            return ""
        key = PatternKey(failure.step.action, failure.step.target, failure.kind)
        lines: List[str] = []
        for attempt in self.pattern_store.history(key)[-5:]:
            outcome = "worked" if attempt.success else "failed"
            lines.append(f"- {attempt.fix.get('type', '?')}: {json.dumps(attempt.fix)} ({outcome})")
        return "\n".join(lines)
