"""
Fix Proposal Ranker - Confidence-scored repairs for one failure.

Order of reasoning for a FailureRecord of kind K:

1. A fix that already worked for (action, target, K) is returned at the
   learned-fix confidence, no questions asked.
2. Otherwise a per-kind handler proposes fixes from the constants table.
3. Structural drift between the cached and live DOM discounts every
   proposal that depends on the current page structure.
4. The best proposal wins unless it falls below the floor, in which case
   the step is skipped with "no viable fix found".
"""

from dataclasses import replace
import logging
import re
from typing import Any, Callable, Dict, List, Optional

from remedy.core.config import RepairConstants
from remedy.core.errors import ConfigError
from remedy.core.models import (
    ActionKind,
    ErrorKind,
    FailureRecord,
    FixKind,
    FixProposal,
    PatternKey,
    Step,
    StepStatus,
)
from remedy.layers.intelligence.classifier import (
    FailureClassifier,
    InputMismatch,
    read_error_signals,
)
from remedy.layers.memory.pattern_store import PatternStore

logger = logging.getLogger(__name__)

NO_VIABLE_FIX = "no viable fix found"

_DATE_VALUE = re.compile(r"^(\d{4})([-/])(\d{1,2})\2(\d{1,2})$")
_DATE_FIELD_HINTS = ("date", "birth", "schedule", "reservation")
_INVALID_HINT = re.compile(r"invalid|無効|不正")


def is_date_field(step: Step) -> bool:
    target = step.target.lower()
    if any(hint in target for hint in _DATE_FIELD_HINTS):
        return True
    return bool(step.value and _DATE_VALUE.match(step.value))


def normalize_date(value: Optional[str]) -> Optional[str]:
    """
    Swap a date between ISO dashes and slash notation.

    Example:
        >>> normalize_date("2024-01-05")
        '2024/01/05'
        >>> normalize_date("2024/1/5")
        '2024-01-05'
    """
    match = _DATE_VALUE.match(value or "")
    if not match:
        return None
    year, separator, month, day = match.groups()
    if separator == "-":
        return f"{year}/{month}/{day}"
    return f"{year}-{int(month):02d}-{int(day):02d}"


def step_from_fix(step: Step, fix: Dict[str, Any]) -> Step:
    """Rebuild a step from a stored fix payload. Raises ConfigError if malformed."""
    return replace(
        step,
        action=ActionKind.parse(fix.get("action", step.action.value)),
        target=fix.get("target", step.target),
        value=fix.get("value"),
        status=StepStatus.PENDING,
        error=None,
        force=bool(fix.get("force", False)),
        scroll_before_action=bool(fix.get("scroll_before_action", False)),
        wait_for_visible=bool(fix.get("wait_for_visible", False)),
        timeout_ms=fix.get("timeout_ms"),
    )


def _retry(step: Step, **changes) -> Step:
    return replace(step, status=StepStatus.PENDING, error=None, **changes)


class FixRanker:
    """
    Produce and select FixProposals.

    Example:
        >>> ranker = FixRanker(pattern_store=InMemoryPatternStore())
        >>> proposal = ranker.choose(failure)
        >>> proposal.kind, proposal.confidence
        (<FixKind.SCROLL_THEN_RETRY: 'scroll_then_retry'>, 0.7)
    """

    def __init__(
        self,
        pattern_store: Optional[PatternStore] = None,
        constants: Optional[RepairConstants] = None,
        classifier: Optional[FailureClassifier] = None,
        intent: str = "",
    ):
        self.pattern_store = pattern_store
        self.constants = constants or RepairConstants()
        self.classifier = classifier or FailureClassifier()
        self._intent_tokens = {w for w in re.findall(r"\w+", intent.lower()) if len(w) >= 3}
        self._handlers: Dict[ErrorKind, Callable[[FailureRecord], List[FixProposal]]] = {
            ErrorKind.ELEMENT_NOT_FOUND: self._not_found,
            ErrorKind.NOT_VISIBLE: self._not_visible,
            ErrorKind.NOT_ENABLED: self._not_enabled,
            ErrorKind.NOT_CLICKABLE: self._not_clickable,
            ErrorKind.WRONG_ELEMENT_TYPE: self._wrong_element_type,
            ErrorKind.UI_INTERFERENCE: self._ui_interference,
            ErrorKind.DYNAMIC_LOADING_TIMEOUT: self._dynamic_loading,
            ErrorKind.UNKNOWN: self._unknown,
        }

    def propose(self, failure: FailureRecord, drift: bool = False) -> List[FixProposal]:
        """All proposals for ``failure``, best first."""
        learned = self.learned_fix(failure)
        if learned is not None:
            return [learned]

        proposals = self._handlers[failure.kind](failure)
        if drift:
            # Skips do not depend on page structure, so they keep their score
            proposals = [
                p if p.kind == FixKind.SKIP else p.scaled(self.constants.drift_penalty)
                for p in proposals
            ]
        proposals.sort(key=lambda p: p.confidence, reverse=True)
        return proposals

    def choose(self, failure: FailureRecord, drift: bool = False) -> FixProposal:
        """The single fix for ``failure``."""
        proposals = self.propose(failure, drift=drift)
        if not proposals or proposals[0].confidence < self.constants.minimum_confidence:
            return self.fallback(failure)
        return self._annotate_intent(failure, proposals[0])

    def fallback(self, failure: FailureRecord) -> FixProposal:
        return self._annotate_intent(failure, FixProposal(
            kind=FixKind.SKIP,
            confidence=0.0,
            rationale=NO_VIABLE_FIX,
            resulting_step=_retry(failure.step, action=ActionKind.SKIP),
            source="fallback",
        ))

    def learned_fix(self, failure: FailureRecord) -> Optional[FixProposal]:
        if self.pattern_store is None:
            return None
        key = PatternKey(failure.step.action, failure.step.target, failure.kind)
        fix = self.pattern_store.lookup(key)
        if not fix:
            return None
        try:
            kind = FixKind(fix.get("type", FixKind.ALTERNATIVE_SELECTOR.value))
            resulting = step_from_fix(failure.step, fix)
        except (ValueError, ConfigError) as e:
            logger.warning(f"[FixRanker] Ignoring malformed learned fix for {key.as_string()}: {e}")
            return None
        logger.info(f"[FixRanker] Reusing learned fix for {key.as_string()}")
        return FixProposal(
            kind=kind,
            confidence=self.constants.learned_fix,
            rationale=f"learned fix: {kind.value} succeeded before for this action, target and error",
            resulting_step=resulting,
            source="pattern_store",
        )

    def _not_found(self, failure: FailureRecord) -> List[FixProposal]:
        step = failure.step
        alternatives = failure.resolution.alternatives if failure.resolution else []
        if not alternatives:
            return [FixProposal(
                kind=FixKind.SKIP,
                confidence=self.constants.not_found_skip,
                rationale=f"'{step.target}' is not on the page and no alternative selector exists",
                resulting_step=_retry(step, action=ActionKind.SKIP),
            )]

        proposals = []
        for candidate in alternatives:
            confidence = self.constants.weight_for(candidate.origin) * candidate.similarity
            proposals.append(FixProposal(
                kind=FixKind.ALTERNATIVE_SELECTOR,
                confidence=confidence,
                rationale=(
                    f"'{step.target}' not found; {candidate.origin} alternative "
                    f"'{candidate.selector}' exists (similarity {candidate.similarity:.2f})"
                ),
                resulting_step=_retry(step, target=candidate.selector),
            ))
        proposals.sort(key=lambda p: p.confidence, reverse=True)
        return proposals[: self.constants.max_alternatives]

    def _not_visible(self, failure: FailureRecord) -> List[FixProposal]:
        step = failure.step
        if step.action.is_interactive:
            return [FixProposal(
                kind=FixKind.SCROLL_THEN_RETRY,
                confidence=self.constants.not_visible_scroll,
                rationale=f"'{step.target}' exists but is not visible; scroll it into view first",
                resulting_step=_retry(step, scroll_before_action=True, wait_for_visible=True),
            )]
        return [FixProposal(
            kind=FixKind.WAIT_THEN_RETRY,
            confidence=self.constants.not_visible_wait,
            rationale=f"'{step.target}' exists but is not visible yet; wait for it",
            resulting_step=_retry(
                step, wait_for_visible=True, timeout_ms=self.constants.dynamic_wait_timeout_ms
            ),
        )]

    def _not_enabled(self, failure: FailureRecord) -> List[FixProposal]:
        return [FixProposal(
            kind=FixKind.SKIP,
            confidence=self.constants.not_enabled_skip,
            rationale=f"'{failure.step.target}' is disabled on the page",
            resulting_step=_retry(failure.step, action=ActionKind.SKIP),
        )]

    def _not_clickable(self, failure: FailureRecord) -> List[FixProposal]:
        return [FixProposal(
            kind=FixKind.FORCE_ACTION,
            confidence=self.constants.not_clickable_force,
            rationale=f"'{failure.step.target}' does not receive the pointer; force the click",
            resulting_step=_retry(failure.step, force=True),
        )]

    def _ui_interference(self, failure: FailureRecord) -> List[FixProposal]:
        pattern = read_error_signals(failure.error_text).interference or "overlay"
        return [FixProposal(
            kind=FixKind.FORCE_ACTION,
            confidence=self.constants.ui_interference,
            rationale=f"a {pattern} covers '{failure.step.target}'; force the action through it",
            resulting_step=_retry(failure.step, force=True),
        )]

    def _dynamic_loading(self, failure: FailureRecord) -> List[FixProposal]:
        return [FixProposal(
            kind=FixKind.WAIT_THEN_RETRY,
            confidence=self.constants.dynamic_loading_wait,
            rationale=f"timed out on '{failure.step.target}' with no other signal; wait longer",
            resulting_step=_retry(
                failure.step, wait_for_visible=True, timeout_ms=self.constants.dynamic_wait_timeout_ms
            ),
        )]

    def _unknown(self, failure: FailureRecord) -> List[FixProposal]:
        return [FixProposal(
            kind=FixKind.WAIT_THEN_RETRY,
            confidence=self.constants.unknown_retry,
            rationale="unrecognised failure; retry after waiting",
            resulting_step=_retry(
                failure.step, wait_for_visible=True, timeout_ms=self.constants.dynamic_wait_timeout_ms
            ),
        )]

    def _wrong_element_type(self, failure: FailureRecord) -> List[FixProposal]:
        step = failure.step
        mismatch = self.classifier.mismatch_for(
            step, read_error_signals(failure.error_text), failure.resolution
        )

        if mismatch in (InputMismatch.CHECKBOX, InputMismatch.RADIO):
            resulting = _retry(step, action=ActionKind.CHECK, value=None)
            rationale = f"'{step.target}' is a {mismatch}; check it instead of filling"
        elif mismatch == InputMismatch.SELECT:
            resulting = _retry(step, action=ActionKind.SELECT_OPTION)
            rationale = f"'{step.target}' is a select; choose the option instead of filling"
        elif mismatch == InputMismatch.NUMBER:
            number = "0" if _INVALID_HINT.search(step.label.lower()) else "1"
            resulting = _retry(step, value=number)
            rationale = f"'{step.target}' only accepts numbers; use {number}"
        elif mismatch == InputMismatch.FILE:
            resulting = _retry(step, action=ActionKind.SET_INPUT_FILES)
            rationale = f"'{step.target}' is a file input; upload instead of filling"
        elif mismatch == InputMismatch.DATE and is_date_field(step):
            normalized = normalize_date(step.value)
            if normalized is None:
                return []
            resulting = _retry(step, value=normalized)
            rationale = f"date value '{step.value}' rejected; use '{normalized}'"
        else:
            return []

        return [FixProposal(
            kind=FixKind.ACTION_CORRECTION,
            confidence=self.constants.wrong_element_type,
            rationale=rationale,
            resulting_step=resulting,
        )]

    def _annotate_intent(self, failure: FailureRecord, proposal: FixProposal) -> FixProposal:
        if proposal.kind != FixKind.SKIP or not self._intent_tokens:
            return proposal
        haystack = f"{failure.step.label} {failure.step.target}".lower()
        if any(token in haystack for token in self._intent_tokens):
            return replace(
                proposal,
                rationale=f"{proposal.rationale} (step matches the user intent; review manually)",
            )
        return proposal
