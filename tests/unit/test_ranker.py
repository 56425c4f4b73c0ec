import pytest

from remedy.core.models import (
    ActionKind,
    Candidate,
    ErrorKind,
    FailureRecord,
    FixKind,
    PatternKey,
    ProbeResult,
    Resolution,
    Step,
    StepStatus,
)
from remedy.layers.intelligence.ranker import NO_VIABLE_FIX, FixRanker, normalize_date
from remedy.layers.memory import InMemoryPatternStore


def _failure(step, kind, error="", resolution=None, index=2):
    return FailureRecord(index=index, step=step, error_text=error, kind=kind, resolution=resolution)


def _missing(target, alternatives=()):
    return Resolution(
        target=target,
        probes=[ProbeResult(selector=target, exists=False)],
        alternatives=list(alternatives),
    )


@pytest.mark.parametrize("action,value", [
    (ActionKind.CLICK, None),
    (ActionKind.FILL, "John"),
    (ActionKind.ASSERT_VISIBLE, None),
])
def test_not_found_without_alternatives_skips(action, value):
    """Zero alternatives means a skip at 0.8 whatever the action."""
    step = Step("Missing", action, "#gone", value, status=StepStatus.FAILED)
    proposal = FixRanker().choose(_failure(step, ErrorKind.ELEMENT_NOT_FOUND, resolution=_missing("#gone")))
    assert proposal.kind == FixKind.SKIP
    assert proposal.confidence == pytest.approx(0.8)
    assert proposal.resulting_step.action == ActionKind.SKIP


def test_fuzzy_alternative_confidence():
    step = Step("Email", ActionKind.FILL, 'input[name="user-email"]', "a@b.c", status=StepStatus.FAILED)
    candidate = Candidate('input[name="user_email"]', "fuzzy", 0.9)
    failure = _failure(step, ErrorKind.ELEMENT_NOT_FOUND, resolution=_missing(step.target, [candidate]))

    proposal = FixRanker().choose(failure)

    assert proposal.kind == FixKind.ALTERNATIVE_SELECTOR
    assert proposal.confidence == pytest.approx(0.72)
    assert proposal.resulting_step.target == 'input[name="user_email"]'
    assert proposal.resulting_step.value == "a@b.c"


def test_alternatives_sorted_and_capped():
    step = Step("Email", ActionKind.FILL, "#email", "x", status=StepStatus.FAILED)
    candidates = [Candidate(f"#email{i}", "text", 1.0) for i in range(10)]
    candidates.append(Candidate('[name="email"]', "structural", 1.0))
    failure = _failure(step, ErrorKind.ELEMENT_NOT_FOUND, resolution=_missing("#email", candidates))

    proposals = FixRanker().propose(failure)

    assert len(proposals) == 8
    assert proposals[0].resulting_step.target == '[name="email"]'
    assert proposals[0].confidence == pytest.approx(0.8)


def test_drift_penalty_discounts_structural_guesses():
    step = Step("Email", ActionKind.FILL, 'input[name="user-email"]', "a@b.c", status=StepStatus.FAILED)
    candidate = Candidate('input[name="user_email"]', "fuzzy", 0.9)
    failure = _failure(step, ErrorKind.ELEMENT_NOT_FOUND, resolution=_missing(step.target, [candidate]))

    proposal = FixRanker().choose(failure, drift=True)

    assert proposal.confidence == pytest.approx(0.72 * 0.8)


def test_drift_penalty_can_push_below_floor():
    step = Step("Odd", ActionKind.FILL, "#name", "x", status=StepStatus.FAILED)
    failure = _failure(step, ErrorKind.UNKNOWN, error="weird")

    assert FixRanker().choose(failure).kind == FixKind.WAIT_THEN_RETRY

    fallback = FixRanker().choose(failure, drift=True)
    assert fallback.kind == FixKind.SKIP
    assert fallback.confidence == 0.0
    assert fallback.source == "fallback"
    assert fallback.rationale.startswith(NO_VIABLE_FIX)


def test_learned_fix_short_circuits_probe():
    """A fix that worked before wins regardless of what the probe says."""
    store = InMemoryPatternStore()
    key = PatternKey(ActionKind.CLICK, "#old", ErrorKind.ELEMENT_NOT_FOUND)
    store.record(key, {"type": "alternative_selector", "action": "click", "target": "#new"}, success=True)
    step = Step("Send", ActionKind.CLICK, "#old", status=StepStatus.FAILED)
    candidate = Candidate("#other", "structural", 1.0)
    failure = _failure(step, ErrorKind.ELEMENT_NOT_FOUND, resolution=_missing("#old", [candidate]))

    proposal = FixRanker(pattern_store=store).choose(failure, drift=True)

    assert proposal.source == "pattern_store"
    assert proposal.confidence == pytest.approx(0.9)
    assert proposal.resulting_step.target == "#new"


def test_failed_attempts_are_not_reused():
    store = InMemoryPatternStore()
    key = PatternKey(ActionKind.CLICK, "#old", ErrorKind.ELEMENT_NOT_FOUND)
    store.record(key, {"type": "alternative_selector", "action": "click", "target": "#new"}, success=False)
    step = Step("Send", ActionKind.CLICK, "#old", status=StepStatus.FAILED)

    proposal = FixRanker(pattern_store=store).choose(
        _failure(step, ErrorKind.ELEMENT_NOT_FOUND, resolution=_missing("#old"))
    )

    assert proposal.source == "ranker"
    assert proposal.kind == FixKind.SKIP


def test_not_visible_click_scrolls():
    step = Step("Submit", ActionKind.CLICK, ".submit", status=StepStatus.FAILED)
    proposal = FixRanker().choose(_failure(step, ErrorKind.NOT_VISIBLE))
    assert proposal.kind == FixKind.SCROLL_THEN_RETRY
    assert proposal.confidence == pytest.approx(0.7)
    assert proposal.resulting_step.scroll_before_action


def test_not_visible_assertion_waits():
    step = Step("Thanks", ActionKind.ASSERT_VISIBLE, "text=Thanks", status=StepStatus.FAILED)
    proposal = FixRanker().choose(_failure(step, ErrorKind.NOT_VISIBLE))
    assert proposal.kind == FixKind.WAIT_THEN_RETRY
    assert proposal.confidence == pytest.approx(0.8)
    assert proposal.resulting_step.wait_for_visible


def test_not_enabled_skips():
    step = Step("Send", ActionKind.CLICK, "#send", status=StepStatus.FAILED)
    proposal = FixRanker().choose(_failure(step, ErrorKind.NOT_ENABLED))
    assert proposal.kind == FixKind.SKIP
    assert proposal.confidence == pytest.approx(0.9)


def test_ui_interference_forces_action():
    step = Step("Send", ActionKind.CLICK, "#send", status=StepStatus.FAILED)
    proposal = FixRanker().choose(_failure(step, ErrorKind.UI_INTERFERENCE, error="a modal is open"))
    assert proposal.kind == FixKind.FORCE_ACTION
    assert proposal.confidence == pytest.approx(0.85)
    assert proposal.resulting_step.force
    assert "modal" in proposal.rationale


def test_checkbox_fill_becomes_check():
    step = Step("Agree", ActionKind.FILL, '[name="agree"]', "yes", status=StepStatus.FAILED)
    failure = _failure(step, ErrorKind.WRONG_ELEMENT_TYPE, error='Input of type "checkbox" cannot be filled')

    proposal = FixRanker().choose(failure)

    assert proposal.kind == FixKind.ACTION_CORRECTION
    assert proposal.confidence == pytest.approx(0.9)
    assert proposal.resulting_step.action == ActionKind.CHECK
    assert proposal.resulting_step.value is None


@pytest.mark.parametrize("label,expected", [
    ("Enter age", "1"),
    ("Enter invalid age", "0"),
])
def test_number_field_gets_numeric_value(label, expected):
    step = Step(label, ActionKind.FILL, '[name="age"]', "abc", status=StepStatus.FAILED)
    failure = _failure(step, ErrorKind.WRONG_ELEMENT_TYPE, error="Cannot type text into input[type=number]")
    assert FixRanker().choose(failure).resulting_step.value == expected


def test_date_value_is_normalized():
    step = Step("Birthday", ActionKind.FILL, "#birth_date", "2024-01-05", status=StepStatus.FAILED)
    failure = _failure(step, ErrorKind.WRONG_ELEMENT_TYPE, error="Error: Malformed value")
    assert FixRanker().choose(failure).resulting_step.value == "2024/01/05"


def test_normalize_date_both_ways():
    assert normalize_date("2024-01-05") == "2024/01/05"
    assert normalize_date("2024/1/5") == "2024-01-05"
    assert normalize_date("tomorrow") is None


def test_skip_matching_intent_is_flagged_for_review():
    step = Step("Submit contact", ActionKind.CLICK, "#send", status=StepStatus.FAILED)
    ranker = FixRanker(intent="Submit the contact form")
    proposal = ranker.choose(_failure(step, ErrorKind.NOT_ENABLED))
    assert "review manually" in proposal.rationale
