from datetime import datetime

import pytest

from remedy.core.models import (
    ActionKind,
    Chain,
    ChainKind,
    ErrorKind,
    FailureRecord,
    FixKind,
    FixProposal,
    Route,
    Step,
    StepStatus,
)
from remedy.layers.action.compiler import RouteRepairCompiler
from remedy.layers.intelligence.ranker import FixRanker


@pytest.fixture
def compiler():
    return RouteRepairCompiler(clock=lambda: datetime(2024, 1, 5, 12, 0, 0))


def _route(*steps, route_id="route_7"):
    return Route(route_id=route_id, steps=tuple(steps))


def test_zero_failures_keeps_steps(compiler):
    route = _route(
        Step("Open", ActionKind.LOAD, "https://example.com"),
        Step("Name", ActionKind.FILL, "#name", "John"),
        Step("Send", ActionKind.CLICK, "#send"),
    )

    repaired = compiler.compile(route, [], {})

    assert repaired.steps == route.steps
    assert repaired.fix_summary.fixed_steps == 0
    assert repaired.fix_summary.total_steps == 3
    assert repaired.applied_fixes == ()


def test_repaired_route_identity(compiler):
    route = _route(Step("Open", ActionKind.LOAD, "https://example.com"))
    repaired = compiler.compile(route, [], {})
    assert repaired.route_id == "fixed_route_7_20240105120000"
    assert repaired.original_route_id == "route_7"
    assert repaired.is_fixed_route
    assert repaired.fix_timestamp == "2024-01-05T12:00:00"


def test_repairing_a_repaired_route_keeps_origin(compiler):
    route = Route(
        route_id="fixed_route_7_20240101000000",
        steps=(Step("Open", ActionKind.LOAD, "https://example.com"),),
        is_fixed_route=True,
        original_route_id="route_7",
    )
    repaired = compiler.compile(route, [], {})
    assert repaired.original_route_id == "route_7"
    assert repaired.route_id == "fixed_route_7_20240105120000"


def test_checkbox_fix_is_applied_with_provenance(compiler):
    agree = Step("Agree", ActionKind.FILL, '[name="agree"]', "yes", status=StepStatus.FAILED,
                 error='Input of type "checkbox" cannot be filled')
    route = _route(Step("Open", ActionKind.LOAD, "https://example.com"), agree)
    failure = FailureRecord(1, agree, agree.error, ErrorKind.WRONG_ELEMENT_TYPE)

    repaired = compiler.compile(route, [failure], {1: FixRanker().choose(failure)})

    step = repaired.steps[1]
    assert step.action == ActionKind.CHECK
    assert step.value is None
    assert step.original_action == ActionKind.FILL
    assert step.original_target == '[name="agree"]'
    assert step.original_value == "yes"
    assert step.fix_kind == FixKind.ACTION_CORRECTION
    assert step.status == StepStatus.PENDING

    fix = repaired.applied_fixes[0]
    assert fix.to_dict()["type"] == "action_correction"
    assert fix.error_kind == ErrorKind.WRONG_ELEMENT_TYPE
    assert repaired.fix_summary.fixed_steps == 1
    assert repaired.fix_summary.simple_fixes == 1


def test_chain_dependents_are_skipped(compiler):
    submit = Step("Submit", ActionKind.CLICK, ".submit", status=StepStatus.FAILED, error="hidden")
    thanks = Step("Thanks", ActionKind.ASSERT_VISIBLE, "text=Thanks")
    route = _route(Step("Open", ActionKind.LOAD, "https://example.com"), submit, thanks)
    root = FailureRecord(1, submit, "hidden", ErrorKind.NOT_VISIBLE)
    dependent = FailureRecord(2, thanks, "not reached", ErrorKind.UNKNOWN, reached=False)
    chain = Chain(ChainKind.NAVIGATION, root, [dependent])

    repaired = compiler.compile(route, [root, dependent], {1: FixRanker().choose(root)}, [chain])

    assert repaired.steps[1].fix_kind == FixKind.SCROLL_THEN_RETRY
    assert repaired.steps[2].action == ActionKind.SKIP
    assert "step 1" in repaired.steps[2].fix_reason
    assert repaired.fix_summary.skipped_steps == 1
    assert repaired.fix_summary.fixed_steps == 2


def test_unchained_unreached_steps_are_copied(compiler):
    submit = Step("Submit", ActionKind.CLICK, "#go", status=StepStatus.FAILED)
    later = Step("Comment", ActionKind.FILL, "#comment", "hi")
    route = _route(submit, later)
    failures = [
        FailureRecord(0, submit, "", ErrorKind.UNKNOWN),
        FailureRecord(1, later, "not reached", ErrorKind.UNKNOWN, reached=False),
    ]

    repaired = compiler.compile(route, failures, {})

    assert repaired.steps[1] == later
    assert repaired.fix_summary.unresolved_steps == 1


def test_missing_proposal_falls_back_to_skip(compiler):
    send = Step("Send", ActionKind.CLICK, "#send", status=StepStatus.FAILED)
    route = _route(send)
    repaired = compiler.compile(route, [FailureRecord(0, send, "boom", ErrorKind.UNKNOWN)], {})

    assert repaired.steps[0].action == ActionKind.SKIP
    assert repaired.applied_fixes[0].source == "fallback"
    assert repaired.fix_summary.unresolved_steps == 1
    assert repaired.fix_summary.fixed_steps == 0


def test_date_rewrite_keeps_assertions_consistent(compiler):
    birthday = Step("Birthday", ActionKind.FILL, "#birth_date", "2024-01-05", status=StepStatus.FAILED,
                    error="Malformed value")
    shown = Step("Birthday shown", ActionKind.ASSERT_VISIBLE, "text=2024-01-05")
    route = _route(birthday, shown)
    failure = FailureRecord(0, birthday, "Malformed value", ErrorKind.WRONG_ELEMENT_TYPE)

    repaired = compiler.compile(route, [failure], {0: FixRanker().choose(failure)})

    assert repaired.steps[0].value == "2024/01/05"
    assert repaired.steps[1].target == "text=2024/01/05"
    assert repaired.steps[1].original_target == "text=2024-01-05"
    assert [f.source for f in repaired.applied_fixes] == ["ranker", "consistency"]
    assert repaired.fix_summary.fixed_steps == 1


def test_value_rewrite_only_touches_whole_values(compiler):
    quantity = Step("Quantity", ActionKind.FILL, "#qty", "1", status=StepStatus.FAILED, error="Value out of range")
    heading = Step("Heading", ActionKind.ASSERT_VISIBLE, "text=Step 10")
    summary = Step("Summary", ActionKind.ASSERT_TEXT, 'text="Quantity: 1"')
    route = _route(quantity, heading, summary)
    failure = FailureRecord(0, quantity, "Value out of range", ErrorKind.WRONG_ELEMENT_TYPE)
    proposal = FixProposal(
        kind=FixKind.ACTION_CORRECTION,
        confidence=0.9,
        rationale="quantity must be zero or more",
        resulting_step=Step("Quantity", ActionKind.FILL, "#qty", "0"),
    )

    repaired = compiler.compile(route, [failure], {0: proposal})

    assert repaired.steps[1] == heading
    assert repaired.steps[2].target == 'text="Quantity: 0"'
    assert [f.step_index for f in repaired.applied_fixes] == [0, 2]
