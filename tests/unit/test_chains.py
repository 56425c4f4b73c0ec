import pytest

from remedy.core.models import (
    ActionKind,
    ChainKind,
    ElementDescriptor,
    ErrorKind,
    FailureRecord,
    FixKind,
    ProbeResult,
    Resolution,
    Step,
    StepStatus,
)
from remedy.layers.intelligence.chains import ChainAnalyzer, field_name, is_related_input


def _failed(index, label, action, target, kind, reached=True, resolution=None, value=None):
    status = StepStatus.FAILED if reached else StepStatus.PENDING
    return FailureRecord(
        index=index,
        step=Step(label, action, target, value, status=status),
        error_text="" if reached else "not reached",
        kind=kind if reached else ErrorKind.UNKNOWN,
        resolution=resolution,
        reached=reached,
    )


@pytest.fixture
def analyzer():
    return ChainAnalyzer()


def test_submit_failure_claims_later_assertions(analyzer):
    """A failed submit click drags every later assertion into one chain."""
    failures = [
        _failed(2, "Submit", ActionKind.CLICK, 'button[type="submit"]', ErrorKind.NOT_CLICKABLE),
        _failed(3, "Title shown", ActionKind.ASSERT_VISIBLE, "text=Complete", None, reached=False),
        _failed(4, "Mail shown", ActionKind.ASSERT_TEXT, "#mail", None, reached=False),
    ]

    chains = analyzer.analyze(failures)

    assert len(chains) == 1
    assert chains[0].kind == ChainKind.NAVIGATION
    assert chains[0].root.index == 2
    assert chains[0].dependent_indexes == [3, 4]
    assert chains[0].severity == "high"

    proposals = analyzer.cascade_proposals(chains)
    assert set(proposals) == {3, 4}
    for proposal in proposals.values():
        assert proposal.kind == FixKind.SKIP
        assert proposal.confidence == pytest.approx(0.9)
        assert proposal.source == "chain"
        assert "step 2" in proposal.rationale


def test_wait_for_url_is_a_navigation_root(analyzer):
    failures = [
        _failed(1, "Reach thanks", ActionKind.WAIT_FOR_URL, "**/thanks", ErrorKind.DYNAMIC_LOADING_TIMEOUT),
        _failed(2, "Heading", ActionKind.WAIT_FOR_SELECTOR, "h1", None, reached=False),
    ]
    assert analyzer.analyze(failures)[0].kind == ChainKind.NAVIGATION


def test_unreached_step_is_never_a_root(analyzer):
    failures = [
        _failed(1, "Submit", ActionKind.CLICK, "#submit", None, reached=False),
        _failed(2, "Done", ActionKind.ASSERT_VISIBLE, "text=Done", None, reached=False),
    ]
    assert analyzer.analyze(failures) == []


def test_input_type_chain_groups_related_fields(analyzer):
    failures = [
        _failed(1, "Contact type", ActionKind.FILL, '[name="contact_type"]', ErrorKind.WRONG_ELEMENT_TYPE, value="x"),
        _failed(2, "Contact email", ActionKind.FILL, '[name="contact_email"]', None, reached=False, value="a@b.c"),
        _failed(3, "Comment", ActionKind.FILL, '[name="comment"]', None, reached=False, value="hi"),
    ]

    chains = analyzer.analyze(failures)

    assert [c.kind for c in chains] == [ChainKind.INPUT_TYPE]
    assert chains[0].dependent_indexes == [2]


def test_required_field_chain_blocks_submit(analyzer):
    failures = [
        _failed(1, "Email (required)", ActionKind.FILL, '[name="email"]', ErrorKind.ELEMENT_NOT_FOUND, value="a@b.c"),
        _failed(2, "Send", ActionKind.CLICK, 'button:has-text("送信")', None, reached=False),
    ]

    chains = analyzer.analyze(failures)

    assert [c.kind for c in chains] == [ChainKind.REQUIRED_FIELD]


def test_optional_field_does_not_start_required_chain(analyzer):
    descriptor = ElementDescriptor(tag_name="input", name="nickname")
    resolution = Resolution(
        target='[name="nickname"]',
        probes=[ProbeResult(selector='[name="nickname"]', exists=True, visible=True, enabled=True)],
        descriptor=descriptor,
    )
    failures = [
        _failed(1, "Nickname", ActionKind.FILL, '[name="nickname"]', ErrorKind.DYNAMIC_LOADING_TIMEOUT,
                resolution=resolution, value="JJ"),
        _failed(2, "Send", ActionKind.CLICK, "#submit", None, reached=False),
    ]
    assert analyzer.analyze(failures) == []


def test_ui_interference_chain_respects_window(analyzer):
    failures = [
        _failed(1, "Name", ActionKind.FILL, "#name", ErrorKind.UI_INTERFERENCE, value="John"),
        _failed(3, "Pick date", ActionKind.CLICK, "#date", ErrorKind.UI_INTERFERENCE),
        _failed(9, "Comment", ActionKind.FILL, "#comment", ErrorKind.UI_INTERFERENCE, value="hi"),
    ]

    chains = analyzer.analyze(failures)

    assert len(chains) == 1
    assert chains[0].root.index == 1
    assert chains[0].dependent_indexes == [3]


def test_failure_is_claimed_once(analyzer):
    """The navigation rule runs first; later rules cannot re-claim its members."""
    failures = [
        _failed(1, "Submit", ActionKind.CLICK, "#submit", ErrorKind.UI_INTERFERENCE),
        _failed(2, "Done", ActionKind.ASSERT_VISIBLE, "text=Done", None, reached=False),
        _failed(3, "Next", ActionKind.CLICK, "#next", None, reached=False),
    ]

    chains = analyzer.analyze(failures)

    claimed = [i for c in chains for i in [c.root.index] + c.dependent_indexes]
    assert len(claimed) == len(set(claimed))
    assert chains[0].kind == ChainKind.NAVIGATION


def test_field_helpers():
    assert field_name('input[name="Contact_Email"]') == "contact_email"
    assert is_related_input("contact_email", "contact_phone")
    assert is_related_input("user_name", "user_mail")
    assert not is_related_input("comment", "age")
