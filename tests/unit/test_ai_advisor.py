import pytest

from remedy.core.errors import LanguageModelUnavailable
from remedy.core.models import (
    ActionKind,
    ElementDescriptor,
    ErrorKind,
    FailureRecord,
    FixKind,
    PatternKey,
    Step,
    StepStatus,
)
from remedy.layers.intelligence.ai_advisor import AIFixAdvisor, parse_response
from remedy.layers.intelligence.language import LanguageModel
from remedy.layers.memory import InMemoryPatternStore


class CannedModel(LanguageModel):
    def __init__(self, reply):
        self.reply = reply
        self.prompts = []
        self.options = []

    def complete(self, prompt, options=None):
        self.prompts.append(prompt)
        self.options.append(options)
        if isinstance(self.reply, Exception):
            raise self.reply
        return self.reply


@pytest.fixture
def failure():
    step = Step("Age", ActionKind.FILL, '[name="age"]', "abc", status=StepStatus.FAILED)
    return FailureRecord(2, step, "Cannot type text into input[type=number]", ErrorKind.WRONG_ELEMENT_TYPE)


def test_parse_fenced_reply():
    text = 'Here you go:\n```json\n{"confidence": 0.8}\n```\nGood luck'
    assert parse_response(text) == {"confidence": 0.8}


def test_parse_reply_with_surrounding_prose():
    assert parse_response('Sure! {"implementable": false} Hope that helps.') == {"implementable": False}


def test_parse_garbage_raises():
    with pytest.raises(ValueError):
        parse_response("I cannot help with that")


def test_not_implementable_gives_no_proposal(failure):
    advisor = AIFixAdvisor(CannedModel(""))
    assert advisor.to_proposal(failure, {"implementable": False, "confidence": 0.9}) is None


def test_proposal_from_reply(failure):
    advisor = AIFixAdvisor(CannedModel(""))
    proposal = advisor.to_proposal(failure, {
        "fixedStep": {"action": "fill", "target": '[name="age"]', "value": 30},
        "confidence": 1.7,
        "explanation": "The field only accepts numbers",
    })

    assert proposal.source == "language_model"
    assert proposal.kind == FixKind.ACTION_CORRECTION
    assert proposal.confidence == 1.0
    assert proposal.resulting_step.value == "30"
    assert proposal.rationale == "The field only accepts numbers"


def test_malformed_action_is_discarded(failure):
    advisor = AIFixAdvisor(CannedModel(""))
    assert advisor.to_proposal(failure, {"fixedStep": {"action": "teleport"}, "confidence": 0.9}) is None


def test_advise_with_unparsable_reply(failure):
    assert AIFixAdvisor(CannedModel("no idea")).advise(failure, "https://example.com", "") is None


def test_advise_propagates_unavailable(failure):
    advisor = AIFixAdvisor(CannedModel(LanguageModelUnavailable("timed out")))
    with pytest.raises(LanguageModelUnavailable):
        advisor.advise(failure, "https://example.com", "")


def test_prompt_carries_context(failure):
    store = InMemoryPatternStore()
    store.record(
        PatternKey(ActionKind.FILL, '[name="age"]', ErrorKind.WRONG_ELEMENT_TYPE),
        {"type": "action_correction", "value": "1"},
        success=True,
    )
    model = CannedModel('{"confidence": 0.9}')
    snapshot = [ElementDescriptor(tag_name="input", input_type="number", name="age")]

    AIFixAdvisor(model, timeout=7, pattern_store=store).advise(
        failure, "https://example.com/signup", "Register a user", snapshot
    )

    prompt = model.prompts[0]
    assert "https://example.com/signup" in prompt
    assert "Register a user" in prompt
    assert "wrong_element_type" in prompt
    assert "name='age'" in prompt
    assert "(worked)" in prompt
    assert model.options[0]["timeout"] == 7
