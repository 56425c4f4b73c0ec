from unittest.mock import MagicMock, patch

import pytest

from remedy.core.errors import LanguageModelUnavailable
from remedy.layers.intelligence.language import CloudLanguageModel


@pytest.fixture
def no_keys(monkeypatch):
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    monkeypatch.delenv("ANTHROPIC_API_KEY", raising=False)


def _model(provider):
    with patch.object(CloudLanguageModel, "_init_client"):
        model = CloudLanguageModel(provider=provider, model="test-model", timeout=12)
    model.client = MagicMock()
    return model


def test_no_keys_means_unavailable(no_keys):
    with pytest.raises(LanguageModelUnavailable, match="No API keys"):
        CloudLanguageModel()


def test_explicit_provider_without_key(no_keys):
    with pytest.raises(LanguageModelUnavailable, match="ANTHROPIC_API_KEY"):
        CloudLanguageModel(provider="anthropic")


def test_unknown_provider(monkeypatch):
    monkeypatch.setenv("OPENAI_API_KEY", "sk-test")
    with pytest.raises(LanguageModelUnavailable, match="Unknown provider"):
        CloudLanguageModel(provider="cohere")


def test_openai_completion_passes_timeout():
    model = _model("openai")
    reply = MagicMock()
    reply.choices[0].message.content = '{"confidence": 0.9}'
    model.client.chat.completions.create.return_value = reply

    assert model.complete("fix it", {"timeout": 5, "system": "be brief"}) == '{"confidence": 0.9}'

    kwargs = model.client.chat.completions.create.call_args.kwargs
    assert kwargs["timeout"] == 5
    assert kwargs["model"] == "test-model"
    assert kwargs["messages"][0] == {"role": "system", "content": "be brief"}


def test_anthropic_completion():
    model = _model("anthropic")
    message = MagicMock()
    message.content[0].text = "ok"
    model.client.messages.create.return_value = message

    assert model.complete("fix it") == "ok"
    assert model.client.messages.create.call_args.kwargs["timeout"] == 12


def test_sdk_errors_become_unavailable():
    model = _model("openai")
    model.client.chat.completions.create.side_effect = RuntimeError("Request timed out")

    with pytest.raises(LanguageModelUnavailable, match="Request timed out"):
        model.complete("fix it")
