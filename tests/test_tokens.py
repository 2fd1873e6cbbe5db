import pytest
import tiktoken
from structlog.testing import capture_logs

from persona_agent.domain.generation.tokens import trim_tokens


def test_short_context_is_unchanged():
    assert trim_tokens("hello world", 100) == "hello world"
    assert trim_tokens("", 100) == ""


def test_long_context_keeps_its_tail():
    context = "start " + "word " * 5000 + "the end"

    trimmed = trim_tokens(context, 100)

    assert len(trimmed) < len(context)
    assert context.endswith(trimmed)
    assert trimmed.endswith("the end")


def test_non_positive_budget_is_rejected():
    with pytest.raises(ValueError):
        trim_tokens("hello", 0)


def test_missing_tokenizer_cuts_by_characters(monkeypatch):
    def unavailable(model):
        raise KeyError(f"no encoding for {model}")

    monkeypatch.setattr(tiktoken, "encoding_for_model", unavailable)
    context = "abcdefghij" * 20

    with capture_logs() as logs:
        trimmed = trim_tokens(context, 10)

    assert trimmed == context[-40:]
    fallbacks = [entry for entry in logs if entry["event"] == "fallback"]
    assert [entry["operation"] for entry in fallbacks] == ["trim_tokens"]
    assert fallbacks[0]["substitute"] == "character suffix"
