import pytest

from backend.replai.core.errors import GenerationError
from backend.replai.services import generative_text
from backend.replai.services.generative_text import _openrouter_content, generate_text, test_llm as probe_llm


def test_missing_key_raises_generation_error():
    with pytest.raises(GenerationError) as exc:
        generate_text("hello")
    assert exc.value.provider == "gemini"
    result = probe_llm()
    assert result["ok"] is False and result["error_type"] == "GenerationError"


def test_empty_model_output_is_an_error(monkeypatch):
    monkeypatch.setattr(generative_text, "_gemini_call", lambda prompt: "")
    with pytest.raises(GenerationError):
        generate_text("hello")
    monkeypatch.setattr(generative_text, "_gemini_call", lambda prompt: "Sounds good.")
    assert generate_text("hello") == "Sounds good."


def test_openrouter_content_shapes():
    assert _openrouter_content({"choices": [{"message": {"content": "  hi  "}}]}) == "hi"
    segmented = {"choices": [{"message": {"content": [{"text": "one"}, "two", {"value": " "}]}}]}
    assert _openrouter_content(segmented) == "one\ntwo"
    assert _openrouter_content({}) == ""
