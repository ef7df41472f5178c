import pytest

from fakes import make_settings
from roomie.gemini_client import GeminiClient, _normalize_model_name, build_contents
from roomie.models import Turn


def test_missing_api_key_is_rejected():
    with pytest.raises(ValueError):
        GeminiClient(make_settings(gemini_api_key=""))


def test_build_contents_orders_system_history_then_message():
    history = [Turn(role="user", text="hi"), Turn(role="model", text="hello")]
    contents = build_contents("be nice", history, "next")

    assert contents[0] == {"role": "user", "parts": [{"text": "System: be nice"}]}
    assert [item["role"] for item in contents] == ["user", "user", "model", "user"]
    assert contents[-1]["parts"][0]["text"] == "next"


def test_build_contents_without_system_prompt():
    assert build_contents("", [], "hi") == [{"role": "user", "parts": [{"text": "hi"}]}]


def test_normalize_model_name():
    assert _normalize_model_name(" models/gemini-2.5-flash ") == "gemini-2.5-flash"
    assert _normalize_model_name("gemini-1.5-flash") == "gemini-1.5-flash"
    assert _normalize_model_name(None) == ""
