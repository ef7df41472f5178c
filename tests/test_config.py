from pathlib import Path

import pytest

from roomie.config import load_settings
from roomie.prompt_loader import load_prompt, load_prompt_set

ENV_KEYS = [
    "GEMINI_API_KEY",
    "GEMINI_MODEL",
    "GEMINI_MODEL_CHAT",
    "GEMINI_MODEL_SPEC",
    "GEMINI_MODEL_FALLBACK",
    "MAX_RETRIES",
    "RETRY_BASE_DELAY_MS",
    "MAX_HISTORY_PAIRS",
    "HOST",
    "PORT",
    "LOG_LEVEL",
    "PROMPTS_DIR",
]


@pytest.fixture
def clean_env(monkeypatch):
    for key in ENV_KEYS:
        monkeypatch.delenv(key, raising=False)
    return monkeypatch


def test_defaults(clean_env):
    settings = load_settings()
    assert settings.gemini_model_chat == "gemini-2.5-flash"
    assert settings.gemini_model_spec == "gemini-1.5-flash"
    assert settings.gemini_model_fallback == "gemini-1.5-flash"
    assert settings.max_retries == 4
    assert settings.retry_base_delay_ms == 400
    assert settings.max_history_pairs == 4
    assert settings.port == 3001
    assert settings.prompts_dir.name == "prompts"


def test_env_overrides(clean_env):
    clean_env.setenv("GEMINI_MODEL_CHAT", "gemini-2.0-pro")
    clean_env.setenv("MAX_RETRIES", "2")
    clean_env.setenv("PORT", "8080")
    clean_env.setenv("LOG_LEVEL", "debug")
    clean_env.setenv("PROMPTS_DIR", "/tmp/prompts")

    settings = load_settings()
    assert settings.gemini_model_chat == "gemini-2.0-pro"
    assert settings.max_retries == 2
    assert settings.port == 8080
    assert settings.log_level == "DEBUG"
    assert settings.prompts_dir == Path("/tmp/prompts")


def test_invalid_integer_raises(clean_env):
    clean_env.setenv("PORT", "not-a-port")
    with pytest.raises(ValueError):
        load_settings()


def test_bundled_prompts_load(clean_env):
    prompts = load_prompt_set(load_settings().prompts_dir)
    assert "Roomie" in prompts.system
    assert prompts.product_schema
    assert prompts.material_schema


def test_load_prompt_strips_bom(tmp_path):
    path = tmp_path / "prompt.md"
    path.write_bytes("\ufeff  hello prompt \n".encode("utf-8"))
    assert load_prompt(path) == "hello prompt"


@pytest.mark.parametrize("key, value", [("MAX_RETRIES", "0"), ("MAX_HISTORY_PAIRS", "-1")])
def test_out_of_range_limits_raise(clean_env, key, value):
    clean_env.setenv(key, value)
    with pytest.raises(ValueError):
        load_settings()


def test_zero_history_pairs_is_allowed(clean_env):
    clean_env.setenv("MAX_HISTORY_PAIRS", "0")
    assert load_settings().max_history_pairs == 0
