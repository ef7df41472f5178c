from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

BASE_DIR = Path(__file__).resolve().parent


@dataclass(frozen=True)
class Settings:
    """Configuration container for models, retry policy, and session limits."""
    gemini_api_key: str
    gemini_model_chat: str
    gemini_model_spec: str
    gemini_model_fallback: str
    prompts_dir: Path
    max_retries: int
    retry_base_delay_ms: int
    max_history_pairs: int
    host: str
    port: int
    log_level: str


def load_settings() -> Settings:
    """Purpose: Load configuration from environment variables and defaults.
    Inputs/Outputs: No inputs; returns a Settings instance.
    Side Effects / State: Reads environment variables.
    Dependencies: Uses os.getenv and BASE_DIR for the default prompts path.
    Failure Modes: Non-integer values, MAX_RETRIES below 1 or a negative
        MAX_HISTORY_PAIRS raise ValueError.
    If Removed: The gateway cannot pick models or retry limits and fails at startup.
    Testing Notes: Verify defaults and overrides via environment variables.
    """
    # Resolve prompt path, then build Settings.
    prompts_path = os.getenv("PROMPTS_DIR")
    prompts_dir = Path(prompts_path) if prompts_path else (BASE_DIR / "prompts").resolve()

    max_retries = int(os.getenv("MAX_RETRIES", "4"))
    if max_retries < 1:
        raise ValueError("MAX_RETRIES must be >= 1")
    max_history_pairs = int(os.getenv("MAX_HISTORY_PAIRS", "4"))
    if max_history_pairs < 0:
        raise ValueError("MAX_HISTORY_PAIRS must be >= 0")

    return Settings(
        gemini_api_key=os.getenv("GEMINI_API_KEY", ""),
        gemini_model_chat=os.getenv("GEMINI_MODEL_CHAT") or os.getenv("GEMINI_MODEL", "gemini-2.5-flash"),
        gemini_model_spec=os.getenv("GEMINI_MODEL_SPEC", "gemini-1.5-flash"),
        gemini_model_fallback=os.getenv("GEMINI_MODEL_FALLBACK", "gemini-1.5-flash"),
        prompts_dir=prompts_dir,
        max_retries=max_retries,
        retry_base_delay_ms=int(os.getenv("RETRY_BASE_DELAY_MS", "400")),
        max_history_pairs=max_history_pairs,
        host=os.getenv("HOST", "0.0.0.0"),
        port=int(os.getenv("PORT", "3001")),
        log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
    )
