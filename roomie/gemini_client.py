from __future__ import annotations

from typing import AsyncIterator, Dict, List, Optional, Sequence

import google.generativeai as genai

try:  # Prefer typed enums when available
    from google.generativeai import types as genai_types

    DEFAULT_SAFETY_SETTINGS = [
        {
            "category": genai_types.HarmCategory.HARM_CATEGORY_HARASSMENT,
            "threshold": genai_types.HarmBlockThreshold.BLOCK_NONE,
        },
        {
            "category": genai_types.HarmCategory.HARM_CATEGORY_HATE_SPEECH,
            "threshold": genai_types.HarmBlockThreshold.BLOCK_NONE,
        },
        {
            "category": genai_types.HarmCategory.HARM_CATEGORY_SEXUALLY_EXPLICIT,
            "threshold": genai_types.HarmBlockThreshold.BLOCK_NONE,
        },
        {
            "category": genai_types.HarmCategory.HARM_CATEGORY_DANGEROUS_CONTENT,
            "threshold": genai_types.HarmBlockThreshold.BLOCK_NONE,
        },
    ]
except Exception:  # pragma: no cover - fallback for older SDKs
    DEFAULT_SAFETY_SETTINGS = [
        {"category": "HARM_CATEGORY_HARASSMENT", "threshold": "BLOCK_NONE"},
        {"category": "HARM_CATEGORY_HATE_SPEECH", "threshold": "BLOCK_NONE"},
        {"category": "HARM_CATEGORY_SEXUALLY_EXPLICIT", "threshold": "BLOCK_NONE"},
        {"category": "HARM_CATEGORY_DANGEROUS_CONTENT", "threshold": "BLOCK_NONE"},
    ]

from .config import Settings
from .models import Turn


class GeminiClient:
    """Async wrapper around the Gemini SDK with model caching and safety settings."""

    def __init__(self, settings: Settings) -> None:
        """Purpose: Bind the SDK to the gateway API key and prepare the chat model.
        Inputs/Outputs: Input is Settings; no return value.
        Side Effects / State: Sets the SDK-wide API key; fills the per-name model cache.
        Dependencies: google.generativeai, Settings.
        Failure Modes: ValueError when GEMINI_API_KEY or the chat model name is empty.
        If Removed: The gateway has no generation backend and fails at startup.
        Testing Notes: An empty key raises before the SDK is touched.
        """
        # Key check first; the SDK configure call is process-global.
        if not settings.gemini_api_key:
            raise ValueError("GEMINI_API_KEY is required")
        self._default_model = _normalize_model_name(settings.gemini_model_chat)
        if not self._default_model:
            raise ValueError("GEMINI_MODEL_CHAT is required")
        genai.configure(api_key=settings.gemini_api_key)
        self._models: Dict[str, genai.GenerativeModel] = {}
        self._model(self._default_model)

    def _model(self, model: Optional[str]) -> genai.GenerativeModel:
        name = _normalize_model_name(model) or self._default_model
        cached = self._models.get(name)
        if cached is None:
            cached = self._models[name] = genai.GenerativeModel(name)
        return cached

    async def generate_structured(
        self,
        system_context: str,
        user_text: str,
        schema_hint: str,
        model: Optional[str] = None,
        temperature: float = 0.2,
    ) -> str:
        """Purpose: Generate a single JSON-shaped completion for intent extraction.
        Inputs/Outputs: Inputs are the system prompt, user text, schema hint and model;
            returns the raw response text (possibly malformed JSON).
        Side Effects / State: May add a model to the internal cache.
        Dependencies: Uses GenerativeModel.generate_content_async with a JSON mime type.
        Failure Modes: SDK/API errors propagate with their status code for retry
            classification; blocked responses return "".
        If Removed: SPEC and MATSPEC requests rely on rule-based fallbacks only.
        Testing Notes: Replaced by a fake backend in tests.
        """
        # Schema hint travels with the user text, system prompt as a leading part.
        contents = build_contents(system_context, [], f"{user_text}\n\n{schema_hint}")
        response = await self._model(model).generate_content_async(
            contents,
            generation_config={
                "temperature": temperature,
                "response_mime_type": "application/json",
            },
            safety_settings=DEFAULT_SAFETY_SETTINGS,
        )
        return _response_text(response).strip()

    async def stream_chat(
        self,
        system_context: str,
        history: Sequence[Turn],
        user_text: str,
        model: Optional[str] = None,
        temperature: float = 0.7,
    ) -> AsyncIterator[str]:
        """Purpose: Stream a conversational reply as text fragments.
        Inputs/Outputs: Inputs are the system prompt, prior turns, the new user text and
            model; yields non-empty text fragments in generation order.
        Side Effects / State: May add a model to the internal cache.
        Dependencies: Uses GenerativeModel.generate_content_async(stream=True).
        Failure Modes: Errors may surface before the first fragment or mid-stream; the
            completion client decides whether a retry is still safe.
        If Removed: USER turns cannot produce CHUNK/FINAL replies.
        Testing Notes: Replaced by a fake backend in tests.
        """
        contents = build_contents(system_context, history, user_text)
        response = await self._model(model).generate_content_async(
            contents,
            generation_config={"temperature": temperature},
            safety_settings=DEFAULT_SAFETY_SETTINGS,
            stream=True,
        )
        async for chunk in response:
            piece = _response_text(chunk)
            if piece:
                yield piece


def build_contents(system_context: str, history: Sequence[Turn], user_text: str) -> List[dict]:
    """Build Gemini contents: system prompt part, prior turns, then the new message."""
    contents: List[dict] = []
    if system_context:
        contents.append({"role": "user", "parts": [{"text": f"System: {system_context}"}]})
    contents.extend(turn.to_content() for turn in history)
    contents.append({"role": "user", "parts": [{"text": user_text}]})
    return contents


def _response_text(response: object) -> str:
    # .text raises ValueError when a candidate carries no text parts (e.g. safety block).
    try:
        text: Optional[str] = getattr(response, "text", None)
    except ValueError:
        return ""
    return text or ""


def _normalize_model_name(name: Optional[str]) -> str:
    # "models/gemini-2.5-flash" and "gemini-2.5-flash" share one cache entry.
    cleaned = (name or "").strip()
    prefix = "models/"
    return cleaned[len(prefix):] if cleaned.startswith(prefix) else cleaned
