"""Scripted stand-ins for the Gemini backend used across tests."""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import List, Optional

from roomie.completion import ResilientCompletionClient, RetryPolicy
from roomie.config import Settings
from roomie.dispatcher import Dispatcher
from roomie.prompt_loader import PromptSet

PROMPTS = PromptSet(system="SYSTEM", product_schema="PRODUCT_SCHEMA", material_schema="MATERIAL_SCHEMA")


class BackendError(Exception):
    def __init__(self, status: int, message: str = "backend error") -> None:
        super().__init__(message)
        self.status = status


class FakeBackend:
    """Pops one scripted answer per call.

    structured items: a response string or an exception to raise.
    stream items: a list of fragments, exceptions (raised in place) and
    asyncio.Event objects (awaited in place).
    """

    def __init__(self, structured: Optional[list] = None, streams: Optional[List[list]] = None) -> None:
        self.structured = list(structured or [])
        self.streams = list(streams or [])
        self.structured_calls: List[dict] = []
        self.stream_calls: List[dict] = []

    async def generate_structured(self, system_context, user_text, schema_hint, model=None):
        self.structured_calls.append(
            {"system": system_context, "text": user_text, "schema": schema_hint, "model": model}
        )
        item = self.structured.pop(0) if self.structured else "{}"
        if isinstance(item, BaseException):
            raise item
        return item

    async def stream_chat(self, system_context, history, user_text, model=None):
        self.stream_calls.append(
            {"system": system_context, "history": list(history), "text": user_text, "model": model}
        )
        script = self.streams.pop(0) if self.streams else []
        for item in script:
            if isinstance(item, BaseException):
                raise item
            if isinstance(item, asyncio.Event):
                await item.wait()
                continue
            yield item


class RecordingSleep:
    def __init__(self) -> None:
        self.delays: List[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


def make_client(backend: FakeBackend, sleep: Optional[RecordingSleep] = None) -> ResilientCompletionClient:
    return ResilientCompletionClient(
        backend,
        PROMPTS.system,
        chat_model="chat-model",
        structured_model="spec-model",
        fallback_model="fallback-model",
        policy=RetryPolicy(max_attempts=4, base_delay=0.4),
        sleep=sleep or RecordingSleep(),
    )


def make_dispatcher(backend: FakeBackend) -> Dispatcher:
    return Dispatcher(make_client(backend), PROMPTS)


def make_settings(**overrides) -> Settings:
    values = dict(
        gemini_api_key="",
        gemini_model_chat="chat-model",
        gemini_model_spec="spec-model",
        gemini_model_fallback="fallback-model",
        prompts_dir=Path(__file__).resolve().parents[1] / "roomie" / "prompts",
        max_retries=4,
        retry_base_delay_ms=0,
        max_history_pairs=4,
        host="127.0.0.1",
        port=3001,
        log_level="INFO",
    )
    values.update(overrides)
    return Settings(**values)


class FrameCollector:
    def __init__(self) -> None:
        self.frames: List[str] = []

    async def __call__(self, frame: str) -> None:
        self.frames.append(frame)
