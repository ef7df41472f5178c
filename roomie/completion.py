"""Retry and fallback policy around the generation backend.

Structured completions are safe to repeat wholesale because nothing has been
shown to the user yet. Streamed completions are only retried while no
fragment has been emitted: the retry boundary is the first fragment, not the
end of the call.

Stream phases:
    ATTEMPT  -> stream from the chat model
    RETRY    -> back off, then ATTEMPT again (retryable failure, nothing emitted)
    FALLBACK -> one attempt on the fallback model (fatal failure, exhausted
                retries, or an empty stream)
    TERMINAL -> raise ServiceUnavailableError
    DONE     -> stop (success, or a failure after output started)
"""

from __future__ import annotations

import asyncio
import logging
import random
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, Optional, Protocol, Sequence

from .models import Turn
from .utils import safe_json_loads

logger = logging.getLogger("roomie.completion")

RETRYABLE_STATUSES = {429, 500, 502, 503, 504}
RETRYABLE_MESSAGE_HINTS = ("overload", "unavailable", "temporar")


class ServiceUnavailableError(RuntimeError):
    """Raised when neither the chat model nor the fallback model produced output."""


class GenerationBackend(Protocol):
    async def generate_structured(
        self, system_context: str, user_text: str, schema_hint: str, model: Optional[str] = None
    ) -> str: ...

    def stream_chat(
        self, system_context: str, history: Sequence[Turn], user_text: str, model: Optional[str] = None
    ) -> AsyncIterator[str]: ...


class ResultKind(str, Enum):
    PARSED = "parsed"
    PARSE_FAILURE = "parse_failure"
    CALL_FAILURE = "call_failure"


@dataclass
class StructuredResult:
    """Outcome of a structured completion; data is {} unless kind is PARSED."""
    kind: ResultKind
    data: Dict[str, Any] = field(default_factory=dict)
    attempts: int = 0


class StreamPhase(str, Enum):
    ATTEMPT = "attempt"
    RETRY = "retry"
    FALLBACK = "fallback"
    TERMINAL = "terminal"
    DONE = "done"


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = 4
    base_delay: float = 0.4
    jitter: float = 0.25

    def delay_for(self, attempt: int, rng: random.Random) -> float:
        """Exponential backoff for the given zero-based attempt with ±jitter."""
        delay = self.base_delay * (2 ** attempt)
        return max(0.0, delay * (1 + rng.uniform(-self.jitter, self.jitter)))

    def can_retry(self, attempt: int) -> bool:
        return attempt < self.max_attempts - 1


def error_status(exc: BaseException) -> Optional[int]:
    status = getattr(exc, "status", None)
    if status is None:
        status = getattr(exc, "code", None)
    try:
        return int(status) if status is not None else None
    except (TypeError, ValueError):
        return None


def is_retryable(exc: BaseException) -> bool:
    """Purpose: Classify a backend failure as transient or fatal.
    Inputs/Outputs: Input is an exception; output is True for transient failures.
    Side Effects / State: None.
    Dependencies: RETRYABLE_STATUSES and RETRYABLE_MESSAGE_HINTS.
    Failure Modes: Unknown shapes are fatal (False).
    If Removed: Rate limits and overloads would fail requests immediately.
    Testing Notes: status=503 -> True; "model is overloaded" -> True; ValueError("bad") -> False.
    """
    # Status-like attribute first, then message text.
    if error_status(exc) in RETRYABLE_STATUSES:
        return True
    message = str(exc).lower()
    return any(hint in message for hint in RETRYABLE_MESSAGE_HINTS)


def log_backend_error(where: str, exc: BaseException) -> None:
    status = error_status(exc)
    logger.error("[%s] status=%s %s", where, status if status is not None else "n/a", exc)


def next_stream_phase(exc: BaseException, attempt: int, emitted: int, policy: RetryPolicy) -> StreamPhase:
    """Purpose: Decide what a failed chat-model stream attempt leads to.
    Inputs/Outputs: Inputs are the error, zero-based attempt, fragments emitted so far,
        and the retry policy; output is the next StreamPhase.
    Side Effects / State: None; pure decision.
    Dependencies: is_retryable and RetryPolicy.can_retry.
    Failure Modes: None.
    If Removed: The "no retry after first fragment" rule cannot be tested in isolation.
    Testing Notes: emitted > 0 always gives DONE, whatever the error.
    """
    # Output already reached the client, so a replay would duplicate it.
    if emitted:
        return StreamPhase.DONE
    if is_retryable(exc) and policy.can_retry(attempt):
        return StreamPhase.RETRY
    return StreamPhase.FALLBACK


class ResilientCompletionClient:
    """Bounded retry, backoff and fallback around a GenerationBackend."""

    def __init__(
        self,
        backend: GenerationBackend,
        system_prompt: str,
        chat_model: Optional[str] = None,
        structured_model: Optional[str] = None,
        fallback_model: Optional[str] = None,
        policy: Optional[RetryPolicy] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        rng: Optional[random.Random] = None,
    ) -> None:
        self._backend = backend
        self._system_prompt = system_prompt
        self._chat_model = chat_model
        self._structured_model = structured_model
        self._fallback_model = fallback_model
        self._policy = policy or RetryPolicy()
        self._sleep = sleep
        self._rng = rng or random.Random()

    async def complete_structured(self, user_text: str, schema_hint: str) -> StructuredResult:
        """Purpose: Obtain one JSON object from the backend, retrying transient failures.
        Inputs/Outputs: Inputs are the user text and schema hint; output is a StructuredResult.
        Side Effects / State: Sleeps between retries; logs terminal failures.
        Dependencies: GenerationBackend.generate_structured, safe_json_loads, RetryPolicy.
        Failure Modes: Never raises for backend errors. Fatal errors and exhausted retries
            give CALL_FAILURE; non-JSON output gives PARSE_FAILURE (not retried).
        If Removed: Intent requests lose the model signal and transient-error resilience.
        Testing Notes: Fake backend raising 503 twice then returning JSON -> PARSED, attempts=3.
        """
        # Retry only the call itself; a malformed answer is final.
        for attempt in range(self._policy.max_attempts):
            try:
                text = await self._backend.generate_structured(
                    self._system_prompt, user_text, schema_hint, model=self._structured_model
                )
            except Exception as exc:
                if is_retryable(exc) and self._policy.can_retry(attempt):
                    delay = self._policy.delay_for(attempt, self._rng)
                    logger.info("structured retry attempt=%s delay=%.2fs error=%s", attempt + 1, delay, exc)
                    await self._sleep(delay)
                    continue
                log_backend_error("structured", exc)
                return StructuredResult(kind=ResultKind.CALL_FAILURE, attempts=attempt + 1)
            data = safe_json_loads(text or "")
            if data is None:
                logger.warning("structured parse_failure text=%r", (text or "")[:200])
                return StructuredResult(kind=ResultKind.PARSE_FAILURE, attempts=attempt + 1)
            return StructuredResult(kind=ResultKind.PARSED, data=data, attempts=attempt + 1)
        return StructuredResult(kind=ResultKind.CALL_FAILURE, attempts=self._policy.max_attempts)

    async def complete_streamed(self, history: Sequence[Turn], user_text: str) -> AsyncIterator[str]:
        """Purpose: Stream a reply, retrying only before the first fragment.
        Inputs/Outputs: Inputs are prior turns and the user text; yields fragments in order.
        Side Effects / State: Sleeps between retries; logs failures and phase changes.
        Dependencies: GenerationBackend.stream_chat, next_stream_phase, RetryPolicy.
        Failure Modes: A failure after output started ends the stream quietly. When the
            chat model and the single fallback attempt both produce nothing, raises
            ServiceUnavailableError.
        If Removed: USER turns lose retry/fallback handling and may duplicate fragments.
        Testing Notes: Fail-before-first-fragment then succeed -> full output once;
            fail-after-one-fragment -> one fragment, no retry.
        """
        # Explicit phase loop; see module docstring for transitions.
        phase = StreamPhase.ATTEMPT
        attempt = 0
        emitted = 0
        while True:
            if phase is StreamPhase.ATTEMPT:
                try:
                    async for piece in self._backend.stream_chat(
                        self._system_prompt, history, user_text, model=self._chat_model
                    ):
                        if piece:
                            emitted += 1
                            yield piece
                except Exception as exc:
                    phase = next_stream_phase(exc, attempt, emitted, self._policy)
                    if phase is StreamPhase.RETRY:
                        logger.info("stream retry attempt=%s error=%s", attempt + 1, exc)
                    else:
                        log_backend_error("stream", exc)
                    continue
                if emitted:
                    phase = StreamPhase.DONE
                else:
                    logger.warning("stream empty model=%s", self._chat_model)
                    phase = StreamPhase.FALLBACK
            elif phase is StreamPhase.RETRY:
                await self._sleep(self._policy.delay_for(attempt, self._rng))
                attempt += 1
                phase = StreamPhase.ATTEMPT
            elif phase is StreamPhase.FALLBACK:
                logger.warning("stream fallback model=%s", self._fallback_model)
                try:
                    async for piece in self._backend.stream_chat(
                        self._system_prompt, history, user_text, model=self._fallback_model
                    ):
                        if piece:
                            emitted += 1
                            yield piece
                except Exception as exc:
                    log_backend_error("stream-fallback", exc)
                phase = StreamPhase.DONE if emitted else StreamPhase.TERMINAL
            elif phase is StreamPhase.TERMINAL:
                raise ServiceUnavailableError("SERVICE_UNAVAILABLE")
            else:
                return
