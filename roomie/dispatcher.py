"""Route inbound frames to the intent pipelines or a streamed conversational turn.

Routing contract:
    SPEC|text     -> product intent  -> exactly one SPEC|<record>
    MATSPEC|text  -> material intent -> exactly one MATSPEC|<record>
    USER|text     -> control tags, busy gate, CHUNK...FINAL (or ERROR),
                     history update, then focused auto-dispatch
    anything else -> ignored, no reply
"""

from __future__ import annotations

import logging
from typing import Awaitable, Callable, List

from .completion import ResilientCompletionClient, ServiceUnavailableError
from .constraints import is_material_change, is_replace_request
from .intent_normalizer import normalize_material_intent, normalize_product_intent
from .models import MaterialIntent, ProductIntent
from .prompt_loader import PromptSet
from .protocol import (
    SERVICE_UNAVAILABLE,
    ControlTag,
    MessageKind,
    chunk_frame,
    error_frame,
    final_frame,
    is_silent_focus_clear,
    is_tag_only,
    leading_tag,
    matspec_frame,
    parse_inbound,
    spec_frame,
    strip_leading_tag,
)
from .session import Session

logger = logging.getLogger("roomie.dispatch")

Send = Callable[[str], Awaitable[None]]


class Dispatcher:
    """Stateless router; all per-connection state lives on the Session passed in."""

    def __init__(self, completion: ResilientCompletionClient, prompts: PromptSet) -> None:
        self._completion = completion
        self._prompts = prompts

    async def handle(self, session: Session, raw: str, send: Send) -> None:
        """Purpose: Process one inbound frame for a connection.
        Inputs/Outputs: Inputs are the connection's Session, the raw frame, and an async
            send callable; replies are delivered through send, nothing is returned.
        Side Effects / State: May mutate session focus/busy/history and call the backend.
        Dependencies: parse_inbound, intent normalizers, ResilientCompletionClient.
        Failure Modes: Unrecognized frames are ignored. Unexpected errors are logged and
            answered with a single ERROR frame; they never escape to the transport loop.
        If Removed: The WebSocket endpoint cannot answer any message.
        Testing Notes: Drive with a fake backend and a list-collecting send.
        """
        # Classify, then hand off to the matching pipeline.
        message = parse_inbound(raw)
        if message is None:
            logger.debug("conn=%s frame=ignored", session.connection_id)
            return
        logger.info("conn=%s kind=%s", session.connection_id, message.kind.value)
        try:
            if message.kind is MessageKind.SPEC:
                intent = await self.product_intent(message.payload)
                await send(spec_frame(intent.to_flat()))
            elif message.kind is MessageKind.MATSPEC:
                intent = await self.material_intent(message.payload)
                await send(matspec_frame(intent.to_flat()))
            else:
                await self.conversational_turn(session, message.payload, send)
        except Exception as exc:
            logger.exception("conn=%s kind=%s failed", session.connection_id, message.kind.value)
            await send(error_frame(str(exc) or "Server error"))

    async def product_intent(self, text: str) -> ProductIntent:
        result = await self._completion.complete_structured(text, self._prompts.product_schema)
        logger.debug("product_intent result=%s attempts=%s", result.kind.value, result.attempts)
        return normalize_product_intent(text, result.data)

    async def material_intent(self, text: str) -> MaterialIntent:
        result = await self._completion.complete_structured(text, self._prompts.material_schema)
        logger.debug("material_intent result=%s attempts=%s", result.kind.value, result.attempts)
        return normalize_material_intent(text, result.data)

    async def conversational_turn(self, session: Session, text: str, send: Send) -> None:
        """Purpose: Run one USER turn: control tags, streaming, history, auto-dispatch.
        Inputs/Outputs: Inputs are the session, the user text and send; no return value.
        Side Effects / State: Toggles focus, holds the busy flag for the whole turn,
            appends history when a reply was produced.
        Dependencies: protocol tag helpers, Session, stream_reply, auto_dispatch.
        Failure Modes: A turn arriving while another is streaming is dropped without
            reply. The busy flag is released even when streaming raises.
        If Removed: Conversational turns and focused follow-ups stop working.
        Testing Notes: "[PLACED x]" yields no frames; a second turn during streaming is dropped.
        """
        # Silent control signals never reach the model or the history.
        trimmed = text.strip()
        if is_silent_focus_clear(trimmed):
            session.clear_focus()
            return

        tag = leading_tag(trimmed)
        if tag is ControlTag.ITEM_FOCUS:
            session.focus_item()
        elif tag is not None:
            logger.info("conn=%s ui_tag=%s", session.connection_id, tag.value)

        if not session.begin_stream():
            logger.info("conn=%s turn=dropped reason=busy", session.connection_id)
            return
        try:
            reply = await self.stream_reply(session, text, send)
            if reply:
                await send(final_frame(reply))
                session.record_exchange(text, reply)
            if session.focused and not is_tag_only(trimmed):
                await self.auto_dispatch(session, text, send)
        finally:
            session.end_stream()

    async def stream_reply(self, session: Session, text: str, send: Send) -> str:
        # Fragments are relayed as they arrive; the joined text becomes FINAL.
        parts: List[str] = []
        try:
            async for piece in self._completion.complete_streamed(session.history, text):
                parts.append(piece)
                await send(chunk_frame(piece))
        except ServiceUnavailableError:
            logger.error("conn=%s turn=failed reason=service_unavailable", session.connection_id)
            await send(error_frame(SERVICE_UNAVAILABLE))
        return "".join(parts)

    async def auto_dispatch(self, session: Session, text: str, send: Send) -> None:
        """Issue MATSPEC or SPEC for focused follow-ups; material changes take precedence."""
        body = strip_leading_tag(text.strip())
        if is_material_change(body):
            logger.info("conn=%s auto=matspec", session.connection_id)
            intent = await self.material_intent(text)
            await send(matspec_frame(intent.to_flat()))
        elif is_replace_request(body):
            logger.info("conn=%s auto=spec", session.connection_id)
            product = await self.product_intent(text)
            await send(spec_frame(product.to_flat()))
