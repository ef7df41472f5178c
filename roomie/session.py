"""Per-connection conversational state.

A Session is owned by exactly one WebSocket connection: created on accept,
closed on disconnect. Nothing here is shared across connections.
"""

from __future__ import annotations

import logging
import uuid
from enum import Enum
from typing import List, Optional

from .models import Turn

logger = logging.getLogger("roomie.session")


class FocusState(str, Enum):
    IDLE = "idle"
    FOCUSED = "focused"


class Session:
    """History, focus and streaming flags for one connection."""

    def __init__(self, max_history_pairs: int = 4, connection_id: Optional[str] = None) -> None:
        """Purpose: Start a connection in the Idle state with empty history.
        Inputs/Outputs: Inputs are the history cap (in user/model pairs) and an optional
            connection id used for logs; no return value.
        Side Effects / State: Initializes history, busy and focus flags.
        Dependencies: Turn model.
        Failure Modes: Raises ValueError for a negative history cap.
        If Removed: The dispatcher has nowhere to keep per-connection context.
        Testing Notes: New sessions are IDLE, not busy, with no history.
        """
        if max_history_pairs < 0:
            raise ValueError("max_history_pairs must be >= 0")
        self.connection_id = connection_id or uuid.uuid4().hex[:12]
        self._max_history_pairs = max_history_pairs
        self._history: List[Turn] = []
        self._focus = FocusState.IDLE
        self._busy = False
        self._closed = False

    @property
    def history(self) -> List[Turn]:
        return list(self._history)

    @property
    def state(self) -> FocusState:
        return self._focus

    @property
    def focused(self) -> bool:
        return self._focus is FocusState.FOCUSED

    @property
    def busy(self) -> bool:
        return self._busy

    @property
    def closed(self) -> bool:
        return self._closed

    def focus_item(self) -> None:
        if not self.focused:
            logger.info("conn=%s focus=on", self.connection_id)
        self._focus = FocusState.FOCUSED

    def clear_focus(self) -> None:
        if self.focused:
            logger.info("conn=%s focus=off", self.connection_id)
        self._focus = FocusState.IDLE

    def begin_stream(self) -> bool:
        """Claim the streaming slot; False means a reply is already in flight."""
        if self._busy or self._closed:
            return False
        self._busy = True
        return True

    def end_stream(self) -> None:
        self._busy = False

    def record_exchange(self, user_text: str, reply: str) -> bool:
        """Purpose: Append a user/model pair once a reply has been produced.
        Inputs/Outputs: Inputs are the user text and full reply; returns True if stored.
        Side Effects / State: Mutates history; evicts the oldest pairs beyond the cap.
        Dependencies: Turn model.
        Failure Modes: Empty replies are not stored, so every stored user turn has a
            matching model turn.
        If Removed: Follow-up questions lose their conversational context.
        Testing Notes: With max pairs 4, after N exchanges len(history) == min(2N, 8).
        """
        # Only complete pairs are kept; eviction is FIFO by pair.
        if not reply or self._closed:
            return False
        self._history.append(Turn(role="user", text=user_text))
        self._history.append(Turn(role="model", text=reply))
        max_turns = self._max_history_pairs * 2
        while len(self._history) > max_turns:
            self._history.pop(0)
        return True

    def close(self) -> None:
        self._history.clear()
        self._busy = False
        self._focus = FocusState.IDLE
        self._closed = True
        logger.info("conn=%s session=closed", self.connection_id)
