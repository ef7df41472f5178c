"""Line-oriented wire protocol between the game client and the gateway.

Inbound frames are ``<KIND>|<payload>`` with KIND one of USER, SPEC, MATSPEC.
Outbound frames are CHUNK, FINAL, ERROR (conversational turns) and SPEC,
MATSPEC (intent records).
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum
from typing import Optional


class MessageKind(str, Enum):
    USER = "USER"
    SPEC = "SPEC"
    MATSPEC = "MATSPEC"


class ControlTag(str, Enum):
    ITEM_FOCUS = "ITEM_FOCUS"
    FOCUS_CLEAR = "FOCUS_CLEAR"
    PLACED = "PLACED"
    REPLACED = "REPLACED"
    PREVIEW_SHOWN = "PREVIEW_SHOWN"
    CART_UPDATED = "CART_UPDATED"
    CHECKOUT_STARTED = "CHECKOUT_STARTED"
    ORDER_CREATED = "ORDER_CREATED"
    CATALOG_NO_MATCH = "CATALOG_NO_MATCH"
    MATERIAL_CHANGED = "MATERIAL_CHANGED"


FOCUS_CLEARING_TAGS = {ControlTag.FOCUS_CLEAR, ControlTag.PLACED, ControlTag.REPLACED}

LEADING_TAG_RE = re.compile(r"^\s*\[([a-z_]+)\b[^\]]*\]", re.IGNORECASE)
STRIP_TAG_RE = re.compile(r"^\s*\[[^\]]+\]\s*")
TAG_ONLY_RE = re.compile(r"^\s*\[[^\]]+\]\s*$")
SILENT_CLEAR_RE = re.compile(
    r"^\s*\[(" + "|".join(sorted(tag.value for tag in FOCUS_CLEARING_TAGS)) + r")\b[^\]]*\]\s*$",
    re.IGNORECASE,
)

SERVICE_UNAVAILABLE = "SERVICE_UNAVAILABLE"


@dataclass(frozen=True)
class InboundMessage:
    kind: MessageKind
    payload: str


def parse_inbound(raw: str) -> Optional[InboundMessage]:
    """Purpose: Split a raw frame into its kind and payload.
    Inputs/Outputs: Input is the raw text frame; output is an InboundMessage or None.
    Side Effects / State: None.
    Dependencies: MessageKind.
    Failure Modes: Unknown kinds, frames without "|", and blank payloads return None
        so the caller can ignore them without replying.
    If Removed: The dispatcher cannot route frames.
    Testing Notes: "USER|hi" -> USER; "PING|x" -> None; "SPEC|   " -> None.
    """
    # Kind is everything before the first "|".
    if not isinstance(raw, str) or "|" not in raw:
        return None
    head, _, payload = raw.partition("|")
    try:
        kind = MessageKind(head)
    except ValueError:
        return None
    if not payload.strip():
        return None
    return InboundMessage(kind=kind, payload=payload)


def leading_tag(text: str) -> Optional[ControlTag]:
    """Return the recognized control tag at the start of text, if any."""
    match = LEADING_TAG_RE.match(text or "")
    if not match:
        return None
    try:
        return ControlTag(match.group(1).upper())
    except ValueError:
        return None


def is_silent_focus_clear(text: str) -> bool:
    # Only a bare clearing tag is silent; trailing text makes it a normal turn.
    return bool(SILENT_CLEAR_RE.match((text or "").strip()))


def is_tag_only(text: str) -> bool:
    return bool(TAG_ONLY_RE.match((text or "").strip()))


def strip_leading_tag(text: str) -> str:
    return STRIP_TAG_RE.sub("", str(text or ""))


def chunk_frame(fragment: str) -> str:
    return f"CHUNK|{fragment}"


def final_frame(text: str) -> str:
    return f"FINAL|{text}"


def error_frame(reason: str) -> str:
    return f"ERROR|{reason}"


def spec_frame(record: str) -> str:
    return f"SPEC|{record}"


def matspec_frame(record: str) -> str:
    return f"MATSPEC|{record}"
