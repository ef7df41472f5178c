import json
import re
from typing import Any, Dict, Optional

DASHES_RE = re.compile(r"[‒–—―]")
FLAT_UNSAFE_RE = re.compile(r"[;|]")


def normalize_text(text: str) -> str:
    """Purpose: Normalize free-form text for stable keyword matching.
    Inputs/Outputs: Input is a raw string; output is lowercase text with unicode
        dashes folded to "-" and whitespace collapsed.
    Side Effects / State: None; pure function.
    Dependencies: Uses regex; called by the constraint parser and dispatcher.
    Failure Modes: Returns an empty string when input is falsy or not a string.
    If Removed: Keyword tables miss capitalized or dash-variant input.
    Testing Notes: "Sofa  Under 900" becomes "sofa under 900"; "500–800" becomes "500-800".
    """
    # Lowercase, fold dashes, and collapse whitespace.
    if not text or not isinstance(text, str):
        return ""
    lowered = DASHES_RE.sub("-", text.lower())
    return re.sub(r"\s+", " ", lowered).strip()


def extract_json_block(text: str) -> Optional[str]:
    """Return the span from the first "{" to the last "}", or None.

    Models wrap JSON in code fences or a sentence of prose often enough that
    the raw text cannot be handed to json.loads directly.
    """
    first, last = (text or "").find("{"), (text or "").rfind("}")
    if first < 0 or last <= first:
        return None
    return text[first : last + 1]


def safe_json_loads(text: str) -> Optional[Dict[str, Any]]:
    """Purpose: Turn structured-completion text into a dict, or None when it is not one.
    Inputs/Outputs: Input is raw model text; output is a dict or None.
    Side Effects / State: None.
    Dependencies: extract_json_block, json.loads; used by the completion client.
    Failure Modes: None raised. Decode errors, missing braces and non-object JSON give None.
    If Removed: A malformed model reply would crash SPEC/MATSPEC handling.
    Testing Notes: Fenced JSON parses; "not json" and "[1, 2]" give None.
    """
    block = extract_json_block(text)
    if block is None:
        return None
    try:
        data = json.loads(block)
    except json.JSONDecodeError:
        return None
    return data if isinstance(data, dict) else None


def sanitize_field(value: object) -> str:
    """Replace flat-record separators inside a value with "/"."""
    if value is None:
        return ""
    return FLAT_UNSAFE_RE.sub("/", str(value))


def format_number(value: float) -> str:
    # 900.0 -> "900", 1.5 -> "1.5"; never scientific notation
    if float(value).is_integer():
        return str(int(value))
    return f"{float(value):.6f}".rstrip("0").rstrip(".")
