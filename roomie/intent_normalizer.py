"""Merge model-produced intent JSON with deterministic rule-based guesses.

The model output is untrusted: it can be missing, malformed, or partially
filled. Both entry points accept any value for ``raw`` and always return a
fully populated record, so callers never have to special-case failures.

Product flow:
    raw JSON -> coerce suggest/category -> category fallback -> suggestion gate
    -> budget (model, then text, then legacy nested object) -> dimensions -> tags.

Material flow:
    raw JSON -> slot/color/finish (model, then synonym tables) -> apply OR-merge.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List

from .constraints import (
    COLOR_TABLE,
    FINISH_TABLE,
    MATERIAL_HINT_RE,
    SLOT_TABLE,
    canonical_category,
    extract_budget_range,
    find_canonical,
    has_intent_keyword,
    has_size_hint,
    infer_category,
    looks_like_informational_query,
    parse_amount,
)
from .models import MaterialIntent, ProductIntent, parse_flat_record
from .protocol import strip_leading_tag
from .utils import normalize_text

logger = logging.getLogger("roomie.intent")


def _as_dict(raw: Any) -> Dict[str, Any]:
    return raw if isinstance(raw, dict) else {}


def _as_tags(value: Any) -> List[str]:
    # The model sometimes sends a single string instead of a list.
    if isinstance(value, (list, tuple, set)):
        return [str(tag) for tag in value if tag is not None and str(tag).strip()]
    if isinstance(value, str) and value.strip():
        return [value]
    return []


def _as_label(value: Any) -> str:
    return value.strip().lower() if isinstance(value, str) else ""


def should_suggest(text: str, category: str, model_suggest: bool) -> bool:
    """Purpose: Decide whether the client should auto-open a product suggestion.
    Inputs/Outputs: Inputs are user text, the resolved category, and the model's flag;
        output is the final boolean.
    Side Effects / State: None.
    Dependencies: Uses looks_like_informational_query, has_intent_keyword,
        extract_budget_range, and has_size_hint.
    Failure Modes: None. Informational questions always veto, even over the model.
    If Removed: Bare budget mentions or policy questions would pop product previews.
    Testing Notes: "my budget is 900" -> False; "sofa under 900" -> True;
        "return policy for sofas" with model True -> False.
    """
    # Veto first, then model assertion, then explicit intent, then constraints + category.
    if looks_like_informational_query(text):
        return False
    if model_suggest:
        return True
    if has_intent_keyword(text):
        return True
    has_constraint = extract_budget_range(text) is not None or has_size_hint(text)
    return has_constraint and bool(category)


def normalize_product_intent(text: str, raw: Any) -> ProductIntent:
    """Purpose: Build a guaranteed well-formed ProductIntent from text and model JSON.
    Inputs/Outputs: Inputs are raw user text and the model object (any type); output is
        a ProductIntent with every field defaulted.
    Side Effects / State: None; logs the merged decision at debug level.
    Dependencies: Constraint parser functions and the ProductIntent model validators
        (clamping and min/max swap).
    Failure Modes: Non-dict input is treated as {}; non-numeric fields become 0.
    If Removed: SPEC replies depend entirely on the model and break on malformed output.
    Testing Notes: Feed {} and malformed dicts; verify budgets backfill from text.
    """
    # Coerce the model fields we trust, discard the rest.
    data = _as_dict(raw)
    model_suggest = data.get("suggest") if isinstance(data.get("suggest"), bool) else False
    # Only catalog values go on the wire; anything else defers to the text.
    category = canonical_category(data.get("category")) or infer_category(text)

    suggest = should_suggest(text, category, model_suggest)

    budget_min = parse_amount(data.get("budget_min")) if data.get("budget_min") is not None else 0.0
    budget_max = parse_amount(data.get("budget_max")) if data.get("budget_max") is not None else 0.0
    parsed = extract_budget_range(text)
    if parsed is not None:
        if not budget_min and parsed.min:
            budget_min = parsed.min
        if not budget_max and parsed.max:
            budget_max = parsed.max
    legacy = data.get("budget")
    if isinstance(legacy, dict):
        if not budget_min and legacy.get("min") is not None:
            budget_min = parse_amount(legacy.get("min"))
        if not budget_max and legacy.get("max") is not None:
            budget_max = parse_amount(legacy.get("max"))

    intent = ProductIntent(
        suggest=suggest,
        category=category,
        style_tags=_as_tags(data.get("style_tags")),
        budget_min=budget_min,
        budget_max=budget_max,
        max_length_cm=parse_amount(data.get("max_depth_cm") or data.get("max_length_cm") or 0),
        max_width_cm=parse_amount(data.get("max_width_cm") or 0),
        max_height_cm=parse_amount(data.get("max_height_cm") or 0),
    )
    logger.debug(
        "product_intent suggest=%s category=%s budget=%s-%s model_suggest=%s",
        intent.suggest,
        intent.category,
        intent.budget_min,
        intent.budget_max,
        model_suggest,
    )
    return intent


def normalize_material_intent(text: str, raw: Any) -> MaterialIntent:
    """Purpose: Build a guaranteed well-formed MaterialIntent from text and model JSON.
    Inputs/Outputs: Inputs are raw user text and the model object; output is a MaterialIntent.
    Side Effects / State: None.
    Dependencies: SLOT_TABLE, COLOR_TABLE, FINISH_TABLE, MATERIAL_HINT_RE, strip_leading_tag.
    Failure Modes: None. apply favors false positives: any signal turns it on.
    If Removed: MATSPEC replies cannot recover when the model is silent or wrong.
    Testing Notes: "[ITEM_FOCUS Oslo sofa] make it black leather" with {} gives
        slot=leather, color=black, apply=1.
    """
    # Tags such as [ITEM_FOCUS ...] carry item names that must not match synonyms.
    data = _as_dict(raw)
    lowered = normalize_text(strip_leading_tag((text or "").strip()))

    slot = _as_label(data.get("slot")) or find_canonical(lowered, SLOT_TABLE)
    color = _as_label(data.get("color")) or find_canonical(lowered, COLOR_TABLE)
    finish = _as_label(data.get("finish")) or find_canonical(lowered, FINISH_TABLE)
    model_apply = data.get("apply") is True
    apply = model_apply or bool(MATERIAL_HINT_RE.search(lowered)) or bool(slot or color or finish)

    return MaterialIntent(
        apply=apply,
        slot=slot,
        color=color,
        finish=finish,
        style_tags=[tag.lower() for tag in _as_tags(data.get("style_tags"))],
    )


def product_intent_from_flat(record: str) -> Dict[str, Any]:
    """Decode a SPEC flat record back into a model-shaped raw object."""
    fields = parse_flat_record(record)
    style = fields.get("style", "")
    return {
        "suggest": fields.get("suggest") == "1",
        "category": fields.get("category", ""),
        "style_tags": [tag for tag in style.split("|") if tag],
        "budget_min": parse_amount(fields.get("budget_min")),
        "budget_max": parse_amount(fields.get("budget_max")),
        "max_length_cm": parse_amount(fields.get("max_len")),
        "max_width_cm": parse_amount(fields.get("max_w")),
        "max_height_cm": parse_amount(fields.get("max_h")),
    }


def material_intent_from_flat(record: str) -> Dict[str, Any]:
    fields = parse_flat_record(record)
    style = fields.get("style", "")
    return {
        "apply": fields.get("apply") == "1",
        "slot": fields.get("slot", ""),
        "color": fields.get("color", ""),
        "finish": fields.get("finish", ""),
        "style_tags": [tag for tag in style.split("|") if tag],
    }
