"""Rule-based constraint parsing for furniture and material requests.

Every function here is pure: no state, no I/O, no model calls. The ordered
tables below are scanned front to back and the first hit wins, so their order
is the tie-break for overlapping synonyms and must be kept stable.
"""

from __future__ import annotations

import math
import re
from typing import Iterable, List, Optional, Sequence, Tuple

from .models import BudgetRange
from .utils import normalize_text

SynonymTable = Sequence[Tuple[str, Sequence[str]]]

CURRENCY_RE = re.compile(
    r"(?<![a-z])(?:gel|usd|eur|gbp|try|aud|cad|inr|jpy|cny|rmb|yuan|yen|tl|lira|dollars?|bucks?|quid)(?![a-z])"
    r"|[₾$€£¥₹₺₽₩]"
)
LEADING_NUMBER_RE = re.compile(r"^\d*\.?\d+")

_NUM = r"(\d*\.?\d+k?)"
_MONEY = r"(?:budget|price|cost|amount|spend|limit|cap)"
_OPT_IS = r"(?:is|=|:)\s*"

# Priority order matters: range phrasing must win over single-number phrasing.
RANGE_BETWEEN_RE = re.compile(rf"(?:between|from)\s+{_NUM}\s*(?:to|and|-)\s*{_NUM}")
RANGE_DASH_RE = re.compile(rf"{_NUM}\s*-\s*{_NUM}")
MIN_BEFORE_RE = re.compile(
    rf"(?:min(?:imum)?|at\s*least|>=|(?<!no )(?<!not )more\s*than|no\s*less\s*than)\s*"
    rf"(?:{_MONEY}\s*)?(?:{_OPT_IS})?(?:of\s*)?{_NUM}"
)
MAX_BEFORE_RE = re.compile(
    rf"(?:max(?:imum)?|under|below|up\s*to|upto|<=|less\s*than|no\s*more\s*than|not\s*more\s*than|at\s*most|cap(?:ped)?(?:\s*at)?)\s*"
    rf"(?:{_MONEY}\s*)?(?:{_OPT_IS})?(?:of\s*)?{_NUM}"
)
MIN_AFTER_RE = re.compile(rf"{_NUM}\s*(?:min(?:imum)?|at\s*least|or\s*more|\+|and\s*up)")
MAX_AFTER_RE = re.compile(rf"{_NUM}\s*(?:max(?:imum)?|or\s*less|up\s*to|at\s*most|cap(?:ped)?(?:\s*at)?)")
MONEY_KEYWORD_RE = re.compile(rf"{_MONEY}\s*(?:{_OPT_IS})?(?:of\s*)?{_NUM}")
APPROX_RE = re.compile(rf"(?:around|about|~)\s*{_NUM}")

SIZE_HINT_RE = re.compile(
    r"\b(?:width|length|depth|height|cm|mm)\b|\d\s*(?:cm|mm)\b|\b\d{2,3}\s*[x×]\s*\d{2,3}\b",
    re.IGNORECASE,
)
INFORMATIONAL_RE = re.compile(
    r"\b(tell me about|what sets|what makes|how.*different|compare|comparison|pros|cons|policy|return|"
    r"warranty|delivery|shipping|lead\s*time|availability)\b",
    re.IGNORECASE,
)
MATERIAL_HINT_RE = re.compile(
    r"\b(material|fabric|textile|leather|linen|velvet|wool|cotton|wood|oak|walnut|ash|veneer|metal|brass|chrome|"
    r"steel|iron|aluminum|glass|marble|stone|ceramic|rattan|wicker|finish|color|colour|stain|paint|lacquer|matte|"
    r"satin|gloss|brushed|oiled|powder|anodized|plated)\b",
    re.IGNORECASE,
)

CATEGORY_TABLE: SynonymTable = (
    ("sofa", ("couch", "settee", "sectional", "loveseat")),
    ("rug", ("carpet",)),
    ("armchair", ("accent chair", "reading chair")),
    ("coffee-table", ("coffee table", "center table")),
    ("dining-table", ("dining table",)),
    ("wardrobe", ("closet",)),
    ("lamp", ("floor lamp", "table lamp", "light")),
    ("bed", ("queen bed", "king bed", "double bed")),
    ("shelving", ("shelf", "bookcase")),
    ("nightstand", ("bedside table",)),
    ("sideboard", ("buffet",)),
    ("tv-stand", ("media console", "tv unit")),
    ("chair", ("dining chair", "desk chair", "office chair")),
    ("desk", ("work desk", "office desk")),
    ("dresser", ("chest of drawers", "vanity")),
    ("stool", ("bar stool", "footstool", "ottoman")),
    ("bench", ("entryway bench",)),
    ("storage", ("cabinet", "storage unit", "chest", "cupboard")),
    ("table", ("side table", "console table", "end table")),
)

SLOT_TABLE: SynonymTable = (
    ("fabric", ("fabric", "cloth", "textile", "upholstery")),
    ("leather", ("leather",)),
    ("linen", ("linen",)),
    ("velvet", ("velvet",)),
    ("wool", ("wool",)),
    ("cotton", ("cotton",)),
    ("wood", ("wood", "timber")),
    ("oak", ("oak",)),
    ("walnut", ("walnut",)),
    ("ash", ("ash",)),
    ("metal", ("metal", "steel", "iron", "aluminum", "aluminium")),
    ("brass", ("brass", "gold", "golden")),
    ("chrome", ("chrome", "silver", "chromed")),
    ("glass", ("glass",)),
    ("stone", ("stone", "granite", "slate", "travertine")),
    ("marble", ("marble",)),
    ("ceramic", ("ceramic", "tile")),
    ("rattan", ("rattan", "wicker", "cane")),
)

COLOR_TABLE: SynonymTable = (
    ("black", ("black", "jet", "ink")),
    ("white", ("white", "ivory")),
    ("gray", ("gray", "grey", "graphite", "charcoal", "dark gray", "dark-grey", "darkgrey")),
    ("beige", ("beige", "cream", "sand", "tan")),
    ("brown", ("brown", "chocolate", "walnut")),
    ("green", ("green", "forest", "olive", "sage", "mint")),
    ("blue", ("blue", "navy", "cobalt", "royal")),
    ("red", ("red", "burgundy", "crimson")),
    ("brass", ("brass", "gold", "golden")),
    ("chrome", ("chrome", "silver", "steel")),
)

FINISH_TABLE: SynonymTable = (
    ("matte", ("matte", "matt")),
    ("satin", ("satin", "eggshell", "egg-shell", "semi-matte")),
    ("gloss", ("gloss", "glossy", "high gloss", "polished")),
    ("brushed", ("brushed",)),
    ("oiled", ("oiled", "oil finish")),
    ("stained", ("stain", "stained")),
    ("lacquered", ("lacquer", "lacquered")),
    ("powdercoated", ("powder", "powder-coated", "powdercoated")),
    ("anodized", ("anodized", "anodised")),
    ("plated", ("plated", "electroplated")),
)

INTENT_PHRASES = [
    "suggest",
    "recommend",
    "pick",
    "choose",
    "find",
    "show me",
    "find me",
    "replace",
    "any sofa",
    "any rug",
    "show a",
    "show me a",
    "show me some",
    "which would you recommend",
    "i need a",
    "i need an",
]

MATERIAL_CHANGE_WORDS = [
    "material", "fabric", "leather", "linen", "velvet", "wool", "cotton", "wood", "oak", "walnut", "ash",
    "veneer", "metal", "brass", "chrome", "steel", "iron", "aluminum", "glass", "marble", "stone", "rattan",
    "wicker", "finish", "matte", "satin", "gloss", "brushed", "oiled", "stain", "lacquer", "color", "colour",
    "black", "white", "gray", "grey", "beige", "cream", "sand", "tan", "charcoal", "navy", "green", "brown",
]
REPLACE_STRONG_WORDS = ["replace", "swap", "alternative", "another", "something else", "different model", "other option"]
REPLACE_SOFT_WORDS = [
    "cheaper", "less expensive", "budget", "pricier", "premium", "smaller", "bigger", "narrower", "wider",
    "shorter", "taller", "compact",
]


def contains_phrase(text: str, phrase: str) -> bool:
    """Return True when phrase starts at a word boundary inside text."""
    return re.search(r"(?<!\w)" + re.escape(phrase), text) is not None


def contains_any(text: str, phrases: Iterable[str]) -> bool:
    return any(contains_phrase(text, phrase) for phrase in phrases)


def find_canonical(text: str, table: SynonymTable) -> str:
    """Purpose: Resolve free text to the canonical value of an ordered synonym table.
    Inputs/Outputs: Inputs are text and a table of (canonical, synonyms); output is the
        canonical value of the first entry with a matching synonym, or "".
    Side Effects / State: None; pure function.
    Dependencies: Uses contains_phrase and normalize_text.
    Failure Modes: Returns "" when nothing matches or text is empty.
    If Removed: Slot/color/finish fallbacks stop working when the model is silent.
    Testing Notes: "walnut" resolves to slot "walnut" but color "brown".
    """
    # Scan entries in table order; first hit wins.
    lowered = normalize_text(text)
    if not lowered:
        return ""
    for canonical, synonyms in table:
        for synonym in synonyms:
            if contains_phrase(lowered, synonym):
                return canonical
    return ""


def parse_amount(token: object) -> float:
    """Purpose: Convert a loosely formatted money or size token to a number.
    Inputs/Outputs: Input is any value; output is a finite, non-negative float.
    Side Effects / State: None; pure function.
    Dependencies: Uses CURRENCY_RE and LEADING_NUMBER_RE.
    Failure Modes: Never raises; unparseable input, booleans, NaN and infinities yield 0.
    If Removed: Backend numeric fields such as "$1,200" or "1.5k" cannot be trusted.
    Testing Notes: "₾1,500" -> 1500, "1.2k" -> 1200, "abc" -> 0, None -> 0.
    """
    # Numbers pass through; strings are stripped of currency and separators.
    if isinstance(token, bool):
        return 0.0
    if isinstance(token, (int, float)):
        value = float(token)
    elif isinstance(token, str):
        cleaned = CURRENCY_RE.sub("", token.strip().lower())
        cleaned = re.sub(r"\s+", "", cleaned.replace(",", ""))
        match = LEADING_NUMBER_RE.match(cleaned)
        if not match:
            return 0.0
        value = float(match.group(0))
        if cleaned.endswith("k"):
            value = round(value * 1000, 6)
    else:
        return 0.0
    if math.isnan(value) or math.isinf(value) or value < 0:
        return 0.0
    return value


def _prepare_budget_text(text: str) -> str:
    # Drop currency, thousands separators, and join digit groups like "1 500".
    lowered = normalize_text(text)
    lowered = CURRENCY_RE.sub("", lowered).replace(",", "")
    lowered = re.sub(r"\s+", " ", lowered).strip()
    return re.sub(r"(\d)\s+(?=\d)", r"\1", lowered)


def extract_budget_range(text: str) -> Optional[BudgetRange]:
    """Purpose: Extract a budget range from free text using ordered phrasing rules.
    Inputs/Outputs: Input is raw user text; output is a BudgetRange or None.
    Side Effects / State: None; pure function.
    Dependencies: Uses the *_RE budget patterns in strict priority order.
    Failure Modes: Returns None when no budget phrasing is found. A lone amount after a
        budget keyword is treated as a maximum, never a minimum.
    If Removed: Budgets are lost whenever the model omits budget_min/budget_max.
    Testing Notes: "between 500 and 800" -> (500, 800); "under 900" -> (0, 900);
        "at least 1200" -> (1200, 0); "budget is 1.2k" -> (0, 1200).
    """
    # Try range, then min/max phrasing, then bare keyword amounts.
    prepared = _prepare_budget_text(text)
    if not prepared:
        return None

    for pattern in (RANGE_BETWEEN_RE, RANGE_DASH_RE):
        match = pattern.search(prepared)
        if match:
            return BudgetRange(min=parse_amount(match.group(1)), max=parse_amount(match.group(2)))

    ordered: List[Tuple[re.Pattern, str]] = [
        (MIN_BEFORE_RE, "min"),
        (MAX_BEFORE_RE, "max"),
        (MIN_AFTER_RE, "min"),
        (MAX_AFTER_RE, "max"),
        (MONEY_KEYWORD_RE, "max"),
        (APPROX_RE, "max"),
    ]
    for pattern, side in ordered:
        match = pattern.search(prepared)
        if not match:
            continue
        amount = parse_amount(match.group(1))
        if side == "min":
            return BudgetRange(min=amount, max=0.0)
        return BudgetRange(min=0.0, max=amount)
    return None


def has_size_hint(text: str) -> bool:
    """Return True for dimension keywords, metric units, or "NNxNN" tokens."""
    return bool(SIZE_HINT_RE.search(text or ""))


def infer_category(text: str) -> str:
    """Purpose: Infer a catalog category from free text.
    Inputs/Outputs: Input is raw text; output is a canonical category or "".
    Side Effects / State: None.
    Dependencies: Uses CATEGORY_TABLE via find_canonical; the canonical name is tried
        before its synonyms.
    Failure Modes: Returns "" if no category word is present.
    If Removed: Suggestions never fire for constraint-only requests like "sofa under 900".
    Testing Notes: "a comfy couch" -> "sofa"; "my budget is 900" -> "".
    """
    # Canonical names count as their own first synonym.
    table = [(canonical, (canonical, *synonyms)) for canonical, synonyms in CATEGORY_TABLE]
    return find_canonical(text, table)


def canonical_category(label: object) -> str:
    """Map a model-supplied category ("Couch", "armchairs") onto the catalog, or ""."""
    if not isinstance(label, str):
        return ""
    return infer_category(label)


def has_intent_keyword(text: str) -> bool:
    """Return True when the text explicitly asks to see or pick something."""
    return contains_any(normalize_text(text), INTENT_PHRASES)


def looks_like_informational_query(text: str) -> bool:
    """Comparison, policy or logistics questions; vetoes auto-suggestion."""
    return bool(INFORMATIONAL_RE.search(text or ""))


def is_material_change(text: str) -> bool:
    return contains_any(normalize_text(text), MATERIAL_CHANGE_WORDS)


def is_replace_request(text: str) -> bool:
    """Purpose: Detect a request to swap the focused item for another model.
    Inputs/Outputs: Input is raw text; output is a boolean.
    Side Effects / State: None.
    Dependencies: Uses REPLACE_STRONG_WORDS and REPLACE_SOFT_WORDS.
    Failure Modes: Soft comparatives ("cheaper") only count when the text points at the
        item with "this" or "it".
    If Removed: Focused follow-ups like "something cheaper than this" never refresh the product spec.
    Testing Notes: "swap it" -> True; "cheaper" -> False; "make it cheaper" -> True.
    """
    # Strong words alone are enough; soft words need a pointer to the item.
    padded = f" {normalize_text(text)} "
    if contains_any(padded, REPLACE_STRONG_WORDS):
        return True
    points_at_item = " this" in padded or " it " in padded
    return points_at_item and contains_any(padded, REPLACE_SOFT_WORDS)
