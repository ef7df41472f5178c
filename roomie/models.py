from __future__ import annotations

from dataclasses import dataclass
from typing import List, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from .utils import format_number, sanitize_field

PRODUCT_FLAT_KEYS = (
    "suggest",
    "category",
    "style",
    "budget_min",
    "budget_max",
    "max_len",
    "max_w",
    "max_h",
    "choice_id",
    "choice_name",
)
MATERIAL_FLAT_KEYS = ("apply", "slot", "color", "finish", "style")


@dataclass(frozen=True)
class BudgetRange:
    """Budget bounds parsed from text; 0 means unbounded on that side."""
    min: float = 0.0
    max: float = 0.0


class Turn(BaseModel):
    """One immutable history entry in Gemini role terms."""
    model_config = ConfigDict(frozen=True)

    role: Literal["user", "model"]
    text: str

    def to_content(self) -> dict:
        return {"role": self.role, "parts": [{"text": self.text}]}


def _dedupe_tags(tags: List[str]) -> List[str]:
    seen = set()
    ordered: List[str] = []
    for tag in tags:
        cleaned = str(tag).strip()
        if cleaned and cleaned not in seen:
            seen.add(cleaned)
            ordered.append(cleaned)
    return ordered


class ProductIntent(BaseModel):
    """Canonical product-extraction record sent to the client as SPEC."""
    suggest: bool = False
    category: str = ""
    style_tags: List[str] = Field(default_factory=list)
    budget_min: float = 0.0
    budget_max: float = 0.0
    max_length_cm: float = 0.0
    max_width_cm: float = 0.0
    max_height_cm: float = 0.0

    @field_validator("style_tags")
    @classmethod
    def _unique_tags(cls, value: List[str]) -> List[str]:
        return _dedupe_tags(value)

    @field_validator("budget_min", "budget_max", "max_length_cm", "max_width_cm", "max_height_cm")
    @classmethod
    def _non_negative(cls, value: float) -> float:
        return max(0.0, value)

    @model_validator(mode="after")
    def _ordered_budget(self) -> "ProductIntent":
        if self.budget_min and self.budget_max and self.budget_min > self.budget_max:
            self.budget_min, self.budget_max = self.budget_max, self.budget_min
        return self

    def to_flat(self) -> str:
        """Purpose: Encode the intent as the semicolon-separated wire record.
        Inputs/Outputs: No inputs; returns "suggest=..;category=..;...;choice_name=".
        Side Effects / State: None.
        Dependencies: Uses sanitize_field and format_number from utils.
        Failure Modes: None; every key is always present in PRODUCT_FLAT_KEYS order.
        If Removed: SPEC replies cannot be sent to the game client.
        Testing Notes: Tags containing ";" or "|" are rendered with "/".
        """
        # choice_id/choice_name are filled by catalog matching downstream.
        values = {
            "suggest": "1" if self.suggest else "0",
            "category": sanitize_field(self.category),
            "style": "|".join(sanitize_field(tag) for tag in self.style_tags),
            "budget_min": format_number(self.budget_min),
            "budget_max": format_number(self.budget_max),
            "max_len": format_number(self.max_length_cm),
            "max_w": format_number(self.max_width_cm),
            "max_h": format_number(self.max_height_cm),
            "choice_id": "",
            "choice_name": "",
        }
        return ";".join(f"{key}={values[key]}" for key in PRODUCT_FLAT_KEYS)


class MaterialIntent(BaseModel):
    """Canonical material-extraction record sent to the client as MATSPEC."""
    apply: bool = False
    slot: str = ""
    color: str = ""
    finish: str = ""
    style_tags: List[str] = Field(default_factory=list)

    @field_validator("style_tags")
    @classmethod
    def _unique_tags(cls, value: List[str]) -> List[str]:
        return _dedupe_tags(value)

    @model_validator(mode="after")
    def _apply_when_described(self) -> "MaterialIntent":
        if self.slot or self.color or self.finish:
            self.apply = True
        return self

    def to_flat(self) -> str:
        values = {
            "apply": "1" if self.apply else "0",
            "slot": sanitize_field(self.slot),
            "color": sanitize_field(self.color),
            "finish": sanitize_field(self.finish),
            "style": "|".join(sanitize_field(tag) for tag in self.style_tags),
        }
        return ";".join(f"{key}={values[key]}" for key in MATERIAL_FLAT_KEYS)


def parse_flat_record(record: str) -> dict:
    """Split a flat "key=value;..." record into a dict of raw strings."""
    fields = {}
    for pair in (record or "").split(";"):
        if not pair:
            continue
        key, _, value = pair.partition("=")
        fields[key.strip()] = value
    return fields
