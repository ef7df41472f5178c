from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path


def load_prompt(prompt_path: Path) -> str:
    """Purpose: Load a prompt file as UTF-8 text and strip BOM if present.
    Inputs/Outputs: Input is a Path to the prompt file; output is the decoded string.
    Side Effects / State: None; pure function reading the filesystem.
    Dependencies: Uses Path.read_text/read_bytes; used by load_prompt_set.
    Failure Modes: UnicodeDecodeError triggers a fallback decode with errors ignored,
        which can drop invalid bytes. A missing file raises FileNotFoundError.
    If Removed: Prompt loading fails and every backend call lacks its instructions.
    Testing Notes: Validate BOM-stripping and fallback decoding on non-UTF8 files.
    """
    # Read as UTF-8 and fall back to a tolerant decode if needed.
    try:
        return prompt_path.read_text(encoding="utf-8").lstrip("\ufeff").strip()
    except UnicodeDecodeError:
        raw = prompt_path.read_bytes()
        text = raw.decode("utf-8", errors="ignore")
        return text.lstrip("\ufeff").strip()


@dataclass(frozen=True)
class PromptSet:
    """System prompt plus the JSON schema hints for both intent requests."""
    system: str
    product_schema: str
    material_schema: str


def load_prompt_set(prompts_dir: Path) -> PromptSet:
    return PromptSet(
        system=load_prompt(prompts_dir / "system_prompt.md"),
        product_schema=load_prompt(prompts_dir / "product_schema.md"),
        material_schema=load_prompt(prompts_dir / "material_schema.md"),
    )
