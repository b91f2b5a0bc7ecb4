"""
Deterministic merge of the three planning documents into one plan.

Pure text extraction, no generative step: identical inputs always produce
byte-identical output, and a missing heading degrades to a placeholder
instead of an error.
"""

from __future__ import annotations

import re
from collections.abc import Sequence
from pathlib import Path
from typing import Final

from cleanroom_orchestrator.synthesis_plane.prompt_templates import render_prompt
from cleanroom_orchestrator.utils.fs import atomic_write

SECTION_NOT_FOUND: Final[str] = "_Section not found in planning output_"
EMPTY_SECTION: Final[str] = "_Empty section_"
FALLBACK_STEPS: Final[tuple[str, ...]] = (
    "Review requirements",
    "Implement core functionality",
    "Add tests",
    "Review and refactor",
)

_HEADING_PATTERN: Final[re.Pattern[str]] = re.compile(r"^(#{1,6})(?:\s|$)")
_NUMBERED_ITEM_PATTERN: Final[re.Pattern[str]] = re.compile(r"^\s*\d+\.\s+(.*)$")


def _heading_level(line: str) -> int | None:
    match = _HEADING_PATTERN.match(line)
    return len(match.group(1)) if match else None


def extract_section(doc: str, heading: str) -> str:
    """
    Body of the first line containing ``heading`` (case-insensitive).

    The body runs until the next heading at the same or a higher level than
    ``heading``'s own ``#`` prefix (level 2 when it has none).
    """

    marker = heading.lower()
    level = _heading_level(heading.strip()) or 2
    lines = doc.split("\n")

    start = next((index for index, line in enumerate(lines) if marker in line.lower()), None)
    if start is None:
        return SECTION_NOT_FOUND

    end = len(lines)
    for index in range(start + 1, len(lines)):
        line_level = _heading_level(lines[index])
        if line_level is not None and line_level <= level and marker not in lines[index].lower():
            end = index
            break

    body = "\n".join(lines[start + 1 : end]).strip()
    return body or EMPTY_SECTION


def numbered_items(doc: str) -> list[str]:
    items: list[str] = []
    for line in doc.split("\n"):
        match = _NUMBERED_ITEM_PATTERN.match(line)
        if match:
            items.append(match.group(1).strip())
    return items


def synthesize_steps(spec: str, arch: str) -> str:
    """Numbered items from both documents, exact-text deduplicated and renumbered."""

    unique: dict[str, None] = {}
    for item in (*numbered_items(spec), *numbered_items(arch)):
        if item:
            unique.setdefault(item, None)
    steps: Sequence[str] = tuple(unique) or FALLBACK_STEPS
    return "\n".join(f"{index}. {step}" for index, step in enumerate(steps, start=1))


def structured_merge(spec: str, arch: str, qa: str) -> str:
    sections = (
        ("Requirements", extract_section(spec, "## Requirements")),
        ("Acceptance Criteria", extract_section(spec, "## Acceptance")),
        ("Architecture Design", extract_section(arch, "## Design")),
        ("API & Data Models", extract_section(arch, "## API")),
        ("Test Plan", extract_section(qa, "## Test Plan")),
        ("Risks & Mitigations", extract_section(qa, "## Risks")),
        ("Implementation Steps", synthesize_steps(spec, arch)),
    )
    return render_prompt("unified_plan", sections=sections)


def write_merged_plan(spec: str, arch: str, qa: str, output_file: str | Path) -> Path:
    target = Path(output_file)
    atomic_write(target, structured_merge(spec, arch, qa))
    return target


__all__ = [
    "EMPTY_SECTION",
    "FALLBACK_STEPS",
    "SECTION_NOT_FOUND",
    "extract_section",
    "numbered_items",
    "structured_merge",
    "synthesize_steps",
    "write_merged_plan",
]
