"""
Context metrics extraction.

Pure text analysis over an agent transcript: byte size, referenced source
paths, task identifiers, planning-residue lexicon hits and embedded file bodies.
Results feed both the hygiene gates and the drift detector.
"""

from __future__ import annotations

import re
from collections.abc import Iterable, Sequence
from typing import Final

from cleanroom_orchestrator.config.schema import DEFAULT_PLANNING_KEYWORDS
from cleanroom_orchestrator.constants import DEFAULT_FULL_FILE_LINE_LIMIT
from cleanroom_orchestrator.domain.models import ContextMetrics

RESIDUE_PHRASES: Final[tuple[str, ...]] = (
    "we explored",
    "alternative approach",
    "after much discussion",
    "three options",
    "let me think",
    "first attempt",
    "trying different",
    "on second thought",
    "let's reconsider",
    "another possibility",
)

DEFAULT_LEXICON: Final[tuple[str, ...]] = RESIDUE_PHRASES + DEFAULT_PLANNING_KEYWORDS

_FILE_PATH_PATTERN: Final[re.Pattern[str]] = re.compile(r"(?:src|lib|test|tests)/[\w/\-.]+\.\w+")
_TASK_ID_PATTERN: Final[re.Pattern[str]] = re.compile(r"\b(T\d{2,4})\b")
_FILE_MARKER_PATTERN: Final[re.Pattern[str]] = re.compile(r"^(?://|#)\s*(?:File|file):\s")


def build_lexicon(planning_keywords: Iterable[str] = DEFAULT_PLANNING_KEYWORDS) -> tuple[str, ...]:
    """Fixed residue phrases followed by the configured keywords, without duplicates."""
    seen: dict[str, None] = {}
    for phrase in (*RESIDUE_PHRASES, *planning_keywords):
        if phrase:
            seen.setdefault(phrase, None)
    return tuple(seen)


def find_residue(text: str, lexicon: Sequence[str] = DEFAULT_LEXICON) -> tuple[str, ...]:
    """Lexicon entries present in ``text`` (case-insensitive), in lexicon order."""
    lowered = text.lower()
    return tuple(phrase for phrase in lexicon if phrase.lower() in lowered)


def find_task_ids(text: str) -> frozenset[str]:
    return frozenset(_TASK_ID_PATTERN.findall(text))


def count_unique_files(text: str) -> int:
    return len(set(_FILE_PATH_PATTERN.findall(text)))


def has_full_file_body(text: str, line_limit: int = DEFAULT_FULL_FILE_LINE_LIMIT) -> bool:
    """True when more than ``line_limit`` lines follow a file marker before the next marker."""
    in_file = False
    line_count = 0
    for line in text.split("\n"):
        if _FILE_MARKER_PATTERN.match(line):
            if line_count > line_limit:
                return True
            in_file = True
            line_count = 0
        elif in_file:
            line_count += 1
    return line_count > line_limit


def extract_metrics(
    text: str,
    *,
    lexicon: Sequence[str] = DEFAULT_LEXICON,
    full_file_line_limit: int = DEFAULT_FULL_FILE_LINE_LIMIT,
) -> ContextMetrics:
    return ContextMetrics(
        size=len(text.encode("utf-8")),
        unique_files=count_unique_files(text),
        task_ids=find_task_ids(text),
        planning_keywords=len(find_residue(text, lexicon)),
        has_full_files=has_full_file_body(text, full_file_line_limit),
    )


__all__ = [
    "DEFAULT_LEXICON",
    "RESIDUE_PHRASES",
    "build_lexicon",
    "count_unique_files",
    "extract_metrics",
    "find_residue",
    "find_task_ids",
    "has_full_file_body",
]
