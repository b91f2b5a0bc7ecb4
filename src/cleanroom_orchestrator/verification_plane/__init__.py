"""
cleanroom-orchestrator: verification plane public API.

File: src/cleanroom_orchestrator/verification_plane/__init__.py

Purpose
- Context metrics extraction and the hygiene gates applied to agent transcripts.
"""

from cleanroom_orchestrator.verification_plane.context_metrics import (
    DEFAULT_LEXICON,
    RESIDUE_PHRASES,
    build_lexicon,
    extract_metrics,
    find_residue,
)
from cleanroom_orchestrator.verification_plane.hygiene import ContextHygieneVerifier

__all__ = [
    "ContextHygieneVerifier",
    "DEFAULT_LEXICON",
    "RESIDUE_PHRASES",
    "build_lexicon",
    "extract_metrics",
    "find_residue",
]
