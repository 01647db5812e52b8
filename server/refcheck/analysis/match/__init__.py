from __future__ import annotations

from server.refcheck.analysis.match.same_paper import (
    SamePaperDecision,
    SamePaperThresholds,
    author_overlap,
    is_same_paper,
)
from server.refcheck.analysis.match.similarity import dedup_similarity, match_likelihood

__all__ = [
    "SamePaperDecision",
    "SamePaperThresholds",
    "author_overlap",
    "dedup_similarity",
    "is_same_paper",
    "match_likelihood",
]
