from __future__ import annotations

import logging
from collections import Counter
from typing import Sequence

from server.refcheck.analysis.match import dedup_similarity
from server.refcheck.analysis.pipeline.types import DuplicateGroup, VerificationResult
from server.refcheck.analysis.shared.normalize import normalize_doi

logger = logging.getLogger(__name__)

DEFAULT_TITLE_THRESHOLD = 98.0
DEFAULT_NEAR_MISS_THRESHOLD = 80.0
DEFAULT_MAX_YEAR_DIFF = 1


def _effective_doi(result: VerificationResult) -> str | None:
    return normalize_doi(result.reference.doi) or normalize_doi(result.canonical_doi)


def _ref_ids(results: Sequence[VerificationResult]) -> list[str]:
    keys = [r.reference.key for r in results]
    counts = Counter(k for k in keys if k)
    out: list[str] = []
    for i, key in enumerate(keys):
        if not key:
            out.append(str(i))
        elif counts[key] > 1:
            # Shared keys get the position appended.
            out.append(f"{key}#{i}")
        else:
            out.append(key)
    return out


def _find(parent: list[int], i: int) -> int:
    while parent[i] != i:
        parent[i] = parent[parent[i]]
        i = parent[i]
    return i


def _union(parent: list[int], a: int, b: int) -> None:
    ra, rb = _find(parent, a), _find(parent, b)
    if ra == rb:
        return
    # The lower index stays root so the earliest member remains primary.
    if ra < rb:
        parent[rb] = ra
    else:
        parent[ra] = rb


def detect_duplicates(
    results: Sequence[VerificationResult],
    *,
    title_threshold: float = DEFAULT_TITLE_THRESHOLD,
    near_miss_threshold: float = DEFAULT_NEAR_MISS_THRESHOLD,
    max_year_diff: int = DEFAULT_MAX_YEAR_DIFF,
) -> list[DuplicateGroup]:
    """
    Group references that cite the same work, annotating ``results`` in place.

    Two references are linked when both carry the same normalized DOI, or when
    their cited titles are more than ``title_threshold`` similar (edit distance)
    and their years differ by at most ``max_year_diff``. Linking is transitive.
    Pairs scoring between ``near_miss_threshold`` and ``title_threshold`` are
    logged for review and never grouped.
    """
    n = len(results)
    if n < 2:
        return []

    dois = [_effective_doi(r) for r in results]
    ids = _ref_ids(results)
    parent = list(range(n))
    for i in range(n):
        ri = results[i].reference
        for j in range(i + 1, n):
            rj = results[j].reference
            if dois[i] and dois[j] and dois[i] == dois[j]:
                _union(parent, i, j)
                continue
            if ri.year is None or rj.year is None:
                continue
            if abs(ri.year - rj.year) > max_year_diff:
                continue
            similarity = dedup_similarity(ri.title, rj.title)
            if similarity > title_threshold:
                _union(parent, i, j)
            elif similarity >= near_miss_threshold:
                logger.info(
                    "Near-duplicate titles not grouped (%.1f%%): %r / %r",
                    similarity,
                    ids[i],
                    ids[j],
                )

    members: dict[int, list[int]] = {}
    for i in range(n):
        members.setdefault(_find(parent, i), []).append(i)

    groups: list[DuplicateGroup] = []
    for root in sorted(members):
        indices = members[root]
        if len(indices) < 2:
            continue
        group_id = f"dup-{len(groups) + 1}"
        count = len(indices)
        ref_ids = [ids[i] for i in indices]
        for position, i in enumerate(indices):
            result = results[i]
            result.duplicate_group_id = group_id
            result.duplicate_group_count = count
            result.is_primary_duplicate = position == 0
            result.is_duplicate = position != 0
            if position != 0:
                result.issues.append(f"Duplicate - appears {count} times in your bibliography")
        groups.append(DuplicateGroup(group_id=group_id, ref_ids=ref_ids, primary_id=ref_ids[0], count=count))
        logger.info("Duplicate group %s: %s", group_id, ", ".join(ref_ids))
    return groups
