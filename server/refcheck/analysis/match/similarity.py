from __future__ import annotations

import re

from rapidfuzz.distance import Levenshtein

from server.refcheck.analysis.shared.normalize import normalize_title


def _title_tokens(normalized: str) -> list[str]:
    return [tok for tok in normalized.split() if len(tok) > 1]


def match_likelihood(a: str | None, b: str | None) -> int:
    """
    Lenient title similarity (0-100) used to rank registry candidates.

    Tolerates truncated subtitles, typos and abbreviations. Not suitable for
    deduplication: distinct papers with overlapping vocabulary score high.
    """
    s1 = normalize_title(a)
    s2 = normalize_title(b)
    if not s1 or not s2:
        return 0
    if s1 == s2:
        return 100

    if s1 in s2 or s2 in s1:
        shorter, longer = (s1, s2) if len(s1) <= len(s2) else (s2, s1)
        return round(len(shorter) / len(longer) * 100)

    words1 = _title_tokens(s1)
    words2 = _title_tokens(s2)
    if not words1 or not words2:
        return 0

    set1 = set(words1)
    set2 = set(words2)
    exact = set1 & set2
    matched = float(len(exact))
    for w1 in set1 - exact:
        if len(w1) < 4:
            continue
        for w2 in set2 - exact:
            if len(w2) >= 4 and (w1 in w2 or w2 in w1):
                matched += 0.5

    union = len(set1) + len(set2) - matched
    jaccard = min(1.0, matched / union) if union > 0 else 1.0

    order_hits = sum(1 for x, y in zip(words1, words2) if x == y)
    order = order_hits / max(len(words1), len(words2))

    score = round((0.7 * jaccard + 0.3 * order) * 100)
    return max(0, min(100, score))


_DEDUP_PUNCT_RE = re.compile(r"[^\w\s]")


def _dedup_normalize(title: str | None) -> str:
    if not title:
        return ""
    return " ".join(_DEDUP_PUNCT_RE.sub("", title.lower()).split())


def dedup_similarity(a: str | None, b: str | None) -> float:
    """
    Strict edit-distance title similarity (0-100) used only for grouping duplicates.
    """
    s1 = _dedup_normalize(a)
    s2 = _dedup_normalize(b)
    if not s1 or not s2:
        return 0.0
    if s1 == s2:
        return 100.0
    max_len = max(len(s1), len(s2))
    distance = Levenshtein.distance(s1, s2)
    return (max_len - distance) / max_len * 100.0
