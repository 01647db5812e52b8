from __future__ import annotations

import logging
from dataclasses import dataclass

from server.refcheck.analysis.match.similarity import match_likelihood
from server.refcheck.analysis.pipeline.types import Reference, RegistryMatch
from server.refcheck.analysis.shared.normalize import (
    first_author_surname,
    has_et_al,
    normalize_author_name,
    normalize_doi,
    split_authors,
    strip_et_al,
)
from server.refcheck.core.config import Settings

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SamePaperThresholds:
    doi_enabled: bool = True
    title_year: int = 50
    title_author: int = 75
    title_year_author: int = 45
    title_near_year_author: int = 60
    title_doi_year: int = 55
    title_floor: int = 35
    author_overlap_min: float = 0.4

    @classmethod
    def from_settings(cls, settings: Settings) -> "SamePaperThresholds":
        return cls(
            doi_enabled=settings.same_paper_doi_enabled,
            title_year=settings.same_paper_title_year,
            title_author=settings.same_paper_title_author,
            title_year_author=settings.same_paper_title_year_author,
            title_near_year_author=settings.same_paper_title_near_year_author,
            title_doi_year=settings.same_paper_title_doi_year,
            title_floor=settings.same_paper_title_floor,
            author_overlap_min=settings.author_overlap_min,
        )


@dataclass(frozen=True)
class SamePaperDecision:
    same: bool
    rule: str
    title_similarity: int
    year_diff: int | None
    author_overlap: float

    def __bool__(self) -> bool:
        return self.same


def _comparable_names(authors: str | None) -> list[str]:
    out: list[str] = []
    for name in split_authors(authors):
        norm = normalize_author_name(name)
        # Initials split off "Surname, A." carry no identity on their own.
        if len(norm.replace(" ", "")) < 2:
            continue
        out.append(norm)
    return out


def author_overlap(input_authors: str | None, candidate_authors: str | None) -> float:
    """
    Fraction (0..1) of the smaller author list found in the other list.

    With an "et al." marker on the cited side only first-author surnames are
    compared, and a single hit counts as full overlap.
    """
    if not input_authors or not candidate_authors:
        return 0.0

    if has_et_al(input_authors):
        cited = normalize_author_name(first_author_surname(input_authors))
        found = normalize_author_name(first_author_surname(candidate_authors))
        if cited and found and (cited in found or found in cited):
            return 1.0
        return 0.0

    cited_names = _comparable_names(strip_et_al(input_authors))
    found_names = _comparable_names(candidate_authors)
    if not cited_names or not found_names:
        return 0.0

    smaller, other = (cited_names, found_names) if len(cited_names) <= len(found_names) else (found_names, cited_names)
    hits = 0
    for name in smaller:
        if any(name in o or o in name for o in other):
            hits += 1
    return hits / len(smaller)


def is_same_paper(
    reference: Reference,
    candidate: RegistryMatch,
    thresholds: SamePaperThresholds | None = None,
) -> SamePaperDecision:
    """
    Decide whether a registry candidate is the cited work itself, not merely a similar one.

    Rules are evaluated in order and the first one that holds wins; any two of
    title/year/author/DOI agreeing is enough.
    """
    t = thresholds or SamePaperThresholds()
    title_sim = match_likelihood(reference.title, candidate.canonical_title)
    year_diff = (
        abs(int(reference.year) - int(candidate.canonical_year))
        if reference.year is not None and candidate.canonical_year is not None
        else None
    )
    overlap = author_overlap(reference.authors, candidate.canonical_authors)
    authors_ok = overlap >= t.author_overlap_min and overlap > 0.0
    year_exact = year_diff == 0

    def decide(same: bool, rule: str) -> SamePaperDecision:
        logger.debug(
            "Same-paper %s via %s (title=%s, year_diff=%s, authors=%.2f, source=%s)",
            "accepted" if same else "rejected",
            rule,
            title_sim,
            year_diff,
            overlap,
            candidate.source,
        )
        return SamePaperDecision(
            same=same,
            rule=rule,
            title_similarity=title_sim,
            year_diff=year_diff,
            author_overlap=overlap,
        )

    if t.doi_enabled:
        cited_doi = normalize_doi(reference.doi)
        found_doi = normalize_doi(candidate.doi)
        if cited_doi and found_doi and cited_doi == found_doi:
            return decide(True, "doi")

    if title_sim > t.title_year and year_diff is not None and year_diff <= 1:
        return decide(True, "title_year")
    if title_sim > t.title_author and authors_ok:
        return decide(True, "title_author")
    if title_sim > t.title_year_author and year_exact and authors_ok:
        return decide(True, "title_year_author")
    if title_sim > t.title_near_year_author and year_diff is not None and year_diff <= 2 and authors_ok:
        return decide(True, "title_near_year_author")
    if candidate.doi and title_sim > t.title_doi_year and year_exact:
        return decide(True, "title_doi_year")
    if title_sim > t.title_floor and year_exact and authors_ok:
        return decide(True, "title_floor")
    return decide(False, "none")
