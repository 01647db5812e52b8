from __future__ import annotations

import logging
import re
import threading
import time
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from typing import Sequence
from urllib.parse import quote_plus

from server.refcheck.analysis.checks.fake_patterns import detect_fake_patterns
from server.refcheck.analysis.match import SamePaperThresholds, is_same_paper
from server.refcheck.analysis.pipeline.types import (
    BatchCanceled,
    InvalidReferenceError,
    Reference,
    RegistryMatch,
    VerificationResult,
)
from server.refcheck.analysis.shared.normalize import normalize_doi
from server.refcheck.core.config import Settings
from server.refcheck.sources.registry import BibliographicRegistry

logger = logging.getLogger(__name__)

_MIN_TITLE_CHARS = 10
_URL_OR_DOI_RE = re.compile(r"^(?:https?://|www\.|doi:|10\.\d{4,9}/)", re.IGNORECASE)
_PLACEHOLDER_AUTHORS = frozenset({"unknown", "et al", "et al.", "n/a", "na"})
_POLL_SECONDS = 0.1

# DOI rung plus the three title rungs, each bounded by timeout * attempts.
_LADDER_RUNGS = 4


def check_reference_input(reference: Reference) -> str | None:
    """
    Return a description of why the reference cannot be looked up, or None if it can.

    Raises InvalidReferenceError only when title/authors are not strings at all.
    """
    if not isinstance(reference.title, str) or not isinstance(reference.authors, str):
        raise InvalidReferenceError(
            f"Reference {reference.key or '?'} has non-text title/authors "
            f"({type(reference.title).__name__}/{type(reference.authors).__name__})."
        )
    title = " ".join(reference.title.split())
    authors = " ".join(reference.authors.split())
    if len(title) < _MIN_TITLE_CHARS:
        return f"title too short to search ({len(title)} characters)"
    if _URL_OR_DOI_RE.match(title):
        return f'title looks like a URL or DOI rather than a title: "{title}"'
    if not authors:
        return "authors missing"
    if authors.lower() in _PLACEHOLDER_AUTHORS:
        return f'authors field is a placeholder: "{authors}"'
    return None


def google_scholar_url(reference: Reference) -> str:
    query = " ".join(p for p in (reference.title or "", reference.authors or "") if p).strip()
    return f"https://scholar.google.com/scholar?q={quote_plus(query)}"


def _build_links(reference: Reference, matches: Sequence[RegistryMatch], canonical_doi: str | None) -> dict[str, str]:
    links = {"google_scholar": google_scholar_url(reference)}
    doi = normalize_doi(reference.doi) or canonical_doi
    if doi:
        links["doi"] = f"https://doi.org/{doi}"
    for m in matches:
        if not m.found:
            continue
        if m.source == "OpenAlex" and m.metadata.get("openalex_id"):
            links.setdefault("openalex", f"https://openalex.org/{m.metadata['openalex_id']}")
        elif m.source == "Semantic Scholar" and m.url:
            links.setdefault("semantic_scholar", m.url)
        elif m.source == "Crossref" and m.doi:
            links.setdefault("crossref", f"https://api.crossref.org/works/{m.doi}")
        arxiv_id = m.metadata.get("arxiv_id")
        if arxiv_id:
            links.setdefault("arxiv", f"https://arxiv.org/abs/{arxiv_id}")
    return links


def _title_issue(similarity: int, canonical_title: str | None) -> str | None:
    if similarity >= 80:
        return None
    if similarity >= 60:
        return f'Minor title difference ({similarity}% similar): registry title is "{canonical_title}"'
    if similarity >= 30:
        return f'MAJOR title difference ({similarity}% similar): registry title is "{canonical_title}"'
    return f'CRITICAL title mismatch ({similarity}% similar): registry title is "{canonical_title}"'


def _year_issue(cited: int | None, found: int | None) -> str | None:
    if cited is None or found is None:
        return None
    diff = abs(cited - found)
    if diff == 0:
        return None
    if diff <= 5:
        return f"Year mismatch: cited {cited}, registry {found} (possibly preprint vs. published version)"
    return f"CRITICAL year mismatch: cited {cited}, registry {found}"


class ReferenceVerifier:
    """Cross-validates one reference against every configured registry."""

    def __init__(
        self,
        registries: Sequence[BibliographicRegistry],
        settings: Settings,
        *,
        settle_timeout: float | None = None,
    ) -> None:
        self.registries = list(registries)
        self.settings = settings
        self.thresholds = SamePaperThresholds.from_settings(settings)
        if settle_timeout is None:
            settle_timeout = (
                settings.registry_timeout_seconds * max(1, settings.registry_max_attempts) * _LADDER_RUNGS
            )
        self.settle_timeout = float(settle_timeout)

    def verify(self, reference: Reference, cancel_event: threading.Event | None = None) -> VerificationResult:
        problem = check_reference_input(reference)
        if problem:
            logger.info("Skipping lookup for %r: %s", reference.key, problem)
            return VerificationResult(
                reference=reference,
                status="warning",
                confidence=0,
                issues=[f"EXTRACTION ERROR - {problem}"],
                links=_build_links(reference, [], None),
            )
        matches = self._query_registries(reference, cancel_event)
        return self._assemble(reference, matches)

    def _query_registries(
        self, reference: Reference, cancel_event: threading.Event | None
    ) -> list[RegistryMatch]:
        if cancel_event is not None and cancel_event.is_set():
            raise BatchCanceled("Canceled before registry lookup.")
        if not self.registries:
            return []

        ex = ThreadPoolExecutor(max_workers=len(self.registries), thread_name_prefix="registry")
        futures: list[Future] = [ex.submit(r.lookup, reference) for r in self.registries]
        deadline = time.monotonic() + self.settle_timeout
        try:
            while True:
                pending = [f for f in futures if not f.done()]
                if not pending:
                    break
                if cancel_event is not None and cancel_event.is_set():
                    raise BatchCanceled("Canceled during registry lookup.")
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    break
                wait(pending, timeout=min(_POLL_SECONDS, remaining), return_when=FIRST_COMPLETED)
        finally:
            # In-flight lookups are abandoned, not joined.
            ex.shutdown(wait=False, cancel_futures=True)

        matches: list[RegistryMatch] = []
        for registry, fut in zip(self.registries, futures):
            if not fut.done() or fut.cancelled():
                logger.warning("%s timed out for %r after %.0fs", registry.label, reference.key, self.settle_timeout)
                matches.append(
                    RegistryMatch.not_found(registry.label, error=f"timed out after {self.settle_timeout:.0f}s")
                )
                continue
            exc = fut.exception()
            if exc is not None:
                logger.warning("%s failed for %r: %s", registry.label, reference.key, exc)
                matches.append(RegistryMatch.not_found(registry.label, error=str(exc) or type(exc).__name__))
                continue
            matches.append(fut.result())
        return matches

    def _assemble(self, reference: Reference, matches: list[RegistryMatch]) -> VerificationResult:
        fake_findings = detect_fake_patterns(reference)
        found = [m for m in matches if m.found]

        if not found:
            issues = ["NOT FOUND in any registry"]
            unverifiable = bool(matches) and all(m.error for m in matches)
            if unverifiable:
                errors = "; ".join(f"{m.source}: {m.error}" for m in matches)
                issues.append(f"UNVERIFIABLE - no registry could be reached ({errors})")
            issues.extend(fake_findings)
            logger.info("Reference %r not found in any registry", reference.key)
            return VerificationResult(
                reference=reference,
                status="not_found",
                confidence=0,
                issues=issues,
                links=_build_links(reference, matches, None),
                registry_matches=matches,
                unverifiable=unverifiable,
            )

        # max() keeps the first of equal scores, i.e. registry order breaks ties.
        best = max(found, key=lambda m: m.confidence)
        decision = is_same_paper(reference, best, self.thresholds)
        if not decision:
            year = f" ({best.canonical_year})" if best.canonical_year else ""
            issues = [
                f'DIFFERENT PAPER - closest {best.source} record is "{best.canonical_title}"{year} '
                f"by {best.canonical_authors or 'unknown authors'}",
                "The cited entry may be fabricated or mistyped",
                f"Title {decision.title_similarity}% similar, author overlap {decision.author_overlap:.0%}",
                *fake_findings,
            ]
            logger.info("Reference %r: best candidate from %s is a different paper", reference.key, best.source)
            return VerificationResult(
                reference=reference,
                status="not_found",
                confidence=0,
                issues=issues,
                links=_build_links(reference, [], None),
                registry_matches=matches,
            )

        confidence = best.confidence
        verified_by = [m.source for m in found]
        same_matches = [m for m in found if m is best or is_same_paper(reference, m, self.thresholds)]
        retracted_by = [m.source for m in same_matches if m.is_retracted]
        canonical_doi = best.doi or next((m.doi for m in same_matches if m.doi), None)
        citation_counts = [m.cited_by_count for m in same_matches if m.cited_by_count is not None]

        status = "verified"
        if len(found) == 1:
            status = "warning"
        if confidence < self.settings.low_confidence_threshold:
            status = "warning"
        if retracted_by:
            status = "retracted"

        issues: list[str] = []
        title_issue = _title_issue(decision.title_similarity, best.canonical_title)
        if title_issue:
            issues.append(title_issue)
        year_issue = _year_issue(reference.year, best.canonical_year)
        if year_issue:
            issues.append(year_issue)
        if not normalize_doi(reference.doi):
            if canonical_doi:
                issues.append(f"No DOI in citation (registry DOI: {canonical_doi})")
            else:
                issues.append("No DOI found")
        if best.is_preprint:
            issues.append(f"Preprint - {best.venue or 'preprint server'}; check for a peer-reviewed version")
        if len(found) == 1:
            issues.append(f"Found in only one registry ({best.source})")
        if confidence < self.settings.low_confidence_threshold:
            issues.append(f"Low confidence match ({confidence}%)")
        if retracted_by:
            issues.append(f"RETRACTED - flagged by {', '.join(retracted_by)}")
        issues.extend(fake_findings)

        metadata = dict(best.metadata)
        metadata["match_rule"] = decision.rule
        metadata["match_method"] = best.method
        metadata["is_open_access"] = any(m.is_open_access for m in same_matches)
        metadata["is_preprint"] = best.is_preprint

        logger.debug("Reference %r -> %s (%s%%) via %s", reference.key, status, confidence, ", ".join(verified_by))
        return VerificationResult(
            reference=reference,
            status=status,
            confidence=confidence,
            canonical_title=best.canonical_title,
            canonical_authors=best.canonical_authors,
            canonical_year=best.canonical_year,
            canonical_venue=best.venue,
            canonical_doi=canonical_doi,
            cited_by_count=max(citation_counts) if citation_counts else None,
            is_retracted=bool(retracted_by),
            bibtex_type=best.bibtex_type,
            metadata=metadata,
            issues=issues,
            verified_by=verified_by,
            links=_build_links(reference, same_matches, canonical_doi),
            registry_matches=matches,
        )


def verify_reference(
    reference: Reference,
    registries: Sequence[BibliographicRegistry],
    settings: Settings,
    *,
    cancel_event: threading.Event | None = None,
) -> VerificationResult:
    return ReferenceVerifier(registries, settings).verify(reference, cancel_event=cancel_event)
