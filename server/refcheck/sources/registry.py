from __future__ import annotations

import logging
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass, field

import requests

from server.refcheck.analysis.match.similarity import match_likelihood
from server.refcheck.analysis.pipeline.types import Reference, RegistryMatch
from server.refcheck.analysis.shared.normalize import first_author_surname, normalize_doi, normalize_title
from server.refcheck.core.cache import Cache
from server.refcheck.core.config import Settings
from server.refcheck.sources.concurrency import acquire_registry_slot
from server.refcheck.sources.http import RegistryError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RegistryConfig:
    timeout_seconds: float = 15.0
    max_attempts: int = 2
    min_similarity: int = 40
    rows: int = 5
    user_agent: str = "refcheck/0.1"
    mailto: str = ""
    api_key: str = ""
    max_concurrent: int = 0
    min_interval_seconds: float = 0.0

    @classmethod
    def for_registry(cls, settings: Settings, name: str) -> "RegistryConfig":
        return cls(
            timeout_seconds=settings.registry_timeout_seconds,
            max_attempts=settings.registry_max_attempts,
            min_similarity=settings.min_similarity_for(name),
            rows=settings.registry_rows,
            user_agent=settings.user_agent,
            mailto=settings.contact_mailto,
            api_key=settings.semantic_scholar_api_key if name == "semantic_scholar" else "",
            max_concurrent=settings.registry_max_concurrent,
            min_interval_seconds=settings.registry_min_interval_seconds,
        )


@dataclass(frozen=True)
class Candidate:
    title: str | None
    authors: list[str] = field(default_factory=list)
    year: int | None = None
    doi: str | None = None
    venue: str | None = None
    cited_by_count: int | None = None
    is_retracted: bool = False
    is_open_access: bool = False
    is_preprint: bool = False
    bibtex_type: str = "article"
    metadata: dict = field(default_factory=dict)
    url: str | None = None

    def carries_doi(self, doi: str | None) -> bool:
        """True when the record is registered under ``doi``, including arXiv's own 10.48550 DOI."""
        wanted = normalize_doi(doi)
        if not wanted:
            return False
        if normalize_doi(self.doi) == wanted:
            return True
        arxiv_id = str(self.metadata.get("arxiv_id") or "").strip().lower()
        return bool(arxiv_id) and wanted == f"10.48550/arxiv.{arxiv_id}"

    def to_match(self, source: str, *, confidence: int, method: str) -> RegistryMatch:
        return RegistryMatch(
            source=source,
            found=True,
            confidence=max(0, min(100, int(confidence))),
            canonical_title=self.title,
            canonical_authors=", ".join(a for a in self.authors if a) or None,
            canonical_year=self.year,
            doi=normalize_doi(self.doi),
            venue=self.venue,
            cited_by_count=self.cited_by_count,
            is_retracted=bool(self.is_retracted),
            is_open_access=bool(self.is_open_access),
            is_preprint=bool(self.is_preprint),
            bibtex_type=self.bibtex_type or "article",
            metadata=dict(self.metadata),
            url=self.url,
            method=method,
        )


def title_queries(reference: Reference) -> list[tuple[str, str]]:
    """Title rungs of the fallback ladder, in order, without repeated query strings."""
    raw = " ".join((reference.title or "").split())
    norm = normalize_title(reference.title)
    combined_parts = [norm]
    surname = first_author_surname(reference.authors)
    if surname:
        combined_parts.append(surname.lower())
    if reference.year:
        combined_parts.append(str(reference.year))
    rungs = [
        ("title", raw),
        ("normalized_title", norm),
        ("title_author_year", " ".join(p for p in combined_parts if p)),
    ]
    seen: set[str] = set()
    out: list[tuple[str, str]] = []
    for method, query in rungs:
        key = query.lower()
        if not query or key in seen:
            continue
        seen.add(key)
        out.append((method, query))
    return out


class BibliographicRegistry(ABC):
    """
    One external bibliographic source.

    Subclasses implement the two wire-level searches; ``lookup`` runs the shared
    fallback ladder and turns every fault into a not-found match.
    """

    name: str = ""
    label: str = ""
    config: RegistryConfig
    cache: Cache | None
    _session_local: threading.local

    def _client(self) -> requests.Session:
        session = getattr(self._session_local, "session", None)
        if session is None:
            session = requests.Session()
            self._session_local.session = session
        return session

    def _headers(self) -> dict[str, str]:
        return {"User-Agent": self.config.user_agent}

    def _ttl_seconds(self, suggested_days: int) -> float:
        cache = self.cache
        if not cache:
            return 0.0
        return cache.ttl_seconds(suggested_days)

    @abstractmethod
    def search_by_doi(self, doi: str) -> Candidate | None:
        """At most one authoritative record for the DOI."""

    @abstractmethod
    def search_by_title(self, query: str) -> list[Candidate]:
        """Ranked candidates for a free-text title query."""

    def lookup(self, reference: Reference) -> RegistryMatch:
        try:
            return self._lookup(reference)
        except Exception as e:
            # Rung-level RegistryError/ValueError are absorbed by the ladder; this catches the rest.
            logger.warning("%s lookup failed for %r: %s", self.label, reference.key, e)
            return RegistryMatch.not_found(self.label, error=str(e) or type(e).__name__)

    def _slot(self):
        return acquire_registry_slot(
            source=self.name,
            limit=self.config.max_concurrent,
            min_interval=self.config.min_interval_seconds,
        )

    def _lookup(self, reference: Reference) -> RegistryMatch:
        attempted = 0
        errors: list[str] = []

        def rung_failed(method: str, e: Exception) -> None:
            logger.warning("%s %s rung failed for %r: %s", self.label, method, reference.key, e)
            errors.append(str(e) or type(e).__name__)

        doi = normalize_doi(reference.doi)
        if doi:
            attempted += 1
            candidate = None
            try:
                with self._slot():
                    candidate = self.search_by_doi(doi)
            except (RegistryError, ValueError) as e:
                rung_failed("doi", e)
            if candidate is not None:
                if candidate.carries_doi(doi):
                    logger.debug("%s found %r by DOI %s", self.label, reference.key, doi)
                    return candidate.to_match(self.label, confidence=100, method="doi")
                logger.debug(
                    "%s DOI search for %s returned a record registered as %s; ignoring it",
                    self.label,
                    doi,
                    candidate.doi,
                )

        best_below_floor = 0
        for method, query in title_queries(reference):
            attempted += 1
            try:
                with self._slot():
                    candidates = self.search_by_title(query)
            except (RegistryError, ValueError) as e:
                rung_failed(method, e)
                continue
            scored = [(match_likelihood(reference.title, c.title), c) for c in candidates if c.title]
            if not scored:
                continue
            top_score, top = max(scored, key=lambda x: x[0])
            if top_score >= self.config.min_similarity:
                logger.debug("%s found %r via %s (%s%%)", self.label, reference.key, method, top_score)
                return top.to_match(self.label, confidence=top_score, method=method)
            best_below_floor = max(best_below_floor, top_score)

        if best_below_floor:
            logger.debug(
                "%s best candidate for %r scored %s%%, below floor %s%%",
                self.label,
                reference.key,
                best_below_floor,
                self.config.min_similarity,
            )
        if attempted and len(errors) == attempted:
            return RegistryMatch.not_found(self.label, error=errors[0])
        return RegistryMatch.not_found(self.label)


_PREPRINT_MARKERS = (
    "arxiv",
    "biorxiv",
    "medrxiv",
    "chemrxiv",
    "ssrn",
    "preprint",
    "repository",
    "osf preprints",
    "research square",
    "authorea",
    "zenodo",
    "figshare",
    "psyarxiv",
    "socarxiv",
    "engrxiv",
    "techrxiv",
    "eartharxiv",
)


def looks_like_preprint(*labels: str | None) -> bool:
    """True when any venue / source-type label names a preprint server or repository."""
    for label in labels:
        text = (label or "").strip().lower()
        if text and any(marker in text for marker in _PREPRINT_MARKERS):
            return True
    return False
