from __future__ import annotations

import threading
from dataclasses import dataclass, field

from server.refcheck.analysis.shared.normalize import normalize_doi
from server.refcheck.core.cache import Cache
from server.refcheck.sources.http import get_json, record_http_request
from server.refcheck.sources.registry import BibliographicRegistry, Candidate, RegistryConfig, looks_like_preprint

_S2_API = "https://api.semanticscholar.org/graph/v1/paper"
_FIELDS = "title,authors,year,externalIds,venue,citationCount,isOpenAccess,publicationTypes,url,journal"

_BIBTEX_TYPES = {
    "JournalArticle": "article",
    "Conference": "inproceedings",
    "Book": "book",
    "BookSection": "incollection",
    "Dataset": "misc",
}


def paper_to_candidate(paper: dict) -> Candidate | None:
    """Map one Semantic Scholar Graph API paper onto the registry candidate contract."""
    if not isinstance(paper, dict):
        return None
    title = paper.get("title")
    if not isinstance(title, str) or not title.strip():
        return None

    authors = [
        str(a.get("name")).strip()
        for a in paper.get("authors") or []
        if isinstance(a, dict) and str(a.get("name") or "").strip()
    ]
    external = paper.get("externalIds") or {}
    journal = paper.get("journal") or {}
    venue = paper.get("venue") or journal.get("name") or None
    pub_types = [t for t in paper.get("publicationTypes") or [] if isinstance(t, str)]

    metadata: dict = {"publication_types": pub_types}
    if journal.get("volume"):
        metadata["volume"] = str(journal["volume"])
    if journal.get("pages"):
        metadata["pages"] = " ".join(str(journal["pages"]).split())
    if paper.get("paperId"):
        metadata["s2_paper_id"] = str(paper["paperId"])
    if external.get("ArXiv"):
        metadata["arxiv_id"] = str(external["ArXiv"])

    bibtex_type = "article"
    for pub_type in pub_types:
        if pub_type in _BIBTEX_TYPES:
            bibtex_type = _BIBTEX_TYPES[pub_type]
            break

    year = paper.get("year")
    cited = paper.get("citationCount")
    is_preprint = looks_like_preprint(venue) or (bool(external.get("ArXiv")) and not pub_types)
    return Candidate(
        title=" ".join(title.split()),
        authors=authors,
        year=year if isinstance(year, int) else None,
        doi=normalize_doi(str(external.get("DOI") or "")),
        venue=venue if isinstance(venue, str) and venue else None,
        cited_by_count=cited if isinstance(cited, int) else None,
        is_open_access=bool(paper.get("isOpenAccess")),
        is_preprint=is_preprint,
        bibtex_type=bibtex_type,
        metadata=metadata,
        url=paper.get("url") if isinstance(paper.get("url"), str) else None,
    )


@dataclass
class SemanticScholarClient(BibliographicRegistry):
    name = "semantic_scholar"
    label = "Semantic Scholar"

    config: RegistryConfig = field(default_factory=RegistryConfig)
    cache: Cache | None = None
    _session_local: threading.local = field(default_factory=threading.local, init=False, repr=False)

    def _headers(self) -> dict[str, str]:
        headers = {"User-Agent": self.config.user_agent}
        if self.config.api_key:
            headers["x-api-key"] = self.config.api_key
        return headers

    def search_by_doi(self, doi: str) -> Candidate | None:
        doi_norm = normalize_doi(doi)
        if not doi_norm:
            return None
        cache = self.cache
        if cache and cache.enabled:
            hit, cached = cache.get_json("s2.paper_by_doi", [doi_norm])
            if hit:
                return paper_to_candidate(cached) if cached else None

        record_http_request(cache, "s2.paper_by_doi")
        data = get_json(
            self._client(),
            f"{_S2_API}/DOI:{doi_norm}",
            source=self.label,
            timeout_seconds=self.config.timeout_seconds,
            max_attempts=self.config.max_attempts,
            headers=self._headers(),
            params={"fields": _FIELDS},
            missing_ok=True,
        )
        if cache and cache.enabled:
            ttl_days = 90 if data else 1
            cache.set_json("s2.paper_by_doi", [doi_norm], data, ttl_seconds=self._ttl_seconds(ttl_days))
        return paper_to_candidate(data) if data else None

    def search_by_title(self, query: str) -> list[Candidate]:
        query = (query or "").strip()
        if not query:
            return []
        rows = max(1, int(self.config.rows))
        cache = self.cache
        if cache and cache.enabled:
            hit, cached = cache.get_json("s2.search", [query, str(rows)])
            if hit and isinstance(cached, list):
                return [c for c in (paper_to_candidate(p) for p in cached) if c]

        record_http_request(cache, "s2.search")
        data = get_json(
            self._client(),
            f"{_S2_API}/search",
            source=self.label,
            timeout_seconds=self.config.timeout_seconds,
            max_attempts=self.config.max_attempts,
            headers=self._headers(),
            params={"query": query, "limit": rows, "fields": _FIELDS},
        )
        papers = (data or {}).get("data") or []
        if not isinstance(papers, list):
            papers = []
        if cache and cache.enabled:
            cache.set_json("s2.search", [query, str(rows)], papers, ttl_seconds=self._ttl_seconds(7))
        return [c for c in (paper_to_candidate(p) for p in papers) if c]
