from __future__ import annotations

import threading
from dataclasses import dataclass, field

from server.refcheck.analysis.shared.normalize import normalize_doi
from server.refcheck.core.cache import Cache
from server.refcheck.sources.http import get_json, record_http_request
from server.refcheck.sources.registry import BibliographicRegistry, Candidate, RegistryConfig, looks_like_preprint

_OPENALEX_API = "https://api.openalex.org/works"

_BIBTEX_TYPES = {
    "article": "article",
    "book": "book",
    "book-chapter": "incollection",
    "dissertation": "phdthesis",
    "proceedings-article": "inproceedings",
    "report": "techreport",
    "preprint": "misc",
    "dataset": "misc",
}


def _openalex_work_id_suffix(openalex_id: str | None) -> str | None:
    if not openalex_id:
        return None
    openalex_id = openalex_id.strip()
    if openalex_id.startswith(("https://openalex.org/", "https://api.openalex.org/works/")):
        return openalex_id.rstrip("/").split("/")[-1] or None
    if openalex_id.startswith("W"):
        return openalex_id
    return None


def work_to_candidate(work: dict) -> Candidate | None:
    """Map one OpenAlex work object onto the registry candidate contract."""
    if not isinstance(work, dict):
        return None
    title = work.get("display_name") or work.get("title")
    if not isinstance(title, str) or not title.strip():
        return None

    authors: list[str] = []
    for authorship in work.get("authorships") or []:
        author = (authorship or {}).get("author") or {}
        name = author.get("display_name")
        if isinstance(name, str) and name.strip():
            authors.append(name.strip())

    year = work.get("publication_year")
    primary = work.get("primary_location") or {}
    source = primary.get("source") or {}
    venue = source.get("display_name") if isinstance(source.get("display_name"), str) else None
    source_type = source.get("type") if isinstance(source.get("type"), str) else None
    work_type = work.get("type") if isinstance(work.get("type"), str) else None
    open_access = work.get("open_access") or {}
    biblio = work.get("biblio") or {}

    metadata: dict = {"source_type": source_type, "work_type": work_type}
    publisher = source.get("host_organization_name")
    if isinstance(publisher, str) and publisher:
        metadata["publisher"] = publisher
    for key in ("volume", "issue"):
        if biblio.get(key):
            metadata[key] = str(biblio[key])
    first_page, last_page = biblio.get("first_page"), biblio.get("last_page")
    if first_page:
        metadata["pages"] = f"{first_page}-{last_page}" if last_page and last_page != first_page else str(first_page)
    work_id = _openalex_work_id_suffix(work.get("id"))
    if work_id:
        metadata["openalex_id"] = work_id

    is_preprint = work_type == "preprint" or looks_like_preprint(venue, source_type)
    return Candidate(
        title=" ".join(title.split()),
        authors=authors,
        year=year if isinstance(year, int) else None,
        doi=normalize_doi(work.get("doi") or ""),
        venue=venue,
        cited_by_count=work.get("cited_by_count") if isinstance(work.get("cited_by_count"), int) else None,
        is_retracted=bool(work.get("is_retracted")),
        is_open_access=bool(open_access.get("is_oa")),
        is_preprint=is_preprint,
        bibtex_type=_BIBTEX_TYPES.get(work_type or "", "article"),
        metadata=metadata,
        url=f"https://openalex.org/{work_id}" if work_id else None,
    )


@dataclass
class OpenAlexClient(BibliographicRegistry):
    name = "openalex"
    label = "OpenAlex"

    config: RegistryConfig = field(default_factory=RegistryConfig)
    cache: Cache | None = None
    _session_local: threading.local = field(default_factory=threading.local, init=False, repr=False)

    def _params(self, **params) -> dict:
        if self.config.mailto:
            params["mailto"] = self.config.mailto
        return params

    def search_by_doi(self, doi: str) -> Candidate | None:
        doi_norm = normalize_doi(doi)
        if not doi_norm:
            return None
        cache = self.cache
        if cache and cache.enabled:
            hit, cached = cache.get_json("openalex.work_by_doi", [doi_norm])
            if hit:
                return work_to_candidate(cached) if cached else None

        record_http_request(cache, "openalex.work_by_doi")
        data = get_json(
            self._client(),
            f"{_OPENALEX_API}/https://doi.org/{doi_norm}",
            source=self.label,
            timeout_seconds=self.config.timeout_seconds,
            max_attempts=self.config.max_attempts,
            headers=self._headers(),
            params=self._params(),
            missing_ok=True,
        )
        if cache and cache.enabled:
            ttl_days = 90 if data else 1
            cache.set_json("openalex.work_by_doi", [doi_norm], data, ttl_seconds=self._ttl_seconds(ttl_days))
        return work_to_candidate(data) if data else None

    def search_by_title(self, query: str) -> list[Candidate]:
        query = (query or "").strip()
        if not query:
            return []
        rows = max(1, int(self.config.rows))
        cache = self.cache
        if cache and cache.enabled:
            hit, cached = cache.get_json("openalex.search", [query, str(rows)])
            if hit and isinstance(cached, list):
                return [c for c in (work_to_candidate(w) for w in cached) if c]

        record_http_request(cache, "openalex.search")
        data = get_json(
            self._client(),
            _OPENALEX_API,
            source=self.label,
            timeout_seconds=self.config.timeout_seconds,
            max_attempts=self.config.max_attempts,
            headers=self._headers(),
            params=self._params(search=query, **{"per-page": rows}),
        )
        results = (data or {}).get("results") or []
        if not isinstance(results, list):
            results = []
        if cache and cache.enabled:
            cache.set_json("openalex.search", [query, str(rows)], results, ttl_seconds=self._ttl_seconds(7))
        return [c for c in (work_to_candidate(w) for w in results) if c]
