from __future__ import annotations

import threading
from dataclasses import dataclass, field

from server.refcheck.analysis.shared.normalize import normalize_doi
from server.refcheck.core.cache import Cache
from server.refcheck.sources.http import get_json, record_http_request
from server.refcheck.sources.registry import BibliographicRegistry, Candidate, RegistryConfig, looks_like_preprint

_CROSSREF_API = "https://api.crossref.org/works"

_BIBTEX_TYPES = {
    "journal-article": "article",
    "proceedings-article": "inproceedings",
    "book": "book",
    "monograph": "book",
    "edited-book": "book",
    "book-chapter": "incollection",
    "dissertation": "phdthesis",
    "report": "techreport",
    "posted-content": "misc",
}


def _first(value) -> str | None:
    if isinstance(value, list) and value:
        return str(value[0])
    if isinstance(value, str):
        return value
    return None


def _crossref_year(msg: dict) -> int | None:
    for key in ("issued", "published", "published-print", "published-online"):
        parts = ((msg.get(key) or {}).get("date-parts") or [[None]])[0]
        try:
            return int(parts[0])
        except (TypeError, ValueError, IndexError):
            continue
    return None


def _crossref_authors(msg: dict) -> list[str]:
    names: list[str] = []
    for author in msg.get("author") or []:
        if not isinstance(author, dict):
            continue
        given = str(author.get("given") or "").strip()
        family = str(author.get("family") or "").strip()
        name = " ".join(p for p in (given, family) if p) or str(author.get("literal") or "").strip()
        if name:
            names.append(name)
    return names


def crossref_retraction_detail(msg: dict | None) -> dict | None:
    if not msg:
        return None
    relation = msg.get("relation")
    update_to = msg.get("update-to")
    relation_hits: list[dict] = []
    if isinstance(relation, dict):
        for key, val in relation.items():
            if "retract" in str(key).lower():
                relation_hits.append({"relation_type": key, "items": val})
    update_hits: list[dict] = []
    if isinstance(update_to, list):
        for item in update_to:
            if isinstance(item, dict) and "retract" in str(item.get("type") or "").lower():
                update_hits.append(item)
    if relation_hits or update_hits:
        return {"relation": relation_hits or None, "update_to": update_hits or None}
    return None


def message_to_candidate(msg: dict) -> Candidate | None:
    """Map one Crossref ``message`` / search item onto the registry candidate contract."""
    if not isinstance(msg, dict):
        return None
    title = _first(msg.get("title"))
    if not title or not title.strip():
        return None
    work_type = msg.get("type") if isinstance(msg.get("type"), str) else None
    subtype = msg.get("subtype") if isinstance(msg.get("subtype"), str) else None
    venue = _first(msg.get("container-title"))
    doi = normalize_doi(str(msg.get("DOI") or ""))

    metadata: dict = {"source_type": work_type}
    for wire_key, key in (("publisher", "publisher"), ("volume", "volume"), ("issue", "issue"), ("page", "pages")):
        if msg.get(wire_key):
            metadata[key] = str(msg[wire_key])
    retraction = crossref_retraction_detail(msg)
    if retraction:
        metadata["retraction"] = retraction

    cited = msg.get("is-referenced-by-count")
    licenses = msg.get("license")
    return Candidate(
        title=" ".join(title.split()),
        authors=_crossref_authors(msg),
        year=_crossref_year(msg),
        doi=doi,
        venue=venue,
        cited_by_count=cited if isinstance(cited, int) else None,
        is_retracted=retraction is not None,
        is_open_access=isinstance(licenses, list) and bool(licenses),
        is_preprint=work_type == "posted-content" or subtype == "preprint" or looks_like_preprint(venue),
        bibtex_type=_BIBTEX_TYPES.get(work_type or "", "article"),
        metadata=metadata,
        url=f"https://doi.org/{doi}" if doi else None,
    )


@dataclass
class CrossrefClient(BibliographicRegistry):
    name = "crossref"
    label = "Crossref"

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
            hit, cached = cache.get_json("crossref.work_by_doi", [doi_norm])
            if hit:
                return message_to_candidate(cached) if cached else None

        record_http_request(cache, "crossref.work_by_doi")
        data = get_json(
            self._client(),
            f"{_CROSSREF_API}/{doi_norm}",
            source=self.label,
            timeout_seconds=self.config.timeout_seconds,
            max_attempts=self.config.max_attempts,
            headers=self._headers(),
            params=self._params(),
            missing_ok=True,
        )
        msg = (data or {}).get("message") if data else None
        if cache and cache.enabled:
            ttl_days = 90 if msg else 1
            cache.set_json("crossref.work_by_doi", [doi_norm], msg, ttl_seconds=self._ttl_seconds(ttl_days))
        return message_to_candidate(msg) if msg else None

    def search_by_title(self, query: str) -> list[Candidate]:
        query = (query or "").strip()
        if not query:
            return []
        rows = max(1, int(self.config.rows))
        cache = self.cache
        if cache and cache.enabled:
            hit, cached = cache.get_json("crossref.search", [query, str(rows)])
            if hit and isinstance(cached, list):
                return [c for c in (message_to_candidate(m) for m in cached) if c]

        record_http_request(cache, "crossref.search")
        data = get_json(
            self._client(),
            _CROSSREF_API,
            source=self.label,
            timeout_seconds=self.config.timeout_seconds,
            max_attempts=self.config.max_attempts,
            headers=self._headers(),
            params=self._params(**{"query.bibliographic": query, "rows": rows}),
        )
        items = ((data or {}).get("message") or {}).get("items") or []
        if not isinstance(items, list):
            items = []
        if cache and cache.enabled:
            cache.set_json("crossref.search", [query, str(rows)], items, ttl_seconds=self._ttl_seconds(7))
        return [c for c in (message_to_candidate(m) for m in items) if c]
