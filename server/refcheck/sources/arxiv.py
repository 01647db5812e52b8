from __future__ import annotations

import re
import threading
import xml.etree.ElementTree as ET
from dataclasses import dataclass, field

from server.refcheck.analysis.shared.normalize import normalize_doi
from server.refcheck.core.cache import Cache
from server.refcheck.sources.http import RegistryError, get_text, record_http_request
from server.refcheck.sources.registry import BibliographicRegistry, Candidate, RegistryConfig

_ARXIV_API = "https://export.arxiv.org/api/query"
_ATOM_NS = "http://www.w3.org/2005/Atom"
_ARXIV_NS = "http://arxiv.org/schemas/atom"
_ARXIV_DOI_RE = re.compile(r"^10\.48550/arxiv\.(.+)$", re.IGNORECASE)
_VERSION_RE = re.compile(r"v\d+$")


def _clean_text(value: str | None) -> str | None:
    if not value:
        return None
    cleaned = " ".join(value.replace("\n", " ").split())
    return cleaned if cleaned else None


def _extract_arxiv_id(id_url: str | None) -> str | None:
    if not id_url:
        return None
    marker = "/abs/"
    if marker in id_url:
        return _VERSION_RE.sub("", id_url.split(marker, 1)[1].strip("/")) or None
    return _VERSION_RE.sub("", id_url.rstrip("/").split("/")[-1]) or None


def parse_feed(xml_text: str) -> list[dict]:
    """Parse an arXiv Atom feed into plain dicts; raises RegistryError on malformed XML."""
    try:
        root = ET.fromstring(xml_text)
    except ET.ParseError as e:
        raise RegistryError(f"arXiv: malformed Atom feed: {e}") from e

    entries: list[dict] = []
    ns = {"atom": _ATOM_NS, "arxiv": _ARXIV_NS}
    for entry in root.findall("atom:entry", ns):
        id_url = _clean_text(entry.findtext("atom:id", default="", namespaces=ns))
        title = _clean_text(entry.findtext("atom:title", default="", namespaces=ns))
        published = _clean_text(entry.findtext("atom:published", default="", namespaces=ns))
        doi = _clean_text(entry.findtext("arxiv:doi", default="", namespaces=ns))
        journal_ref = _clean_text(entry.findtext("arxiv:journal_ref", default="", namespaces=ns))

        authors: list[str] = []
        for auth in entry.findall("atom:author", ns):
            name = _clean_text(auth.findtext("atom:name", default="", namespaces=ns))
            if name:
                authors.append(name)

        primary_category = entry.find("arxiv:primary_category", ns)
        category_term = primary_category.get("term") if primary_category is not None else None

        entries.append(
            {
                "id": _extract_arxiv_id(id_url),
                "title": title,
                "published": published,
                "authors": authors,
                "doi": normalize_doi(doi or ""),
                "journal_ref": journal_ref,
                "primary_category": category_term or None,
            }
        )
    return entries


def entry_to_candidate(entry: dict) -> Candidate | None:
    if not isinstance(entry, dict) or not entry.get("title"):
        return None
    # The API answers an unknown id_list with a single "Error" entry.
    if entry.get("title") == "Error" and not entry.get("authors"):
        return None
    arxiv_id = entry.get("id")
    published = str(entry.get("published") or "")
    year = int(published[:4]) if published[:4].isdigit() else None
    journal_ref = entry.get("journal_ref")
    doi = entry.get("doi") or (f"10.48550/arxiv.{arxiv_id}" if arxiv_id else None)

    metadata: dict = {"arxiv_id": arxiv_id, "primary_category": entry.get("primary_category")}
    if journal_ref:
        metadata["journal_ref"] = journal_ref
    return Candidate(
        title=entry["title"],
        authors=list(entry.get("authors") or []),
        year=year,
        doi=normalize_doi(doi or ""),
        venue=journal_ref or "arXiv",
        is_open_access=True,
        is_preprint=not journal_ref,
        bibtex_type="article" if journal_ref else "misc",
        metadata=metadata,
        url=f"https://arxiv.org/abs/{arxiv_id}" if arxiv_id else None,
    )


@dataclass
class ArxivClient(BibliographicRegistry):
    name = "arxiv"
    label = "arXiv"

    config: RegistryConfig = field(default_factory=RegistryConfig)
    cache: Cache | None = None
    _session_local: threading.local = field(default_factory=threading.local, init=False, repr=False)

    def _ttl_seconds_for_params(self, params: dict[str, str]) -> float:
        if "id_list" in params:
            return self._ttl_seconds(90)
        if (params.get("search_query") or "").strip().lower().startswith("doi:"):
            return self._ttl_seconds(90)
        return self._ttl_seconds(7)

    def _query(self, params: dict[str, str]) -> list[dict]:
        cache = self.cache
        cache_parts = [f"{k}={params[k]}" for k in sorted(params.keys())]
        if cache and cache.enabled:
            hit, cached = cache.get_json("arxiv.query", cache_parts)
            if hit and isinstance(cached, list):
                return cached
        record_http_request(cache, "arxiv.query")
        text = get_text(
            self._client(),
            _ARXIV_API,
            source=self.label,
            timeout_seconds=self.config.timeout_seconds,
            max_attempts=self.config.max_attempts,
            headers=self._headers(),
            params=params,
        )
        entries = parse_feed(text)
        if cache and cache.enabled:
            cache.set_json("arxiv.query", cache_parts, entries, ttl_seconds=self._ttl_seconds_for_params(params))
        return entries

    def search_by_doi(self, doi: str) -> Candidate | None:
        doi_norm = normalize_doi(doi)
        if not doi_norm:
            return None
        m = _ARXIV_DOI_RE.match(doi_norm)
        if m:
            params = {"id_list": m.group(1)}
        else:
            params = {
                "search_query": f"doi:{doi_norm}",
                "start": "0",
                "max_results": str(max(1, int(self.config.rows))),
            }
        # doi: is a free-text field search, so the hit list can hold unrelated records.
        for entry in self._query(params):
            candidate = entry_to_candidate(entry)
            if candidate is not None and candidate.carries_doi(doi_norm):
                return candidate
        return None

    def search_by_title(self, query: str) -> list[Candidate]:
        q = (query or "").strip()
        if not q:
            return []
        # Phrase-quoted title field search; the API has no bibliographic matcher.
        terms = " ".join(t for t in re.split(r"[^\w]+", q) if t)
        if not terms:
            return []
        params = {"search_query": f'ti:"{terms}"', "start": "0", "max_results": str(max(1, int(self.config.rows)))}
        return [c for c in (entry_to_candidate(e) for e in self._query(params)) if c]
