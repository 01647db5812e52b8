from __future__ import annotations

from server.refcheck.core.cache import Cache
from server.refcheck.core.config import Settings
from server.refcheck.sources.arxiv import ArxivClient
from server.refcheck.sources.crossref import CrossrefClient
from server.refcheck.sources.openalex import OpenAlexClient
from server.refcheck.sources.registry import BibliographicRegistry, RegistryConfig
from server.refcheck.sources.semantic_scholar import SemanticScholarClient

_CLIENTS: dict[str, type[BibliographicRegistry]] = {
    "openalex": OpenAlexClient,
    "crossref": CrossrefClient,
    "semantic_scholar": SemanticScholarClient,
    "arxiv": ArxivClient,
}


def build_registries(settings: Settings, cache: Cache | None = None) -> list[BibliographicRegistry]:
    """Instantiate the configured registries in ``settings.registries`` order."""
    registries: list[BibliographicRegistry] = []
    for name in settings.registries:
        client_cls = _CLIENTS[name]
        registries.append(
            client_cls(
                config=RegistryConfig.for_registry(settings, name),
                cache=cache.scoped(name) if cache else None,
            )
        )
    return registries
