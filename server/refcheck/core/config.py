from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path


KNOWN_REGISTRIES = ("openalex", "crossref", "semantic_scholar", "arxiv")


def _env_str(name: str, default: str) -> str:
    value = os.getenv(name)
    if value is None:
        return default
    value = value.strip()
    return value if value else default


def _env_int(name: str, default: int, *, min_value: int | None = None, max_value: int | None = None) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        value = default
    else:
        try:
            value = int(raw)
        except Exception as e:
            raise ValueError(f"Invalid integer value for {name}: {raw!r}") from e
    if min_value is not None and value < min_value:
        raise ValueError(f"{name} must be >= {min_value} (got {value})")
    if max_value is not None and value > max_value:
        raise ValueError(f"{name} must be <= {max_value} (got {value})")
    return value


def _env_float(name: str, default: float, *, min_value: float | None = None, max_value: float | None = None) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        value = float(default)
    else:
        try:
            value = float(raw)
        except Exception as e:
            raise ValueError(f"Invalid float value for {name}: {raw!r}") from e
    if min_value is not None and value < min_value:
        raise ValueError(f"{name} must be >= {min_value} (got {value})")
    if max_value is not None and value > max_value:
        raise ValueError(f"{name} must be <= {max_value} (got {value})")
    return value


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    value = raw.strip().lower()
    if value in {"1", "true", "yes", "y", "on"}:
        return True
    if value in {"0", "false", "no", "n", "off"}:
        return False
    raise ValueError(f"Invalid boolean value for {name}: {raw!r}")


def _parse_registries(raw: str) -> tuple[str, ...]:
    names: list[str] = []
    for part in raw.split(","):
        name = part.strip().lower().replace("-", "_")
        if not name:
            continue
        if name not in KNOWN_REGISTRIES:
            raise ValueError(
                f"REFCHECK_REGISTRIES contains unknown registry {name!r} (known: {', '.join(KNOWN_REGISTRIES)})."
            )
        if name not in names:
            names.append(name)
    if not names:
        raise ValueError("REFCHECK_REGISTRIES must name at least one registry.")
    return tuple(names)


@dataclass(frozen=True)
class Settings:
    log_level: str

    registries: tuple[str, ...]
    registry_timeout_seconds: float
    registry_max_attempts: int
    registry_max_concurrent: int
    registry_min_interval_seconds: float
    registry_rows: int
    pacing_seconds: float

    contact_mailto: str
    user_agent: str
    semantic_scholar_api_key: str

    openalex_min_similarity: int
    crossref_min_similarity: int
    semantic_scholar_min_similarity: int
    arxiv_min_similarity: int

    same_paper_doi_enabled: bool
    same_paper_title_year: int
    same_paper_title_author: int
    same_paper_title_year_author: int
    same_paper_title_near_year_author: int
    same_paper_title_doi_year: int
    same_paper_title_floor: int
    author_overlap_min: float

    low_confidence_threshold: int
    duplicate_title_threshold: float
    duplicate_near_miss_threshold: float
    duplicate_max_year_diff: int

    cache_enabled: bool
    cache_dir: Path
    cache_http_ttl_days: int

    @classmethod
    def from_env(cls) -> "Settings":
        log_level = _env_str("REFCHECK_LOG_LEVEL", "INFO")

        registries = _parse_registries(_env_str("REFCHECK_REGISTRIES", "openalex,crossref,semantic_scholar"))
        registry_timeout_seconds = _env_float("REFCHECK_REGISTRY_TIMEOUT_SECONDS", 15.0, min_value=1.0, max_value=120.0)
        registry_max_attempts = _env_int("REFCHECK_REGISTRY_MAX_ATTEMPTS", 2, min_value=1, max_value=5)
        registry_max_concurrent = _env_int("REFCHECK_REGISTRY_MAX_CONCURRENT", 4, min_value=0, max_value=64)
        registry_min_interval_seconds = _env_float(
            "REFCHECK_REGISTRY_MIN_INTERVAL_SECONDS", 0.0, min_value=0.0, max_value=10.0
        )
        registry_rows = _env_int("REFCHECK_REGISTRY_ROWS", 5, min_value=1, max_value=50)
        pacing_seconds = _env_float("REFCHECK_PACING_SECONDS", 0.5, min_value=0.0, max_value=30.0)

        contact_mailto = _env_str("REFCHECK_CONTACT_MAILTO", "")
        user_agent = _env_str(
            "REFCHECK_USER_AGENT",
            f"refcheck/0.1 (mailto:{contact_mailto})" if contact_mailto else "refcheck/0.1",
        )
        semantic_scholar_api_key = _env_str("REFCHECK_SEMANTIC_SCHOLAR_API_KEY", "")

        openalex_min_similarity = _env_int("REFCHECK_OPENALEX_MIN_SIMILARITY", 40, min_value=0, max_value=100)
        crossref_min_similarity = _env_int("REFCHECK_CROSSREF_MIN_SIMILARITY", 50, min_value=0, max_value=100)
        semantic_scholar_min_similarity = _env_int(
            "REFCHECK_SEMANTIC_SCHOLAR_MIN_SIMILARITY", 40, min_value=0, max_value=100
        )
        arxiv_min_similarity = _env_int("REFCHECK_ARXIV_MIN_SIMILARITY", 45, min_value=0, max_value=100)

        same_paper_doi_enabled = _env_bool("REFCHECK_SAME_PAPER_DOI_ENABLED", True)
        same_paper_title_year = _env_int("REFCHECK_SAME_PAPER_TITLE_YEAR", 50, min_value=0, max_value=100)
        same_paper_title_author = _env_int("REFCHECK_SAME_PAPER_TITLE_AUTHOR", 75, min_value=0, max_value=100)
        same_paper_title_year_author = _env_int("REFCHECK_SAME_PAPER_TITLE_YEAR_AUTHOR", 45, min_value=0, max_value=100)
        same_paper_title_near_year_author = _env_int(
            "REFCHECK_SAME_PAPER_TITLE_NEAR_YEAR_AUTHOR", 60, min_value=0, max_value=100
        )
        same_paper_title_doi_year = _env_int("REFCHECK_SAME_PAPER_TITLE_DOI_YEAR", 55, min_value=0, max_value=100)
        same_paper_title_floor = _env_int("REFCHECK_SAME_PAPER_TITLE_FLOOR", 35, min_value=0, max_value=100)
        author_overlap_min = _env_float("REFCHECK_AUTHOR_OVERLAP_MIN", 0.4, min_value=0.0, max_value=1.0)

        low_confidence_threshold = _env_int("REFCHECK_LOW_CONFIDENCE_THRESHOLD", 70, min_value=0, max_value=100)
        duplicate_title_threshold = _env_float("REFCHECK_DUPLICATE_TITLE_THRESHOLD", 98.0, min_value=50.0, max_value=100.0)
        duplicate_near_miss_threshold = _env_float(
            "REFCHECK_DUPLICATE_NEAR_MISS_THRESHOLD", 80.0, min_value=0.0, max_value=100.0
        )
        duplicate_max_year_diff = _env_int("REFCHECK_DUPLICATE_MAX_YEAR_DIFF", 1, min_value=0, max_value=10)

        cache_enabled = _env_bool("REFCHECK_CACHE_ENABLED", False)
        cache_dir = Path(_env_str("REFCHECK_CACHE_DIR", "./data/cache"))
        cache_http_ttl_days = _env_int("REFCHECK_CACHE_HTTP_TTL_DAYS", 30, min_value=0, max_value=3650)

        return cls(
            log_level=log_level,
            registries=registries,
            registry_timeout_seconds=registry_timeout_seconds,
            registry_max_attempts=registry_max_attempts,
            registry_max_concurrent=registry_max_concurrent,
            registry_min_interval_seconds=registry_min_interval_seconds,
            registry_rows=registry_rows,
            pacing_seconds=pacing_seconds,
            contact_mailto=contact_mailto,
            user_agent=user_agent,
            semantic_scholar_api_key=semantic_scholar_api_key,
            openalex_min_similarity=openalex_min_similarity,
            crossref_min_similarity=crossref_min_similarity,
            semantic_scholar_min_similarity=semantic_scholar_min_similarity,
            arxiv_min_similarity=arxiv_min_similarity,
            same_paper_doi_enabled=same_paper_doi_enabled,
            same_paper_title_year=same_paper_title_year,
            same_paper_title_author=same_paper_title_author,
            same_paper_title_year_author=same_paper_title_year_author,
            same_paper_title_near_year_author=same_paper_title_near_year_author,
            same_paper_title_doi_year=same_paper_title_doi_year,
            same_paper_title_floor=same_paper_title_floor,
            author_overlap_min=author_overlap_min,
            low_confidence_threshold=low_confidence_threshold,
            duplicate_title_threshold=duplicate_title_threshold,
            duplicate_near_miss_threshold=duplicate_near_miss_threshold,
            duplicate_max_year_diff=duplicate_max_year_diff,
            cache_enabled=cache_enabled,
            cache_dir=cache_dir,
            cache_http_ttl_days=cache_http_ttl_days,
        )

    def min_similarity_for(self, registry: str) -> int:
        return {
            "openalex": self.openalex_min_similarity,
            "crossref": self.crossref_min_similarity,
            "semantic_scholar": self.semantic_scholar_min_similarity,
            "arxiv": self.arxiv_min_similarity,
        }.get(registry, 40)
