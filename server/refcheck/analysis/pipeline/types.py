from __future__ import annotations

from dataclasses import dataclass, field
from typing import Literal


VerificationStatus = Literal["verified", "warning", "issue", "retracted", "not_found"]


class InvalidReferenceError(ValueError):
    """Raised when a reference cannot be normalized at all (wrong field types)."""


class BatchCanceled(RuntimeError):
    """Raised when a cancel event stops verification; carries whatever finished first."""

    def __init__(self, message: str = "Canceled.", *, completed: list | None = None) -> None:
        super().__init__(message)
        self.completed = list(completed or [])


@dataclass(frozen=True)
class Reference:
    bibtex_key: str
    title: str
    authors: str
    year: int | None = None
    source: str | None = None
    doi: str | None = None
    url: str | None = None
    ref_id: str | None = None

    @property
    def key(self) -> str:
        return (self.ref_id or self.bibtex_key or "").strip()

    @classmethod
    def from_dict(cls, data: dict) -> "Reference":
        year = data.get("year")
        try:
            year_int = int(str(year).strip()[:4]) if year not in (None, "") else None
        except ValueError:
            year_int = None
        return cls(
            bibtex_key=str(data.get("bibtex_key") or data.get("key") or ""),
            title=data.get("title") or "",
            authors=data.get("authors") or "",
            year=year_int,
            source=data.get("source") or data.get("venue"),
            doi=data.get("doi"),
            url=data.get("url"),
            ref_id=data.get("ref_id") or data.get("id"),
        )


@dataclass(frozen=True)
class RegistryMatch:
    source: str
    found: bool
    confidence: int = 0
    canonical_title: str | None = None
    canonical_authors: str | None = None
    canonical_year: int | None = None
    doi: str | None = None
    venue: str | None = None
    cited_by_count: int | None = None
    is_retracted: bool = False
    is_open_access: bool = False
    is_preprint: bool = False
    bibtex_type: str = "article"
    metadata: dict = field(default_factory=dict)
    url: str | None = None
    method: str | None = None
    error: str | None = None

    @classmethod
    def not_found(cls, source: str, *, error: str | None = None) -> "RegistryMatch":
        return cls(source=source, found=False, confidence=0, error=error)


@dataclass
class VerificationResult:
    reference: Reference
    status: VerificationStatus
    confidence: int
    canonical_title: str | None = None
    canonical_authors: str | None = None
    canonical_year: int | None = None
    canonical_venue: str | None = None
    canonical_doi: str | None = None
    cited_by_count: int | None = None
    is_retracted: bool = False
    bibtex_type: str | None = None
    metadata: dict = field(default_factory=dict)
    issues: list[str] = field(default_factory=list)
    verified_by: list[str] = field(default_factory=list)
    links: dict[str, str] = field(default_factory=dict)
    registry_matches: list[RegistryMatch] = field(default_factory=list)
    unverifiable: bool = False

    duplicate_group_id: str | None = None
    duplicate_group_count: int | None = None
    is_primary_duplicate: bool = False
    is_duplicate: bool = False

    def __post_init__(self) -> None:
        self.confidence = max(0, min(100, int(round(self.confidence or 0))))

    def to_dict(self) -> dict:
        return {
            "ref_id": self.reference.key,
            "bibtex_key": self.reference.bibtex_key,
            "original_title": self.reference.title,
            "original_authors": self.reference.authors,
            "original_year": self.reference.year,
            "status": self.status,
            "confidence": self.confidence,
            "canonical_title": self.canonical_title,
            "canonical_authors": self.canonical_authors,
            "canonical_year": self.canonical_year,
            "venue": self.canonical_venue,
            "doi": self.canonical_doi,
            "cited_by_count": self.cited_by_count,
            "is_retracted": self.is_retracted,
            "bibtex_type": self.bibtex_type,
            "metadata": dict(self.metadata),
            "issues": list(self.issues),
            "verified_by": list(self.verified_by),
            "links": dict(self.links),
            "unverifiable": self.unverifiable,
            "duplicate_group_id": self.duplicate_group_id,
            "duplicate_group_count": self.duplicate_group_count,
            "is_primary_duplicate": self.is_primary_duplicate,
            "is_duplicate": self.is_duplicate,
        }


@dataclass(frozen=True)
class DuplicateGroup:
    group_id: str
    ref_ids: list[str]
    primary_id: str
    count: int
