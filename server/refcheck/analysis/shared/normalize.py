from __future__ import annotations

import re


_DOI_CLEAN_RE = re.compile(r"^[\s\[\(\{<]*(?P<doi>10\.\d{4,9}/[-._;()/:A-Z0-9]+)", re.IGNORECASE)
_DOI_CORE_RE = re.compile(r"(10\.\d{4,9}/[-._;()/:A-Z0-9]+)", re.IGNORECASE)
_DOI_PREFIX_RE = re.compile(r"^(?:(?:https?://)?(?:dx\.)?doi\.org/|doi:\s*)", re.IGNORECASE)


def normalize_doi(raw: str | None) -> str | None:
    if not raw:
        return None
    raw = raw.strip()

    match = _DOI_CLEAN_RE.match(raw)
    if match:
        candidate = match.group("doi")
    else:
        m2 = _DOI_CORE_RE.search(raw)
        if m2:
            candidate = m2.group(1)
        else:
            # Registrant codes shorter than the standard 4 digits still identify a record
            # for equality purposes; only prefix noise is removed.
            candidate = raw
            while True:
                stripped = _DOI_PREFIX_RE.sub("", candidate, count=1).strip()
                if stripped == candidate:
                    break
                candidate = stripped

    candidate = candidate.rstrip(").,;]").strip()
    return candidate.lower() or None


_TITLE_STOPWORDS = frozenset(
    {
        "a",
        "an",
        "the",
        "of",
        "for",
        "in",
        "on",
        "at",
        "to",
        "with",
        "by",
        "from",
        "and",
        "or",
        "using",
        "based",
        "via",
        "into",
    }
)

_NON_WORD_RE = re.compile(r"[\W_]+")


def normalize_title(title: str | None) -> str:
    if not title:
        return ""
    cleaned = _NON_WORD_RE.sub(" ", title.lower())
    return " ".join(tok for tok in cleaned.split() if tok not in _TITLE_STOPWORDS)


_AUTHOR_SPLIT_RE = re.compile(r"\s*(?:[,;&]|\band\b)\s*", re.IGNORECASE)
_ET_AL_RE = re.compile(r"\bet\.?\s*al\b\.?", re.IGNORECASE)


def split_authors(authors: str | None) -> list[str]:
    if not authors:
        return []
    return [part.strip() for part in _AUTHOR_SPLIT_RE.split(authors) if part and part.strip()]


def has_et_al(authors: str | None) -> bool:
    return bool(authors) and bool(_ET_AL_RE.search(authors or ""))


def strip_et_al(authors: str | None) -> str:
    if not authors:
        return ""
    return " ".join(_ET_AL_RE.sub(" ", authors).split())


def first_author_surname(authors: str | None) -> str | None:
    names = split_authors(strip_et_al(authors))
    if not names:
        return None
    tokens = names[0].split()
    if not tokens:
        return None
    surname = tokens[-1].strip(" .")
    return surname or None


def normalize_author_name(value: str | None) -> str:
    """Lowercased author name with periods dropped and whitespace collapsed."""
    if not value:
        return ""
    return " ".join(value.lower().replace(".", " ").split())
