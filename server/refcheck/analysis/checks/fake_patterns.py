from __future__ import annotations

import datetime as dt
import re

from server.refcheck.analysis.pipeline.types import Reference


_BOILERPLATE_TITLE_PATTERNS: list[tuple[str, re.Pattern[str]]] = [
    ("Synthetic <noun>", re.compile(r"\bsynthetic\s+[a-z][\w-]*", re.IGNORECASE)),
    ("Ablation-Driven", re.compile(r"\bablation[\s-]+driven\b", re.IGNORECASE)),
    (
        "Comprehensive Survey of X in the Era of Y",
        re.compile(r"\bcomprehensive\s+survey\s+of\s+.+?\s+in\s+the\s+era\s+of\b", re.IGNORECASE),
    ),
    ("Towards Better Understanding", re.compile(r"\btowards?\s+(?:a\s+)?better\s+understanding\b", re.IGNORECASE)),
    ("Novel Approach for/to X using Y", re.compile(r"\bnovel\s+approach\s+(?:for|to)\s+.+?\s+using\b", re.IGNORECASE)),
    (
        "Deep Learning-based X for Y",
        re.compile(r"\bdeep\s+learning[\s-]+based\s+.+?\s+for\b", re.IGNORECASE),
    ),
]

_BUZZWORDS = frozenset(
    {"synthetic", "ablation", "comprehensive", "novel", "advanced", "intelligent", "smart", "efficient"}
)

_AUTHOR_DIGITS_RE = re.compile(r"\d{3,}")
_AUTHOR_PLACEHOLDER_RE = re.compile(r"\b(test|fake|dummy|lorem|ipsum)\b", re.IGNORECASE)
_TITLE_PLACEHOLDER_RE = re.compile(r"\b(x{3,}|placeholder|lorem|ipsum|dummy|untitled|tbd)\b", re.IGNORECASE)
_WORD_RE = re.compile(r"[A-Za-z][\w'-]*")
_CASE_BREAK_RE = re.compile(r"[a-z][A-Z]")
_WORKSHOP_RE = re.compile(r"\bproceedings\s+of\s+the\s+\d+(?:st|nd|rd|th)\b.*\bworkshop\b", re.IGNORECASE)

# Brand and domain terms whose internal capitals are legitimate.
_CASE_EXCEPTIONS = frozenset(
    {
        "alexnet",
        "arxiv",
        "biobert",
        "biorxiv",
        "chatgpt",
        "crossref",
        "deepmind",
        "distilbert",
        "github",
        "imagenet",
        "javascript",
        "latex",
        "linkedin",
        "medrxiv",
        "mobilenet",
        "openai",
        "openalex",
        "postgresql",
        "powerpoint",
        "pubmed",
        "pytorch",
        "resnet",
        "roberta",
        "scikit-learn",
        "tensorflow",
        "typescript",
        "whatsapp",
        "wordnet",
        "youtube",
    }
)

_MIN_TITLE_CHARS = 15
_MAX_TITLE_CHARS = 300
_MIN_YEAR = 1900


def _case_break_tokens(title: str) -> list[str]:
    hits: list[str] = []
    for word in _WORD_RE.findall(title):
        if not _CASE_BREAK_RE.search(word):
            continue
        lowered = word.lower()
        if lowered in _CASE_EXCEPTIONS:
            continue
        # eBay, iPhone, mRNA, McDonald, MacArthur
        if re.match(r"^[a-z][A-Z]", word) or re.match(r"^(?:Mc|Mac)[A-Z]", word):
            continue
        # Plural acronyms such as CNNs or LLMs.
        if re.fullmatch(r"[A-Z]{2,}s", word):
            continue
        hits.append(word)
    return hits


def detect_fake_patterns(reference: Reference, *, today: dt.date | None = None) -> list[str]:
    """
    Heuristic findings that a reference may be fabricated or corrupted.

    Advisory only: callers append these to issues and never change status on them.
    """
    findings: list[str] = []
    title = (reference.title or "").strip()
    authors = (reference.authors or "").strip()

    for label, pattern in _BOILERPLATE_TITLE_PATTERNS:
        m = pattern.search(title)
        if m:
            findings.append(f'SUSPICIOUS TITLE - matches generated-text phrasing "{label}": "{m.group(0)}"')

    words = {w.lower() for w in _WORD_RE.findall(title)}
    buzz = sorted(words & _BUZZWORDS)
    if len(buzz) >= 3:
        findings.append(f"SUSPICIOUS TITLE - buzzword-heavy ({', '.join(buzz)})")

    if _AUTHOR_DIGITS_RE.search(authors):
        findings.append(f'SUSPICIOUS AUTHORS - digit sequence in author names: "{authors}"')
    m = _AUTHOR_PLACEHOLDER_RE.search(authors)
    if m:
        findings.append(f'SUSPICIOUS AUTHORS - placeholder name "{m.group(0)}"')
    if authors and len("".join(ch for ch in authors if ch.isalpha())) < 3:
        findings.append(f'SUSPICIOUS AUTHORS - implausibly short author field: "{authors}"')

    m = _TITLE_PLACEHOLDER_RE.search(title)
    if m:
        findings.append(f'SUSPICIOUS TITLE - placeholder text "{m.group(0)}"')
    if len(title) < _MIN_TITLE_CHARS:
        findings.append(f"SUSPICIOUS TITLE - unusually short ({len(title)} characters)")
    elif len(title) > _MAX_TITLE_CHARS:
        findings.append(f"SUSPICIOUS TITLE - unusually long ({len(title)} characters)")

    if reference.year is not None:
        current_year = (today or dt.date.today()).year
        if reference.year > current_year + 1:
            findings.append(f"IMPOSSIBLE YEAR - {reference.year} is in the future")
        elif reference.year < _MIN_YEAR:
            findings.append(f"IMPOSSIBLE YEAR - {reference.year} predates {_MIN_YEAR}")

    breaks = _case_break_tokens(title)
    if breaks:
        findings.append(f"CORRUPTED TITLE - unexpected capitalisation inside words ({', '.join(breaks[:3])})")

    if _WORKSHOP_RE.search(title):
        findings.append("UNVERIFIABLE VENUE - generic numbered workshop proceedings title")

    return findings
