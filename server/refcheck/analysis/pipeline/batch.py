from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Sequence

from server.refcheck.analysis.pipeline.duplicates import detect_duplicates
from server.refcheck.analysis.pipeline.types import BatchCanceled, DuplicateGroup, Reference, VerificationResult
from server.refcheck.analysis.pipeline.verify import ReferenceVerifier
from server.refcheck.core.config import Settings

logger = logging.getLogger(__name__)

__all__ = ["BatchCanceled", "BatchReport", "verify_batch"]


@dataclass
class BatchReport:
    results: list[VerificationResult] = field(default_factory=list)
    duplicate_groups: list[DuplicateGroup] = field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.results)

    @property
    def verified(self) -> int:
        return sum(1 for r in self.results if r.status == "verified")

    @property
    def issues(self) -> int:
        return sum(1 for r in self.results if r.status in {"issue", "retracted", "not_found"})

    @property
    def warnings(self) -> int:
        return sum(1 for r in self.results if r.status == "warning")

    @property
    def duplicates(self) -> int:
        return sum(1 for r in self.results if r.is_duplicate)

    def summary(self) -> dict[str, int]:
        return {
            "total": self.total,
            "verified": self.verified,
            "issues": self.issues,
            "warnings": self.warnings,
            "duplicates": self.duplicates,
            "duplicate_groups": len(self.duplicate_groups),
        }

    def to_dict(self) -> dict:
        return {
            "summary": self.summary(),
            "results": [r.to_dict() for r in self.results],
            "duplicate_groups": [
                {"group_id": g.group_id, "ref_ids": list(g.ref_ids), "primary_id": g.primary_id, "count": g.count}
                for g in self.duplicate_groups
            ],
        }


def _with_fallback_id(reference: Reference, position: int) -> Reference:
    if reference.key:
        return reference
    return Reference(
        bibtex_key=reference.bibtex_key,
        title=reference.title,
        authors=reference.authors,
        year=reference.year,
        source=reference.source,
        doi=reference.doi,
        url=reference.url,
        ref_id=f"ref-{position}",
    )


def verify_batch(
    references: Sequence[Reference],
    verifier: ReferenceVerifier,
    *,
    settings: Settings,
    cancel_event: threading.Event | None = None,
    progress: Callable[[str, float | None], None] | None = None,
    dedupe: bool = True,
) -> BatchReport:
    """
    Verify references one at a time with a fixed pause between them, then group duplicates.

    Raises BatchCanceled (carrying the finished results) when ``cancel_event`` is set.
    """
    total = len(references)
    report = BatchReport()
    if progress:
        progress(f"Verifying {total} references", 0.0)

    pacing = max(0.0, float(settings.pacing_seconds))
    for idx, ref in enumerate(references, start=1):
        if cancel_event is not None and cancel_event.is_set():
            raise BatchCanceled("Canceled by user.", completed=report.results)
        if idx > 1 and pacing > 0:
            if cancel_event is not None:
                if cancel_event.wait(pacing):
                    raise BatchCanceled("Canceled by user.", completed=report.results)
            else:
                time.sleep(pacing)

        try:
            result = verifier.verify(_with_fallback_id(ref, idx), cancel_event=cancel_event)
        except BatchCanceled as e:
            raise BatchCanceled(str(e), completed=report.results) from e
        report.results.append(result)
        if progress:
            progress(f"Verified {idx}/{total} references", idx / total)

    if dedupe:
        report.duplicate_groups = detect_duplicates(
            report.results,
            title_threshold=settings.duplicate_title_threshold,
            near_miss_threshold=settings.duplicate_near_miss_threshold,
            max_year_diff=settings.duplicate_max_year_diff,
        )
    logger.info("Batch finished: %s", report.summary())
    return report
