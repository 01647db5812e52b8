import threading
import unittest
from dataclasses import dataclass, field, replace
from unittest import mock

from server.refcheck.analysis.pipeline.types import (
    BatchCanceled,
    InvalidReferenceError,
    Reference,
    RegistryMatch,
)
from server.refcheck.analysis.pipeline.verify import ReferenceVerifier, check_reference_input
from server.refcheck.core.cache import Cache
from server.refcheck.core.config import Settings
from server.refcheck.sources.registry import BibliographicRegistry, Candidate, RegistryConfig


@dataclass
class _FixedRegistry(BibliographicRegistry):
    """Returns a canned match from ``lookup``; optionally blocks until released."""

    label: str = "Fixed"
    match: RegistryMatch | None = None
    release: threading.Event | None = None
    calls: int = 0
    config: RegistryConfig = field(default_factory=RegistryConfig)
    cache: Cache | None = None
    _session_local: threading.local = field(default_factory=threading.local, init=False, repr=False)

    def search_by_doi(self, doi: str) -> Candidate | None:
        return None

    def search_by_title(self, query: str) -> list[Candidate]:
        return []

    def lookup(self, reference: Reference) -> RegistryMatch:
        self.calls += 1
        if self.release is not None:
            self.release.wait(5.0)
        return self.match or RegistryMatch.not_found(self.label)


def _settings(**overrides) -> Settings:
    return replace(Settings.from_env(), pacing_seconds=0.0, low_confidence_threshold=70, **overrides)


def _attention_ref(**kwargs) -> Reference:
    data = {
        "bibtex_key": "vaswani2017",
        "title": "Attention Is All You Need",
        "authors": "Vaswani, A., Shazeer, N.",
        "year": 2017,
        "doi": "10.48550/arXiv.1706.03762",
    }
    data.update(kwargs)
    return Reference(**data)


def _found(source: str, **kwargs) -> RegistryMatch:
    data = {
        "source": source,
        "found": True,
        "confidence": 100,
        "canonical_title": "Attention Is All You Need",
        "canonical_authors": "Ashish Vaswani, Noam Shazeer",
        "canonical_year": 2017,
        "doi": "10.48550/arxiv.1706.03762",
        "venue": "NeurIPS",
        "method": "doi",
    }
    data.update(kwargs)
    return RegistryMatch(**data)


class TestCheckReferenceInput(unittest.TestCase):
    def test_accepts_normal_reference(self) -> None:
        self.assertIsNone(check_reference_input(_attention_ref()))

    def test_rejects_unsearchable_fields(self) -> None:
        self.assertIn("too short", check_reference_input(_attention_ref(title="Short")))
        self.assertIn("URL or DOI", check_reference_input(_attention_ref(title="https://doi.org/10.1/xyz")))
        self.assertIn("missing", check_reference_input(_attention_ref(authors="  ")))
        self.assertIn("placeholder", check_reference_input(_attention_ref(authors="Unknown")))
        self.assertIn("placeholder", check_reference_input(_attention_ref(authors="et al.")))

    def test_non_text_fields_raise(self) -> None:
        with self.assertRaises(InvalidReferenceError):
            check_reference_input(_attention_ref(title=12345))


class TestReferenceVerifier(unittest.TestCase):
    def test_found_everywhere_by_doi_is_verified(self) -> None:
        registries = [
            _FixedRegistry(label="OpenAlex", match=_found("OpenAlex", metadata={"openalex_id": "W2963403868"})),
            _FixedRegistry(label="Crossref", match=_found("Crossref")),
        ]
        result = ReferenceVerifier(registries, _settings()).verify(_attention_ref())

        self.assertEqual(result.status, "verified")
        self.assertEqual(result.confidence, 100)
        self.assertEqual(result.verified_by, ["OpenAlex", "Crossref"])
        self.assertEqual(result.canonical_doi, "10.48550/arxiv.1706.03762")
        self.assertEqual(result.issues, [])
        self.assertEqual(result.links["doi"], "https://doi.org/10.48550/arxiv.1706.03762")
        self.assertEqual(result.links["openalex"], "https://openalex.org/W2963403868")
        self.assertTrue(result.links["google_scholar"].startswith("https://scholar.google.com/scholar?q="))
        self.assertIn("crossref", result.links)

    def test_fabricated_reference_is_not_found_with_findings(self) -> None:
        registries = [_FixedRegistry(label="OpenAlex"), _FixedRegistry(label="Crossref")]
        ref = Reference(
            bibtex_key="fake2021",
            title="Synthetic Benchmarking of Ablation-Driven Models",
            authors="J. Smith",
            year=2021,
        )
        result = ReferenceVerifier(registries, _settings()).verify(ref)

        self.assertEqual(result.status, "not_found")
        self.assertEqual(result.confidence, 0)
        self.assertEqual(result.issues[0], "NOT FOUND in any registry")
        self.assertTrue(any("Synthetic Benchmarking" in issue for issue in result.issues), result.issues)
        self.assertFalse(result.unverifiable)
        self.assertIsNone(result.canonical_title)

    def test_one_registry_down_still_uses_the_others(self) -> None:
        registries = [
            _FixedRegistry(label="OpenAlex", match=RegistryMatch.not_found("OpenAlex", error="timed out")),
            _FixedRegistry(label="Crossref", match=_found("Crossref", confidence=90, method="title")),
        ]
        result = ReferenceVerifier(registries, _settings()).verify(_attention_ref())

        self.assertEqual(result.status, "warning")
        self.assertEqual(result.confidence, 90)
        self.assertEqual(result.verified_by, ["Crossref"])
        self.assertIn("Found in only one registry (Crossref)", result.issues)
        self.assertEqual(len(result.registry_matches), 2)

    def test_every_registry_failing_is_unverifiable(self) -> None:
        registries = [
            _FixedRegistry(label="OpenAlex", match=RegistryMatch.not_found("OpenAlex", error="503")),
            _FixedRegistry(label="Crossref", match=RegistryMatch.not_found("Crossref", error="timeout")),
        ]
        result = ReferenceVerifier(registries, _settings()).verify(_attention_ref())

        self.assertEqual(result.status, "not_found")
        self.assertTrue(result.unverifiable)
        self.assertTrue(any(issue.startswith("UNVERIFIABLE") for issue in result.issues), result.issues)

    def test_retraction_overrides_verified(self) -> None:
        registries = [
            _FixedRegistry(label="OpenAlex", match=_found("OpenAlex")),
            _FixedRegistry(label="Crossref", match=_found("Crossref", is_retracted=True)),
        ]
        result = ReferenceVerifier(registries, _settings()).verify(_attention_ref())

        self.assertEqual(result.status, "retracted")
        self.assertTrue(result.is_retracted)
        self.assertIn("RETRACTED - flagged by Crossref", result.issues)

    def test_low_confidence_is_a_warning(self) -> None:
        registries = [
            _FixedRegistry(label="OpenAlex", match=_found("OpenAlex", confidence=60, method="title")),
            _FixedRegistry(label="Crossref", match=_found("Crossref", confidence=55, method="title")),
        ]
        result = ReferenceVerifier(registries, _settings()).verify(_attention_ref())

        self.assertEqual(result.status, "warning")
        self.assertEqual(result.confidence, 60)
        self.assertIn("Low confidence match (60%)", result.issues)

    def test_similar_but_different_paper_is_not_found(self) -> None:
        other = _found(
            "OpenAlex",
            confidence=45,
            canonical_title="Medieval poetry traditions in Europe",
            canonical_authors="Jane Doe",
            canonical_year=1990,
            doi=None,
            method="title",
        )
        registries = [_FixedRegistry(label="OpenAlex", match=other), _FixedRegistry(label="Crossref")]
        result = ReferenceVerifier(registries, _settings()).verify(_attention_ref(doi=None))

        self.assertEqual(result.status, "not_found")
        self.assertEqual(result.confidence, 0)
        self.assertIsNone(result.canonical_title)
        self.assertIsNone(result.canonical_doi)
        self.assertTrue(result.issues[0].startswith("DIFFERENT PAPER"), result.issues)
        self.assertIn("The cited entry may be fabricated or mistyped", result.issues)
        self.assertFalse(any("Medieval" in i and "registry title" in i for i in result.issues))

    def test_year_and_title_bands_and_preprint_note(self) -> None:
        registries = [
            _FixedRegistry(label="OpenAlex", match=_found("OpenAlex", canonical_year=2016, is_preprint=True, venue="arXiv")),
            _FixedRegistry(label="Crossref", match=_found("Crossref", canonical_year=2016)),
        ]
        result = ReferenceVerifier(registries, _settings()).verify(_attention_ref(doi=None))

        self.assertEqual(result.status, "verified")
        self.assertTrue(any(i.startswith("Year mismatch: cited 2017, registry 2016") for i in result.issues))
        self.assertIn("No DOI in citation (registry DOI: 10.48550/arxiv.1706.03762)", result.issues)
        self.assertTrue(any(i.startswith("Preprint - arXiv") for i in result.issues))

    def test_extraction_error_skips_registries(self) -> None:
        registry = _FixedRegistry(label="OpenAlex", match=_found("OpenAlex"))
        result = ReferenceVerifier([registry], _settings()).verify(_attention_ref(title="Too short"))

        self.assertEqual(result.status, "warning")
        self.assertEqual(result.confidence, 0)
        self.assertTrue(result.issues[0].startswith("EXTRACTION ERROR"))
        self.assertEqual(registry.calls, 0)

    def test_slow_registry_times_out(self) -> None:
        release = threading.Event()
        registries = [
            _FixedRegistry(label="OpenAlex", match=_found("OpenAlex"), release=release),
            _FixedRegistry(label="Crossref", match=_found("Crossref")),
        ]
        try:
            result = ReferenceVerifier(registries, _settings(), settle_timeout=0.2).verify(_attention_ref())
        finally:
            release.set()

        self.assertEqual(result.verified_by, ["Crossref"])
        self.assertIn("timed out", result.registry_matches[0].error or "")
        self.assertEqual(result.status, "warning")

    def test_cancel_abandons_in_flight_lookups(self) -> None:
        release = threading.Event()
        cancel = threading.Event()
        registries = [_FixedRegistry(label="OpenAlex", release=release)]
        timer = threading.Timer(0.05, cancel.set)
        timer.start()
        try:
            with self.assertRaises(BatchCanceled):
                ReferenceVerifier(registries, _settings(), settle_timeout=5.0).verify(
                    _attention_ref(), cancel_event=cancel
                )
        finally:
            timer.cancel()
            release.set()

    def test_cancel_before_start(self) -> None:
        cancel = threading.Event()
        cancel.set()
        registry = _FixedRegistry(label="OpenAlex")
        with self.assertRaises(BatchCanceled):
            ReferenceVerifier([registry], _settings()).verify(_attention_ref(), cancel_event=cancel)
        self.assertEqual(registry.calls, 0)

class TestIssueBands(unittest.TestCase):
    def _verify_with_title_score(self, score: int, **found_kwargs):
        registries = [
            _FixedRegistry(label="OpenAlex", match=_found("OpenAlex", **found_kwargs)),
            _FixedRegistry(label="Crossref", match=_found("Crossref", **found_kwargs)),
        ]
        with mock.patch("server.refcheck.analysis.match.same_paper.match_likelihood", return_value=score):
            return ReferenceVerifier(registries, _settings()).verify(_attention_ref())

    def test_title_bands(self) -> None:
        registry_title = "Attention Is All You Need: Revisited"
        cases = [
            (80, None),
            (79, "Minor title difference (79% similar)"),
            (60, "Minor title difference (60% similar)"),
            (59, "MAJOR title difference (59% similar)"),
            (30, "MAJOR title difference (30% similar)"),
            (29, "CRITICAL title mismatch (29% similar)"),
        ]
        for score, expected in cases:
            with self.subTest(score=score):
                result = self._verify_with_title_score(score, canonical_title=registry_title)
                title_issues = [i for i in result.issues if "title" in i.lower() and "similar" in i]
                if expected is None:
                    self.assertEqual(title_issues, [])
                else:
                    self.assertEqual(len(title_issues), 1, result.issues)
                    self.assertTrue(title_issues[0].startswith(expected), title_issues)
                    self.assertIn(f'registry title is "{registry_title}"', title_issues[0])

    def test_year_bands(self) -> None:
        cases = [
            (2017, None),
            (2012, "Year mismatch: cited 2017, registry 2012"),
            (2011, "CRITICAL year mismatch: cited 2017, registry 2011"),
            (2009, "CRITICAL year mismatch: cited 2017, registry 2009"),
        ]
        for year, expected in cases:
            with self.subTest(year=year):
                result = self._verify_with_title_score(100, canonical_year=year)
                year_issues = [i for i in result.issues if "year mismatch" in i.lower()]
                if expected is None:
                    self.assertEqual(year_issues, [])
                else:
                    self.assertEqual(len(year_issues), 1, result.issues)
                    self.assertTrue(year_issues[0].startswith(expected), year_issues)
                self.assertEqual(result.status, "verified")


if __name__ == "__main__":
    unittest.main()
