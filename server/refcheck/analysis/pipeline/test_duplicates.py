import unittest

from server.refcheck.analysis.pipeline.duplicates import detect_duplicates
from server.refcheck.analysis.pipeline.types import Reference, VerificationResult


def _result(key: str, title: str, *, year: int | None = 2017, doi: str | None = None, canonical_doi=None):
    ref = Reference(bibtex_key=key, title=title, authors="Doe, J.", year=year, doi=doi)
    return VerificationResult(reference=ref, status="verified", confidence=95, canonical_doi=canonical_doi)


class TestDetectDuplicates(unittest.TestCase):
    def test_same_doi_in_different_spellings_is_grouped(self) -> None:
        results = [
            _result("a", "A Study of Widgets", doi="10.1/xyz"),
            _result("b", "Widgets: An Entirely Different Title", doi="https://doi.org/10.1/XYZ"),
        ]
        groups = detect_duplicates(results)

        self.assertEqual(len(groups), 1)
        group = groups[0]
        self.assertEqual(group.group_id, "dup-1")
        self.assertEqual(group.ref_ids, ["a", "b"])
        self.assertEqual(group.primary_id, "a")
        self.assertEqual(group.count, 2)

        primary, dup = results
        self.assertTrue(primary.is_primary_duplicate)
        self.assertFalse(primary.is_duplicate)
        self.assertEqual(primary.issues, [])
        self.assertTrue(dup.is_duplicate)
        self.assertEqual(dup.duplicate_group_id, "dup-1")
        self.assertEqual(dup.duplicate_group_count, 2)
        self.assertIn("Duplicate - appears 2 times in your bibliography", dup.issues)
        self.assertEqual(dup.status, "verified")

    def test_similar_but_distinct_titles_are_not_grouped(self) -> None:
        results = [
            _result("a", "Attention Is All You Need"),
            _result("b", "Attention Is Not All You Need"),
        ]
        with self.assertLogs("server.refcheck.analysis.pipeline.duplicates", level="INFO") as logs:
            groups = detect_duplicates(results)

        self.assertEqual(groups, [])
        self.assertTrue(any("Near-duplicate" in line for line in logs.output))
        self.assertIsNone(results[1].duplicate_group_id)

    def test_near_identical_titles_within_a_year_are_grouped(self) -> None:
        results = [
            _result("a", "Deep residual learning for image recognition in convolutional networks", year=2016),
            _result("b", "Deep Residual Learning for Image Recogntion in Convolutional Networks.", year=2017),
        ]
        groups = detect_duplicates(results)
        self.assertEqual([g.ref_ids for g in groups], [["a", "b"]])

    def test_same_title_far_apart_in_time_is_not_grouped(self) -> None:
        results = [_result("a", "Attention Is All You Need", year=2017), _result("b", "Attention Is All You Need", year=2020)]
        self.assertEqual(detect_duplicates(results), [])

    def test_missing_year_blocks_title_rule(self) -> None:
        results = [_result("a", "Attention Is All You Need", year=None), _result("b", "Attention Is All You Need")]
        self.assertEqual(detect_duplicates(results), [])

    def test_links_are_transitive(self) -> None:
        results = [
            _result("a", "First Version of the Work", doi="10.5555/abc"),
            _result("x", "An Unrelated Paper About Something Else"),
            _result("b", "Second Version of the Work", doi="10.5555/ABC"),
            _result("c", "Second Version of the Work"),
        ]
        groups = detect_duplicates(results)

        self.assertEqual(len(groups), 1)
        self.assertEqual(groups[0].ref_ids, ["a", "b", "c"])
        self.assertEqual(groups[0].primary_id, "a")
        self.assertIn("Duplicate - appears 3 times in your bibliography", results[3].issues)
        self.assertIsNone(results[1].duplicate_group_id)

    def test_canonical_doi_stands_in_for_missing_reference_doi(self) -> None:
        results = [
            _result("a", "Widgets in Practice", doi="10.1234/w"),
            _result("b", "Practical Widgetry, Revisited", canonical_doi="10.1234/W"),
        ]
        self.assertEqual(len(detect_duplicates(results)), 1)

    def test_groups_are_numbered_by_primary_position(self) -> None:
        results = [
            _result("a", "Alpha Paper", doi="10.1/a"),
            _result("b", "Beta Paper", doi="10.1/b"),
            _result("c", "Beta Paper Again", doi="10.1/b"),
            _result("d", "Alpha Paper Again", doi="10.1/a"),
        ]
        groups = detect_duplicates(results)
        self.assertEqual([(g.group_id, g.primary_id) for g in groups], [("dup-1", "a"), ("dup-2", "b")])

    def test_shared_bibtex_keys_get_positional_ids(self) -> None:
        results = [
            _result("smith2020", "Graph Neural Networks for Traffic", doi="10.1/gnn"),
            _result("other", "Unrelated Work on Compilers"),
            _result("smith2020", "Graph neural networks for traffic", doi="10.1/GNN"),
        ]
        (group,) = detect_duplicates(results)
        self.assertEqual(group.ref_ids, ["smith2020#0", "smith2020#2"])
        self.assertEqual(group.primary_id, "smith2020#0")
        self.assertTrue(results[0].is_primary_duplicate)
        self.assertTrue(results[2].is_duplicate)

    def test_empty_and_single_inputs(self) -> None:
        self.assertEqual(detect_duplicates([]), [])
        self.assertEqual(detect_duplicates([_result("a", "Only One Here")]), [])


if __name__ == "__main__":
    unittest.main()
