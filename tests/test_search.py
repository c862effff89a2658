"""Tests for searching stored OCR text."""

from pathlib import Path

import pytest

from photo_recall.database import ResultStore
from photo_recall.errors import InvalidQuery
from photo_recall.ingest import ingest_directory
from photo_recall.search import FUZZY_THRESHOLD, MatchMode, fuzzy_ratio, search

BOX = (0, 0, 100, 20)


@pytest.fixture
def indexed(store, backend, photos_dir: Path, make_image):
    """Store with a small set of OCR'd photos.

    photos/beach.jpg        "OPEN 24 HOURS"
    photos/menu.jpg         "Espresso 3.50", "Open daily"
    photos/receipt.png      "TOTAL 12.99" (low confidence)
    photos/blurry.jpg       OCR failure
    photos/trip/sign.png    "Hours of operation"
    """
    beach = make_image(photos_dir, "beach.jpg")
    menu = make_image(photos_dir, "menu.jpg")
    receipt = make_image(photos_dir, "receipt.png")
    blurry = make_image(photos_dir, "blurry.jpg")
    sign = make_image(photos_dir / "trip", "sign.png")

    backend.register(beach, [("OPEN 24 HOURS", 0.95, BOX)])
    backend.register(menu, [("Espresso 3.50", 0.9, BOX), ("Open daily", 0.8, BOX)])
    backend.register(receipt, [("TOTAL 12.99", 0.3, BOX)])
    backend.register(blurry, RuntimeError("no text lines detected"))
    backend.register(sign, [("Hours of operation", 0.85, BOX)])

    ingest_directory(store, photos_dir, backend, recursive=True)
    return store


def names(hits) -> list[str]:
    return [hit.image.name for hit in hits]


class TestSubstringSearch:
    """Tests for the default substring mode."""

    @pytest.mark.integration
    def test_finds_photo_by_its_text(self, indexed):
        hits = search(indexed, "24 hours")

        assert names(hits) == ["beach.jpg"]
        assert [span.text for span in hits[0].spans] == ["OPEN 24 HOURS"]

    @pytest.mark.integration
    def test_exact_stored_text_is_always_found(self, indexed):
        for text in ("OPEN 24 HOURS", "Espresso 3.50", "TOTAL 12.99", "Hours of operation"):
            hits = search(indexed, text)
            assert any(span.text == text for hit in hits for span in hit.spans), text

    @pytest.mark.integration
    def test_case_insensitive(self, indexed):
        assert names(search(indexed, "open")) == names(search(indexed, "OPEN"))

    @pytest.mark.integration
    def test_no_match_returns_empty_list(self, indexed):
        assert search(indexed, "xyzzy") == []

    @pytest.mark.integration
    @pytest.mark.parametrize("mode", list(MatchMode))
    @pytest.mark.parametrize("query", ["", "   "])
    def test_empty_query_returns_empty_list(self, indexed, query, mode):
        assert search(indexed, query, mode=mode) == []

    @pytest.mark.integration
    def test_failed_images_are_never_returned(self, indexed):
        assert search(indexed, "no text lines") == []
        assert all(hit.image.status.value == "done" for hit in search(indexed, "o"))

    @pytest.mark.integration
    def test_ordering_by_span_count_then_path(self, indexed, photos_dir: Path):
        hits = search(indexed, "o", directory=photos_dir, recursive=True)

        # menu.jpg matches in two spans, the rest in one; ties sorted by path
        assert names(hits)[0] == "menu.jpg"
        assert hits[0].score == 2.0
        tied = [hit.image.path for hit in hits[1:]]
        assert tied == sorted(tied)

    @pytest.mark.integration
    def test_repeated_queries_are_identical(self, indexed):
        first = [(hit.image.path, hit.score) for hit in search(indexed, "o")]
        second = [(hit.image.path, hit.score) for hit in search(indexed, "o")]

        assert first == second

    @pytest.mark.integration
    @pytest.mark.parametrize("mode", list(MatchMode))
    def test_search_reads_while_another_handle_is_writing(self, indexed, mode):
        # Uncommitted writes on the first handle are invisible to the second
        indexed.conn.execute("BEGIN IMMEDIATE")
        try:
            indexed.conn.execute("DELETE FROM text_spans")
            with ResultStore(indexed.db_path) as reader:
                hits = search(reader, "24 hours", mode=mode)
        finally:
            indexed.conn.execute("ROLLBACK")

        assert names(hits) == ["beach.jpg"]

    @pytest.mark.integration
    def test_spans_ordered_by_index(self, indexed):
        hit = search(indexed, "e")[0]

        assert [span.span_index for span in hit.spans] == sorted(
            span.span_index for span in hit.spans
        )

    @pytest.mark.integration
    def test_limit(self, indexed):
        assert len(search(indexed, "o", limit=2)) == 2
        assert len(search(indexed, "o")) > 2

    @pytest.mark.integration
    def test_min_confidence(self, indexed):
        assert names(search(indexed, "total")) == ["receipt.png"]
        assert search(indexed, "total", min_confidence=0.5) == []


class TestDirectoryScope:
    """Tests for restricting search to a directory."""

    @pytest.mark.integration
    def test_directory_excludes_subdirectories_by_default(self, indexed, photos_dir: Path):
        assert names(search(indexed, "hours", directory=photos_dir)) == ["beach.jpg"]

    @pytest.mark.integration
    def test_recursive_includes_subdirectories(self, indexed, photos_dir: Path):
        hits = search(indexed, "hours", directory=photos_dir, recursive=True)

        assert sorted(names(hits)) == ["beach.jpg", "sign.png"]

    @pytest.mark.integration
    def test_subdirectory_only(self, indexed, photos_dir: Path):
        assert names(search(indexed, "hours", directory=photos_dir / "trip")) == ["sign.png"]

    @pytest.mark.integration
    def test_unindexed_directory_returns_empty(self, indexed, tmp_path: Path):
        assert search(indexed, "hours", directory=tmp_path / "elsewhere") == []


class TestFtsSearch:
    """Tests for FTS5 query mode."""

    @pytest.mark.integration
    def test_word_match(self, indexed):
        assert names(search(indexed, "espresso", mode=MatchMode.FTS)) == ["menu.jpg"]

    @pytest.mark.integration
    def test_phrase_match(self, indexed):
        assert names(search(indexed, '"24 hours"', mode="fts")) == ["beach.jpg"]

    @pytest.mark.integration
    def test_prefix_match(self, indexed):
        hits = search(indexed, "espr*", mode=MatchMode.FTS)

        assert names(hits) == ["menu.jpg"]
        assert [span.text for span in hits[0].spans] == ["Espresso 3.50"]

    @pytest.mark.integration
    def test_boolean_operators(self, indexed):
        hits = search(indexed, "hours NOT open", mode=MatchMode.FTS)

        assert names(hits) == ["sign.png"]

    @pytest.mark.integration
    @pytest.mark.parametrize("query", ['"unterminated', "(hours", "hours OR"])
    def test_malformed_query_raises(self, indexed, query):
        with pytest.raises(InvalidQuery):
            search(indexed, query, mode=MatchMode.FTS)

    @pytest.mark.integration
    def test_substring_mode_accepts_fts_syntax_literally(self, indexed):
        assert search(indexed, '"unterminated') == []


class TestFuzzySearch:
    """Tests for approximate matching."""

    @pytest.mark.unit
    def test_fuzzy_ratio_exact_substring(self):
        assert fuzzy_ratio("hours", "OPEN 24 HOURS") == 1.0

    @pytest.mark.unit
    def test_fuzzy_ratio_typo_above_threshold(self):
        assert fuzzy_ratio("expresso", "Espresso 3.50") >= FUZZY_THRESHOLD

    @pytest.mark.unit
    def test_fuzzy_ratio_unrelated_below_threshold(self):
        assert fuzzy_ratio("giraffe", "OPEN 24 HOURS") < FUZZY_THRESHOLD

    @pytest.mark.unit
    def test_fuzzy_ratio_empty(self):
        assert fuzzy_ratio("", "text") == 0.0
        assert fuzzy_ratio("text", "") == 0.0

    @pytest.mark.integration
    def test_fuzzy_search_tolerates_ocr_typos(self, indexed):
        hits = search(indexed, "expresso", mode=MatchMode.FUZZY)

        assert names(hits) == ["menu.jpg"]
        assert FUZZY_THRESHOLD <= hits[0].score < 1.0

    @pytest.mark.integration
    def test_exact_match_scores_highest(self, indexed):
        hits = search(indexed, "hours", mode=MatchMode.FUZZY)

        assert hits
        assert all(hit.score == 1.0 for hit in hits)
        assert [hit.image.path for hit in hits] == sorted(hit.image.path for hit in hits)

