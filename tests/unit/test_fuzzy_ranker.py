"""Unit tests for RapidFuzz-based catalog ranking."""

from __future__ import annotations

import pytest

from tests.factories import make_draft, make_entry
from tourquote.matching.fuzzy_ranker import FuzzyRanker, similarity


class TestSimilarity:
    def test_identical_names_score_one(self):
        assert similarity(make_draft("N Seoul Tower"), make_entry(1, "N Seoul Tower")) == 1.0

    def test_case_and_whitespace_insensitive(self):
        score = similarity(make_draft("  n   seoul TOWER "), make_entry(1, "N Seoul Tower"))
        assert score == 1.0

    def test_word_order_insensitive(self):
        score = similarity(make_draft("Market Gwangjang"), make_entry(1, "Gwangjang Market"))
        assert score == 1.0

    def test_local_alias_considered(self):
        draft = make_draft("Gyeongbok Palace", name_local="경복궁")
        entry = make_entry(1, "Gyeongbokgung", name_local="경복궁")

        assert similarity(draft, entry) == 1.0

    def test_unrelated_names_score_low(self):
        assert similarity(make_draft("Haeundae Beach"), make_entry(1, "N Seoul Tower")) < 0.5


class TestFuzzyRanker:
    def test_threshold_validated(self):
        with pytest.raises(ValueError):
            FuzzyRanker(1.5)

    def test_rank_filters_by_threshold(self):
        ranker = FuzzyRanker(0.8)
        candidates = [make_entry(1, "Gwangjang Market"), make_entry(2, "Haeundae Beach")]

        ranked = ranker.rank(make_draft("Gwangjang Markets"), candidates)

        assert [entry.id for entry, _ in ranked] == [1]

    def test_ties_break_on_lowest_id(self):
        ranker = FuzzyRanker(0.5)
        candidates = [make_entry(9, "Namsan Park"), make_entry(4, "Namsan Park")]

        best = ranker.best(make_draft("Namsan Parks"), candidates)

        assert best is not None
        assert best[0].id == 4

    def test_best_none_when_nothing_passes(self):
        ranker = FuzzyRanker(0.9)

        assert ranker.best(make_draft("Lotte World"), [make_entry(1, "Haeundae Beach")]) is None
