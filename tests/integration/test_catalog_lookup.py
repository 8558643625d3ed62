"""Integration tests for the SQL-backed catalog lookup."""

from __future__ import annotations

import pytest
import pytest_asyncio

from tests.factories import make_draft, make_entry
from tourquote.catalog.repository import SqlCatalogLookup, classify
from tourquote.db.models import CatalogItemModel
from tourquote.matching.fuzzy_ranker import FuzzyRanker
from tourquote.models import MatchTier


class TestFindByIds:
    @pytest.mark.asyncio
    async def test_only_eligible_known_ids(self, db_session, catalog):
        lookup = SqlCatalogLookup(db_session)
        wanted = [
            catalog["Gyeongbokgung Palace"],
            catalog["Secret Garden Night Tour"],
            99999,
        ]

        found = await lookup.find_by_ids(wanted)

        assert list(found) == [catalog["Gyeongbokgung Palace"]]
        assert found[catalog["Gyeongbokgung Palace"]].name_local == "경복궁"

    @pytest.mark.asyncio
    async def test_empty(self, db_session, catalog):
        assert await SqlCatalogLookup(db_session).find_by_ids([]) == {}


class TestFindByNames:
    @pytest.mark.asyncio
    async def test_tiers(self, db_session, catalog):
        lookup = SqlCatalogLookup(db_session)
        drafts = [
            make_draft("gyeongbokgung PALACE"),
            make_draft("Traditional market", name_local="광장시장"),
            make_draft("Bukchon"),
            make_draft("Gwangjang Markt"),
            make_draft("Lotte World Adventure"),
        ]

        results = await lookup.find_by_names(drafts, region="seoul", fuzzy_threshold=0.6)

        assert [r.tier for r in results] == [
            MatchTier.EXACT,
            MatchTier.EXACT,
            MatchTier.PARTIAL,
            MatchTier.FUZZY,
            MatchTier.UNMATCHED,
        ]
        assert results[0].entry.id == catalog["Gyeongbokgung Palace"]
        assert results[1].entry.id == catalog["Gwangjang Market"]
        assert results[2].entry.id == catalog["Bukchon Hanok Village"]
        assert results[3].entry.id == catalog["Gwangjang Market"]
        assert 0.6 <= results[3].score <= 1.0

    @pytest.mark.asyncio
    async def test_fuzzy_restricted_to_region(self, db_session, catalog):
        lookup = SqlCatalogLookup(db_session)

        in_seoul = await lookup.find_by_names([make_draft("Haeundae Beech")], region="seoul")
        anywhere = await lookup.find_by_names([make_draft("Haeundae Beech")], region=None)

        assert in_seoul[0].tier == MatchTier.UNMATCHED
        assert anywhere[0].tier == MatchTier.FUZZY
        assert anywhere[0].entry.id == catalog["Haeundae Beach"]

    @pytest.mark.asyncio
    async def test_ineligible_entries_never_match(self, db_session, catalog):
        lookup = SqlCatalogLookup(db_session)

        results = await lookup.find_by_names([make_draft("Secret Garden Night Tour")])

        assert results[0].tier == MatchTier.UNMATCHED

    @pytest.mark.asyncio
    async def test_summary_records(self, db_session, catalog):
        lookup = SqlCatalogLookup(db_session)

        results = await lookup.find_by_names([make_draft("N Seoul Tower")], full_record=False)

        assert results[0].entry.description is None
        assert results[0].entry.images == []


class TestLargeCatalog:
    """Rows far past any page size still reach every tier."""

    @pytest_asyncio.fixture
    async def large_catalog(self, session_scope) -> int:
        async with session_scope() as session:
            session.add_all(
                CatalogItemModel(name_en=f"Harbour Stop {i:03d}", region="busan")
                for i in range(600)
            )
            target = CatalogItemModel(
                name_en="Gyeongbokgung Palace", name_local="경복궁", region="seoul"
            )
            session.add(target)
            await session.flush()
            return target.id

    @pytest.mark.asyncio
    async def test_late_rows_match_every_tier(self, db_session, large_catalog):
        drafts = [
            make_draft("Gyeongbokgung Palace"),
            make_draft("Gyeongbokgung"),
            make_draft("Gyeongbokgung Palase"),
        ]

        results = await SqlCatalogLookup(db_session).find_by_names(drafts, region="seoul")

        assert [r.tier for r in results] == [
            MatchTier.EXACT,
            MatchTier.PARTIAL,
            MatchTier.FUZZY,
        ]
        assert {r.entry.id for r in results} == {large_catalog}

    @pytest.mark.asyncio
    async def test_late_rows_resolve_as_attractions(self, db_session, large_catalog):
        found = await SqlCatalogLookup(db_session).find_attractions(["경복궁"], region="seoul")

        assert found["경복궁"].id == large_catalog


class TestFindIneligible:
    @pytest.mark.asyncio
    async def test_matches_excluded_entries(self, db_session, catalog):
        lookup = SqlCatalogLookup(db_session)

        found = await lookup.find_ineligible(
            ["Secret Garden Night Tour", "Han River Cruise", "Gyeongbokgung Palace"]
        )

        assert found == {"secret garden night tour"}

    @pytest.mark.asyncio
    async def test_containment_either_direction(self, db_session, catalog):
        lookup = SqlCatalogLookup(db_session)

        found = await lookup.find_ineligible(
            ["Secret Garden", "창덕궁", "Secret Garden Night Tour with dinner"]
        )

        assert found == {"secret garden", "창덕궁", "secret garden night tour with dinner"}

    @pytest.mark.asyncio
    async def test_fuzzy_near_miss(self, db_session, catalog):
        lookup = SqlCatalogLookup(db_session)

        found = await lookup.find_ineligible(
            ["Secret Gardens Night Tours", "Han River Cruise"], fuzzy_threshold=0.8
        )

        assert found == {"secret gardens night tours"}

    @pytest.mark.asyncio
    async def test_blank_names(self, db_session, catalog):
        assert await SqlCatalogLookup(db_session).find_ineligible(["", "  "]) == set()


class TestFindAttractions:
    @pytest.mark.asyncio
    async def test_resolves_within_region(self, db_session, catalog):
        lookup = SqlCatalogLookup(db_session)

        found = await lookup.find_attractions(
            ["Secret Garden Night Tour", "Haeundae Beach", "Gwangjang", "N서울타워"],
            region="seoul",
        )

        assert found["Secret Garden Night Tour"].id == catalog["Secret Garden Night Tour"]
        assert found["Gwangjang"].id == catalog["Gwangjang Market"]
        assert found["N서울타워"].id == catalog["N Seoul Tower"]
        assert "Haeundae Beach" not in found


class TestClassifyTieBreaks:
    """Tie-break rules on in-memory candidates."""

    def test_exact_prefers_lowest_id(self):
        candidates = [make_entry(8, "Namsan Park"), make_entry(3, "namsan park")]

        result = classify(make_draft("Namsan Park"), candidates, FuzzyRanker(0.6))

        assert result.entry.id == 3

    def test_exact_on_alias(self):
        candidates = [make_entry(5, "Gyeongbokgung Palace", name_local="경복궁")]

        draft = make_draft("Royal palace", name_local="경복궁")

        result = classify(draft, candidates, FuzzyRanker(0.6))

        assert result.tier == MatchTier.EXACT

    def test_partial_prefers_closest_length(self):
        candidates = [
            make_entry(1, "Namsan Seoul Tower Observatory"),
            make_entry(2, "Seoul Tower Plaza"),
        ]

        result = classify(make_draft("Seoul Tower"), candidates, FuzzyRanker(0.6))

        assert result.tier == MatchTier.PARTIAL
        assert result.entry.id == 2

    def test_partial_when_draft_contains_catalog_name(self):
        candidates = [make_entry(4, "Lotte World")]

        result = classify(make_draft("Lotte World Adventure"), candidates, FuzzyRanker(0.6))

        assert result.tier == MatchTier.PARTIAL

    def test_partial_ignores_region(self):
        candidates = [make_entry(4, "Haeundae Beach Park", region="busan")]

        result = classify(make_draft("Haeundae Beach"), candidates, FuzzyRanker(0.6), "seoul")

        assert result.tier == MatchTier.PARTIAL

    def test_blank_draft_is_unmatched(self):
        result = classify(make_draft(" "), [make_entry(1, "A")], FuzzyRanker(0.6))

        assert result.tier == MatchTier.UNMATCHED

    def test_partial_on_alias(self):
        candidates = [make_entry(5, "Changdeokgung Palace", name_local="창덕궁")]

        draft = make_draft("Royal garden walk", name_local="창덕궁 후원")

        result = classify(draft, candidates, FuzzyRanker(0.6))

        assert result.tier == MatchTier.PARTIAL
        assert result.entry.id == 5
