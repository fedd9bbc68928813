"""Tests for taxonomy models, the category index, and the deterministic matcher."""

import pytest

from feed_orchestrator.taxonomy.index import CategoryIndex, load_taxonomy
from feed_orchestrator.taxonomy.matcher import CategoryMatcher, similarity
from feed_orchestrator.taxonomy.models import MatchType, Taxonomy, TaxonomyEntry
from feed_orchestrator.taxonomy.normalize import normalize_text, tokenize


# =============================================================================
# Normalization
# =============================================================================


class TestNormalize:

    def test_strips_diacritics_and_lowercases(self):
        assert normalize_text("Păpuși Fashion") == "papusi fashion"

    def test_collapses_punctuation_to_single_spaces(self):
        assert normalize_text("  Jucării / Construcții -- LEGO!! ") == "jucarii constructii lego"

    def test_empty_input(self):
        assert normalize_text("") == ""
        assert normalize_text(None) == ""

    def test_tokenize_drops_short_words(self):
        assert tokenize("set de 3 cuburi") == ["set", "cuburi"]


# =============================================================================
# Taxonomy
# =============================================================================


class TestTaxonomy:

    def test_leaves_use_child_count(self, taxonomy):
        leaf_keys = {e.key for e in taxonomy.leaves}
        assert leaf_keys == {2, 3, 5, 6, 8, 11}
        assert taxonomy.get_leaf(4) is None
        assert taxonomy.get_leaf(5).title == "Seturi LEGO"

    def test_child_counts_derived_from_paths_when_missing(self):
        taxonomy = Taxonomy.from_records([
            {"key": 1, "title": "Vehicule", "path": "Vehicule"},
            {"key": 2, "title": "Masinute", "path": "Vehicule > Masinute"},
        ])
        assert not taxonomy.get(1).is_leaf
        assert taxonomy.get(2).is_leaf

    def test_entry_from_raw_export_keys(self):
        entry = TaxonomyEntry.from_dict({
            "key": "5",
            "title": "Seturi LEGO",
            "path": "Jucarii > Constructii > Seturi LEGO",
            "children_count": 0,
            "nomenclature_name": "LEGO",
        })
        assert entry.key == 5
        assert entry.path_depth == 3
        assert entry.alt_name == "LEGO"
        assert entry.is_leaf

    def test_load_taxonomy_file(self, tmp_path):
        path = tmp_path / "taxonomy.json"
        path.write_text('{"categories": [{"key": 1, "title": "A", "path": "A", "children_count": 0}]}')
        taxonomy = load_taxonomy(str(path))
        assert len(taxonomy) == 1


# =============================================================================
# Index
# =============================================================================


class TestCategoryIndex:

    def test_exact_lookup_covers_title_and_alt_name(self, index):
        assert index.lookup_exact("seturi lego").key == 5
        assert index.lookup_exact("lego").key == 5

    def test_keyword_buckets_sorted_deepest_first(self, index):
        depths = [e.path_depth for e in index.lookup_keyword("jucarii")]
        assert depths == sorted(depths, reverse=True)
        assert {e.key for e in index.lookup_keyword("cuburi")} == {6}

    def test_exact_collision_keeps_deeper_entry(self):
        taxonomy = Taxonomy.from_records([
            {"key": 1, "title": "Lego", "path": "Lego", "children_count": 1},
            {"key": 2, "title": "Lego", "path": "Lego > Lego", "children_count": 0},
        ])
        assert CategoryIndex.build(taxonomy).lookup_exact("lego").key == 2

    def test_save_and_load_preserves_lookups(self, index, tmp_path):
        path = tmp_path / "index.json"
        index.save(str(path))
        loaded = CategoryIndex.load(str(path))

        assert loaded.stats() == index.stats()
        assert loaded.lookup_exact("lego").key == 5
        assert [e.key for e in loaded.lookup_keyword("papusi")] == [e.key for e in index.lookup_keyword("papusi")]

    def test_rejects_unknown_version(self):
        with pytest.raises(ValueError):
            CategoryIndex.from_dict({"version": 99})


# =============================================================================
# Matcher
# =============================================================================


class TestCategoryMatcher:

    def test_exact_match(self, matcher):
        result = matcher.find_best_match(["Seturi LEGO"])
        assert result.entry.key == 5
        assert result.match_type == MatchType.EXACT
        assert result.score == 1.0

    def test_stoplisted_terms_are_ignored(self, matcher):
        assert matcher.find_best_match(["Jucarii"]) is None
        assert matcher.find_best_match(["Toate", "jocuri"]) is None

    def test_fuzzy_match_above_threshold(self, matcher):
        result = matcher.find_best_match(["Masinutte"])
        assert result.entry.key == 11
        assert result.match_type == MatchType.FUZZY
        assert result.score == pytest.approx(1 - 1 / 9)

    def test_keyword_match(self, matcher):
        result = matcher.find_best_match(["Cuburi colorate magnetice pentru copii"])
        assert result.entry.key == 6
        assert result.match_type == MatchType.KEYWORD
        assert result.score == pytest.approx(2 / 5)

    def test_deeper_entry_wins_over_higher_score(self, matcher):
        result = matcher.find_best_match(["Papusi", "Cuburi colorate magnetice pentru copii"])
        assert result.entry.key == 6

    def test_most_specific_exact_match_wins(self, matcher):
        result = matcher.find_best_match(["Constructii", "Seturi LEGO"])
        assert result.entry.key == 5

    def test_unmatched_returns_none(self, matcher):
        assert matcher.find_best_match(["xyz"]) is None
        assert matcher.find_best_match([]) is None
        assert matcher.find_best_match(["", "   "]) is None

    def test_similarity_is_normalized_levenshtein(self):
        assert similarity("abcd", "abcx") == pytest.approx(0.75)
        assert similarity("lego", "lego") == 1.0

    def test_custom_stoplist(self, index):
        matcher = CategoryMatcher(index, stoplist=["papusi"])
        assert matcher.find_best_match(["Papusi"]) is None
        assert matcher.find_best_match(["Jucarii de plus"]).entry.key == 2
