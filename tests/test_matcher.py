"""Tests for species-overlap scoring and species list selection."""

from replaylink.core.config import MatchingConfig
from replaylink.core.constants import METHOD_BATTLE_EMPTY, METHOD_TEAM_EMPTY, SpeciesSource
from replaylink.linking.matcher import (
    MatchThresholds,
    compute_overlap_match,
    default_thresholds,
    overlap_count,
)
from replaylink.linking.selectors import choose_species_list

TEAM = ["Dragonite", "Gholdengo", "Great Tusk", "Rotom-Wash", "Kingambit", "Gliscor"]
BROUGHT = ["Dragonite", "Gholdengo", "Great Tusk", "Rotom-Wash"]


class TestOverlapMatch:
    """Test the scoring primitive."""

    def test_four_of_six_brought_links(self):
        result = compute_overlap_match(BROUGHT, TEAM, source=SpeciesSource.BROUGHT)
        assert result.linked is True
        assert result.overlap == 4
        assert result.team_size == 6
        assert abs(result.confidence - 4 / 6) < 1e-9
        assert result.method == "team-link_brought_overlap"

    def test_four_of_six_preview_does_not_link(self):
        """Preview-only lists need a stricter overlap."""
        preview = BROUGHT + ["Amoonguss", "Incineroar"]
        result = compute_overlap_match(preview, TEAM, source=SpeciesSource.PREVIEW)
        assert result.linked is False
        assert result.overlap == 4
        assert result.method == "team-link_preview_overlap"

    def test_five_of_six_preview_links(self):
        preview = TEAM[:5] + ["Amoonguss"]
        result = compute_overlap_match(preview, TEAM, source=SpeciesSource.PREVIEW)
        assert result.linked is True
        assert result.overlap == 5

    def test_small_team_fails_overlap_floor(self):
        """Confidence alone is not enough; 3/3 is below the overlap floor."""
        result = compute_overlap_match(TEAM[:3], TEAM[:3], source=SpeciesSource.BROUGHT)
        assert result.confidence == 1.0
        assert result.linked is False

    def test_comparison_ignores_case_and_duplicates(self):
        battle = ["dragonite", "DRAGONITE", " gholdengo ", "great tusk", "rotom-wash"]
        result = compute_overlap_match(battle, TEAM, source=SpeciesSource.BROUGHT)
        assert result.overlap == 4
        assert result.linked is True

    def test_empty_team(self):
        result = compute_overlap_match(BROUGHT, [], source=SpeciesSource.BROUGHT)
        assert result.linked is False
        assert result.confidence == 0.0
        assert result.method == METHOD_TEAM_EMPTY

    def test_empty_battle_list(self):
        result = compute_overlap_match([], TEAM)
        assert result.linked is False
        assert result.method == METHOD_BATTLE_EMPTY

    def test_overlap_count(self):
        assert overlap_count(["Dragonite", "Pikachu"], TEAM) == 1


class TestMargin:
    """Test the runner-up margin gate."""

    def test_tied_runner_up_rejects(self):
        thresholds = MatchThresholds(require_margin=True, margin_min=1, second_best_overlap=4)
        result = compute_overlap_match(BROUGHT, TEAM, thresholds, SpeciesSource.BROUGHT)
        assert result.linked is False

    def test_clear_margin_accepts(self):
        thresholds = MatchThresholds(require_margin=True, margin_min=1, second_best_overlap=3)
        result = compute_overlap_match(BROUGHT, TEAM, thresholds, SpeciesSource.BROUGHT)
        assert result.linked is True

    def test_perfect_match_is_exempt(self):
        thresholds = MatchThresholds(require_margin=True, margin_min=2, second_best_overlap=6)
        result = compute_overlap_match(TEAM, TEAM, thresholds, SpeciesSource.BROUGHT)
        assert result.linked is True

    def test_margin_ignored_when_disabled(self):
        thresholds = MatchThresholds(require_margin=False, second_best_overlap=4)
        result = compute_overlap_match(BROUGHT, TEAM, thresholds, SpeciesSource.BROUGHT)
        assert result.linked is True


class TestDefaultThresholds:
    """Test threshold selection per provenance and game type."""

    def test_strong_sources(self):
        for source in (SpeciesSource.BROUGHT, SpeciesSource.REVEALED):
            thresholds = default_thresholds(source)
            assert thresholds.min_overlap == 4
            assert thresholds.min_confidence == 0.66

    def test_preview_is_stricter(self):
        thresholds = default_thresholds(SpeciesSource.PREVIEW)
        assert thresholds.min_overlap == 5
        assert thresholds.min_confidence == 0.83

    def test_game_type_floor_raises_overlap(self):
        config = MatchingConfig(game_type_min_overlap={"singles": 6})
        assert default_thresholds(SpeciesSource.BROUGHT, config, "Singles").min_overlap == 6
        assert default_thresholds(SpeciesSource.BROUGHT, config, "doubles").min_overlap == 4

    def test_game_type_floor_never_lowers(self):
        config = MatchingConfig(game_type_min_overlap={"doubles": 2})
        assert default_thresholds(SpeciesSource.BROUGHT, config, "doubles").min_overlap == 4

    def test_margin_settings_come_from_config(self):
        config = MatchingConfig(require_margin=True, margin_min=2)
        thresholds = default_thresholds(SpeciesSource.BROUGHT, config)
        assert thresholds.require_margin is True
        assert thresholds.margin_min == 2
        assert thresholds.second_best_overlap == 0


class TestChooseSpeciesList:
    """Test provenance precedence."""

    def test_brought_wins(self):
        chosen = choose_species_list(BROUGHT, TEAM, TEAM)
        assert chosen.source == SpeciesSource.BROUGHT
        assert chosen.species == tuple(BROUGHT)

    def test_revealed_used_when_trusted(self):
        chosen = choose_species_list([], TEAM[:4], TEAM)
        assert chosen.source == SpeciesSource.REVEALED
        assert len(chosen) == 4

    def test_short_revealed_falls_back_to_preview(self):
        chosen = choose_species_list([], TEAM[:3], TEAM)
        assert chosen.source == SpeciesSource.PREVIEW
        assert len(chosen) == 6

    def test_trust_threshold_is_configurable(self):
        chosen = choose_species_list([], TEAM[:3], TEAM, min_revealed_to_trust=3)
        assert chosen.source == SpeciesSource.REVEALED

    def test_nothing_available(self):
        chosen = choose_species_list([], [], [])
        assert chosen.source == SpeciesSource.NONE
        assert len(chosen) == 0
        assert not chosen

    def test_duplicates_removed(self):
        chosen = choose_species_list(["Dragonite", "dragonite", "Gholdengo"], [], [])
        assert chosen.species == ("Dragonite", "Gholdengo")
