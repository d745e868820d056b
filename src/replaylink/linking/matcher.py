"""
Species-overlap matcher.

Scores a battle side's species list against one team version's species list.
Pure functions only; no database access.

    overlap    = |battle species  ∩  team species|
    confidence = overlap / team size

A match is accepted when both the overlap and the confidence clear the
thresholds for the list's provenance. Preview-only lists show the intended
roster, not what was actually used, so they get a stricter gate.
"""

import logging
from dataclasses import dataclass

from replaylink.core.config import MatchingConfig
from replaylink.core.constants import (
    DEFAULT_MARGIN_MIN,
    MATCH_METHODS,
    METHOD_BATTLE_EMPTY,
    METHOD_TEAM_EMPTY,
    PREVIEW_MIN_CONFIDENCE,
    PREVIEW_MIN_OVERLAP,
    STRONG_MIN_CONFIDENCE,
    STRONG_MIN_OVERLAP,
    SpeciesSource,
)
from replaylink.core.utils import normalize_species, unique_species

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MatchThresholds:
    """Acceptance policy for one match attempt."""

    min_overlap: int = STRONG_MIN_OVERLAP
    min_confidence: float = STRONG_MIN_CONFIDENCE

    # Candidate tie-break: the best overlap must beat the runner-up by margin_min
    # unless it is a perfect match
    require_margin: bool = False
    margin_min: int = DEFAULT_MARGIN_MIN
    second_best_overlap: int = 0


@dataclass(frozen=True)
class MatchResult:
    linked: bool
    overlap: int
    confidence: float
    method: str
    source: SpeciesSource
    team_size: int


def default_thresholds(
    source: SpeciesSource | str,
    config: MatchingConfig | None = None,
    game_type: str | None = None,
) -> MatchThresholds:
    """
    Thresholds for a provenance tag.

    ``config.game_type_min_overlap`` can raise the overlap floor for specific
    game types (e.g. ``{"singles": 5}``); it never lowers it.
    """
    config = config or MatchingConfig()
    if source == SpeciesSource.PREVIEW:
        min_overlap = config.preview_min_overlap
        min_confidence = config.preview_min_confidence
    else:
        min_overlap = config.strong_min_overlap
        min_confidence = config.strong_min_confidence

    if game_type:
        floor = config.game_type_min_overlap.get(game_type.lower())
        if floor is not None:
            min_overlap = max(min_overlap, int(floor))

    return MatchThresholds(
        min_overlap=min_overlap,
        min_confidence=min_confidence,
        require_margin=config.require_margin,
        margin_min=config.margin_min,
    )


def overlap_count(battle_species: list[str], team_species: list[str]) -> int:
    team_keys = {normalize_species(s) for s in team_species}
    return sum(1 for s in battle_species if normalize_species(s) in team_keys)


def compute_overlap_match(
    battle_species: list[str],
    team_species: list[str],
    thresholds: MatchThresholds | None = None,
    source: SpeciesSource = SpeciesSource.NONE,
) -> MatchResult:
    """
    Score one battle species list against one team.

    Args:
        battle_species: Species from the chosen provenance
        team_species: Species of the candidate team version
        thresholds: Acceptance policy (defaults to the provenance defaults)
        source: Provenance of ``battle_species``

    Returns:
        MatchResult. A rejected match is a normal result, never an exception.
    """
    battle = unique_species(battle_species)
    team = unique_species(team_species)
    team_size = len(team)

    if team_size == 0 or not battle:
        return MatchResult(
            linked=False,
            overlap=0,
            confidence=0.0,
            method=METHOD_TEAM_EMPTY if team_size == 0 else METHOD_BATTLE_EMPTY,
            source=SpeciesSource(source),
            team_size=team_size,
        )

    if thresholds is None:
        thresholds = default_thresholds(source)

    overlap = overlap_count(battle, team)
    confidence = overlap / team_size

    linked = overlap >= thresholds.min_overlap and confidence >= thresholds.min_confidence
    if linked and thresholds.require_margin:
        perfect = overlap >= team_size
        if not perfect and overlap - thresholds.second_best_overlap < thresholds.margin_min:
            linked = False

    return MatchResult(
        linked=linked,
        overlap=overlap,
        confidence=confidence,
        method=MATCH_METHODS[SpeciesSource(source)],
        source=SpeciesSource(source),
        team_size=team_size,
    )
