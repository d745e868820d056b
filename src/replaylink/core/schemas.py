"""
ReplayLink Data Contracts

Every structure that crosses a module boundary is defined here.

Producers: protocol/classifiers.py, protocol/showteam.py, protocol/header.py,
           protocol/materializer.py, pipeline/brought.py, infra/repository.py
Consumers: pipeline/ingest.py, pipeline/brought.py, linking/*, cli.py
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TypedDict

from replaylink.core.constants import Side, SpeciesSource

# ============================================================
# LINE FRAGMENTS: produced by the classifiers
# ============================================================


@dataclass(frozen=True)
class PlayerFragment:
    """|player|p1|Name|avatar|rating"""

    side: Side
    name: str
    avatar: str | None = None
    rating: int | None = None


@dataclass(frozen=True)
class PreviewFragment:
    """|poke|p1|Okidogi, L50, M|"""

    side: Side
    species: str
    level: int | None = None
    gender: str | None = None
    raw_text: str = ""


@dataclass(frozen=True)
class RevealedSetFragment:
    """One entry of a packed |showteam| payload. Every field but species may be absent."""

    species: str
    nickname: str | None = None
    item: str | None = None
    ability: str | None = None
    moves: tuple[str, ...] = ()
    gender: str | None = None
    level: int | None = None
    tera: str | None = None
    raw: str = ""


@dataclass(frozen=True)
class ShowteamFragment:
    """|showteam|p1|<packed team>"""

    side: Side
    sets: tuple[RevealedSetFragment, ...] = ()


@dataclass(frozen=True)
class SwitchFragment:
    """|switch|p1a: Nick|Species, L50, M|100/100 (also drag/replace)."""

    kind: str
    side: Side
    position: str  # board position, e.g. "p1a"
    species: str
    nickname: str | None = None


# ============================================================
# BATTLE HEADER
# ============================================================


@dataclass
class BattleHeader:
    """Top-level battle metadata derived from a single pass over the log."""

    played_at: int | None = None
    is_rated: bool = False
    gen: int | None = None
    game_type: str | None = None
    winner_name: str | None = None
    winner_side: Side | None = None
    player_names: dict[str, str] = field(default_factory=dict)


# ============================================================
# MATERIALIZED ROWS: one battle's derived entities, before storage
# ============================================================


@dataclass(frozen=True)
class EventRow:
    sequence: int
    line_type: str
    raw_line: str
    turn_num: int | None = None
    t_unix: int | None = None
    move_name: str | None = None


@dataclass(frozen=True)
class SideRow:
    side: Side
    player_name: str
    avatar: str | None = None
    rating: int | None = None


@dataclass(frozen=True)
class PreviewRow:
    side: Side
    slot_index: int
    species: str
    level: int | None = None
    gender: str | None = None
    raw_text: str = ""


@dataclass(frozen=True)
class RevealedRow:
    side: Side
    set: RevealedSetFragment


@dataclass
class MaterializedBattle:
    """Everything the materializer produces for one log."""

    events: list[EventRow] = field(default_factory=list)
    sides: list[SideRow] = field(default_factory=list)
    preview: list[PreviewRow] = field(default_factory=list)
    revealed: list[RevealedRow] = field(default_factory=list)


# ============================================================
# MATCHING INPUT
# ============================================================


@dataclass(frozen=True)
class SpeciesList:
    """A battle-side species list tagged with where it came from."""

    species: tuple[str, ...] = ()
    source: SpeciesSource = SpeciesSource.NONE

    def __len__(self) -> int:
        return len(self.species)


# ============================================================
# READ MODELS: returned by the repository to the CLI
# ============================================================


class BroughtEntry(TypedDict):
    species_name: str
    is_lead: bool


class BattleListRow(TypedDict):
    """One row of the battle list."""

    id: int
    replay_id: str
    format_key: str | None
    played_at: int | None
    is_rated: bool
    winner_side: str | None
    user_side: str | None
    user_name: str | None
    opponent_name: str | None
    result: str | None  # "win", "loss" or None
    linked_team_version_id: int | None
    linked_team_name: str | None
    link_confidence: float | None
    link_matched_by: str | None
    user_brought: list[BroughtEntry]
    opponent_brought: list[BroughtEntry]


class UserLink(TypedDict):
    team_version_id: int | None
    match_confidence: float | None
    match_method: str | None
    matched_by: str | None


class BattleDetails(TypedDict):
    """Full view of one battle."""

    battle: dict
    sides: list[dict]
    preview: list[dict]
    revealed: list[dict]
    brought: list[dict]
    events: list[dict]
    user_side: str | None
    user_link: UserLink | None


# ============================================================
# BROUGHT DERIVATION: produced by pipeline/brought.py
# ============================================================


@dataclass
class BroughtSighting:
    """One (side, species) that appeared on the field."""

    side: Side
    species: str
    first_seen_sequence: int
    source: str  # switch / drag / replace
    is_lead: bool = False
