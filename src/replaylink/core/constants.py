"""
ReplayLink - Constants

Defines protocol tokens, battle sides, species provenance tags and the default
matching policy used when linking battles to imported team versions.
"""

from enum import StrEnum


class Side(StrEnum):
    """The two participants of a battle."""

    P1 = "p1"
    P2 = "p2"

    @property
    def opponent(self) -> "Side":
        return Side.P2 if self is Side.P1 else Side.P1


class LineKind(StrEnum):
    """
    Protocol line kinds the classifiers understand.

    Anything else is stored under its literal token (or UNKNOWN when the
    token is empty) and produces no structured fragment.
    """

    UNKNOWN = "unknown"
    PLAYER = "player"
    POKE = "poke"
    SHOWTEAM = "showteam"
    SWITCH = "switch"
    DRAG = "drag"
    REPLACE = "replace"
    TURN = "turn"
    TIME = "t:"
    RATED = "rated"
    WIN = "win"
    GEN = "gen"
    GAMETYPE = "gametype"
    MOVE = "move"


class SpeciesSource(StrEnum):
    """Provenance of a battle-side species list, strongest first."""

    BROUGHT = "brought"  # confirmed field appearances
    REVEALED = "revealed"  # open team sheet payload
    PREVIEW = "preview"  # team preview roster
    NONE = "none"


class MatchedBy(StrEnum):
    """Attribution of a battle-team link."""

    AUTO = "auto"
    USER = "user"


class GameType(StrEnum):
    """Values seen on |gametype| lines."""

    SINGLES = "singles"
    DOUBLES = "doubles"
    TRIPLES = "triples"
    MULTI = "multi"
    FREEFORALL = "freeforall"


# Switch-like lines put a Pokemon on the field
SWITCH_LIKE_KINDS = frozenset({LineKind.SWITCH, LineKind.DRAG, LineKind.REPLACE})

# Wire format delimiters
FIELD_DELIMITER = "|"
PACKED_ENTRY_DELIMITER = "]"
DETAIL_DELIMITER = ","

# Leading auth/rank glyphs Showdown prepends to user names
NAME_PREFIX_GLYPHS = "@☆★+%~*&"

GENDERS = frozenset({"M", "F"})

# Board positions per side that can hold a lead, by game type
LEAD_SLOTS_BY_GAME_TYPE: dict[str, int] = {
    GameType.SINGLES: 1,
    GameType.DOUBLES: 2,
}
# Used when the log carries no |gametype| line
LEAD_SLOTS_UNKNOWN_GAME_TYPE = 2

# Default matching policy. brought/revealed are strong signals, preview-only
# data only shows the intended roster so it gets a stricter gate.
STRONG_MIN_OVERLAP = 4
STRONG_MIN_CONFIDENCE = 0.66
PREVIEW_MIN_OVERLAP = 5
PREVIEW_MIN_CONFIDENCE = 0.83
MIN_REVEALED_TO_TRUST = 4
DEFAULT_MARGIN_MIN = 1

DEFAULT_CANDIDATE_LIMIT = 200
DEFAULT_BACKFILL_LIMIT = 500

# Match method tags, keyed by provenance
MATCH_METHODS: dict[str, str] = {
    SpeciesSource.BROUGHT: "team-link_brought_overlap",
    SpeciesSource.REVEALED: "team-link_revealed_overlap",
    SpeciesSource.PREVIEW: "team-link_preview_overlap",
    SpeciesSource.NONE: "team-link_no_data",
}
METHOD_TEAM_EMPTY = "team_empty"
METHOD_BATTLE_EMPTY = "battle_species_empty"

# Replay host
SHOWDOWN_REPLAY_BASE = "https://replay.pokemonshowdown.com"
DEFAULT_FETCH_TIMEOUT_SECONDS = 20.0
