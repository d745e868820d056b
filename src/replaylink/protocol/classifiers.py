"""
Line classifiers for the Showdown battle protocol.

Each classifier takes the tokenized fields of one line and returns a typed
fragment, or None when the line is not of its kind or is too malformed to
use. Classifiers never raise and are independent of each other.

Examples of recognized lines::

    |player|p1|Alice|ethan|1500
    |poke|p2|Okidogi, L50, M|
    |showteam|p1|Amoonguss||SitrusBerry|Regenerator|Spore,...]...
    |switch|p1a: Shroom|Amoonguss, L50, F|100/100
    |turn|3
    |t:|1700000000
    |rated|
    |win|Alice
"""

import re

from replaylink.core.constants import DETAIL_DELIMITER, FIELD_DELIMITER, LineKind, Side
from replaylink.core.schemas import (
    PlayerFragment,
    PreviewFragment,
    ShowteamFragment,
    SwitchFragment,
)
from replaylink.core.utils import clean_token, safe_int
from replaylink.protocol.showteam import parse_packed_team
from replaylink.protocol.tokenizer import field_at, line_kind

_LEVEL_RE = re.compile(r"^L(\d+)$", re.IGNORECASE)
_ACTOR_RE = re.compile(r"^(p[12])([a-d])?\s*:?\s*(.*)$", re.IGNORECASE)


def _is_kind(fields: list[str], kind: LineKind) -> bool:
    return line_kind(fields) == kind.value


def parse_side(token: str | None) -> Side | None:
    """Parse an exact side token (``p1``/``p2``)."""
    value = (token or "").strip().lower()
    if value == Side.P1:
        return Side.P1
    if value == Side.P2:
        return Side.P2
    return None


def parse_actor_ref(ref: str | None) -> tuple[Side, str, str | None] | None:
    """
    Parse an actor reference like ``p1a: Nickname``.

    Returns (side, board position, nickname). A reference without a slot
    letter (``p1: Name``) gets position ``<side>a``.
    """
    match = _ACTOR_RE.match((ref or "").strip())
    if not match:
        return None
    side = Side(match.group(1).lower())
    slot = (match.group(2) or "a").lower()
    nickname = clean_token(match.group(3))
    return side, f"{side}{slot}", nickname


def parse_species_from_details(details: str | None) -> str | None:
    """Species is the text before the first comma of a details string."""
    head = (details or "").split(DETAIL_DELIMITER, 1)[0]
    return clean_token(head)


def parse_preview_details(raw_text: str | None) -> tuple[str | None, int | None, str | None]:
    """Parse ``Okidogi, L50, M`` into (species, level, gender)."""
    bits = [bit.strip() for bit in (raw_text or "").split(DETAIL_DELIMITER)]
    bits = [bit for bit in bits if bit]
    species = bits[0] if bits else None

    level = None
    for bit in bits[1:]:
        match = _LEVEL_RE.match(bit)
        if match:
            level = int(match.group(1))
            break

    gender = None
    if "M" in bits[1:]:
        gender = "M"
    elif "F" in bits[1:]:
        gender = "F"

    return species, level, gender


# =============================================================================
# Classifiers
# =============================================================================


def classify_player(fields: list[str]) -> PlayerFragment | None:
    """|player|p1|Name|avatar|rating (an empty name is a seat release, not a player)"""
    if not _is_kind(fields, LineKind.PLAYER):
        return None
    side = parse_side(field_at(fields, 1))
    name = clean_token(field_at(fields, 2))
    if side is None or not name:
        return None
    return PlayerFragment(
        side=side,
        name=name,
        avatar=clean_token(field_at(fields, 3)),
        rating=safe_int(clean_token(field_at(fields, 4))),
    )


def classify_preview(fields: list[str]) -> PreviewFragment | None:
    """|poke|p1|Species, L50, M|item-flag"""
    if not _is_kind(fields, LineKind.POKE):
        return None
    side = parse_side(field_at(fields, 1))
    if side is None:
        return None
    raw_text = field_at(fields, 2) or ""
    species, level, gender = parse_preview_details(raw_text)
    if not species:
        return None
    return PreviewFragment(side=side, species=species, level=level, gender=gender, raw_text=raw_text)


def classify_showteam(fields: list[str]) -> ShowteamFragment | None:
    """|showteam|p1|<packed team> (the packed team itself contains pipes)"""
    if not _is_kind(fields, LineKind.SHOWTEAM):
        return None
    side = parse_side(field_at(fields, 1))
    if side is None:
        return None
    blob = FIELD_DELIMITER.join(fields[2:])
    return ShowteamFragment(side=side, sets=tuple(parse_packed_team(blob)))


def classify_switch(fields: list[str]) -> SwitchFragment | None:
    """|switch|p1a: Nick|Species, L50, F|hp (also |drag| and |replace|)"""
    kind = line_kind(fields)
    if kind not in (LineKind.SWITCH, LineKind.DRAG, LineKind.REPLACE):
        return None
    actor = parse_actor_ref(field_at(fields, 1))
    if actor is None:
        return None
    species = parse_species_from_details(field_at(fields, 2))
    if not species:
        return None
    side, position, nickname = actor
    return SwitchFragment(
        kind=kind, side=side, position=position, species=species, nickname=nickname
    )


def classify_turn(fields: list[str]) -> int | None:
    """|turn|N"""
    if not _is_kind(fields, LineKind.TURN):
        return None
    return safe_int(field_at(fields, 1))


def classify_timestamp(fields: list[str]) -> int | None:
    """|t:|epoch-seconds"""
    if not _is_kind(fields, LineKind.TIME):
        return None
    return safe_int(field_at(fields, 1))


def classify_rated(fields: list[str]) -> bool:
    """|rated| or |rated|message: presence only."""
    return _is_kind(fields, LineKind.RATED)


def classify_win(fields: list[str]) -> str | None:
    """|win|Name"""
    if not _is_kind(fields, LineKind.WIN):
        return None
    return clean_token(field_at(fields, 1))


def classify_gen(fields: list[str]) -> int | None:
    """|gen|9"""
    if not _is_kind(fields, LineKind.GEN):
        return None
    return safe_int(field_at(fields, 1))


def classify_game_type(fields: list[str]) -> str | None:
    """|gametype|doubles"""
    if not _is_kind(fields, LineKind.GAMETYPE):
        return None
    value = clean_token(field_at(fields, 1))
    return value.lower() if value else None


def classify_move(fields: list[str]) -> str | None:
    """|move|p1a: Nick|Move Name|target"""
    if not _is_kind(fields, LineKind.MOVE):
        return None
    return clean_token(field_at(fields, 2))
