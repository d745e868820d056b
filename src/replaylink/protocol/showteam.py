"""
Packed team parser for ``|showteam|`` payloads.

Showdown packs an open team sheet as ``]``-separated entries, each a
``|``-separated positional record::

    Species|Nickname|?|Item|Ability|Move1,Move2,...|?|?|Gender|?|?|Level|,,,,,Tera

The format is undocumented and varies across formats and generations, so
every position is parsed on its own: a missing or malformed field becomes
None without rejecting the entry. Only a blank species drops an entry.
"""

import logging

from replaylink.core.constants import (
    DETAIL_DELIMITER,
    FIELD_DELIMITER,
    GENDERS,
    PACKED_ENTRY_DELIMITER,
)
from replaylink.core.schemas import RevealedSetFragment
from replaylink.core.utils import clean_token, safe_int
from replaylink.protocol.tokenizer import field_at

logger = logging.getLogger(__name__)

# Positional layout of a packed entry
POS_SPECIES = 0
POS_NICKNAME = 1
POS_ITEM = 3
POS_ABILITY = 4
POS_MOVES = 5
POS_GENDER = 8
POS_LEVEL = 11
POS_TAIL = 12


def split_packed_entries(blob: str | None) -> list[str]:
    """Split a packed team into raw entry strings. The trailing chunk may be empty."""
    if not blob:
        return []
    chunks = (chunk.strip() for chunk in blob.split(PACKED_ENTRY_DELIMITER))
    return [chunk for chunk in chunks if chunk]


def _parse_moves(segment: str | None) -> tuple[str, ...]:
    if not segment:
        return ()
    moves = (move.strip() for move in segment.split(DETAIL_DELIMITER))
    return tuple(move for move in moves if move)


def _parse_gender(segment: str | None) -> str | None:
    token = clean_token(segment)
    return token if token in GENDERS else None


def _parse_tera(segment: str | None) -> str | None:
    # Tera sits at the end of a comma-packed tail like ",,,,,Dark"
    tail = clean_token(segment)
    if not tail or DETAIL_DELIMITER not in tail:
        return None
    return clean_token(tail.split(DETAIL_DELIMITER)[-1])


def parse_packed_entry(entry: str) -> RevealedSetFragment | None:
    """Parse one packed entry; None only when the species is blank."""
    fields = entry.split(FIELD_DELIMITER)

    species = clean_token(field_at(fields, POS_SPECIES))
    if not species:
        return None

    return RevealedSetFragment(
        species=species,
        nickname=clean_token(field_at(fields, POS_NICKNAME)),
        item=clean_token(field_at(fields, POS_ITEM)),
        ability=clean_token(field_at(fields, POS_ABILITY)),
        moves=_parse_moves(clean_token(field_at(fields, POS_MOVES))),
        gender=_parse_gender(field_at(fields, POS_GENDER)),
        level=safe_int(clean_token(field_at(fields, POS_LEVEL))),
        tera=_parse_tera(field_at(fields, POS_TAIL)),
        raw=entry,
    )


def parse_packed_team(blob: str | None) -> list[RevealedSetFragment]:
    """Parse a whole packed team, skipping entries without a species."""
    sets: list[RevealedSetFragment] = []
    for raw_entry in split_packed_entries(blob):
        parsed = parse_packed_entry(raw_entry)
        if parsed is None:
            logger.debug(f"Skipping packed entry without species: {raw_entry[:40]!r}")
            continue
        sets.append(parsed)
    return sets
