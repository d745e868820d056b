"""
Brought-Pokemon derivation.

A Pokemon counts as "brought" once any switch-like line (|switch|, |drag|,
|replace|) puts it on the field. The first distinct species seen at each
lead-eligible board position is flagged as a lead.

Lead detection is a first-appearance heuristic, not a read of the actual
pre-battle team order. It mis-attributes leads when the log is truncated
before the first switch into a position, or when a |replace| (Illusion) is
the first line seen for that position.
"""

import logging
from collections.abc import Iterable
from typing import Protocol

from replaylink.core.constants import (
    LEAD_SLOTS_BY_GAME_TYPE,
    LEAD_SLOTS_UNKNOWN_GAME_TYPE,
    SWITCH_LIKE_KINDS,
    Side,
)
from replaylink.core.schemas import BroughtSighting
from replaylink.core.utils import normalize_species
from replaylink.protocol.classifiers import classify_switch
from replaylink.protocol.tokenizer import line_kind, split_fields

logger = logging.getLogger(__name__)

_SLOT_LETTERS = "abcd"


class EventLike(Protocol):
    sequence: int
    raw_line: str


def lead_positions(game_type: str | None) -> frozenset[str]:
    """Board positions (``p1a``, ``p2b``, ...) whose first occupant is a lead."""
    if game_type:
        count = LEAD_SLOTS_BY_GAME_TYPE.get(game_type.lower(), 1)
    else:
        count = LEAD_SLOTS_UNKNOWN_GAME_TYPE
    letters = _SLOT_LETTERS[:count]
    return frozenset(f"{side}{letter}" for side in (Side.P1, Side.P2) for letter in letters)


def derive_brought(events: Iterable[EventLike], game_type: str | None = None) -> list[BroughtSighting]:
    """
    Derive brought Pokemon from an ordered event list.

    Returns one sighting per (side, species), species compared
    case-insensitively, ordered by first appearance.
    """
    eligible = lead_positions(game_type)
    sightings: dict[tuple[str, str], BroughtSighting] = {}
    occupied_positions: set[str] = set()

    for ev in sorted(events, key=lambda e: e.sequence):
        fields = split_fields(ev.raw_line)
        if line_kind(fields) not in SWITCH_LIKE_KINDS:
            continue
        switch = classify_switch(fields)
        if switch is None:
            logger.debug(f"Skipping unparseable switch line at {ev.sequence}: {ev.raw_line!r}")
            continue

        key = (switch.side, normalize_species(switch.species))
        sighting = sightings.get(key)
        if sighting is None:
            sighting = BroughtSighting(
                side=switch.side,
                species=switch.species,
                first_seen_sequence=ev.sequence,
                source=switch.kind,
            )
            sightings[key] = sighting

        if switch.position in eligible and switch.position not in occupied_positions:
            occupied_positions.add(switch.position)
            sighting.is_lead = True

    return list(sightings.values())
