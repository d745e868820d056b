"""
Entity materializer.

Walks the log once and produces the normalized rows for one battle: one
EventRow per line (always, even when the line also yields a structured row),
plus SideRows for |player|, PreviewRows for |poke| and RevealedRows for
|showteam|.

The running turn/time is threaded through ``materialize_line`` as an explicit
ScanState so a single line can be materialized and tested in isolation.
"""

from dataclasses import dataclass, field, replace

from replaylink.core.constants import LineKind, Side
from replaylink.core.schemas import (
    EventRow,
    MaterializedBattle,
    PreviewRow,
    RevealedRow,
    SideRow,
)
from replaylink.protocol.classifiers import (
    classify_move,
    classify_player,
    classify_preview,
    classify_showteam,
    classify_timestamp,
    classify_turn,
    parse_side,
)
from replaylink.protocol.tokenizer import field_at, line_kind, split_fields, split_log_lines


@dataclass(frozen=True)
class ScanState:
    """Carried-forward state between lines."""

    sequence: int = 0
    turn: int | None = None
    t_unix: int | None = None
    preview_slots: dict[str, int] = field(default_factory=lambda: {Side.P1: 0, Side.P2: 0})


@dataclass
class LineResult:
    """Rows produced by one line."""

    event: EventRow
    side: SideRow | None = None
    preview: PreviewRow | None = None
    revealed: list[RevealedRow] = field(default_factory=list)


def materialize_line(line: str, state: ScanState) -> tuple[LineResult, ScanState]:
    """
    Materialize one raw line.

    Returns the line's rows and the state to use for the next line. The input
    state is never mutated.
    """
    fields = split_fields(line)
    kind = line_kind(fields)

    turn = state.turn
    t_unix = state.t_unix
    if kind == LineKind.TURN:
        parsed_turn = classify_turn(fields)
        if parsed_turn is not None:
            turn = parsed_turn
    elif kind == LineKind.TIME:
        parsed_t = classify_timestamp(fields)
        if parsed_t is not None:
            t_unix = parsed_t

    result = LineResult(
        event=EventRow(
            sequence=state.sequence,
            line_type=kind,
            raw_line=line,
            turn_num=turn,
            t_unix=t_unix,
            move_name=classify_move(fields),
        )
    )
    preview_slots = state.preview_slots

    player = classify_player(fields)
    if player is not None:
        result.side = SideRow(
            side=player.side,
            player_name=player.name,
            avatar=player.avatar,
            rating=player.rating,
        )

    # Every poke line with a side takes a slot, even when its species is unreadable
    poke_side = parse_side(field_at(fields, 1)) if kind == LineKind.POKE else None
    if poke_side is not None:
        preview_slots = dict(preview_slots)
        preview_slots[poke_side] = preview_slots.get(poke_side, 0) + 1

    preview = classify_preview(fields)
    if preview is not None:
        result.preview = PreviewRow(
            side=preview.side,
            slot_index=preview_slots[preview.side],
            species=preview.species,
            level=preview.level,
            gender=preview.gender,
            raw_text=preview.raw_text,
        )

    showteam = classify_showteam(fields)
    if showteam is not None:
        result.revealed = [RevealedRow(side=showteam.side, set=s) for s in showteam.sets]

    next_state = replace(
        state,
        sequence=state.sequence + 1,
        turn=turn,
        t_unix=t_unix,
        preview_slots=preview_slots,
    )
    return result, next_state


def materialize_lines(lines: list[str]) -> MaterializedBattle:
    """Materialize already-split log lines."""
    battle = MaterializedBattle()
    sides: dict[str, SideRow] = {}
    state = ScanState()

    for line in lines:
        result, state = materialize_line(line, state)
        battle.events.append(result.event)
        if result.side is not None:
            # A later |player| line for the same side supersedes the earlier one
            sides[result.side.side] = result.side
        if result.preview is not None:
            battle.preview.append(result.preview)
        battle.revealed.extend(result.revealed)

    battle.sides = [sides[side] for side in (Side.P1, Side.P2) if side in sides]
    return battle


def materialize_log(raw_log: str) -> MaterializedBattle:
    """Split and materialize a raw log."""
    return materialize_lines(split_log_lines(raw_log))
