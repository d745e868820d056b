"""
Battle header builder.

Derives top-level battle metadata from one forward pass over the log:

- played_at: first |t:| value, else the supplied upload time, else now
- is_rated: any |rated| line
- gen / game_type: first values seen
- winner: last |win| line, resolved to a side by normalized player name
"""

from replaylink.core.constants import Side
from replaylink.core.schemas import BattleHeader
from replaylink.core.utils import normalize_showdown_name, now_unix
from replaylink.protocol.classifiers import (
    classify_game_type,
    classify_gen,
    classify_player,
    classify_rated,
    classify_timestamp,
    classify_win,
)
from replaylink.protocol.tokenizer import split_fields


def resolve_winner_side(winner_name: str | None, player_names: dict[str, str]) -> Side | None:
    """Map a winner display name onto p1/p2; None when it matches neither player."""
    winner = normalize_showdown_name(winner_name)
    if not winner:
        return None
    for side in (Side.P1, Side.P2):
        name = player_names.get(side)
        if name and normalize_showdown_name(name) == winner:
            return side
    return None


def build_battle_header(
    lines: list[str],
    upload_time: int | None = None,
    now: int | None = None,
) -> BattleHeader:
    """
    Build the battle header from already-split log lines.

    Args:
        lines: Non-empty log lines in order
        upload_time: Epoch seconds the replay host reports, if any
        now: Ingestion time fallback (defaults to the current time)
    """
    header = BattleHeader()
    first_t: int | None = None
    found_gen = False
    found_game_type = False

    for line in lines:
        fields = split_fields(line)

        if first_t is None:
            first_t = classify_timestamp(fields)

        if classify_rated(fields):
            header.is_rated = True

        if not (found_gen and found_game_type):
            gen = classify_gen(fields)
            if gen is not None and not found_gen:
                header.gen = gen
                found_gen = True
            game_type = classify_game_type(fields)
            if game_type is not None and not found_game_type:
                header.game_type = game_type
                found_game_type = True

        player = classify_player(fields)
        if player is not None:
            header.player_names[player.side] = player.name

        winner = classify_win(fields)
        if winner is not None:
            header.winner_name = winner

    if first_t is not None:
        header.played_at = first_t
    elif upload_time is not None:
        header.played_at = upload_time
    else:
        header.played_at = now if now is not None else now_unix()

    header.winner_side = resolve_winner_side(header.winner_name, header.player_names)
    return header
