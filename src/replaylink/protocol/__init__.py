"""
ReplayLink Protocol - Showdown battle log parsing.

This module contains:
- tokenizer: line splitting and field tokenization
- classifiers: per-kind line recognizers producing typed fragments
- showteam: packed open-team-sheet parser
- header: battle header builder
- materializer: event/side/preview/revealed row builder
"""

from replaylink.protocol.header import build_battle_header, resolve_winner_side
from replaylink.protocol.materializer import materialize_line, materialize_lines, materialize_log
from replaylink.protocol.showteam import parse_packed_entry, parse_packed_team
from replaylink.protocol.tokenizer import split_fields, split_log_lines

__all__ = [
    "build_battle_header",
    "materialize_line",
    "materialize_lines",
    "materialize_log",
    "parse_packed_entry",
    "parse_packed_team",
    "resolve_winner_side",
    "split_fields",
    "split_log_lines",
]
