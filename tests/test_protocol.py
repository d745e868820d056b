"""Tests for the protocol layer: tokenizer, line classifiers, packed teams and the battle header."""

from __future__ import annotations

from replay_samples import DOUBLES_LOG, DRAGONITE_PACKED, GHOLDENGO_PACKED, SINGLES_LOG

from replaylink.core.constants import Side
from replaylink.protocol.classifiers import (
    classify_game_type,
    classify_gen,
    classify_move,
    classify_player,
    classify_preview,
    classify_rated,
    classify_showteam,
    classify_switch,
    classify_timestamp,
    classify_turn,
    classify_win,
    parse_actor_ref,
    parse_preview_details,
)
from replaylink.protocol.header import build_battle_header, resolve_winner_side
from replaylink.protocol.showteam import parse_packed_entry, parse_packed_team
from replaylink.protocol.tokenizer import field_at, line_kind, split_fields, split_log_lines


class TestTokenizer:
    """Test line and field splitting."""

    def test_split_log_lines_drops_blank_lines(self):
        lines = split_log_lines("|turn|1\n\n   \n|win|Alice  \r\n")
        assert lines == ["|turn|1", "|win|Alice"]

    def test_split_log_lines_empty(self):
        assert split_log_lines("") == []
        assert split_log_lines(None) == []

    def test_split_fields_drops_leading_empty_field(self):
        fields = split_fields("|switch|p1a: Shroom|Amoonguss, L50, F|100/100")
        assert fields == ["switch", "p1a: Shroom", "Amoonguss, L50, F", "100/100"]

    def test_split_fields_keeps_trailing_empty_field(self):
        assert split_fields("|rated|") == ["rated", ""]

    def test_garbage_line_never_raises(self):
        """A bare delimiter or empty string still tokenizes to an unknown kind."""
        assert line_kind(split_fields("|")) == "unknown"
        assert line_kind(split_fields("")) == "unknown"
        assert line_kind(split_fields("no pipes here")) == "no pipes here"

    def test_field_at_tolerates_short_lines(self):
        fields = split_fields("|turn")
        assert field_at(fields, 0) == "turn"
        assert field_at(fields, 1) is None


class TestClassifiers:
    """Test the per-kind line classifiers."""

    def test_player(self):
        player = classify_player(split_fields("|player|p1|Alice|ethan|1520"))
        assert player is not None
        assert player.side == Side.P1
        assert player.name == "Alice"
        assert player.avatar == "ethan"
        assert player.rating == 1520

    def test_player_seat_release_is_ignored(self):
        """A |player| line with an empty name is not a player."""
        assert classify_player(split_fields("|player|p2|")) is None

    def test_player_bad_side(self):
        assert classify_player(split_fields("|player|p3|Carol|1|")) is None

    def test_preview(self):
        preview = classify_preview(split_fields("|poke|p2|Okidogi, L50, M|item"))
        assert preview is not None
        assert preview.side == Side.P2
        assert preview.species == "Okidogi"
        assert preview.level == 50
        assert preview.gender == "M"
        assert preview.raw_text == "Okidogi, L50, M"

    def test_preview_details_without_level_or_gender(self):
        assert parse_preview_details("Flutter Mane") == ("Flutter Mane", None, None)

    def test_preview_without_species(self):
        assert classify_preview(split_fields("|poke|p1||")) is None

    def test_switch(self):
        switch = classify_switch(split_fields("|switch|p1b: Goldy|Gholdengo, L50|100/100"))
        assert switch is not None
        assert switch.kind == "switch"
        assert switch.side == Side.P1
        assert switch.position == "p1b"
        assert switch.species == "Gholdengo"
        assert switch.nickname == "Goldy"

    def test_drag_and_replace_are_switch_like(self):
        drag = classify_switch(split_fields("|drag|p2b: Flutter Mane|Flutter Mane, L50|100/100"))
        replace = classify_switch(split_fields("|replace|p2a: Zoroark|Zoroark-Hisui, L50, F"))
        assert drag is not None and drag.kind == "drag"
        assert replace is not None and replace.species == "Zoroark-Hisui"

    def test_switch_rejects_other_kinds(self):
        assert classify_switch(split_fields("|move|p1a: Dragonite|Extreme Speed|p2a: Amoonguss")) is None

    def test_switch_without_details(self):
        assert classify_switch(split_fields("|switch|p1a: Dragonite|")) is None

    def test_actor_ref_without_slot_letter(self):
        assert parse_actor_ref("p1: Pikachu") == (Side.P1, "p1a", "Pikachu")

    def test_actor_ref_garbage(self):
        assert parse_actor_ref("spectator") is None

    def test_scalar_classifiers(self):
        assert classify_turn(split_fields("|turn|7")) == 7
        assert classify_turn(split_fields("|turn|soon")) is None
        assert classify_timestamp(split_fields("|t:|1700000000")) == 1700000000
        assert classify_gen(split_fields("|gen|9")) == 9
        assert classify_game_type(split_fields("|gametype|Doubles")) == "doubles"
        assert classify_win(split_fields("|win|Alice")) == "Alice"
        assert classify_move(split_fields("|move|p1a: Dragonite|Extreme Speed|p2a: Amoonguss")) == (
            "Extreme Speed"
        )

    def test_rated_is_presence_only(self):
        assert classify_rated(split_fields("|rated|"))
        assert classify_rated(split_fields("|rated|Tournament battle"))
        assert not classify_rated(split_fields("|tier|[Gen 9] OU"))

    def test_classifiers_ignore_other_kinds(self):
        fields = split_fields("|turn|3")
        assert classify_player(fields) is None
        assert classify_preview(fields) is None
        assert classify_showteam(fields) is None
        assert classify_win(fields) is None
        assert classify_timestamp(fields) is None


class TestShowteam:
    """Test packed team parsing."""

    def test_full_entry(self):
        parsed = parse_packed_entry(DRAGONITE_PACKED)
        assert parsed is not None
        assert parsed.species == "Dragonite"
        assert parsed.nickname is None
        assert parsed.item == "ChoiceBand"
        assert parsed.ability == "Multiscale"
        assert parsed.moves == ("ExtremeSpeed", "FireBlitz", "StompingTantrum", "LowKick")
        assert parsed.gender == "M"
        assert parsed.level == 50
        assert parsed.tera == "Normal"
        assert parsed.raw == DRAGONITE_PACKED

    def test_nickname_and_missing_gender(self):
        parsed = parse_packed_entry(GHOLDENGO_PACKED)
        assert parsed is not None
        assert parsed.nickname == "Goldy"
        assert parsed.gender is None
        assert parsed.tera == "Steel"

    def test_truncated_entry_degrades_gracefully(self):
        """A two-field entry keeps species and nickname; everything else is absent."""
        parsed = parse_packed_entry("Pikachu|Sparky")
        assert parsed is not None
        assert parsed.species == "Pikachu"
        assert parsed.nickname == "Sparky"
        assert parsed.item is None
        assert parsed.ability is None
        assert parsed.moves == ()
        assert parsed.level is None
        assert parsed.tera is None

    def test_malformed_level_does_not_reject_entry(self):
        parsed = parse_packed_entry("Garchomp|||RockyHelmet|RoughSkin|Earthquake||||||abc|")
        assert parsed is not None
        assert parsed.level is None
        assert parsed.item == "RockyHelmet"
        assert parsed.moves == ("Earthquake",)

    def test_entry_without_species_is_dropped(self):
        assert parse_packed_entry("|Nick||Leftovers") is None

    def test_team_skips_empty_chunks(self):
        team = parse_packed_team(f"{DRAGONITE_PACKED}]]|Nick||Leftovers]{GHOLDENGO_PACKED}]")
        assert [s.species for s in team] == ["Dragonite", "Gholdengo"]

    def test_showteam_line_rejoins_pipes(self):
        fragment = classify_showteam(split_fields(f"|showteam|p1|{DRAGONITE_PACKED}]{GHOLDENGO_PACKED}"))
        assert fragment is not None
        assert fragment.side == Side.P1
        assert [s.species for s in fragment.sets] == ["Dragonite", "Gholdengo"]
        assert fragment.sets[0].item == "ChoiceBand"


class TestBattleHeader:
    """Test header derivation."""

    def test_doubles_header(self):
        header = build_battle_header(split_log_lines(DOUBLES_LOG), upload_time=1700000100)
        assert header.played_at == 1700000000  # first |t:| wins over upload time
        assert header.is_rated is True
        assert header.gen == 9
        assert header.game_type == "doubles"
        assert header.winner_name == "Alice"
        assert header.winner_side == Side.P1
        assert header.player_names == {Side.P1: "Alice", Side.P2: "Bob"}

    def test_played_at_falls_back_to_upload_time(self):
        header = build_battle_header(split_log_lines(SINGLES_LOG), upload_time=1234, now=9999)
        assert header.played_at == 1234

    def test_played_at_falls_back_to_now(self):
        header = build_battle_header(split_log_lines(SINGLES_LOG), now=9999)
        assert header.played_at == 9999

    def test_winner_resolves_through_name_normalization(self):
        """'@Bob' on the player line and 'Bob' on the win line are the same player."""
        header = build_battle_header(split_log_lines(SINGLES_LOG), now=1)
        assert header.is_rated is False
        assert header.winner_side == Side.P2

    def test_last_win_line_counts(self):
        lines = ["|player|p1|Alice|1|", "|player|p2|Bob|2|", "|win|Alice", "|win|Bob"]
        header = build_battle_header(lines, now=1)
        assert header.winner_name == "Bob"
        assert header.winner_side == Side.P2

    def test_first_gen_and_game_type_win(self):
        lines = ["|gen|8", "|gametype|singles", "|gen|9", "|gametype|doubles"]
        header = build_battle_header(lines, now=1)
        assert header.gen == 8
        assert header.game_type == "singles"

    def test_unknown_winner(self):
        players = {Side.P1: "Alice", Side.P2: "Bob"}
        assert resolve_winner_side("Carol", players) is None
        assert resolve_winner_side(None, players) is None
        assert resolve_winner_side("☆ALICE", players) == Side.P1
