"""Tests for battle-to-team linking: auto-link, backfill and manual confirmation."""

from __future__ import annotations

import pytest
from replay_samples import DOUBLES_LOG, P1_TEAM, P2_TEAM, replay_payload

from replaylink.core.config import ReplayLinkConfig
from replaylink.core.constants import MatchedBy, Side, SpeciesSource
from replaylink.core.errors import NotFoundError, ReplayLinkError
from replaylink.infra.database import DatabaseManager
from replaylink.infra.repository import BattleRepository
from replaylink.linking.orchestrator import METHOD_USER_CONFIRMED
from replaylink.pipeline.ingest import ReplayIngestService

FORMAT = "gen9vgc2024regg"
BROUGHT_FOUR = ["Dragonite", "Gholdengo", "Great Tusk", "Rotom-Wash"]

# p1 shows six at preview and never switches in
PREVIEW_ONLY_LOG = "\n".join(
    [
        "|player|p1|Alice|1|",
        "|player|p2|Bob|2|",
        "|gametype|doubles",
    ]
    + [f"|poke|p1|{name}, L50|" for name in P1_TEAM]
    + [f"|poke|p2|{name}, L50|" for name in P2_TEAM]
    + ["|win|Bob"]
)


@pytest.fixture
def db(tmp_path):
    manager = DatabaseManager(tmp_path / "replays.db")
    yield manager
    manager.dispose()


@pytest.fixture
def service(db):
    config = ReplayLinkConfig()
    config.ingest.showdown_username = "Alice"
    return ReplayIngestService(db=db, config=config)


@pytest.fixture
def linker(service):
    return service.linker


def _ingest(service, replay_id, log=DOUBLES_LOG, **extra):
    return service.ingest_payload(replay_payload(replay_id, log=log, **extra)).battle_id


def _add_team(db, name, species, format_key=FORMAT):
    with db.session_scope() as session:
        return BattleRepository(session).add_team_version(name, species, format_key).id


def _link(db, battle_id, side=Side.P1):
    with db.session_scope() as session:
        link = BattleRepository(session).get_link(battle_id, side)
        return link.to_dict() if link else None


class TestAutoLink:
    """Test linking one battle against every team."""

    def test_links_brought_species(self, db, service, linker):
        battle_id = _ingest(service, f"{FORMAT}-1")
        tv_id = _add_team(db, "Dragon Balance", P1_TEAM)

        outcome = linker.auto_link_battle(battle_id)

        assert outcome.linked is True
        assert outcome.team_version_id == tv_id
        assert outcome.source == SpeciesSource.BROUGHT
        assert outcome.method == "team-link_brought_overlap"
        link = _link(db, battle_id)
        assert link["team_version_id"] == tv_id
        assert link["matched_by"] == MatchedBy.AUTO

    def test_highest_confidence_wins(self, db, service, linker):
        battle_id = _ingest(service, f"{FORMAT}-1")
        _add_team(db, "Full Six", P1_TEAM)
        exact = _add_team(db, "Core Four", BROUGHT_FOUR)

        outcome = linker.auto_link_battle(battle_id)

        assert outcome.team_version_id == exact
        assert outcome.confidence == 1.0

    def test_latest_version_only(self, db, service, linker):
        battle_id = _ingest(service, f"{FORMAT}-1")
        _add_team(db, "Dragon Balance", P1_TEAM)
        v2 = _add_team(db, "Dragon Balance", ["Dragonite", "Pikachu", "Raichu", "Pichu", "Eevee", "Ditto"])

        outcome = linker.auto_link_battle(battle_id)

        assert outcome.linked is False
        assert outcome.reason == "below_threshold"
        with db.session_scope() as session:
            assert BattleRepository(session).get_team_version(v2).version_num == 2

    def test_format_filter_falls_back_to_all_teams(self, db, service, linker):
        battle_id = _ingest(service, f"{FORMAT}-1")
        tv_id = _add_team(db, "Other Format", P1_TEAM, format_key="gen9ou")

        outcome = linker.auto_link_battle(battle_id)

        assert outcome.linked is True
        assert outcome.team_version_id == tv_id

    def test_format_filter_prefers_matching_format(self, db, service, linker):
        battle_id = _ingest(service, f"{FORMAT}-1")
        _add_team(db, "Other Format", BROUGHT_FOUR, format_key="gen9ou")
        same_format = _add_team(db, "Same Format", P1_TEAM)

        outcome = linker.auto_link_battle(battle_id)

        assert outcome.team_version_id == same_format

    def test_preview_only_needs_more_overlap(self, db, service, linker):
        battle_id = _ingest(service, f"{FORMAT}-1", log=PREVIEW_ONLY_LOG)
        _add_team(db, "Four Shared", P1_TEAM[:4] + ["Pikachu", "Eevee"])

        outcome = linker.auto_link_battle(battle_id)
        assert outcome.source == SpeciesSource.PREVIEW
        assert outcome.reason == "below_threshold"

        five = _add_team(db, "Five Shared", P1_TEAM[:5] + ["Pikachu"])
        outcome = linker.auto_link_battle(battle_id)
        assert outcome.linked is True
        assert outcome.team_version_id == five
        assert outcome.method == "team-link_preview_overlap"

    def test_no_user_side(self, db):
        service = ReplayIngestService(db=db, config=ReplayLinkConfig())
        battle_id = _ingest(service, f"{FORMAT}-1")
        _add_team(db, "Dragon Balance", P1_TEAM)

        outcome = service.linker.auto_link_battle(battle_id)

        assert outcome.linked is False
        assert outcome.reason == "no_user_side"
        assert _link(db, battle_id) is None

    def test_no_candidates(self, service, linker):
        battle_id = _ingest(service, f"{FORMAT}-1")
        outcome = linker.auto_link_battle(battle_id)
        assert outcome.reason == "no_candidates"

    def test_unknown_battle(self, linker):
        with pytest.raises(NotFoundError):
            linker.auto_link_battle(404)

    def test_user_link_is_kept(self, db, service, linker):
        battle_id = _ingest(service, f"{FORMAT}-1")
        chosen = _add_team(db, "Hand Picked", ["Kingambit"])
        linker.confirm_link(battle_id, chosen)
        _add_team(db, "Dragon Balance", P1_TEAM)

        outcome = linker.auto_link_battle(battle_id)

        assert outcome.linked is False
        assert outcome.reason == "user_link_kept"
        link = _link(db, battle_id)
        assert link["team_version_id"] == chosen
        assert link["matched_by"] == MatchedBy.USER

    def test_relink_battle(self, db, service):
        battle_id = _ingest(service, f"{FORMAT}-1")
        tv_id = _add_team(db, "Dragon Balance", P1_TEAM)
        assert service.relink_battle(battle_id).team_version_id == tv_id


class TestBackfill:
    """Test linking one team version across stored battles."""

    def test_links_every_candidate(self, db, service, linker):
        first = _ingest(service, f"{FORMAT}-1", uploadtime=1700000100)
        second = _ingest(service, f"{FORMAT}-2", uploadtime=1700000200)
        tv_id = _add_team(db, "Dragon Balance", P1_TEAM)

        report = linker.backfill_team_version(tv_id)

        assert report.scanned == 2
        assert report.linked == 2
        assert report.failed == 0
        assert sorted(report.linked_battle_ids) == sorted([first, second])

    def test_skips_battles_without_user_side(self, db, linker):
        anonymous = ReplayIngestService(db=db, config=ReplayLinkConfig())
        _ingest(anonymous, f"{FORMAT}-1")
        tv_id = _add_team(db, "Dragon Balance", P1_TEAM)

        report = linker.backfill_team_version(tv_id)

        assert report.scanned == 0

    def test_replaces_auto_link_only_when_more_confident(self, db, service, linker):
        battle_id = _ingest(service, f"{FORMAT}-1")
        six = _add_team(db, "Full Six", P1_TEAM)
        linker.backfill_team_version(six)

        also_six = _add_team(db, "Another Six", BROUGHT_FOUR + ["Amoonguss", "Pikachu"])
        report = linker.backfill_team_version(also_six)
        assert report.linked == 0
        assert report.skipped == 1
        assert _link(db, battle_id)["team_version_id"] == six

        four = _add_team(db, "Core Four", BROUGHT_FOUR)
        report = linker.backfill_team_version(four)
        assert report.linked == 1
        assert _link(db, battle_id)["team_version_id"] == four

    def test_user_confirmed_battles_are_not_scanned(self, db, service, linker):
        battle_id = _ingest(service, f"{FORMAT}-1")
        chosen = _add_team(db, "Hand Picked", ["Kingambit"])
        linker.confirm_link(battle_id, chosen)

        tv_id = _add_team(db, "Core Four", BROUGHT_FOUR)
        report = linker.backfill_team_version(tv_id)

        assert report.scanned == 0
        assert _link(db, battle_id)["team_version_id"] == chosen

    def test_format_filter_falls_back(self, db, service, linker):
        _ingest(service, f"{FORMAT}-1")
        tv_id = _add_team(db, "Other Format", P1_TEAM, format_key="gen9ou")

        report = linker.backfill_team_version(tv_id)

        assert report.scanned == 1
        assert report.linked == 1

    def test_explicit_format_hint(self, db, service, linker):
        _ingest(service, f"{FORMAT}-1")
        _ingest(service, "gen9ou-7", formatid="gen9ou", format="[Gen 9] OU")
        tv_id = _add_team(db, "Dragon Balance", P1_TEAM, format_key=None)

        report = linker.backfill_team_version(tv_id, format_key_hint="gen9vgc")

        assert report.scanned == 1

    def test_limit(self, db, service, linker):
        for n in range(3):
            _ingest(service, f"{FORMAT}-{n}")
        tv_id = _add_team(db, "Dragon Balance", P1_TEAM)

        report = linker.backfill_team_version(tv_id, limit=2)

        assert report.scanned == 2

    def test_failures_are_counted_and_scan_continues(self, db, service, linker, monkeypatch):
        first = _ingest(service, f"{FORMAT}-1", uploadtime=1700000100)
        _ingest(service, f"{FORMAT}-2", uploadtime=1700000200)
        tv_id = _add_team(db, "Dragon Balance", P1_TEAM)

        original = linker._backfill_one

        def flaky(battle_id, team_version_id, team_species):
            if battle_id == first:
                raise RuntimeError("locked")
            return original(battle_id, team_version_id, team_species)

        monkeypatch.setattr(linker, "_backfill_one", flaky)
        report = linker.backfill_team_version(tv_id)

        assert report.scanned == 2
        assert report.failed == 1
        assert report.linked == 1

    def test_unknown_team_version(self, linker):
        with pytest.raises(NotFoundError):
            linker.backfill_team_version(999)


class TestConfirmLink:
    """Test user-confirmed links."""

    def test_confirm_defaults_to_user_side(self, db, service, linker):
        battle_id = _ingest(service, f"{FORMAT}-1")
        tv_id = _add_team(db, "Dragon Balance", P1_TEAM)

        side = linker.confirm_link(battle_id, tv_id)

        assert side == Side.P1
        link = _link(db, battle_id)
        assert link["matched_by"] == MatchedBy.USER
        assert link["match_method"] == METHOD_USER_CONFIRMED
        assert link["match_confidence"] == pytest.approx(4 / 6)

    def test_confirm_replaces_auto_link(self, db, service, linker):
        battle_id = _ingest(service, f"{FORMAT}-1")
        auto = _add_team(db, "Core Four", BROUGHT_FOUR)
        linker.auto_link_battle(battle_id)
        chosen = _add_team(db, "Hand Picked", ["Kingambit"])

        linker.confirm_link(battle_id, chosen)

        link = _link(db, battle_id)
        assert link["team_version_id"] == chosen
        assert link["team_version_id"] != auto

    def test_confirm_explicit_side(self, db, service, linker):
        battle_id = _ingest(service, f"{FORMAT}-1")
        tv_id = _add_team(db, "Opponent Team", P2_TEAM)

        assert linker.confirm_link(battle_id, tv_id, Side.P2) == Side.P2
        assert _link(db, battle_id, Side.P2)["team_version_id"] == tv_id

    def test_confirm_without_user_side(self, db):
        service = ReplayIngestService(db=db, config=ReplayLinkConfig())
        battle_id = _ingest(service, f"{FORMAT}-1")
        tv_id = _add_team(db, "Dragon Balance", P1_TEAM)

        with pytest.raises(ReplayLinkError):
            service.linker.confirm_link(battle_id, tv_id)

    def test_confirm_unknown_ids(self, db, service, linker):
        battle_id = _ingest(service, f"{FORMAT}-1")
        with pytest.raises(NotFoundError):
            linker.confirm_link(battle_id, 77)
        tv_id = _add_team(db, "Dragon Balance", P1_TEAM)
        with pytest.raises(NotFoundError):
            linker.confirm_link(9000, tv_id)


class TestBattleList:
    """Test the battle list read model."""

    def test_rows_show_result_and_link(self, db, service, linker):
        battle_id = _ingest(service, f"{FORMAT}-1")
        _add_team(db, "Dragon Balance", P1_TEAM)
        linker.auto_link_battle(battle_id)

        with db.session_scope() as session:
            rows = BattleRepository(session).list_battles()

        assert len(rows) == 1
        row = rows[0]
        assert row["user_side"] == Side.P1
        assert row["opponent_name"] == "Bob"
        assert row["result"] == "win"
        assert row["linked_team_name"] == "Dragon Balance"
        assert row["link_matched_by"] == MatchedBy.AUTO
        assert [e["species_name"] for e in row["user_brought"] if e["is_lead"]] == [
            "Dragonite",
            "Gholdengo",
        ]

    def test_newest_first(self, service, db):
        _ingest(service, f"{FORMAT}-old", log=PREVIEW_ONLY_LOG, uploadtime=100)
        _ingest(service, f"{FORMAT}-new", log=PREVIEW_ONLY_LOG, uploadtime=200)

        with db.session_scope() as session:
            rows = BattleRepository(session).list_battles()

        assert [r["replay_id"] for r in rows] == [f"{FORMAT}-new", f"{FORMAT}-old"]
        assert rows[0]["result"] == "loss"
        assert len(rows[0]["opponent_brought"]) == 6  # preview fallback
