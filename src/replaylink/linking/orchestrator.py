"""
Battle-to-team linking.

Two directions share the same scoring primitive:

- auto_link_battle: one battle against the latest version of every team
- backfill_team_version: one team version against many unconfirmed battles

Links written here are attributed ``auto`` and never replace a link a user
confirmed.
"""

import logging
from dataclasses import dataclass, field, replace

from replaylink.core.config import MatchingConfig, get_config
from replaylink.core.constants import MatchedBy, Side, SpeciesSource
from replaylink.core.errors import NotFoundError, ReplayLinkError
from replaylink.core.utils import PerformanceMonitor
from replaylink.infra.database import DatabaseManager, get_db
from replaylink.infra.repository import BattleRepository
from replaylink.linking.matcher import MatchResult, compute_overlap_match, default_thresholds
from replaylink.linking.selectors import select_species_list

logger = logging.getLogger(__name__)

METHOD_USER_CONFIRMED = "user_confirmed"


@dataclass
class LinkOutcome:
    """Result of one auto-link attempt."""

    battle_id: int
    linked: bool = False
    team_version_id: int | None = None
    confidence: float | None = None
    method: str | None = None
    source: SpeciesSource = SpeciesSource.NONE
    reason: str | None = None  # why nothing was written


@dataclass
class BackfillReport:
    team_version_id: int
    scanned: int = 0
    linked: int = 0
    skipped: int = 0
    failed: int = 0
    linked_battle_ids: list[int] = field(default_factory=list)


class TeamLinker:
    """Links battles to imported team versions."""

    def __init__(self, db: DatabaseManager | None = None, config: MatchingConfig | None = None):
        self.db = db or get_db()
        self.config = config or get_config().matching

    # =========================================================================
    # Single battle
    # =========================================================================

    def auto_link_battle(self, battle_id: int, format_key_hint: str | None = None) -> LinkOutcome:
        """
        Link the local user's side of one battle to the best matching team.

        Candidates are the latest version of every team, filtered by format
        (the hint, else the battle's own format) and falling back to all teams
        when the filter yields none. The highest-confidence accepted match wins.
        """
        with self.db.session_scope() as session:
            repo = BattleRepository(session)
            battle = repo.get_battle(battle_id)
            if battle is None:
                raise NotFoundError(f"Battle {battle_id} not found")
            return self._auto_link(repo, battle_id, format_key_hint or battle.format_key, battle.game_type)

    def _auto_link(
        self,
        repo: BattleRepository,
        battle_id: int,
        format_key: str | None,
        game_type: str | None,
    ) -> LinkOutcome:
        outcome = LinkOutcome(battle_id=battle_id)

        user_side = repo.get_user_side(battle_id)
        if user_side is None:
            outcome.reason = "no_user_side"
            logger.debug(f"Battle {battle_id}: no local-user side, skipping link")
            return outcome

        existing = repo.get_link(battle_id, user_side)
        if existing is not None and existing.matched_by == MatchedBy.USER:
            outcome.reason = "user_link_kept"
            return outcome

        species = select_species_list(repo, battle_id, user_side, self.config.min_revealed_to_trust)
        outcome.source = species.source
        if not species:
            outcome.reason = "no_species"
            logger.debug(f"Battle {battle_id}: no species for side {user_side}")
            return outcome

        candidates = repo.list_latest_team_versions(format_key, self.config.candidate_limit)
        if not candidates and format_key:
            candidates = repo.list_latest_team_versions(None, self.config.candidate_limit)
        if not candidates:
            outcome.reason = "no_candidates"
            return outcome

        team_species = {tv.id: repo.list_team_version_species(tv.id) for tv in candidates}
        best = self._pick_best(list(species.species), species.source, team_species, game_type)
        if best is None:
            outcome.reason = "below_threshold"
            logger.info(
                f"Battle {battle_id}: no team cleared the {species.source} threshold "
                f"({len(candidates)} candidates)"
            )
            return outcome

        team_version_id, result = best
        repo.upsert_link(
            battle_id, user_side, team_version_id, result.confidence, result.method, MatchedBy.AUTO
        )
        outcome.linked = True
        outcome.team_version_id = team_version_id
        outcome.confidence = result.confidence
        outcome.method = result.method
        logger.info(
            f"Battle {battle_id} side {user_side} linked to team version {team_version_id} "
            f"({result.overlap}/{result.team_size}, {result.method})"
        )
        return outcome

    def _pick_best(
        self,
        battle_species: list[str],
        source: SpeciesSource,
        team_species: dict[int, list[str]],
        game_type: str | None,
    ) -> tuple[int, MatchResult] | None:
        thresholds = default_thresholds(source, self.config, game_type)

        second_best: dict[int, int] = {}
        if thresholds.require_margin:
            # Runner-up overlap, seen from each candidate
            overlaps = {
                tv_id: compute_overlap_match(battle_species, names, thresholds, source).overlap
                for tv_id, names in team_species.items()
            }
            for tv_id in overlaps:
                others = [ov for other_id, ov in overlaps.items() if other_id != tv_id]
                second_best[tv_id] = max(others, default=0)

        best: tuple[int, MatchResult] | None = None
        for tv_id, names in team_species.items():
            policy = thresholds
            if thresholds.require_margin:
                policy = replace(thresholds, second_best_overlap=second_best[tv_id])
            result = compute_overlap_match(battle_species, names, policy, source)
            if not result.linked:
                continue
            if best is None or result.confidence > best[1].confidence:
                best = (tv_id, result)
        return best

    # =========================================================================
    # Backfill
    # =========================================================================

    def backfill_team_version(
        self,
        team_version_id: int,
        format_key_hint: str | None = None,
        limit: int | None = None,
    ) -> BackfillReport:
        """
        Score one team version against battles lacking a user-confirmed link.

        Battles are filtered by format (the hint, else the team's format),
        falling back to any format. An existing automatic link is replaced only
        by a strictly more confident match. Each battle is its own transaction;
        a failure is logged and counted and the scan continues.
        """
        limit = limit or self.config.backfill_limit
        report = BackfillReport(team_version_id=team_version_id)

        with self.db.session_scope() as session:
            repo = BattleRepository(session)
            version = repo.get_team_version(team_version_id)
            if version is None:
                raise NotFoundError(f"Team version {team_version_id} not found")
            format_key = format_key_hint or version.team.format_key
            team_species = repo.list_team_version_species(team_version_id)

            battle_ids = repo.list_backfill_candidates(format_key, limit)
            if not battle_ids and format_key:
                battle_ids = repo.list_backfill_candidates(None, limit)

        if not team_species:
            logger.warning(f"Team version {team_version_id} has no species, nothing to backfill")
            return report

        with PerformanceMonitor(f"Backfill team version {team_version_id}", logging.INFO):
            for battle_id in battle_ids:
                report.scanned += 1
                try:
                    linked = self._backfill_one(battle_id, team_version_id, team_species)
                except Exception as e:
                    report.failed += 1
                    logger.error(f"Backfill of battle {battle_id} failed: {e}")
                    continue
                if linked:
                    report.linked += 1
                    report.linked_battle_ids.append(battle_id)
                else:
                    report.skipped += 1

        logger.info(
            f"Backfill team version {team_version_id}: scanned={report.scanned} "
            f"linked={report.linked} skipped={report.skipped} failed={report.failed}"
        )
        return report

    def _backfill_one(self, battle_id: int, team_version_id: int, team_species: list[str]) -> bool:
        with self.db.session_scope() as session:
            repo = BattleRepository(session)
            battle = repo.get_battle(battle_id)
            user_side = repo.get_user_side(battle_id)
            if battle is None or user_side is None:
                return False

            species = select_species_list(
                repo, battle_id, user_side, self.config.min_revealed_to_trust
            )
            thresholds = default_thresholds(species.source, self.config, battle.game_type)
            result = compute_overlap_match(
                list(species.species), team_species, thresholds, species.source
            )
            if not result.linked:
                return False

            existing = repo.get_link(battle_id, user_side)
            if existing is not None:
                if existing.matched_by == MatchedBy.USER:
                    return False
                if existing.team_version_id != team_version_id and (
                    (existing.match_confidence or 0.0) >= result.confidence
                ):
                    logger.debug(
                        f"Battle {battle_id}: keeping team version {existing.team_version_id} "
                        f"({existing.match_confidence:.2f} >= {result.confidence:.2f})"
                    )
                    return False

            return repo.upsert_link(
                battle_id,
                user_side,
                team_version_id,
                result.confidence,
                result.method,
                MatchedBy.AUTO,
            )

    # =========================================================================
    # Manual confirmation
    # =========================================================================

    def confirm_link(self, battle_id: int, team_version_id: int, side: Side | None = None) -> Side:
        """
        Record a user-confirmed link. It replaces any existing link for the side
        and is never overwritten by automatic linking.

        Returns the side that was linked (defaults to the local-user side).
        """
        with self.db.session_scope() as session:
            repo = BattleRepository(session)
            if repo.get_battle(battle_id) is None:
                raise NotFoundError(f"Battle {battle_id} not found")
            if repo.get_team_version(team_version_id) is None:
                raise NotFoundError(f"Team version {team_version_id} not found")

            side = side or repo.get_user_side(battle_id)
            if side is None:
                raise ReplayLinkError(
                    f"Battle {battle_id} has no local-user side; pass the side explicitly"
                )

            species = select_species_list(repo, battle_id, side, self.config.min_revealed_to_trust)
            result = compute_overlap_match(
                list(species.species),
                repo.list_team_version_species(team_version_id),
                source=species.source,
            )
            repo.upsert_link(
                battle_id, side, team_version_id, result.confidence, METHOD_USER_CONFIRMED, MatchedBy.USER
            )
            logger.info(f"Battle {battle_id} side {side} confirmed as team version {team_version_id}")
            return side
