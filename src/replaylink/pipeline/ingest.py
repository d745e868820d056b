"""
Replay ingestion service.

Ingests a replay log into the battle store as one all-or-nothing unit keyed
by the external replay id:

    validate -> header -> delete derived rows -> materialize -> derive brought

Re-ingesting a replay rebuilds every derived row in place. The battle keeps
its internal id and ``created_at``; links survive unless the caller asks for
automatic links to be cleared. Any failure rolls the whole unit back and is
raised as IngestionError.
"""

import hashlib
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from replaylink.core.config import ReplayLinkConfig, get_config
from replaylink.core.constants import LineKind, Side
from replaylink.core.errors import (
    IngestionError,
    InvalidReplayError,
    NotFoundError,
    ReplayFetchError,
    ReplayLinkError,
)
from replaylink.core.utils import PerformanceMonitor, normalize_showdown_name, safe_int
from replaylink.infra.database import DatabaseManager, get_db
from replaylink.infra.repository import BattleRepository
from replaylink.integrations.replay_fetch import ReplayRef, fetch_replay_json, normalize_replay_input
from replaylink.linking.orchestrator import LinkOutcome, TeamLinker
from replaylink.pipeline.brought import derive_brought
from replaylink.protocol.header import build_battle_header
from replaylink.protocol.materializer import materialize_lines
from replaylink.protocol.tokenizer import line_kind, split_fields, split_log_lines

logger = logging.getLogger(__name__)

BATCH_SET_PREFIX = "batch:"


@dataclass
class IngestResult:
    """Row counts written by one ingestion."""

    battle_id: int
    replay_id: str
    created: bool
    events: int = 0
    sides: int = 0
    preview: int = 0
    revealed: int = 0
    brought: int = 0
    auto_links_cleared: int = 0


@dataclass
class ImportRow:
    input: str
    ok: bool
    replay_id: str | None = None
    battle_id: int | None = None
    linked: bool = False
    error: str | None = None


@dataclass
class ImportReport:
    rows: list[ImportRow] = field(default_factory=list)
    set_key: str | None = None

    @property
    def ok_count(self) -> int:
        return sum(1 for r in self.rows if r.ok)

    @property
    def fail_count(self) -> int:
        return sum(1 for r in self.rows if not r.ok)


def local_user_matcher(username: str | None) -> Callable[[str], bool] | None:
    """Build an is-local-user predicate from a configured Showdown name."""
    target = normalize_showdown_name(username)
    if not target:
        return None
    return lambda player_name: normalize_showdown_name(player_name) == target


def validate_replay_payload(replay_id: str | None, raw_log: str | None) -> list[str]:
    """
    Check the minimum a log needs to be ingested and return its lines.

    Raises:
        InvalidReplayError: Missing replay id, empty log, or no |player| line
    """
    if not replay_id or not replay_id.strip():
        raise InvalidReplayError("Replay id is required")
    lines = split_log_lines(raw_log or "")
    if not lines:
        raise InvalidReplayError("Replay log is empty", replay_id=replay_id)
    if not any(line_kind(split_fields(line)) == LineKind.PLAYER for line in lines):
        raise InvalidReplayError("Replay log has no |player| lines", replay_id=replay_id)
    return lines


def batch_set_key(battle_ids: list[int]) -> str:
    """Stable key for a group of battles, independent of their order."""
    joined = ",".join(sorted(str(battle_id) for battle_id in battle_ids))
    return BATCH_SET_PREFIX + hashlib.sha1(joined.encode("utf-8")).hexdigest()


class ReplayIngestService:
    """Ingests replays and keeps their derived rows and links current."""

    def __init__(
        self,
        db: DatabaseManager | None = None,
        config: ReplayLinkConfig | None = None,
        is_local_user: Callable[[str], bool] | None = None,
        linker: TeamLinker | None = None,
        fetcher: Callable[[str], dict] | None = None,
    ):
        self.db = db or get_db()
        self.config = config or get_config()
        self.is_local_user = is_local_user or local_user_matcher(
            self.config.ingest.showdown_username
        )
        self.linker = linker or TeamLinker(self.db, self.config.matching)
        self.fetcher = fetcher or self._fetch

    def _fetch(self, json_url: str) -> dict:
        fetch = self.config.fetch
        return fetch_replay_json(json_url, timeout=fetch.timeout_seconds, user_agent=fetch.user_agent)

    # =========================================================================
    # Core transaction
    # =========================================================================

    def ingest_replay(
        self,
        replay_id: str,
        raw_log: str,
        upload_time: int | None = None,
        metadata: dict[str, Any] | None = None,
        clear_auto_links: bool | None = None,
    ) -> IngestResult:
        """
        Ingest (or re-ingest) one replay.

        Args:
            replay_id: External replay id (idempotency key)
            raw_log: Raw protocol log
            upload_time: Host upload time in epoch seconds
            metadata: Optional header extras: replay_url, replay_json_url,
                format_id, format_name, views, rating, is_private
            clear_auto_links: Drop automatic links for this battle (defaults
                to ``ingest.clear_auto_links_on_reingest``). User links are kept.

        Raises:
            InvalidReplayError: Before any write, when the input is unusable
            IngestionError: When the transaction failed and was rolled back
        """
        replay_id = (replay_id or "").strip()
        lines = validate_replay_payload(replay_id, raw_log)
        metadata = metadata or {}
        if clear_auto_links is None:
            clear_auto_links = self.config.ingest.clear_auto_links_on_reingest

        try:
            with PerformanceMonitor(f"Ingest replay {replay_id}"):
                with self.db.session_scope() as session:
                    result = self._ingest_in_session(
                        BattleRepository(session),
                        replay_id,
                        raw_log,
                        lines,
                        upload_time,
                        metadata,
                        clear_auto_links,
                    )
        except Exception as e:
            logger.error(f"Ingestion of replay {replay_id} rolled back: {e}")
            raise IngestionError(replay_id, e) from e

        logger.info(
            f"Ingested replay {replay_id} as battle {result.battle_id}: "
            f"{result.events} events, {result.preview} preview, "
            f"{result.revealed} revealed, {result.brought} brought"
        )
        return result

    def _ingest_in_session(
        self,
        repo: BattleRepository,
        replay_id: str,
        raw_log: str,
        lines: list[str],
        upload_time: int | None,
        metadata: dict[str, Any],
        clear_auto_links: bool,
    ) -> IngestResult:
        header = build_battle_header(lines, upload_time=upload_time)
        created = repo.get_battle_by_replay_id(replay_id) is None

        battle = repo.upsert_battle_header(
            replay_id,
            {
                "replay_url": metadata.get("replay_url"),
                "replay_json_url": metadata.get("replay_json_url"),
                "format_id": metadata.get("format_id"),
                "format_name": metadata.get("format_name"),
                "gen": header.gen,
                "game_type": header.game_type,
                "upload_time": upload_time,
                "played_at": header.played_at,
                "views": safe_int(metadata.get("views")),
                "rating": safe_int(metadata.get("rating")),
                "is_private": bool(metadata.get("is_private")),
                "is_rated": header.is_rated,
                "winner_side": header.winner_side,
                "winner_name": header.winner_name,
                "raw_log": raw_log,
            },
        )
        battle_id = battle.id

        previous_user_side = repo.get_user_side(battle_id)
        repo.delete_derived_rows(battle_id)

        materialized = materialize_lines(lines)
        repo.insert_materialized(battle_id, materialized, self.is_local_user)
        # A side picked by hand survives re-ingest unless the username matches now
        if previous_user_side is not None and repo.get_user_side(battle_id) is None:
            repo.set_user_side(battle_id, previous_user_side)

        sightings = derive_brought(materialized.events, header.game_type)
        brought = repo.upsert_brought(battle_id, sightings)

        cleared = repo.clear_auto_links(battle_id) if clear_auto_links else 0

        return IngestResult(
            battle_id=battle_id,
            replay_id=replay_id,
            created=created,
            events=len(materialized.events),
            sides=len(materialized.sides),
            preview=len(materialized.preview),
            revealed=len(materialized.revealed),
            brought=brought,
            auto_links_cleared=cleared,
        )

    def ingest_payload(
        self,
        payload: dict[str, Any],
        ref: ReplayRef | None = None,
        clear_auto_links: bool | None = None,
    ) -> IngestResult:
        """Ingest a replay JSON payload as served by the replay host."""
        replay_id = payload.get("id")
        if not replay_id:
            raise InvalidReplayError("Replay payload has no id")
        if ref is None:
            ref = normalize_replay_input(replay_id, self.config.fetch.base_url)

        return self.ingest_replay(
            replay_id,
            payload.get("log") or "",
            upload_time=safe_int(payload.get("uploadtime")),
            metadata={
                "replay_url": ref.replay_url,
                "replay_json_url": ref.json_url,
                "format_id": payload.get("formatid"),
                "format_name": payload.get("format"),
                "views": payload.get("views"),
                "rating": payload.get("rating"),
                "is_private": payload.get("private"),
            },
            clear_auto_links=clear_auto_links,
        )

    def rederive_brought(self, battle_id: int) -> int:
        """Re-run brought derivation against the stored events of one battle."""
        with self.db.session_scope() as session:
            repo = BattleRepository(session)
            battle = repo.get_battle(battle_id)
            if battle is None:
                raise NotFoundError(f"Battle {battle_id} not found")
            sightings = derive_brought(repo.list_events(battle_id), battle.game_type)
            return repo.upsert_brought(battle_id, sightings)

    def reingest_battle(self, battle_id: int, clear_auto_links: bool | None = None) -> IngestResult:
        """Rebuild a stored battle from its retained raw log."""
        with self.db.session_scope() as session:
            battle = BattleRepository(session).get_battle(battle_id)
            if battle is None:
                raise NotFoundError(f"Battle {battle_id} not found")
            replay_id = battle.replay_id
            raw_log = battle.raw_log
            upload_time = battle.upload_time
            metadata = {
                "replay_url": battle.replay_url,
                "replay_json_url": battle.replay_json_url,
                "format_id": battle.format_id,
                "format_name": battle.format_name,
                "views": battle.views,
                "rating": battle.rating,
                "is_private": battle.is_private,
            }
        return self.ingest_replay(replay_id, raw_log, upload_time, metadata, clear_auto_links)

    # =========================================================================
    # Linking hooks
    # =========================================================================

    def relink_battle(self, battle_id: int) -> LinkOutcome:
        """Re-run automatic linking for one battle using its own format."""
        return self.linker.auto_link_battle(battle_id)

    def set_user_side(self, battle_id: int, side: Side | None) -> None:
        with self.db.session_scope() as session:
            repo = BattleRepository(session)
            if repo.get_battle(battle_id) is None:
                raise NotFoundError(f"Battle {battle_id} not found")
            repo.set_user_side(battle_id, side)
        logger.info(f"Battle {battle_id}: local user side set to {side}")

    # =========================================================================
    # Fetch + import
    # =========================================================================

    def ingest_from_input(
        self, line: str, auto_link: bool = True, clear_auto_links: bool | None = None
    ) -> tuple[IngestResult, LinkOutcome | None]:
        """Fetch a replay by URL or id, ingest it and optionally auto-link it."""
        ref = normalize_replay_input(line, self.config.fetch.base_url)
        payload = self.fetcher(ref.json_url)
        result = self.ingest_payload(payload, ref, clear_auto_links=clear_auto_links)
        outcome = self.linker.auto_link_battle(result.battle_id) if auto_link else None
        return result, outcome

    def import_from_text(self, text: str) -> ImportReport:
        """
        Import newline-separated replay URLs or ids.

        Ids are de-duplicated case-insensitively in input order. Each line gets
        an ok/error row; one failure never stops the batch. Two or more
        successful imports are grouped into a battle set.
        """
        report = ImportReport()
        refs: list[tuple[str, ReplayRef]] = []
        seen: set[str] = set()

        for raw in text.splitlines():
            line = raw.strip()
            if not line:
                continue
            try:
                ref = normalize_replay_input(line, self.config.fetch.base_url)
            except InvalidReplayError as e:
                report.rows.append(ImportRow(input=line, ok=False, error=str(e)))
                continue
            key = ref.replay_id.lower()
            if key in seen:
                continue
            seen.add(key)
            refs.append((line, ref))

        imported: list[int] = []
        first_payload: dict | None = None

        for line, ref in refs:
            try:
                payload = self.fetcher(ref.json_url)
                result = self.ingest_payload(payload, ref)
            except (ReplayFetchError, InvalidReplayError, IngestionError) as e:
                logger.warning(f"Import of {ref.replay_id} failed: {e}")
                report.rows.append(
                    ImportRow(input=line, ok=False, replay_id=ref.replay_id, error=str(e))
                )
                continue

            imported.append(result.battle_id)
            if first_payload is None:
                first_payload = payload

            linked = False
            try:
                linked = self.linker.auto_link_battle(result.battle_id).linked
            except ReplayLinkError as e:
                logger.warning(f"Auto-link of battle {result.battle_id} failed: {e}")

            report.rows.append(
                ImportRow(
                    input=line,
                    ok=True,
                    replay_id=result.replay_id,
                    battle_id=result.battle_id,
                    linked=linked,
                )
            )

        if len(imported) >= 2:
            report.set_key = batch_set_key(imported)
            with self.db.session_scope() as session:
                BattleRepository(session).upsert_battle_set(
                    report.set_key,
                    imported,
                    format_id=(first_payload or {}).get("formatid"),
                    format_name=(first_payload or {}).get("format"),
                )
            logger.info(f"Grouped {len(imported)} battles as set {report.set_key}")

        logger.info(f"Import finished: {report.ok_count} ok, {report.fail_count} failed")
        return report
