"""
Battle repository.

Query and write helpers over the battle store. A repository wraps one
SQLAlchemy session and never commits: transaction boundaries belong to the
caller (see ``DatabaseManager.session_scope``).
"""

import logging
from collections.abc import Callable, Iterable

from sqlalchemy import and_, func
from sqlalchemy.orm import Session

from replaylink.core.constants import MatchedBy, Side
from replaylink.core.schemas import (
    BattleDetails,
    BattleListRow,
    BroughtEntry,
    BroughtSighting,
    MaterializedBattle,
    UserLink,
)
from replaylink.core.utils import normalize_species, unique_species, utc_now
from replaylink.infra.database import (
    Battle,
    BattleEvent,
    BattleSet,
    BattleSetGame,
    BattleSide,
    BattleTeamLink,
    BroughtPokemon,
    PokemonInstance,
    PreviewPokemon,
    RevealedSet,
    Team,
    TeamSlot,
    TeamVersion,
)
from replaylink.protocol.header import resolve_winner_side

logger = logging.getLogger(__name__)

# Header columns refreshed on every ingestion
HEADER_FIELDS = (
    "replay_url",
    "replay_json_url",
    "format_id",
    "format_name",
    "gen",
    "game_type",
    "upload_time",
    "played_at",
    "views",
    "rating",
    "is_private",
    "is_rated",
    "winner_side",
    "winner_name",
    "raw_log",
)

MAX_LIST_LIMIT = 500

# Dependents first, instances last (brought rows reference instances)
_DERIVED_MODELS = (
    BattleEvent,
    PreviewPokemon,
    RevealedSet,
    BattleSide,
    BroughtPokemon,
    PokemonInstance,
)


class BattleRepository:
    """Reads and writes battle rows inside a caller-owned session."""

    def __init__(self, session: Session):
        self.session = session

    # =========================================================================
    # Battles
    # =========================================================================

    def get_battle(self, battle_id: int) -> Battle | None:
        return self.session.get(Battle, battle_id)

    def get_battle_by_replay_id(self, replay_id: str) -> Battle | None:
        return self.session.query(Battle).filter(Battle.replay_id == replay_id).first()

    def upsert_battle_header(self, replay_id: str, header: dict) -> Battle:
        """
        Create or refresh the header row for ``replay_id``.

        An existing row keeps its id and ``created_at``; every header field is
        overwritten and ``ingested_at`` is refreshed.
        """
        battle = self.get_battle_by_replay_id(replay_id)
        now = utc_now()
        if battle is None:
            battle = Battle(replay_id=replay_id, created_at=now)
            self.session.add(battle)

        for name in HEADER_FIELDS:
            setattr(battle, name, header.get(name))
        battle.raw_log = header.get("raw_log") or ""
        battle.is_private = bool(header.get("is_private"))
        battle.is_rated = bool(header.get("is_rated"))
        battle.ingested_at = now

        self.session.flush()
        return battle

    def delete_derived_rows(self, battle_id: int) -> None:
        """Delete every row rebuilt by ingestion for one battle."""
        for model in _DERIVED_MODELS:
            deleted = self.session.query(model).filter(model.battle_id == battle_id).delete()
            logger.debug(f"Deleted {deleted} {model.__tablename__} rows for battle {battle_id}")
        self.session.flush()

    def insert_materialized(
        self,
        battle_id: int,
        materialized: MaterializedBattle,
        is_local_user: Callable[[str], bool] | None = None,
    ) -> None:
        """Insert materialized rows. At most one side is flagged as the local user."""
        user_flagged = False
        for row in materialized.sides:
            is_user = False
            if is_local_user is not None and not user_flagged and is_local_user(row.player_name):
                is_user = user_flagged = True
            self.session.add(
                BattleSide(
                    battle_id=battle_id,
                    side=row.side,
                    player_name=row.player_name,
                    is_user=is_user,
                    avatar=row.avatar,
                    rating=row.rating,
                )
            )

        self.session.add_all(
            PreviewPokemon(
                battle_id=battle_id,
                side=row.side,
                slot_index=row.slot_index,
                species_name=row.species,
                level=row.level,
                gender=row.gender,
                raw_text=row.raw_text,
            )
            for row in materialized.preview
        )

        for row in materialized.revealed:
            s = row.set
            self.session.add(
                RevealedSet(
                    battle_id=battle_id,
                    side=row.side,
                    species_name=s.species,
                    nickname=s.nickname,
                    item_name=s.item,
                    ability_name=s.ability,
                    tera_type=s.tera,
                    level=s.level,
                    gender=s.gender,
                    moves=list(s.moves),
                    raw_fragment=s.raw,
                )
            )

        self.session.add_all(
            BattleEvent(
                battle_id=battle_id,
                sequence=ev.sequence,
                turn_num=ev.turn_num,
                t_unix=ev.t_unix,
                line_type=ev.line_type,
                raw_line=ev.raw_line,
                move_name=ev.move_name,
            )
            for ev in materialized.events
        )
        self.session.flush()

    def list_events(self, battle_id: int) -> list[BattleEvent]:
        return (
            self.session.query(BattleEvent)
            .filter(BattleEvent.battle_id == battle_id)
            .order_by(BattleEvent.sequence)
            .all()
        )

    # =========================================================================
    # Brought Pokemon
    # =========================================================================

    def _find_or_create_instance(self, battle_id: int, side: str, species: str) -> PokemonInstance:
        key = normalize_species(species)
        instance = (
            self.session.query(PokemonInstance)
            .filter(
                PokemonInstance.battle_id == battle_id,
                PokemonInstance.side == side,
                PokemonInstance.species_key == key,
            )
            .first()
        )
        if instance is None:
            instance = PokemonInstance(
                battle_id=battle_id, side=side, species_name=species.strip(), species_key=key
            )
            self.session.add(instance)
            self.session.flush()
        return instance

    def upsert_brought(self, battle_id: int, sightings: Iterable[BroughtSighting]) -> int:
        """
        Upsert brought rows. Returns the number of sightings processed.

        ``is_lead`` only ever moves from false to true and ``first_seen_sequence``
        keeps its earliest value.
        """
        count = 0
        for sighting in sightings:
            instance = self._find_or_create_instance(battle_id, sighting.side, sighting.species)
            record = (
                self.session.query(BroughtPokemon)
                .filter(
                    BroughtPokemon.battle_id == battle_id,
                    BroughtPokemon.side == sighting.side,
                    BroughtPokemon.pokemon_instance_id == instance.id,
                )
                .first()
            )
            if record is None:
                self.session.add(
                    BroughtPokemon(
                        battle_id=battle_id,
                        side=sighting.side,
                        pokemon_instance_id=instance.id,
                        is_lead=sighting.is_lead,
                        fainted=False,
                        first_seen_sequence=sighting.first_seen_sequence,
                        source=sighting.source,
                    )
                )
            else:
                record.is_lead = bool(record.is_lead) or sighting.is_lead
                if record.first_seen_sequence is None or (
                    sighting.first_seen_sequence < record.first_seen_sequence
                ):
                    record.first_seen_sequence = sighting.first_seen_sequence
                    record.source = sighting.source
            count += 1

        self.session.flush()
        return count

    def list_brought(self, battle_id: int, side: str | None = None) -> list[dict]:
        query = (
            self.session.query(BroughtPokemon, PokemonInstance)
            .join(PokemonInstance, PokemonInstance.id == BroughtPokemon.pokemon_instance_id)
            .filter(BroughtPokemon.battle_id == battle_id)
        )
        if side is not None:
            query = query.filter(BroughtPokemon.side == side)
        rows = query.order_by(BroughtPokemon.side, BroughtPokemon.first_seen_sequence).all()
        return [
            {
                "side": record.side,
                "species_name": instance.species_name,
                "is_lead": bool(record.is_lead),
                "fainted": bool(record.fainted),
                "first_seen_sequence": record.first_seen_sequence,
                "source": record.source,
            }
            for record, instance in rows
        ]

    # =========================================================================
    # Species selectors
    # =========================================================================

    def brought_species(self, battle_id: int, side: str) -> list[str]:
        rows = (
            self.session.query(PokemonInstance.species_name)
            .join(BroughtPokemon, BroughtPokemon.pokemon_instance_id == PokemonInstance.id)
            .filter(BroughtPokemon.battle_id == battle_id, BroughtPokemon.side == side)
            .order_by(BroughtPokemon.is_lead.desc(), BroughtPokemon.first_seen_sequence)
            .all()
        )
        return unique_species(r.species_name for r in rows)

    def revealed_species(self, battle_id: int, side: str) -> list[str]:
        rows = (
            self.session.query(RevealedSet.species_name)
            .filter(RevealedSet.battle_id == battle_id, RevealedSet.side == side)
            .order_by(RevealedSet.id)
            .all()
        )
        return unique_species(r.species_name for r in rows)

    def preview_species(self, battle_id: int, side: str) -> list[str]:
        rows = (
            self.session.query(PreviewPokemon.species_name)
            .filter(PreviewPokemon.battle_id == battle_id, PreviewPokemon.side == side)
            .order_by(PreviewPokemon.slot_index)
            .all()
        )
        return unique_species(r.species_name for r in rows)

    # =========================================================================
    # Sides
    # =========================================================================

    def list_sides(self, battle_id: int) -> list[BattleSide]:
        return (
            self.session.query(BattleSide)
            .filter(BattleSide.battle_id == battle_id)
            .order_by(BattleSide.side)
            .all()
        )

    def get_user_side(self, battle_id: int) -> Side | None:
        row = (
            self.session.query(BattleSide.side)
            .filter(BattleSide.battle_id == battle_id, BattleSide.is_user.is_(True))
            .first()
        )
        return Side(row.side) if row else None

    def set_user_side(self, battle_id: int, side: Side | None) -> None:
        """Flag ``side`` as the local user (None clears the flag on both sides)."""
        for row in self.list_sides(battle_id):
            row.is_user = side is not None and row.side == side
        self.session.flush()

    # =========================================================================
    # Links
    # =========================================================================

    def get_link(self, battle_id: int, side: str) -> BattleTeamLink | None:
        return (
            self.session.query(BattleTeamLink)
            .filter(BattleTeamLink.battle_id == battle_id, BattleTeamLink.side == side)
            .first()
        )

    def upsert_link(
        self,
        battle_id: int,
        side: str,
        team_version_id: int,
        confidence: float,
        method: str,
        matched_by: MatchedBy = MatchedBy.AUTO,
    ) -> bool:
        """
        Create or replace the link for (battle, side).

        Returns False, leaving the row untouched, when an automatic write would
        replace a user-confirmed link.
        """
        link = self.get_link(battle_id, side)
        if link is None:
            link = BattleTeamLink(battle_id=battle_id, side=side)
            self.session.add(link)
        elif link.matched_by == MatchedBy.USER and matched_by != MatchedBy.USER:
            logger.debug(f"Keeping user link for battle {battle_id} side {side}")
            return False

        link.team_version_id = team_version_id
        link.match_confidence = confidence
        link.match_method = method
        link.matched_by = matched_by
        link.matched_at = utc_now()
        self.session.flush()
        return True

    def clear_auto_links(self, battle_id: int) -> int:
        deleted = (
            self.session.query(BattleTeamLink)
            .filter(
                BattleTeamLink.battle_id == battle_id,
                BattleTeamLink.matched_by == MatchedBy.AUTO,
            )
            .delete()
        )
        self.session.flush()
        return deleted

    def list_backfill_candidates(self, format_key: str | None, limit: int) -> list[int]:
        """
        Battle ids with a local-user side and no user-confirmed link, newest first.

        ``format_key`` filters on format id (or name) prefix.
        """
        query = self.session.query(Battle.id).filter(
            Battle.sides.any(BattleSide.is_user.is_(True)),
            ~Battle.links.any(BattleTeamLink.matched_by == MatchedBy.USER),
        )
        if format_key:
            query = query.filter(
                func.coalesce(Battle.format_id, Battle.format_name, "").like(f"{format_key}%")
            )
        rows = (
            query.order_by(
                func.coalesce(Battle.played_at, Battle.upload_time).desc(), Battle.id.desc()
            )
            .limit(limit)
            .all()
        )
        return [r.id for r in rows]

    # =========================================================================
    # Teams (species source)
    # =========================================================================

    def get_team_version(self, team_version_id: int) -> TeamVersion | None:
        return self.session.get(TeamVersion, team_version_id)

    def add_team_version(
        self, team_name: str, species: Iterable[str], format_key: str | None = None
    ) -> TeamVersion:
        """Append a new version to the named team, creating the team if needed."""
        team = self.session.query(Team).filter(Team.name == team_name).first()
        if team is None:
            team = Team(name=team_name, format_key=format_key)
            self.session.add(team)
            self.session.flush()
        elif format_key:
            team.format_key = format_key

        latest = (
            self.session.query(func.max(TeamVersion.version_num))
            .filter(TeamVersion.team_id == team.id)
            .scalar()
        )
        version = TeamVersion(team_id=team.id, version_num=(latest or 0) + 1)
        names = [s.strip() for s in species if s and s.strip()]
        version.slots = [
            TeamSlot(slot_index=index, species_name=name) for index, name in enumerate(names, 1)
        ]
        self.session.add(version)
        self.session.flush()
        logger.info(
            f"Added team '{team_name}' v{version.version_num} ({len(names)} slots, id={version.id})"
        )
        return version

    def list_latest_team_versions(self, format_key: str | None = None, limit: int = 200) -> list[TeamVersion]:
        """Newest version of every team, optionally restricted to one format."""
        latest = (
            self.session.query(
                TeamVersion.team_id, func.max(TeamVersion.version_num).label("version_num")
            )
            .group_by(TeamVersion.team_id)
            .subquery()
        )
        query = (
            self.session.query(TeamVersion)
            .join(
                latest,
                and_(
                    TeamVersion.team_id == latest.c.team_id,
                    TeamVersion.version_num == latest.c.version_num,
                ),
            )
            .join(Team, Team.id == TeamVersion.team_id)
        )
        if format_key:
            query = query.filter(Team.format_key == format_key)
        return query.order_by(TeamVersion.created_at.desc(), TeamVersion.id.desc()).limit(limit).all()

    def list_team_version_species(self, team_version_id: int) -> list[str]:
        rows = (
            self.session.query(TeamSlot.species_name)
            .filter(TeamSlot.team_version_id == team_version_id)
            .order_by(TeamSlot.slot_index)
            .all()
        )
        return [r.species_name for r in rows]

    # =========================================================================
    # Battle sets
    # =========================================================================

    def upsert_battle_set(
        self,
        set_key: str,
        battle_ids: list[int],
        format_id: str | None = None,
        format_name: str | None = None,
        source: str = "import-batch",
    ) -> BattleSet:
        """Group battles under ``set_key``; game numbers follow ``battle_ids`` order."""
        battle_set = self.session.query(BattleSet).filter(BattleSet.set_key == set_key).first()
        if battle_set is None:
            battle_set = BattleSet(set_key=set_key, source=source)
            self.session.add(battle_set)
        battle_set.format_id = format_id
        battle_set.format_name = format_name
        battle_set.updated_at = utc_now()
        self.session.flush()

        total = len(battle_ids)
        existing = {game.battle_id: game for game in battle_set.games}
        for number, battle_id in enumerate(battle_ids, 1):
            game = existing.get(battle_id)
            if game is None:
                game = BattleSetGame(set_id=battle_set.id, battle_id=battle_id)
                battle_set.games.append(game)
            game.game_number = number
            game.total_games = total

        self.session.flush()
        return battle_set

    # =========================================================================
    # Read models
    # =========================================================================

    def _side_entries(self, battle_id: int, side: str | None) -> list[BroughtEntry]:
        """Brought species with lead flags, falling back to the preview roster."""
        if side is None:
            return []
        brought = self.list_brought(battle_id, side)
        if brought:
            return [{"species_name": b["species_name"], "is_lead": b["is_lead"]} for b in brought]
        return [
            {"species_name": name, "is_lead": False}
            for name in self.preview_species(battle_id, side)
        ]

    def list_battles(self, limit: int = 200, offset: int = 0) -> list[BattleListRow]:
        """Battles newest first, summarized from the local user's point of view."""
        limit = max(1, min(MAX_LIST_LIMIT, limit))
        offset = max(0, offset)
        battles = (
            self.session.query(Battle)
            .order_by(func.coalesce(Battle.played_at, Battle.upload_time).desc(), Battle.id.desc())
            .offset(offset)
            .limit(limit)
            .all()
        )

        result: list[BattleListRow] = []
        for battle in battles:
            sides = {s.side: s for s in battle.sides}
            user = next((s for s in battle.sides if s.is_user), None)
            user_side = Side(user.side) if user else None
            opponent = sides.get(user_side.opponent) if user_side else None

            outcome = None
            if user_side is not None and battle.winner_side:
                outcome = "win" if battle.winner_side == user_side else "loss"

            link = self.get_link(battle.id, user_side) if user_side else None
            team_name = None
            if link is not None and link.team_version_id is not None:
                version = self.get_team_version(link.team_version_id)
                team_name = version.team.name if version else None

            result.append(
                {
                    "id": battle.id,
                    "replay_id": battle.replay_id,
                    "format_key": battle.format_key,
                    "played_at": battle.played_at,
                    "is_rated": bool(battle.is_rated),
                    "winner_side": battle.winner_side,
                    "user_side": user_side,
                    "user_name": user.player_name if user else None,
                    "opponent_name": opponent.player_name if opponent else None,
                    "result": outcome,
                    "linked_team_version_id": link.team_version_id if link else None,
                    "linked_team_name": team_name,
                    "link_confidence": link.match_confidence if link else None,
                    "link_matched_by": link.matched_by if link else None,
                    "user_brought": self._side_entries(battle.id, user_side),
                    "opponent_brought": self._side_entries(
                        battle.id, user_side.opponent if user_side else None
                    ),
                }
            )
        return result

    def get_battle_details(self, battle_id: int) -> BattleDetails | None:
        battle = self.get_battle(battle_id)
        if battle is None:
            return None

        sides = self.list_sides(battle_id)
        header = battle.to_dict()
        if header["winner_side"] is None and battle.winner_name:
            # Rows ingested before winner resolution existed
            names = {s.side: s.player_name for s in sides}
            winner = resolve_winner_side(battle.winner_name, names)
            header["winner_side"] = str(winner) if winner else None

        preview = (
            self.session.query(PreviewPokemon)
            .filter(PreviewPokemon.battle_id == battle_id)
            .order_by(PreviewPokemon.side, PreviewPokemon.slot_index)
            .all()
        )
        revealed = (
            self.session.query(RevealedSet)
            .filter(RevealedSet.battle_id == battle_id)
            .order_by(RevealedSet.side, RevealedSet.id)
            .all()
        )

        user_side = self.get_user_side(battle_id)
        user_link: UserLink | None = None
        if user_side is not None:
            link = self.get_link(battle_id, user_side)
            if link is not None:
                user_link = {
                    "team_version_id": link.team_version_id,
                    "match_confidence": link.match_confidence,
                    "match_method": link.match_method,
                    "matched_by": link.matched_by,
                }

        return {
            "battle": header,
            "sides": [s.to_dict() for s in sides],
            "preview": [p.to_dict() for p in preview],
            "revealed": [r.to_dict() for r in revealed],
            "brought": self.list_brought(battle_id),
            "events": [e.to_dict() for e in self.list_events(battle_id)],
            "user_side": user_side,
            "user_link": user_link,
        }

