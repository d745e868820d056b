"""
ReplayLink Battle Store.

Persistent storage for ingested battles, their derived rows, imported team
versions and battle-to-team links.

Uses SQLite with SQLAlchemy ORM for clean database abstraction.
"""

import logging
import os
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Any

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    create_engine,
    event,
)
from sqlalchemy.orm import Session, declarative_base, relationship, sessionmaker

from replaylink.core.config import DEFAULT_DB_PATH
from replaylink.core.utils import utc_now

logger = logging.getLogger(__name__)

Base = declarative_base()


# =============================================================================
# Battle Models
# =============================================================================


class Battle(Base):
    """Battle header. One row per external replay id."""

    __tablename__ = "battles"

    id = Column(Integer, primary_key=True, autoincrement=True)
    replay_id = Column(String(200), unique=True, nullable=False, index=True)
    replay_url = Column(String(500))
    replay_json_url = Column(String(500))

    # Format / mode
    format_id = Column(String(100), index=True)
    format_name = Column(String(200))
    gen = Column(Integer)
    game_type = Column(String(20))

    # Timing (epoch seconds)
    upload_time = Column(Integer)
    played_at = Column(Integer, index=True)

    # Host metadata
    views = Column(Integer)
    rating = Column(Integer)
    is_private = Column(Boolean, default=False)
    is_rated = Column(Boolean, default=False)

    # Outcome
    winner_side = Column(String(2))
    winner_name = Column(String(100))

    raw_log = Column(Text, nullable=False, default="")

    created_at = Column(DateTime, default=utc_now)
    ingested_at = Column(DateTime, default=utc_now)

    sides = relationship("BattleSide", back_populates="battle", cascade="all, delete-orphan")
    links = relationship("BattleTeamLink", back_populates="battle", cascade="all, delete-orphan")

    @property
    def format_key(self) -> str | None:
        key = (self.format_id or self.format_name or "").strip()
        return key or None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for display."""
        return {
            "id": self.id,
            "replay_id": self.replay_id,
            "replay_url": self.replay_url,
            "replay_json_url": self.replay_json_url,
            "format_id": self.format_id,
            "format_name": self.format_name,
            "gen": self.gen,
            "game_type": self.game_type,
            "upload_time": self.upload_time,
            "played_at": self.played_at,
            "views": self.views,
            "rating": self.rating,
            "is_private": bool(self.is_private),
            "is_rated": bool(self.is_rated),
            "winner_side": self.winner_side,
            "winner_name": self.winner_name,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "ingested_at": self.ingested_at.isoformat() if self.ingested_at else None,
        }


class BattleSide(Base):
    """One participant of a battle."""

    __tablename__ = "battle_sides"

    id = Column(Integer, primary_key=True, autoincrement=True)
    battle_id = Column(Integer, ForeignKey("battles.id"), nullable=False, index=True)
    side = Column(String(2), nullable=False)
    player_name = Column(String(100), nullable=False)
    is_user = Column(Boolean, default=False, nullable=False)
    avatar = Column(String(100))
    rating = Column(Integer)

    battle = relationship("Battle", back_populates="sides")

    __table_args__ = (UniqueConstraint("battle_id", "side", name="uq_side_battle_side"),)

    def to_dict(self) -> dict[str, Any]:
        return {
            "side": self.side,
            "player_name": self.player_name,
            "is_user": bool(self.is_user),
            "avatar": self.avatar,
            "rating": self.rating,
        }


class PreviewPokemon(Base):
    """Team preview roster slot."""

    __tablename__ = "battle_preview_pokemon"

    id = Column(Integer, primary_key=True, autoincrement=True)
    battle_id = Column(Integer, ForeignKey("battles.id"), nullable=False, index=True)
    side = Column(String(2), nullable=False)
    slot_index = Column(Integer, nullable=False)
    species_name = Column(String(100), nullable=False)
    level = Column(Integer)
    gender = Column(String(1))
    raw_text = Column(String(200))

    __table_args__ = (
        UniqueConstraint("battle_id", "side", "slot_index", name="uq_preview_slot"),
    )

    def to_dict(self) -> dict[str, Any]:
        return {
            "side": self.side,
            "slot_index": self.slot_index,
            "species_name": self.species_name,
            "level": self.level,
            "gender": self.gender,
            "raw_text": self.raw_text,
        }


class RevealedSet(Base):
    """Open team sheet entry broadcast by |showteam|."""

    __tablename__ = "battle_revealed_sets"

    id = Column(Integer, primary_key=True, autoincrement=True)
    battle_id = Column(Integer, ForeignKey("battles.id"), nullable=False, index=True)
    side = Column(String(2), nullable=False)
    species_name = Column(String(100), nullable=False)
    nickname = Column(String(100))
    item_name = Column(String(100))
    ability_name = Column(String(100))
    tera_type = Column(String(30))
    level = Column(Integer)
    gender = Column(String(1))
    moves = Column(JSON, default=list)
    raw_fragment = Column(Text)

    def to_dict(self) -> dict[str, Any]:
        return {
            "side": self.side,
            "species_name": self.species_name,
            "nickname": self.nickname,
            "item_name": self.item_name,
            "ability_name": self.ability_name,
            "tera_type": self.tera_type,
            "level": self.level,
            "gender": self.gender,
            "moves": list(self.moves or []),
            "raw_fragment": self.raw_fragment,
        }


class BattleEvent(Base):
    """One raw protocol line."""

    __tablename__ = "battle_events"

    id = Column(Integer, primary_key=True, autoincrement=True)
    battle_id = Column(Integer, ForeignKey("battles.id"), nullable=False, index=True)
    sequence = Column(Integer, nullable=False)
    turn_num = Column(Integer)
    t_unix = Column(Integer)
    line_type = Column(String(40), nullable=False)
    raw_line = Column(Text, nullable=False)
    move_name = Column(String(100))

    __table_args__ = (
        UniqueConstraint("battle_id", "sequence", name="uq_event_sequence"),
        Index("idx_event_battle_type", "battle_id", "line_type"),
    )

    def to_dict(self) -> dict[str, Any]:
        return {
            "sequence": self.sequence,
            "turn_num": self.turn_num,
            "t_unix": self.t_unix,
            "line_type": self.line_type,
            "raw_line": self.raw_line,
        }


class PokemonInstance(Base):
    """Deduplicated (battle, side, species) join target for brought tracking."""

    __tablename__ = "battle_pokemon_instances"

    id = Column(Integer, primary_key=True, autoincrement=True)
    battle_id = Column(Integer, ForeignKey("battles.id"), nullable=False, index=True)
    side = Column(String(2), nullable=False)
    species_name = Column(String(100), nullable=False)
    # Lowercased species; the uniqueness key
    species_key = Column(String(100), nullable=False)

    __table_args__ = (
        UniqueConstraint("battle_id", "side", "species_key", name="uq_instance_species"),
    )


class BroughtPokemon(Base):
    """A Pokemon that appeared on the field at least once."""

    __tablename__ = "battle_brought_pokemon"

    id = Column(Integer, primary_key=True, autoincrement=True)
    battle_id = Column(Integer, ForeignKey("battles.id"), nullable=False, index=True)
    side = Column(String(2), nullable=False)
    pokemon_instance_id = Column(
        Integer, ForeignKey("battle_pokemon_instances.id"), nullable=False, index=True
    )
    is_lead = Column(Boolean, default=False, nullable=False)
    fainted = Column(Boolean, default=False, nullable=False)
    first_seen_sequence = Column(Integer)
    source = Column(String(20))

    instance = relationship("PokemonInstance")

    __table_args__ = (
        UniqueConstraint("battle_id", "side", "pokemon_instance_id", name="uq_brought_instance"),
    )


# =============================================================================
# Team Models (species source for matching)
# =============================================================================


class Team(Base):
    """An imported team."""

    __tablename__ = "teams"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(200), nullable=False)
    format_key = Column(String(100), index=True)
    created_at = Column(DateTime, default=utc_now)

    versions = relationship("TeamVersion", back_populates="team", cascade="all, delete-orphan")


class TeamVersion(Base):
    """An immutable snapshot of a team."""

    __tablename__ = "team_versions"

    id = Column(Integer, primary_key=True, autoincrement=True)
    team_id = Column(Integer, ForeignKey("teams.id"), nullable=False, index=True)
    version_num = Column(Integer, nullable=False)
    created_at = Column(DateTime, default=utc_now)

    team = relationship("Team", back_populates="versions")
    slots = relationship(
        "TeamSlot",
        back_populates="team_version",
        cascade="all, delete-orphan",
        order_by="TeamSlot.slot_index",
    )

    __table_args__ = (UniqueConstraint("team_id", "version_num", name="uq_team_version_num"),)


class TeamSlot(Base):
    """One species slot of a team version."""

    __tablename__ = "team_slots"

    id = Column(Integer, primary_key=True, autoincrement=True)
    team_version_id = Column(Integer, ForeignKey("team_versions.id"), nullable=False, index=True)
    slot_index = Column(Integer, nullable=False)
    species_name = Column(String(100), nullable=False)

    team_version = relationship("TeamVersion", back_populates="slots")


# =============================================================================
# Linking Models
# =============================================================================


class BattleTeamLink(Base):
    """(battle, side) -> team version, with how sure we are and who decided."""

    __tablename__ = "battle_team_links"

    id = Column(Integer, primary_key=True, autoincrement=True)
    battle_id = Column(Integer, ForeignKey("battles.id"), nullable=False, index=True)
    side = Column(String(2), nullable=False)
    team_version_id = Column(Integer, ForeignKey("team_versions.id"), index=True)
    match_confidence = Column(Float)
    match_method = Column(String(50))
    matched_at = Column(DateTime, default=utc_now)
    matched_by = Column(String(10), nullable=False, default="auto")

    battle = relationship("Battle", back_populates="links")

    __table_args__ = (UniqueConstraint("battle_id", "side", name="uq_link_battle_side"),)

    def to_dict(self) -> dict[str, Any]:
        return {
            "team_version_id": self.team_version_id,
            "match_confidence": self.match_confidence,
            "match_method": self.match_method,
            "matched_by": self.matched_by,
        }


class BattleSet(Base):
    """A group of battles imported together (e.g. a best-of-three)."""

    __tablename__ = "battle_sets"

    id = Column(Integer, primary_key=True, autoincrement=True)
    set_key = Column(String(100), unique=True, nullable=False)
    format_id = Column(String(100))
    format_name = Column(String(200))
    source = Column(String(30), default="import-batch")
    created_at = Column(DateTime, default=utc_now)
    updated_at = Column(DateTime, default=utc_now)

    games = relationship("BattleSetGame", back_populates="battle_set", cascade="all, delete-orphan")


class BattleSetGame(Base):
    __tablename__ = "battle_set_games"

    id = Column(Integer, primary_key=True, autoincrement=True)
    set_id = Column(Integer, ForeignKey("battle_sets.id"), nullable=False, index=True)
    battle_id = Column(Integer, ForeignKey("battles.id"), nullable=False, index=True)
    game_number = Column(Integer, nullable=False)
    total_games = Column(Integer, nullable=False)

    battle_set = relationship("BattleSet", back_populates="games")

    __table_args__ = (UniqueConstraint("set_id", "battle_id", name="uq_set_game"),)


# =============================================================================
# Database Manager
# =============================================================================


def _enable_sqlite_foreign_keys(dbapi_connection, connection_record) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


class DatabaseManager:
    """Manages database connections and sessions."""

    def __init__(self, db_path: Path | str | None = None, echo: bool = False):
        """Initialize database connection."""
        if db_path is None:
            db_path = os.environ.get("REPLAYLINK_DB_PATH", DEFAULT_DB_PATH)

        self.db_path = Path(db_path).expanduser()
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

        # Create engine with SQLite
        self.engine = create_engine(
            f"sqlite:///{self.db_path}",
            echo=echo,
            connect_args={"check_same_thread": False},
        )
        event.listen(self.engine, "connect", _enable_sqlite_foreign_keys)

        # Create session factory
        self.SessionLocal = sessionmaker(bind=self.engine)

        # Create tables if they don't exist
        Base.metadata.create_all(self.engine)

        logger.info(f"Database initialized at: {self.db_path}")

    def get_session(self) -> Session:
        """Get a database session."""
        return self.SessionLocal()

    @contextmanager
    def session_scope(self) -> Iterator[Session]:
        """
        Transactional scope: commit on success, roll back on any error.

        Usage:
            with db.session_scope() as session:
                session.add(...)
        """
        session = self.get_session()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def dispose(self) -> None:
        """Release pooled connections."""
        self.engine.dispose()


# Global database instance (lazy initialization)
_db_manager: DatabaseManager | None = None


def get_db() -> DatabaseManager:
    """Get the global database manager instance."""
    global _db_manager
    if _db_manager is None:
        from replaylink.core.config import get_config

        config = get_config()
        _db_manager = DatabaseManager(config.database.path, echo=config.database.echo)
    return _db_manager
