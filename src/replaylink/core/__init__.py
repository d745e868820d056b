"""
ReplayLink Core - Foundation modules shared by every layer.

This module contains the fundamental components:
- constants: Protocol tokens, enums and default matching policy
- config: Application configuration management
- errors: Exception types raised at module boundaries
- schemas: Data contracts for module boundaries
- utils: Name/species normalization and general helpers
"""

from replaylink.core.constants import (
    FIELD_DELIMITER,
    PACKED_ENTRY_DELIMITER,
    SWITCH_LIKE_KINDS,
    GameType,
    LineKind,
    MatchedBy,
    Side,
    SpeciesSource,
)
from replaylink.core.errors import (
    IngestionError,
    InvalidReplayError,
    NotFoundError,
    ReplayFetchError,
    ReplayLinkError,
)
from replaylink.core.schemas import (
    BattleHeader,
    MaterializedBattle,
    SpeciesList,
)
from replaylink.core.utils import normalize_showdown_name, normalize_species, unique_species

__all__ = [
    # Enums
    "GameType",
    "LineKind",
    "MatchedBy",
    "Side",
    "SpeciesSource",
    # Constants
    "FIELD_DELIMITER",
    "PACKED_ENTRY_DELIMITER",
    "SWITCH_LIKE_KINDS",
    # Errors
    "IngestionError",
    "InvalidReplayError",
    "NotFoundError",
    "ReplayFetchError",
    "ReplayLinkError",
    # Schemas
    "BattleHeader",
    "MaterializedBattle",
    "SpeciesList",
    # Helpers
    "normalize_showdown_name",
    "normalize_species",
    "unique_species",
]
