"""
Battle species selection.

Picks the species list used for matching one battle side, strongest
provenance first:

1. brought  - any confirmed field appearance
2. revealed - open team sheet, only when it names enough Pokemon to trust
3. preview  - team preview roster
4. none     - empty list
"""

from replaylink.core.constants import MIN_REVEALED_TO_TRUST, SpeciesSource
from replaylink.core.schemas import SpeciesList
from replaylink.core.utils import unique_species
from replaylink.infra.repository import BattleRepository


def choose_species_list(
    brought: list[str],
    revealed: list[str],
    preview: list[str],
    min_revealed_to_trust: int = MIN_REVEALED_TO_TRUST,
) -> SpeciesList:
    """Apply provenance precedence to already-loaded lists."""
    brought = unique_species(brought)
    if brought:
        return SpeciesList(tuple(brought), SpeciesSource.BROUGHT)

    revealed = unique_species(revealed)
    if revealed and len(revealed) >= min_revealed_to_trust:
        return SpeciesList(tuple(revealed), SpeciesSource.REVEALED)

    preview = unique_species(preview)
    if preview:
        return SpeciesList(tuple(preview), SpeciesSource.PREVIEW)

    return SpeciesList((), SpeciesSource.NONE)


def select_species_list(
    repo: BattleRepository,
    battle_id: int,
    side: str,
    min_revealed_to_trust: int = MIN_REVEALED_TO_TRUST,
) -> SpeciesList:
    """Load and choose the species list for one (battle, side)."""
    brought = repo.brought_species(battle_id, side)
    if brought:
        return choose_species_list(brought, [], [], min_revealed_to_trust)
    return choose_species_list(
        [],
        repo.revealed_species(battle_id, side),
        repo.preview_species(battle_id, side),
        min_revealed_to_trust,
    )
