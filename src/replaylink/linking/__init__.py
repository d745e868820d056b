"""
ReplayLink Linking - Battle-to-team matching.

This module contains:
- matcher: species-overlap scoring and acceptance thresholds
- selectors: provenance selection of a battle side's species list
- orchestrator: auto-link, backfill and manual confirmation
"""

from replaylink.linking.matcher import MatchResult, MatchThresholds, compute_overlap_match
from replaylink.linking.orchestrator import BackfillReport, LinkOutcome, TeamLinker
from replaylink.linking.selectors import choose_species_list, select_species_list

__all__ = [
    "BackfillReport",
    "LinkOutcome",
    "MatchResult",
    "MatchThresholds",
    "TeamLinker",
    "choose_species_list",
    "compute_overlap_match",
    "select_species_list",
]
