"""
ReplayLink - Showdown replay ingestion and team linking

Ingests Pokemon Showdown battle replays into a local SQLite store and links
each battle to the imported team it was most likely played with.

Usage:
    from replaylink import ReplayIngestService, TeamLinker

    service = ReplayIngestService()
    result, outcome = service.ingest_from_input("gen9vgc2024regg-1234567890")
    if outcome and outcome.linked:
        print(f"Linked to team version {outcome.team_version_id}")
"""

__version__ = "0.1.0"
__author__ = "ReplayLink Contributors"


def __getattr__(name):
    """Lazy import so the protocol layer loads without SQLAlchemy."""
    if name == "ReplayIngestService":
        from replaylink.pipeline.ingest import ReplayIngestService
        return ReplayIngestService
    elif name == "TeamLinker":
        from replaylink.linking.orchestrator import TeamLinker
        return TeamLinker
    elif name == "DatabaseManager":
        from replaylink.infra.database import DatabaseManager
        return DatabaseManager
    elif name == "materialize_log":
        from replaylink.protocol.materializer import materialize_log
        return materialize_log
    elif name == "build_battle_header":
        from replaylink.protocol.header import build_battle_header
        return build_battle_header
    elif name == "compute_overlap_match":
        from replaylink.linking.matcher import compute_overlap_match
        return compute_overlap_match
    raise AttributeError(f"module 'replaylink' has no attribute '{name}'")
