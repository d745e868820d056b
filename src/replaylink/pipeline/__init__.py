"""
ReplayLink Pipeline - Replay ingestion.

This module handles the ingestion unit:
- Input validation
- Header, event and roster materialization
- Brought-Pokemon derivation
- Batch import from replay URLs
"""

from replaylink.pipeline.brought import derive_brought
from replaylink.pipeline.ingest import IngestResult, ReplayIngestService, validate_replay_payload

__all__ = ["IngestResult", "ReplayIngestService", "derive_brought", "validate_replay_payload"]
