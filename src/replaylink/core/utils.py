"""
Utility functions for ReplayLink.

This module provides:
- Name and species normalization shared by every comparison site
- Lenient numeric conversion for protocol fields
- A timing context manager for ingestion and linking passes
"""

import logging
import math
import re
import time
from collections.abc import Iterable
from datetime import UTC, datetime
from typing import Any

from replaylink.core.constants import NAME_PREFIX_GLYPHS

logger = logging.getLogger(__name__)

_PREFIX_RE = re.compile(f"^[{re.escape(NAME_PREFIX_GLYPHS)}]+")
_NON_ALNUM_RE = re.compile(r"[^a-z0-9]+")
_WHITESPACE_RE = re.compile(r"\s+")


def utc_now() -> datetime:
    """Return current UTC time (timezone-aware)."""
    return datetime.now(UTC)


def now_unix() -> int:
    """Current time as integer epoch seconds."""
    return int(time.time())


def normalize_showdown_name(name: str | None) -> str:
    """
    Normalize a Showdown user name into a comparable identifier.

    Leading rank glyphs are stripped, then the name is lowercased and reduced
    to ASCII alphanumerics. Names with nothing left (e.g. unicode-only names)
    fall back to lowercase with whitespace removed.

    Every name comparison (winner resolution, local-user resolution) must go
    through this function.

    Examples:
        "@Alice B."   -> "aliceb"
        "☆Bob_99"     -> "bob99"
    """
    if not name:
        return ""

    trimmed = _PREFIX_RE.sub("", name.strip())
    ident = _NON_ALNUM_RE.sub("", trimmed.lower())
    return ident or _WHITESPACE_RE.sub("", trimmed.lower())


def normalize_species(species: str | None) -> str:
    """Comparison key for a species name (trimmed, lowercased)."""
    return (species or "").strip().lower()


def unique_species(names: Iterable[str | None]) -> list[str]:
    """
    De-duplicate species names case-insensitively, preserving first-seen order.

    Blank names are dropped; returned names keep their original casing, trimmed.
    """
    out: list[str] = []
    seen: set[str] = set()
    for raw in names:
        key = normalize_species(raw)
        if not key or key in seen:
            continue
        seen.add(key)
        out.append((raw or "").strip())
    return out


def safe_int(value: Any, default: int | None = None) -> int | None:
    """Safely convert a value to int, truncating finite floats."""
    if value is None:
        return default
    if isinstance(value, bool):
        return int(value)
    try:
        number = float(value.strip()) if isinstance(value, str) else float(value)
    except (ValueError, TypeError):
        return default
    if not math.isfinite(number):
        return default
    return int(number)


def clean_token(value: str | None) -> str | None:
    """Strip a protocol field, mapping blank to None."""
    if value is None:
        return None
    value = value.strip()
    return value or None


class PerformanceMonitor:
    """
    Context manager for monitoring performance of code blocks.

    Usage:
        with PerformanceMonitor("ingest replay gen9vgc-123"):
            service.ingest_replay(...)
    """

    def __init__(self, operation_name: str, log_level: int = logging.DEBUG):
        self.operation_name = operation_name
        self.log_level = log_level
        self.start_time: float | None = None
        self.elapsed: float = 0.0

    def __enter__(self):
        self.start_time = time.perf_counter()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.elapsed = time.perf_counter() - (self.start_time or 0)
        if exc_type is not None:
            logger.error(f"{self.operation_name} failed after {self.elapsed:.3f}s: {exc_val}")
        else:
            logger.log(self.log_level, f"{self.operation_name} completed in {self.elapsed:.3f}s")
        return False
