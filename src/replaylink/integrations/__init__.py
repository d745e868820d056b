"""
ReplayLink Integrations - External services.

This module contains:
- replay_fetch: Showdown replay URL normalization and JSON fetch (httpx)
"""

__all__: list[str] = []
