"""
ReplayLink Infrastructure - Persistence.

This module contains:
- database: SQLAlchemy models and the session manager (SQLite)
- repository: query and write helpers used inside one session
"""

__all__: list[str] = []
