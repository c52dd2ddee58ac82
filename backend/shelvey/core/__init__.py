"""
ShelVey Orchestrator - Core Package
====================================

Core business logic, models, and schemas.
"""

from shelvey.core.config import settings
from shelvey.core.database import Base, get_db, get_db_session

__all__ = ["Base", "get_db", "get_db_session", "settings"]
