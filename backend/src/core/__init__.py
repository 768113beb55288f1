"""
Member Portal Workflow - Core Package
=====================================

Configuration, database, models, schemas and the workflow domain.
"""

from src.core.config import settings
from src.core.database import Base, get_db

__all__ = ["Base", "get_db", "settings"]
