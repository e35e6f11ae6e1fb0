# tracker_etl/models/__init__.py
"""
Database models package
"""

from .base import BaseModel, db
from .issue import LOADER_MODELS, PROMOTED_COLUMNS, CommentRecord, FieldValueRecord, IssueRecord

__all__ = [
    "db",
    "BaseModel",
    "IssueRecord",
    "FieldValueRecord",
    "CommentRecord",
    "LOADER_MODELS",
    "PROMOTED_COLUMNS",
]
