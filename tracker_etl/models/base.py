# tracker_etl/models/base.py
"""
Shared Flask-SQLAlchemy handle and abstract model base.
"""

from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()


class BaseModel(db.Model):
    """Abstract base for loader tables."""

    __abstract__ = True

    def __repr__(self):
        identifier = getattr(self, "id", None)
        return f"<{type(self).__name__} id={identifier}>"
