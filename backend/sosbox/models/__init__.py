"""SQLAlchemy ORM models."""

from sosbox.models.box import BOX_TABLE, BoxRow

__all__ = [
    "BOX_TABLE",
    "BoxRow",
]
