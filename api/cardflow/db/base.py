"""Import all models here for Alembic autogenerate."""

from cardflow.db.base_class import Base
from cardflow.models import automation, board, user  # noqa: F401

__all__ = ["Base"]
