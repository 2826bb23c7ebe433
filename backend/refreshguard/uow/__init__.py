"""Transactional boundaries for the SQL token store."""

from .base import UnitOfWork
from .sqlalchemy_uow import SQLAlchemyReadOnlyUnitOfWork, SQLAlchemyUnitOfWork

__all__ = ["UnitOfWork", "SQLAlchemyUnitOfWork", "SQLAlchemyReadOnlyUnitOfWork"]
