"""Unit of Work contract shared by the token stores."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from refreshguard.repositories import RefreshTokenRepository


class UnitOfWork(ABC):
    """
    One transactional boundary around refresh-token persistence.

    Entering yields an object whose ``refresh_tokens`` repository shares the
    transaction. Leaving commits on success and rolls back on error, so a
    rotation either records both the superseded and the new row or neither.
    """

    refresh_tokens: RefreshTokenRepository

    @abstractmethod
    def __enter__(self) -> UnitOfWork: ...

    @abstractmethod
    def __exit__(self, exc_type, exc, tb) -> None: ...

    @abstractmethod
    def commit(self) -> None: ...

    @abstractmethod
    def rollback(self) -> None: ...
