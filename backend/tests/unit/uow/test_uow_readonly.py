import pytest
from refreshguard.models.refresh_token import RefreshToken
from refreshguard.uow import (
    SQLAlchemyReadOnlyUnitOfWork as ROuow,
)
from refreshguard.uow import (
    SQLAlchemyUnitOfWork as RWuow,
)
from sqlalchemy import text
from tests.factories.refresh_token import RefreshTokenFactory


class TestSQLAlchemyReadOnlyUnitOfWork:
    """SQLite has no READ ONLY transactions; these cover the portable guards."""

    def test_blocks_orm_flush_writes(self, app, db, session):
        """
        Ensure that attempting to flush ORM changes inside the RO UoW raises.
        """
        with ROuow() as uow, pytest.raises(RuntimeError, match="ORM flush blocked"):
            uow.session.add(RefreshTokenFactory.build())
            uow.session.flush()

    def test_blocks_core_dml(self, app, db, session):
        """
        Ensure that raw SQL DML is blocked inside the RO UoW.
        """
        with ROuow() as uow, pytest.raises(RuntimeError, match="SQL statement blocked"):
            uow.session.execute(
                text("UPDATE refresh_tokens SET revoked_at = NULL WHERE id = :id"),
                {"id": "x" * 32},
            )

    def test_allows_reads(self, app, db, session):
        """
        Read operations should work normally within RO UoW.
        """
        with RWuow() as uow:
            row = RefreshTokenFactory.build(plaintext="ro-visible")
            uow.refresh_tokens.add(row)
            token_hash = row.token_hash

        with ROuow() as uow:
            found = uow.refresh_tokens.find_by_hash(token_hash)
            assert found is not None

    def test_disallows_commit(self, app, db, session):
        """
        RO UoW must reject commit().
        """
        with ROuow() as uow, pytest.raises(RuntimeError, match="does not allow commit"):
            uow.commit()

    def test_always_rolls_back_changes(self, app, db, session):
        """
        Any attempted modifications must not persist after RO UoW exits.
        """
        with RWuow() as uow:
            row = RefreshTokenFactory.build()
            uow.refresh_tokens.add(row)
            token_id = row.id
            original_subject = row.subject

        with ROuow() as uow, pytest.raises(RuntimeError, match="ORM flush blocked"):
            loaded = uow.session.get(RefreshToken, token_id)
            loaded.subject = "mutated-in-ro@example.com"
            uow.session.flush()

        with RWuow() as uow:
            persisted = uow.session.get(RefreshToken, token_id)
            assert persisted.subject == original_subject
