"""
Database Sessions and Read Transactions

The TransactionManager used by the index rebuild, where the *caller*
decides whether a page's transaction commits or rolls back:

    tx = transactions.begin(read_only=True)
    try:
        items = paginator.page(tx, 0, as_of)
    except Exception:
        transactions.finalize(tx, is_error=True)
        raise
    transactions.finalize(tx, is_error=False)
"""

import logging

from sqlalchemy import text
from sqlalchemy.orm import sessionmaker

from catalog_index.models import db_connect

logger = logging.getLogger("catalog-db")

_SessionLocal = None


def _get_session_factory():
    """
    Creates the session factory on first use and reuses it afterwards.
    """
    global _SessionLocal
    if _SessionLocal is None:
        engine = db_connect()
        _SessionLocal = sessionmaker(bind=engine)
    return _SessionLocal


class TransactionManager:
    """
    Begins, commits and rolls back unit-of-work scopes for the rebuild job.

    A "transaction" here is a SQLAlchemy Session with an open transaction.
    Lazy relationship loads made while building documents happen inside it,
    so it must stay open until the page's documents are written.
    """

    def __init__(self, session_factory=None):
        self._session_factory = session_factory

    def _factory(self):
        if self._session_factory is None:
            self._session_factory = _get_session_factory()
        return self._session_factory

    def begin(self, read_only=True):
        session = self._factory()()
        session.info["read_only"] = read_only
        if read_only and session.get_bind().dialect.name == "postgresql":
            # Must be the first statement of the transaction.
            session.execute(text("SET TRANSACTION READ ONLY"))
        return session

    def commit(self, session):
        try:
            session.commit()
        finally:
            session.close()

    def rollback(self, session):
        try:
            session.rollback()
        finally:
            session.close()

    def finalize(self, session, is_error):
        """
        Commit on success, roll back on error.

        A session that already failed a flush can only be rolled back, so it is
        rolled back regardless of is_error.
        """
        if is_error or not session.is_active:
            logger.debug("Rolling back transaction (error=%s)", is_error)
            self.rollback(session)
        else:
            self.commit(session)
