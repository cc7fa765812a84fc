"""
Transaction Coordinator
=======================

Runs a unit of work atomically and hands the open transaction to every
repository call made inside it:

    async def work(tx):
        await supervisors.save(supervisor, tx)
        await audit_log.save(entry, tx)
        return supervisor

    await coordinator.execute(work)

Storage-level uniqueness failures surface as UniqueConstraintViolation so
callers can tell a lost race apart from other storage errors.
"""

import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, TypeVar

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from termwarden.db.connection import Database
from termwarden.errors import UniqueConstraintViolation
from termwarden.ports import TransactionCoordinator

logger = logging.getLogger(__name__)

T = TypeVar("T")

# SQLite message prefix, PostgreSQL SQLSTATE, MySQL duplicate-key errno
_UNIQUE_MARKERS = ("UNIQUE constraint failed", "duplicate key value", "Duplicate entry")
_UNIQUE_SQLSTATE = "23505"


@dataclass
class TransactionContext:
    """Handle for an open transaction, passed to repository calls."""
    session: AsyncSession


def is_unique_violation(error: IntegrityError) -> bool:
    orig = getattr(error, "orig", None)
    if getattr(orig, "sqlstate", None) == _UNIQUE_SQLSTATE or getattr(orig, "pgcode", None) == _UNIQUE_SQLSTATE:
        return True
    message = str(orig if orig is not None else error)
    return any(marker in message for marker in _UNIQUE_MARKERS)


class SqlTransactionCoordinator(TransactionCoordinator):
    def __init__(self, database: Database):
        self.database = database

    async def execute(self, fn: Callable[[TransactionContext], Awaitable[T]]) -> T:
        try:
            async with self.database.session() as session:
                async with session.begin():
                    result = await fn(TransactionContext(session))
                return result
        except IntegrityError as e:
            if is_unique_violation(e):
                logger.info("Transaction rolled back on unique constraint: %s", e.orig)
                raise UniqueConstraintViolation(str(e.orig)) from e
            raise
