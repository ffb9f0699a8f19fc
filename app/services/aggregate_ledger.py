"""Derived aggregates kept on parent rows.

A ledger owns one derived value stored on a parent row (an expense's paid
amount, a room requirement's required quantity, an assignment's completed
area) and keeps it equal to a total over an unbounded set of child rows.

``recompute`` runs at write time, inside the caller's transaction, right
after the child write that made the stored value stale. ``project`` runs at
read time and derives values that are never stored (balance, shortage).
Recomputation always re-sums the current children, so calling it twice with
no child change in between is a no-op.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from decimal import Decimal
from typing import Generic, TypeVar

import structlog
from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.db import dialect_name
from app.errors import ConsistencyFailure

logger = structlog.get_logger(__name__)

KeyT = TypeVar('KeyT')
ParentT = TypeVar('ParentT')
ViewT = TypeVar('ViewT')

ZERO = Decimal('0')


def as_decimal(value) -> Decimal:
    if value is None:
        return ZERO
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def sum_children(db: Session, column, *criteria) -> Decimal:
    """Exact decimal total of ``column`` over the rows matching ``criteria``.

    Postgres sums NUMERIC exactly, so the total is computed in SQL there.
    SQLite stores NUMERIC as REAL and its SUM drifts, so other backends load the
    values and add them in Python with ``Decimal``.
    """
    if dialect_name(db) == 'postgresql':
        total = db.execute(select(func.coalesce(func.sum(column), 0)).where(*criteria)).scalar_one()
        return as_decimal(total)
    values = db.execute(select(column).where(*criteria)).scalars().all()
    return sum((as_decimal(value) for value in values), ZERO)


def clamp_non_negative(value: Decimal) -> Decimal:
    return value if value > ZERO else ZERO


class AggregateLedger(ABC, Generic[KeyT, ParentT, ViewT]):
    name = 'aggregate'

    @abstractmethod
    def recompute(self, db: Session, key: KeyT) -> ParentT | None:
        """Re-derive and persist the stored aggregate for ``key``."""

    @abstractmethod
    def project(self, parent: ParentT) -> ViewT:
        """Read-time view of ``parent``; must not write."""

    def synchronize(self, db: Session, key: KeyT) -> ParentT | None:
        """Run ``recompute`` as part of the current unit of work.

        Store errors surface as ``ConsistencyFailure`` so the caller aborts
        the triggering write instead of committing it next to a stale parent.
        """
        try:
            parent = self.recompute(db, key)
            db.flush()
        except SQLAlchemyError as exc:
            logger.error('ledger.sync_failed', ledger=self.name, key=key, exc_info=True)
            raise ConsistencyFailure(self.name, key) from exc
        logger.debug('ledger.recomputed', ledger=self.name, key=key)
        return parent
