import logging
from datetime import datetime, timedelta, timezone
from threading import Lock
from typing import Optional, Protocol
from uuid import uuid4

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from .db import TransactionRow
from .errors import StorageError
from .models import Transaction, TransactionDraft, TransactionFilter, TransactionStatus

logger = logging.getLogger(__name__)


class TransactionStore(Protocol):
    def append(self, draft: TransactionDraft) -> Transaction:
        ...

    # Offset pagination over newest-first order; a concurrent write can shift a page by one.
    def list_recent(
        self,
        limit: int,
        offset: int,
        filters: Optional[TransactionFilter] = None,
    ) -> tuple[list[Transaction], int]:
        ...

    def list_by_uid(self, user_uid: str) -> list[Transaction]:
        ...

    def count(self) -> int:
        ...


class MonotonicClock:
    def __init__(self) -> None:
        self._last: Optional[datetime] = None
        self._lock = Lock()

    def now(self) -> datetime:
        with self._lock:
            now = datetime.now(timezone.utc)
            if self._last is not None and now <= self._last:
                now = self._last + timedelta(microseconds=1)
            self._last = now
            return now


class InMemoryTransactionStore(TransactionStore):
    def __init__(self, clock: Optional[MonotonicClock] = None):
        self.transactions: dict[str, Transaction] = {}
        self._order: list[str] = []
        self._clock = clock or MonotonicClock()
        self._lock = Lock()

    def append(self, draft: TransactionDraft) -> Transaction:
        with self._lock:
            transaction = Transaction(
                id=str(uuid4()),
                user_uid=draft.user_uid,
                uc_amount=draft.uc_amount,
                coins_amount=draft.coins_amount,
                admin_id=draft.admin_id,
                admin_username=draft.admin_username,
                status=TransactionStatus.COMPLETED,
                created_at=self._clock.now(),
            )
            self.transactions[transaction.id] = transaction
            self._order.append(transaction.id)
        return transaction

    def list_recent(
        self,
        limit: int,
        offset: int,
        filters: Optional[TransactionFilter] = None,
    ) -> tuple[list[Transaction], int]:
        entries = self._newest_first()
        if filters is not None and not filters.is_empty():
            entries = [t for t in entries if filters.matches(t)]
        return entries[offset:offset + limit], len(entries)

    def list_by_uid(self, user_uid: str) -> list[Transaction]:
        return [t for t in self._newest_first() if t.user_uid == user_uid]

    def count(self) -> int:
        with self._lock:
            return len(self._order)

    def _newest_first(self) -> list[Transaction]:
        # Timestamps are strictly increasing, so insertion order is creation order.
        with self._lock:
            return [self.transactions[tid] for tid in reversed(self._order)]


class SqlTransactionStore(TransactionStore):
    def __init__(self, session_factory: sessionmaker, clock: Optional[MonotonicClock] = None):
        self._session_factory = session_factory
        self._clock = clock or MonotonicClock()

    @staticmethod
    def _to_domain(row: TransactionRow) -> Transaction:
        created_at = row.created_at
        # SQLite drops the offset on the way back; stored values are UTC.
        if created_at.tzinfo is None:
            created_at = created_at.replace(tzinfo=timezone.utc)
        return Transaction(
            id=row.id,
            user_uid=row.user_uid,
            uc_amount=row.uc_amount,
            coins_amount=row.coins_amount,
            admin_id=row.admin_id,
            admin_username=row.admin_username,
            status=TransactionStatus(row.status),
            created_at=created_at,
        )

    @staticmethod
    def _apply_filters(statement, filters: Optional[TransactionFilter]):
        if filters is None:
            return statement
        if filters.user_uid is not None:
            statement = statement.where(TransactionRow.user_uid == filters.user_uid)
        if filters.created_from is not None:
            statement = statement.where(TransactionRow.created_at >= filters.created_from.astimezone(timezone.utc))
        if filters.created_before is not None:
            statement = statement.where(TransactionRow.created_at < filters.created_before.astimezone(timezone.utc))
        return statement

    def append(self, draft: TransactionDraft) -> Transaction:
        row = TransactionRow(
            id=str(uuid4()),
            user_uid=draft.user_uid,
            uc_amount=draft.uc_amount,
            coins_amount=draft.coins_amount,
            admin_id=draft.admin_id,
            admin_username=draft.admin_username,
            status=TransactionStatus.COMPLETED.value,
            created_at=self._clock.now(),
        )
        try:
            with self._session_factory() as db:
                db.add(row)
                db.commit()
                return self._to_domain(row)
        except (SQLAlchemyError, OverflowError) as e:
            logger.error(f"Database error while saving transaction for UID {draft.user_uid}: {e}", exc_info=True)
            raise StorageError("Could not save transaction.") from e

    def list_recent(
        self,
        limit: int,
        offset: int,
        filters: Optional[TransactionFilter] = None,
    ) -> tuple[list[Transaction], int]:
        page = self._apply_filters(select(TransactionRow), filters)
        page = page.order_by(TransactionRow.created_at.desc(), TransactionRow.id.desc())
        page = page.offset(offset).limit(limit)
        total = self._apply_filters(select(func.count()).select_from(TransactionRow), filters)
        try:
            with self._session_factory() as db:
                rows = db.scalars(page).all()
                return [self._to_domain(row) for row in rows], db.scalar(total)
        except SQLAlchemyError as e:
            logger.error(f"Database error while listing transactions: {e}", exc_info=True)
            raise StorageError("Could not read transactions.") from e

    def list_by_uid(self, user_uid: str) -> list[Transaction]:
        statement = (
            select(TransactionRow)
            .where(TransactionRow.user_uid == user_uid)
            .order_by(TransactionRow.created_at.desc(), TransactionRow.id.desc())
        )
        try:
            with self._session_factory() as db:
                return [self._to_domain(row) for row in db.scalars(statement).all()]
        except SQLAlchemyError as e:
            logger.error(f"Database error while listing transactions for UID {user_uid}: {e}", exc_info=True)
            raise StorageError("Could not read transactions.") from e

    def count(self) -> int:
        try:
            with self._session_factory() as db:
                return db.scalar(select(func.count()).select_from(TransactionRow))
        except SQLAlchemyError as e:
            logger.error(f"Database error while counting transactions: {e}", exc_info=True)
            raise StorageError("Could not read transactions.") from e
