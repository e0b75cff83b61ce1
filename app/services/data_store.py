from __future__ import annotations

import logging
from collections.abc import Callable, Iterator, Sequence
from contextlib import contextmanager
from typing import Any, Protocol, TypeVar

from sqlalchemy import delete, func, select, update
from sqlalchemy.orm import Session

from app.models import Base
from app.services.change_feed import ChangeEvent, ChangeFeed, ChangeHandler, ChangeKind

logger = logging.getLogger(__name__)

ModelT = TypeVar('ModelT', bound=Base)


class DataStore(Protocol):
    supports_transactions: bool

    def select(self, model: type[ModelT], *where: Any, order_by: Sequence[Any] = (), limit: int | None = None) -> list[ModelT]: ...

    def get(self, model: type[ModelT], row_id: Any) -> ModelT | None: ...

    def count(self, model: type[Base], *where: Any) -> int: ...

    def value(self, column: Any, *where: Any) -> Any: ...

    def insert(self, model: type[ModelT], values: dict) -> ModelT: ...

    def insert_many(self, model: type[ModelT], rows: Sequence[dict]) -> list[ModelT]: ...

    def update(self, model: type[Base], where: Sequence[Any], patch: dict) -> int: ...

    def delete(self, model: type[Base], *where: Any) -> int: ...

    def transaction(self): ...

    def subscribe_to_changes(self, table: str, handler: ChangeHandler) -> Callable[[], None]: ...


class SqlDataStore:
    """Table-scoped reads and writes over one SQLAlchemy session.

    Outside transaction() every write commits on its own and is announced on
    the change feed right away. Inside transaction() writes are flushed and
    announced only once the whole block commits.
    """

    def __init__(self, db: Session, feed: ChangeFeed, *, supports_transactions: bool = True) -> None:
        self.db = db
        self.feed = feed
        self.supports_transactions = supports_transactions
        self._in_transaction = False
        self._pending: list[ChangeEvent] = []

    def select(self, model, *where, order_by=(), limit=None):
        query = select(model)
        if where:
            query = query.where(*where)
        if order_by:
            query = query.order_by(*order_by)
        if limit is not None:
            query = query.limit(limit)
        return list(self.db.execute(query).scalars().all())

    def get(self, model, row_id):
        return self.db.get(model, row_id)

    def count(self, model, *where) -> int:
        query = select(func.count()).select_from(model)
        if where:
            query = query.where(*where)
        return int(self.db.execute(query).scalar_one())

    def value(self, column, *where):
        """Read one column straight from the database, bypassing loaded objects."""
        query = select(column)
        if where:
            query = query.where(*where)
        return self.db.execute(query.limit(1)).scalar_one_or_none()

    def insert(self, model, values):
        row = model(**values)
        with self._write(model, ChangeKind.INSERT):
            self.db.add(row)
        return row

    def insert_many(self, model, rows):
        created = [model(**values) for values in rows]
        if not created:
            return []
        with self._write(model, ChangeKind.INSERT):
            self.db.add_all(created)
        return created

    def update(self, model, where, patch):
        with self._write(model, ChangeKind.UPDATE):
            result = self.db.execute(update(model).where(*where).values(**patch))
        return result.rowcount

    def delete(self, model, *where):
        with self._write(model, ChangeKind.DELETE):
            result = self.db.execute(delete(model).where(*where))
        return result.rowcount

    @contextmanager
    def _write(self, model, kind: ChangeKind) -> Iterator[None]:
        event = ChangeEvent(table=model.__tablename__, kind=kind)
        try:
            yield
            self.db.flush()
            if not self._in_transaction:
                self.db.commit()
        except Exception:
            if not self._in_transaction:
                self.db.rollback()
            raise
        if self._in_transaction:
            self._pending.append(event)
        else:
            self.feed.publish(event)

    @contextmanager
    def transaction(self) -> Iterator[SqlDataStore]:
        if not self.supports_transactions:
            raise RuntimeError('This data store was configured without transactions')
        if self._in_transaction:
            yield self
            return

        self._in_transaction = True
        try:
            yield self
            self.db.commit()
        except Exception:
            self.db.rollback()
            self._pending.clear()
            raise
        finally:
            self._in_transaction = False

        pending, self._pending = self._pending, []
        for event in pending:
            self.feed.publish(event)

    def subscribe_to_changes(self, table: str, handler: ChangeHandler) -> Callable[[], None]:
        return self.feed.subscribe(table, handler)
