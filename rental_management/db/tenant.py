from __future__ import annotations

from typing import Any, TypeVar

from sqlalchemy import Select, func, select
from sqlalchemy.orm import Session

T = TypeVar("T")


class TenantScope:
    """A database session bound to one dealer.

    Tenant-owned models all carry a ``DealerID`` column; every statement built
    through the scope is filtered on it and every row added through it is
    stamped with it, so services never repeat the dealer filter by hand.
    """

    def __init__(self, db: Session, dealer_id: int):
        self.db = db
        self.dealer_id = int(dealer_id)

    def select(self, model: type[T], *options: Any) -> Select:
        stmt = select(model).where(model.DealerID == self.dealer_id)
        if options:
            stmt = stmt.options(*options)
        return stmt

    def select_columns(self, model: type[T], *columns: Any) -> Select:
        return select(*columns).where(model.DealerID == self.dealer_id)

    def get(self, model: type[T], identifier: int | None, *options: Any) -> T | None:
        if identifier is None:
            return None
        pk_column = model.__mapper__.primary_key[0]
        stmt = self.select(model, *options).where(pk_column == identifier)
        return self.db.execute(stmt).scalars().first()

    def first(self, stmt: Select):
        return self.db.execute(stmt).scalars().first()

    def all(self, stmt: Select) -> list:
        return list(self.db.execute(stmt).scalars().all())

    def rows(self, stmt: Select) -> list:
        return list(self.db.execute(stmt).all())

    def count(self, stmt: Select) -> int:
        count_stmt = select(func.count()).select_from(stmt.order_by(None).subquery())
        return int(self.db.execute(count_stmt).scalar() or 0)

    def add(self, instance: T) -> T:
        instance.DealerID = self.dealer_id
        self.db.add(instance)
        return instance

    def flush(self) -> None:
        self.db.flush()
