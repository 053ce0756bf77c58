"""
kasir/stores.py
---------------
Store contracts the settlement workflow depends on, plus their
Flask-SQLAlchemy implementations.

The workflow never touches db.session directly: it receives a
CatalogStore, InventoryStore, OrderStore and IdentityProvider, so tests
can hand it in-memory fakes.
"""
from __future__ import annotations
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import List, Optional, Set

from flask import current_app, session
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from kasir import db
from kasir.catalog.pricing import ItemKind


class PersistenceError(Exception):
    """A store could not read or write (constraint violation, connectivity loss)."""


class DuplicateOrder(PersistenceError):
    """An order with this id is already stored."""

    def __init__(self, order_id: str):
        self.order_id = order_id
        super().__init__(f'Order {order_id} already exists.')


# ── Data crossing the store boundary ──────────────────────────────

@dataclass(frozen=True)
class OrderLineDraft:
    kind:       ItemKind
    item_id:    int
    variant_id: Optional[int]
    name:       str
    quantity:   int
    unit_price: Decimal
    unit_cost:  Decimal
    line_total: Decimal


@dataclass(frozen=True)
class OrderDraft:
    id:           str
    operator_id:  Optional[int]
    total_amount: Decimal
    total_profit: Decimal
    lines:        List[OrderLineDraft] = field(default_factory=list)


@dataclass(frozen=True)
class PersistedOrder:
    id:           str
    code:         str
    created_at:   datetime
    total_amount: Decimal
    total_profit: Decimal


# ── Contracts ─────────────────────────────────────────────────────

class CatalogStore(ABC):
    @abstractmethod
    def get_sellable_item(self, kind: ItemKind, item_id: int): ...

    @abstractmethod
    def list_sellable_items(self, in_stock_only: bool = False) -> list: ...


class InventoryStore(ABC):
    @abstractmethod
    def get_stock_quantity(self, item_id: int) -> Optional[int]:
        """Current stock, or None when the item no longer exists."""

    @abstractmethod
    def adjust_stock_quantity(self, item_id: int, delta: int, *,
                              order_id: Optional[str] = None,
                              operator_id: Optional[int] = None,
                              reason: str = 'sale') -> bool:
        """Apply `delta`; False when refused (would go negative) or failed."""

    @abstractmethod
    def adjusted_item_ids(self, order_id: str) -> Set[int]:
        """Ids of items whose sale decrement for `order_id` was recorded."""


class OrderStore(ABC):
    @abstractmethod
    def create_order(self, draft: OrderDraft) -> PersistedOrder:
        """Write the order and all its lines as one unit, or nothing."""

    @abstractmethod
    def get_order(self, order_id: str) -> Optional[PersistedOrder]: ...


class IdentityProvider(ABC):
    @abstractmethod
    def current_user_id(self) -> Optional[int]: ...


# ── SQLAlchemy implementations ────────────────────────────────────

class SqlCatalogStore(CatalogStore):

    def get_sellable_item(self, kind: ItemKind, item_id: int):
        from kasir.books.models import Book
        from kasir.catalog.models import MenuItem

        model = Book if kind == ItemKind.STOCKED_GOOD else MenuItem
        return db.session.get(model, item_id)

    def list_sellable_items(self, in_stock_only: bool = False) -> list:
        from kasir.books.models import Book
        from kasir.catalog.models import MenuItem

        menu = MenuItem.query.filter_by(is_active=True).order_by(MenuItem.name).all()
        books = Book.query
        if in_stock_only:
            books = books.filter(Book.stock_quantity > 0)
        return menu + books.order_by(Book.title).all()


class SqlInventoryStore(InventoryStore):
    """Stock of books, decremented with a single conditional UPDATE."""

    def get_stock_quantity(self, item_id: int) -> Optional[int]:
        from kasir.books.models import Book
        try:
            return (
                db.session.query(Book.stock_quantity)
                .filter(Book.id == item_id)
                .scalar()
            )
        except SQLAlchemyError as exc:
            db.session.rollback()
            raise PersistenceError(f'Stock lookup failed for book {item_id}: {exc}') from exc

    def adjust_stock_quantity(self, item_id: int, delta: int, *,
                              order_id: Optional[str] = None,
                              operator_id: Optional[int] = None,
                              reason: str = 'sale') -> bool:
        from kasir.books.models import Book, BookStockMovement
        try:
            # stock + delta >= 0 in the WHERE clause: the row is only
            # touched when the result stays non-negative.
            updated = (
                db.session.query(Book)
                .filter(Book.id == item_id, Book.stock_quantity + delta >= 0)
                .update(
                    {
                        Book.stock_quantity: Book.stock_quantity + delta,
                        Book.updated_at: datetime.utcnow(),
                    },
                    synchronize_session=False,
                )
            )
            if updated != 1:
                db.session.rollback()
                current_app.logger.warning(
                    f"Stock adjustment refused for book {item_id}: delta {delta} "
                    f"(missing book or insufficient stock)"
                )
                return False

            new_stock = (
                db.session.query(Book.stock_quantity)
                .filter(Book.id == item_id)
                .scalar()
            )
            db.session.add(BookStockMovement(
                book_id=item_id,
                movement_type=reason,
                quantity=delta,
                old_stock=new_stock - delta,
                new_stock=new_stock,
                order_id=order_id,
                created_by=operator_id,
                notes=f'Order {order_id}' if order_id else None,
            ))
            db.session.commit()
            return True
        except SQLAlchemyError as exc:
            db.session.rollback()
            current_app.logger.error(f"Stock adjustment failed for book {item_id}: {exc}")
            return False

    def adjusted_item_ids(self, order_id: str) -> Set[int]:
        from kasir.books.models import BookStockMovement
        try:
            rows = (
                db.session.query(BookStockMovement.book_id)
                .filter(BookStockMovement.order_id == order_id,
                        BookStockMovement.movement_type == 'sale')
                .all()
            )
        except SQLAlchemyError as exc:
            db.session.rollback()
            raise PersistenceError(f'Stock movements unreadable for order {order_id}: {exc}') from exc
        return {book_id for (book_id,) in rows}


class SqlOrderStore(OrderStore):

    def __init__(self, code_prefix: str = 'TRX'):
        self.code_prefix = code_prefix

    @staticmethod
    def _persisted(order) -> PersistedOrder:
        return PersistedOrder(
            id=order.id,
            code=order.code,
            created_at=order.created_at,
            total_amount=Decimal(str(order.total_amount)),
            total_profit=Decimal(str(order.total_profit)),
        )

    def create_order(self, draft: OrderDraft) -> PersistedOrder:
        from kasir.orders.codes import generate_order_code
        from kasir.orders.models import Order, OrderLine

        try:
            if db.session.get(Order, draft.id) is not None:
                raise DuplicateOrder(draft.id)

            order = Order(
                id=draft.id,
                code=generate_order_code(db.session, self.code_prefix),
                operator_id=draft.operator_id,
                total_amount=draft.total_amount,
                total_profit=draft.total_profit,
            )
            order.lines = [
                OrderLine(
                    kind=line.kind.value,
                    item_id=line.item_id,
                    variant_id=line.variant_id,
                    name=line.name,
                    quantity=line.quantity,
                    unit_price=line.unit_price,
                    unit_cost=line.unit_cost,
                    line_total=line.line_total,
                )
                for line in draft.lines
            ]
            db.session.add(order)
            db.session.commit()
        except IntegrityError as exc:
            db.session.rollback()
            if db.session.get(Order, draft.id) is not None:
                raise DuplicateOrder(draft.id) from exc
            raise PersistenceError(f'Order rejected by the database: {exc.orig}') from exc
        except SQLAlchemyError as exc:
            db.session.rollback()
            raise PersistenceError(f'Order could not be saved: {exc}') from exc

        return self._persisted(order)

    def get_order(self, order_id: str) -> Optional[PersistedOrder]:
        from kasir.orders.models import Order
        try:
            order = db.session.get(Order, order_id)
        except SQLAlchemyError as exc:
            db.session.rollback()
            raise PersistenceError(f'Order {order_id} could not be read: {exc}') from exc
        return self._persisted(order) if order is not None else None


class SessionIdentityProvider(IdentityProvider):
    """The operator logged in on this Flask session, if any."""

    def current_user_id(self) -> Optional[int]:
        return session.get('user_id')
