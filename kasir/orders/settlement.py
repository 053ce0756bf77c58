"""
kasir/orders/settlement.py
--------------------------
Turns a cart into a stored Order plus stock decrements.

Per checkout attempt:

    IDLE → VALIDATING → RESERVING → PERSISTING → ADJUSTING_STOCK → SETTLED
                │            │            │               │
                └─ REJECTED ─┘          FAILED     SETTLED_WITH_WARNING

    VALIDATING       empty cart / operator check (nothing written); an
                     order already stored under this id is replayed
                     straight to SETTLED (or SETTLED_WITH_WARNING);
                     an unreadable order store is FAILED
    RESERVING        re-read stock of every book; collect ALL shortfalls
    PERSISTING       Order + lines in one transaction, or nothing
    ADJUSTING_STOCK  decrement each book independently; a failure is
                     reported, the sale stands

Expected failures come back as a SettlementResult, never as an
exception. Only a malformed cart (programming error) raises.
"""
from __future__ import annotations
import enum
import logging
import uuid
from dataclasses import dataclass
from decimal import Decimal
from typing import Dict, Iterable, List, Optional, Tuple, Union

from kasir.catalog.pricing import ItemKind
from kasir.orders.cart import CartLine, cart_totals
from kasir.stores import (
    DuplicateOrder, IdentityProvider, InventoryStore,
    OrderDraft, OrderLineDraft, OrderStore, PersistedOrder, PersistenceError,
)


class SettlementState(enum.Enum):
    IDLE                 = 'idle'
    VALIDATING           = 'validating'
    RESERVING            = 'reserving'
    PERSISTING           = 'persisting'
    ADJUSTING_STOCK      = 'adjusting_stock'
    SETTLED              = 'settled'
    SETTLED_WITH_WARNING = 'settled_with_warning'
    REJECTED             = 'rejected'
    FAILED               = 'failed'


TERMINAL_STATES = frozenset({
    SettlementState.SETTLED,
    SettlementState.SETTLED_WITH_WARNING,
    SettlementState.REJECTED,
    SettlementState.FAILED,
})


# ── Rejection / failure reasons ───────────────────────────────────

@dataclass(frozen=True)
class EmptyCart:
    code = 'empty_cart'

    def to_dict(self) -> dict:
        return {'code': self.code, 'message': 'Cart is empty. Add items before checking out.'}


@dataclass(frozen=True)
class Shortfall:
    item_id:   int
    item_name: str
    requested: int
    available: int

    def to_dict(self) -> dict:
        return {
            'item_id':   self.item_id,
            'item_name': self.item_name,
            'requested': self.requested,
            'available': self.available,
        }


@dataclass(frozen=True)
class InsufficientStock:
    shortfalls: Tuple[Shortfall, ...]
    code = 'insufficient_stock'

    def to_dict(self) -> dict:
        names = ', '.join(
            f'"{s.item_name}" (available {s.available}, requested {s.requested})'
            for s in self.shortfalls
        )
        return {
            'code':       self.code,
            'message':    f'Insufficient stock for {names}.',
            'shortfalls': [s.to_dict() for s in self.shortfalls],
        }


@dataclass(frozen=True)
class OperatorRequired:
    code = 'operator_required'

    def to_dict(self) -> dict:
        return {'code': self.code, 'message': 'Log in as a cashier before checking out.'}


@dataclass(frozen=True)
class InventoryUnavailable:
    detail: str
    code = 'inventory_unavailable'

    def to_dict(self) -> dict:
        return {'code': self.code, 'message': 'Stock could not be checked. Please try again.',
                'detail': self.detail}


@dataclass(frozen=True)
class SettlementCancelled:
    code = 'cancelled'

    def to_dict(self) -> dict:
        return {'code': self.code, 'message': 'Checkout was cancelled.'}


@dataclass(frozen=True)
class PersistenceFailed:
    detail: str
    code = 'persistence_failed'

    def to_dict(self) -> dict:
        return {
            'code':    self.code,
            'message': 'The order could not be saved. Confirm nothing was recorded before retrying.',
            'detail':  self.detail,
        }


RejectionReason = Union[EmptyCart, InsufficientStock, OperatorRequired,
                        InventoryUnavailable, SettlementCancelled]


# ── Outcomes ──────────────────────────────────────────────────────

@dataclass(frozen=True)
class Settled:
    order_id:     str
    code:         str
    total_amount: Decimal
    total_profit: Decimal
    replayed:     bool = False
    state = SettlementState.SETTLED

    def to_dict(self) -> dict:
        return {
            'status':       self.state.value,
            'order_id':     self.order_id,
            'code':         self.code,
            'total_amount': str(self.total_amount),
            'total_profit': str(self.total_profit),
            'replayed':     self.replayed,
        }


@dataclass(frozen=True)
class SettledWithWarning:
    order_id:           str
    code:               str
    total_amount:       Decimal
    total_profit:       Decimal
    failed_adjustments: Tuple[int, ...]
    replayed:           bool = False
    state = SettlementState.SETTLED_WITH_WARNING

    def to_dict(self) -> dict:
        return {
            'status':             self.state.value,
            'order_id':           self.order_id,
            'code':               self.code,
            'total_amount':       str(self.total_amount),
            'total_profit':       str(self.total_profit),
            'replayed':           self.replayed,
            'failed_adjustments': list(self.failed_adjustments),
            'warning': (
                'Sale recorded, but stock could not be updated for some books. '
                'Please reconcile inventory manually.'
            ),
        }


@dataclass(frozen=True)
class Rejected:
    reason: RejectionReason
    state = SettlementState.REJECTED

    def to_dict(self) -> dict:
        return {'status': self.state.value, 'error': self.reason.to_dict()}


@dataclass(frozen=True)
class Failed:
    reason: PersistenceFailed
    state = SettlementState.FAILED

    def to_dict(self) -> dict:
        return {'status': self.state.value, 'error': self.reason.to_dict()}


SettlementResult = Union[Settled, SettledWithWarning, Rejected, Failed]


# ── Attempt ───────────────────────────────────────────────────────

class SettlementAttempt:
    """
    State of one checkout attempt.

    cancel() is honoured until persisting starts; after that the request
    is ignored and the attempt runs to a terminal state.
    """

    def __init__(self, order_id: Optional[str] = None):
        self.order_id = order_id or uuid.uuid4().hex
        self.state = SettlementState.IDLE
        self.history: List[SettlementState] = [SettlementState.IDLE]
        self.cancel_requested = False

    def cancel(self) -> bool:
        if self.state in (SettlementState.PERSISTING, SettlementState.ADJUSTING_STOCK):
            return False
        if self.state in TERMINAL_STATES:
            return False
        self.cancel_requested = True
        return True

    @property
    def is_finished(self) -> bool:
        return self.state in TERMINAL_STATES

    def __repr__(self):
        return f"<SettlementAttempt {self.order_id} {self.state.value}>"


# ── Workflow ──────────────────────────────────────────────────────

class SettlementWorkflow:

    def __init__(self, inventory: InventoryStore, orders: OrderStore,
                 identity: IdentityProvider,
                 require_operator: bool = False,
                 logger: Optional[logging.Logger] = None):
        self.inventory = inventory
        self.orders = orders
        self.identity = identity
        self.require_operator = require_operator
        self.logger = logger or logging.getLogger(__name__)

    # ── helpers ───────────────────────────────────────────────────

    def _transition(self, attempt: SettlementAttempt, state: SettlementState) -> None:
        self.logger.info(f"[order={attempt.order_id}] {attempt.state.value} -> {state.value}")
        attempt.state = state
        attempt.history.append(state)

    def _reject(self, attempt: SettlementAttempt, reason) -> Rejected:
        self._transition(attempt, SettlementState.REJECTED)
        self.logger.warning(f"[order={attempt.order_id}] checkout rejected: {reason.code}")
        return Rejected(reason)

    def _fail(self, attempt: SettlementAttempt, error) -> Failed:
        self._transition(attempt, SettlementState.FAILED)
        self.logger.error(f"[order={attempt.order_id}] order not saved: {error}")
        return Failed(PersistenceFailed(str(error)))

    def _replay(self, attempt: SettlementAttempt, existing: PersistedOrder,
                wanted: Dict[int, Tuple[str, int]]):
        """
        Answer a resubmitted cart with the order already stored under its id.

        Books of the cart without a recorded sale decrement for this order
        come back as failed_adjustments, so a warning from the first attempt
        is repeated. Stock is never touched again here.
        """
        self.logger.info(f"[order={attempt.order_id}] already stored as {existing.code}, replaying result")
        try:
            adjusted = self.inventory.adjusted_item_ids(attempt.order_id)
        except PersistenceError as exc:
            self.logger.warning(
                f"[order={attempt.order_id}] stock movements unreadable on replay, "
                f"decrements not verified: {exc}"
            )
            adjusted = set(wanted)
        missing = tuple(item_id for item_id in wanted if item_id not in adjusted)

        if missing:
            self._transition(attempt, SettlementState.SETTLED_WITH_WARNING)
            return SettledWithWarning(existing.id, existing.code, existing.total_amount,
                                      existing.total_profit, missing, replayed=True)
        self._transition(attempt, SettlementState.SETTLED)
        return Settled(existing.id, existing.code, existing.total_amount,
                       existing.total_profit, replayed=True)

    @staticmethod
    def _validate_lines(lines: List[CartLine]) -> None:
        for line in lines:
            if not isinstance(line, CartLine):
                raise TypeError(f'Cart entries must be CartLine, got {type(line).__name__}')
            if not isinstance(line.quantity, int) or line.quantity < 1:
                raise ValueError(f'Cart line {line.key} has invalid quantity {line.quantity!r}')

    @staticmethod
    def _stocked_quantities(lines: Iterable[CartLine]) -> Dict[int, Tuple[str, int]]:
        """book id → (display name, total quantity), in cart order."""
        wanted: Dict[int, Tuple[str, int]] = {}
        for line in lines:
            if line.kind != ItemKind.STOCKED_GOOD:
                continue
            name, qty = wanted.get(line.item_id, (line.name, 0))
            wanted[line.item_id] = (name, qty + line.quantity)
        return wanted

    def _find_shortfalls(self, wanted: Dict[int, Tuple[str, int]]) -> List[Shortfall]:
        shortfalls = []
        for item_id, (name, requested) in wanted.items():
            available = self.inventory.get_stock_quantity(item_id)
            if available is None:
                available = 0
            if available < requested:
                shortfalls.append(Shortfall(item_id, name, requested, available))
        return shortfalls

    def _adjust_stock(self, attempt: SettlementAttempt, wanted: Dict[int, Tuple[str, int]],
                      operator_id: Optional[int]) -> List[int]:
        failed = []
        for item_id, (name, quantity) in wanted.items():
            try:
                ok = self.inventory.adjust_stock_quantity(
                    item_id, -quantity, order_id=attempt.order_id, operator_id=operator_id,
                )
            except Exception as exc:  # each book is independent; the sale stands
                self.logger.error(
                    f"[order={attempt.order_id}] stock decrement raised for book {item_id}: {exc}"
                )
                ok = False
            if not ok:
                self.logger.warning(
                    f"[order={attempt.order_id}] stock not decremented for "
                    f"\"{name}\" (book {item_id}, qty {quantity}), reconcile manually"
                )
                failed.append(item_id)
        return failed

    # ── entry point ───────────────────────────────────────────────

    def settle_order(self, cart: Iterable[CartLine],
                     attempt: Optional[SettlementAttempt] = None) -> SettlementResult:
        """Validate, persist and apply stock effects for `cart`."""
        attempt = attempt or SettlementAttempt()
        if attempt.state is not SettlementState.IDLE:
            raise RuntimeError(f'{attempt!r} has already run')

        lines = list(cart)

        # ── Validate ──────────────────────────────────────────────
        self._transition(attempt, SettlementState.VALIDATING)
        if not lines:
            return self._reject(attempt, EmptyCart())
        self._validate_lines(lines)
        wanted = self._stocked_quantities(lines)

        # A resubmitted cart is answered from the stored order, before
        # the stock check sees the copies the first attempt already sold.
        try:
            existing = self.orders.get_order(attempt.order_id)
        except PersistenceError as exc:
            return self._fail(attempt, exc)
        if existing is not None:
            return self._replay(attempt, existing, wanted)

        operator_id = self.identity.current_user_id()
        if operator_id is None and self.require_operator:
            return self._reject(attempt, OperatorRequired())
        if attempt.cancel_requested:
            return self._reject(attempt, SettlementCancelled())

        # ── Check stock (advisory, no reservation) ────────────────
        self._transition(attempt, SettlementState.RESERVING)
        try:
            shortfalls = self._find_shortfalls(wanted)
        except PersistenceError as exc:
            return self._reject(attempt, InventoryUnavailable(str(exc)))
        if shortfalls:
            return self._reject(attempt, InsufficientStock(tuple(shortfalls)))
        if attempt.cancel_requested:
            return self._reject(attempt, SettlementCancelled())

        # ── Totals from frozen prices ─────────────────────────────
        totals = cart_totals(lines)
        draft = OrderDraft(
            id=attempt.order_id,
            operator_id=operator_id,
            total_amount=totals['total_amount'],
            total_profit=totals['total_profit'],
            lines=[
                OrderLineDraft(
                    kind=line.kind,
                    item_id=line.item_id,
                    variant_id=line.variant_id,
                    name=line.name,
                    quantity=line.quantity,
                    unit_price=line.unit_price,
                    unit_cost=line.unit_cost,
                    line_total=line.line_total,
                )
                for line in lines
            ],
        )

        # ── Persist (no cancellation from here on) ────────────────
        self._transition(attempt, SettlementState.PERSISTING)
        try:
            persisted = self.orders.create_order(draft)
        except DuplicateOrder:
            # lost a race with a concurrent submission of the same cart
            try:
                existing = self.orders.get_order(attempt.order_id)
            except PersistenceError as exc:
                return self._fail(attempt, exc)
            if existing is None:
                return self._fail(attempt, f'Order {attempt.order_id} reported as duplicate but not found')
            return self._replay(attempt, existing, wanted)
        except PersistenceError as exc:
            return self._fail(attempt, exc)

        # ── Adjust stock (best effort per book) ───────────────────
        self._transition(attempt, SettlementState.ADJUSTING_STOCK)
        failed = self._adjust_stock(attempt, wanted, operator_id)

        if failed:
            self._transition(attempt, SettlementState.SETTLED_WITH_WARNING)
            return SettledWithWarning(persisted.id, persisted.code, draft.total_amount,
                                      draft.total_profit, tuple(failed))

        self._transition(attempt, SettlementState.SETTLED)
        self.logger.info(
            f"[order={attempt.order_id}] settled as {persisted.code} | "
            f"Total: {draft.total_amount} | Profit: {draft.total_profit}"
        )
        return Settled(persisted.id, persisted.code, draft.total_amount, draft.total_profit)
