"""
kasir/orders/cart.py
--------------------
Session-held shopping cart.

Cart structure stored in the Flask session:

    session['cart'] = {
        "<line_key>": {
            "kind":       "menu" | "book",
            "item_id":    int,
            "variant_id": int | None,
            "name":       str,
            "unit_price": str,   ← strings survive JSON serialisation
            "unit_cost":  str,
            "quantity":   int
        },
        ...
    }
    session['cart_token'] = "<uuid hex>"   ← becomes the Order id at checkout

line_key is "menu-<item>-<variant|base>" or "book-<id>".

unit_price / unit_cost are resolved once, when the line is first added,
and never re-resolved: a catalog edit during checkout cannot change an
in-flight cart.
"""
from __future__ import annotations
import uuid
from dataclasses import dataclass, replace
from decimal import Decimal
from typing import Iterable, List, Optional

from flask import session

from kasir.catalog.pricing import ItemKind, resolve_price


CART_KEY  = 'cart'
TOKEN_KEY = 'cart_token'


@dataclass(frozen=True)
class CartLine:
    kind:       ItemKind
    item_id:    int
    variant_id: Optional[int]
    name:       str
    quantity:   int
    unit_price: Decimal
    unit_cost:  Decimal

    @classmethod
    def from_item(cls, item, variant=None, quantity: int = 1) -> 'CartLine':
        """Freeze the item's current resolved price into a new line."""
        price = resolve_price(item, variant)
        name = item.name if variant is None else f'{item.name} ({variant.name})'
        return cls(
            kind=item.kind,
            item_id=item.id,
            variant_id=None if variant is None else variant.id,
            name=name,
            quantity=quantity,
            unit_price=price.unit_price,
            unit_cost=price.unit_cost,
        )

    @property
    def key(self) -> str:
        return line_key(self.kind, self.item_id, self.variant_id)

    @property
    def line_total(self) -> Decimal:
        return self.unit_price * self.quantity

    @property
    def line_profit(self) -> Decimal:
        return (self.unit_price - self.unit_cost) * self.quantity

    def to_session(self) -> dict:
        return {
            'kind':       self.kind.value,
            'item_id':    self.item_id,
            'variant_id': self.variant_id,
            'name':       self.name,
            'unit_price': str(self.unit_price),
            'unit_cost':  str(self.unit_cost),
            'quantity':   self.quantity,
        }

    @classmethod
    def from_session(cls, data: dict) -> 'CartLine':
        return cls(
            kind=ItemKind(data['kind']),
            item_id=int(data['item_id']),
            variant_id=data.get('variant_id'),
            name=data['name'],
            quantity=int(data['quantity']),
            unit_price=Decimal(data['unit_price']),
            unit_cost=Decimal(data['unit_cost']),
        )

    def to_dict(self) -> dict:
        data = self.to_session()
        data.update(key=self.key, line_total=str(self.line_total))
        return data


def line_key(kind: ItemKind, item_id: int, variant_id: Optional[int] = None) -> str:
    if kind == ItemKind.STOCKED_GOOD:
        return f'book-{item_id}'
    return f'menu-{item_id}-{variant_id if variant_id is not None else "base"}'


# ── Totals ────────────────────────────────────────────────────────

def cart_totals(lines: Iterable[CartLine]) -> dict:
    """
    Totals straight from the frozen line prices:
        total_amount = Σ unit_price × qty
        total_profit = Σ (unit_price − unit_cost) × qty
    """
    total_amount = Decimal('0')
    total_profit = Decimal('0')
    item_count   = 0
    for line in lines:
        total_amount += line.line_total
        total_profit += line.line_profit
        item_count   += line.quantity
    return {
        'total_amount': total_amount,
        'total_profit': total_profit,
        'item_count':   item_count,
    }


# ── Read ──────────────────────────────────────────────────────────

def get_cart() -> dict:
    """Return the raw cart dict (may be empty)."""
    return session.get(CART_KEY, {})


def cart_lines() -> List[CartLine]:
    return [CartLine.from_session(data) for data in get_cart().values()]


def checkout_token() -> str:
    """
    Id the next order from this cart will be stored under.
    Stable until the cart is changed or cleared, so resubmitting the
    same cart is recognised as the same order.
    """
    token = session.get(TOKEN_KEY)
    if token is None:
        token = uuid.uuid4().hex
        session[TOKEN_KEY] = token
        session.modified = True
    return token


# ── Write ─────────────────────────────────────────────────────────

def add_to_cart(line: CartLine) -> CartLine:
    """
    Add `line` to the cart. If the same item/variant is already there,
    bump its quantity and keep the price frozen on the existing line.
    """
    cart = get_cart()
    existing = cart.get(line.key)
    if existing is not None:
        stored = CartLine.from_session(existing)
        line = replace(stored, quantity=stored.quantity + line.quantity)
    cart[line.key] = line.to_session()
    session[CART_KEY] = cart
    session.pop(TOKEN_KEY, None)   # a different cart is a different order
    session.modified  = True
    return line


def remove_from_cart(key: str, remove_all: bool = False) -> None:
    """Take one unit off the line (or the whole line); drop it at zero."""
    cart = get_cart()
    data = cart.get(key)
    if data is None:
        return
    if remove_all or data['quantity'] <= 1:
        cart.pop(key)
    else:
        data['quantity'] -= 1
    session[CART_KEY] = cart
    session.pop(TOKEN_KEY, None)
    session.modified  = True


def clear_cart() -> None:
    """Empty the cart and retire its checkout token after a completed sale."""
    session.pop(CART_KEY, None)
    session.pop(TOKEN_KEY, None)
    session.modified = True
