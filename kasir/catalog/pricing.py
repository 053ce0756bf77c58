"""
kasir/catalog/pricing.py
------------------------
Pure-Python pricing resolver.

Turns catalog economics into a unit sell price and a unit cost (HPP):

    StockedGood       unit_price = selling_price
                      unit_cost  = purchase_price

    PreparedBeverage  unit_cost  = fixed_cost + variant ingredient cost
                      raw        = unit_cost × (1 + profit_margin)
                      unit_price = ceil(raw / rounding_unit) × rounding_unit

Rounding is always UP to the next multiple of the rounding unit, so the
realised margin is never below the configured one.

No DB access happens here: callers pass model rows or any object with
the same attributes. Same inputs always give the same output.
"""
from __future__ import annotations
import enum
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation, ROUND_CEILING
from typing import List, Optional


Q = Decimal('0.01')   # quantize target for money

BASE_VARIANT_NAME = 'Regular'


class ItemKind(enum.Enum):
    PREPARED_BEVERAGE = 'menu'
    STOCKED_GOOD      = 'book'


class InvalidCatalogData(ValueError):
    """Catalog row cannot be priced (bad configuration, never defaulted)."""

    def __init__(self, item, field_name: str, message: str):
        self.item_id    = getattr(item, 'id', None)
        self.item_name  = getattr(item, 'name', None) or getattr(item, 'title', None)
        self.field_name = field_name
        super().__init__(f'{self.item_name or "item"} (id={self.item_id}): {field_name} {message}')


@dataclass(frozen=True)
class ResolvedPrice:
    unit_price: Decimal
    unit_cost:  Decimal


@dataclass(frozen=True)
class VariantPrice:
    """One row of the variant picker."""
    variant_id:   Optional[int]
    variant_name: str
    unit_price:   Decimal
    unit_cost:    Decimal


# ── Helpers ───────────────────────────────────────────────────────

def _to_decimal(item, field_name: str, value) -> Decimal:
    if value is None or isinstance(value, bool):
        raise InvalidCatalogData(item, field_name, 'is missing')
    try:
        number = Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise InvalidCatalogData(item, field_name, f'is not a number ({value!r})')
    if not number.is_finite():
        raise InvalidCatalogData(item, field_name, f'is not a finite number ({value!r})')
    return number


def _non_negative(item, field_name: str, value) -> Decimal:
    number = _to_decimal(item, field_name, value)
    if number < 0:
        raise InvalidCatalogData(item, field_name, f'must not be negative ({number})')
    return number


def round_up_to_unit(amount: Decimal, unit: Decimal) -> Decimal:
    """Smallest multiple of `unit` that is >= `amount`."""
    steps = (amount / unit).to_integral_value(rounding=ROUND_CEILING)
    return steps * unit


# ── Resolvers ─────────────────────────────────────────────────────

def resolve_stocked_good_price(item) -> ResolvedPrice:
    """Stored prices, validated: a book sells at selling_price, costs purchase_price."""
    unit_price = _non_negative(item, 'selling_price', getattr(item, 'selling_price', None))
    unit_cost  = _non_negative(item, 'purchase_price', getattr(item, 'purchase_price', None))
    return ResolvedPrice(unit_price=unit_price, unit_cost=unit_cost)


def resolve_prepared_beverage_variant_price(item, variant=None) -> ResolvedPrice:
    """
    Price one serving of `item` made with `variant`.

    `variant=None` is the implicit "no recipe option" entry with an
    ingredient cost of zero. A negative profit_margin (loss leader) is
    accepted as configured.
    """
    fixed_cost    = _non_negative(item, 'fixed_cost', getattr(item, 'fixed_cost', None))
    profit_margin = _to_decimal(item, 'profit_margin', getattr(item, 'profit_margin', None))
    rounding_unit = _to_decimal(item, 'rounding_unit', getattr(item, 'rounding_unit', None))
    if rounding_unit <= 0:
        raise InvalidCatalogData(item, 'rounding_unit', f'must be greater than zero ({rounding_unit})')

    if variant is None:
        ingredient_cost = Decimal('0')
    else:
        ingredient_cost = _non_negative(
            item, f'variant {getattr(variant, "name", variant)!s} ingredient cost',
            getattr(variant, 'unit_ingredient_cost', None),
        )

    unit_cost  = fixed_cost + ingredient_cost
    raw_price  = unit_cost * (1 + profit_margin)
    unit_price = round_up_to_unit(raw_price, rounding_unit)
    return ResolvedPrice(unit_price=unit_price, unit_cost=unit_cost)


def list_variant_prices(item) -> List[VariantPrice]:
    """
    One resolved entry per recipe variant, in catalog order.
    An item without variants yields a single synthetic entry (variant_id=None).
    """
    variants = list(getattr(item, 'variants', None) or [])
    if not variants:
        price = resolve_prepared_beverage_variant_price(item, None)
        return [VariantPrice(None, BASE_VARIANT_NAME, price.unit_price, price.unit_cost)]

    entries = []
    for variant in variants:
        price = resolve_prepared_beverage_variant_price(item, variant)
        entries.append(VariantPrice(variant.id, variant.name, price.unit_price, price.unit_cost))
    return entries


def resolve_price(item, variant=None) -> ResolvedPrice:
    """Dispatch on item.kind."""
    if item.kind == ItemKind.STOCKED_GOOD:
        return resolve_stocked_good_price(item)
    return resolve_prepared_beverage_variant_price(item, variant)
