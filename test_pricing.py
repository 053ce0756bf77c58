"""
test_pricing.py — Tests for the pricing resolver (no database needed).
Run: pytest test_pricing.py -v
"""
from decimal import Decimal
from types import SimpleNamespace

import pytest

from kasir.catalog.pricing import (
    BASE_VARIANT_NAME, InvalidCatalogData, ItemKind, ResolvedPrice,
    list_variant_prices, resolve_prepared_beverage_variant_price,
    resolve_price, resolve_stocked_good_price, round_up_to_unit,
)


def beverage(fixed_cost='1600', margin='0.5', rounding='500', variants=(), **kw):
    return SimpleNamespace(
        id=kw.get('id', 1), name=kw.get('name', 'Manual Brew'),
        kind=ItemKind.PREPARED_BEVERAGE,
        fixed_cost=Decimal(fixed_cost) if fixed_cost is not None else None,
        profit_margin=Decimal(margin), rounding_unit=Decimal(rounding),
        variants=list(variants),
    )


def variant(vid, name, cost):
    return SimpleNamespace(id=vid, name=name,
                           unit_ingredient_cost=None if cost is None else Decimal(cost))


def book(purchase='20000', selling='35000'):
    return SimpleNamespace(id=7, name='Laskar Pelangi', title='Laskar Pelangi',
                           kind=ItemKind.STOCKED_GOOD,
                           purchase_price=purchase, selling_price=selling, stock_quantity=5)


# ── Prepared beverages ────────────────────────────────────────────

def test_beverage_without_ingredient_cost_rounds_up_to_500():
    price = resolve_prepared_beverage_variant_price(beverage(), variant(1, 'Base', '0'))
    # 1600 × 1.5 = 2400 → next multiple of 500
    assert price.unit_cost == Decimal('1600')
    assert price.unit_price == Decimal('2500')


def test_implicit_variant_has_zero_ingredient_cost():
    assert resolve_prepared_beverage_variant_price(beverage(), None) == \
        ResolvedPrice(unit_price=Decimal('2500'), unit_cost=Decimal('1600'))


def test_ingredient_cost_is_added_to_fixed_cost():
    price = resolve_prepared_beverage_variant_price(beverage(), variant(2, 'Gayo', '7200'))
    # (1600 + 7200) × 1.5 = 13200 → 13500
    assert price.unit_cost == Decimal('8800')
    assert price.unit_price == Decimal('13500')


def test_exact_multiple_is_not_rounded_further():
    price = resolve_prepared_beverage_variant_price(beverage(fixed_cost='2000', margin='0.5'), None)
    assert price.unit_price == Decimal('3000')


@pytest.mark.parametrize('fixed_cost,margin,rounding,ingredient', [
    ('1600', '0.5', '500', '0'),
    ('1234.56', '0.35', '100', '987.65'),
    ('0', '0.5', '500', '0'),
    ('4999', '0.01', '1000', '1'),
    ('3000', '1.25', '250', '333.33'),
    ('2500', '-0.2', '500', '0'),
])
def test_price_is_multiple_of_rounding_unit_and_keeps_margin(fixed_cost, margin, rounding, ingredient):
    item = beverage(fixed_cost=fixed_cost, margin=margin, rounding=rounding)
    price = resolve_prepared_beverage_variant_price(item, variant(1, 'V', ingredient))

    assert price.unit_price % Decimal(rounding) == 0
    assert price.unit_price >= price.unit_cost * (1 + Decimal(margin))
    # never more than one rounding step above the raw price
    assert price.unit_price - price.unit_cost * (1 + Decimal(margin)) < Decimal(rounding)


def test_negative_margin_is_not_clamped():
    price = resolve_prepared_beverage_variant_price(beverage(fixed_cost='2500', margin='-0.2'), None)
    # 2500 × 0.8 = 2000, below cost on purpose (loss leader)
    assert price.unit_price == Decimal('2000')
    assert price.unit_price < price.unit_cost


@pytest.mark.parametrize('rounding', ['0', '-500'])
def test_non_positive_rounding_unit_is_invalid(rounding):
    with pytest.raises(InvalidCatalogData) as exc:
        resolve_prepared_beverage_variant_price(beverage(rounding=rounding), None)
    assert exc.value.field_name == 'rounding_unit'


def test_missing_fixed_cost_is_invalid():
    with pytest.raises(InvalidCatalogData):
        resolve_prepared_beverage_variant_price(beverage(fixed_cost=None), None)


def test_underivable_variant_cost_is_invalid():
    with pytest.raises(InvalidCatalogData):
        resolve_prepared_beverage_variant_price(beverage(), variant(3, 'Broken', None))


def test_resolver_is_idempotent():
    item, v = beverage(fixed_cost='1777.77', margin='0.33', rounding='100'), variant(1, 'X', '123.45')
    first = resolve_prepared_beverage_variant_price(item, v)
    second = resolve_prepared_beverage_variant_price(item, v)
    assert first == second
    assert str(first.unit_price) == str(second.unit_price)
    assert str(first.unit_cost) == str(second.unit_cost)


def test_round_up_to_unit():
    assert round_up_to_unit(Decimal('2400'), Decimal('500')) == Decimal('2500')
    assert round_up_to_unit(Decimal('2500'), Decimal('500')) == Decimal('2500')
    assert round_up_to_unit(Decimal('2500.01'), Decimal('500')) == Decimal('3000')


# ── Variant listing ───────────────────────────────────────────────

def test_list_variant_prices_keeps_catalog_order():
    item = beverage(variants=[variant(9, 'Pinara', '6750'), variant(4, 'Gayo', '7200')])
    prices = list_variant_prices(item)

    assert [p.variant_id for p in prices] == [9, 4]
    assert [p.variant_name for p in prices] == ['Pinara', 'Gayo']
    assert prices[0].unit_price == Decimal('13000')   # (1600+6750)×1.5 = 12525 → 13000
    assert prices[1].unit_price == Decimal('13500')


def test_list_variant_prices_without_variants_is_single_synthetic_entry():
    prices = list_variant_prices(beverage())
    assert len(prices) == 1
    assert prices[0].variant_id is None
    assert prices[0].variant_name == BASE_VARIANT_NAME
    assert prices[0].unit_price == Decimal('2500')


def test_list_variant_prices_is_restartable():
    item = beverage(variants=[variant(1, 'A', '100'), variant(2, 'B', '200')])
    assert list_variant_prices(item) == list_variant_prices(item)


# ── Stocked goods ─────────────────────────────────────────────────

def test_stocked_good_uses_stored_prices():
    price = resolve_stocked_good_price(book())
    assert price == ResolvedPrice(unit_price=Decimal('35000'), unit_cost=Decimal('20000'))


@pytest.mark.parametrize('purchase,selling', [
    ('-1', '35000'), ('20000', '-5'), (None, '35000'), ('abc', '35000'),
])
def test_stocked_good_rejects_bad_prices(purchase, selling):
    with pytest.raises(InvalidCatalogData):
        resolve_stocked_good_price(book(purchase=purchase, selling=selling))


def test_resolve_price_dispatches_on_kind():
    assert resolve_price(book()).unit_price == Decimal('35000')
    assert resolve_price(beverage()).unit_price == Decimal('2500')
