"""
kasir/catalog/menu.py
---------------------
Builds the priced display menu the cashier screen renders: one entry
per beverage recipe variant plus one per in-stock book.

A catalog row that cannot be priced is left out and reported in
`catalog_errors` instead of being shown with a made-up price.
"""
from flask import current_app

from kasir.catalog.pricing import (
    InvalidCatalogData, ItemKind, list_variant_prices, resolve_stocked_good_price,
)
from kasir.orders.cart import line_key


def build_display_menu(catalog_store) -> dict:
    entries = []
    errors  = []

    for item in catalog_store.list_sellable_items(in_stock_only=True):
        try:
            if item.kind == ItemKind.STOCKED_GOOD:
                price = resolve_stocked_good_price(item)
                entries.append({
                    'key':          line_key(item.kind, item.id),
                    'kind':         item.kind.value,
                    'item_id':      item.id,
                    'variant_id':   None,
                    'name':         item.name,
                    'variant_name': None,
                    'unit_price':   str(price.unit_price),
                    'unit_cost':    str(price.unit_cost),
                    'stock':        item.stock_quantity,
                })
                continue

            for vp in list_variant_prices(item):
                entries.append({
                    'key':          line_key(item.kind, item.id, vp.variant_id),
                    'kind':         item.kind.value,
                    'item_id':      item.id,
                    'variant_id':   vp.variant_id,
                    'name':         item.name if vp.variant_id is None else f'{item.name} ({vp.variant_name})',
                    'variant_name': vp.variant_name,
                    'unit_price':   str(vp.unit_price),
                    'unit_cost':    str(vp.unit_cost),
                    'stock':        None,
                })
        except InvalidCatalogData as exc:
            current_app.logger.error(f"Display menu skipped {item.kind.value} {item.id}: {exc}")
            errors.append({
                'kind':    item.kind.value,
                'item_id': exc.item_id,
                'field':   exc.field_name,
                'message': str(exc),
            })

    return {'items': entries, 'catalog_errors': errors}
