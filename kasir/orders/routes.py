from flask import request, jsonify, current_app

from kasir.orders import orders
from kasir.orders.cart import (
    CartLine, add_to_cart, cart_lines, cart_totals,
    checkout_token, clear_cart, remove_from_cart,
)
from kasir.orders.settlement import (
    Failed, InsufficientStock, InventoryUnavailable, Rejected,
    SettledWithWarning, SettlementAttempt, SettlementWorkflow,
)
from kasir.catalog.pricing import InvalidCatalogData, ItemKind
from kasir.stores import (
    SessionIdentityProvider, SqlCatalogStore, SqlInventoryStore, SqlOrderStore,
)


def build_workflow() -> SettlementWorkflow:
    """Settlement workflow wired to the database and the Flask session."""
    return SettlementWorkflow(
        inventory=SqlInventoryStore(),
        orders=SqlOrderStore(code_prefix=current_app.config.get('ORDER_CODE_PREFIX', 'TRX')),
        identity=SessionIdentityProvider(),
        require_operator=current_app.config.get('REQUIRE_OPERATOR', False),
        logger=current_app.logger,
    )


def _cart_payload(error=None) -> dict:
    lines  = cart_lines()
    totals = cart_totals(lines)
    payload = {
        'lines':        [line.to_dict() for line in lines],
        'total_amount': str(totals['total_amount']),
        'total_profit': str(totals['total_profit']),
        'item_count':   totals['item_count'],
    }
    if error:
        payload['error'] = error
    return payload


# ── CART ──────────────────────────────────────────────────────────

@orders.route('/cart')
def cart():
    return jsonify(_cart_payload())


@orders.route('/cart/add', methods=['POST'])
def add_item():
    """
    Add one unit of a menu variant or a book to the cart.
    Body: {"kind": "menu"|"book", "item_id": int, "variant_id": int|null}
    The price is resolved now and frozen on the cart line.
    """
    data = request.get_json(silent=True) or request.form

    try:
        kind    = ItemKind(data.get('kind'))
        item_id = int(data.get('item_id'))
    except (TypeError, ValueError):
        return jsonify(_cart_payload('Choose a menu item or a book to add.')), 400

    item = SqlCatalogStore().get_sellable_item(kind, item_id)
    if item is None:
        return jsonify(_cart_payload('That item is no longer in the catalog.')), 404

    variant = None
    if kind == ItemKind.STOCKED_GOOD:
        if item.stock_quantity <= 0:
            return jsonify(_cart_payload(f'"{item.name}" is out of stock.')), 409
    else:
        if not item.is_active:
            return jsonify(_cart_payload(f'"{item.name}" is not on the menu right now.')), 409
        variant_id = data.get('variant_id')
        if item.variants:
            variant = next((v for v in item.variants if str(v.id) == str(variant_id)), None)
            if variant is None:
                return jsonify(_cart_payload(f'Choose a recipe option for "{item.name}".')), 400
        elif variant_id not in (None, ''):
            return jsonify(_cart_payload(f'"{item.name}" has no recipe options.')), 400

    try:
        line = CartLine.from_item(item, variant)
    except InvalidCatalogData as exc:
        current_app.logger.error(f"Cannot price catalog item: {exc}")
        return jsonify(_cart_payload(f'"{item.name}" cannot be priced: {exc}')), 422

    add_to_cart(line)
    return jsonify(_cart_payload())


@orders.route('/cart/remove', methods=['POST'])
def remove_item():
    """Body: {"key": "<line key>", "all": bool}"""
    data = request.get_json(silent=True) or request.form
    key = data.get('key')
    if key:
        remove_from_cart(key, remove_all=str(data.get('all', '')).lower() in ('1', 'true', 'yes'))
    return jsonify(_cart_payload())


@orders.route('/cart/clear', methods=['POST'])
def clear():
    clear_cart()
    return jsonify(_cart_payload())


# ── CHECKOUT ──────────────────────────────────────────────────────

@orders.route('/checkout', methods=['POST'])
def checkout():
    """
    Settle the session cart.

      201  settled (or settled with a stock warning)
      400  empty cart / no operator / cancelled
      409  insufficient stock (all shortfalls listed)
      503  order could not be saved
    """
    lines   = cart_lines()
    attempt = SettlementAttempt(order_id=checkout_token() if lines else None)
    result  = build_workflow().settle_order(lines, attempt)

    if isinstance(result, Rejected):
        if isinstance(result.reason, InsufficientStock):
            status = 409
        elif isinstance(result.reason, InventoryUnavailable):
            status = 503
        else:
            status = 400
        return jsonify(result.to_dict()), status

    if isinstance(result, Failed):
        return jsonify(result.to_dict()), 503

    clear_cart()
    if isinstance(result, SettledWithWarning):
        current_app.logger.warning(
            f"Order {result.code} settled but stock not updated for books {list(result.failed_adjustments)}"
        )
    return jsonify(result.to_dict()), 201
