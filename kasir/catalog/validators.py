"""
kasir/catalog/validators.py
---------------------------
Validation for ingredient, menu item and recipe variant data.
Each validate_* returns {field_name: error_message}, empty if all valid.
"""
from decimal import Decimal, InvalidOperation


def _raw(form_data: dict, key: str, default: str = '') -> str:
    value = form_data.get(key, default)
    return default if value is None else str(value).strip()


def _decimal(form_data: dict, key: str):
    try:
        value = Decimal(_raw(form_data, key))
    except InvalidOperation:
        return None
    return value if value.is_finite() else None


def _too_precise(value: Decimal, places: int) -> bool:
    """More decimal places than the column stores (trailing zeros don't count)."""
    return value.normalize().as_tuple().exponent < -places


def _validate_name(form_data: dict, errors: dict, label: str) -> None:
    name = _raw(form_data, 'name')
    if not name:
        errors['name'] = f'{label} name is required.'
    elif len(name) > 120:
        errors['name'] = f'{label} name must be 120 characters or fewer.'


# ── Ingredient ────────────────────────────────────────────────────

def validate_ingredient_form(form_data: dict) -> dict:
    errors = {}
    _validate_name(form_data, errors, 'Ingredient')

    price = _decimal(form_data, 'purchase_price')
    if price is None:
        errors['purchase_price'] = 'Purchase price must be a valid number.'
    elif price < 0:
        errors['purchase_price'] = 'Purchase price cannot be negative.'
    elif _too_precise(price, 2):
        errors['purchase_price'] = 'Purchase price allows at most 2 decimal places.'

    try:
        if int(_raw(form_data, 'pack_size_grams')) <= 0:
            errors['pack_size_grams'] = 'Pack size must be greater than zero.'
    except ValueError:
        errors['pack_size_grams'] = 'Pack size must be a whole number of grams.'
    return errors


def parse_ingredient_form(form_data: dict) -> dict:
    return {
        'name':            _raw(form_data, 'name'),
        'purchase_price':  Decimal(_raw(form_data, 'purchase_price')),
        'pack_size_grams': int(_raw(form_data, 'pack_size_grams')),
    }


# ── Menu item ─────────────────────────────────────────────────────

def validate_menu_item_form(form_data: dict) -> dict:
    """
    fixed_cost must be >= 0 and rounding_unit > 0.
    profit_margin may be negative (a loss leader is a valid choice).
    """
    errors = {}
    _validate_name(form_data, errors, 'Menu')

    fixed_cost = _decimal(form_data, 'fixed_cost')
    if fixed_cost is None:
        errors['fixed_cost'] = 'Fixed cost must be a valid number.'
    elif fixed_cost < 0:
        errors['fixed_cost'] = 'Fixed cost cannot be negative.'
    elif _too_precise(fixed_cost, 2):
        errors['fixed_cost'] = 'Fixed cost allows at most 2 decimal places.'

    margin = _decimal(form_data, 'profit_margin')
    if margin is None:
        errors['profit_margin'] = 'Profit margin must be a number (0.5 for 50%).'
    elif _too_precise(margin, 4):
        errors['profit_margin'] = 'Profit margin allows at most 4 decimal places.'

    rounding_unit = _decimal(form_data, 'rounding_unit')
    if rounding_unit is None:
        errors['rounding_unit'] = 'Rounding unit must be a valid number.'
    elif rounding_unit <= 0:
        errors['rounding_unit'] = 'Rounding unit must be greater than zero.'
    elif _too_precise(rounding_unit, 2):
        errors['rounding_unit'] = 'Rounding unit allows at most 2 decimal places.'
    return errors


def parse_menu_item_form(form_data: dict) -> dict:
    is_active = form_data.get('is_active', True)
    return {
        'name':          _raw(form_data, 'name'),
        'fixed_cost':    Decimal(_raw(form_data, 'fixed_cost')),
        'profit_margin': Decimal(_raw(form_data, 'profit_margin')),
        'rounding_unit': Decimal(_raw(form_data, 'rounding_unit')),
        'is_active':     is_active in (True, '1', 'true', 'on', 'yes'),
    }


# ── Recipe variant ────────────────────────────────────────────────

def validate_variant_form(form_data: dict) -> dict:
    """
    A variant either links an ingredient (ingredient_id + grams_used)
    or carries a directly entered ingredient_cost.
    """
    errors = {}
    _validate_name(form_data, errors, 'Variant')

    if _raw(form_data, 'ingredient_id'):
        try:
            int(_raw(form_data, 'ingredient_id'))
        except ValueError:
            errors['ingredient_id'] = 'Ingredient id must be a whole number.'
        grams = _decimal(form_data, 'grams_used')
        if grams is None or grams <= 0:
            errors['grams_used'] = 'Grams used must be greater than zero.'
        elif _too_precise(grams, 2):
            errors['grams_used'] = 'Grams used allows at most 2 decimal places.'
    elif _raw(form_data, 'ingredient_cost'):
        cost = _decimal(form_data, 'ingredient_cost')
        if cost is None or cost < 0:
            errors['ingredient_cost'] = 'Ingredient cost must be a non-negative number.'
        elif _too_precise(cost, 2):
            errors['ingredient_cost'] = 'Ingredient cost allows at most 2 decimal places.'

    if _raw(form_data, 'position'):
        try:
            int(_raw(form_data, 'position'))
        except ValueError:
            errors['position'] = 'Position must be a whole number.'
    return errors


def parse_variant_form(form_data: dict) -> dict:
    ingredient_id = _raw(form_data, 'ingredient_id')
    cost = _raw(form_data, 'ingredient_cost')
    position = _raw(form_data, 'position')
    return {
        'name':            _raw(form_data, 'name'),
        'ingredient_id':   int(ingredient_id) if ingredient_id else None,
        'grams_used':      Decimal(_raw(form_data, 'grams_used')) if ingredient_id else None,
        'ingredient_cost': Decimal(cost) if (cost and not ingredient_id) else None,
        'position':        int(position) if position else None,
    }
