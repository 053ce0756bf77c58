"""
kasir/books/validators.py
-------------------------
Pure-Python validation for book form data (JSON body or form fields).
Returns a dict of field -> error_message.
An empty dict means all fields are valid.
"""
from decimal import Decimal, InvalidOperation


def _raw(form_data: dict, key: str, default: str = '') -> str:
    value = form_data.get(key, default)
    return default if value is None else str(value).strip()


def _validate_money(form_data: dict, key: str, label: str, errors: dict) -> None:
    raw = _raw(form_data, key)
    if not raw:
        errors[key] = f'{label} is required.'
        return
    try:
        value = Decimal(raw)
    except InvalidOperation:
        errors[key] = f'{label} must be a valid number.'
        return
    if not value.is_finite() or value < 0:
        errors[key] = f'{label} cannot be negative.'
    elif value.normalize().as_tuple().exponent < -2:
        errors[key] = f'{label} allows at most 2 decimal places.'


def validate_book_form(form_data: dict) -> dict:
    """Validate raw data for create / edit book."""
    errors = {}

    # ── title ─────────────────────────────────────────────────────
    title = _raw(form_data, 'title')
    if not title:
        errors['title'] = 'Title is required.'
    elif len(title) > 255:
        errors['title'] = 'Title must be 255 characters or fewer.'

    isbn = _raw(form_data, 'isbn')
    if len(isbn) > 20:
        errors['isbn'] = 'ISBN must be 20 characters or fewer.'

    # ── prices ────────────────────────────────────────────────────
    _validate_money(form_data, 'purchase_price', 'Purchase price', errors)
    _validate_money(form_data, 'selling_price', 'Selling price', errors)

    # ── stock_quantity ────────────────────────────────────────────
    stock_raw = _raw(form_data, 'stock_quantity', '0') or '0'
    try:
        if int(stock_raw) < 0:
            errors['stock_quantity'] = 'Stock cannot be negative.'
    except ValueError:
        errors['stock_quantity'] = 'Stock must be a whole number.'

    return errors


def parse_book_form(form_data: dict) -> dict:
    """
    Convert validated raw values to correct Python types.
    Call only after validate_book_form returns no errors.
    """
    return {
        'title':          _raw(form_data, 'title'),
        'author':         _raw(form_data, 'author') or None,
        'publisher':      _raw(form_data, 'publisher') or None,
        'isbn':           _raw(form_data, 'isbn') or None,
        'category':       _raw(form_data, 'category') or None,
        'description':    _raw(form_data, 'description') or None,
        'purchase_price': Decimal(_raw(form_data, 'purchase_price')),
        'selling_price':  Decimal(_raw(form_data, 'selling_price')),
        'stock_quantity': int(_raw(form_data, 'stock_quantity', '0') or '0'),
    }


def validate_stock_addition(form_data: dict) -> dict:
    errors = {}
    raw = _raw(form_data, 'quantity')
    try:
        if int(raw) <= 0:
            errors['quantity'] = 'Quantity must be greater than zero.'
    except ValueError:
        errors['quantity'] = 'Quantity must be a whole number.'
    if len(_raw(form_data, 'notes')) > 255:
        errors['notes'] = 'Notes must be 255 characters or fewer.'
    return errors
