from datetime import datetime

from flask import request, jsonify, session, current_app, abort
from sqlalchemy import func, or_

from kasir import db
from kasir.books import books
from kasir.books.models import Book, BookStockMovement, low_stock_threshold
from kasir.books.validators import (
    validate_book_form, parse_book_form, validate_stock_addition,
)
from kasir.auth.decorators import login_required, admin_required


SORT_OPTIONS = {
    'created_at':     Book.created_at.desc(),
    'title':          Book.title.asc(),
    'stock_quantity': Book.stock_quantity.asc(),
}


def _payload() -> dict:
    return request.get_json(silent=True) or request.form.to_dict()


def _get_book_or_404(book_id) -> Book:
    book = db.session.get(Book, book_id)
    if book is None:
        abort(404)
    return book


def _shift_stock(book_id: int, delta: int):
    """
    Add `delta` to the stored stock in one conditional UPDATE.
    Returns the new stock, or None when the result would be negative.
    """
    updated = (
        db.session.query(Book)
        .filter(Book.id == book_id, Book.stock_quantity + delta >= 0)
        .update(
            {
                Book.stock_quantity: Book.stock_quantity + delta,
                Book.updated_at:     datetime.utcnow(),
            },
            synchronize_session=False,
        )
    )
    if updated != 1:
        return None
    return db.session.query(Book.stock_quantity).filter(Book.id == book_id).scalar()


# ── LIST + SUMMARY ────────────────────────────────────────────────

@books.route('/')
@login_required
def index():
    """
    Books with search (title / author / ISBN), category filter and sort,
    plus inventory summary cards.
    """
    q        = request.args.get('q', '').strip()
    category = request.args.get('category', '').strip()
    sort_by  = request.args.get('sort', 'created_at')

    query = Book.query
    if q:
        like = f'%{q}%'
        query = query.filter(or_(Book.title.ilike(like), Book.author.ilike(like), Book.isbn.ilike(like)))
    if category:
        query = query.filter(Book.category == category)
    rows = query.order_by(SORT_OPTIONS.get(sort_by, SORT_OPTIONS['created_at'])).all()

    threshold = low_stock_threshold()
    total_stock, total_value = db.session.query(
        func.coalesce(func.sum(Book.stock_quantity), 0),
        func.coalesce(func.sum(Book.selling_price * Book.stock_quantity), 0),
    ).one()
    categories = [c for (c,) in db.session.query(Book.category)
                  .filter(Book.category.isnot(None)).distinct().order_by(Book.category)]

    return jsonify({
        'books': [b.to_dict() for b in rows],
        'categories': categories,
        'summary': {
            'total_titles':    Book.query.count(),
            'total_stock':     int(total_stock),
            'total_value':     str(total_value),
            'low_stock_count': Book.query.filter(Book.stock_quantity <= threshold).count(),
        },
    })


@books.route('/<int:book_id>')
@login_required
def detail(book_id):
    return jsonify(_get_book_or_404(book_id).to_dict())


# ── CREATE / EDIT / DELETE ────────────────────────────────────────

@books.route('/', methods=['POST'])
@admin_required
def create():
    data = _payload()
    errors = validate_book_form(data)
    if errors:
        return jsonify({'errors': errors}), 400

    fields = parse_book_form(data)
    book = Book(created_by=session.get('user_id'), **fields)
    db.session.add(book)
    db.session.flush()

    if book.stock_quantity > 0:
        db.session.add(BookStockMovement(
            book_id=book.id, movement_type='in', quantity=book.stock_quantity,
            old_stock=0, new_stock=book.stock_quantity,
            notes='Initial stock', created_by=session.get('user_id'),
        ))
    db.session.commit()
    current_app.logger.info(f"Book created: {book.title} (ID: {book.id})")
    return jsonify(book.to_dict()), 201


@books.route('/<int:book_id>', methods=['PUT'])
@admin_required
def edit(book_id):
    book = _get_book_or_404(book_id)
    data = _payload()
    errors = validate_book_form(data)
    if errors:
        return jsonify({'errors': errors}), 400

    fields = parse_book_form(data)
    delta = fields.pop('stock_quantity') - book.stock_quantity
    for key, value in fields.items():
        setattr(book, key, value)

    if delta:
        new_stock = _shift_stock(book.id, delta)
        if new_stock is None:
            db.session.rollback()
            return jsonify({'errors': {
                'stock_quantity': 'Stock changed while editing and would drop below zero. Reload and try again.'
            }}), 409
        db.session.add(BookStockMovement(
            book_id=book.id, movement_type='adjustment', quantity=delta,
            old_stock=new_stock - delta, new_stock=new_stock,
            notes='Manual edit', created_by=session.get('user_id'),
        ))
    db.session.commit()
    current_app.logger.info(f"Book updated: {book.title} (ID: {book.id})")
    return jsonify(book.to_dict())


@books.route('/<int:book_id>', methods=['DELETE'])
@admin_required
def delete(book_id):
    book = _get_book_or_404(book_id)
    title = book.title
    db.session.delete(book)
    db.session.commit()
    current_app.logger.info(f"Book deleted: {title} (ID: {book_id})")
    return jsonify({'message': f'"{title}" deleted.'})


# ── STOCK ─────────────────────────────────────────────────────────

@books.route('/<int:book_id>/stock', methods=['POST'])
@admin_required
def add_stock(book_id):
    """Restock: {"quantity": int > 0, "notes": str}"""
    book = _get_book_or_404(book_id)
    data = _payload()
    errors = validate_stock_addition(data)
    if errors:
        return jsonify({'errors': errors}), 400

    quantity  = int(str(data['quantity']).strip())
    new_stock = _shift_stock(book.id, quantity)
    db.session.add(BookStockMovement(
        book_id=book.id, movement_type='in', quantity=quantity,
        old_stock=new_stock - quantity, new_stock=new_stock,
        notes=(str(data.get('notes') or '').strip() or 'Manual stock addition'),
        created_by=session.get('user_id'),
    ))
    db.session.commit()
    current_app.logger.info(f"Stock added: {book.title} {new_stock - quantity} -> {new_stock}")
    return jsonify(book.to_dict())


@books.route('/<int:book_id>/movements')
@login_required
def movements(book_id):
    book = _get_book_or_404(book_id)
    rows = book.movements.order_by(BookStockMovement.created_at.desc(), BookStockMovement.id.desc()).all()
    return jsonify([m.to_dict() for m in rows])
