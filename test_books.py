"""
test_books.py — Book inventory: CRUD, restocking, movements and summary.
Run: pytest test_books.py -v
"""
from decimal import Decimal

import pytest
from sqlalchemy import update

from kasir import create_app, db
from kasir.auth.models import User, RoleEnum
from kasir.books.models import Book, BookStockMovement
from kasir.books.validators import validate_book_form, validate_stock_addition


@pytest.fixture
def app():
    app = create_app('testing')
    with app.app_context():
        db.create_all()
        admin = User(username='admin', name='Admin User', role=RoleEnum.admin)
        admin.set_password('admin123')
        db.session.add(admin)
        db.session.commit()

        yield app

        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    client = app.test_client()
    client.post('/auth/login', json={'username': 'admin', 'password': 'admin123'})
    return client


def new_book(client, **overrides):
    data = {
        'title': 'Laskar Pelangi', 'author': 'Andrea Hirata', 'category': 'Novel',
        'purchase_price': '20000', 'selling_price': '35000', 'stock_quantity': '5',
    }
    data.update(overrides)
    return client.post('/books/', json=data)


# ── Validators ────────────────────────────────────────────────────

def test_book_validator_requires_title_and_prices():
    errors = validate_book_form({'stock_quantity': '-1'})
    assert set(errors) == {'title', 'purchase_price', 'selling_price', 'stock_quantity'}


def test_stock_addition_must_be_positive():
    assert 'quantity' in validate_stock_addition({'quantity': '0'})
    assert 'quantity' in validate_stock_addition({'quantity': 'lots'})
    assert validate_stock_addition({'quantity': '3'}) == {}


def test_book_prices_are_limited_to_cents():
    data = {'title': 'Bumi Manusia', 'purchase_price': '20000.005', 'selling_price': '35000.50'}
    assert set(validate_book_form(data)) == {'purchase_price'}
    data['purchase_price'] = '20000.500'
    assert validate_book_form(data) == {}


# ── CRUD ──────────────────────────────────────────────────────────

def test_create_book_records_initial_stock(client):
    resp = new_book(client)
    assert resp.status_code == 201
    data = resp.get_json()
    assert data['unit_profit'] == '15000.00'
    assert data['kind'] == 'book'

    movement = BookStockMovement.query.one()
    assert (movement.movement_type, movement.quantity, movement.new_stock) == ('in', 5, 5)


def test_create_book_with_negative_price_is_rejected(client):
    resp = new_book(client, selling_price='-1')
    assert resp.status_code == 400
    assert 'selling_price' in resp.get_json()['errors']
    assert Book.query.count() == 0


def test_edit_stock_records_adjustment(client):
    book_id = new_book(client).get_json()['id']
    resp = client.put(f'/books/{book_id}', json={
        'title': 'Laskar Pelangi', 'purchase_price': '20000', 'selling_price': '40000', 'stock_quantity': '2',
    })
    assert resp.status_code == 200
    assert resp.get_json()['selling_price'] == '40000.00'

    adjustment = BookStockMovement.query.filter_by(movement_type='adjustment').one()
    assert (adjustment.quantity, adjustment.old_stock, adjustment.new_stock) == (-3, 5, 2)


def test_edit_applies_stock_change_on_top_of_a_concurrent_sale(client):
    book_id = new_book(client).get_json()['id']
    book = db.session.get(Book, book_id)
    assert book.stock_quantity == 5

    # two copies sold after the edit form was loaded
    db.session.execute(
        update(Book).where(Book.id == book_id).values(stock_quantity=3)
        .execution_options(synchronize_session=False)
    )
    resp = client.put(f'/books/{book_id}', json={
        'title': 'Laskar Pelangi', 'purchase_price': '20000', 'selling_price': '35000', 'stock_quantity': '4',
    })

    assert resp.status_code == 200
    assert resp.get_json()['stock_quantity'] == 2
    adjustment = BookStockMovement.query.filter_by(movement_type='adjustment').one()
    assert (adjustment.quantity, adjustment.old_stock, adjustment.new_stock) == (-1, 3, 2)


def test_edit_refuses_stock_below_zero_after_a_concurrent_sale(client):
    book_id = new_book(client).get_json()['id']
    book = db.session.get(Book, book_id)
    assert book.stock_quantity == 5

    db.session.execute(
        update(Book).where(Book.id == book_id).values(stock_quantity=0)
        .execution_options(synchronize_session=False)
    )
    resp = client.put(f'/books/{book_id}', json={
        'title': 'Judul Baru', 'purchase_price': '20000', 'selling_price': '35000', 'stock_quantity': '1',
    })

    assert resp.status_code == 409
    assert 'stock_quantity' in resp.get_json()['errors']
    assert BookStockMovement.query.filter_by(movement_type='adjustment').count() == 0


def test_delete_book(client):
    book_id = new_book(client).get_json()['id']
    assert client.delete(f'/books/{book_id}').status_code == 200
    assert client.get(f'/books/{book_id}').status_code == 404


def test_books_require_login(app):
    assert app.test_client().get('/books/').status_code == 401


# ── Stock ─────────────────────────────────────────────────────────

def test_add_stock(client):
    book_id = new_book(client).get_json()['id']
    resp = client.post(f'/books/{book_id}/stock', json={'quantity': '4', 'notes': 'Supplier delivery'})
    assert resp.get_json()['stock_quantity'] == 9

    movements = client.get(f'/books/{book_id}/movements').get_json()
    assert movements[0]['notes'] == 'Supplier delivery'
    assert (movements[0]['old_stock'], movements[0]['new_stock']) == (5, 9)


def test_add_zero_stock_is_rejected(client):
    book_id = new_book(client).get_json()['id']
    assert client.post(f'/books/{book_id}/stock', json={'quantity': '0'}).status_code == 400
    book = db.session.get(Book, book_id)
    assert book.stock_quantity == 5


# ── Listing ───────────────────────────────────────────────────────

def test_search_filter_and_summary(client):
    new_book(client)
    new_book(client, title='Bumi Manusia', author='Pramoedya Ananta Toer', category='Sejarah',
             purchase_price='45000', selling_price='75000', stock_quantity='10')
    new_book(client, title='Filosofi Kopi', author='Dee Lestari', stock_quantity='1')

    data = client.get('/books/?q=pramoedya').get_json()
    assert [b['title'] for b in data['books']] == ['Bumi Manusia']

    data = client.get('/books/?category=Novel&sort=title').get_json()
    assert [b['title'] for b in data['books']] == ['Filosofi Kopi', 'Laskar Pelangi']
    assert data['categories'] == ['Novel', 'Sejarah']

    summary = data['summary']
    assert summary['total_titles'] == 3
    assert summary['total_stock'] == 16
    # 5×35000 + 10×75000 + 1×35000
    assert Decimal(summary['total_value']) == Decimal('960000')
    # threshold 5: Laskar Pelangi (5) and Filosofi Kopi (1)
    assert summary['low_stock_count'] == 2
