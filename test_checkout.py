"""
test_checkout.py — Cart and checkout through the HTTP API.
Run: pytest test_checkout.py -v
"""
import re
from datetime import datetime
from decimal import Decimal

import pytest
from sqlalchemy import false
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session

from kasir import create_app, db
from kasir.auth.models import User, RoleEnum
from kasir.books.models import Book, BookStockMovement
from kasir.catalog.models import Ingredient, MenuItem, RecipeVariant
from kasir.orders.codes import generate_order_code
from kasir.orders.models import Order, OrderLine, OrderSequence
from kasir.stores import DuplicateOrder, OrderDraft, OrderLineDraft, SqlOrderStore
from kasir.catalog.pricing import ItemKind


@pytest.fixture
def app():
    app = create_app('testing')
    with app.app_context():
        db.create_all()

        cashier = User(username='kasir1', name='Sari Kasir', role=RoleEnum.cashier)
        cashier.set_password('kasir123')
        db.session.add(cashier)

        gayo = Ingredient(name='Beans Gayo', purchase_price=Decimal('120000'), pack_size_grams=250)
        db.session.add(gayo)
        db.session.flush()

        brew = MenuItem(name='Manual Brew', fixed_cost=Decimal('1600'),
                        profit_margin=Decimal('0.5'), rounding_unit=Decimal('500'))
        brew.variants = [RecipeVariant(name='Gayo', ingredient_id=gayo.id,
                                       grams_used=Decimal('15'), position=0)]
        tea = MenuItem(name='Es Teh', fixed_cost=Decimal('1600'),
                       profit_margin=Decimal('0.5'), rounding_unit=Decimal('500'))
        book = Book(title='Laskar Pelangi', author='Andrea Hirata',
                    purchase_price=Decimal('20000'), selling_price=Decimal('35000'), stock_quantity=2)
        db.session.add_all([brew, tea, book])
        db.session.commit()

        yield app

        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


def ids():
    brew = MenuItem.query.filter_by(name='Manual Brew').first()
    return {
        'brew':  brew.id,
        'gayo':  brew.variants[0].id,
        'tea':   MenuItem.query.filter_by(name='Es Teh').first().id,
        'book':  Book.query.first().id,
    }


def add(client, kind, item_id, variant_id=None):
    return client.post('/orders/cart/add', json={'kind': kind, 'item_id': item_id, 'variant_id': variant_id})


def login(client):
    return client.post('/auth/login', json={'username': 'kasir1', 'password': 'kasir123'})


# ── Cart ──────────────────────────────────────────────────────────

def test_add_to_cart_resolves_and_freezes_price(client):
    i = ids()
    resp = add(client, 'menu', i['tea'])
    assert resp.status_code == 200
    line = resp.get_json()['lines'][0]
    assert line['key'] == f"menu-{i['tea']}-base"
    assert Decimal(line['unit_price']) == Decimal('2500')
    assert Decimal(line['unit_cost']) == Decimal('1600')


def test_variant_price_includes_ingredient_cost(client):
    i = ids()
    data = add(client, 'menu', i['brew'], i['gayo']).get_json()
    line = data['lines'][0]
    # 1600 + 480/g × 15 g = 8800; × 1.5 = 13200 → 13500
    assert line['name'] == 'Manual Brew (Gayo)'
    assert Decimal(line['unit_cost']) == Decimal('8800')
    assert Decimal(line['unit_price']) == Decimal('13500')


def test_adding_same_line_twice_bumps_quantity(client):
    i = ids()
    add(client, 'book', i['book'])
    data = add(client, 'book', i['book']).get_json()
    assert len(data['lines']) == 1
    assert data['lines'][0]['quantity'] == 2
    assert data['item_count'] == 2
    assert Decimal(data['total_amount']) == Decimal('70000')


def test_menu_item_with_variants_needs_a_variant(client):
    resp = add(client, 'menu', ids()['brew'])
    assert resp.status_code == 400


def test_unknown_item_is_404(client):
    assert add(client, 'book', 999).status_code == 404


def test_bad_kind_is_400(client):
    assert add(client, 'gadget', 1).status_code == 400


def test_out_of_stock_book_cannot_be_added(client):
    book = Book.query.first()
    book.stock_quantity = 0
    db.session.commit()
    assert add(client, 'book', book.id).status_code == 409


def test_remove_and_clear(client):
    i = ids()
    add(client, 'book', i['book'])
    add(client, 'book', i['book'])
    add(client, 'menu', i['tea'])

    data = client.post('/orders/cart/remove', json={'key': f"book-{i['book']}"}).get_json()
    assert {l['key']: l['quantity'] for l in data['lines']}[f"book-{i['book']}"] == 1

    data = client.post('/orders/cart/remove', json={'key': f"menu-{i['tea']}-base", 'all': True}).get_json()
    assert [l['key'] for l in data['lines']] == [f"book-{i['book']}"]

    data = client.post('/orders/cart/clear').get_json()
    assert data['lines'] == []


def test_unpriceable_item_is_422(client):
    tea = MenuItem.query.filter_by(name='Es Teh').first()
    tea.rounding_unit = Decimal('0')
    db.session.commit()
    assert add(client, 'menu', tea.id).status_code == 422


# ── Checkout ──────────────────────────────────────────────────────

def test_checkout_persists_order_and_decrements_stock(client):
    i = ids()
    login(client)
    add(client, 'menu', i['brew'], i['gayo'])
    add(client, 'menu', i['brew'], i['gayo'])
    add(client, 'book', i['book'])

    resp = client.post('/orders/checkout')
    assert resp.status_code == 201
    data = resp.get_json()
    assert data['status'] == 'settled'
    assert re.match(r'^TRX-\d{8}-0001$', data['code'])
    assert Decimal(data['total_amount']) == Decimal('62000')
    assert Decimal(data['total_profit']) == Decimal('24400')

    order = db.session.get(Order, data['order_id'])
    assert order.operator.username == 'kasir1'
    assert sorted((l.kind, l.quantity) for l in order.lines) == [('book', 1), ('menu', 2)]
    assert sum(Decimal(str(l.line_total)) for l in order.lines) == Decimal('62000')

    book = db.session.get(Book, i['book'])
    assert book.stock_quantity == 1
    movement = BookStockMovement.query.filter_by(order_id=order.id).one()
    assert (movement.movement_type, movement.quantity, movement.old_stock, movement.new_stock) == ('sale', -1, 2, 1)

    # cart is emptied after a sale
    assert client.get('/orders/cart').get_json()['lines'] == []


def test_order_codes_increase_within_a_day(client):
    i = ids()
    codes = []
    for _ in range(3):
        add(client, 'menu', i['tea'])
        codes.append(client.post('/orders/checkout').get_json()['code'])
    assert [c[-4:] for c in codes] == ['0001', '0002', '0003']
    assert OrderSequence.query.one().last_seq == 3


def test_catalog_edit_after_add_does_not_change_cart_price(client):
    i = ids()
    add(client, 'menu', i['tea'])
    tea = db.session.get(MenuItem, i['tea'])
    tea.fixed_cost = Decimal('5000')
    db.session.commit()

    data = client.post('/orders/checkout').get_json()
    line = db.session.get(Order, data['order_id']).lines[0]
    assert Decimal(str(line.unit_price)) == Decimal('2500')


def test_empty_cart_checkout_is_400(client):
    resp = client.post('/orders/checkout')
    assert resp.status_code == 400
    assert resp.get_json()['error']['code'] == 'empty_cart'
    assert Order.query.count() == 0


def test_insufficient_stock_is_409_and_nothing_written(client):
    i = ids()
    for _ in range(3):
        add(client, 'book', i['book'])

    resp = client.post('/orders/checkout')
    assert resp.status_code == 409
    error = resp.get_json()['error']
    assert error['shortfalls'] == [{
        'item_id': i['book'], 'item_name': 'Laskar Pelangi - Andrea Hirata',
        'requested': 3, 'available': 2,
    }]
    assert Order.query.count() == 0
    assert db.session.get(Book, i['book']).stock_quantity == 2
    # cart is kept so the cashier can fix it
    assert client.get('/orders/cart').get_json()['item_count'] == 3


def test_operator_required_when_configured(app, client):
    app.config['REQUIRE_OPERATOR'] = True
    add(client, 'menu', ids()['tea'])
    resp = client.post('/orders/checkout')
    assert resp.status_code == 400
    assert resp.get_json()['error']['code'] == 'operator_required'


def test_failure_while_saving_order_writes_nothing(client, monkeypatch):
    i = ids()
    add(client, 'menu', i['tea'])
    add(client, 'book', i['book'])

    def commit_fails(self):
        self.flush()   # order + lines reach the database first
        raise OperationalError('COMMIT', {}, Exception('connection reset'))

    monkeypatch.setattr(Session, 'commit', commit_fails)
    resp = client.post('/orders/checkout')
    monkeypatch.undo()

    assert resp.status_code == 503
    assert resp.get_json()['error']['code'] == 'persistence_failed'
    assert Order.query.count() == 0
    assert OrderLine.query.count() == 0
    assert db.session.get(Book, i['book']).stock_quantity == 2
    assert BookStockMovement.query.count() == 0


def test_resubmitted_checkout_is_replayed(client):
    i = ids()
    add(client, 'book', i['book'])
    with client.session_transaction() as sess:
        saved_cart = dict(sess['cart'])
    # first attempt allocates the token
    first = client.post('/orders/checkout').get_json()

    # response "lost": the same cart and token are submitted again
    with client.session_transaction() as sess:
        sess['cart'] = saved_cart
        sess['cart_token'] = first['order_id']
    resp = client.post('/orders/checkout')

    assert resp.status_code == 201
    second = resp.get_json()
    assert second['replayed'] is True
    assert second['code'] == first['code']
    assert Order.query.count() == 1
    assert db.session.get(Book, i['book']).stock_quantity == 1


def test_replay_after_selling_the_last_copies(client):
    i = ids()
    add(client, 'book', i['book'])
    add(client, 'book', i['book'])
    with client.session_transaction() as sess:
        saved_cart = dict(sess['cart'])
    first = client.post('/orders/checkout').get_json()
    assert db.session.get(Book, i['book']).stock_quantity == 0

    with client.session_transaction() as sess:
        sess['cart'] = saved_cart
        sess['cart_token'] = first['order_id']
    resp = client.post('/orders/checkout')

    assert resp.status_code == 201
    second = resp.get_json()
    assert second['replayed'] is True
    assert second['code'] == first['code']
    assert Order.query.count() == 1
    assert db.session.get(Book, i['book']).stock_quantity == 0

def test_order_store_reports_duplicate_id(app):
    store = SqlOrderStore()
    draft = OrderDraft(
        id='fixed-id', operator_id=None,
        total_amount=Decimal('2500'), total_profit=Decimal('900'),
        lines=[OrderLineDraft(ItemKind.PREPARED_BEVERAGE, 1, None, 'Es Teh', 1,
                              Decimal('2500'), Decimal('1600'), Decimal('2500'))],
    )
    store.create_order(draft)
    with pytest.raises(DuplicateOrder):
        store.create_order(draft)
    assert Order.query.count() == 1


# ── Order codes ───────────────────────────────────────────────────

class LateSequenceRow:
    """Session whose first sequence lookup misses a row inserted concurrently."""

    def __init__(self, session):
        self._session = session
        self._looked = False

    def query(self, *entities):
        query = self._session.query(*entities)
        if not self._looked:
            self._looked = True
            return query.filter(false())
        return query

    def __getattr__(self, name):
        return getattr(self._session, name)


def test_first_code_of_the_day_survives_a_concurrent_insert(app):
    day = datetime.now().strftime('%Y%m%d')
    db.session.add(OrderSequence(day=day, last_seq=1))
    db.session.commit()
    db.session.expunge_all()

    code = generate_order_code(LateSequenceRow(db.session), 'TRX')

    assert code == f'TRX-{day}-0002'
    db.session.commit()
    assert db.session.get(OrderSequence, day).last_seq == 2
