"""
kasir/history/routes.py
-----------------------
Income grouped by day, expenses, and the running balance.
"""
from collections import OrderedDict
from datetime import date
from decimal import Decimal, InvalidOperation

from flask import request, jsonify, session, current_app, abort
from sqlalchemy import func

from kasir import db
from kasir.history import history
from kasir.history.models import Expense
from kasir.orders.models import Order
from kasir.auth.decorators import login_required


def _get_date_range():
    """Optional ?start_date=&end_date= (ISO dates), both inclusive."""
    start_str = request.args.get('start_date')
    end_str   = request.args.get('end_date')
    try:
        start_date = date.fromisoformat(start_str) if start_str else None
        end_date   = date.fromisoformat(end_str) if end_str else None
    except ValueError:
        abort(400)
    return start_date, end_date


def _filter_dates(query, column, start_date, end_date):
    if start_date:
        query = query.filter(func.date(column) >= start_date.isoformat())
    if end_date:
        query = query.filter(func.date(column) <= end_date.isoformat())
    return query


# ── INCOME ────────────────────────────────────────────────────────

@history.route('/orders')
@login_required
def orders():
    """
    Orders newest first, grouped by calendar day with the day's
    total_amount and total_profit.
    """
    start_date, end_date = _get_date_range()
    query = _filter_dates(Order.query, Order.created_at, start_date, end_date)
    rows = query.order_by(Order.created_at.desc()).all()

    days = OrderedDict()
    for order in rows:
        day = order.created_at.date().isoformat()
        group = days.setdefault(day, {
            'date': day, 'total_amount': Decimal('0'), 'total_profit': Decimal('0'), 'orders': [],
        })
        group['total_amount'] += Decimal(str(order.total_amount))
        group['total_profit'] += Decimal(str(order.total_profit))
        group['orders'].append(order.to_dict())

    return jsonify([
        dict(group, total_amount=str(group['total_amount']), total_profit=str(group['total_profit']))
        for group in days.values()
    ])


@history.route('/orders/<order_id>')
@login_required
def order_detail(order_id):
    order = db.session.get(Order, order_id)
    if order is None:
        order = Order.query.filter_by(code=order_id).first()
    if order is None:
        abort(404)
    return jsonify(order.to_dict())


# ── EXPENSES ──────────────────────────────────────────────────────

@history.route('/expenses')
@login_required
def expenses():
    start_date, end_date = _get_date_range()
    query = _filter_dates(Expense.query, Expense.created_at, start_date, end_date)
    rows = query.order_by(Expense.created_at.desc()).all()
    return jsonify([e.to_dict() for e in rows])


@history.route('/expenses', methods=['POST'])
@login_required
def create_expense():
    data = request.get_json(silent=True) or request.form.to_dict()
    errors = {}

    name = str(data.get('name') or '').strip()
    if not name:
        errors['name'] = 'Expense name is required.'
    elif len(name) > 200:
        errors['name'] = 'Expense name must be 200 characters or fewer.'

    amount = None
    try:
        amount = Decimal(str(data.get('amount') or '').strip())
        if not amount.is_finite() or amount <= 0:
            errors['amount'] = 'Amount must be greater than zero.'
    except InvalidOperation:
        errors['amount'] = 'Amount must be a valid number.'

    if errors:
        return jsonify({'errors': errors}), 400

    expense = Expense(
        name=name,
        amount=amount,
        notes=str(data.get('notes') or '').strip()[:255] or None,
        created_by=session.get('user_id'),
    )
    db.session.add(expense)
    db.session.commit()
    current_app.logger.info(f"Expense recorded: {expense.name} Rp{expense.amount}")
    return jsonify(expense.to_dict()), 201


# ── SUMMARY ───────────────────────────────────────────────────────

@history.route('/summary')
@login_required
def summary():
    """Total income, total expenses and the remaining balance."""
    income = db.session.query(func.sum(Order.total_amount)).scalar() or Decimal('0')
    profit = db.session.query(func.sum(Order.total_profit)).scalar() or Decimal('0')
    spent  = db.session.query(func.sum(Expense.amount)).scalar() or Decimal('0')
    income, profit, spent = (Decimal(str(v)) for v in (income, profit, spent))
    return jsonify({
        'total_income':   str(income),
        'total_profit':   str(profit),
        'total_expenses': str(spent),
        'balance':        str(income - spent),
        'order_count':    Order.query.count(),
    })
