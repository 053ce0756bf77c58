from datetime import datetime
from decimal import Decimal
from kasir import db


class OrderSequence(db.Model):
    """
    One row per calendar day, holding the last-used order code sequence.

    COUNT(orders) is not safe under concurrent checkouts: two transactions
    can both read 15 and both hand out 0016. Locking this row with
    SELECT … FOR UPDATE serialises them, and the counter only advances
    when the order itself commits.
    """
    __tablename__ = 'order_sequences'

    day      = db.Column(db.String(8), primary_key=True)   # e.g. '20261019'
    last_seq = db.Column(db.Integer, nullable=False, default=0)

    def __repr__(self):
        return f"<OrderSequence day={self.day} last_seq={self.last_seq}>"


class Order(db.Model):
    """
    One settled checkout. Written once with all its lines, never edited.
    `id` is generated before the write so a retried checkout reuses it.
    """
    __tablename__ = 'orders'

    id           = db.Column(db.String(32), primary_key=True)
    code         = db.Column(db.String(32), unique=True, nullable=False, index=True)
    operator_id  = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=True)
    total_amount = db.Column(db.Numeric(14, 2), nullable=False)
    total_profit = db.Column(db.Numeric(14, 2), nullable=False)
    created_at   = db.Column(db.DateTime, nullable=False, default=datetime.utcnow, index=True)

    # ── Relationships ─────────────────────────────────────────────
    operator = db.relationship('User', lazy='select')
    lines    = db.relationship('OrderLine', backref='order', lazy='select',
                               order_by='OrderLine.id', cascade='all, delete-orphan')

    def to_dict(self, with_lines: bool = True) -> dict:
        data = {
            'id':           self.id,
            'code':         self.code,
            'operator_id':  self.operator_id,
            'total_amount': str(self.total_amount),
            'total_profit': str(self.total_profit),
            'created_at':   self.created_at.isoformat(),
        }
        if with_lines:
            data['lines'] = [line.to_dict() for line in self.lines]
        return data

    def __repr__(self):
        return f"<Order {self.code!r} Rp{self.total_amount}>"


class OrderLine(db.Model):
    """
    One line of an Order. Stores a snapshot of name, price and HPP as
    they were when the item went into the cart, so later catalog edits
    don't alter history.
    """
    __tablename__ = 'order_lines'

    id         = db.Column(db.Integer, primary_key=True)
    order_id   = db.Column(db.String(32), db.ForeignKey('orders.id'), nullable=False, index=True)
    kind       = db.Column(db.String(10), nullable=False)        # 'menu' | 'book'
    item_id    = db.Column(db.Integer, nullable=False)
    variant_id = db.Column(db.Integer, nullable=True)
    name       = db.Column(db.String(255), nullable=False)
    quantity   = db.Column(db.Integer, nullable=False)
    unit_price = db.Column(db.Numeric(12, 2), nullable=False)
    unit_cost  = db.Column(db.Numeric(12, 2), nullable=False)
    line_total = db.Column(db.Numeric(14, 2), nullable=False)   # quantity × unit_price

    __table_args__ = (
        db.CheckConstraint('quantity >= 1', name='check_order_line_quantity_positive'),
    )

    @property
    def line_profit(self) -> Decimal:
        return (Decimal(str(self.unit_price)) - Decimal(str(self.unit_cost))) * self.quantity

    def to_dict(self) -> dict:
        return {
            'kind':        self.kind,
            'item_id':     self.item_id,
            'variant_id':  self.variant_id,
            'name':        self.name,
            'quantity':    self.quantity,
            'unit_price':  str(self.unit_price),
            'unit_cost':   str(self.unit_cost),
            'line_total':  str(self.line_total),
            'line_profit': str(self.line_profit),
        }

    def __repr__(self):
        return f"<OrderLine order={self.order_id} {self.kind}:{self.item_id} qty={self.quantity}>"
