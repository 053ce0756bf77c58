from datetime import datetime
from decimal import Decimal
from flask import current_app, has_app_context
from kasir import db
from kasir.catalog.pricing import ItemKind


DEFAULT_LOW_STOCK_THRESHOLD = 5


def low_stock_threshold() -> int:
    if has_app_context():
        return current_app.config.get('LOW_STOCK_THRESHOLD', DEFAULT_LOW_STOCK_THRESHOLD)
    return DEFAULT_LOW_STOCK_THRESHOLD


class Book(db.Model):
    """A stocked retail good: prices are stored, stock is tracked."""
    __tablename__ = 'books'

    id             = db.Column(db.Integer, primary_key=True)
    title          = db.Column(db.String(255), nullable=False, index=True)
    author         = db.Column(db.String(200), nullable=True)
    publisher      = db.Column(db.String(200), nullable=True)
    isbn           = db.Column(db.String(20), nullable=True, index=True)
    category       = db.Column(db.String(100), nullable=True, index=True)
    description    = db.Column(db.Text, nullable=True)
    purchase_price = db.Column(db.Numeric(12, 2), nullable=False)   # HPP
    selling_price  = db.Column(db.Numeric(12, 2), nullable=False)
    stock_quantity = db.Column(db.Integer, nullable=False, default=0)
    created_by     = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=True)
    created_at     = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
    updated_at     = db.Column(db.DateTime, nullable=False, default=datetime.utcnow,
                               onupdate=datetime.utcnow)

    __table_args__ = (
        db.CheckConstraint('stock_quantity >= 0', name='check_book_stock_non_negative'),
        db.CheckConstraint('purchase_price >= 0', name='check_book_purchase_non_negative'),
        db.CheckConstraint('selling_price >= 0', name='check_book_selling_non_negative'),
    )

    kind = ItemKind.STOCKED_GOOD

    @property
    def name(self) -> str:
        """Display name used on the cashier screen and in order lines."""
        return f'{self.title} - {self.author}' if self.author else self.title

    @property
    def unit_profit(self) -> Decimal:
        return Decimal(str(self.selling_price)) - Decimal(str(self.purchase_price))

    @property
    def is_low_stock(self) -> bool:
        return self.stock_quantity <= low_stock_threshold()

    def to_dict(self) -> dict:
        return {
            'id':             self.id,
            'kind':           self.kind.value,
            'title':          self.title,
            'author':         self.author,
            'publisher':      self.publisher,
            'isbn':           self.isbn,
            'category':       self.category,
            'description':    self.description,
            'purchase_price': str(self.purchase_price),
            'selling_price':  str(self.selling_price),
            'unit_profit':    str(self.unit_profit),
            'stock_quantity': self.stock_quantity,
            'is_low_stock':   self.is_low_stock,
        }

    def __repr__(self):
        return f"<Book {self.title!r} stock={self.stock_quantity}>"


class BookStockMovement(db.Model):
    """
    Audit trail for stock changes of a book.
    movement_type: 'in' (restock), 'sale' (checkout decrement), 'adjustment'.
    """
    __tablename__ = 'book_stock_movements'

    id            = db.Column(db.Integer, primary_key=True)
    book_id       = db.Column(db.Integer, db.ForeignKey('books.id', ondelete='CASCADE'),
                              nullable=False, index=True)
    movement_type = db.Column(db.String(20), nullable=False)
    quantity      = db.Column(db.Integer, nullable=False)   # signed delta
    old_stock     = db.Column(db.Integer, nullable=False)
    new_stock     = db.Column(db.Integer, nullable=False)
    order_id      = db.Column(db.String(32), nullable=True, index=True)
    notes         = db.Column(db.String(255), nullable=True)
    created_by    = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=True)
    created_at    = db.Column(db.DateTime, nullable=False, default=datetime.utcnow, index=True)

    book = db.relationship('Book', backref=db.backref(
        'movements', lazy='dynamic', cascade='all, delete-orphan', passive_deletes=True))

    def to_dict(self) -> dict:
        return {
            'id':            self.id,
            'book_id':       self.book_id,
            'movement_type': self.movement_type,
            'quantity':      self.quantity,
            'old_stock':     self.old_stock,
            'new_stock':     self.new_stock,
            'order_id':      self.order_id,
            'notes':         self.notes,
            'created_by':    self.created_by,
            'created_at':    self.created_at.isoformat(),
        }

    def __repr__(self):
        return f"<StockMovement Book:{self.book_id} {self.old_stock}->{self.new_stock} ({self.movement_type})>"
