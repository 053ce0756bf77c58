from datetime import datetime
from kasir import db


class Expense(db.Model):
    """Money paid out of the till (supplies, utilities …)."""
    __tablename__ = 'expenses'

    id         = db.Column(db.Integer, primary_key=True)
    name       = db.Column(db.String(200), nullable=False)
    amount     = db.Column(db.Numeric(12, 2), nullable=False)
    notes      = db.Column(db.String(255), nullable=True)
    created_by = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=True)
    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow, index=True)

    __table_args__ = (
        db.CheckConstraint('amount > 0', name='check_expense_amount_positive'),
    )

    def to_dict(self) -> dict:
        return {
            'id':         self.id,
            'name':       self.name,
            'amount':     str(self.amount),
            'notes':      self.notes,
            'created_by': self.created_by,
            'created_at': self.created_at.isoformat(),
        }

    def __repr__(self):
        return f"<Expense {self.name!r} Rp{self.amount}>"
