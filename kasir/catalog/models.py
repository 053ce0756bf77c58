from datetime import datetime
from decimal import Decimal
from typing import Optional
from kasir import db
from kasir.catalog.pricing import ItemKind, Q


class Ingredient(db.Model):
    """
    A raw ingredient bought in packs (e.g. 250 g of house-blend beans).
    Recipe variants derive their ingredient cost from the per-gram price.
    """
    __tablename__ = 'ingredients'

    id              = db.Column(db.Integer, primary_key=True)
    name            = db.Column(db.String(120), nullable=False, index=True)
    purchase_price  = db.Column(db.Numeric(12, 2), nullable=False)   # per pack
    pack_size_grams = db.Column(db.Integer, nullable=False)
    created_at      = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
    updated_at      = db.Column(db.DateTime, nullable=False, default=datetime.utcnow,
                                onupdate=datetime.utcnow)

    __table_args__ = (
        db.CheckConstraint('purchase_price >= 0', name='check_ingredient_price_non_negative'),
        db.CheckConstraint('pack_size_grams > 0', name='check_pack_size_positive'),
    )

    @property
    def cost_per_gram(self) -> Optional[Decimal]:
        if not self.pack_size_grams:
            return None
        return Decimal(str(self.purchase_price)) / Decimal(self.pack_size_grams)

    def to_dict(self) -> dict:
        return {
            'id':              self.id,
            'name':            self.name,
            'purchase_price':  str(self.purchase_price),
            'pack_size_grams': self.pack_size_grams,
        }

    def __repr__(self):
        return f"<Ingredient {self.name!r} {self.purchase_price}/{self.pack_size_grams}g>"


class MenuItem(db.Model):
    """
    A prepared beverage on the menu.
    Sell price is never stored: it is resolved from fixed_cost,
    profit_margin and rounding_unit (plus the chosen variant's ingredient cost).
    """
    __tablename__ = 'menu_items'

    id            = db.Column(db.Integer, primary_key=True)
    name          = db.Column(db.String(120), nullable=False, index=True)
    fixed_cost    = db.Column(db.Numeric(12, 2), nullable=False)   # cup, milk, labour …
    profit_margin = db.Column(db.Numeric(6, 4), nullable=False)    # 0.5 = 50 %
    rounding_unit = db.Column(db.Numeric(12, 2), nullable=False)   # e.g. 500
    is_active     = db.Column(db.Boolean, nullable=False, default=True, index=True)
    created_at    = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
    updated_at    = db.Column(db.DateTime, nullable=False, default=datetime.utcnow,
                              onupdate=datetime.utcnow)

    variants = db.relationship(
        'RecipeVariant', backref='menu_item', lazy='select',
        order_by='RecipeVariant.position',
        cascade='all, delete-orphan',
    )

    kind = ItemKind.PREPARED_BEVERAGE

    def to_dict(self) -> dict:
        return {
            'id':            self.id,
            'kind':          self.kind.value,
            'name':          self.name,
            'fixed_cost':    str(self.fixed_cost),
            'profit_margin': str(self.profit_margin),
            'rounding_unit': str(self.rounding_unit),
            'is_active':     self.is_active,
            'variants':      [v.to_dict() for v in self.variants],
        }

    def __repr__(self):
        return f"<MenuItem {self.name!r}>"


class RecipeVariant(db.Model):
    """
    One recipe option of a beverage (e.g. "Manual Brew" with Gayo beans).
    The ingredient cost is either derived from a linked Ingredient
    (cost_per_gram × grams_used) or entered directly as ingredient_cost.
    """
    __tablename__ = 'recipe_variants'

    id              = db.Column(db.Integer, primary_key=True)
    menu_item_id    = db.Column(db.Integer, db.ForeignKey('menu_items.id', ondelete='CASCADE'),
                                nullable=False, index=True)
    ingredient_id   = db.Column(db.Integer, db.ForeignKey('ingredients.id'), nullable=True)
    name            = db.Column(db.String(120), nullable=False)
    grams_used      = db.Column(db.Numeric(8, 2), nullable=True)
    ingredient_cost = db.Column(db.Numeric(12, 2), nullable=True)
    position        = db.Column(db.Integer, nullable=False, default=0)

    ingredient = db.relationship('Ingredient', backref=db.backref('variants', lazy='select'))

    @property
    def unit_ingredient_cost(self) -> Optional[Decimal]:
        """Ingredient cost of one serving; None when it cannot be derived."""
        if self.ingredient is not None:
            per_gram = self.ingredient.cost_per_gram
            if per_gram is None or self.grams_used is None:
                return None
            return (per_gram * Decimal(str(self.grams_used))).quantize(Q)
        if self.ingredient_cost is None:
            return Decimal('0')
        return Decimal(str(self.ingredient_cost))

    def to_dict(self) -> dict:
        cost = self.unit_ingredient_cost
        return {
            'id':                   self.id,
            'menu_item_id':         self.menu_item_id,
            'name':                 self.name,
            'ingredient_id':        self.ingredient_id,
            'grams_used':           None if self.grams_used is None else str(self.grams_used),
            'unit_ingredient_cost': None if cost is None else str(cost),
            'position':             self.position,
        }

    def __repr__(self):
        return f"<RecipeVariant {self.name!r} item={self.menu_item_id}>"
