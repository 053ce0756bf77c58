"""
kasir/catalog/routes.py
-----------------------
Catalog editor (admin) and the priced display menu (cashier screen).
"""
from flask import request, jsonify, current_app, abort
from sqlalchemy import func

from kasir import db
from kasir.catalog import catalog
from kasir.catalog.menu import build_display_menu
from kasir.catalog.models import Ingredient, MenuItem, RecipeVariant
from kasir.catalog.pricing import InvalidCatalogData, list_variant_prices
from kasir.catalog.validators import (
    validate_ingredient_form, parse_ingredient_form,
    validate_menu_item_form, parse_menu_item_form,
    validate_variant_form, parse_variant_form,
)
from kasir.auth.decorators import admin_required
from kasir.stores import SqlCatalogStore


def _payload() -> dict:
    return request.get_json(silent=True) or request.form.to_dict()


def _get_or_404(model, object_id):
    obj = db.session.get(model, object_id)
    if obj is None:
        abort(404)
    return obj


# ── DISPLAY MENU ──────────────────────────────────────────────────

@catalog.route('/menu')
def menu():
    """Every sellable entry with its resolved price, as the cashier sees it."""
    return jsonify(build_display_menu(SqlCatalogStore()))


# ── INGREDIENTS ───────────────────────────────────────────────────

@catalog.route('/ingredients')
@admin_required
def list_ingredients():
    rows = Ingredient.query.order_by(Ingredient.name).all()
    return jsonify([i.to_dict() for i in rows])


@catalog.route('/ingredients', methods=['POST'])
@admin_required
def create_ingredient():
    data = _payload()
    errors = validate_ingredient_form(data)
    if errors:
        return jsonify({'errors': errors}), 400

    ingredient = Ingredient(**parse_ingredient_form(data))
    db.session.add(ingredient)
    db.session.commit()
    current_app.logger.info(f"Ingredient created: {ingredient.name} (ID: {ingredient.id})")
    return jsonify(ingredient.to_dict()), 201


@catalog.route('/ingredients/<int:ingredient_id>', methods=['PUT'])
@admin_required
def update_ingredient(ingredient_id):
    ingredient = _get_or_404(Ingredient, ingredient_id)
    data = _payload()
    errors = validate_ingredient_form(data)
    if errors:
        return jsonify({'errors': errors}), 400

    for key, value in parse_ingredient_form(data).items():
        setattr(ingredient, key, value)
    db.session.commit()
    current_app.logger.info(f"Ingredient updated: {ingredient.name} (ID: {ingredient.id})")
    return jsonify(ingredient.to_dict())


@catalog.route('/ingredients/<int:ingredient_id>', methods=['DELETE'])
@admin_required
def delete_ingredient(ingredient_id):
    ingredient = _get_or_404(Ingredient, ingredient_id)
    if ingredient.variants:
        used_by = sorted({v.menu_item.name for v in ingredient.variants})
        return jsonify({'error': f'"{ingredient.name}" is used by: {", ".join(used_by)}.'}), 409

    db.session.delete(ingredient)
    db.session.commit()
    current_app.logger.info(f"Ingredient deleted: {ingredient.name} (ID: {ingredient_id})")
    return jsonify({'message': 'Ingredient deleted.'})


# ── MENU ITEMS ────────────────────────────────────────────────────

@catalog.route('/menu-items')
@admin_required
def list_menu_items():
    rows = MenuItem.query.order_by(MenuItem.name).all()
    return jsonify([m.to_dict() for m in rows])


@catalog.route('/menu-items', methods=['POST'])
@admin_required
def create_menu_item():
    data = _payload()
    errors = validate_menu_item_form(data)
    if errors:
        return jsonify({'errors': errors}), 400

    item = MenuItem(**parse_menu_item_form(data))
    db.session.add(item)
    db.session.commit()
    current_app.logger.info(f"Menu item created: {item.name} (ID: {item.id})")
    return jsonify(item.to_dict()), 201


@catalog.route('/menu-items/<int:item_id>', methods=['PUT'])
@admin_required
def update_menu_item(item_id):
    item = _get_or_404(MenuItem, item_id)
    data = _payload()
    errors = validate_menu_item_form(data)
    if errors:
        return jsonify({'errors': errors}), 400

    for key, value in parse_menu_item_form(data).items():
        setattr(item, key, value)
    db.session.commit()
    current_app.logger.info(f"Menu item updated: {item.name} (ID: {item.id})")
    return jsonify(item.to_dict())


@catalog.route('/menu-items/<int:item_id>', methods=['DELETE'])
@admin_required
def delete_menu_item(item_id):
    item = _get_or_404(MenuItem, item_id)
    db.session.delete(item)
    db.session.commit()
    current_app.logger.info(f"Menu item deleted: {item.name} (ID: {item_id})")
    return jsonify({'message': 'Menu item deleted.'})


@catalog.route('/menu-items/<int:item_id>/prices')
def menu_item_prices(item_id):
    """Resolved price of every recipe variant, for the variant picker."""
    item = _get_or_404(MenuItem, item_id)
    try:
        prices = list_variant_prices(item)
    except InvalidCatalogData as exc:
        current_app.logger.error(f"Cannot price menu item {item_id}: {exc}")
        return jsonify({'error': str(exc), 'field': exc.field_name}), 422

    return jsonify([{
        'variant_id':   p.variant_id,
        'variant_name': p.variant_name,
        'unit_price':   str(p.unit_price),
        'unit_cost':    str(p.unit_cost),
    } for p in prices])


# ── RECIPE VARIANTS ───────────────────────────────────────────────

def _apply_variant(variant: RecipeVariant, fields: dict):
    """Copy parsed fields onto `variant`; returns an error response or None."""
    if fields['ingredient_id'] is not None and db.session.get(Ingredient, fields['ingredient_id']) is None:
        return jsonify({'errors': {'ingredient_id': 'Ingredient not found.'}}), 400

    if fields['position'] is None:
        if variant.position is None:
            last = (db.session.query(func.max(RecipeVariant.position))
                    .filter(RecipeVariant.menu_item_id == variant.menu_item_id).scalar())
            fields['position'] = 0 if last is None else last + 1
        else:
            fields['position'] = variant.position

    for key, value in fields.items():
        setattr(variant, key, value)
    return None


@catalog.route('/menu-items/<int:item_id>/variants', methods=['POST'])
@admin_required
def create_variant(item_id):
    item = _get_or_404(MenuItem, item_id)
    data = _payload()
    errors = validate_variant_form(data)
    if errors:
        return jsonify({'errors': errors}), 400

    variant = RecipeVariant(menu_item_id=item.id)
    error_response = _apply_variant(variant, parse_variant_form(data))
    if error_response:
        return error_response

    db.session.add(variant)
    db.session.commit()
    current_app.logger.info(f"Variant '{variant.name}' added to {item.name} (ID: {item.id})")
    return jsonify(variant.to_dict()), 201


@catalog.route('/variants/<int:variant_id>', methods=['PUT'])
@admin_required
def update_variant(variant_id):
    variant = _get_or_404(RecipeVariant, variant_id)
    data = _payload()
    errors = validate_variant_form(data)
    if errors:
        return jsonify({'errors': errors}), 400

    error_response = _apply_variant(variant, parse_variant_form(data))
    if error_response:
        return error_response

    db.session.commit()
    return jsonify(variant.to_dict())


@catalog.route('/variants/<int:variant_id>', methods=['DELETE'])
@admin_required
def delete_variant(variant_id):
    variant = _get_or_404(RecipeVariant, variant_id)
    db.session.delete(variant)
    db.session.commit()
    return jsonify({'message': 'Variant deleted.'})
