"""
kasir/catalog/__init__.py
-------------------------
Catalog blueprint: ingredients, menu beverages, recipe variants and
the priced display menu used by the cashier screen.
URL prefix: /catalog
"""
from flask import Blueprint

catalog = Blueprint('catalog', __name__)

from kasir.catalog import routes  # noqa: F401, E402
from kasir.catalog import models  # noqa: F401, E402
