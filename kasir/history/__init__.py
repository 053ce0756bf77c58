"""
kasir/history/__init__.py
-------------------------
Transaction history blueprint: income (orders) and expenses.
URL prefix: /history
"""
from flask import Blueprint

history = Blueprint('history', __name__)

from kasir.history import routes  # noqa: F401, E402
from kasir.history import models  # noqa: F401, E402
