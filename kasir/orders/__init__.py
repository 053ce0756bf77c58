from flask import Blueprint

orders = Blueprint('orders', __name__)

from kasir.orders import routes  # noqa: F401, E402
from kasir.orders import models  # noqa: F401, E402
