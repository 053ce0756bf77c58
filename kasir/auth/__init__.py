from flask import Blueprint

auth = Blueprint('auth', __name__)

from kasir.auth import routes   # noqa: F401, E402
from kasir.auth import models   # noqa: F401, E402
