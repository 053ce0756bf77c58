from flask import Blueprint

books = Blueprint('books', __name__)

from kasir.books import routes  # noqa: F401, E402
from kasir.books import models  # noqa: F401, E402
