from flask import Blueprint

customers = Blueprint('customers', __name__)

from martpos.customers import routes  # noqa: F401, E402
from martpos.customers import models  # noqa: F401, E402
