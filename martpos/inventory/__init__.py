from flask import Blueprint

inventory = Blueprint('inventory', __name__)

from martpos.inventory import routes  # noqa: F401, E402
from martpos.inventory import models  # noqa: F401, E402  — registers Product/InventoryLog with SQLAlchemy
