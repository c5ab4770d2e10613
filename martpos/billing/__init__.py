from flask import Blueprint

billing = Blueprint('billing', __name__)

from martpos.billing import routes  # noqa: F401, E402
from martpos.billing import models  # noqa: F401, E402  — registers Sale/SaleItem/BillSequence with SQLAlchemy
