from flask import Blueprint

auth = Blueprint('auth', __name__)

from martpos.auth import routes   # noqa: F401, E402
from martpos.auth import models   # noqa: F401, E402  registers the model with SQLAlchemy
