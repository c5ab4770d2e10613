from datetime import datetime
from martpos import db
from martpos.engine.calculator import CustomerSnapshot


class Customer(db.Model):
    """
    A registered customer, keyed by phone number.

    loyalty_points is only ever changed by the checkout coordinator —
    the customer screens create and edit contact details, nothing else.
    """
    __tablename__ = 'customers'

    id             = db.Column(db.Integer, primary_key=True)
    name           = db.Column(db.String(100), nullable=False)
    phone          = db.Column(db.String(20), unique=True, nullable=False, index=True)
    email          = db.Column(db.String(120), nullable=True)
    address        = db.Column(db.String(255), nullable=True)
    loyalty_points = db.Column(db.Integer, default=0, nullable=False)
    version        = db.Column(db.Integer, nullable=False, default=1)
    created_at     = db.Column(db.DateTime, default=datetime.now)
    updated_at     = db.Column(db.DateTime, default=datetime.now, onupdate=datetime.now)

    __table_args__ = (
        db.CheckConstraint('loyalty_points >= 0', name='check_points_non_negative'),
    )
    __mapper_args__ = {'version_id_col': version}

    def snapshot(self) -> CustomerSnapshot:
        return CustomerSnapshot(
            id=self.id, name=self.name,
            loyalty_points=self.loyalty_points or 0, phone=self.phone,
        )

    def to_dict(self) -> dict:
        return {
            'id':             self.id,
            'name':           self.name,
            'phone':          self.phone,
            'email':          self.email,
            'address':        self.address,
            'loyalty_points': self.loyalty_points,
        }

    def __repr__(self):
        return f"<Customer {self.name} ({self.phone}) Pts:{self.loyalty_points}>"
