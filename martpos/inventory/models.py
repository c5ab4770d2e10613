from decimal import Decimal
from datetime import datetime
from martpos import db
from martpos.engine.calculator import LineItem, UnitType
from martpos.engine.money import ZERO, to_decimal, add_exclusive_tax

# ── Central threshold — change here, applies everywhere ──────────
LOW_STOCK_THRESHOLD = 5


class Product(db.Model):
    """
    A sellable product — the single source of truth for price and stock.
    Sales never read prices back from here; they keep their own snapshot.
    """
    __tablename__ = 'products'

    id               = db.Column(db.Integer, primary_key=True)
    name             = db.Column(db.String(200), nullable=False, index=True)
    barcode          = db.Column(db.String(100), unique=True, nullable=False, index=True)
    cost_price       = db.Column(db.Numeric(10, 2), nullable=False, default=0)
    mrp              = db.Column(db.Numeric(10, 2), nullable=False)
    selling_price    = db.Column(db.Numeric(10, 2), nullable=True)    # optional override below MRP
    stock_quantity   = db.Column(db.Numeric(12, 3), nullable=False, default=0)
    gst_rate         = db.Column(db.Numeric(5, 2), nullable=False, default=0)
    unit_type        = db.Column(db.String(10), nullable=False, default=UnitType.piece.value)
    unit_value       = db.Column(db.Numeric(10, 3), nullable=False, default=1)
    is_gst_inclusive = db.Column(db.Boolean, nullable=False, default=True)
    is_active        = db.Column(db.Boolean, nullable=False, default=True, index=True)

    # Promotional free item handed out with every unit of this product
    free_product_id    = db.Column(db.Integer, db.ForeignKey('products.id'), nullable=True)
    free_item_quantity = db.Column(db.Numeric(12, 3), nullable=False, default=1)

    version    = db.Column(db.Integer, nullable=False, default=1)
    created_at = db.Column(db.DateTime, nullable=False, default=datetime.now)
    updated_at = db.Column(db.DateTime, nullable=False, default=datetime.now, onupdate=datetime.now)

    free_product = db.relationship('Product', remote_side=[id], lazy='select')

    __table_args__ = (
        db.CheckConstraint('mrp >= 0', name='check_mrp_non_negative'),
        db.CheckConstraint('gst_rate >= 0 AND gst_rate <= 100', name='check_gst_valid'),
    )
    # Concurrent checkouts touching the same row raise StaleDataError
    __mapper_args__ = {'version_id_col': version}

    # ── Computed helpers ──────────────────────────────────────────
    @property
    def effective_price(self) -> Decimal:
        """selling_price when it is a real markdown (0 < sp < mrp), otherwise MRP."""
        mrp = to_decimal(self.mrp)
        sp  = to_decimal(self.selling_price)
        if ZERO < sp < mrp:
            return sp
        return mrp

    @property
    def is_weighed(self) -> bool:
        return self.unit_type == UnitType.weight.value

    @property
    def is_low_stock(self) -> bool:
        return to_decimal(self.stock_quantity) <= LOW_STOCK_THRESHOLD

    def to_line_item(self, quantity, free: bool = False) -> LineItem:
        """
        Snapshot this product as a cart line.

        Shelf prices marked GST-exclusive are grossed up here, so the
        line's price_at_sale is always what the customer pays.
        """
        price = self.effective_price
        if not self.is_gst_inclusive:
            price = add_exclusive_tax(price, self.gst_rate)
        return LineItem(
            product_id=self.id,
            product_name=f'{self.name} (FREE)' if free else self.name,
            quantity=to_decimal(quantity),
            mrp=to_decimal(self.mrp),
            price_at_sale=ZERO if free else price,
            cost_price_at_sale=to_decimal(self.cost_price),
            gst_rate=to_decimal(self.gst_rate),
            unit_type=UnitType(self.unit_type),
            is_gst_inclusive=bool(self.is_gst_inclusive),
            is_free_item=free,
        )

    def to_dict(self) -> dict:
        return {
            'id':                 self.id,
            'name':               self.name,
            'barcode':            self.barcode,
            'cost_price':         str(self.cost_price),
            'mrp':                str(self.mrp),
            'selling_price':      str(self.selling_price) if self.selling_price is not None else None,
            'effective_price':    str(self.effective_price),
            'stock_quantity':     str(self.stock_quantity),
            'gst_rate':           str(self.gst_rate),
            'unit_type':          self.unit_type,
            'unit_value':         str(self.unit_value),
            'is_gst_inclusive':   self.is_gst_inclusive,
            'is_active':          self.is_active,
            'is_low_stock':       self.is_low_stock,
            'free_product_id':    self.free_product_id,
            'free_item_quantity': str(self.free_item_quantity),
        }

    def __repr__(self):
        return f"<Product {self.barcode!r} {self.name!r}>"


class InventoryLog(db.Model):
    """
    Audit trail for stock changes.
    Tracks old vs new stock, who changed it, and why.
    """
    __tablename__ = 'inventory_logs'

    id         = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey('products.id'), nullable=False)
    old_stock  = db.Column(db.Numeric(12, 3), nullable=False)
    new_stock  = db.Column(db.Numeric(12, 3), nullable=False)
    changed_by = db.Column(db.String(64), nullable=True)       # operator username
    reason     = db.Column(db.String(255), nullable=False)
    timestamp  = db.Column(db.DateTime, nullable=False, default=datetime.now, index=True)

    product = db.relationship('Product', backref=db.backref('logs', lazy='select'))

    @property
    def change(self) -> Decimal:
        return to_decimal(self.new_stock) - to_decimal(self.old_stock)

    def to_dict(self) -> dict:
        return {
            'id':         self.id,
            'product_id': self.product_id,
            'old_stock':  str(self.old_stock),
            'new_stock':  str(self.new_stock),
            'change':     str(self.change),
            'changed_by': self.changed_by,
            'reason':     self.reason,
            'timestamp':  self.timestamp.isoformat() if self.timestamp else None,
        }

    def __repr__(self):
        return f"<Log Product:{self.product_id} {self.old_stock}->{self.new_stock} ({self.reason})>"
