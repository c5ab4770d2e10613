from datetime import datetime
from decimal import Decimal
from martpos import db
from martpos.engine.calculator import (
    Invoice, LineItem, DiscountSpec, DiscountType, PaymentMode, UnitType,
)
from martpos.engine.money import ZERO, to_decimal


class BillSequence(db.Model):
    """
    One row per calendar day — holds the last-used bill sequence number.

    COUNT(sales) for today is not safe under concurrent checkouts: two
    transactions both see 15 and both issue POS-…-016. Locking this row
    with SELECT … FOR UPDATE serialises them instead, and because the
    increment lives in the sale's own transaction a rolled-back sale
    leaves no gap in the day's numbering.
    """
    __tablename__ = 'bill_sequences'

    day      = db.Column(db.Date, primary_key=True)
    last_seq = db.Column(db.Integer, nullable=False, default=0)

    def __repr__(self):
        return f"<BillSequence day={self.day} last_seq={self.last_seq}>"


class Sale(db.Model):
    """
    One completed bill — the persisted form of an Invoice.
    Edits rewrite the row in place; `version` guards against lost updates.
    """
    __tablename__ = 'sales'

    id            = db.Column(db.Integer, primary_key=True)
    bill_number   = db.Column(db.String(32), unique=True, nullable=False, index=True)
    sold_at       = db.Column(db.DateTime, nullable=False, default=datetime.now, index=True)
    updated_at    = db.Column(db.DateTime, nullable=True)
    sold_by       = db.Column(db.String(64), nullable=False, default='System')
    customer_id   = db.Column(db.Integer, db.ForeignKey('customers.id'), nullable=True, index=True)
    customer_name = db.Column(db.String(100), nullable=False, default='Walk-in')

    display_subtotal    = db.Column(db.Numeric(12, 2), nullable=False, default=0)  # Σ price × qty (GST incl.)
    sub_total           = db.Column(db.Numeric(12, 2), nullable=False, default=0)  # pre-tax base
    gst_total           = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    item_savings        = db.Column(db.Numeric(12, 2), nullable=False, default=0)  # MRP − sale price
    discount_type       = db.Column(db.String(12), nullable=False, default=DiscountType.percentage.value)
    discount_value      = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    additional_discount = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    loyalty_discount    = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    round_off           = db.Column(db.Numeric(6, 2), nullable=False, default=0)
    total_amount        = db.Column(db.Numeric(12, 2), nullable=False, default=0)

    payment_mode    = db.Column(db.String(10), nullable=False, default=PaymentMode.cash.value)
    amount_received = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    change_given    = db.Column(db.Numeric(12, 2), nullable=False, default=0)

    loyalty_points_earned = db.Column(db.Integer, nullable=False, default=0)
    loyalty_points_used   = db.Column(db.Integer, nullable=False, default=0)

    version = db.Column(db.Integer, nullable=False, default=1)

    # ── Relationships ─────────────────────────────────────────────
    customer = db.relationship('Customer', backref=db.backref('sales', lazy='dynamic'), lazy='select')
    items    = db.relationship('SaleItem', backref='sale', lazy='select',
                               order_by='SaleItem.position',
                               cascade='all, delete-orphan')

    __mapper_args__ = {'version_id_col': version}

    def apply_invoice(self, invoice: Invoice, sold_by: str) -> None:
        """Copy every invoice figure onto this row, replacing any previous items."""
        self.sold_by             = sold_by
        self.customer_id         = invoice.customer_id
        self.customer_name       = invoice.customer_name or 'Walk-in'
        self.display_subtotal    = invoice.display_subtotal
        self.sub_total           = invoice.sub_total_for_db
        self.gst_total           = invoice.gst_for_db
        self.item_savings        = invoice.item_savings
        self.discount_type       = invoice.discount.type.value
        self.discount_value      = invoice.discount.value
        self.additional_discount = invoice.additional_discount_amount
        self.loyalty_discount    = invoice.loyalty_discount_amount
        self.round_off           = invoice.round_off_amount
        self.total_amount        = invoice.total_amount
        self.payment_mode        = invoice.payment_mode.value
        self.amount_received     = invoice.amount_received
        self.change_given        = invoice.change_given
        self.loyalty_points_earned = invoice.loyalty_points_earned
        self.loyalty_points_used   = invoice.loyalty_points_used

        self.items = [SaleItem.from_line_item(item, position)
                      for position, item in enumerate(invoice.items)]

    def to_invoice(self) -> Invoice:
        """Rebuild the Invoice exactly as it was saved."""
        return Invoice(
            items=tuple(item.to_line_item() for item in self.items),
            discount=DiscountSpec(type=DiscountType(self.discount_type),
                                  value=to_decimal(self.discount_value)),
            display_subtotal=to_decimal(self.display_subtotal),
            sub_total_for_db=to_decimal(self.sub_total),
            gst_for_db=to_decimal(self.gst_total),
            item_savings=to_decimal(self.item_savings),
            additional_discount_amount=to_decimal(self.additional_discount),
            loyalty_discount_amount=to_decimal(self.loyalty_discount),
            round_off_amount=to_decimal(self.round_off),
            total_amount=to_decimal(self.total_amount),
            payment_mode=PaymentMode(self.payment_mode),
            amount_received=to_decimal(self.amount_received),
            change_given=to_decimal(self.change_given),
            loyalty_points_earned=self.loyalty_points_earned or 0,
            loyalty_points_used=self.loyalty_points_used or 0,
            points_requested=self.loyalty_points_used or 0,
            customer_id=self.customer_id,
            customer_name=self.customer_name,
            bill_number=self.bill_number,
            sold_at=self.sold_at,
            sold_by=self.sold_by,
            sale_id=self.id,
            version=self.version,
        )

    # ── Computed helpers ──────────────────────────────────────────
    @property
    def gross_margin(self) -> Decimal:
        """Σ (sale price − cost) × qty, before cart-level discounts."""
        return sum((item.margin for item in self.items), start=ZERO)

    def __repr__(self):
        return f"<Sale {self.bill_number!r} ₹{self.total_amount}>"


class SaleItem(db.Model):
    """
    One line of a Sale — an immutable snapshot of name, prices and GST
    at the time of sale, so product edits never alter historical bills.
    `position` keeps the original cart order for receipt reprints.
    """
    __tablename__ = 'sale_items'

    id                 = db.Column(db.Integer, primary_key=True)
    sale_id            = db.Column(db.Integer, db.ForeignKey('sales.id'), nullable=False)
    position           = db.Column(db.Integer, nullable=False, default=0)
    product_id         = db.Column(db.Integer, db.ForeignKey('products.id'), nullable=False)
    product_name       = db.Column(db.String(200), nullable=False)
    quantity           = db.Column(db.Numeric(12, 3), nullable=False)
    mrp                = db.Column(db.Numeric(10, 2), nullable=False, default=0)
    price_at_sale      = db.Column(db.Numeric(10, 2), nullable=False, default=0)
    cost_price_at_sale = db.Column(db.Numeric(10, 2), nullable=False, default=0)
    gst_rate           = db.Column(db.Numeric(5, 2), nullable=False, default=0)
    unit_type          = db.Column(db.String(10), nullable=False, default=UnitType.piece.value)
    is_gst_inclusive   = db.Column(db.Boolean, nullable=False, default=True)
    is_free_item       = db.Column(db.Boolean, nullable=False, default=False)

    product = db.relationship('Product', lazy='select')

    __table_args__ = (
        db.CheckConstraint('quantity > 0', name='check_line_qty_positive'),
    )

    @classmethod
    def from_line_item(cls, item: LineItem, position: int) -> 'SaleItem':
        return cls(
            position=position,
            product_id=item.product_id,
            product_name=item.product_name,
            quantity=item.quantity,
            mrp=item.mrp,
            price_at_sale=item.price_at_sale,
            cost_price_at_sale=item.cost_price_at_sale,
            gst_rate=item.gst_rate,
            unit_type=item.unit_type.value,
            is_gst_inclusive=item.is_gst_inclusive,
            is_free_item=item.is_free_item,
        )

    def to_line_item(self) -> LineItem:
        return LineItem(
            product_id=self.product_id,
            product_name=self.product_name,
            quantity=to_decimal(self.quantity),
            mrp=to_decimal(self.mrp),
            price_at_sale=to_decimal(self.price_at_sale),
            cost_price_at_sale=to_decimal(self.cost_price_at_sale),
            gst_rate=to_decimal(self.gst_rate),
            unit_type=UnitType(self.unit_type),
            is_gst_inclusive=bool(self.is_gst_inclusive),
            is_free_item=bool(self.is_free_item),
        )

    @property
    def margin(self) -> Decimal:
        qty = to_decimal(self.quantity)
        return (to_decimal(self.price_at_sale) - to_decimal(self.cost_price_at_sale)) * qty

    def __repr__(self):
        return f"<SaleItem sale={self.sale_id} product={self.product_id} qty={self.quantity}>"
