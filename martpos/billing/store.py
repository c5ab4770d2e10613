"""
martpos/billing/store.py
------------------------
SQLAlchemy implementation of the checkout persistence port.

SqlAlchemyBatch stages every operation on the session that was handed
in and only commits once the Sale row has been written. Product and
customer rows are locked with SELECT … FOR UPDATE as they are touched
(product ids arrive sorted, so two checkouts never lock in opposite
order), and the version columns on Product, Customer and Sale turn a
concurrent write into StaleDataError, which surfaces here as
ConcurrencyConflictError.
"""
from datetime import datetime

from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm.exc import StaleDataError

from martpos.billing.invoice import next_sequence, format_bill_number
from martpos.billing.models import Sale
from martpos.customers.models import Customer
from martpos.engine.checkout import (
    AtomicBatch, CheckoutStore, LedgerWrite, PointsDelta, StockDelta,
)
from martpos.engine.errors import (
    ConcurrencyConflictError, InsufficientStockError,
    NotFoundError, ValidationError,
)
from martpos.engine.money import to_decimal
from martpos.inventory.models import Product, InventoryLog

_CONFLICT_ERRORS = (StaleDataError, OperationalError, IntegrityError)


class SqlAlchemyBatch(AtomicBatch):

    def __init__(self, session, bill_prefix, clock, allow_negative_stock=False):
        self.session = session
        self.bill_prefix = bill_prefix
        self.clock = clock
        self.allow_negative_stock = allow_negative_stock
        self._logs = []
        self._sale = None

    # ── Staging ───────────────────────────────────────────────────
    def apply(self, operation) -> None:
        try:
            if isinstance(operation, StockDelta):
                self._apply_stock(operation)
            elif isinstance(operation, PointsDelta):
                self._apply_points(operation)
            elif isinstance(operation, LedgerWrite):
                self._write_ledger(operation)
            else:
                raise TypeError(f'Unknown checkout operation: {operation!r}')
        except _CONFLICT_ERRORS as exc:
            raise ConcurrencyConflictError(
                'The bill could not be saved because stock or customer data '
                'changed at the same time. Please recalculate and try again.'
            ) from exc

    def _apply_stock(self, op: StockDelta) -> None:
        product = (
            self.session.query(Product)
            .filter(Product.id == op.product_id)
            .with_for_update()
            .populate_existing()
            .first()
        )
        if product is None:
            raise NotFoundError('product', op.product_id)

        old_stock = to_decimal(product.stock_quantity)
        new_stock = old_stock + op.delta
        if op.delta < 0 and new_stock < 0 and not self.allow_negative_stock:
            raise InsufficientStockError(product.id, product.name,
                                         available=old_stock, requested=-op.delta)

        product.stock_quantity = new_stock
        # Logged in _write_ledger once the bill number is known
        self._logs.append((product.id, old_stock, new_stock))

    def _apply_points(self, op: PointsDelta) -> None:
        customer = (
            self.session.query(Customer)
            .filter(Customer.id == op.customer_id)
            .with_for_update()
            .populate_existing()
            .first()
        )
        if customer is None:
            raise NotFoundError('customer', op.customer_id)

        balance = (customer.loyalty_points or 0) + op.delta
        if balance < 0:
            # The redemption was calculated against a balance that has since dropped
            raise ConcurrencyConflictError(
                f'Loyalty balance for {customer.name} changed since the bill was '
                f'calculated. Please recalculate and try again.'
            )
        customer.loyalty_points = balance

    def _write_ledger(self, op: LedgerWrite) -> None:
        invoice = op.invoice
        if invoice.customer_id is not None and self.session.get(Customer, invoice.customer_id) is None:
            raise NotFoundError('customer', invoice.customer_id)

        now = self.clock()
        if op.is_edit:
            sale = (
                self.session.query(Sale)
                .filter(Sale.id == op.sale_id)
                .with_for_update()
                .populate_existing()
                .first()
            )
            if sale is None:
                raise NotFoundError('sale', op.sale_id)
            if op.expected_version is not None and sale.version != op.expected_version:
                raise ConcurrencyConflictError(
                    f'Bill {sale.bill_number} was changed by someone else. Reload it and try again.'
                )
            sale.updated_at = now
            reason = f'Sale edit {sale.bill_number}'
        else:
            seq  = next_sequence(self.session, now.date())
            sale = Sale(bill_number=format_bill_number(self.bill_prefix, now.date(), seq),
                        sold_at=now)
            self.session.add(sale)
            reason = f'Sale {sale.bill_number}'

        sale.apply_invoice(invoice, op.sold_by)
        for product_id, old_stock, new_stock in self._logs:
            self.session.add(InventoryLog(product_id=product_id, old_stock=old_stock, new_stock=new_stock,
                                          changed_by=op.sold_by, reason=reason))
        self._sale = sale

    # ── Finish ────────────────────────────────────────────────────
    def commit(self):
        if self._sale is None:
            raise ValidationError('Nothing to commit: the sale record was never written.')
        try:
            self.session.commit()
        except _CONFLICT_ERRORS as exc:
            self.session.rollback()
            raise ConcurrencyConflictError(
                'The bill could not be saved because another checkout changed '
                'the same data. Please recalculate and try again.'
            ) from exc
        return self._sale.to_invoice()

    def rollback(self) -> None:
        self.session.rollback()
        self._logs = []
        self._sale = None


class SqlAlchemyStore(CheckoutStore):
    """Reads snapshots and hands out atomic batches on one SQLAlchemy session."""

    def __init__(self, session, bill_prefix='POS', clock=datetime.now):
        self.session = session
        self.bill_prefix = bill_prefix
        self.clock = clock

    def read_product(self, product_id):
        return self.session.get(Product, product_id)

    def read_customer(self, customer_id):
        if customer_id is None:
            return None
        customer = self.session.get(Customer, customer_id)
        return customer.snapshot() if customer is not None else None

    def read_sale(self, sale_id):
        sale = self.session.get(Sale, sale_id)
        return sale.to_invoice() if sale is not None else None

    def begin_atomic_batch(self, allow_negative_stock=False) -> SqlAlchemyBatch:
        return SqlAlchemyBatch(self.session, self.bill_prefix, self.clock,
                               allow_negative_stock=allow_negative_stock)

    def next_sequence_for_today(self, day=None) -> int:
        """Advance today's sequence. Only meaningful inside an open transaction."""
        return next_sequence(self.session, day or self.clock().date())
