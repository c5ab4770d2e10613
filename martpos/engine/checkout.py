"""
martpos/engine/checkout.py
--------------------------
Checkout transaction coordinator.

A checkout is planned as a short list of tagged operations:

    StockDelta   — net stock change for one product (negative = sold)
    PointsDelta  — net loyalty-point change for one customer
    LedgerWrite  — the Sale record itself (insert, or rewrite in edit mode)

and then handed to the store's atomic batch, which applies all of them
inside one transaction. Either everything commits or nothing does; the
coordinator never retries. On any failure the caller recomputes the
invoice from fresh reads and submits again.

Edit mode
─────────
Re-billing an existing sale diffs the old and new carts per product:

    delta = Σ old quantity − Σ new quantity

so a product present in both is touched once, by the difference,
instead of being restocked and then sold again.
"""
from __future__ import annotations
import abc
import logging
from collections import OrderedDict
from dataclasses import dataclass
from decimal import Decimal
from typing import Dict, Iterable, List, Optional, Tuple

from martpos.engine.calculator import Invoice, LineItem, UnitType
from martpos.engine.errors import CheckoutError, ValidationError
from martpos.engine.money import ZERO, to_decimal

logger = logging.getLogger(__name__)

WEIGHT_PLACES = 3


# ── Tagged operations ─────────────────────────────────────────────

@dataclass(frozen=True)
class StockDelta:
    product_id:   int
    product_name: str
    delta:        Decimal


@dataclass(frozen=True)
class PointsDelta:
    customer_id: int
    delta:       int


@dataclass(frozen=True)
class LedgerWrite:
    invoice:          Invoice
    sold_by:          str
    sale_id:          Optional[int] = None   # set in edit mode
    expected_version: Optional[int] = None   # version of the sale being edited

    @property
    def is_edit(self) -> bool:
        return self.sale_id is not None


@dataclass(frozen=True)
class CheckoutPlan:
    stock:  Tuple[StockDelta, ...]
    points: Tuple[PointsDelta, ...]
    ledger: LedgerWrite

    @property
    def operations(self) -> list:
        """Stock first, then points, then the ledger row."""
        return [*self.stock, *self.points, self.ledger]


# ── Persistence port ──────────────────────────────────────────────

class AtomicBatch(abc.ABC):
    """All-or-nothing unit of work handed out by a CheckoutStore."""

    @abc.abstractmethod
    def apply(self, operation) -> None:
        """Stage one StockDelta / PointsDelta / LedgerWrite. May raise CheckoutError."""

    @abc.abstractmethod
    def commit(self) -> Invoice:
        """Make every staged change visible at once; return the persisted sale."""

    @abc.abstractmethod
    def rollback(self) -> None:
        """Discard every staged change."""


class CheckoutStore(abc.ABC):
    """What the coordinator needs from persistence — nothing more."""

    @abc.abstractmethod
    def read_product(self, product_id): ...

    @abc.abstractmethod
    def read_customer(self, customer_id): ...

    @abc.abstractmethod
    def read_sale(self, sale_id) -> Optional[Invoice]: ...

    @abc.abstractmethod
    def begin_atomic_batch(self, allow_negative_stock: bool = False) -> AtomicBatch: ...

    @abc.abstractmethod
    def next_sequence_for_today(self, day=None) -> int: ...


# ── Planning (pure) ───────────────────────────────────────────────

def validate_items(items: Iterable[LineItem]) -> None:
    """Reject carts that must never be persisted."""
    items = list(items)
    if not items:
        raise ValidationError('Cart is empty. Add products before completing a sale.')

    for item in items:
        qty = to_decimal(item.quantity)
        if qty <= 0:
            raise ValidationError(f'Quantity for "{item.product_name}" must be greater than zero.')
        if item.unit_type == UnitType.piece and qty != qty.to_integral_value():
            raise ValidationError(f'"{item.product_name}" is sold by the piece; quantity must be whole.')
        if item.unit_type == UnitType.weight and -qty.as_tuple().exponent > WEIGHT_PLACES:
            raise ValidationError(
                f'Weight for "{item.product_name}" allows at most {WEIGHT_PLACES} decimal places.'
            )
        if item.is_free_item and to_decimal(item.price_at_sale) != 0:
            raise ValidationError(f'Free item "{item.product_name}" must be priced at zero.')


def quantities_by_product(items: Iterable[LineItem]) -> Dict[int, Decimal]:
    """Total quantity per product id — free and paid lines both consume stock."""
    totals: Dict[int, Decimal] = OrderedDict()
    for item in items:
        totals[item.product_id] = totals.get(item.product_id, ZERO) + to_decimal(item.quantity)
    return totals


def stock_deltas(new_items, old_items=()) -> List[StockDelta]:
    """Net per-product stock change, sorted by product id; zero deltas dropped."""
    new_qty = quantities_by_product(new_items)
    old_qty = quantities_by_product(old_items)
    # Prefer the paid line's name over the "(FREE)" one
    names: Dict[int, str] = {}
    for item in [*old_items, *new_items]:
        if not item.is_free_item or item.product_id not in names:
            names[item.product_id] = item.product_name

    deltas = []
    # Sorted so concurrent checkouts lock rows in the same order
    for pid in sorted(set(new_qty) | set(old_qty)):
        delta = old_qty.get(pid, ZERO) - new_qty.get(pid, ZERO)
        if delta != 0:
            deltas.append(StockDelta(product_id=pid, product_name=names.get(pid, ''), delta=delta))
    return deltas


def _net_points(invoice: Optional[Invoice]) -> int:
    if invoice is None or invoice.customer_id is None:
        return 0
    return invoice.points_net


def points_deltas(invoice: Invoice, original: Optional[Invoice] = None) -> List[PointsDelta]:
    """
    One net adjustment per customer.

    Editing a sale for the same customer adjusts by the difference;
    moving a sale to another customer reverses the old one and credits
    the new one.
    """
    new_net = _net_points(invoice)
    old_net = _net_points(original)
    old_customer = original.customer_id if original is not None else None

    if old_customer is not None and old_customer == invoice.customer_id:
        delta = new_net - old_net
        return [PointsDelta(invoice.customer_id, delta)] if delta else []

    deltas = []
    if old_customer is not None and old_net:
        deltas.append(PointsDelta(old_customer, -old_net))
    if invoice.customer_id is not None and new_net:
        deltas.append(PointsDelta(invoice.customer_id, new_net))
    return deltas


def plan_checkout(invoice: Invoice, sold_by: str,
                  original: Optional[Invoice] = None) -> CheckoutPlan:
    """Turn a finalised invoice (and, when editing, the original sale) into operations."""
    validate_items(invoice.items)
    if original is not None and original.sale_id is None:
        raise ValidationError('Only a saved sale can be edited.')

    old_items = original.items if original is not None else ()
    return CheckoutPlan(
        stock=tuple(stock_deltas(invoice.items, old_items)),
        points=tuple(points_deltas(invoice, original)),
        ledger=LedgerWrite(
            invoice=invoice,
            sold_by=sold_by or 'System',
            sale_id=original.sale_id if original is not None else None,
            expected_version=original.version if original is not None else None,
        ),
    )


# ── Coordinator ───────────────────────────────────────────────────

class CheckoutCoordinator:
    """
    Applies a checkout plan through a CheckoutStore as one transaction.

    Resubmission guarding (double clicks, in-flight requests) belongs to
    the caller; this class neither locks nor retries.
    """

    def __init__(self, store: CheckoutStore, allow_negative_stock: bool = False):
        self.store = store
        self.allow_negative_stock = allow_negative_stock

    def submit_checkout(self, invoice: Invoice, sold_by: str,
                        original: Optional[Invoice] = None) -> Invoice:
        """
        Persist `invoice`, moving stock and points with it.

        Args:
            invoice:  output of compute_invoice() + apply_payment()
            sold_by:  operator identity recorded on the sale
            original: the saved sale being re-billed (edit mode), or None

        Returns the persisted invoice (bill number, sale id, version set).
        Raises a CheckoutError subclass; nothing is written in that case.
        """
        plan  = plan_checkout(invoice, sold_by, original)
        batch = self.store.begin_atomic_batch(allow_negative_stock=self.allow_negative_stock)

        try:
            for op in plan.operations:
                batch.apply(op)
            saved = batch.commit()
        except CheckoutError as exc:
            batch.rollback()
            logger.warning('Checkout rolled back (%s): %s', type(exc).__name__, exc.message)
            raise
        except Exception:
            batch.rollback()
            logger.exception('Checkout rolled back (unexpected error)')
            raise

        logger.info('%s %s by %s | Total: %s | Points %+d',
                    'Sale edited' if plan.ledger.is_edit else 'Sale completed',
                    saved.bill_number, plan.ledger.sold_by, saved.total_amount,
                    sum(p.delta for p in plan.points))
        return saved
