"""
martpos/billing/cart.py
-----------------------
Session-backed cart for the billing screen.

Stored in the Flask session:

    session['cart'] = [ <LineItem.to_dict()>, ... ]     ← insertion order
    session['bill'] = {
        "customer_id":      int | None,
        "discount_type":    "percentage" | "fixed",
        "discount_value":   str,
        "points_requested": int,
        "edit_sale_id":     int | None,   ← set when re-billing a saved sale
        "edit_version":     int | None,   ← that sale's version when it was opened
    }

Money and quantities are kept as strings in the session and turned back
into Decimal via LineItem.from_dict — no float contamination.
"""
from decimal import Decimal, ROUND_HALF_UP
from flask import session

from martpos.engine.calculator import DiscountSpec, Invoice, LineItem
from martpos.engine.errors import ValidationError
from martpos.engine.money import to_decimal


CART_KEY = 'cart'
BILL_KEY = 'bill'

EMPTY_BILL = {
    'customer_id':      None,
    'discount_type':    'percentage',
    'discount_value':   '0',
    'points_requested': 0,
    'edit_sale_id':     None,
    'edit_version':     None,
}


# ── Read ──────────────────────────────────────────────────────────

def get_cart() -> list:
    """Return the cart as LineItems, in the order they were added."""
    return [LineItem.from_dict(row) for row in session.get(CART_KEY, [])]


def get_bill() -> dict:
    bill = dict(EMPTY_BILL)
    bill.update(session.get(BILL_KEY, {}))
    return bill


def get_discount() -> DiscountSpec:
    bill = get_bill()
    return DiscountSpec.parse(bill['discount_type'], bill['discount_value'])


def is_editing() -> bool:
    return get_bill()['edit_sale_id'] is not None


# ── Write ─────────────────────────────────────────────────────────

def _save_cart(items) -> None:
    session[CART_KEY] = [item.to_dict() for item in items]
    session.modified  = True


def update_bill(**changes) -> dict:
    bill = get_bill()
    unknown = set(changes) - set(EMPTY_BILL)
    if unknown:
        raise KeyError(f'Unknown bill fields: {sorted(unknown)}')
    bill.update(changes)
    session[BILL_KEY] = bill
    session.modified  = True
    return bill


def _find_line(items, product_id, free: bool):
    for index, item in enumerate(items):
        if item.product_id == product_id and item.is_free_item == free:
            return index
    return None


def add_to_cart(product, quantity=None) -> None:
    """
    Add `product` to the cart.

    Piece products go in one unit at a time; weighed products need the
    scale reading in `quantity` (kg, up to 3 dp). Re-scanning a product
    already in the cart increments its line. If the product carries a
    free item, that line is added or incremented alongside it.

    Stock limits are enforced here for new bills only — while editing a
    saved sale the stock it already consumed is about to be returned.
    """
    items   = get_cart()
    editing = is_editing()
    stock   = to_decimal(product.stock_quantity)

    if product.is_weighed:
        qty = to_decimal(quantity, non_negative=True).quantize(Decimal('0.001'), rounding=ROUND_HALF_UP)
        if qty <= 0:
            raise ValidationError(f'Enter the weight for "{product.name}".')
    else:
        qty = Decimal(1)

    index = _find_line(items, product.id, free=False)
    current = items[index].quantity if index is not None else Decimal(0)

    if not editing:
        if stock <= 0:
            raise ValidationError(f'"{product.name}" is out of stock.')
        if current + qty > stock:
            raise ValidationError(f'Stock limit reached for "{product.name}" (available: {stock}).')

    if index is None:
        items.append(product.to_line_item(qty))
    else:
        items[index] = items[index].with_quantity(current + qty)

    free_product = product.free_product
    if free_product is not None and free_product.is_active:
        give = to_decimal(product.free_item_quantity, non_negative=True) or Decimal(1)
        free_index = _find_line(items, free_product.id, free=True)
        if free_index is None:
            items.append(free_product.to_line_item(give, free=True))
        else:
            items[free_index] = items[free_index].with_quantity(items[free_index].quantity + give)

    _save_cart(items)


def set_quantity(index: int, quantity) -> None:
    """Change a line's quantity; zero or less removes the line."""
    items = get_cart()
    if not 0 <= index < len(items):
        raise ValidationError('No such cart line.')
    qty = to_decimal(quantity)
    if qty <= 0:
        items.pop(index)
    else:
        items[index] = items[index].with_quantity(qty)
    _save_cart(items)


def remove_from_cart(index: int) -> None:
    """Remove a line entirely from the cart."""
    items = get_cart()
    if 0 <= index < len(items):
        items.pop(index)
        _save_cart(items)


def load_sale(invoice: Invoice) -> None:
    """Open a saved sale for re-billing — its lines become the cart."""
    _save_cart(invoice.items)
    session[BILL_KEY] = dict(
        EMPTY_BILL,
        customer_id=invoice.customer_id,
        discount_type=invoice.discount.type.value,
        discount_value=str(invoice.discount.value),
        points_requested=invoice.loyalty_points_used,
        edit_sale_id=invoice.sale_id,
        edit_version=invoice.version,
    )
    session.modified = True


def clear_cart() -> None:
    """Empty the cart and bill state after a completed (or abandoned) sale."""
    session.pop(CART_KEY, None)
    session.pop(BILL_KEY, None)
    session.modified = True
