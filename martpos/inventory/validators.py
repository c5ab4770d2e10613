"""
martpos/inventory/validators.py
-------------------------------
Pure-Python validation for product and stock-in data.
Each validator returns a dict of field -> error_message.
An empty dict means all fields are valid.
"""
from decimal import Decimal, InvalidOperation

UNIT_TYPES = ('piece', 'weight')
TRUTHY = ('1', 'true', 'on', 'yes', True)


def _decimal(raw):
    """Decimal from a raw string, or None when it isn't a finite number."""
    try:
        value = Decimal(str(raw).strip())
    except (InvalidOperation, ValueError):
        return None
    return value if value.is_finite() else None


def _check_money(errors, form_data, field, label, required=False, positive=False):
    raw = str(form_data.get(field, '') or '').strip()
    if not raw:
        if required:
            errors[field] = f'{label} is required.'
        return None
    value = _decimal(raw)
    if value is None:
        errors[field] = f'{label} must be a valid number.'
    elif value < 0 or (positive and value == 0):
        errors[field] = f'{label} must be greater than zero.' if positive else f'{label} cannot be negative.'
    return value


def validate_product_form(form_data: dict) -> dict:
    """
    Validate raw data for create / edit product.

    Returns:
        dict of {field_name: error_message} — empty if all valid.
    """
    errors = {}

    # ── name ─────────────────────────────────────────────────────
    name = str(form_data.get('name', '')).strip()
    if not name:
        errors['name'] = 'Product name is required.'
    elif len(name) > 200:
        errors['name'] = 'Product name must be 200 characters or fewer.'

    # ── barcode ───────────────────────────────────────────────────
    barcode = str(form_data.get('barcode', '')).strip()
    if not barcode:
        errors['barcode'] = 'Barcode is required.'
    elif len(barcode) > 100:
        errors['barcode'] = 'Barcode must be 100 characters or fewer.'

    # ── prices ────────────────────────────────────────────────────
    mrp  = _check_money(errors, form_data, 'mrp', 'MRP', required=True, positive=True)
    _check_money(errors, form_data, 'cost_price', 'Cost price')
    sp   = _check_money(errors, form_data, 'selling_price', 'Selling price')
    if mrp is not None and sp is not None and 'mrp' not in errors and sp > mrp:
        errors['selling_price'] = 'Selling price cannot exceed MRP.'

    # ── unit type ─────────────────────────────────────────────────
    unit_type = str(form_data.get('unit_type', 'piece') or 'piece').strip()
    if unit_type not in UNIT_TYPES:
        errors['unit_type'] = 'Unit type must be "piece" or "weight".'

    # ── stock ─────────────────────────────────────────────────────
    stock = _decimal(form_data.get('stock_quantity', '0') or '0')
    if stock is None:
        errors['stock_quantity'] = 'Stock must be a number.'
    elif stock < 0:
        errors['stock_quantity'] = 'Stock cannot be negative.'
    elif unit_type == 'piece' and stock != stock.to_integral_value():
        errors['stock_quantity'] = 'Stock must be a whole number for piece items.'

    # ── gst_rate ──────────────────────────────────────────────────
    gst = _decimal(form_data.get('gst_rate', '0') or '0')
    if gst is None:
        errors['gst_rate'] = 'GST must be a number.'
    elif not (0 <= gst <= 100):
        errors['gst_rate'] = 'GST must be between 0 and 100.'

    # ── free item link ────────────────────────────────────────────
    free_raw = str(form_data.get('free_product_id', '') or '').strip()
    if free_raw:
        try:
            int(free_raw)
        except ValueError:
            errors['free_product_id'] = 'Free product must be a product id.'

    return errors


def parse_product_form(form_data: dict) -> dict:
    """
    Convert validated raw values to column types.
    Call only after validate_product_form returns no errors.
    """
    sp_raw   = str(form_data.get('selling_price', '') or '').strip()
    free_raw = str(form_data.get('free_product_id', '') or '').strip()
    return {
        'name':               str(form_data.get('name', '')).strip(),
        'barcode':            str(form_data.get('barcode', '')).strip(),
        'mrp':                Decimal(str(form_data.get('mrp')).strip()),
        'cost_price':         Decimal(str(form_data.get('cost_price', '0') or '0').strip()),
        'selling_price':      Decimal(sp_raw) if sp_raw else None,
        'stock_quantity':     Decimal(str(form_data.get('stock_quantity', '0') or '0').strip()),
        'gst_rate':           Decimal(str(form_data.get('gst_rate', '0') or '0').strip()),
        'unit_type':          str(form_data.get('unit_type', 'piece') or 'piece').strip(),
        'unit_value':         Decimal(str(form_data.get('unit_value', '1') or '1').strip()),
        'is_gst_inclusive':   form_data.get('is_gst_inclusive', True) in TRUTHY,
        'free_product_id':    int(free_raw) if free_raw else None,
        'free_item_quantity': Decimal(str(form_data.get('free_item_quantity', '1') or '1').strip()),
    }


def validate_stock_in(form_data: dict, unit_type: str = 'piece') -> dict:
    """Quantity received must be positive (whole for piece items)."""
    errors = {}
    qty = _decimal(form_data.get('quantity', ''))
    if qty is None:
        errors['quantity'] = 'Quantity must be a number.'
    elif qty <= 0:
        errors['quantity'] = 'Quantity must be greater than zero.'
    elif unit_type == 'piece' and qty != qty.to_integral_value():
        errors['quantity'] = 'Quantity must be a whole number for piece items.'
    return errors
