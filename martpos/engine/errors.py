"""
martpos/engine/errors.py
-------------------------
Typed checkout failures.

Routes map these to HTTP status codes via the `status_code` attribute;
the message is safe to show to the cashier.
"""


class CheckoutError(Exception):
    """Base class for every failure surfaced by billing/checkout."""
    status_code = 400

    def __init__(self, message):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict:
        return {'error': self.message, 'kind': type(self).__name__}


class ValidationError(CheckoutError):
    """Input that has no safe default (empty cart, bad quantity, short cash)."""
    status_code = 422


class InsufficientStockError(CheckoutError):
    """A line needs more stock than the product has at commit time."""
    status_code = 409

    def __init__(self, product_id, product_name, available, requested):
        super().__init__(
            f'Insufficient stock for "{product_name}". '
            f'Available: {available}, requested: {requested}.'
        )
        self.product_id = product_id
        self.available  = available
        self.requested  = requested

    def to_dict(self) -> dict:
        data = super().to_dict()
        data.update(product_id=self.product_id,
                    available=str(self.available),
                    requested=str(self.requested))
        return data


class ConcurrencyConflictError(CheckoutError):
    """Someone else changed the same rows; recompute from fresh reads and resubmit."""
    status_code = 409


class NotFoundError(CheckoutError):
    """A referenced product, customer or sale no longer exists."""
    status_code = 404

    def __init__(self, kind, ident):
        super().__init__(f'{kind.capitalize()} {ident} no longer exists.')
        self.kind  = kind
        self.ident = ident
