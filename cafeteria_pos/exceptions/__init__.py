"""Custom exceptions for the cafeteria POS core."""


class PosError(Exception):
    """Base exception for all application errors."""
    def __init__(self, message="An internal error occurred", status_code=500, payload=None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.payload = payload

    def to_dict(self):
        rv = dict(self.payload or ())
        rv['message'] = self.message
        rv['status'] = 'error'
        return rv


class BusinessLogicError(PosError):
    """Exception raised for business logic violations."""
    def __init__(self, message, status_code=400, payload=None):
        super().__init__(message, status_code, payload)


class NotFoundError(PosError):
    """Exception raised when a resource is not found."""
    def __init__(self, message="Resource not found", payload=None):
        super().__init__(message, 404, payload)


class InvalidProductError(BusinessLogicError):
    """Raised when a product definition is rejected by the catalog."""
    def __init__(self, message, product_id=None):
        super().__init__(message, payload={'product_id': product_id})
        self.product_id = product_id


class UnknownProductError(NotFoundError):
    """Raised when a product id is not in the catalog."""
    def __init__(self, product_id):
        super().__init__(f"Unknown product: {product_id!r}", payload={'product_id': product_id})
        self.product_id = product_id


class InvalidQuantityError(BusinessLogicError):
    """Raised for zero, negative or non-integer quantities."""
    def __init__(self, quantity, message=None):
        super().__init__(message or f"Invalid quantity: {quantity!r}", payload={'quantity': quantity})
        self.quantity = quantity


class InvalidTaxRateError(BusinessLogicError):
    def __init__(self, tax_rate):
        super().__init__(f"Invalid tax rate: {tax_rate!r}", payload={'tax_rate': str(tax_rate)})
        self.tax_rate = tax_rate


class EmptyCartError(BusinessLogicError):
    def __init__(self, message="Cart is empty"):
        super().__init__(message)


class CartNotEditableError(BusinessLogicError):
    """Raised when a cart that is not being built is mutated or committed."""
    def __init__(self, status):
        status_str = status.value if hasattr(status, 'value') else str(status)
        super().__init__(f"Cart is not editable in state {status_str}", status_code=409,
                         payload={'cart_status': status_str})
        self.status = status


class InsufficientStockError(BusinessLogicError):
    """
    Raised when an operation fails due to lack of stock.

    ``product_id``, ``requested`` and ``available`` describe the first short
    product; ``shortages`` lists every short product as
    ``(product_id, requested, available)`` tuples.
    """
    def __init__(self, product_id, requested, available, shortages=None):
        message = (f"Insufficient stock for {product_id}: "
                   f"requested {requested}, available {available}")
        self.product_id = product_id
        self.requested = requested
        self.available = available
        self.shortages = list(shortages or [(product_id, requested, available)])
        super().__init__(message, status_code=409, payload={
            'shortages': [
                {'product_id': pid, 'requested': req, 'available': avail}
                for pid, req, avail in self.shortages
            ]
        })


class DuplicateSaleError(BusinessLogicError):
    def __init__(self, sale_id):
        super().__init__(f"Sale {sale_id} is already recorded", status_code=409,
                         payload={'sale_id': sale_id})
        self.sale_id = sale_id


class UnauthorizedError(PosError):
    """Raised when a cashier acts on a cart they do not own."""
    def __init__(self, message="Unauthorized access"):
        super().__init__(message, 403)


class PersistenceUnavailableError(PosError):
    """Raised when the persistence collaborator fails; the operation is aborted."""
    def __init__(self, operation, cause=None):
        message = f"Persistence unavailable during {operation}"
        if cause is not None:
            message = f"{message}: {cause}"
        super().__init__(message, 503, payload={'operation': operation})
        self.operation = operation
        self.cause = cause
