"""Custom exceptions for the farm store application."""


class FarmStoreError(Exception):
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


class BusinessLogicError(FarmStoreError):
    """Exception raised for business logic violations."""
    def __init__(self, message, status_code=400, payload=None):
        super().__init__(message, status_code, payload)


class NotFoundError(FarmStoreError):
    """Exception raised when a resource is not found."""
    def __init__(self, message="Resource not found", payload=None):
        super().__init__(message, 404, payload)


class UnauthorizedError(FarmStoreError):
    """Raised when a user lacks permission for an action."""
    def __init__(self, message="Unauthorized access"):
        super().__init__(message, 403)


class EmptyCartError(BusinessLogicError):
    """Raised when checkout is attempted with no cart lines."""
    def __init__(self, message="Your cart is empty"):
        super().__init__(message, status_code=400, payload={'code': 'empty_cart'})


class InsufficientStockError(BusinessLogicError):
    """Raised when adding to the cart would exceed the stock ceiling."""
    def __init__(self, product_name, requested, available):
        self.product_name = product_name
        self.requested = requested
        self.available = available
        message = f"Insufficient stock for {product_name}: requested {requested}, available {available}"
        super().__init__(
            message,
            status_code=409,
            payload={'code': 'insufficient_stock', 'requested': requested, 'available': available}
        )


class InsufficientPaymentError(BusinessLogicError):
    """Raised when cash tendered is below the grand total."""
    def __init__(self, total, tendered):
        self.total = total
        self.tendered = tendered
        message = f"Please enter an amount of at least {total}"
        super().__init__(
            message,
            status_code=400,
            payload={'code': 'insufficient_payment', 'total': total, 'tendered': tendered}
        )


class InvalidPhoneError(BusinessLogicError):
    """Raised when an M-Pesa phone number does not validate."""
    def __init__(self, phone_number):
        super().__init__(
            'Invalid number. Use: 0712345678 or 254712345678',
            status_code=400,
            payload={'code': 'invalid_phone', 'phone_number': phone_number}
        )


class StockConflictError(FarmStoreError):
    """Raised when the authoritative stock decrement finds too little stock."""
    def __init__(self, product_id, variant_id=None, requested=None):
        self.product_id = product_id
        self.variant_id = variant_id
        self.requested = requested
        message = 'Stock changed while checking out. Please review your cart.'
        super().__init__(
            message,
            status_code=409,
            payload={'code': 'stock_conflict', 'product_id': product_id, 'variant_id': variant_id}
        )


class SettlementError(FarmStoreError):
    """Opaque failure while persisting an order."""
    def __init__(self, message="Error processing payment. Please try again."):
        super().__init__(message, status_code=502, payload={'code': 'settlement_failed', 'retry': True})


class MpesaError(FarmStoreError):
    """Raised by the M-Pesa gateway client."""
    def __init__(self, message="M-Pesa failed"):
        super().__init__(message, status_code=502)
