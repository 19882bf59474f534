# checkout/domain/errors.py
"""
Wyjatki domenowe checkoutu.
Kazdy niesie status_code i komunikat bezpieczny do pokazania klientowi,
router zamienia je na {success: false, message}.
"""


class CheckoutError(Exception):
    status_code = 400
    message = "Checkout failed"

    def __init__(self, message: str | None = None):
        super().__init__(message or self.message)
        self.message = message or self.message


class EmptyCart(CheckoutError):
    status_code = 400
    message = "Cart is empty"


class IncompletePayment(CheckoutError):
    status_code = 400

    def __init__(self, currency: str):
        super().__init__(f"Missing payment proof for currency group {currency}")
        self.currency = currency


class ItemUnavailable(CheckoutError):
    status_code = 400

    def __init__(self, product_ids: list):
        super().__init__("Some items in cart are no longer available")
        self.product_ids = list(product_ids)


class PaymentNotCompletedOrInvalid(CheckoutError):
    status_code = 402

    def __init__(self, currency: str, reason: str):
        super().__init__(f"Payment not completed or invalid for {currency}")
        self.currency = currency
        self.reason = reason


class DuplicatePayment(CheckoutError):
    status_code = 409

    def __init__(self, provider: str, reference: str):
        super().__init__("This payment has already been used for another order")
        self.provider = provider
        self.reference = reference


class InsufficientStock(CheckoutError):
    status_code = 409

    def __init__(self, product_id: int):
        super().__init__(f"Insufficient stock for product {product_id}")
        self.product_id = product_id


class CheckoutInProgress(CheckoutError):
    status_code = 409
    message = "Duplicate checkout request detected. Please wait a moment and try again."


class ConcurrencyConflict(CheckoutError):
    status_code = 409
    message = "Cart was modified by another request"


class NotFound(CheckoutError):
    status_code = 404
    message = "Not found"


class InvalidOperation(CheckoutError):
    status_code = 400
    message = "Operation not allowed"


class StorageError(CheckoutError):
    status_code = 500
    message = "Storage failure"


class PartiallyFailed(CheckoutError):
    """Commit failed after stock was touched and compensation did not fully apply."""

    status_code = 500

    def __init__(self, attempt_ref: str, reconciliation_id: int | None = None):
        super().__init__("Checkout failed and is pending reconciliation")
        self.attempt_ref = attempt_ref
        self.reconciliation_id = reconciliation_id


# provider

class ProviderError(CheckoutError):
    status_code = 502
    message = "Payment provider unavailable"

    def __init__(self, detail: str = ""):
        super().__init__()
        self.detail = detail


class ProviderVerificationFailed(ProviderError):
    """Network error, timeout or non-2xx from the provider."""


class ProviderInvalidResponse(ProviderError):
    """Provider answered with a body we could not interpret."""


class ProviderNotConfigured(ProviderError):
    message = "Payment provider is not configured on the server"


class OutOfStock(Exception):
    """Raised by StockService.reserve; orchestrator turns it into InsufficientStock."""

    def __init__(self, product_id: int, quantity: int):
        super().__init__(f"product {product_id} cannot cover quantity {quantity}")
        self.product_id = product_id
        self.quantity = quantity


class InvalidSignature(CheckoutError):
    status_code = 400
    message = "Invalid webhook signature"
