"""
Typed exception hierarchy for the POS invoice core.

Every error carries a machine-readable ``code`` class attribute and its
context as attributes, so callers catch by type and render messages
through ``pos_kernel.messages.localize`` rather than parsing strings.

    PosCoreError (base)
    |
    +-- ValidationError
    |   +-- EmptyInvoiceError
    |   +-- MissingCustomerError
    |   +-- LineNotFoundError
    |   +-- InvalidQuantityError
    |   +-- InvalidAmountError
    |   +-- DiscountLimitExceededError
    |   +-- ItemNotFoundError
    |
    +-- GuardRejectionError
    |   +-- InsufficientStockError
    |   +-- BelowCostError
    |   +-- CreditLimitExceededError
    |
    +-- PersistenceFailureError
    |
    +-- FormatViolationError
    |   +-- TlvFieldTooLongError
    |   +-- TlvDecodeError
    |
    +-- SessionError
        +-- InvalidSessionTransitionError
        +-- CommitInFlightError
        +-- ConfirmationRequiredError

Recoverable categories (validation, guard, persistence) keep the invoice
draft open. ``FormatViolationError`` is a configuration defect: the
offending value must be fixed upstream, it is never truncated.

Approval-required is deliberately absent: it is an outcome
(``GuardStatus.APPROVAL_REQUIRED``), not a failure.
"""

from decimal import Decimal


class PosCoreError(Exception):
    """
    Base exception for all POS core errors.

    All subclasses must have a ``code`` class attribute.
    """

    code: str = "POS_CORE_ERROR"


# Validation


class ValidationError(PosCoreError):
    """Missing or invalid user input. The draft stays open."""

    code: str = "VALIDATION_ERROR"


class EmptyInvoiceError(ValidationError):
    """Checkout requested without a resolved line of positive quantity."""

    code: str = "EMPTY_INVOICE"

    def __init__(self) -> None:
        super().__init__("Invoice has no line with a resolved item and positive quantity")


class MissingCustomerError(ValidationError):
    """Credit invoice without a customer."""

    code: str = "MISSING_CUSTOMER"

    def __init__(self) -> None:
        super().__init__("A customer is required for a credit invoice")


class LineNotFoundError(ValidationError):
    """Line index does not exist on the invoice."""

    code: str = "LINE_NOT_FOUND"

    def __init__(self, index: int):
        self.index = index
        super().__init__(f"No invoice line at position {index}")


class InvalidQuantityError(ValidationError):
    """Quantity is not usable for a line."""

    code: str = "INVALID_QUANTITY"

    def __init__(self, quantity: Decimal, reason: str):
        self.quantity = quantity
        self.reason = reason
        super().__init__(f"Invalid quantity {quantity}: {reason}")


class InvalidAmountError(ValidationError):
    """A price or discount is negative."""

    code: str = "INVALID_AMOUNT"

    def __init__(self, field_name: str, amount: Decimal):
        self.field_name = field_name
        self.amount = amount
        super().__init__(f"{field_name} cannot be negative: {amount}")


class ItemNotFoundError(ValidationError):
    """No catalogue item matches the code, barcode or name."""

    code: str = "ITEM_NOT_FOUND"

    def __init__(self, query: str):
        self.query = query
        super().__init__(f"No item matches '{query}'")


class DiscountLimitExceededError(ValidationError):
    """Discount exceeds the configured maximum percentage."""

    code: str = "DISCOUNT_LIMIT_EXCEEDED"

    def __init__(self, discount: Decimal, max_discount: Decimal, max_percentage: Decimal):
        self.discount = discount
        self.max_discount = max_discount
        self.max_percentage = max_percentage
        super().__init__(
            f"Discount {discount} exceeds {max_percentage}% limit ({max_discount})"
        )


# Guard rejections


class GuardRejectionError(PosCoreError):
    """A pre-commit invariant check failed."""

    code: str = "GUARD_REJECTION"


class InsufficientStockError(GuardRejectionError):
    """Requested quantity exceeds current stock."""

    code: str = "INSUFFICIENT_STOCK"

    def __init__(self, item_ref: str, stock: Decimal, quantity: Decimal):
        self.item_ref = item_ref
        self.stock = stock
        self.quantity = quantity
        super().__init__(
            f"Insufficient stock for {item_ref}: stock={stock}, requested={quantity}"
        )


class BelowCostError(GuardRejectionError):
    """Unit price is below the item's resolved cost."""

    code: str = "BELOW_COST"

    def __init__(self, item_ref: str, cost: Decimal, unit_price: Decimal):
        self.item_ref = item_ref
        self.cost = cost
        self.unit_price = unit_price
        super().__init__(
            f"Price {unit_price} for {item_ref} is below cost {cost}"
        )


class CreditLimitExceededError(GuardRejectionError):
    """Projected customer balance exceeds the credit limit."""

    code: str = "CREDIT_LIMIT_EXCEEDED"

    def __init__(self, projected_balance: Decimal, credit_limit: Decimal):
        self.projected_balance = projected_balance
        self.credit_limit = credit_limit
        self.excess = projected_balance - credit_limit
        super().__init__(
            f"Projected balance {projected_balance} exceeds credit limit {credit_limit}"
        )


# Persistence


class PersistenceFailureError(PosCoreError):
    """
    The invoice storage call failed.

    The draft is preserved; the user may retry manually. The core never
    retries on its own.
    """

    code: str = "PERSISTENCE_FAILURE"

    def __init__(self, operation: str, reason: str):
        self.operation = operation
        self.reason = reason
        super().__init__(f"Invoice {operation} failed: {reason}")


# Format violations


class FormatViolationError(PosCoreError):
    """Wire-format contract violated by caller-supplied data."""

    code: str = "FORMAT_VIOLATION"


class TlvFieldTooLongError(FormatViolationError):
    """A ZATCA TLV value does not fit in a single length byte."""

    code: str = "TLV_FIELD_TOO_LONG"

    def __init__(self, tag: int, byte_length: int):
        self.tag = tag
        self.byte_length = byte_length
        super().__init__(
            f"TLV tag {tag} value is {byte_length} bytes; maximum is 255"
        )


class TlvDecodeError(FormatViolationError):
    """A TLV byte sequence is truncated or not valid Base64/UTF-8."""

    code: str = "TLV_DECODE_ERROR"

    def __init__(self, offset: int, reason: str):
        self.offset = offset
        self.reason = reason
        super().__init__(f"Malformed TLV at byte {offset}: {reason}")


# Session state machine


class SessionError(PosCoreError):
    """Invoice session misuse."""

    code: str = "SESSION_ERROR"


class InvalidSessionTransitionError(SessionError):
    """Operation not allowed from the session's current state."""

    code: str = "INVALID_SESSION_TRANSITION"

    def __init__(self, from_state: str, action: str):
        self.from_state = from_state
        self.action = action
        super().__init__(f"Cannot {action} from state {from_state}")


class CommitInFlightError(SessionError):
    """Checkout cannot be abandoned once the commit request was sent."""

    code: str = "COMMIT_IN_FLIGHT"

    def __init__(self, session_id: str):
        self.session_id = session_id
        super().__init__(f"Commit already dispatched for session {session_id}")


class ConfirmationRequiredError(SessionError):
    """A destructive or mode-changing action was not confirmed."""

    code: str = "CONFIRMATION_REQUIRED"

    def __init__(self, action: str):
        self.action = action
        super().__init__(f"Action '{action}' requires confirmation")
