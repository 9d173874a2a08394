"""Domain-specific exceptions"""


class DomainException(Exception):
    """Base exception for domain layer"""

    pass


class EmptyCart(DomainException):
    """No items to settle for this client and tier"""

    pass


class CouponError(DomainException):
    """User-correctable coupon input error; the quote is left untouched"""

    pass


class EmptyCoupon(CouponError):
    """Coupon code was blank"""

    pass


class InvalidCoupon(CouponError):
    """Coupon code is not in the coupon table"""

    pass


class CouponMinimumNotMet(CouponError):
    """Coupon requires a higher monthly spend than the cart carries"""

    pass


class CouponLookupFailed(DomainException):
    """Coupon table could not be reached"""

    pass


class PaymentSetupFailed(DomainException):
    """Authorization request failed (network, processor or timeout); retryable"""

    pass


class PaymentDeclined(DomainException):
    """Processor rejected the capture; retry with a different method"""

    pass


class InvalidCheckoutTransition(DomainException):
    """Event is not legal in the current checkout state"""

    def __init__(self, state: str, event: str):
        super().__init__(f"Cannot {event} while checkout is {state}")
        self.state = state
        self.event = event


class ClientNotFound(DomainException):
    """No client record for the checkout's client id"""

    pass
