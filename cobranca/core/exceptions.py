"""Exception hierarchy for the collections engine."""


class CobrancaError(Exception):
    """Base exception for all engine errors."""


class NotFoundError(CobrancaError):
    """
    Raised when a record is absent, belongs to another company or is soft-deleted.
    The three cases are deliberately indistinguishable to the caller.
    """


class InvalidInstallmentStateError(CobrancaError):
    """Raised when the installment's stored status does not allow the requested transition."""


class PaymentExceedsBalanceError(CobrancaError):
    """Raised when a payment would push amount_paid above the installment amount."""
