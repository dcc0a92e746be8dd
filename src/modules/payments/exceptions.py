"""Payment domain exceptions.

Raised by the payment verification gate and the refund engine.  Only
``ExternalVerifierFailure`` is retryable: the others are terminal for the
given input.
"""

from __future__ import annotations

from shared.domain.exceptions import DomainError


class AlreadyPaid(DomainError):
    code = "ALREADY_PAID"
    default_message = "Order is already paid."


class AlreadyRefunded(DomainError):
    code = "ALREADY_REFUNDED"
    default_message = "Order is already refunded."


class AmountExceedsTotal(DomainError):
    code = "AMOUNT_EXCEEDS_TOTAL"
    default_message = "Refund amount cannot exceed the order total."


class ExternalVerifierFailure(DomainError):
    """The payment verifier was unreachable or errored."""

    code = "EXTERNAL_VERIFIER_FAILURE"
    retryable = True
    default_message = "Payment verifier is unavailable."
