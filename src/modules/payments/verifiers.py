"""Pluggable payment verifiers.

The active implementation is chosen by the ``PAYMENT_VERIFIER`` setting
(dotted path).  Verifiers are called outside any database transaction and
may raise freely: the payment service turns every error into
``ExternalVerifierFailure``.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping, Optional, Protocol

import stripe
import structlog
from django.conf import settings
from django.core.exceptions import ImproperlyConfigured
from django.utils.module_loading import import_string

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class VerificationResult:
    valid: bool
    reason: str = ""


class IPaymentVerifier(Protocol):
    def verify(self, intent_ref: str, evidence: Mapping[str, Any]) -> VerificationResult: ...


class MockPaymentVerifier:
    """Development verifier.

    Accepts any transaction id except those starting with ``fail``, which
    lets tests and demos exercise the negative path.
    """

    declined_prefix = "fail"

    def verify(self, intent_ref: str, evidence: Mapping[str, Any]) -> VerificationResult:
        transaction_id = str(evidence.get("transaction_id") or "")
        if not transaction_id:
            return VerificationResult(valid=False, reason="missing transaction id")
        if transaction_id.startswith(self.declined_prefix):
            return VerificationResult(valid=False, reason="declined")
        return VerificationResult(valid=True)


class StripePaymentVerifier:
    """Asks Stripe about the PaymentIntent the customer paid.

    The checkout creates the Stripe PaymentIntent with
    ``metadata["payment_intent_ref"]`` set to our intent reference and the
    client submits the Stripe id as ``transaction_id``.  The verdict is
    positive only when Stripe reports that intent ``succeeded`` for the
    same reference.  Authentication, rate-limit and connection errors are
    left to propagate.
    """

    metadata_key = "payment_intent_ref"

    def __init__(self, api_key: Optional[str] = None) -> None:
        api_key = api_key if api_key is not None else settings.STRIPE_SECRET_KEY
        if not api_key:
            raise ImproperlyConfigured("STRIPE_SECRET_KEY is required by StripePaymentVerifier.")
        self._api_key = api_key

    def verify(self, intent_ref: str, evidence: Mapping[str, Any]) -> VerificationResult:
        transaction_id = str(evidence.get("transaction_id") or "")
        if not transaction_id:
            return VerificationResult(valid=False, reason="missing transaction id")

        log = logger.bind(intent_ref=intent_ref, transaction_id=transaction_id)
        try:
            payment = stripe.PaymentIntent.retrieve(transaction_id, api_key=self._api_key)
        except stripe.InvalidRequestError as exc:
            log.warning("payment.gateway_unknown_transaction", error=str(exc))
            return VerificationResult(valid=False, reason="unknown transaction")

        metadata = payment.get("metadata") or {}
        if metadata.get(self.metadata_key) != intent_ref:
            log.warning("payment.gateway_intent_mismatch")
            return VerificationResult(valid=False, reason="intent mismatch")

        status = payment.get("status")
        if status != "succeeded":
            log.info("payment.gateway_not_succeeded", gateway_status=status)
            return VerificationResult(valid=False, reason=f"payment {status}")
        return VerificationResult(valid=True)


def get_payment_verifier() -> IPaymentVerifier:
    return import_string(settings.PAYMENT_VERIFIER)()
