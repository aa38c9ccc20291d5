"""
Payment provider adapters.

Stripe in production; an in-memory mock when ENABLE_STRIPE_PAYMENTS is false
or no STRIPE_SECRET_KEY is set. Every call that moves money carries an
idempotency key so re-delivered settlement events cannot double charge.
"""
import logging
import uuid
from dataclasses import dataclass, field
from functools import lru_cache
from typing import Dict, List, Optional, Protocol

import stripe

from chargeup.core.config import settings

logger = logging.getLogger(__name__)


class PaymentProviderError(Exception):
    """Provider rejected or could not complete a request"""

    def __init__(self, message: str, transient: bool = False, decline_code: Optional[str] = None):
        self.message = message
        self.transient = transient
        self.decline_code = decline_code
        super().__init__(message)


@dataclass
class Authorization:
    id: str
    amount_cents: int
    status: str = "requires_capture"


@dataclass
class CaptureReceipt:
    payment_intent_id: str
    charge_id: Optional[str]
    amount_cents: int


@dataclass
class PaymentMethodRef:
    """The driver's stored card, optionally attached to a Stripe customer"""
    payment_method_id: str
    customer_id: Optional[str] = None


class PaymentProvider(Protocol):
    def create_authorization(
        self,
        payment_method: PaymentMethodRef,
        amount_cents: int,
        idempotency_key: str,
        metadata: Optional[Dict[str, str]] = None,
    ) -> Authorization: ...

    def update_and_capture(
        self,
        authorization: Authorization,
        amount_cents: int,
        idempotency_key: str,
        payment_method: Optional[PaymentMethodRef] = None,
        metadata: Optional[Dict[str, str]] = None,
    ) -> CaptureReceipt: ...

    def transfer(
        self,
        destination: str,
        amount_cents: int,
        source_ref: Optional[str],
        session_id: str,
    ) -> str: ...

    def cancel_authorization(self, authorization_id: str) -> None: ...

    def retrieve_authorization(self, authorization_id: str) -> Authorization: ...


def _provider_error(e: "stripe.StripeError") -> PaymentProviderError:
    transient = isinstance(e, (stripe.APIConnectionError, stripe.RateLimitError))
    decline_code = getattr(e, "code", None)
    message = getattr(e, "user_message", None) or str(e)
    return PaymentProviderError(message, transient=transient, decline_code=decline_code)


class StripePaymentProvider:
    """Stripe PaymentIntents (manual capture) plus Connect transfers"""

    def __init__(self, api_key: str, currency: str = "usd"):
        stripe.api_key = api_key
        self.currency = currency
        logger.info("Stripe payment provider initialized with live key")

    def create_authorization(self, payment_method, amount_cents, idempotency_key, metadata=None):
        params = {
            "amount": amount_cents,
            "currency": self.currency,
            "payment_method": payment_method.payment_method_id,
            "capture_method": "manual",
            "confirm": True,
            "off_session": True,
            "metadata": metadata or {},
        }
        if payment_method.customer_id:
            params["customer"] = payment_method.customer_id
        try:
            intent = stripe.PaymentIntent.create(idempotency_key=idempotency_key, **params)
        except stripe.StripeError as e:
            logger.error(f"Stripe authorization failed: {e}")
            raise _provider_error(e)
        return Authorization(id=intent.id, amount_cents=intent.amount, status=intent.status)

    def retrieve_authorization(self, authorization_id):
        try:
            intent = stripe.PaymentIntent.retrieve(authorization_id)
        except stripe.StripeError as e:
            raise _provider_error(e)
        amount = getattr(intent, "amount_capturable", None) or intent.amount
        return Authorization(id=intent.id, amount_cents=amount, status=intent.status)

    def update_and_capture(self, authorization, amount_cents, idempotency_key, payment_method=None, metadata=None):
        """
        Capture the final amount. Within the hold this is a partial capture;
        above it the hold is released and a new confirmed intent is charged
        for the full amount.
        """
        try:
            if amount_cents <= authorization.amount_cents:
                intent = stripe.PaymentIntent.capture(
                    authorization.id,
                    amount_to_capture=amount_cents,
                    idempotency_key=idempotency_key,
                )
            else:
                if payment_method is None:
                    raise PaymentProviderError("Amount exceeds the authorization and no card is on file")
                self.cancel_authorization(authorization.id)
                params = {
                    "amount": amount_cents,
                    "currency": self.currency,
                    "payment_method": payment_method.payment_method_id,
                    "confirm": True,
                    "off_session": True,
                    "metadata": metadata or {},
                }
                if payment_method.customer_id:
                    params["customer"] = payment_method.customer_id
                intent = stripe.PaymentIntent.create(idempotency_key=idempotency_key, **params)
        except stripe.StripeError as e:
            logger.error(f"Stripe capture failed for {authorization.id}: {e}")
            raise _provider_error(e)

        if intent.status != "succeeded":
            raise PaymentProviderError(f"Payment {intent.id} not captured (status={intent.status})")

        return CaptureReceipt(
            payment_intent_id=intent.id,
            charge_id=getattr(intent, "latest_charge", None),
            amount_cents=getattr(intent, "amount_received", None) or amount_cents,
        )

    def transfer(self, destination, amount_cents, source_ref, session_id):
        params = {
            "amount": amount_cents,
            "currency": self.currency,
            "destination": destination,
            "transfer_group": session_id,
            "metadata": {"session_id": session_id},
        }
        if source_ref:
            params["source_transaction"] = source_ref
        try:
            transfer = stripe.Transfer.create(idempotency_key=f"transfer_{session_id}", **params)
        except stripe.StripeError as e:
            logger.error(f"Stripe transfer to {destination} failed for session {session_id}: {e}")
            raise _provider_error(e)
        logger.info(f"Created Stripe transfer {transfer.id} for session {session_id}")
        return transfer.id

    def cancel_authorization(self, authorization_id):
        try:
            stripe.PaymentIntent.cancel(authorization_id)
        except stripe.InvalidRequestError as e:
            # Already captured or canceled
            logger.info(f"Cancel of {authorization_id} skipped: {e}")
        except stripe.StripeError as e:
            raise _provider_error(e)


@dataclass
class MockPaymentProvider:
    """
    In-memory provider for development and tests.

    Repeated calls with the same idempotency key return the first result,
    matching Stripe's behaviour.
    """
    declined_payment_methods: set = field(default_factory=set)
    failing_destinations: set = field(default_factory=set)
    authorizations: Dict[str, Authorization] = field(default_factory=dict)
    captures: List[CaptureReceipt] = field(default_factory=list)
    transfers: List[dict] = field(default_factory=list)
    canceled: List[str] = field(default_factory=list)
    _idempotent: Dict[str, object] = field(default_factory=dict)

    def create_authorization(self, payment_method, amount_cents, idempotency_key, metadata=None):
        if idempotency_key in self._idempotent:
            return self._idempotent[idempotency_key]
        if payment_method.payment_method_id in self.declined_payment_methods:
            raise PaymentProviderError("Your card was declined.", decline_code="card_declined")
        authorization = Authorization(id=f"pi_mock_{uuid.uuid4().hex[:16]}", amount_cents=amount_cents)
        self.authorizations[authorization.id] = authorization
        self._idempotent[idempotency_key] = authorization
        logger.info(f"[MOCK] Authorized {amount_cents} cents as {authorization.id}")
        return authorization

    def retrieve_authorization(self, authorization_id):
        authorization = self.authorizations.get(authorization_id)
        if authorization is None:
            raise PaymentProviderError(f"No such payment intent: {authorization_id}")
        return authorization

    def update_and_capture(self, authorization, amount_cents, idempotency_key, payment_method=None, metadata=None):
        if idempotency_key in self._idempotent:
            return self._idempotent[idempotency_key]
        stored = self.authorizations.get(authorization.id)
        if stored is not None and stored.status != "requires_capture":
            raise PaymentProviderError(f"Payment {authorization.id} cannot be captured (status={stored.status})")
        if stored is not None:
            stored.status = "succeeded"
        receipt = CaptureReceipt(
            payment_intent_id=authorization.id,
            charge_id=f"ch_mock_{uuid.uuid4().hex[:16]}",
            amount_cents=amount_cents,
        )
        self.captures.append(receipt)
        self._idempotent[idempotency_key] = receipt
        logger.info(f"[MOCK] Captured {amount_cents} cents on {authorization.id}")
        return receipt

    def transfer(self, destination, amount_cents, source_ref, session_id):
        key = f"transfer_{session_id}"
        if key in self._idempotent:
            return self._idempotent[key]
        if destination in self.failing_destinations:
            raise PaymentProviderError(f"Destination account {destination} cannot receive transfers")
        transfer_id = f"tr_mock_{uuid.uuid4().hex[:16]}"
        self.transfers.append({
            "id": transfer_id,
            "destination": destination,
            "amount_cents": amount_cents,
            "source_transaction": source_ref,
            "transfer_group": session_id,
        })
        self._idempotent[key] = transfer_id
        logger.info(f"[MOCK] Transferred {amount_cents} cents to {destination} for session {session_id}")
        return transfer_id

    def cancel_authorization(self, authorization_id):
        stored = self.authorizations.get(authorization_id)
        if stored is not None and stored.status == "requires_capture":
            stored.status = "canceled"
        self.canceled.append(authorization_id)
        logger.info(f"[MOCK] Canceled authorization {authorization_id}")


@lru_cache
def get_payment_provider() -> PaymentProvider:
    """Process-wide provider; Stripe only when payments are live."""
    if settings.payments_live:
        return StripePaymentProvider(settings.STRIPE_SECRET_KEY, settings.STRIPE_CURRENCY)
    logger.info("Stripe payments disabled, using mock payment provider")
    return MockPaymentProvider()
