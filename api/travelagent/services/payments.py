"""
Payment Gateway Adapters - abstract interface + Stripe implementation
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Dict, Optional
import asyncio
import json
import logging
import secrets

import stripe

from travelagent.config import settings
from travelagent.exceptions import PaymentGatewayError, RefundAlreadyIssuedError, ValidationError

logger = logging.getLogger(__name__)


def to_minor_units(amount) -> int:
    """Major units (dollars) to minor units (cents)"""
    return int((Decimal(str(amount)) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def from_minor_units(amount: int) -> Decimal:
    return (Decimal(amount) / 100).quantize(Decimal("0.01"))


@dataclass
class PaymentIntent:
    """Processor-side record of an in-progress charge"""
    id: str
    client_secret: str
    status: str
    amount: Decimal
    currency: str
    metadata: Dict[str, str] = field(default_factory=dict)


@dataclass
class RefundResult:
    id: str
    payment_intent_id: str
    status: str
    amount: Optional[Decimal] = None


class PaymentGateway(ABC):
    """
    Abstract payment processor.

    Amounts are passed in major units and converted to minor units at the
    boundary. Implementations raise PaymentGatewayError on any failure.
    """

    name: str = "base"

    @abstractmethod
    async def create_intent(
        self,
        amount: Decimal,
        currency: str,
        metadata: Dict[str, str],
        idempotency_key: Optional[str] = None,
    ) -> PaymentIntent:
        """Create a payment intent for the given amount"""
        pass

    @abstractmethod
    async def retrieve_intent(self, intent_id: str) -> PaymentIntent:
        """Fetch an existing payment intent"""
        pass

    @abstractmethod
    async def cancel_intent(self, intent_id: str) -> PaymentIntent:
        """Cancel an intent so it can no longer be paid"""
        pass

    @abstractmethod
    async def refund(
        self,
        intent_id: str,
        amount: Optional[Decimal] = None,
        idempotency_key: Optional[str] = None,
    ) -> RefundResult:
        """Refund a captured payment, fully when amount is None.

        Raises RefundAlreadyIssuedError when the charge was already refunded.
        """
        pass

    def construct_event(self, payload: bytes, signature: Optional[str]) -> Dict[str, Any]:
        """Verify and parse a webhook payload"""
        raise NotImplementedError(f"{self.name} does not support webhooks")


class StripePaymentGateway(PaymentGateway):
    """
    Stripe adapter. The SDK is synchronous, so calls run in a worker thread
    to keep the event loop free.
    """

    name = "stripe"

    def __init__(self, api_key: str = settings.STRIPE_SECRET_KEY, webhook_secret: str = settings.STRIPE_WEBHOOK_SECRET):
        self.api_key = api_key
        self.webhook_secret = webhook_secret

    @staticmethod
    def _to_intent(obj) -> PaymentIntent:
        return PaymentIntent(
            id=obj["id"],
            client_secret=obj["client_secret"],
            status=obj["status"],
            amount=from_minor_units(obj["amount"]),
            currency=obj["currency"],
            metadata=dict(obj["metadata"] or {}),
        )

    async def create_intent(
        self,
        amount: Decimal,
        currency: str,
        metadata: Dict[str, str],
        idempotency_key: Optional[str] = None,
    ) -> PaymentIntent:
        try:
            intent = await asyncio.to_thread(
                stripe.PaymentIntent.create,
                api_key=self.api_key,
                amount=to_minor_units(amount),
                currency=currency,
                metadata=metadata,
                automatic_payment_methods={"enabled": True},
                idempotency_key=idempotency_key,
            )
        except Exception as e:
            logger.error(f"Stripe create payment intent failed: {e}")
            raise PaymentGatewayError("Failed to create payment intent", e)

        logger.info(f"Stripe payment intent created: {intent['id']}")
        return self._to_intent(intent)

    async def retrieve_intent(self, intent_id: str) -> PaymentIntent:
        try:
            intent = await asyncio.to_thread(
                stripe.PaymentIntent.retrieve, intent_id, api_key=self.api_key
            )
        except Exception as e:
            logger.error(f"Stripe retrieve payment intent {intent_id} failed: {e}")
            raise PaymentGatewayError(f"Failed to retrieve payment intent {intent_id}", e)
        return self._to_intent(intent)

    async def cancel_intent(self, intent_id: str) -> PaymentIntent:
        try:
            intent = await asyncio.to_thread(
                stripe.PaymentIntent.cancel, intent_id, api_key=self.api_key
            )
        except Exception as e:
            logger.error(f"Stripe cancel payment intent {intent_id} failed: {e}")
            raise PaymentGatewayError(f"Failed to cancel payment intent {intent_id}", e)

        logger.info(f"Stripe payment intent cancelled: {intent_id}")
        return self._to_intent(intent)

    async def refund(
        self,
        intent_id: str,
        amount: Optional[Decimal] = None,
        idempotency_key: Optional[str] = None,
    ) -> RefundResult:
        params: Dict[str, Any] = {"payment_intent": intent_id}
        if amount is not None:
            params["amount"] = to_minor_units(amount)

        try:
            refund = await asyncio.to_thread(
                stripe.Refund.create,
                api_key=self.api_key,
                idempotency_key=idempotency_key,
                **params,
            )
        except stripe.InvalidRequestError as e:
            if e.code == "charge_already_refunded":
                logger.warning(f"Stripe reports {intent_id} already refunded")
                raise RefundAlreadyIssuedError(f"Payment intent {intent_id} already refunded", e)
            logger.error(f"Stripe refund for {intent_id} failed: {e}")
            raise PaymentGatewayError(f"Failed to refund payment intent {intent_id}", e)
        except Exception as e:
            logger.error(f"Stripe refund for {intent_id} failed: {e}")
            raise PaymentGatewayError(f"Failed to refund payment intent {intent_id}", e)

        logger.info(f"Stripe refund {refund['id']} created for {intent_id}")
        return RefundResult(
            id=refund["id"],
            payment_intent_id=intent_id,
            status=refund["status"],
            amount=from_minor_units(refund["amount"]),
        )

    def construct_event(self, payload: bytes, signature: Optional[str]) -> Dict[str, Any]:
        if not self.webhook_secret:
            raise ValidationError("Webhook secret is not configured")
        try:
            return stripe.Webhook.construct_event(payload, signature, self.webhook_secret)
        except ValueError as e:
            raise ValidationError(f"Invalid webhook payload: {e}")
        except stripe.SignatureVerificationError as e:
            raise ValidationError(f"Invalid webhook signature: {e}")


class MockPaymentGateway(PaymentGateway):
    """
    In-memory gateway used when no Stripe key is configured (local
    development) and in tests. Failures can be switched on per operation.
    """

    name = "mock"

    def __init__(self):
        self.intents: Dict[str, PaymentIntent] = {}
        self.refunds: Dict[str, RefundResult] = {}
        self.fail_create = False
        self.fail_retrieve = False
        self.fail_refund = False
        self.fail_cancel = False
        # refund goes through but the response is lost, as on a timeout
        self.lose_refund_response = False
        self.create_calls = 0
        self.refund_calls = 0
        self._refunds_by_key: Dict[str, RefundResult] = {}

    async def create_intent(
        self,
        amount: Decimal,
        currency: str,
        metadata: Dict[str, str],
        idempotency_key: Optional[str] = None,
    ) -> PaymentIntent:
        self.create_calls += 1
        if self.fail_create:
            raise PaymentGatewayError("Mock gateway failure on create_intent")

        intent_id = f"pi_mock_{secrets.token_hex(8)}"
        intent = PaymentIntent(
            id=intent_id,
            client_secret=f"{intent_id}_secret_{secrets.token_hex(8)}",
            status="requires_payment_method",
            amount=from_minor_units(to_minor_units(amount)),
            currency=currency,
            metadata=dict(metadata),
        )
        self.intents[intent_id] = intent
        logger.info(f"[MOCK PAYMENT] Intent {intent_id} for {intent.amount} {currency}")
        return intent

    async def retrieve_intent(self, intent_id: str) -> PaymentIntent:
        if self.fail_retrieve:
            raise PaymentGatewayError("Mock gateway failure on retrieve_intent")
        try:
            return self.intents[intent_id]
        except KeyError:
            raise PaymentGatewayError(f"No such payment intent: {intent_id}")

    async def cancel_intent(self, intent_id: str) -> PaymentIntent:
        if self.fail_cancel:
            raise PaymentGatewayError("Mock gateway failure on cancel_intent")
        intent = await self.retrieve_intent(intent_id)
        intent.status = "canceled"
        logger.info(f"[MOCK PAYMENT] Intent {intent_id} cancelled")
        return intent

    async def refund(
        self,
        intent_id: str,
        amount: Optional[Decimal] = None,
        idempotency_key: Optional[str] = None,
    ) -> RefundResult:
        self.refund_calls += 1
        if self.fail_refund:
            raise PaymentGatewayError("Mock gateway failure on refund")

        if idempotency_key in self._refunds_by_key:
            result = self._refunds_by_key[idempotency_key]
        elif any(r.payment_intent_id == intent_id for r in self.refunds.values()):
            raise RefundAlreadyIssuedError(f"Payment intent {intent_id} already refunded")
        else:
            result = RefundResult(
                id=f"re_mock_{secrets.token_hex(8)}",
                payment_intent_id=intent_id,
                status="succeeded",
                amount=amount,
            )
            self.refunds[result.id] = result
            if idempotency_key:
                self._refunds_by_key[idempotency_key] = result
            logger.info(f"[MOCK PAYMENT] Refund {result.id} for {intent_id}")

        if self.lose_refund_response:
            raise PaymentGatewayError("Mock gateway timeout on refund")
        return result

    def construct_event(self, payload: bytes, signature: Optional[str]) -> Dict[str, Any]:
        """Unsigned JSON events, local development only"""
        try:
            event = json.loads(payload)
        except (TypeError, ValueError) as e:
            raise ValidationError(f"Invalid webhook payload: {e}")
        if not isinstance(event, dict) or "type" not in event:
            raise ValidationError("Invalid webhook payload: missing event type")
        return event


def build_payment_gateway() -> PaymentGateway:
    """Stripe when a secret key is configured, otherwise the mock gateway"""
    if settings.STRIPE_SECRET_KEY:
        return StripePaymentGateway()
    logger.warning("STRIPE_SECRET_KEY not set, using mock payment gateway")
    return MockPaymentGateway()
