"""
Tests for the payment gateway adapters and the notification dispatcher
"""
from decimal import Decimal
from unittest.mock import AsyncMock, patch

import httpx
import pytest
import stripe
from sqlalchemy import select

from travelagent.exceptions import NotificationError, PaymentGatewayError, RefundAlreadyIssuedError, ValidationError
from travelagent.models import Notification
from travelagent.services.notifications import (
    BookingConfirmationEmail,
    EmailMessage,
    EmailSender,
    _is_transient,
    render_booking_confirmation,
)
from travelagent.services.payments import (
    MockPaymentGateway,
    StripePaymentGateway,
    from_minor_units,
    to_minor_units,
)


def test_minor_unit_conversion_rounds_half_up():
    assert to_minor_units(Decimal("2300.00")) == 230000
    assert to_minor_units(Decimal("0.005")) == 1
    assert to_minor_units("19.99") == 1999
    assert from_minor_units(230000) == Decimal("2300.00")


@pytest.mark.asyncio
async def test_stripe_create_intent_sends_minor_units():
    gateway = StripePaymentGateway(api_key="sk_test_123", webhook_secret="whsec_123")
    stripe_intent = {
        "id": "pi_123",
        "client_secret": "pi_123_secret_abc",
        "status": "requires_payment_method",
        "amount": 230000,
        "currency": "usd",
        "metadata": {"booking_id": "b-1"},
    }

    with patch("stripe.PaymentIntent.create", return_value=stripe_intent) as create:
        intent = await gateway.create_intent(
            Decimal("2300.00"), "usd", {"booking_id": "b-1"}, idempotency_key="booking-b-1-intent",
        )

    kwargs = create.call_args.kwargs
    assert kwargs["amount"] == 230000
    assert kwargs["api_key"] == "sk_test_123"
    assert kwargs["idempotency_key"] == "booking-b-1-intent"
    assert kwargs["automatic_payment_methods"] == {"enabled": True}
    assert intent.id == "pi_123"
    assert intent.amount == Decimal("2300.00")
    assert intent.metadata == {"booking_id": "b-1"}


@pytest.mark.asyncio
async def test_stripe_errors_become_gateway_errors():
    gateway = StripePaymentGateway(api_key="sk_test_123")

    with patch("stripe.Refund.create", side_effect=RuntimeError("card_declined")):
        with pytest.raises(PaymentGatewayError) as exc_info:
            await gateway.refund("pi_123")

    assert exc_info.value.dependency == "payments"
    assert isinstance(exc_info.value.original_error, RuntimeError)
    assert exc_info.value.status_code == 502


@pytest.mark.asyncio
async def test_stripe_refund_partial_amount():
    gateway = StripePaymentGateway(api_key="sk_test_123")
    refund = {"id": "re_1", "status": "succeeded", "amount": 5000}

    with patch("stripe.Refund.create", return_value=refund) as create:
        result = await gateway.refund("pi_123", amount=Decimal("50"), idempotency_key="refund-x-1")

    assert create.call_args.kwargs["payment_intent"] == "pi_123"
    assert create.call_args.kwargs["amount"] == 5000
    assert result.id == "re_1"
    assert result.amount == Decimal("50.00")


def test_stripe_webhook_requires_secret():
    with pytest.raises(ValidationError):
        StripePaymentGateway(api_key="sk_test_123", webhook_secret="").construct_event(b"{}", "sig")


def test_stripe_webhook_bad_signature():
    gateway = StripePaymentGateway(api_key="sk_test_123", webhook_secret="whsec_123")
    with pytest.raises(ValidationError):
        gateway.construct_event(b'{"type": "payment_intent.succeeded"}', "t=1,v1=bogus")


@pytest.mark.asyncio
async def test_mock_gateway_failure_switches():
    gateway = MockPaymentGateway()
    intent = await gateway.create_intent(Decimal("10"), "usd", {})
    assert (await gateway.retrieve_intent(intent.id)) is intent

    gateway.fail_retrieve = True
    with pytest.raises(PaymentGatewayError):
        await gateway.retrieve_intent(intent.id)


def test_confirmation_email_escapes_html():
    html = render_booking_confirmation(BookingConfirmationEmail(
        booking_number="TRV-261019-ABCDEF12",
        destination_name="<script>alert(1)</script>",
        start_date="November 18, 2026",
        end_date="November 25, 2026",
        total_formatted="$2,300.00",
    ))
    assert "<script>" not in html
    assert "&lt;script&gt;" in html
    assert "November 18, 2026 - November 25, 2026" in html


@pytest.mark.asyncio
async def test_unconfigured_sender_logs_to_outbox():
    sender = EmailSender(api_key="")
    await sender.send(EmailMessage(to="a@example.com", subject="Hi", html="<p>Hi</p>"))

    assert not sender.is_configured
    assert [m.to for m in sender.outbox] == ["a@example.com"]


@pytest.mark.asyncio
async def test_configured_sender_posts_sendgrid_payload():
    sender = EmailSender(api_key="SG.key", from_email="bookings@example.com")

    with patch.object(EmailSender, "_post", new=AsyncMock()) as post:
        await sender.send(EmailMessage(to="a@example.com", subject="Booking Confirmed", html="<p>ok</p>"))

    payload = post.call_args.args[0]
    assert payload["personalizations"] == [{"to": [{"email": "a@example.com"}]}]
    assert payload["from"] == {"email": "bookings@example.com"}
    assert payload["content"][0]["value"] == "<p>ok</p>"
    assert sender.outbox == []


@pytest.mark.asyncio
async def test_configured_sender_wraps_http_errors():
    sender = EmailSender(api_key="SG.key")

    with patch.object(EmailSender, "_post", new=AsyncMock(side_effect=httpx.ConnectError("refused"))):
        with pytest.raises(NotificationError):
            await sender.send(EmailMessage(to="a@example.com", subject="x", html="x"))


@pytest.mark.asyncio
async def test_create_notification_persists_row(notifier, session_factory, user):
    await notifier.create_notification(user.id, "BOOKING_CONFIRMED", "Booking Confirmed", "See you in Bali")

    async with session_factory() as session:
        [row] = (await session.execute(select(Notification))).scalars().all()
    assert row.user_id == user.id
    assert row.is_read is False
    assert row.booking_id is None


@pytest.mark.asyncio
async def test_sendgrid_client_errors_are_not_retried():
    sender = EmailSender(api_key="SG.bad")
    rejected = httpx.Response(401, request=httpx.Request("POST", sender.api_url))

    with patch.object(httpx.AsyncClient, "post", new=AsyncMock(return_value=rejected)) as post:
        with pytest.raises(NotificationError):
            await sender.send(EmailMessage(to="a@example.com", subject="x", html="x"))

    assert post.call_count == 1


def test_only_transient_email_errors_are_retried():
    request = httpx.Request("POST", "https://api.sendgrid.com/v3/mail/send")

    def status_error(code):
        response = httpx.Response(code, request=request)
        return httpx.HTTPStatusError("error", request=request, response=response)

    assert _is_transient(httpx.ConnectError("refused"))
    assert _is_transient(status_error(503))
    assert not _is_transient(status_error(400))
    assert not _is_transient(ValueError("bad payload"))


@pytest.mark.asyncio
async def test_stripe_cancel_intent():
    gateway = StripePaymentGateway(api_key="sk_test_123")
    cancelled = {
        "id": "pi_123",
        "client_secret": "pi_123_secret_abc",
        "status": "canceled",
        "amount": 230000,
        "currency": "usd",
        "metadata": {},
    }

    with patch("stripe.PaymentIntent.cancel", return_value=cancelled) as cancel:
        intent = await gateway.cancel_intent("pi_123")

    assert cancel.call_args.args == ("pi_123",)
    assert intent.status == "canceled"


@pytest.mark.asyncio
async def test_stripe_already_refunded_is_reported():
    gateway = StripePaymentGateway(api_key="sk_test_123")
    error = stripe.InvalidRequestError("Charge has already been refunded.", None, code="charge_already_refunded")

    with patch("stripe.Refund.create", side_effect=error):
        with pytest.raises(RefundAlreadyIssuedError):
            await gateway.refund("pi_123", idempotency_key="refund-b-1")


@pytest.mark.asyncio
async def test_mock_refund_replays_same_idempotency_key():
    gateway = MockPaymentGateway()
    intent = await gateway.create_intent(Decimal("10"), "usd", {})

    first = await gateway.refund(intent.id, idempotency_key="refund-b-1")
    assert await gateway.refund(intent.id, idempotency_key="refund-b-1") is first

    with pytest.raises(RefundAlreadyIssuedError):
        await gateway.refund(intent.id, idempotency_key="refund-other")
