"""
Booking Workflow - create, pay, confirm and cancel bookings

Lifecycle:
    PENDING/PENDING --confirm--> CONFIRMED/COMPLETED
    any non-cancelled --cancel--> CANCELLED (refund issued when payment completed)
    CANCELLED --payment lands--> CANCELLED/COMPLETED, refunded

The booking row and the payment intent live in different systems, so
create_booking is a two-step write: the booking is committed first, then the
intent is requested and its id patched onto the booking. A booking left
without an intent stays PENDING and is resumed through resume_payment.
"""
from dataclasses import dataclass
from datetime import date, timedelta
from typing import Any, Dict, List, Mapping, Optional, Union
from uuid import UUID
import logging
import secrets

import pydantic
from sqlalchemy import select, update, and_, or_
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm import selectinload

from travelagent.config import settings
from travelagent.exceptions import (
    InvalidStateError,
    NotFoundError,
    PaymentGatewayError,
    RefundAlreadyIssuedError,
    ValidationError,
)
from travelagent.metrics import BOOKING_TRANSITIONS, REFUND_OUTCOMES, SIDE_EFFECT_FAILURES
from travelagent.models.booking import Booking, BookingStatus, PaymentStatus, RefundStatus
from travelagent.models.destination import Destination, Package
from travelagent.schemas.booking import BookingCreate
from travelagent.services.notifications import BookingConfirmationEmail, NotificationDispatcher
from travelagent.services.payments import PaymentGateway
from travelagent.services.pricing import TAX_RATE, calculate_price, format_currency, resolve_base_price
from travelagent.utils.background import BackgroundTasks
from travelagent.utils.database import utcnow

logger = logging.getLogger(__name__)

# PENDING refunds older than this are assumed abandoned and picked up by the retry worker
STALE_REFUND_AFTER = timedelta(minutes=10)


@dataclass
class BookingCheckout:
    booking: Booking
    client_secret: str


@dataclass
class CancellationResult:
    booking: Booking
    refund_status: str
    refund_error: Optional[str] = None


def generate_booking_number() -> str:
    """Human-facing booking reference, e.g. TRV-261019-9F2C41AB"""
    return f"TRV-{utcnow():%y%m%d}-{secrets.token_hex(4).upper()}"


def format_long_date(value: date) -> str:
    return f"{value:%B} {value.day}, {value.year}"


def _as_uuid(value: Union[UUID, str], what: str) -> UUID:
    if isinstance(value, UUID):
        return value
    try:
        return UUID(str(value))
    except ValueError:
        raise NotFoundError(f"{what} not found")


class BookingService:
    """
    Orchestrates the Persistent Store, Payment Gateway and Notification
    Dispatcher. All collaborators are injected.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker,
        payment_gateway: PaymentGateway,
        notifier: NotificationDispatcher,
        background: Optional[BackgroundTasks] = None,
        currency: str = settings.PAYMENT_CURRENCY,
        tax_rate=TAX_RATE,
        max_refund_attempts: int = settings.REFUND_MAX_ATTEMPTS,
    ):
        self._sessions = session_factory
        self.payments = payment_gateway
        self.notifier = notifier
        self.background = background or BackgroundTasks()
        self.currency = currency
        self.tax_rate = tax_rate
        self.max_refund_attempts = max_refund_attempts

    # ------------------------------------------------------------------
    # Creation & payment
    # ------------------------------------------------------------------

    async def create_booking(
        self,
        user_id: Union[UUID, str],
        request: Union[BookingCreate, Mapping[str, Any]],
    ) -> BookingCheckout:
        """
        Price and persist a PENDING booking, then open a payment intent for it.

        Raises NotFoundError for a missing/inactive destination or package,
        ValidationError for a malformed request, PaymentGatewayError when the
        intent cannot be created (the booking then stays PENDING without an
        intent and can be resumed).
        """
        data = self._validate_request(request)
        user_id = _as_uuid(user_id, "User")

        async with self._sessions() as session:
            destination = await session.get(Destination, data.destination_id)
            if destination is None or not destination.is_active:
                raise NotFoundError("Destination not found")

            package = None
            if data.package_id is not None:
                package = await session.get(Package, data.package_id)
                if package is None or package.destination_id != destination.id or not package.is_active:
                    raise NotFoundError("Package not found")

            price = calculate_price(resolve_base_price(destination, package), data.travelers, self.tax_rate)

            booking = Booking(
                booking_number=await self._unique_booking_number(session),
                user_id=user_id,
                destination=destination,
                package=package,
                start_date=data.start_date,
                end_date=data.end_date,
                travelers=data.travelers,
                subtotal=price.subtotal,
                taxes=price.taxes,
                total=price.total,
                currency=self.currency,
                contact_name=data.contact_name,
                contact_email=str(data.contact_email),
                contact_phone=data.contact_phone,
                special_requests=data.special_requests,
                booking_status=BookingStatus.PENDING.value,
                payment_status=PaymentStatus.PENDING.value,
                refund_status=RefundStatus.NONE.value,
            )
            session.add(booking)
            await session.commit()

        BOOKING_TRANSITIONS.labels(status=BookingStatus.PENDING.value).inc()
        logger.info(f"Booking {booking.booking_number} created for user {user_id}: total {price.total}")

        intent = await self._open_intent(booking, destination.name)
        return BookingCheckout(booking=booking, client_secret=intent.client_secret)

    async def resume_payment(self, booking_id: Union[UUID, str], user_id: Union[UUID, str]) -> BookingCheckout:
        """
        Return a usable client secret for a PENDING booking.

        Re-entrant: reuses the booking's intent when one was recorded,
        otherwise opens one (the state left behind by an interrupted
        create_booking).
        """
        booking_id = _as_uuid(booking_id, "Booking")
        user_id = _as_uuid(user_id, "Booking")

        async with self._sessions() as session:
            booking = await self._load_booking(session, booking_id, user_id)
            if booking is None:
                raise NotFoundError("Booking not found")
            if booking.booking_status != BookingStatus.PENDING or booking.payment_status == PaymentStatus.COMPLETED:
                raise InvalidStateError(f"Booking is {booking.booking_status}, payment cannot be resumed")

            if booking.payment_status == PaymentStatus.FAILED:
                await session.execute(
                    update(Booking)
                    .where(Booking.id == booking_id, Booking.payment_status == PaymentStatus.FAILED.value)
                    .values(payment_status=PaymentStatus.PENDING.value)
                )
                await session.commit()
                booking.payment_status = PaymentStatus.PENDING.value

        if booking.payment_intent_id:
            intent = await self.payments.retrieve_intent(booking.payment_intent_id)
            logger.info(f"Resuming payment for {booking.booking_number} with intent {intent.id}")
        else:
            logger.info(f"Booking {booking.booking_number} has no payment intent, opening one")
            intent = await self._open_intent(booking, booking.destination.name)

        return BookingCheckout(booking=booking, client_secret=intent.client_secret)

    async def _open_intent(self, booking: Booking, destination_name: str):
        """Request an intent for the booking total and patch its id onto the booking"""
        try:
            intent = await self.payments.create_intent(
                booking.total,
                booking.currency,
                metadata={
                    "booking_id": str(booking.id),
                    "booking_number": booking.booking_number,
                    "destination_name": destination_name,
                },
                idempotency_key=f"booking-{booking.id}-intent",
            )
        except PaymentGatewayError:
            logger.error(f"Payment intent failed for {booking.booking_number}; booking left PENDING without intent")
            raise

        async with self._sessions() as session:
            await session.execute(
                update(Booking)
                .where(Booking.id == booking.id)
                .values(payment_intent_id=intent.id)
            )
            await session.commit()

        booking.payment_intent_id = intent.id
        logger.info(f"Payment intent {intent.id} attached to {booking.booking_number}")
        return intent

    # ------------------------------------------------------------------
    # Payment outcome
    # ------------------------------------------------------------------

    async def confirm_booking(self, booking_id: Union[UUID, str]) -> Booking:
        """
        Mark a paid booking CONFIRMED/COMPLETED.

        The caller has already verified the payment signal. The transition
        commits before the confirmation email and in-app notification are
        dispatched; their failures never undo it. Confirming an already
        confirmed booking returns it unchanged. A payment that lands on a
        cancelled booking is recorded and refunded.
        """
        booking_id = _as_uuid(booking_id, "Booking")

        async with self._sessions() as session:
            result = await session.execute(
                update(Booking)
                .where(Booking.id == booking_id, Booking.booking_status == BookingStatus.PENDING.value)
                .values(
                    booking_status=BookingStatus.CONFIRMED.value,
                    payment_status=PaymentStatus.COMPLETED.value,
                    paid_at=utcnow(),
                )
            )
            if result.rowcount == 0:
                booking = await self._load_booking(session, booking_id)
                if booking is None:
                    raise NotFoundError("Booking not found")
                if booking.booking_status == BookingStatus.CONFIRMED:
                    logger.info(f"Booking {booking.booking_number} already confirmed")
                    return booking
                if booking.booking_status == BookingStatus.CANCELLED:
                    return await self._refund_late_payment(session, booking)
                raise InvalidStateError(f"Cannot confirm a {booking.booking_status} booking")

            destination_id = select(Booking.destination_id).where(Booking.id == booking_id).scalar_subquery()
            await session.execute(
                update(Destination)
                .where(Destination.id == destination_id)
                .values(booking_count=Destination.booking_count + 1)
            )
            await session.commit()

            booking = await self._load_booking(session, booking_id)

        BOOKING_TRANSITIONS.labels(status=BookingStatus.CONFIRMED.value).inc()
        logger.info(f"Booking {booking.booking_number} confirmed")

        self.background.spawn(
            self._notify_confirmed(booking),
            name=f"booking-confirmed-{booking.booking_number}",
        )
        return booking

    async def _refund_late_payment(self, session: AsyncSession, booking: Booking) -> Booking:
        """Payment captured after the booking was cancelled: keep the record and refund it"""
        values: Dict[str, Any] = {
            "payment_status": PaymentStatus.COMPLETED.value,
            "paid_at": utcnow(),
            "refund_status": RefundStatus.PENDING.value,
        }
        if not booking.payment_intent_id:
            values["refund_status"] = RefundStatus.FAILED.value
            values["refund_error"] = "No payment intent on record"

        result = await session.execute(
            update(Booking)
            .where(
                Booking.id == booking.id,
                Booking.booking_status == BookingStatus.CANCELLED.value,
                Booking.payment_status != PaymentStatus.COMPLETED.value,
            )
            .values(**values)
        )
        await session.commit()
        if result.rowcount == 0:
            logger.info(f"Late payment on {booking.booking_number} already recorded")
            return booking

        logger.warning(f"Payment landed on cancelled booking {booking.booking_number}, refunding")
        if booking.payment_intent_id:
            await self._refund(booking.id, booking.payment_intent_id, booking.refund_attempts + 1)
        else:
            logger.error(f"Booking {booking.booking_number} was paid but has no payment intent; refund needs manual action")
        return await self._load_booking(session, booking.id)

    async def _notify_confirmed(self, booking: Booking):
        try:
            await self.notifier.send_booking_confirmation(
                booking.contact_email,
                BookingConfirmationEmail(
                    booking_number=booking.booking_number,
                    destination_name=booking.destination.name,
                    start_date=format_long_date(booking.start_date),
                    end_date=format_long_date(booking.end_date),
                    total_formatted=format_currency(booking.total, booking.currency),
                ),
            )
        except Exception as e:
            SIDE_EFFECT_FAILURES.labels(kind="email").inc()
            logger.error(f"Confirmation email for {booking.booking_number} failed: {e}")

        try:
            await self.notifier.create_notification(
                user_id=booking.user_id,
                booking_id=booking.id,
                type="BOOKING_CONFIRMED",
                title="Booking Confirmed",
                message=f"Your booking for {booking.destination.name} has been confirmed!",
            )
        except Exception as e:
            SIDE_EFFECT_FAILURES.labels(kind="notification").inc()
            logger.error(f"In-app notification for {booking.booking_number} failed: {e}")

    async def fail_payment(self, booking_id: Union[UUID, str]) -> Booking:
        """Record a failed payment; the booking stays PENDING so payment can be resumed"""
        booking_id = _as_uuid(booking_id, "Booking")

        async with self._sessions() as session:
            result = await session.execute(
                update(Booking)
                .where(
                    Booking.id == booking_id,
                    Booking.booking_status == BookingStatus.PENDING.value,
                    Booking.payment_status == PaymentStatus.PENDING.value,
                )
                .values(payment_status=PaymentStatus.FAILED.value)
            )
            await session.commit()
            booking = await self._load_booking(session, booking_id)

        if booking is None:
            raise NotFoundError("Booking not found")
        if result.rowcount == 0 and booking.payment_status != PaymentStatus.FAILED:
            raise InvalidStateError(f"Cannot fail payment of a {booking.booking_status} booking")

        logger.warning(f"Payment failed for booking {booking.booking_number}")
        return booking

    # ------------------------------------------------------------------
    # Cancellation & refunds
    # ------------------------------------------------------------------

    async def cancel_booking(self, booking_id: Union[UUID, str], user_id: Union[UUID, str]) -> CancellationResult:
        """
        Cancel a booking owned by the user.

        The cancellation always commits. When the payment had completed a
        refund is requested afterwards; a failed refund is recorded on the
        booking (refund_status FAILED) for the retry worker.
        """
        booking_id = _as_uuid(booking_id, "Booking")
        user_id = _as_uuid(user_id, "Booking")

        async with self._sessions() as session:
            booking = await self._load_booking(session, booking_id, user_id)
            if booking is None:
                raise NotFoundError("Booking not found")
            if booking.booking_status == BookingStatus.CANCELLED:
                raise InvalidStateError("Booking already cancelled")

            values: Dict[str, Any] = {
                "booking_status": BookingStatus.CANCELLED.value,
                "cancelled_at": utcnow(),
            }
            owes_refund = booking.payment_status == PaymentStatus.COMPLETED
            if owes_refund and booking.payment_intent_id:
                values["refund_status"] = RefundStatus.PENDING.value
            elif owes_refund:
                values["refund_status"] = RefundStatus.FAILED.value
                values["refund_error"] = "No payment intent on record"

            result = await session.execute(
                update(Booking)
                .where(Booking.id == booking_id, Booking.booking_status != BookingStatus.CANCELLED.value)
                .values(**values)
            )
            if result.rowcount == 0:
                raise InvalidStateError("Booking already cancelled")
            await session.commit()

        BOOKING_TRANSITIONS.labels(status=BookingStatus.CANCELLED.value).inc()
        logger.info(f"Booking {booking.booking_number} cancelled by user {user_id}")

        if owes_refund and booking.payment_intent_id:
            await self._refund(booking.id, booking.payment_intent_id, booking.refund_attempts + 1)
        elif owes_refund:
            logger.error(f"Booking {booking.booking_number} was paid but has no payment intent; refund needs manual action")
        elif booking.payment_intent_id:
            await self._cancel_intent(booking)

        async with self._sessions() as session:
            booking = await self._load_booking(session, booking_id)

        return CancellationResult(
            booking=booking,
            refund_status=booking.refund_status,
            refund_error=booking.refund_error,
        )

    async def _cancel_intent(self, booking: Booking):
        """Stop an unpaid booking's intent from being paid after cancellation"""
        try:
            await self.payments.cancel_intent(booking.payment_intent_id)
        except PaymentGatewayError as e:
            # a payment that still lands goes through confirm_booking and is refunded
            logger.warning(f"Could not cancel payment intent for {booking.booking_number}: {e}")

    async def _refund(self, booking_id: UUID, intent_id: str, attempt: int) -> str:
        """
        Request a refund and record the outcome on the booking.

        The idempotency key is stable per booking, so a retry after a lost
        response returns the original refund instead of issuing a new one.
        """
        try:
            refund = await self.payments.refund(intent_id, idempotency_key=f"refund-{booking_id}")
        except RefundAlreadyIssuedError:
            REFUND_OUTCOMES.labels(outcome="completed").inc()
            logger.info(f"Refund for booking {booking_id} was already issued")
            values = {
                "refund_status": RefundStatus.COMPLETED.value,
                "refund_error": None,
                "refund_attempts": attempt,
            }
        except PaymentGatewayError as e:
            REFUND_OUTCOMES.labels(outcome="failed").inc()
            logger.error(f"Refund for booking {booking_id} (attempt {attempt}) failed: {e}")
            if attempt >= self.max_refund_attempts:
                REFUND_OUTCOMES.labels(outcome="exhausted").inc()
                logger.error(f"Refund for booking {booking_id} gave up after {attempt} attempts; needs manual action")
            values = {
                "refund_status": RefundStatus.FAILED.value,
                "refund_error": str(e),
                "refund_attempts": attempt,
            }
        else:
            REFUND_OUTCOMES.labels(outcome="completed").inc()
            logger.info(f"Refund {refund.id} issued for booking {booking_id}")
            values = {
                "refund_status": RefundStatus.COMPLETED.value,
                "refund_id": refund.id,
                "refund_error": None,
                "refund_attempts": attempt,
            }

        try:
            async with self._sessions() as session:
                await session.execute(update(Booking).where(Booking.id == booking_id).values(**values))
                await session.commit()
        except Exception as e:
            # refund_status stays PENDING, so the retry worker picks it up
            logger.error(f"Could not record refund outcome for booking {booking_id}: {e}")
        return values["refund_status"]

    async def retry_failed_refunds(self, limit: int = settings.REFUND_RETRY_BATCH) -> Dict[str, int]:
        """
        Re-attempt refunds that failed or were left PENDING. Bookings that
        reached max_refund_attempts are left for manual action.
        """
        stale_before = utcnow() - STALE_REFUND_AFTER
        async with self._sessions() as session:
            rows = (await session.execute(
                select(Booking.id, Booking.payment_intent_id, Booking.refund_attempts)
                .where(
                    Booking.booking_status == BookingStatus.CANCELLED.value,
                    Booking.payment_intent_id.is_not(None),
                    Booking.refund_attempts < self.max_refund_attempts,
                    or_(
                        Booking.refund_status == RefundStatus.FAILED.value,
                        and_(
                            Booking.refund_status == RefundStatus.PENDING.value,
                            Booking.cancelled_at < stale_before,
                        ),
                    ),
                )
                .order_by(Booking.cancelled_at)
                .limit(limit)
            )).all()

        stats = {"retried": len(rows), "completed": 0, "failed": 0}
        for row in rows:
            status = await self._refund(row.id, row.payment_intent_id, row.refund_attempts + 1)
            if status == RefundStatus.COMPLETED:
                stats["completed"] += 1
            else:
                stats["failed"] += 1

        if rows:
            logger.info(f"Refund retry: {stats}")
        return stats

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get_user_bookings(self, user_id: Union[UUID, str]) -> List[Booking]:
        user_id = _as_uuid(user_id, "User")
        async with self._sessions() as session:
            result = await session.execute(
                self._booking_query()
                .where(Booking.user_id == user_id)
                .order_by(Booking.created_at.desc())
            )
            return list(result.scalars().all())

    async def get_booking(self, booking_id: Union[UUID, str], user_id: Union[UUID, str]) -> Booking:
        booking_id = _as_uuid(booking_id, "Booking")
        user_id = _as_uuid(user_id, "Booking")
        async with self._sessions() as session:
            booking = await self._load_booking(session, booking_id, user_id)
        if booking is None:
            raise NotFoundError("Booking not found")
        return booking

    async def get_all_bookings(self, status: Optional[str] = None) -> List[Booking]:
        """Admin listing, optionally filtered by booking status"""
        query = self._booking_query().options(selectinload(Booking.user)).order_by(Booking.created_at.desc())
        if status:
            try:
                query = query.where(Booking.booking_status == BookingStatus(status.upper()).value)
            except ValueError:
                raise ValidationError(f"Unknown booking status: {status}")

        async with self._sessions() as session:
            result = await session.execute(query)
            return list(result.scalars().all())

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _validate_request(request: Union[BookingCreate, Mapping[str, Any]]) -> BookingCreate:
        if isinstance(request, BookingCreate):
            return request
        try:
            return BookingCreate.model_validate(request)
        except pydantic.ValidationError as e:
            raise ValidationError.from_pydantic(e)

    @staticmethod
    def _booking_query():
        return select(Booking).options(
            selectinload(Booking.destination),
            selectinload(Booking.package),
        )

    async def _load_booking(
        self,
        session: AsyncSession,
        booking_id: UUID,
        user_id: Optional[UUID] = None,
    ) -> Optional[Booking]:
        query = self._booking_query().where(Booking.id == booking_id).execution_options(populate_existing=True)
        if user_id is not None:
            query = query.where(Booking.user_id == user_id)
        result = await session.execute(query)
        return result.scalar_one_or_none()

    @staticmethod
    async def _unique_booking_number(session: AsyncSession, attempts: int = 5) -> str:
        for _ in range(attempts):
            number = generate_booking_number()
            taken = await session.scalar(select(Booking.id).where(Booking.booking_number == number))
            if taken is None:
                return number
            logger.warning(f"Booking number collision on {number}, regenerating")
        raise RuntimeError("Could not generate a unique booking number")
