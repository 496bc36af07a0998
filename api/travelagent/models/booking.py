"""
Booking Model & Status Enums
"""
from sqlalchemy import (
    Column, String, Text, Date, DateTime, Numeric, Integer, ForeignKey, CheckConstraint, Uuid,
)
from sqlalchemy.orm import relationship
from enum import Enum
import uuid

from travelagent.utils.database import Base, utcnow


class BookingStatus(str, Enum):
    PENDING = "PENDING"
    CONFIRMED = "CONFIRMED"
    CANCELLED = "CANCELLED"


class PaymentStatus(str, Enum):
    PENDING = "PENDING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


class RefundStatus(str, Enum):
    NONE = "NONE"
    PENDING = "PENDING"  # refund owed, not yet acknowledged by the gateway
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"  # picked up by the refund retry worker


class Booking(Base):
    __tablename__ = "bookings"
    __table_args__ = (
        CheckConstraint("start_date < end_date", name="ck_booking_dates"),
        CheckConstraint("travelers >= 1", name="ck_booking_travelers"),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    booking_number = Column(String(32), unique=True, nullable=False, index=True)
    user_id = Column(Uuid, ForeignKey("users.id"), nullable=False, index=True)
    destination_id = Column(Uuid, ForeignKey("destinations.id"), nullable=False, index=True)
    package_id = Column(Uuid, ForeignKey("packages.id"), nullable=True)

    start_date = Column(Date, nullable=False)
    end_date = Column(Date, nullable=False)
    travelers = Column(Integer, nullable=False, default=1)

    # Pricing snapshot, fixed at creation
    subtotal = Column(Numeric(10, 2), nullable=False)
    taxes = Column(Numeric(10, 2), nullable=False)
    total = Column(Numeric(10, 2), nullable=False)
    currency = Column(String(3), nullable=False, default="usd")

    contact_name = Column(String(255), nullable=False)
    contact_email = Column(String(255), nullable=False)
    contact_phone = Column(String(50), nullable=False)
    special_requests = Column(Text)

    booking_status = Column(String(20), nullable=False, default=BookingStatus.PENDING.value, index=True)
    payment_status = Column(String(20), nullable=False, default=PaymentStatus.PENDING.value)
    payment_intent_id = Column(String(255), unique=True, nullable=True)
    paid_at = Column(DateTime(timezone=True))
    cancelled_at = Column(DateTime(timezone=True))

    # Compensating refund on cancellation
    refund_status = Column(String(20), nullable=False, default=RefundStatus.NONE.value, index=True)
    refund_id = Column(String(255))
    refund_error = Column(Text)
    refund_attempts = Column(Integer, nullable=False, default=0)

    created_at = Column(DateTime(timezone=True), default=utcnow, index=True)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    # Relationships
    user = relationship("User", back_populates="bookings")
    destination = relationship("Destination")
    package = relationship("Package")
    notifications = relationship("Notification", back_populates="booking")

    def __repr__(self):
        return f"<Booking {self.booking_number} {self.booking_status}/{self.payment_status}>"
