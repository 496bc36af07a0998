"""
In-app Notification Model
"""
from sqlalchemy import Column, String, Text, Boolean, DateTime, ForeignKey, Uuid
from sqlalchemy.orm import relationship
import uuid

from travelagent.utils.database import Base, utcnow


class Notification(Base):
    __tablename__ = "notifications"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id = Column(Uuid, ForeignKey("users.id"), nullable=False, index=True)
    booking_id = Column(Uuid, ForeignKey("bookings.id"), nullable=True, index=True)

    type = Column(String(50), nullable=False)  # BOOKING_CONFIRMED, BOOKING_CANCELLED, ...
    title = Column(String(255), nullable=False)
    message = Column(Text, nullable=False)
    is_read = Column(Boolean, default=False, nullable=False)

    created_at = Column(DateTime(timezone=True), default=utcnow)

    booking = relationship("Booking", back_populates="notifications")

    def __repr__(self):
        return f"<Notification {self.type} for {self.user_id}>"
