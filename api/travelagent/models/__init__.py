"""SQLAlchemy Models"""
from travelagent.models.user import User
from travelagent.models.destination import Destination, DestinationType, Package
from travelagent.models.booking import Booking, BookingStatus, PaymentStatus, RefundStatus
from travelagent.models.notification import Notification
from travelagent.models.analytics import DestinationAnalytics
from travelagent.models.review import Review

__all__ = [
    "User", "Destination", "DestinationType", "Package",
    "Booking", "BookingStatus", "PaymentStatus", "RefundStatus",
    "Notification", "DestinationAnalytics", "Review",
]
