"""
Destination Analytics Model - daily view counters
"""
from sqlalchemy import Column, Date, DateTime, Integer, ForeignKey, UniqueConstraint, Uuid
import uuid

from travelagent.utils.database import Base, utcnow


class DestinationAnalytics(Base):
    __tablename__ = "analytics"
    __table_args__ = (
        UniqueConstraint("destination_id", "date", name="uq_analytics_destination_date"),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    destination_id = Column(Uuid, ForeignKey("destinations.id", ondelete="CASCADE"), nullable=False, index=True)
    date = Column(Date, nullable=False)  # UTC calendar day
    views = Column(Integer, nullable=False, default=1)

    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    def __repr__(self):
        return f"<DestinationAnalytics {self.destination_id} {self.date}: {self.views}>"
