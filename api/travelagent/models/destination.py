"""
Destination, DestinationType & Package Models
"""
from sqlalchemy import (
    Column, String, Text, DateTime, Numeric, Integer, Float, Boolean, JSON,
    ForeignKey, UniqueConstraint, CheckConstraint, Uuid,
)
from sqlalchemy.orm import relationship
import uuid

from travelagent.utils.database import Base, utcnow


class Destination(Base):
    __tablename__ = "destinations"
    __table_args__ = (CheckConstraint("price_from >= 0", name="ck_destination_price"),)

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    slug = Column(String(255), unique=True, nullable=False, index=True)  # immutable after creation
    name = Column(String(255), nullable=False)
    country = Column(String(255), nullable=False, index=True)
    city = Column(String(255), nullable=False)

    description = Column(Text, default="")
    short_description = Column(String(200))
    cover_image = Column(Text)
    highlights = Column(JSON, default=list)

    price_from = Column(Numeric(10, 2), nullable=False)
    duration = Column(Integer, default=1)  # days
    rating = Column(Float, default=0.0)  # 0-5
    review_count = Column(Integer, default=0)

    is_active = Column(Boolean, default=True, nullable=False)
    is_featured = Column(Boolean, default=False, nullable=False)
    booking_count = Column(Integer, default=0, nullable=False)

    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    # Relationships (small collections, loaded with the destination)
    types = relationship("DestinationType", back_populates="destination", cascade="all, delete-orphan", lazy="selectin")
    packages = relationship("Package", back_populates="destination", cascade="all, delete-orphan", lazy="selectin")

    @property
    def type_names(self):
        return sorted(t.name for t in self.types)

    @property
    def active_packages(self):
        """Active packages, cheapest first"""
        return sorted((p for p in self.packages if p.is_active), key=lambda p: p.price)

    @property
    def starting_package(self):
        packages = self.active_packages
        return packages[0] if packages else None

    def __repr__(self):
        return f"<Destination {self.name} ({self.slug})>"


class DestinationType(Base):
    """Travel style tags (beach, adventure, culture, ...) used by the type filter"""
    __tablename__ = "destination_types"
    __table_args__ = (UniqueConstraint("destination_id", "name", name="uq_destination_type"),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    destination_id = Column(Uuid, ForeignKey("destinations.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String(50), nullable=False, index=True)

    destination = relationship("Destination", back_populates="types")

    def __repr__(self):
        return f"<DestinationType {self.name}>"


class Package(Base):
    __tablename__ = "packages"
    __table_args__ = (CheckConstraint("price >= 0", name="ck_package_price"),)

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    destination_id = Column(Uuid, ForeignKey("destinations.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    price = Column(Numeric(10, 2), nullable=False)  # >= 0
    duration = Column(Integer, default=1)  # days
    is_active = Column(Boolean, default=True, nullable=False)

    created_at = Column(DateTime(timezone=True), default=utcnow)

    destination = relationship("Destination", back_populates="packages")

    def __repr__(self):
        return f"<Package {self.name} @ ${self.price}>"
