"""
Booking Schemas
"""
from pydantic import BaseModel, EmailStr, Field, model_validator
from pydantic.alias_generators import to_camel
from typing import Optional
from datetime import date, datetime
from decimal import Decimal
from uuid import UUID


class BookingCreate(BaseModel):
    """Schema for creating a booking (accepts camelCase keys too)"""
    destination_id: UUID
    package_id: Optional[UUID] = None
    start_date: date
    end_date: date
    travelers: int = Field(..., ge=1, le=20)
    contact_name: str = Field(..., min_length=2, max_length=255)
    contact_email: EmailStr
    contact_phone: str = Field(..., min_length=10, max_length=50)
    special_requests: Optional[str] = Field(None, max_length=2000)

    class Config:
        alias_generator = to_camel
        populate_by_name = True

    @model_validator(mode="after")
    def check_dates(self):
        if self.end_date <= self.start_date:
            raise ValueError("End date must be after start date")
        return self


class BookingDestination(BaseModel):
    id: UUID
    slug: str
    name: str
    city: str
    country: str

    class Config:
        from_attributes = True


class BookingPackage(BaseModel):
    id: UUID
    name: str

    class Config:
        from_attributes = True


class BookingResponse(BaseModel):
    """Schema for booking response"""
    id: UUID
    booking_number: str
    user_id: UUID
    destination_id: UUID
    package_id: Optional[UUID]
    start_date: date
    end_date: date
    travelers: int
    subtotal: Decimal
    taxes: Decimal
    total: Decimal
    currency: str
    contact_name: str
    contact_email: str
    contact_phone: str
    special_requests: Optional[str] = None
    booking_status: str
    payment_status: str
    refund_status: str
    paid_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    created_at: datetime
    destination: Optional[BookingDestination] = None
    package: Optional[BookingPackage] = None

    class Config:
        from_attributes = True


class BookingCheckoutResponse(BaseModel):
    """Booking plus the client secret used by the payment form"""
    booking: BookingResponse
    client_secret: str


class CancellationResponse(BaseModel):
    booking: BookingResponse
    refund_status: str
    refund_error: Optional[str] = None


class BookingUser(BaseModel):
    id: UUID
    email: str
    full_name: Optional[str] = None

    class Config:
        from_attributes = True


class AdminBookingResponse(BookingResponse):
    """Booking with its owner, for the admin listing"""
    user: Optional[BookingUser] = None
