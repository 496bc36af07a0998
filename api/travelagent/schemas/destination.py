"""
Destination Schemas
"""
from pydantic import BaseModel, Field, AliasChoices, model_validator
from pydantic.alias_generators import to_camel
from typing import Optional, List
from datetime import datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID


class SortBy(str, Enum):
    PRICE = "price"
    RATING = "rating"
    NEWEST = "newest"
    POPULARITY = "popularity"


class SortOrder(str, Enum):
    ASC = "asc"
    DESC = "desc"


class PackageSummary(BaseModel):
    """Schema for a bookable package"""
    id: UUID
    name: str
    price: Decimal
    duration: int

    class Config:
        from_attributes = True


class DestinationSummary(BaseModel):
    """Schema for destination cards (search results, featured, popular)"""
    id: UUID
    slug: str
    name: str
    country: str
    city: str
    short_description: Optional[str] = None
    cover_image: Optional[str] = None
    types: List[str] = Field(default_factory=list, validation_alias=AliasChoices("type_names", "types"))
    price_from: Decimal
    duration: int
    rating: float
    review_count: int = 0
    booking_count: int = 0
    is_featured: bool = False
    created_at: Optional[datetime] = None
    starting_package: Optional[PackageSummary] = None

    class Config:
        from_attributes = True


class ReviewAuthor(BaseModel):
    id: UUID
    full_name: Optional[str] = None

    class Config:
        from_attributes = True


class ReviewResponse(BaseModel):
    """Schema for a published review"""
    id: UUID
    rating: int
    title: str
    comment: str
    created_at: datetime
    user: ReviewAuthor

    class Config:
        from_attributes = True


class DestinationDetail(DestinationSummary):
    """Schema for the destination page"""
    description: str = ""
    highlights: List[str] = []
    packages: List[PackageSummary] = Field(
        default_factory=list, validation_alias=AliasChoices("active_packages", "packages")
    )
    reviews: List[ReviewResponse] = []

    class Config:
        from_attributes = True


class DestinationSearchParams(BaseModel):
    """
    Search filters. All optional, combined with AND.

    Accepts both snake_case and camelCase keys (priceMin, sortBy, ...).
    """
    query: Optional[str] = Field(None, max_length=200)
    country: Optional[str] = Field(None, max_length=255)
    city: Optional[str] = Field(None, max_length=255)
    type: Optional[List[str]] = None
    price_min: Optional[Decimal] = Field(None, ge=0)
    price_max: Optional[Decimal] = Field(None, ge=0)
    duration: Optional[int] = Field(None, ge=1)  # minimum days
    rating: Optional[float] = Field(None, ge=0, le=5)  # minimum rating
    page: int = Field(1, ge=1)
    limit: int = Field(12, ge=1, le=100)
    sort_by: SortBy = SortBy.POPULARITY
    sort_order: SortOrder = SortOrder.DESC

    class Config:
        alias_generator = to_camel
        populate_by_name = True
        extra = "forbid"

    @model_validator(mode="after")
    def check_price_range(self):
        if self.price_min is not None and self.price_max is not None and self.price_min > self.price_max:
            raise ValueError("priceMin must not exceed priceMax")
        return self

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.limit


class DestinationSearchResult(BaseModel):
    """Schema for a page of search results"""
    destinations: List[DestinationSummary]
    total: int
    page: int
    total_pages: int
    has_more: bool


class PackageCreate(BaseModel):
    name: str = Field(..., min_length=2, max_length=255)
    price: Decimal = Field(..., ge=0)
    duration: int = Field(1, ge=1)
    is_active: bool = True


class DestinationCreate(BaseModel):
    """Schema for creating a destination (admin)"""
    name: str = Field(..., min_length=2, max_length=255)
    slug: Optional[str] = Field(None, min_length=2, max_length=255, pattern=r"^[a-z0-9]+(?:-[a-z0-9]+)*$")
    country: str = Field(..., min_length=2, max_length=255)
    city: str = Field(..., min_length=2, max_length=255)
    description: str = ""
    short_description: Optional[str] = Field(None, max_length=200)
    cover_image: Optional[str] = None
    highlights: List[str] = []
    types: List[str] = []
    price_from: Decimal = Field(..., ge=0)
    duration: int = Field(1, ge=1)
    rating: float = Field(0.0, ge=0, le=5)
    is_featured: bool = False
    is_active: bool = True
    packages: List[PackageCreate] = []

    class Config:
        alias_generator = to_camel
        populate_by_name = True


class DestinationUpdate(BaseModel):
    """Schema for updating a destination (admin). The slug cannot change."""
    name: Optional[str] = Field(None, min_length=2, max_length=255)
    country: Optional[str] = Field(None, min_length=2, max_length=255)
    city: Optional[str] = Field(None, min_length=2, max_length=255)
    description: Optional[str] = None
    short_description: Optional[str] = Field(None, max_length=200)
    cover_image: Optional[str] = None
    highlights: Optional[List[str]] = None
    types: Optional[List[str]] = None
    price_from: Optional[Decimal] = Field(None, ge=0)
    duration: Optional[int] = Field(None, ge=1)
    rating: Optional[float] = Field(None, ge=0, le=5)
    is_featured: Optional[bool] = None
    is_active: Optional[bool] = None

    class Config:
        alias_generator = to_camel
        populate_by_name = True
        extra = "forbid"
