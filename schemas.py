"""
Database Schemas

MongoDB collection schemas for Bull-Mart, defined with Pydantic models.
These schemas validate data before it is written to the database.

Model name is converted to lowercase for the collection name:
- User -> "user" collection
- Product -> "product" collection

Request bodies used by the API live at the bottom of this module.
"""

import re
from datetime import datetime, timezone
from typing import Annotated, Any, Dict, List, Literal, Optional

from pydantic import AfterValidator, BaseModel, EmailStr, Field, field_validator

Role = Literal["user", "admin", "moderator"]
Category = Literal[
    "electronics", "clothing", "books", "sports", "home",
    "automotive", "health", "beauty", "food", "other",
]
Condition = Literal["new", "like-new", "good", "fair", "poor"]
ProductStatus = Literal["active", "inactive", "sold", "reserved"]

PASSWORD_PATTERN = re.compile(r"^(?=.*[a-z])(?=.*[A-Z])(?=.*\d)")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def check_password_strength(value: str) -> str:
    if len(value) < 8 or not PASSWORD_PATTERN.match(value):
        raise ValueError("Password must be at least 8 characters and contain lowercase, uppercase and a digit")
    return value


StrongPassword = Annotated[str, AfterValidator(check_password_strength)]


# --------------------- User ---------------------

class Profile(BaseModel):
    avatar: Optional[str] = None
    bio: Optional[str] = Field(None, max_length=500)
    phone: Optional[str] = None
    date_of_birth: Optional[datetime] = None
    gender: Optional[Literal["male", "female", "other", "prefer-not-to-say"]] = None


class UserLocation(BaseModel):
    lat: Optional[float] = Field(None, ge=-90, le=90)
    lng: Optional[float] = Field(None, ge=-180, le=180)
    address: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    zip_code: Optional[str] = None
    country: str = "US"


class NotificationPreferences(BaseModel):
    email: bool = True
    push: bool = True
    sms: bool = False


class PrivacyPreferences(BaseModel):
    profile_visibility: Literal["public", "friends", "private"] = "public"
    location_sharing: bool = True
    show_email: bool = False


class Preferences(BaseModel):
    notifications: NotificationPreferences = Field(default_factory=NotificationPreferences)
    privacy: PrivacyPreferences = Field(default_factory=PrivacyPreferences)
    search_radius: int = Field(50, ge=1, le=500, description="Default search radius in km")
    preferred_categories: List[str] = Field(default_factory=list)
    language: str = "en"
    currency: str = "USD"


class UserStats(BaseModel):
    products_listed: int = 0
    products_sold: int = 0
    total_revenue: float = 0
    rating: float = Field(0, ge=0, le=5)
    review_count: int = 0
    member_since: datetime = Field(default_factory=utcnow)
    last_active: datetime = Field(default_factory=utcnow)


class Verification(BaseModel):
    email_verified: bool = False
    phone_verified: bool = False
    identity_verified: bool = False
    email_verification_token: Optional[str] = None
    email_verification_expires: Optional[datetime] = None
    password_reset_token: Optional[str] = None
    password_reset_expires: Optional[datetime] = None


class AccountSecurity(BaseModel):
    login_attempts: int = 0
    lock_until: Optional[datetime] = None
    last_password_change: datetime = Field(default_factory=utcnow)


class User(BaseModel):
    """
    Users collection schema
    Collection name: "user"
    """
    name: str = Field(..., min_length=2, max_length=50, description="Full name")
    email: EmailStr = Field(..., description="Email address, stored lowercase")
    password_hash: str = Field(..., description="BCrypt hashed password")
    role: Role = Field("user", description="Role: user | admin | moderator")
    profile: Profile = Field(default_factory=Profile)
    location: UserLocation = Field(default_factory=UserLocation)
    preferences: Preferences = Field(default_factory=Preferences)
    stats: UserStats = Field(default_factory=UserStats)
    verification: Verification = Field(default_factory=Verification)
    security: AccountSecurity = Field(default_factory=AccountSecurity)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


# --------------------- Product ---------------------

class Inventory(BaseModel):
    quantity: int = Field(0, ge=0)
    sku: Optional[str] = Field(None, description="Stock keeping unit, generated when omitted")
    low_stock_threshold: int = Field(5, ge=0)


class Location(BaseModel):
    lat: float = Field(..., ge=-90, le=90)
    lng: float = Field(..., ge=-180, le=180)
    address: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    zip_code: Optional[str] = None


class ProductImage(BaseModel):
    url: str
    alt: Optional[str] = None
    is_primary: bool = False


class Ratings(BaseModel):
    average: float = Field(0, ge=0, le=5)
    count: int = Field(0, ge=0)


class Dimensions(BaseModel):
    length: Optional[float] = None
    width: Optional[float] = None
    height: Optional[float] = None


class Shipping(BaseModel):
    weight: Optional[float] = None
    dimensions: Optional[Dimensions] = None
    free_shipping: bool = False
    shipping_cost: float = Field(0, ge=0)


class ProductCreate(BaseModel):
    name: str = Field(..., min_length=3, max_length=100, description="Product name")
    description: Optional[str] = Field(None, max_length=1000)
    price: float = Field(..., ge=0, description="Price in dollars")
    original_price: Optional[float] = Field(None, ge=0, description="Price before discount")
    category: Category
    subcategory: Optional[str] = None
    brand: Optional[str] = None
    condition: Condition = "good"
    inventory: Inventory = Field(default_factory=Inventory)
    location: Location
    images: List[ProductImage] = Field(default_factory=list)
    tags: List[str] = Field(default_factory=list)
    specifications: Dict[str, str] = Field(default_factory=dict)
    shipping: Shipping = Field(default_factory=Shipping)
    status: ProductStatus = "active"

    @field_validator("tags")
    @classmethod
    def unique_tags(cls, tags: List[str]) -> List[str]:
        return list(dict.fromkeys(t.strip() for t in tags if t.strip()))


class Product(ProductCreate):
    """
    Products collection schema
    Collection name: "product"

    ``created_by`` (the owner's ObjectId), ``created_at``, ``updated_at`` and
    ``location.point`` are added by the service when the document is stored.
    """
    ratings: Ratings = Field(default_factory=Ratings)


# --------------------- Requests ---------------------

class RegisterRequest(BaseModel):
    name: str = Field(..., min_length=2, max_length=50)
    email: EmailStr
    password: StrongPassword
    profile: Optional[Profile] = None
    location: Optional[UserLocation] = None
    preferences: Optional[Preferences] = None


class LoginRequest(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=1)


class TokenRequest(BaseModel):
    token: str = Field(..., min_length=1)


class ForgotPasswordRequest(BaseModel):
    email: EmailStr


class ResetPasswordRequest(BaseModel):
    token: str = Field(..., min_length=1)
    new_password: StrongPassword


class ChangePasswordRequest(BaseModel):
    current_password: str = Field(..., min_length=1)
    new_password: StrongPassword


class ProfilePatch(BaseModel):
    avatar: Optional[str] = None
    bio: Optional[str] = Field(None, max_length=500)
    phone: Optional[str] = None
    date_of_birth: Optional[datetime] = None
    gender: Optional[Literal["male", "female", "other", "prefer-not-to-say"]] = None


class UserLocationPatch(BaseModel):
    lat: Optional[float] = Field(None, ge=-90, le=90)
    lng: Optional[float] = Field(None, ge=-180, le=180)
    address: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    zip_code: Optional[str] = None
    country: Optional[str] = None


class PreferencesPatch(BaseModel):
    notifications: Optional[Dict[str, bool]] = None
    privacy: Optional[Dict[str, Any]] = None
    search_radius: Optional[int] = Field(None, ge=1, le=500)
    preferred_categories: Optional[List[str]] = None
    language: Optional[str] = None
    currency: Optional[str] = None


class ProfileUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=2, max_length=50)
    profile: Optional[ProfilePatch] = None
    location: Optional[UserLocationPatch] = None
    preferences: Optional[PreferencesPatch] = None


class InventoryPatch(BaseModel):
    quantity: Optional[int] = Field(None, ge=0)
    sku: Optional[str] = None
    low_stock_threshold: Optional[int] = Field(None, ge=0)


class ShippingPatch(BaseModel):
    weight: Optional[float] = None
    dimensions: Optional[Dimensions] = None
    free_shipping: Optional[bool] = None
    shipping_cost: Optional[float] = Field(None, ge=0)


class ProductUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=3, max_length=100)
    description: Optional[str] = Field(None, max_length=1000)
    price: Optional[float] = Field(None, ge=0)
    original_price: Optional[float] = Field(None, ge=0)
    category: Optional[Category] = None
    subcategory: Optional[str] = None
    brand: Optional[str] = None
    condition: Optional[Condition] = None
    inventory: Optional[InventoryPatch] = None
    location: Optional[Location] = None
    images: Optional[List[ProductImage]] = None
    tags: Optional[List[str]] = None
    specifications: Optional[Dict[str, str]] = None
    shipping: Optional[ShippingPatch] = None
    status: Optional[ProductStatus] = None

    @field_validator("tags")
    @classmethod
    def unique_tags(cls, tags: Optional[List[str]]) -> Optional[List[str]]:
        if tags is None:
            return tags
        return list(dict.fromkeys(t.strip() for t in tags if t.strip()))


class InventoryUpdate(BaseModel):
    quantity: int = Field(..., ge=0)
