import uuid
from datetime import datetime
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field

from models import ItemCategory, MatchSource, Urgency, UserRole, VehicleType

BD_PHONE_PATTERN = r"^(?:\+?88)?01[3-9]\d{8}$"


class Coordinates(BaseModel):
    lat: float = Field(ge=-90, le=90)
    lng: float = Field(ge=-180, le=180)

    def to_point(self) -> str:
        """Postgres POINT literal, longitude first."""
        return f"({self.lng},{self.lat})"


# ---------------- Auth -----------------

class RegisterData(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    full_name: str = Field(min_length=2, max_length=100)
    phone: str = Field(pattern=BD_PHONE_PATTERN)
    password: str = Field(min_length=6)
    user_type: Literal["donor", "ngo", "volunteer"]
    email: Optional[EmailStr] = None


class LoginData(BaseModel):
    phone: str = Field(pattern=BD_PHONE_PATTERN)
    password: str = Field(min_length=1)


class ProfileUpdate(BaseModel):
    full_name: Optional[str] = Field(default=None, min_length=2, max_length=100)
    email: Optional[EmailStr] = None


class PasswordChange(BaseModel):
    current_password: str = Field(min_length=1)
    new_password: str = Field(min_length=6)


class UserRead(BaseModel):
    id: uuid.UUID
    full_name: str
    phone: str
    email: Optional[str] = None
    role: UserRole
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


# ---------------- Donations & requests -----------------

class ValidationResult(BaseModel):
    """Verdict of the client-side validation agent, sent along with a donation."""

    model_config = ConfigDict(populate_by_name=True)

    auto_approve: bool = Field(default=False, alias="autoApprove")
    risk_level: Optional[str] = Field(default=None, alias="riskLevel")
    confidence: Optional[float] = None
    issues: list[str] = Field(default_factory=list)


class DonationCreate(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    item_name: str = Field(min_length=3, max_length=255)
    category: ItemCategory
    quantity: float = Field(ge=0.1)
    unit: str = Field(min_length=1, max_length=50)
    urgency: Urgency
    description: Optional[str] = None
    pickup_address: str = Field(min_length=1)
    pickup_coordinates: Coordinates
    images: list[str] = Field(default_factory=list)
    validation_result: Optional[ValidationResult] = None


class ReliefRequestCreate(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    category: ItemCategory
    item_name: str = Field(min_length=2, max_length=255)
    description: str = Field(min_length=10, max_length=2000)
    quantity: float = Field(ge=0.1)
    unit: str = Field(min_length=1)
    urgency: Urgency
    beneficiaries_count: int = Field(ge=1)
    target_demographic: str = "families"
    emergency_type: str = "general"
    delivery_address: str = Field(min_length=1)
    delivery_coordinates: Coordinates
    deadline: datetime


# ---------------- Volunteers -----------------

class VolunteerUpsert(BaseModel):
    user_id: uuid.UUID
    availability_hours: Optional[list] = None
    vehicle_type: Optional[VehicleType] = None
    max_capacity_kg: Optional[int] = Field(default=None, ge=1, le=1000)
    coordinates: Optional[Coordinates] = None
    address: Optional[str] = None
    district: Optional[str] = None
    division: Optional[str] = None


# ---------------- Matching & deliveries -----------------

class MatchCreate(BaseModel):
    donation_id: uuid.UUID
    request_id: uuid.UUID
    # volunteer_id is the volunteer's user id, volunteer_profile_id the profile id
    volunteer_id: Optional[uuid.UUID] = None
    volunteer_profile_id: Optional[uuid.UUID] = None
    matching_score: Optional[float] = Field(default=None, ge=0)
    ai_reasoning: Optional[str] = None
    matched_by: Optional[MatchSource] = None


class MatchVolunteerUpdate(BaseModel):
    volunteer_id: uuid.UUID  # profile id


class DeliveryCreate(BaseModel):
    match_id: uuid.UUID
    volunteer_id: Optional[uuid.UUID] = None  # profile id
    pickup_location: Optional[str] = None
    pickup_coordinates: Optional[Coordinates] = None
    delivery_location: Optional[str] = None
    delivery_coordinates: Optional[Coordinates] = None
    scheduled_pickup: Optional[datetime] = None
    scheduled_delivery: Optional[datetime] = None
    special_instructions: Optional[str] = None


class DeliveryStatusUpdate(BaseModel):
    # checked against the delivery lifecycle by the service, not here
    status: str
    location: Optional[Coordinates] = None
    notes: Optional[str] = None


class DeliveryVolunteerAssign(BaseModel):
    volunteer_id: Optional[uuid.UUID] = None
    volunteer_profile_id: Optional[uuid.UUID] = None


# ---------------- Chat -----------------

class ChatMessageIn(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    message: str = Field(min_length=1, max_length=1000)
    user_id: str = Field(min_length=1)
    session_id: str = Field(min_length=1)
    language: Literal["en", "bn"] = "bn"
    context: Optional[dict] = None


class IntentRequest(BaseModel):
    message: str = Field(min_length=1)
    language: Literal["en", "bn"] = "bn"
    context: Optional[dict] = None
