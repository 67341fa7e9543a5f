import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from sqlalchemy import JSON, Column, DateTime
from sqlmodel import Field, SQLModel


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _timestamp(nullable: bool = True, **kwargs):
    return Field(sa_type=DateTime(timezone=True), nullable=nullable, **kwargs)


class UserRole(str, Enum):
    DONOR = "donor"
    NGO = "ngo"
    VOLUNTEER = "volunteer"
    ADMIN = "admin"


class ItemCategory(str, Enum):
    FOOD = "food"
    CLOTHES = "clothes"
    MEDICINE = "medicine"
    BLANKETS = "blankets"
    WATER = "water"
    HYGIENE = "hygiene"
    OTHER = "other"


class Urgency(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class DonationStatus(str, Enum):
    PENDING_VALIDATION = "pending_validation"
    AVAILABLE = "available"
    MATCHED = "matched"
    CANCELLED = "cancelled"
    REJECTED = "rejected"  # failed validation at submission


class RequestStatus(str, Enum):
    PENDING_VALIDATION = "pending_validation"
    ACTIVE = "active"
    PARTIALLY_MATCHED = "partially_matched"
    FULFILLED = "fulfilled"
    CANCELLED = "cancelled"


class MatchStatus(str, Enum):
    SUGGESTED = "suggested"
    ASSIGNED = "assigned"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class MatchSource(str, Enum):
    AI_AGENT = "ai_agent"
    MANUAL = "manual"


class DeliveryStatus(str, Enum):
    """
    Delivery stages in lifecycle order.
    CANCELLED sits outside the order and is reachable from any open stage.
    """

    PENDING_ASSIGNMENT = "pending_assignment"
    ASSIGNED = "assigned"
    IN_TRANSIT_TO_PICKUP = "in_transit_to_pickup"
    PICKED_UP = "picked_up"
    IN_TRANSIT_TO_DELIVERY = "in_transit_to_delivery"
    DELIVERED = "delivered"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class VehicleType(str, Enum):
    BICYCLE = "bicycle"
    MOTORCYCLE = "motorcycle"
    CAR = "car"
    TRUCK = "truck"


class User(SQLModel, table=True):
    __tablename__ = "users"

    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    full_name: str
    phone: str = Field(unique=True, index=True)
    email: Optional[str] = None
    password_hash: str
    role: UserRole
    created_at: datetime = _timestamp(nullable=False, default_factory=utcnow)
    updated_at: datetime = _timestamp(nullable=False, default_factory=utcnow)


class VolunteerProfile(SQLModel, table=True):
    __tablename__ = "user_profiles"

    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    user_id: uuid.UUID = Field(foreign_key="users.id", unique=True, index=True)

    vehicle_type: Optional[VehicleType] = None
    max_capacity_kg: Optional[int] = None
    coordinates: Optional[str] = None
    address: Optional[str] = None
    district: Optional[str] = None
    division: Optional[str] = None
    availability_hours: list = Field(default_factory=list, sa_column=Column(JSON))
    is_available: bool = True
    created_at: datetime = _timestamp(nullable=False, default_factory=utcnow)
    updated_at: datetime = _timestamp(nullable=False, default_factory=utcnow)


class Donation(SQLModel, table=True):
    __tablename__ = "donations"

    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    donor_id: Optional[uuid.UUID] = Field(default=None, foreign_key="users.id", index=True)

    item_name: str
    category: ItemCategory
    quantity: float
    unit: str
    urgency: Urgency
    description: Optional[str] = None
    pickup_address: str
    pickup_coordinates: Optional[str] = None
    photos: list = Field(default_factory=list, sa_column=Column(JSON))
    status: DonationStatus = Field(default=DonationStatus.PENDING_VALIDATION, index=True)

    validation_score: Optional[float] = None
    validation_notes: Optional[str] = None
    validated_by: Optional[str] = None
    validated_at: Optional[datetime] = _timestamp(default=None)
    created_at: datetime = _timestamp(nullable=False, default_factory=utcnow)
    updated_at: datetime = _timestamp(nullable=False, default_factory=utcnow)


class ReliefRequest(SQLModel, table=True):
    __tablename__ = "relief_requests"

    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    ngo_id: Optional[uuid.UUID] = Field(default=None, foreign_key="users.id", index=True)

    category: ItemCategory
    item_name: str
    description: str
    quantity: float
    unit: str
    urgency: Urgency
    beneficiaries_count: int
    target_demographic: str = "families"
    emergency_type: str = "general"
    delivery_address: str
    delivery_coordinates: Optional[str] = None
    deadline: datetime = _timestamp(nullable=False)
    status: RequestStatus = Field(default=RequestStatus.PENDING_VALIDATION, index=True)
    created_at: datetime = _timestamp(nullable=False, default_factory=utcnow)
    updated_at: datetime = _timestamp(nullable=False, default_factory=utcnow)


class Match(SQLModel, table=True):
    __tablename__ = "matches"

    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    donation_id: uuid.UUID = Field(foreign_key="donations.id", index=True)
    request_id: uuid.UUID = Field(foreign_key="relief_requests.id", index=True)
    assigned_volunteer_id: Optional[uuid.UUID] = Field(
        default=None, foreign_key="user_profiles.id", index=True
    )

    status: MatchStatus = Field(default=MatchStatus.SUGGESTED)
    compatibility_score: Optional[float] = None
    matched_by: MatchSource = MatchSource.MANUAL
    ai_reasoning: Optional[str] = None
    assigned_at: Optional[datetime] = _timestamp(default=None)
    created_at: datetime = _timestamp(nullable=False, default_factory=utcnow)
    updated_at: datetime = _timestamp(nullable=False, default_factory=utcnow)


class Delivery(SQLModel, table=True):
    __tablename__ = "deliveries"

    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    match_id: uuid.UUID = Field(foreign_key="matches.id", index=True)
    volunteer_id: Optional[uuid.UUID] = Field(
        default=None, foreign_key="user_profiles.id", index=True
    )
    status: DeliveryStatus = Field(default=DeliveryStatus.PENDING_ASSIGNMENT, index=True)

    pickup_location: Optional[str] = None
    pickup_coordinates: Optional[str] = None
    delivery_location: Optional[str] = None
    delivery_coordinates: Optional[str] = None
    scheduled_pickup: Optional[datetime] = _timestamp(default=None)
    scheduled_delivery: Optional[datetime] = _timestamp(default=None)
    special_instructions: Optional[str] = None

    pickup_actual_at: Optional[datetime] = _timestamp(default=None)
    pickup_notes: Optional[str] = None
    delivery_actual_at: Optional[datetime] = _timestamp(default=None)
    delivery_notes: Optional[str] = None

    current_location: Optional[str] = None
    last_location_update: Optional[datetime] = _timestamp(default=None)
    created_at: datetime = _timestamp(nullable=False, default_factory=utcnow)
    updated_at: datetime = _timestamp(nullable=False, default_factory=utcnow)
