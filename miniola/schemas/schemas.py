from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional
from pydantic import BaseModel, EmailStr, Field, field_validator, model_validator

PHONE_PATTERN = r"^[0-9]{10}$"


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------

class RideTypeEnum(str, Enum):
    bike = "bike"
    mini = "mini"
    sedan = "sedan"
    suv = "suv"


class RideStatusEnum(str, Enum):
    REQUESTED = "requested"
    ACCEPTED = "accepted"
    DRIVER_ARRIVED = "driver-arrived"
    IN_PROGRESS = "in-progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class PaymentMethodEnum(str, Enum):
    wallet = "wallet"
    upi = "upi"
    cash = "cash"


class TopUpMethodEnum(str, Enum):
    upi = "upi"
    cash = "cash"


class PaymentStatusEnum(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    REFUNDED = "refunded"


class KycStatusEnum(str, Enum):
    pending = "pending"
    approved = "approved"
    rejected = "rejected"


class RoleEnum(str, Enum):
    rider = "rider"
    driver = "driver"


class MessageResponse(BaseModel):
    message: str


# ---------------------------------------------------------------------------
# Auth schemas
# ---------------------------------------------------------------------------

class RiderRegisterRequest(BaseModel):
    name: str = Field(..., min_length=2, max_length=100)
    email: EmailStr
    phone: str = Field(..., pattern=PHONE_PATTERN)
    password: str = Field(..., min_length=6, max_length=128)


class DriverRegisterRequest(RiderRegisterRequest):
    vehicle_type: RideTypeEnum
    vehicle_number: str = Field(..., min_length=4, max_length=20)
    vehicle_model: str = Field(..., min_length=2, max_length=100)
    vehicle_color: str = Field(default="", max_length=30)
    license_number: str = Field(..., min_length=5, max_length=30)
    license_expiry: datetime

    @field_validator("license_expiry")
    @classmethod
    def license_not_expired(cls, value: datetime) -> datetime:
        compare = datetime.now(value.tzinfo) if value.tzinfo else datetime.now()
        if value <= compare:
            raise ValueError("License has expired")
        return value


class LoginRequest(BaseModel):
    """Log in with either email or phone."""
    email: Optional[str] = None
    phone: Optional[str] = Field(default=None, pattern=PHONE_PATTERN)
    password: str = Field(..., min_length=1)

    @model_validator(mode="after")
    def require_identifier(self):
        if not self.email and not self.phone:
            raise ValueError("Email or phone is required")
        return self

    @property
    def identifier(self) -> str:
        return self.email or self.phone


class RefreshRequest(BaseModel):
    refresh_token: str = Field(..., min_length=1)


class ProfileUpdateRequest(BaseModel):
    name: Optional[str] = Field(default=None, min_length=2, max_length=100)
    phone: Optional[str] = Field(default=None, pattern=PHONE_PATTERN)
    profile_picture: Optional[str] = Field(default=None, max_length=500)
    location_address: Optional[str] = Field(default=None, max_length=500)
    # drivers only
    vehicle_model: Optional[str] = Field(default=None, min_length=2, max_length=100)
    vehicle_color: Optional[str] = Field(default=None, max_length=30)


class ChangePasswordRequest(BaseModel):
    current_password: str = Field(..., min_length=1)
    new_password: str = Field(..., min_length=6, max_length=128)


class AccountResponse(BaseModel):
    id: str
    role: RoleEnum
    name: str
    email: str
    phone: str
    profile_picture: str
    wallet_balance: float
    rating: float
    total_ratings: int
    location_lat: Optional[float] = None
    location_lng: Optional[float] = None
    location_address: str
    is_verified: bool
    created_at: datetime
    # rider
    rides_completed: Optional[int] = None
    # driver
    vehicle_type: Optional[RideTypeEnum] = None
    vehicle_number: Optional[str] = None
    vehicle_model: Optional[str] = None
    vehicle_color: Optional[str] = None
    kyc_status: Optional[KycStatusEnum] = None
    is_available: Optional[bool] = None
    total_rides: Optional[int] = None
    total_earnings: Optional[float] = None
    level: Optional[int] = None

    model_config = {"from_attributes": True}


class TokenResponse(BaseModel):
    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    expires_in: int
    account: AccountResponse


# ---------------------------------------------------------------------------
# Ride schemas
# ---------------------------------------------------------------------------

class FareEstimateRequest(BaseModel):
    pickup_lat: float = Field(..., ge=-90, le=90)
    pickup_lng: float = Field(..., ge=-180, le=180)
    dropoff_lat: float = Field(..., ge=-90, le=90)
    dropoff_lng: float = Field(..., ge=-180, le=180)
    ride_type: RideTypeEnum = RideTypeEnum.mini
    is_group_ride: bool = False


class FareEstimateResponse(BaseModel):
    ride_type: RideTypeEnum
    distance_km: float
    estimated_minutes: float
    is_group_ride: bool
    base_fare: float
    distance_fare: float
    time_fare: float
    surge_multiplier: float
    surge_amount: float
    group_discount: float
    estimated_fare: float
    currency: str = "INR"

    model_config = {"from_attributes": True}


class RideCreateRequest(FareEstimateRequest):
    pickup_address: str = Field(..., min_length=1, max_length=500)
    dropoff_address: str = Field(..., min_length=1, max_length=500)
    scheduled_time: Optional[datetime] = None


class DriverBrief(BaseModel):
    id: str
    name: str
    phone: str
    rating: float
    vehicle_type: str
    vehicle_number: str
    vehicle_model: str
    vehicle_color: str
    location_lat: Optional[float] = None
    location_lng: Optional[float] = None
    eta_minutes: Optional[int] = None

    model_config = {"from_attributes": True}


class RideResponse(BaseModel):
    id: str
    rider_id: str
    driver_id: Optional[str] = None
    ride_type: RideTypeEnum
    is_group_ride: bool
    status: RideStatusEnum
    pickup_lat: float
    pickup_lng: float
    pickup_address: str
    dropoff_lat: float
    dropoff_lng: float
    dropoff_address: str
    estimated_fare: float
    final_fare: Optional[float] = None
    base_fare: float
    distance_fare: float
    time_fare: float
    surge_amount: float
    group_discount: float
    surge_multiplier: float
    distance_km: float
    duration_estimated: int
    duration_actual: Optional[int] = None
    # only ever shown to the rider
    otp: Optional[str] = None
    scheduled_time: Optional[datetime] = None
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    cancellation_reason: Optional[str] = None
    cancelled_by: Optional[str] = None
    rider_rating: Optional[int] = None
    rider_feedback: Optional[str] = None
    payment_status: PaymentStatusEnum
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class RideCreateResponse(BaseModel):
    ride: RideResponse
    driver: Optional[DriverBrief] = None
    nearby_drivers: int


class RideListResponse(BaseModel):
    items: list[RideResponse]
    total: int
    page: int
    limit: int


class CancelRideRequest(BaseModel):
    reason: Optional[str] = Field(default=None, max_length=500)


class RateRideRequest(BaseModel):
    rating: int = Field(..., ge=1, le=5)
    feedback: Optional[str] = Field(default=None, max_length=500)


# ---------------------------------------------------------------------------
# Driver schemas
# ---------------------------------------------------------------------------

class AvailabilityRequest(BaseModel):
    """Omitting `is_available` toggles the current state."""
    is_available: Optional[bool] = None
    lat: Optional[float] = Field(default=None, ge=-90, le=90)
    lng: Optional[float] = Field(default=None, ge=-180, le=180)
    address: Optional[str] = Field(default=None, max_length=500)


class LocationUpdateRequest(BaseModel):
    lat: float = Field(..., ge=-90, le=90)
    lng: float = Field(..., ge=-180, le=180)
    address: Optional[str] = Field(default=None, max_length=500)


class KycDocumentsRequest(BaseModel):
    """References (URLs / storage keys) to uploaded documents."""
    driving_license: Optional[str] = Field(default=None, max_length=500)
    vehicle_rc: Optional[str] = Field(default=None, max_length=500)
    insurance: Optional[str] = Field(default=None, max_length=500)
    aadhar_card: Optional[str] = Field(default=None, max_length=500)
    pan_card: Optional[str] = Field(default=None, max_length=500)

    @model_validator(mode="after")
    def require_one(self):
        if not any(self.model_dump().values()):
            raise ValueError("At least one document is required")
        return self


class DriverStatusResponse(BaseModel):
    id: str
    is_available: bool
    kyc_status: KycStatusEnum
    kyc_documents: dict
    current_ride_id: Optional[str] = None
    location_lat: Optional[float] = None
    location_lng: Optional[float] = None
    location_address: str

    model_config = {"from_attributes": True}


class RejectRideRequest(BaseModel):
    reason: Optional[str] = Field(default=None, max_length=500)


class StartRideRequest(BaseModel):
    otp: str = Field(..., pattern=r"^[0-9]{4}$")


class CompleteRideRequest(BaseModel):
    final_fare: Optional[Decimal] = Field(default=None, ge=0)


class Badge(BaseModel):
    name: str
    earned_at: datetime


class DriverSummary(BaseModel):
    name: str
    rating: float
    level: int
    badges: list[Badge]
    vehicle_type: str
    vehicle_number: str


class EarningsResponse(BaseModel):
    driver: DriverSummary
    total_earnings: float
    total_rides: int
    wallet_balance: float
    today_earnings: float
    today_rides: int
    recent_rides: list[RideResponse]


class DriverStatsResponse(BaseModel):
    total_rides: int
    total_earnings: float
    rating: float
    total_ratings: int
    acceptance_rate: float
    cancelled_rides: int
    level: int
    experience: int
    badges: list[Badge]
    kyc_status: KycStatusEnum


# ---------------------------------------------------------------------------
# Payment schemas
# ---------------------------------------------------------------------------

class PaymentRequest(BaseModel):
    ride_id: str
    method: PaymentMethodEnum = PaymentMethodEnum.wallet


class PaymentResponse(BaseModel):
    id: str
    ride_id: str
    rider_id: str
    driver_id: str
    amount: float
    currency: str
    method: PaymentMethodEnum
    status: PaymentStatusEnum
    platform_fee: float
    driver_earnings: float
    transaction_id: Optional[str] = None
    receipt_number: str
    failure_reason: Optional[str] = None
    refund_amount: float
    refund_reason: Optional[str] = None
    refunded_at: Optional[datetime] = None
    created_at: datetime

    model_config = {"from_attributes": True}


class PaymentListResponse(BaseModel):
    items: list[PaymentResponse]
    total: int
    page: int
    limit: int


class RefundRequest(BaseModel):
    reason: Optional[str] = Field(default=None, max_length=500)
    amount: Optional[Decimal] = Field(default=None, gt=0)


class TopUpRequest(BaseModel):
    amount: Decimal = Field(..., gt=0, le=100000)
    method: TopUpMethodEnum = TopUpMethodEnum.upi


class WalletResponse(BaseModel):
    wallet_balance: float


class ReceiptRide(BaseModel):
    id: str
    pickup_address: str
    dropoff_address: str
    distance_km: float
    duration_minutes: Optional[int] = None
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None


class ReceiptParty(BaseModel):
    name: str
    phone: str


class ReceiptFare(BaseModel):
    base_fare: float
    distance_fare: float
    time_fare: float
    surge_multiplier: float
    total: float


class ReceiptPayment(BaseModel):
    method: PaymentMethodEnum
    status: PaymentStatusEnum
    transaction_id: Optional[str] = None
    platform_fee: float
    driver_earnings: float
    paid_at: datetime


class ReceiptResponse(BaseModel):
    receipt_number: str
    ride: ReceiptRide
    rider: Optional[ReceiptParty] = None
    driver: Optional[ReceiptParty] = None
    fare_breakdown: ReceiptFare
    payment: ReceiptPayment
