from decimal import Decimal
from typing import Any

from pydantic import BaseModel, Field
import datetime

from .models import ReservationStatus, PaymentStatus


class ReservationBase(BaseModel):
    listing_id: int | None = None

    # Presence is checked by the lifecycle manager so a missing field
    # gets the same 400 message as any other booking validation error
    guest_name: str | None = None
    guest_email: str | None = None
    guest_phone: str | None = None
    check_in: datetime.date | None = None
    check_out: datetime.date | None = None

    adults: int = Field(1, ge=1)
    children: int = Field(0, ge=0)
    infants: int = Field(0, ge=0)
    pets: int = Field(0, ge=0)

    special_requests: str | None = None


class ReservationCreate(ReservationBase):
    # Price fields sent by the browser are ignored; the server quotes the stay.
    nightly_rate: Decimal | None = Field(None, gt=0)


class ReservationCreateWithPayment(ReservationCreate):
    payment_intent_id: str | None = None


class ReservationRead(BaseModel):
    id: int
    listing_id: int
    guest_name: str
    guest_email: str
    guest_phone: str | None = None
    check_in: datetime.date
    check_out: datetime.date
    adults: int
    children: int
    infants: int
    pets: int
    nightly_rate: float
    num_nights: int
    cleaning_fee: float
    service_fee: float
    tax: float
    total_price: float
    special_requests: str | None = None
    status: ReservationStatus
    payment_status: PaymentStatus
    payment_intent_id: str | None = None
    payment_method: str | None = None
    external_calendar_ref: str | None = None
    created_at: datetime.datetime

    class Config:
        from_attributes = True


class ReservationResponse(BaseModel):
    message: str
    reservation: ReservationRead


class StatusUpdate(BaseModel):
    # Plain string so an unknown value reaches the state machine and gets a 400
    status: str


class BookedRange(BaseModel):
    check_in: datetime.date
    check_out: datetime.date


class ReservationStats(BaseModel):
    total: int
    pending: int
    confirmed: int
    cancelled: int
    completed: int
    revenue: float


class QuoteRead(BaseModel):
    listing_id: int
    check_in: datetime.date
    check_out: datetime.date
    nights: int
    nightly_rate: float
    subtotal: float
    cleaning_fee: float
    service_fee: float
    tax: float
    total: float
    available: bool


class PaymentIntentCreate(BaseModel):
    amount: Decimal = Field(..., gt=0)
    currency: str | None = None
    metadata: dict[str, Any] = {}


class PaymentIntentRead(BaseModel):
    client_secret: str = Field(serialization_alias="clientSecret")
    payment_intent_id: str = Field(serialization_alias="paymentIntentId")


class StripeConfigRead(BaseModel):
    publishable_key: str = Field(serialization_alias="publishableKey")


class Message(BaseModel):
    message: str
