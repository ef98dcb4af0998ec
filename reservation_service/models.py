import datetime
from enum import Enum as PyEnum

from sqlalchemy import Column, Integer, Date, TIMESTAMP, String, Text, Numeric, Index
from sqlalchemy import Enum as SQLEnum
from .database import Base


class ReservationStatus(str, PyEnum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"
    COMPLETED = "completed"


class PaymentStatus(str, PyEnum):
    PENDING = "pending"
    PAID = "paid"
    REFUNDED = "refunded"


def _enum_values(enum_cls):
    # Store the lowercase values, not the member names
    return [member.value for member in enum_cls]


def _utcnow():
    return datetime.datetime.now(datetime.timezone.utc)


class Reservation(Base):
    __tablename__ = "reservations"

    id = Column(Integer, primary_key=True, index=True)

    # The listing is just an ID; listings live in the front end.
    listing_id = Column(Integer, index=True, nullable=False)

    guest_name = Column(String(255), nullable=False)
    guest_email = Column(String(255), nullable=False)
    guest_phone = Column(String(50), nullable=True)

    # check_out is exclusive: the guest leaves that morning
    check_in = Column(Date, nullable=False)
    check_out = Column(Date, nullable=False)

    adults = Column(Integer, nullable=False, default=1)
    children = Column(Integer, nullable=False, default=0)
    infants = Column(Integer, nullable=False, default=0)
    pets = Column(Integer, nullable=False, default=0)

    # Price snapshot, computed once at creation
    nightly_rate = Column(Numeric(10, 2), nullable=False)
    num_nights = Column(Integer, nullable=False)
    cleaning_fee = Column(Numeric(10, 2), nullable=False)
    service_fee = Column(Numeric(10, 2), nullable=False, default=0)
    tax = Column(Numeric(10, 2), nullable=False)
    total_price = Column(Numeric(10, 2), nullable=False)

    special_requests = Column(Text, nullable=True)

    status = Column(
        SQLEnum(ReservationStatus, values_callable=_enum_values, native_enum=False, length=20),
        default=ReservationStatus.PENDING,
        nullable=False,
    )
    payment_status = Column(
        SQLEnum(PaymentStatus, values_callable=_enum_values, native_enum=False, length=20),
        default=PaymentStatus.PENDING,
        nullable=False,
    )
    payment_intent_id = Column(String(255), unique=True, nullable=True)
    payment_method = Column(String(50), nullable=True)

    external_calendar_ref = Column(String(255), nullable=True)

    created_at = Column(TIMESTAMP, default=_utcnow, nullable=False)

    __table_args__ = (
        # Serves the availability query: listing + date range
        Index("ix_reservations_listing_dates", "listing_id", "check_in", "check_out"),
        # Never reuse an id after a hard delete
        {"sqlite_autoincrement": True},
    )

    def __repr__(self):
        return (
            f"<Reservation #{self.id} listing={self.listing_id} "
            f"{self.check_in}->{self.check_out} {self.status}>"
        )
