import datetime
import logging
from decimal import Decimal

from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from . import models, errors

logger = logging.getLogger("reservation_service")


def _commit(db: Session, action: str):
    """
    Commits the pending change for a single record.
    On failure the session is rolled back so no partial write survives.
    """
    try:
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Database error while trying to {action}: {e}")
        raise errors.StoreError(f"Could not {action}.") from e


def insert_reservation(db: Session, reservation: models.Reservation) -> models.Reservation:
    """
    Persists a fully built reservation and returns it with its new ID.
    Conflict checks are the caller's job (see lifecycle.ReservationManager).
    """
    db.add(reservation)
    _commit(db, "create the reservation")
    db.refresh(reservation)
    return reservation


def get_reservation(db: Session, reservation_id: int) -> models.Reservation | None:
    return db.query(models.Reservation).filter(models.Reservation.id == reservation_id).first()


def get_reservation_by_payment_intent(db: Session, payment_intent_id: str) -> models.Reservation | None:
    return db.query(models.Reservation).filter(
        models.Reservation.payment_intent_id == payment_intent_id
    ).first()


def list_reservations(
        db: Session,
        status: models.ReservationStatus | None = None,
        skip: int = 0,
        limit: int | None = None
) -> list[models.Reservation]:
    """
    Returns reservations ordered by creation time, most recent first.
    """
    query = db.query(models.Reservation)
    if status is not None:
        query = query.filter(models.Reservation.status == status)
    # id breaks ties between rows created within the same timestamp tick
    query = query.order_by(models.Reservation.created_at.desc(), models.Reservation.id.desc())
    return query.offset(skip).limit(limit).all()


def update_status(db: Session, reservation_id: int, status: models.ReservationStatus) -> models.Reservation | None:
    db_reservation = get_reservation(db, reservation_id)
    if db_reservation is None:
        return None
    db_reservation.status = status
    _commit(db, f"update reservation #{reservation_id}")
    db.refresh(db_reservation)
    return db_reservation


def update_payment(
        db: Session,
        reservation_id: int,
        payment_status: models.PaymentStatus,
        **fields
) -> models.Reservation | None:
    """
    Sets the payment status together with any related columns
    (status, payment_intent_id, payment_method) in one commit.
    """
    db_reservation = get_reservation(db, reservation_id)
    if db_reservation is None:
        return None
    db_reservation.payment_status = payment_status
    for name, value in fields.items():
        if not hasattr(models.Reservation, name):
            raise ValueError(f"Unknown reservation field: {name}")
        setattr(db_reservation, name, value)
    _commit(db, f"update payment for reservation #{reservation_id}")
    db.refresh(db_reservation)
    return db_reservation


def update_calendar_ref(db: Session, reservation_id: int, ref: str | None) -> models.Reservation | None:
    db_reservation = get_reservation(db, reservation_id)
    if db_reservation is None:
        return None
    db_reservation.external_calendar_ref = ref
    _commit(db, f"store the calendar reference for reservation #{reservation_id}")
    db.refresh(db_reservation)
    return db_reservation


def delete_reservation(db: Session, reservation_id: int) -> bool:
    db_reservation = get_reservation(db, reservation_id)
    if db_reservation:
        db.delete(db_reservation)
        _commit(db, f"delete reservation #{reservation_id}")
        return True
    return False


def list_active_ranges(db: Session, listing_id: int) -> list[tuple[datetime.date, datetime.date]]:
    """
    Returns (check_in, check_out) for every non-cancelled reservation on the
    listing, ordered by check_in. The front end blocks these on its calendar.
    """
    rows = db.query(models.Reservation.check_in, models.Reservation.check_out).filter(
        models.Reservation.listing_id == listing_id,
        models.Reservation.status != models.ReservationStatus.CANCELLED
    ).order_by(models.Reservation.check_in, models.Reservation.id).all()
    return [(row.check_in, row.check_out) for row in rows]


def get_reservation_stats(db: Session) -> dict:
    """
    Summary numbers for the admin dashboard: a count per status and revenue
    (sum of total_price over every reservation that is not cancelled).
    """
    counts = dict(
        db.query(models.Reservation.status, func.count(models.Reservation.id))
        .group_by(models.Reservation.status)
        .all()
    )
    revenue = db.query(func.sum(models.Reservation.total_price)).filter(
        models.Reservation.status != models.ReservationStatus.CANCELLED
    ).scalar()

    stats = {status.value: counts.get(status, 0) for status in models.ReservationStatus}
    stats["total"] = sum(stats.values())
    stats["revenue"] = Decimal(revenue or 0).quantize(Decimal("0.01"))
    return stats
