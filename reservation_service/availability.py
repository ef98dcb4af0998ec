import datetime

from sqlalchemy.orm import Session

from . import models, errors


def overlaps(a_start: datetime.date, a_end: datetime.date, b_start: datetime.date, b_end: datetime.date) -> bool:
    """
    Half-open intervals [a_start, a_end) and [b_start, b_end) overlap iff
    each one starts before the other ends. Touching ranges do not overlap.
    """
    return a_start < b_end and a_end > b_start


def validate_range(check_in: datetime.date, check_out: datetime.date):
    if check_in is None or check_out is None:
        raise errors.ValidationError("Both check-in and check-out dates are required.")
    if check_in >= check_out:
        raise errors.ValidationError("Check-out date must be after check-in date.")


def _conflict_query(
        db: Session,
        listing_id: int,
        check_in: datetime.date,
        check_out: datetime.date,
        exclude_id: int | None = None
):
    validate_range(check_in, check_out)
    # The logic for an overlap is:
    # (Existing check_in < New check_out) AND (Existing check_out > New check_in)
    query = db.query(models.Reservation).filter(
        models.Reservation.listing_id == listing_id,
        models.Reservation.status != models.ReservationStatus.CANCELLED,
        models.Reservation.check_in < check_out,
        models.Reservation.check_out > check_in
    )
    if exclude_id is not None:
        query = query.filter(models.Reservation.id != exclude_id)
    return query


def has_conflict(
        db: Session,
        listing_id: int,
        check_in: datetime.date,
        check_out: datetime.date,
        exclude_id: int | None = None
) -> bool:
    """
    Checks if a stay on the listing would overlap any reservation that is
    not cancelled.

    Returns True if a conflict exists, False otherwise.
    """
    existing = _conflict_query(db, listing_id, check_in, check_out, exclude_id).first()
    return existing is not None


def find_conflicts(
        db: Session,
        listing_id: int,
        check_in: datetime.date,
        check_out: datetime.date,
        exclude_id: int | None = None
) -> list[models.Reservation]:
    """
    Same predicate as has_conflict, but returns every conflicting
    reservation ordered by check_in so callers can report them.
    """
    query = _conflict_query(db, listing_id, check_in, check_out, exclude_id)
    return query.order_by(models.Reservation.check_in).all()
