"""
Reservation lifecycle: create, change status, refund and delete.

ReservationManager is the only code that writes reservations. It owns the
status state machine, the "no double booking" rule (re-checked under the
listing lock right before each insert) and the calls to the optional
payment and calendar collaborators.
"""
import datetime
import logging
from typing import Callable

from fastapi import BackgroundTasks
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from .config import settings
from . import availability, crud, errors, models, pricing, schemas
from .calendar_sync import CalendarClient
from .database import SessionLocal
from .locks import ListingLocks, listing_locks, reservation_locks
from .payments import PaymentGateway, PaymentGatewayError

logger = logging.getLogger("reservation_service")

Status = models.ReservationStatus

# Admin-triggered moves. cancelled and completed are terminal here;
# only a refund can take a completed stay to cancelled.
ALLOWED_TRANSITIONS: dict[models.ReservationStatus, frozenset] = {
    Status.PENDING: frozenset({Status.CONFIRMED, Status.CANCELLED}),
    Status.CONFIRMED: frozenset({Status.CANCELLED, Status.COMPLETED}),
    Status.CANCELLED: frozenset(),
    Status.COMPLETED: frozenset(),
}

REQUIRED_FIELDS = ("guest_name", "guest_email", "check_in", "check_out")


def parse_status(value) -> models.ReservationStatus:
    try:
        return models.ReservationStatus(value)
    except ValueError:
        valid = ", ".join(status.value for status in models.ReservationStatus)
        raise errors.ValidationError(f"Invalid status. Must be one of: {valid}")


def can_transition(current: models.ReservationStatus, new: models.ReservationStatus) -> bool:
    return new in ALLOWED_TRANSITIONS[current]


def sync_calendar_event(db: Session, calendar: CalendarClient, reservation: models.Reservation) -> models.Reservation:
    """
    Best-effort calendar mirror. Failures are logged and the reservation
    is returned unchanged.
    """
    try:
        ref = calendar.upsert_event(reservation)
        if ref and ref != reservation.external_calendar_ref:
            updated = crud.update_calendar_ref(db, reservation.id, ref)
            if updated is not None:
                reservation = updated
    except Exception as e:
        logger.error(f"Calendar sync failed for reservation #{reservation.id}: {e}")
    return reservation


def sync_calendar_in_background(
        session_factory: Callable[[], Session],
        calendar: CalendarClient,
        reservation_id: int
):
    """Runs after the response is sent, on a session of its own."""
    db = session_factory()
    try:
        reservation = crud.get_reservation(db, reservation_id)
        if reservation is None:
            logger.info(f"Reservation #{reservation_id} is gone; skipping calendar sync")
            return
        sync_calendar_event(db, calendar, reservation)
    except Exception as e:
        logger.error(f"Calendar sync failed for reservation #{reservation_id}: {e}")
    finally:
        db.close()


def delete_calendar_event(calendar: CalendarClient, ref: str, reservation_id: int):
    try:
        calendar.delete_event(ref)
    except Exception as e:
        logger.error(f"Calendar delete failed for reservation #{reservation_id}: {e}")


class ReservationManager:
    """
    Without `background` the calendar is synced inline before returning.
    With it, calendar calls are queued as background tasks that open
    their own session from `session_factory`, so a slow calendar never
    delays the response.
    """

    def __init__(
            self,
            db: Session,
            payments: PaymentGateway | None = None,
            calendar: CalendarClient | None = None,
            locks: ListingLocks = listing_locks,
            refund_locks: ListingLocks = reservation_locks,
            background: BackgroundTasks | None = None,
            session_factory: Callable[[], Session] | None = None
    ):
        self.db = db
        self.payments = payments
        self.calendar = calendar
        self.locks = locks
        self.refund_locks = refund_locks
        self.background = background
        self.session_factory = session_factory or SessionLocal

    # --- Queries ---

    def get(self, reservation_id: int) -> models.Reservation:
        reservation = crud.get_reservation(self.db, reservation_id)
        if reservation is None:
            raise errors.NotFoundError("Reservation not found")
        return reservation

    def quote(
            self,
            listing_id: int | None,
            check_in: datetime.date,
            check_out: datetime.date,
            nightly_rate=None
    ) -> tuple[pricing.Quote, bool]:
        """
        Prices a stay and says whether the dates are still free.
        Nothing is held: create() checks availability again.
        """
        listing_id = listing_id or settings.DEFAULT_LISTING_ID
        availability.validate_range(check_in, check_out)
        price = self._price(check_in, check_out, nightly_rate)
        available = not availability.has_conflict(self.db, listing_id, check_in, check_out)
        return price, available

    # --- Creation ---

    def create(self, request: schemas.ReservationCreate) -> models.Reservation:
        """
        Books an unpaid stay. The reservation starts as pending/pending and
        an admin confirms it later.
        """
        listing_id, price = self._validate(request)

        reservation = self._build(request, listing_id, price)
        reservation.status = models.ReservationStatus.PENDING
        reservation.payment_status = models.PaymentStatus.PENDING

        with self.locks.hold(listing_id):
            conflicts = availability.find_conflicts(self.db, listing_id, request.check_in, request.check_out)
            if conflicts:
                raise errors.ConflictError("These dates are already booked", conflicts)
            reservation = crud.insert_reservation(self.db, reservation)

        logger.info(f"New reservation #{reservation.id} created for {reservation.guest_name}")
        return self._sync_calendar(reservation)

    def create_with_payment(self, request: schemas.ReservationCreateWithPayment) -> models.Reservation:
        """
        Books a stay the guest has already paid for. The charge is verified
        with the payment provider first. If the dates were taken in the
        meantime, or the reservation cannot be saved, the charge is refunded
        and the error is reported.
        """
        listing_id, price = self._validate(request)
        payment_intent_id = request.payment_intent_id
        if not payment_intent_id:
            raise errors.ValidationError("Missing required field: payment_intent_id")

        existing = crud.get_reservation_by_payment_intent(self.db, payment_intent_id)
        if existing is not None:
            raise errors.ValidationError(f"This payment has already been used for reservation #{existing.id}")

        self._verify_payment(payment_intent_id)

        reservation = self._build(request, listing_id, price)
        reservation.status = models.ReservationStatus.CONFIRMED
        reservation.payment_status = models.PaymentStatus.PAID
        reservation.payment_intent_id = payment_intent_id
        reservation.payment_method = "stripe"

        # Any refund below is a provider call, so it must happen after the
        # lock is released.
        store_error = None
        with self.locks.hold(listing_id):
            conflicts = availability.find_conflicts(self.db, listing_id, request.check_in, request.check_out)
            if not conflicts:
                try:
                    reservation = crud.insert_reservation(self.db, reservation)
                except errors.StoreError as e:
                    store_error = e

        if conflicts or store_error is not None:
            # A concurrent request may have booked with this same charge
            # after the check above; that charge is not ours to refund.
            owner = self._charge_owner(payment_intent_id)
            if owner is not None:
                raise errors.ValidationError(
                    f"This payment has already been used for reservation #{owner.id}"
                ) from store_error

        if store_error is not None:
            self._compensate(payment_intent_id, "the reservation could not be saved")
            raise store_error

        if conflicts:
            refunded = self._compensate(payment_intent_id, "a date conflict")
            message = "These dates are already booked"
            if refunded:
                message += "; your payment has been refunded"
            raise errors.ConflictError(message, conflicts, refunded=refunded)

        logger.info(f"New paid reservation #{reservation.id} created for {reservation.guest_name}")
        return self._sync_calendar(reservation)

    # --- Admin operations ---

    def transition(self, reservation_id: int, new_status) -> models.Reservation:
        status = parse_status(new_status)
        reservation = self.get(reservation_id)

        with self.locks.hold(reservation.listing_id):
            self.db.refresh(reservation)
            current = reservation.status
            if not can_transition(current, status):
                raise errors.InvalidTransitionError(
                    f"Cannot change reservation status from {current.value} to {status.value}"
                )
            reservation = crud.update_status(self.db, reservation_id, status)

        logger.info(f"Reservation #{reservation_id} moved from {current.value} to {status.value}")
        return self._sync_calendar(reservation)

    def refund(self, reservation_id: int) -> models.Reservation:
        """
        Refunds the charge and cancels the stay. If the provider fails the
        reservation keeps its current state and the refund can be retried.
        Refunds of the same reservation run one at a time, so a charge is
        never sent back twice.
        """
        reservation = self.get(reservation_id)

        with self.refund_locks.hold(reservation_id):
            self.db.refresh(reservation)
            if not reservation.payment_intent_id:
                raise errors.ValidationError("No payment found for this reservation")
            if reservation.payment_status == models.PaymentStatus.REFUNDED:
                raise errors.ValidationError("This reservation has already been refunded")
            if self.payments is None:
                raise errors.PaymentNotConfiguredError("Payment processing is not configured")

            try:
                refund_id = self.payments.refund(reservation.payment_intent_id)
            except PaymentGatewayError as e:
                raise errors.RefundError(f"Refund failed: {e}") from e

            reservation = crud.update_payment(
                self.db,
                reservation_id,
                models.PaymentStatus.REFUNDED,
                status=models.ReservationStatus.CANCELLED
            )
        logger.info(f"Reservation #{reservation_id} refunded (refund {refund_id}) and cancelled")
        return self._sync_calendar(reservation)

    def delete(self, reservation_id: int):
        """
        Hard delete. No refund is issued; that is up to the operator.
        """
        reservation = self.get(reservation_id)
        calendar_ref = reservation.external_calendar_ref
        if not crud.delete_reservation(self.db, reservation_id):
            raise errors.NotFoundError("Reservation not found")
        logger.info(f"Reservation #{reservation_id} deleted")

        if calendar_ref and self.calendar is not None:
            if self.background is not None:
                self.background.add_task(delete_calendar_event, self.calendar, calendar_ref, reservation_id)
            else:
                delete_calendar_event(self.calendar, calendar_ref, reservation_id)

    # --- Helpers ---

    def _validate(self, request: schemas.ReservationCreate) -> tuple[int, pricing.Quote]:
        missing = [name for name in REQUIRED_FIELDS if not getattr(request, name)]
        if missing:
            raise errors.ValidationError(f"Missing required fields: {', '.join(missing)}")
        if "@" not in request.guest_email:
            raise errors.ValidationError("Guest email address is not valid")
        availability.validate_range(request.check_in, request.check_out)

        listing_id = request.listing_id or settings.DEFAULT_LISTING_ID
        price = self._price(request.check_in, request.check_out, request.nightly_rate)
        return listing_id, price

    def _price(self, check_in: datetime.date, check_out: datetime.date, nightly_rate=None) -> pricing.Quote:
        return pricing.quote(
            nightly_rate or settings.DEFAULT_NIGHTLY_RATE,
            check_in,
            check_out,
            cleaning_fee=settings.CLEANING_FEE,
            service_fee=settings.SERVICE_FEE,
        )

    def _build(self, request: schemas.ReservationCreate, listing_id: int, price: pricing.Quote) -> models.Reservation:
        return models.Reservation(
            listing_id=listing_id,
            guest_name=request.guest_name,
            guest_email=request.guest_email,
            guest_phone=request.guest_phone or None,
            check_in=request.check_in,
            check_out=request.check_out,
            adults=request.adults,
            children=request.children,
            infants=request.infants,
            pets=request.pets,
            nightly_rate=price.nightly_rate,
            num_nights=price.nights,
            cleaning_fee=price.cleaning_fee,
            service_fee=price.service_fee,
            tax=price.tax,
            total_price=price.total,
            special_requests=request.special_requests or None,
        )

    def _verify_payment(self, payment_intent_id: str):
        if self.payments is None:
            raise errors.PaymentVerificationError("Payment processing is not configured")
        try:
            succeeded = self.payments.verify_succeeded(payment_intent_id)
        except PaymentGatewayError as e:
            raise errors.PaymentVerificationError(f"Payment verification failed: {e}") from e
        if not succeeded:
            raise errors.PaymentVerificationError("Payment has not been completed")

    def _charge_owner(self, payment_intent_id: str) -> models.Reservation | None:
        try:
            return crud.get_reservation_by_payment_intent(self.db, payment_intent_id)
        except SQLAlchemyError as e:
            # Store unreachable: nobody can have saved this charge either
            logger.error(f"Could not look up payment {payment_intent_id}: {e}")
            return None

    def _compensate(self, payment_intent_id: str, reason: str) -> bool:
        """Refunds a captured charge that did not end up backing a reservation."""
        try:
            refund_id = self.payments.refund(payment_intent_id)
        except PaymentGatewayError as e:
            # The guest was charged and has no booking: needs manual follow-up
            logger.error(f"Refund after {reason} FAILED for payment {payment_intent_id}: {e}")
            return False
        logger.warning(f"Refunded payment {payment_intent_id} (refund {refund_id}) after {reason}")
        return True

    def _sync_calendar(self, reservation: models.Reservation) -> models.Reservation:
        if self.calendar is None:
            return reservation
        if self.background is not None:
            self.background.add_task(sync_calendar_in_background, self.session_factory, self.calendar, reservation.id)
            return reservation
        return sync_calendar_event(self.db, self.calendar, reservation)
