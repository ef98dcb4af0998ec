from typing import List, Annotated

from fastapi import APIRouter, BackgroundTasks, Depends, Query, status
from sqlalchemy.orm import Session

from .. import schemas, crud
from ..auth import get_current_admin
from ..calendar_sync import CalendarClient, get_calendar_client
from ..database import get_db, get_session_factory
from ..lifecycle import ReservationManager, parse_status
from ..payments import PaymentGateway, get_payment_gateway

router = APIRouter(prefix="/api/reservations", tags=["Reservations"])


def get_reservation_manager(
        background_tasks: BackgroundTasks,
        db: Session = Depends(get_db),
        payments: PaymentGateway | None = Depends(get_payment_gateway),
        calendar: CalendarClient | None = Depends(get_calendar_client),
        session_factory=Depends(get_session_factory)
) -> ReservationManager:
    # Calendar calls run after the response is sent
    return ReservationManager(
        db,
        payments=payments,
        calendar=calendar,
        background=background_tasks,
        session_factory=session_factory
    )


Manager = Annotated[ReservationManager, Depends(get_reservation_manager)]
Admin = Annotated[str, Depends(get_current_admin)]


@router.get("", response_model=List[schemas.ReservationRead])
def read_reservations(
        admin: Admin,
        db: Session = Depends(get_db),
        status_filter: str | None = Query(None, alias="status"),
        skip: int = 0,
        limit: int | None = None
):
    """
    List reservations, most recent first. Admin only.
    """
    parsed = parse_status(status_filter) if status_filter else None
    return crud.list_reservations(db, status=parsed, skip=skip, limit=limit)


@router.get("/stats", response_model=schemas.ReservationStats)
def read_reservation_stats(admin: Admin, db: Session = Depends(get_db)):
    """
    Dashboard numbers: count per status and revenue from non-cancelled stays.
    """
    return crud.get_reservation_stats(db)


@router.get("/dates/{listing_id}", response_model=List[schemas.BookedRange])
def read_booked_dates(listing_id: int, db: Session = Depends(get_db)):
    """
    Booked (check_in, check_out) ranges for a listing, for blocking dates
    on the booking calendar.
    """
    ranges = crud.list_active_ranges(db, listing_id)
    return [schemas.BookedRange(check_in=check_in, check_out=check_out) for check_in, check_out in ranges]


@router.get("/{reservation_id}", response_model=schemas.ReservationRead)
def read_reservation(reservation_id: int, manager: Manager):
    return manager.get(reservation_id)


@router.post("", response_model=schemas.ReservationResponse, status_code=status.HTTP_201_CREATED)
def create_reservation(reservation: schemas.ReservationCreate, manager: Manager):
    """
    Book a stay without payment. The reservation starts as pending.
    """
    db_reservation = manager.create(reservation)
    return {"message": "Reservation created successfully", "reservation": db_reservation}


@router.post("/with-payment", response_model=schemas.ReservationResponse, status_code=status.HTTP_201_CREATED)
def create_paid_reservation(reservation: schemas.ReservationCreateWithPayment, manager: Manager):
    """
    Book a stay the guest already paid for. The reservation starts as confirmed.
    """
    db_reservation = manager.create_with_payment(reservation)
    return {"message": "Reservation confirmed and payment received", "reservation": db_reservation}


@router.patch("/{reservation_id}", response_model=schemas.ReservationResponse)
def update_reservation_status(
        reservation_id: int,
        update: schemas.StatusUpdate,
        admin: Admin,
        manager: Manager
):
    db_reservation = manager.transition(reservation_id, update.status)
    return {"message": "Reservation updated", "reservation": db_reservation}


@router.post("/{reservation_id}/refund", response_model=schemas.ReservationResponse)
def refund_reservation(reservation_id: int, admin: Admin, manager: Manager):
    """
    Refund the guest's payment and cancel the reservation. Admin only.
    """
    db_reservation = manager.refund(reservation_id)
    return {"message": "Refund processed and reservation cancelled", "reservation": db_reservation}


@router.delete("/{reservation_id}", response_model=schemas.Message)
def delete_reservation(reservation_id: int, admin: Admin, manager: Manager):
    """
    Permanently delete a reservation. Does not refund any payment.
    """
    manager.delete(reservation_id)
    return {"message": "Reservation deleted successfully"}
