from datetime import date, datetime, timedelta
from decimal import Decimal
from unittest.mock import MagicMock

import pytest
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session

from reservation_service import crud, errors, models
from conftest import make_reservation


def test_insert_assigns_id_and_created_at(db_session: Session):
    reservation = crud.insert_reservation(db_session, make_reservation(date(2024, 6, 1), date(2024, 6, 3)))

    assert reservation.id is not None
    assert reservation.created_at is not None
    assert crud.get_reservation(db_session, reservation.id) is reservation


def test_ids_are_monotonic(db_session: Session):
    first = crud.insert_reservation(db_session, make_reservation(date(2024, 6, 1), date(2024, 6, 3)))
    second = crud.insert_reservation(db_session, make_reservation(date(2024, 6, 3), date(2024, 6, 5)))

    assert second.id > first.id


def test_get_missing_returns_none(db_session: Session):
    assert crud.get_reservation(db_session, 999999) is None


def test_list_most_recent_first(db_session: Session, add_reservation):
    base = datetime(2024, 5, 1, 12, 0, 0)
    oldest = add_reservation(date(2024, 6, 1), date(2024, 6, 3), created_at=base)
    newest = add_reservation(date(2024, 6, 5), date(2024, 6, 7), created_at=base + timedelta(hours=2))
    middle = add_reservation(date(2024, 6, 9), date(2024, 6, 11), created_at=base + timedelta(hours=1))

    listed = crud.list_reservations(db_session)

    assert [r.id for r in listed] == [newest.id, middle.id, oldest.id]


def test_list_filters_by_status(db_session: Session, add_reservation):
    add_reservation(date(2024, 6, 1), date(2024, 6, 3))
    confirmed = add_reservation(date(2024, 6, 5), date(2024, 6, 7), status=models.ReservationStatus.CONFIRMED)

    listed = crud.list_reservations(db_session, status=models.ReservationStatus.CONFIRMED)

    assert [r.id for r in listed] == [confirmed.id]


def test_update_status(db_session: Session, add_reservation):
    reservation = add_reservation(date(2024, 6, 1), date(2024, 6, 3))

    updated = crud.update_status(db_session, reservation.id, models.ReservationStatus.CONFIRMED)

    assert updated.status == models.ReservationStatus.CONFIRMED


def test_update_status_missing_returns_none(db_session: Session):
    assert crud.update_status(db_session, 424242, models.ReservationStatus.CONFIRMED) is None


def test_update_payment_sets_related_fields(db_session: Session, add_reservation):
    reservation = add_reservation(
        date(2024, 6, 1), date(2024, 6, 3),
        status=models.ReservationStatus.CONFIRMED,
        payment_status=models.PaymentStatus.PAID,
        payment_intent_id="pi_123",
    )

    updated = crud.update_payment(
        db_session, reservation.id, models.PaymentStatus.REFUNDED,
        status=models.ReservationStatus.CANCELLED
    )

    assert updated.payment_status == models.PaymentStatus.REFUNDED
    assert updated.status == models.ReservationStatus.CANCELLED
    assert updated.payment_intent_id == "pi_123"


def test_update_payment_rejects_unknown_field(db_session: Session, add_reservation):
    reservation = add_reservation(date(2024, 6, 1), date(2024, 6, 3))

    with pytest.raises(ValueError):
        crud.update_payment(db_session, reservation.id, models.PaymentStatus.PAID, not_a_column=1)


def test_delete(db_session: Session, add_reservation):
    reservation = add_reservation(date(2024, 6, 1), date(2024, 6, 3))
    reservation_id = reservation.id

    assert crud.delete_reservation(db_session, reservation_id) is True
    assert crud.get_reservation(db_session, reservation_id) is None
    assert crud.delete_reservation(db_session, reservation_id) is False


def test_list_active_ranges_skips_cancelled_and_sorts(db_session: Session, add_reservation):
    add_reservation(date(2024, 7, 10), date(2024, 7, 12))
    add_reservation(date(2024, 7, 1), date(2024, 7, 3))
    add_reservation(date(2024, 7, 5), date(2024, 7, 8), status=models.ReservationStatus.CANCELLED)
    add_reservation(date(2024, 7, 20), date(2024, 7, 22), listing_id=2)

    ranges = crud.list_active_ranges(db_session, 1)

    assert ranges == [
        (date(2024, 7, 1), date(2024, 7, 3)),
        (date(2024, 7, 10), date(2024, 7, 12)),
    ]
    # Reading twice without writes gives the same answer
    assert crud.list_active_ranges(db_session, 1) == ranges


def test_get_reservation_stats(db_session: Session, add_reservation):
    add_reservation(date(2024, 7, 1), date(2024, 7, 3), total_price=Decimal("906.87"))
    add_reservation(date(2024, 7, 5), date(2024, 7, 7), status=models.ReservationStatus.CONFIRMED,
                    total_price=Decimal("1000.00"))
    add_reservation(date(2024, 7, 9), date(2024, 7, 11), status=models.ReservationStatus.CANCELLED,
                    total_price=Decimal("500.00"))

    stats = crud.get_reservation_stats(db_session)

    assert stats["total"] == 3
    assert stats["pending"] == 1
    assert stats["confirmed"] == 1
    assert stats["cancelled"] == 1
    assert stats["completed"] == 0
    assert stats["revenue"] == Decimal("1906.87")


def test_failed_commit_rolls_back_and_raises_store_error():
    mock_db = MagicMock(spec=Session)
    mock_db.commit.side_effect = OperationalError("INSERT", {}, Exception("disk I/O error"))

    with pytest.raises(errors.StoreError):
        crud.insert_reservation(mock_db, make_reservation(date(2024, 6, 1), date(2024, 6, 3)))

    mock_db.rollback.assert_called_once()
    mock_db.refresh.assert_not_called()
