import datetime
from decimal import Decimal

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from .. import schemas
from ..config import settings
from ..database import get_db
from ..lifecycle import ReservationManager

router = APIRouter(prefix="/api", tags=["Quotes"])


@router.get("/quote", response_model=schemas.QuoteRead)
def read_quote(
        check_in: datetime.date,
        check_out: datetime.date,
        listing_id: int | None = None,
        nightly_rate: Decimal | None = Query(None, gt=0),
        db: Session = Depends(get_db)
):
    """
    Price breakdown for a stay, plus whether the dates are currently free.
    The quote is not a hold; booking re-checks availability.
    """
    listing_id = listing_id or settings.DEFAULT_LISTING_ID
    price, available = ReservationManager(db).quote(listing_id, check_in, check_out, nightly_rate)
    return schemas.QuoteRead(
        listing_id=listing_id,
        check_in=check_in,
        check_out=check_out,
        nights=price.nights,
        nightly_rate=price.nightly_rate,
        subtotal=price.subtotal,
        cleaning_fee=price.cleaning_fee,
        service_fee=price.service_fee,
        tax=price.tax,
        total=price.total,
        available=available
    )
