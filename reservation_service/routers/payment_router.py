from fastapi import APIRouter, Depends, HTTPException, status

from .. import schemas
from ..config import settings
from ..payments import PaymentGateway, PaymentGatewayError, get_payment_gateway

router = APIRouter(prefix="/api", tags=["Payments"])


def require_payment_gateway(
        gateway: PaymentGateway | None = Depends(get_payment_gateway)
) -> PaymentGateway:
    if gateway is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Payment processing is not configured"
        )
    return gateway


@router.get("/stripe/config", response_model=schemas.StripeConfigRead)
def read_stripe_config(gateway: PaymentGateway = Depends(require_payment_gateway)):
    """
    Publishable key for the browser's card form.
    """
    if not settings.STRIPE_PUBLISHABLE_KEY:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Payment processing is not configured"
        )
    return schemas.StripeConfigRead(publishable_key=settings.STRIPE_PUBLISHABLE_KEY)


@router.post("/create-payment-intent", response_model=schemas.PaymentIntentRead)
def create_payment_intent(
        intent: schemas.PaymentIntentCreate,
        gateway: PaymentGateway = Depends(require_payment_gateway)
):
    """
    Start a card payment. The browser confirms it with the returned client
    secret, then books through /api/reservations/with-payment.
    """
    try:
        payment_intent = gateway.create_intent(
            intent.amount,
            intent.currency or settings.CURRENCY,
            intent.metadata
        )
    except PaymentGatewayError as e:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Could not start the payment: {e}"
        )
    return schemas.PaymentIntentRead(
        client_secret=payment_intent.client_secret,
        payment_intent_id=payment_intent.id
    )
