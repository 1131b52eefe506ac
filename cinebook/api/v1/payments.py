"""Payment provider webhook."""

import logging

from fastapi import APIRouter, HTTPException, status

from cinebook.api.v1.dependencies import Payments
from cinebook.payments import CallbackPaymentGateway
from cinebook.schemas.common import SuccessResponse
from cinebook.schemas.payment import PaymentCallback

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post(
    "/callback",
    response_model=SuccessResponse,
    summary="Payment provider callback",
)
async def payment_callback(
    callback: PaymentCallback,
    payment_gateway: Payments,
) -> SuccessResponse:
    """
    Deliver the outcome of a pending charge.

    Only meaningful with the callback payment mode. A callback for a charge
    that already timed out is rejected; the hold was released on timeout.
    """
    if not isinstance(payment_gateway, CallbackPaymentGateway):
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Payment callbacks are not enabled",
        )

    if not payment_gateway.resolve(
        callback.reference, callback.succeeded, callback.transaction_id
    ):
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"No pending payment for {callback.reference}",
        )

    logger.info(
        f"Payment callback for {callback.reference}: "
        f"{'succeeded' if callback.succeeded else 'declined'}"
    )
    return SuccessResponse(message="Payment outcome recorded")
