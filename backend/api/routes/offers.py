"""
Offer (coupon) routes: listing, validation, discount preview and redemption.
"""

import logging
from decimal import Decimal
from typing import Optional

from fastapi import APIRouter, HTTPException, Request, status

from api.dependencies import CurrentUser, ServicesDep
from api.middleware.rate_limit import get_rate_limit, limiter
from api.schemas.offers import (
    ActiveOffersResponse,
    DiscountResponse,
    OfferCheckRequest,
    OfferRedeemRequest,
    OfferRedeemResponse,
    OfferSummary,
    OfferValidationResponse,
)
from core.domain.offer import OfferRejection, to_money
from core.interfaces.services import ProcessorPayment

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/offers", tags=["offers"])


def _rejected(rejection: OfferRejection) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_400_BAD_REQUEST,
        detail={"reason": rejection.value, "message": rejection.message},
    )


@router.get("/active", response_model=ActiveOffersResponse)
async def list_active_offers(services: ServicesDep):
    """Offers currently switched on and inside their date window."""
    offers = await services.offers.active_offers()
    return ActiveOffersResponse(offers=[OfferSummary.model_validate(o) for o in offers])


@router.post("/validate", response_model=OfferValidationResponse)
@limiter.limit(get_rate_limit("offers"))
async def validate_offer(
    request: Request,
    body: OfferCheckRequest,
    current_user: CurrentUser,
    services: ServicesDep,
):
    """Check a code against an order without redeeming it."""
    result = await services.offers.validate(body.code, body.amount, current_user.id, body.plan)
    return OfferValidationResponse(
        valid=result.valid,
        code=result.code,
        reason=result.rejection.value if result.rejection else None,
        message=result.message,
        discount=result.discount if result.valid else None,
        final_amount=result.final_amount,
        offer=OfferSummary.model_validate(result.offer) if result.offer else None,
    )


@router.post("/calculate-discount", response_model=DiscountResponse)
@limiter.limit(get_rate_limit("offers"))
async def calculate_discount(
    request: Request,
    body: OfferCheckRequest,
    current_user: CurrentUser,
    services: ServicesDep,
):
    """Discount and final amount for an order; 400 when the code does not apply."""
    result = await services.offers.validate(body.code, body.amount, current_user.id, body.plan)
    if not result.valid:
        raise _rejected(result.rejection)
    return DiscountResponse(
        code=result.code,
        original_amount=to_money(body.amount),
        discount=result.discount,
        final_amount=result.final_amount,
    )


def _payment_problem(payment: Optional[ProcessorPayment], final_amount: Decimal) -> Optional[tuple[str, str]]:
    """Reason a payment cannot back a redemption, or None when it can."""
    if payment is None:
        return "payment_not_found", "Payment not found"
    if not payment.captured:
        return "payment_not_captured", "Payment has not been captured"
    if to_money(payment.amount) != final_amount:
        return "payment_amount_mismatch", "Payment amount does not match the discounted order total"
    return None


@router.post("/redeem", response_model=OfferRedeemResponse)
@limiter.limit(get_rate_limit("offers"))
async def redeem_offer(
    request: Request,
    body: OfferRedeemRequest,
    current_user: CurrentUser,
    services: ServicesDep,
):
    """
    Record a redemption for a completed order.

    The order's payment must be captured on the processor for the
    discounted total; each payment redeems at most once.
    """
    validation = await services.offers.validate(body.code, body.amount, current_user.id, body.plan)
    if not validation.valid:
        raise _rejected(validation.rejection)

    payment = await services.payments.fetch_payment(body.payment_id)
    problem = _payment_problem(payment, validation.final_amount)
    if problem is not None:
        reason, message = problem
        logger.warning(
            "Offer %s redemption refused for user %s: %s", validation.code, current_user.id, reason,
            extra={"offer_code": validation.code, "user_id": current_user.id},
        )
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"reason": reason, "message": message},
        )

    result = await services.offers.apply(
        body.code,
        current_user.id,
        amount=body.amount,
        plan=body.plan,
        payment_id=body.payment_id,
    )
    if not result.applied:
        raise _rejected(result.rejection)
    return OfferRedeemResponse(
        applied=True,
        code=result.code,
        used_count=result.used_count,
        user_usage_count=result.user_usage_count,
    )
