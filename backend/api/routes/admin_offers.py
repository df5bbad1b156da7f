"""
Admin offer management API routes.
"""

import logging

from fastapi import APIRouter, HTTPException, status
from sqlalchemy.exc import IntegrityError

from api.dependencies import AdminUser, ServicesDep
from api.schemas.offers import (
    OfferAdminResponse,
    OfferCreateRequest,
    OfferListResponse,
    OfferUpdateRequest,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin", tags=["Admin - Offers"])


def _not_found() -> HTTPException:
    return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Offer not found")


@router.get("/offers", response_model=OfferListResponse)
async def list_offers(admin_user: AdminUser, services: ServicesDep):
    """List every offer, including inactive and expired ones."""
    offers = await services.offers.list_offers()
    return OfferListResponse(
        offers=[OfferAdminResponse.model_validate(o) for o in offers],
        total=len(offers),
    )


@router.get("/offers/{offer_id}", response_model=OfferAdminResponse)
async def get_offer(offer_id: str, admin_user: AdminUser, services: ServicesDep):
    offer = await services.offers.get_offer(offer_id)
    if offer is None:
        raise _not_found()
    return OfferAdminResponse.model_validate(offer)


@router.post("/offers", response_model=OfferAdminResponse, status_code=status.HTTP_201_CREATED)
async def create_offer(body: OfferCreateRequest, admin_user: AdminUser, services: ServicesDep):
    """Create an offer. Codes are stored upper-case and must be unique."""
    try:
        offer = await services.offers.create_offer(**body.model_dump())
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e)) from e
    except IntegrityError as e:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="An offer with this code already exists",
        ) from e

    logger.info("Admin %s created offer %s", admin_user.id, offer.code, extra={"offer_code": offer.code})
    return OfferAdminResponse.model_validate(offer)


@router.put("/offers/{offer_id}", response_model=OfferAdminResponse)
async def update_offer(
    offer_id: str,
    body: OfferUpdateRequest,
    admin_user: AdminUser,
    services: ServicesDep,
):
    """
    Update an offer's terms, window, limits or active flag.

    Admin access required. The code cannot be changed.
    """
    changes = body.model_dump(exclude_unset=True)
    try:
        offer = await services.offers.update_offer(offer_id, **changes)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e)) from e
    if offer is None:
        raise _not_found()

    logger.info("Admin %s updated offer %s", admin_user.id, offer.code, extra={"offer_code": offer.code})
    return OfferAdminResponse.model_validate(offer)


@router.delete("/offers/{offer_id}", response_model=OfferAdminResponse)
async def deactivate_offer(offer_id: str, admin_user: AdminUser, services: ServicesDep):
    """Deactivate an offer. Redemption history is kept, so offers are never removed."""
    offer = await services.offers.deactivate_offer(offer_id)
    if offer is None:
        raise _not_found()

    logger.info("Admin %s deactivated offer %s", admin_user.id, offer.code, extra={"offer_code": offer.code})
    return OfferAdminResponse.model_validate(offer)
