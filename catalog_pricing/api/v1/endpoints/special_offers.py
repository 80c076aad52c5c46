"""API endpoints for special offers."""
from uuid import UUID

from fastapi import APIRouter, status

from catalog_pricing.api.deps import DB, AppSettings, Operator
from catalog_pricing.schemas.base import MutationResult
from catalog_pricing.schemas.special_offer import (
    OfferPreviewRequest, OfferPreviewResponse, SpecialOfferCreate,
    SpecialOfferListResponse, SpecialOfferResponse, SpecialOfferUpdate,
)
from catalog_pricing.services.rule_resolver import Scope
from catalog_pricing.services.special_offer_service import SpecialOfferService

router = APIRouter()


def _response(offer, affected_count=None) -> SpecialOfferResponse:
    response = SpecialOfferResponse.model_validate(offer)
    response.affected_count = affected_count
    return response


@router.get("", response_model=SpecialOfferListResponse)
async def list_special_offers(
    db: DB,
    settings: AppSettings,
    include_inactive: bool = False,
    include_expired: bool = False,
):
    """List offers with the number of variants each currently discounts."""
    rows = await SpecialOfferService(db, settings).list_offers(
        include_inactive=include_inactive, include_expired=include_expired,
    )
    items = [_response(offer, count) for offer, count in rows]
    return SpecialOfferListResponse(items=items, total=len(items))


@router.post("", response_model=SpecialOfferResponse, status_code=status.HTTP_201_CREATED)
async def create_special_offer(
    offer_in: SpecialOfferCreate,
    db: DB,
    settings: AppSettings,
    operator: Operator,
):
    """Create a special offer. It has no effect on prices until applied."""
    offer = await SpecialOfferService(db, settings).create_offer(offer_in, created_by=operator)
    return _response(offer, 0)


@router.post("/preview", response_model=OfferPreviewResponse)
async def preview_special_offer(preview_in: OfferPreviewRequest, db: DB, settings: AppSettings):
    """Which variants an offer would discount and the resulting prices. Writes nothing."""
    scope = Scope(
        rule_type=preview_in.rule_type.value,
        sku_code=preview_in.sku_code,
        brand=preview_in.brand,
        product_type=preview_in.product_type,
        category=preview_in.category,
    )
    return await SpecialOfferService(db, settings).preview_offer(scope, preview_in.discount_percent)


@router.get("/{offer_id}", response_model=SpecialOfferResponse)
async def get_special_offer(offer_id: UUID, db: DB, settings: AppSettings):
    service = SpecialOfferService(db, settings)
    offer = await service.get_offer(offer_id)
    return _response(offer, await service.affected_count(offer))


@router.put("/{offer_id}", response_model=SpecialOfferResponse)
async def update_special_offer(
    offer_id: UUID,
    offer_in: SpecialOfferUpdate,
    db: DB,
    settings: AppSettings,
):
    """Update an offer. Already-discounted variants keep their prices until re-applied."""
    offer = await SpecialOfferService(db, settings).update_offer(offer_id, offer_in)
    return _response(offer)


@router.delete("/{offer_id}", response_model=SpecialOfferResponse)
async def deactivate_special_offer(offer_id: UUID, db: DB, settings: AppSettings):
    """Soft delete an offer."""
    offer = await SpecialOfferService(db, settings).deactivate_offer(offer_id)
    return _response(offer)


@router.post("/{offer_id}/apply", response_model=MutationResult)
async def apply_special_offer(offer_id: UUID, db: DB, settings: AppSettings, operator: Operator):
    """Discount every priced variant in the offer's scope."""
    return await SpecialOfferService(db, settings).apply_offer(offer_id, performed_by=operator)


@router.post("/{offer_id}/remove", response_model=MutationResult)
async def remove_special_offer(offer_id: UUID, db: DB, settings: AppSettings, operator: Operator):
    """Restore final_price = calculated_price on flagged variants in the offer's scope."""
    return await SpecialOfferService(db, settings).remove_offer(offer_id, performed_by=operator)
