"""Pydantic schemas for product variants and bulk selections."""
from datetime import datetime
from decimal import Decimal
from typing import Optional, List
from uuid import UUID

from pydantic import BaseModel, Field

from catalog_pricing.schemas.base import BaseResponseSchema, BaseCreateSchema, BaseUpdateSchema


class VariantResponse(BaseResponseSchema):
    """Variant with its derived pricing."""
    id: UUID
    sku_code: str
    style_code: str
    style_name: Optional[str] = None
    brand: str
    product_type: str
    category: Optional[str] = None
    colour_name: Optional[str] = None
    size_name: Optional[str] = None

    cost: Optional[Decimal] = None
    margin_percent: Optional[Decimal] = None
    calculated_price: Optional[Decimal] = None
    is_offer_active: bool = False
    offer_discount_percent: Optional[Decimal] = None
    final_price: Optional[Decimal] = None
    applied_rule_id: Optional[UUID] = None

    created_at: datetime
    updated_at: datetime


class VariantDetailResponse(VariantResponse):
    """Variant plus the name/type of the rule that set its margin."""
    rule_name: Optional[str] = None
    rule_type: Optional[str] = None


class VariantUpdate(BaseUpdateSchema):
    """Partial pricing update for a single variant."""
    margin_percent: Optional[Decimal] = None
    is_offer_active: Optional[bool] = None
    offer_discount_percent: Optional[Decimal] = Field(None, ge=0, le=100)


class BulkMarginRequest(BaseCreateSchema):
    """Manual margin override for an explicit SKU list."""
    sku_codes: List[str] = Field(..., min_length=1)
    margin_percent: Decimal


class BulkSpecialOfferRequest(BaseCreateSchema):
    """Toggle an ad-hoc offer on an explicit SKU list."""
    sku_codes: List[str] = Field(..., min_length=1)
    discount_percent: Optional[Decimal] = Field(None, ge=0, le=100)
    is_offer_active: bool = True


class SelectByFilterRequest(BaseCreateSchema):
    """Filter fields for a manual bulk selection."""
    brand: Optional[str] = None
    product_type: Optional[str] = None
    style_code: Optional[str] = None
    has_offer: Optional[bool] = None


class SelectByFilterResponse(BaseModel):
    sku_codes: List[str]
    count: int
