"""Pydantic schemas for special offers."""
from datetime import datetime
from decimal import Decimal
from typing import Optional, List
from uuid import UUID

from pydantic import BaseModel, Field, model_validator

from catalog_pricing.models.special_offer import OfferRuleType
from catalog_pricing.schemas.base import BaseResponseSchema, BaseCreateSchema, BaseUpdateSchema


class OfferScopeFields(BaseModel):
    """Scope columns; only the one matching rule_type is used."""
    sku_code: Optional[str] = Field(None, max_length=100)
    brand: Optional[str] = Field(None, max_length=200)
    product_type: Optional[str] = Field(None, max_length=200)
    category: Optional[str] = Field(None, max_length=200)


class SpecialOfferCreate(BaseCreateSchema, OfferScopeFields):
    """Schema for creating a special offer."""
    name: str = Field(..., min_length=1, max_length=200)
    discount_percent: Decimal = Field(..., ge=0, le=100)
    rule_type: OfferRuleType
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None

    @model_validator(mode="after")
    def check_window(self):
        if self.start_date and self.end_date and self.end_date < self.start_date:
            raise ValueError("end_date must not be before start_date")
        return self


class SpecialOfferUpdate(BaseUpdateSchema, OfferScopeFields):
    """Schema for updating a special offer. Never re-applies it."""
    name: Optional[str] = Field(None, min_length=1, max_length=200)
    discount_percent: Optional[Decimal] = Field(None, ge=0, le=100)
    rule_type: Optional[OfferRuleType] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    is_active: Optional[bool] = None


class SpecialOfferResponse(BaseResponseSchema):
    id: UUID
    name: str
    discount_percent: Decimal
    rule_type: str
    sku_code: Optional[str] = None
    brand: Optional[str] = None
    product_type: Optional[str] = None
    category: Optional[str] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    is_active: bool
    created_by: Optional[str] = None
    created_at: datetime
    updated_at: datetime
    # Variants currently flagged and still in scope
    affected_count: Optional[int] = None


class SpecialOfferListResponse(BaseModel):
    items: List[SpecialOfferResponse]
    total: int


class OfferPreviewRequest(BaseCreateSchema, OfferScopeFields):
    rule_type: OfferRuleType
    discount_percent: Decimal = Field(..., ge=0, le=100)


class PreviewSample(BaseModel):
    sku_code: str
    style_name: Optional[str] = None
    brand: str
    product_type: str
    current_price: Optional[Decimal] = None
    projected_price: Optional[Decimal] = None


class OfferPreviewResponse(BaseModel):
    affected_count: int
    avg_current_price: Decimal
    avg_offer_price: Decimal
    min_offer_price: Decimal
    max_offer_price: Decimal
    samples: List[PreviewSample]
