"""Pydantic schemas for margin rules."""
from datetime import datetime
from decimal import Decimal
from typing import Optional, List
from uuid import UUID

from pydantic import BaseModel, Field

from catalog_pricing.models.margin_rule import MarginRuleType
from catalog_pricing.schemas.base import BaseResponseSchema, BaseCreateSchema, BaseUpdateSchema
from catalog_pricing.schemas.special_offer import PreviewSample


class MarginRuleScopeFields(BaseModel):
    sku_code: Optional[str] = Field(None, max_length=100)
    brand: Optional[str] = Field(None, max_length=200)
    product_type: Optional[str] = Field(None, max_length=200)
    category: Optional[str] = Field(None, max_length=200)


class MarginRuleCreate(BaseCreateSchema, MarginRuleScopeFields):
    name: str = Field(..., min_length=1, max_length=200)
    rule_type: MarginRuleType
    margin_percent: Decimal


class MarginRuleUpdate(BaseUpdateSchema, MarginRuleScopeFields):
    name: Optional[str] = Field(None, min_length=1, max_length=200)
    rule_type: Optional[MarginRuleType] = None
    margin_percent: Optional[Decimal] = None
    is_active: Optional[bool] = None


class MarginRuleResponse(BaseResponseSchema):
    id: UUID
    name: str
    rule_type: str
    priority: int
    sku_code: Optional[str] = None
    brand: Optional[str] = None
    product_type: Optional[str] = None
    category: Optional[str] = None
    margin_percent: Decimal
    is_active: bool
    created_by: Optional[str] = None
    created_at: datetime
    updated_at: datetime
    # Variants whose applied_rule_id points at this rule
    affected_count: Optional[int] = None


class MarginRuleListResponse(BaseModel):
    items: List[MarginRuleResponse]
    total: int


class MarginRulePreviewRequest(BaseCreateSchema, MarginRuleScopeFields):
    rule_type: MarginRuleType
    margin_percent: Decimal


class MarginRulePreviewResponse(BaseModel):
    affected_count: int
    avg_cost: Decimal
    avg_new_price: Decimal
    min_new_price: Decimal
    max_new_price: Decimal
    samples: List[PreviewSample]


class ApplyRulesResponse(BaseModel):
    success: bool = True
    affected_count: int
    rules_applied: int
    audited: bool = True
    message: Optional[str] = None
