"""API endpoints for margin rules."""
from uuid import UUID

from fastapi import APIRouter, status

from catalog_pricing.api.deps import DB, AppSettings, Operator
from catalog_pricing.schemas.margin_rule import (
    ApplyRulesResponse, MarginRuleCreate, MarginRuleListResponse, MarginRulePreviewRequest,
    MarginRulePreviewResponse, MarginRuleResponse, MarginRuleUpdate,
)
from catalog_pricing.services.margin_rule_service import MarginRuleService
from catalog_pricing.services.rule_resolver import Scope

router = APIRouter()


def _response(rule, affected_count=None) -> MarginRuleResponse:
    response = MarginRuleResponse.model_validate(rule)
    response.affected_count = affected_count
    return response


@router.get("", response_model=MarginRuleListResponse)
async def list_margin_rules(db: DB, settings: AppSettings, include_inactive: bool = False):
    """Rules in precedence order."""
    rows = await MarginRuleService(db, settings).list_rules(include_inactive=include_inactive)
    items = [_response(rule, count) for rule, count in rows]
    return MarginRuleListResponse(items=items, total=len(items))


@router.post("", response_model=MarginRuleResponse, status_code=status.HTTP_201_CREATED)
async def create_margin_rule(rule_in: MarginRuleCreate, db: DB, settings: AppSettings, operator: Operator):
    rule = await MarginRuleService(db, settings).create_rule(rule_in, created_by=operator)
    return _response(rule, 0)


@router.post("/preview", response_model=MarginRulePreviewResponse)
async def preview_margin_rule(preview_in: MarginRulePreviewRequest, db: DB, settings: AppSettings):
    """Projected prices for a rule over its full scope. Writes nothing."""
    scope = Scope(
        rule_type=preview_in.rule_type.value,
        sku_code=preview_in.sku_code,
        brand=preview_in.brand,
        product_type=preview_in.product_type,
        category=preview_in.category,
    )
    return await MarginRuleService(db, settings).preview_rule(scope, preview_in.margin_percent)


@router.post("/apply", response_model=ApplyRulesResponse)
async def apply_margin_rules(db: DB, settings: AppSettings, operator: Operator):
    """Re-price the catalog from all active rules."""
    return await MarginRuleService(db, settings).apply_rules(performed_by=operator)


@router.get("/{rule_id}", response_model=MarginRuleResponse)
async def get_margin_rule(rule_id: UUID, db: DB, settings: AppSettings):
    service = MarginRuleService(db, settings)
    rule = await service.get_rule(rule_id)
    return _response(rule, await service.affected_count(rule))


@router.put("/{rule_id}", response_model=MarginRuleResponse)
async def update_margin_rule(
    rule_id: UUID,
    rule_in: MarginRuleUpdate,
    db: DB,
    settings: AppSettings,
    operator: Operator,
):
    rule = await MarginRuleService(db, settings).update_rule(rule_id, rule_in, performed_by=operator)
    return _response(rule)


@router.delete("/{rule_id}", response_model=MarginRuleResponse)
async def deactivate_margin_rule(rule_id: UUID, db: DB, settings: AppSettings, operator: Operator):
    """Soft delete a rule. The default rule cannot be deactivated."""
    rule = await MarginRuleService(db, settings).deactivate_rule(rule_id, performed_by=operator)
    return _response(rule)
