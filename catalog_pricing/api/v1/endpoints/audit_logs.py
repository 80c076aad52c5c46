"""Pricing audit log API endpoints."""
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Query

from catalog_pricing.api.deps import DB
from catalog_pricing.schemas.audit_log import AuditLogListResponse, AuditLogResponse
from catalog_pricing.services.audit_service import AuditService

router = APIRouter()


@router.get("", response_model=AuditLogListResponse)
async def list_audit_logs(
    db: DB,
    skip: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=200),
    action: Optional[str] = None,
    rule_id: Optional[UUID] = None,
    performed_by: Optional[str] = None,
):
    """
    List pricing audit entries, newest first.

    Filters:
    - action: bulk_margin_override, special_offer_applied, rules_applied, ...
    - rule_id: entries about one rule or offer
    - performed_by: operator id
    """
    entries, total = await AuditService(db).list_entries(
        action=action, rule_id=rule_id, performed_by=performed_by, skip=skip, limit=limit,
    )
    return AuditLogListResponse(
        items=[AuditLogResponse.model_validate(entry) for entry in entries],
        total=total,
        skip=skip,
        limit=limit,
    )
