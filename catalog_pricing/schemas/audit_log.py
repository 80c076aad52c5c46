"""
Audit log schemas.

Each action has its own snapshot shape; AuditSnapshot is the tagged union
over them (discriminated by `kind`, which equals the action). Snapshots are
stored as their JSON dump so the historical shape is preserved verbatim;
responses carry both the raw dump and the typed snapshot parsed back from it.
"""
from datetime import datetime
from decimal import Decimal
from typing import Annotated, Any, Dict, List, Literal, Optional, Union
from uuid import UUID

from pydantic import BaseModel, Field, TypeAdapter, model_validator

from catalog_pricing.schemas.base import BaseResponseSchema


class OfferState(BaseModel):
    """Full special offer payload at the time of the operation."""
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


class RuleState(BaseModel):
    """Full margin rule payload at the time of the operation."""
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


class BulkMarginOverrideSnapshot(BaseModel):
    kind: Literal["bulk_margin_override"] = "bulk_margin_override"
    sku_codes: List[str]
    margin_percent: Decimal


class BulkSpecialOfferSnapshot(BaseModel):
    kind: Literal["bulk_special_offer"] = "bulk_special_offer"
    sku_codes: List[str]
    discount_percent: Optional[Decimal] = None
    is_offer_active: bool


class SpecialOfferAppliedSnapshot(BaseModel):
    kind: Literal["special_offer_applied"] = "special_offer_applied"
    offer: OfferState


class SpecialOfferRemovedSnapshot(BaseModel):
    kind: Literal["special_offer_removed"] = "special_offer_removed"
    offer: OfferState


class VariantUpdatedSnapshot(BaseModel):
    kind: Literal["variant_updated"] = "variant_updated"
    sku_code: str
    changes: Dict[str, Any]
    previous: Dict[str, Any]


class RuleCreatedSnapshot(BaseModel):
    kind: Literal["rule_created"] = "rule_created"
    rule: RuleState


class RuleUpdatedSnapshot(BaseModel):
    kind: Literal["rule_updated"] = "rule_updated"
    rule: RuleState


class RuleDeactivatedSnapshot(BaseModel):
    kind: Literal["rule_deactivated"] = "rule_deactivated"
    rule: RuleState


class RulesAppliedSnapshot(BaseModel):
    kind: Literal["rules_applied"] = "rules_applied"
    rules: List[RuleState]


AuditSnapshot = Annotated[
    Union[
        BulkMarginOverrideSnapshot,
        BulkSpecialOfferSnapshot,
        SpecialOfferAppliedSnapshot,
        SpecialOfferRemovedSnapshot,
        VariantUpdatedSnapshot,
        RuleCreatedSnapshot,
        RuleUpdatedSnapshot,
        RuleDeactivatedSnapshot,
        RulesAppliedSnapshot,
    ],
    Field(discriminator="kind"),
]

snapshot_adapter: TypeAdapter = TypeAdapter(AuditSnapshot)


def parse_snapshot(data: dict):
    """Rehydrate a stored snapshot into its typed model."""
    return snapshot_adapter.validate_python(data)


class AuditLogResponse(BaseResponseSchema):
    id: UUID
    action: str
    affected_count: int
    performed_by: Optional[str] = None
    rule_id: Optional[UUID] = None
    rule_snapshot: Dict[str, Any]
    rollback_data: Optional[Dict[str, Any]] = None
    created_at: datetime
    snapshot: Optional[AuditSnapshot] = None

    @model_validator(mode="after")
    def _typed_snapshot(self) -> "AuditLogResponse":
        if self.snapshot is None and "kind" in self.rule_snapshot:
            self.snapshot = parse_snapshot(self.rule_snapshot)
        return self


class AuditLogListResponse(BaseModel):
    items: List[AuditLogResponse]
    total: int
    skip: int
    limit: int
