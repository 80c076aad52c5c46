"""
Shared base classes for pricing schemas.

Response models built from ORM rows (variants, rules, offers, audit entries)
inherit BaseResponseSchema; request bodies inherit the create/update bases.
"""

from typing import Optional
from uuid import UUID
from pydantic import BaseModel, ConfigDict


class BaseResponseSchema(BaseModel):
    """Read model validated straight from an ORM instance."""
    model_config = ConfigDict(
        from_attributes=True,
        populate_by_name=True,
    )


class BaseCreateSchema(BaseModel):
    """Request body; unknown keys from older clients are dropped."""
    model_config = ConfigDict(extra='ignore')


class BaseUpdateSchema(BaseModel):
    """
    Partial update body.

    Every field is optional. Services read these with
    model_dump(exclude_unset=True), so an explicit null differs from an
    omitted field.
    """
    model_config = ConfigDict(extra='ignore')


class MutationResult(BaseModel):
    """Outcome of a bulk pricing mutation."""
    success: bool = True
    affected_count: int
    audited: bool = True
    message: Optional[str] = None
    audit_log_id: Optional[UUID] = None
