import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from sqlalchemy import String, DateTime, Integer
from sqlalchemy.orm import Mapped, mapped_column

from catalog_pricing.database import Base
from catalog_pricing.db_types import UUIDType, JSONType


class AuditAction(str, Enum):
    """Mutating operations recorded in the pricing audit log."""
    BULK_MARGIN_OVERRIDE = "bulk_margin_override"
    BULK_SPECIAL_OFFER = "bulk_special_offer"
    SPECIAL_OFFER_APPLIED = "special_offer_applied"
    SPECIAL_OFFER_REMOVED = "special_offer_removed"
    VARIANT_UPDATED = "variant_updated"
    RULE_CREATED = "rule_created"
    RULE_UPDATED = "rule_updated"
    RULE_DEACTIVATED = "rule_deactivated"
    RULES_APPLIED = "rules_applied"


class AuditLog(Base):
    """
    Append-only record of every pricing mutation.

    rule_snapshot is the full triggering payload at mutation time, so an
    entry stays meaningful after the rule or offer is edited or deactivated.
    Rows are never updated or deleted.
    """
    __tablename__ = "pricing_audit_logs"

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        primary_key=True,
        default=uuid.uuid4
    )

    action: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    affected_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    # Who performed the action (operator id from the auth layer)
    performed_by: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)

    # Rule or offer the entry is about, if any (not a FK: snapshots outlive edits)
    rule_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUIDType, nullable=True, index=True)

    # Change tracking
    rule_snapshot: Mapped[dict] = mapped_column(JSONType, nullable=False)
    rollback_data: Mapped[Optional[dict]] = mapped_column(JSONType, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
        index=True
    )

    def __repr__(self) -> str:
        return f"<AuditLog(action='{self.action}', affected={self.affected_count})>"
