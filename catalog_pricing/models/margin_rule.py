import uuid
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Optional

from sqlalchemy import String, DateTime, Boolean, Integer, Numeric
from sqlalchemy.orm import Mapped, mapped_column

from catalog_pricing.database import Base
from catalog_pricing.db_types import UUIDType


class MarginRuleType(str, Enum):
    """Scope of a margin rule, most specific first."""
    SKU_OVERRIDE = "sku_override"
    PRODUCT_TYPE_CATEGORY = "product_type_category"
    PRODUCT_TYPE = "product_type"
    BRAND = "brand"
    CATEGORY = "category"
    DEFAULT = "default"


# Lower number = higher precedence when rules are applied
RULE_PRIORITIES = {
    MarginRuleType.SKU_OVERRIDE: 1,
    MarginRuleType.PRODUCT_TYPE_CATEGORY: 2,
    MarginRuleType.PRODUCT_TYPE: 3,
    MarginRuleType.BRAND: 4,
    MarginRuleType.CATEGORY: 5,
    MarginRuleType.DEFAULT: 6,
}


class MarginRule(Base):
    """
    Named markup percentage applied to cost to derive the baseline price.

    Rules are never deleted, only deactivated, so that historical
    applied_rule_id references on variants stay resolvable.
    """
    __tablename__ = "margin_rules"

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        primary_key=True,
        default=uuid.uuid4
    )

    name: Mapped[str] = mapped_column(String(200), nullable=False)
    rule_type: Mapped[str] = mapped_column(String(30), nullable=False, index=True)
    priority: Mapped[int] = mapped_column(Integer, nullable=False, index=True)

    # Scope (only the columns relevant to rule_type are set)
    sku_code: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    brand: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    product_type: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    category: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)

    margin_percent: Mapped[Decimal] = mapped_column(Numeric(8, 2), nullable=False)

    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False, index=True)

    created_by: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
        nullable=False
    )

    def __repr__(self) -> str:
        return f"<MarginRule(name='{self.name}', type='{self.rule_type}', margin={self.margin_percent})>"
