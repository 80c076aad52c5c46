import uuid
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Optional

from sqlalchemy import String, DateTime, Boolean, Numeric
from sqlalchemy.orm import Mapped, mapped_column

from catalog_pricing.database import Base
from catalog_pricing.db_types import UUIDType


class OfferRuleType(str, Enum):
    """Scope kinds a special offer can target."""
    SKU_OVERRIDE = "sku_override"
    BRAND = "brand"
    PRODUCT_TYPE = "product_type"
    CATEGORY = "category"


class SpecialOffer(Base):
    """
    Scoped, time-boundable discount layered on top of the calculated price.

    Applying an offer marks every matching variant; matching is re-evaluated
    on each apply/remove and never stored per offer.
    """
    __tablename__ = "special_offers"

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        primary_key=True,
        default=uuid.uuid4
    )

    name: Mapped[str] = mapped_column(String(200), nullable=False)
    discount_percent: Mapped[Decimal] = mapped_column(Numeric(5, 2), nullable=False)
    rule_type: Mapped[str] = mapped_column(String(30), nullable=False)

    # Scope (only the column matching rule_type is set)
    sku_code: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    brand: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    product_type: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    category: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)

    # Validity window
    start_date: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    end_date: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

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
        return f"<SpecialOffer(name='{self.name}', type='{self.rule_type}', discount={self.discount_percent})>"
