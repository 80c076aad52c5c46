import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import TYPE_CHECKING, Optional

from sqlalchemy import String, DateTime, ForeignKey, Boolean, Numeric, Index
from sqlalchemy.orm import Mapped, mapped_column, relationship

from catalog_pricing.database import Base
from catalog_pricing.db_types import UUIDType

if TYPE_CHECKING:
    from catalog_pricing.models.margin_rule import MarginRule


class ProductVariant(Base):
    """
    One purchasable SKU (style x colour x size).

    cost comes from the external supplier feed and is never written here.
    calculated_price and final_price are derived columns: every write to
    margin_percent, is_offer_active or offer_discount_percent recomputes
    both in the same statement.
    """
    __tablename__ = "product_variants"
    __table_args__ = (
        Index("idx_product_variants_brand_type", "brand", "product_type"),
        Index("idx_product_variants_style", "style_code"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        primary_key=True,
        default=uuid.uuid4
    )

    # Identity
    sku_code: Mapped[str] = mapped_column(String(100), unique=True, nullable=False, index=True)
    style_code: Mapped[str] = mapped_column(String(100), nullable=False)
    style_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    brand: Mapped[str] = mapped_column(String(200), nullable=False)
    product_type: Mapped[str] = mapped_column(String(200), nullable=False)
    # Pipe-delimited tag list, e.g. "Clothing|T-Shirts|Organic"
    category: Mapped[Optional[str]] = mapped_column(String(1000), nullable=True)
    colour_name: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    size_name: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)

    # Cost basis (external feed)
    cost: Mapped[Optional[Decimal]] = mapped_column(Numeric(12, 2), nullable=True)

    # Engine-owned pricing
    margin_percent: Mapped[Optional[Decimal]] = mapped_column(Numeric(8, 2), nullable=True)
    calculated_price: Mapped[Optional[Decimal]] = mapped_column(Numeric(12, 2), nullable=True)
    is_offer_active: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    offer_discount_percent: Mapped[Optional[Decimal]] = mapped_column(Numeric(5, 2), nullable=True)
    final_price: Mapped[Optional[Decimal]] = mapped_column(Numeric(12, 2), nullable=True)

    # Rule provenance, cleared on manual override
    applied_rule_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUIDType,
        ForeignKey("margin_rules.id", ondelete="SET NULL"),
        nullable=True,
        index=True
    )

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

    # Relationships
    applied_rule: Mapped[Optional["MarginRule"]] = relationship("MarginRule", lazy="noload")

    def __repr__(self) -> str:
        return f"<ProductVariant(sku='{self.sku_code}', final_price={self.final_price})>"
