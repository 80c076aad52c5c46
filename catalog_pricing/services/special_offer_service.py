"""
Special offer management: CRUD, preview and apply/remove.

Apply and remove delegate to the bulk mutation executor; this service owns
the offer records themselves.
"""
import logging
import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import List, Optional, Tuple

from sqlalchemy import and_, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from catalog_pricing.config import Settings, get_settings
from catalog_pricing.core.exceptions import NotFoundError, PricingValidationError
from catalog_pricing.models.product_variant import ProductVariant
from catalog_pricing.models.special_offer import SpecialOffer
from catalog_pricing.schemas.base import MutationResult
from catalog_pricing.schemas.special_offer import (
    OfferPreviewResponse, PreviewSample, SpecialOfferCreate, SpecialOfferUpdate,
)
from catalog_pricing.services.bulk_mutation_service import BulkMutationService, as_utc, has_calculated_price
from catalog_pricing.services.margin_calculator import (
    discounted_price_expr, round2, validate_discount,
)
from catalog_pricing.services.rule_resolver import RuleResolver, Scope, offer_predicate

logger = logging.getLogger(__name__)


ZERO = Decimal("0.00")


class SpecialOfferService:
    def __init__(self, db: AsyncSession, settings: Optional[Settings] = None):
        self.db = db
        self.settings = settings or get_settings()
        self.resolver = RuleResolver(db)

    async def get_offer(self, offer_id: uuid.UUID) -> SpecialOffer:
        offer = await self.db.get(SpecialOffer, offer_id)
        if not offer:
            raise NotFoundError("Special offer", offer_id)
        return offer

    async def list_offers(
        self,
        include_inactive: bool = False,
        include_expired: bool = False,
    ) -> List[Tuple[SpecialOffer, int]]:
        """
        Offers newest first, each paired with the number of variants it
        currently discounts (flagged and still in scope). Offers past their
        end_date are hidden unless include_expired is set.
        """
        stmt = select(SpecialOffer)
        if not include_inactive:
            stmt = stmt.where(SpecialOffer.is_active.is_(True))
        if not include_expired:
            now = datetime.now(timezone.utc)
            stmt = stmt.where(or_(SpecialOffer.end_date.is_(None), SpecialOffer.end_date >= now))
        stmt = stmt.order_by(SpecialOffer.created_at.desc())

        offers = (await self.db.execute(stmt)).scalars().all()
        return [(offer, await self.affected_count(offer)) for offer in offers]

    async def affected_count(self, offer: SpecialOffer) -> int:
        predicate = and_(
            offer_predicate(Scope.of(offer)),
            ProductVariant.is_offer_active.is_(True),
            ProductVariant.offer_discount_percent == offer.discount_percent,
        )
        return await self.resolver.count(predicate)

    async def create_offer(self, data: SpecialOfferCreate, created_by: Optional[str] = None) -> SpecialOffer:
        scope = Scope(
            rule_type=data.rule_type.value,
            sku_code=data.sku_code,
            brand=data.brand,
            product_type=data.product_type,
            category=data.category,
        )
        # Validates the scope for its rule_type
        offer_predicate(scope)
        discount = validate_discount(data.discount_percent)

        offer = SpecialOffer(
            name=data.name,
            discount_percent=discount,
            rule_type=scope.rule_type,
            sku_code=data.sku_code,
            brand=data.brand,
            product_type=data.product_type,
            category=data.category,
            start_date=data.start_date,
            end_date=data.end_date,
            created_by=created_by,
        )
        self.db.add(offer)
        await self.db.commit()
        await self.db.refresh(offer)
        logger.info("Created special offer %s (%s)", offer.name, offer.rule_type)
        return offer

    async def update_offer(self, offer_id: uuid.UUID, data: SpecialOfferUpdate) -> SpecialOffer:
        """Update the offer record. Variants already discounted keep their prices until re-applied."""
        offer = await self.get_offer(offer_id)
        update_data = data.model_dump(exclude_unset=True)
        if "rule_type" in update_data and update_data["rule_type"] is not None:
            update_data["rule_type"] = update_data["rule_type"].value

        merged = {
            "rule_type": offer.rule_type,
            "sku_code": offer.sku_code,
            "brand": offer.brand,
            "product_type": offer.product_type,
            "category": offer.category,
        }
        merged.update({k: v for k, v in update_data.items() if k in merged})
        if merged["rule_type"] is None:
            raise PricingValidationError("rule_type cannot be null")
        offer_predicate(Scope(**merged))

        if "discount_percent" in update_data:
            update_data["discount_percent"] = validate_discount(update_data["discount_percent"])
            if update_data["discount_percent"] is None:
                raise PricingValidationError("discount_percent cannot be null")

        start = as_utc(update_data.get("start_date", offer.start_date))
        end = as_utc(update_data.get("end_date", offer.end_date))
        if start and end and end < start:
            raise PricingValidationError("end_date must not be before start_date")

        for field, value in update_data.items():
            setattr(offer, field, value)

        await self.db.commit()
        await self.db.refresh(offer)
        return offer

    async def deactivate_offer(self, offer_id: uuid.UUID) -> SpecialOffer:
        """Soft delete. Prices of flagged variants are left alone; use remove_offer for that."""
        offer = await self.get_offer(offer_id)
        offer.is_active = False
        await self.db.commit()
        await self.db.refresh(offer)
        logger.info("Deactivated special offer %s", offer.name)
        return offer

    async def preview_offer(
        self,
        scope: Scope,
        discount_percent: Decimal,
    ) -> OfferPreviewResponse:
        """
        Dry run: which variants would the offer touch and at what prices.

        Reads only. Counts and aggregates come from the database; samples are
        the first PREVIEW_SAMPLE_SIZE matches by sku_code.
        """
        discount = validate_discount(discount_percent)
        if discount is None:
            raise PricingValidationError("discount_percent is required")
        predicate = and_(offer_predicate(scope), has_calculated_price())
        offer_price = discounted_price_expr(ProductVariant.calculated_price, discount)

        row = (await self.db.execute(
            select(
                func.count().label("affected_count"),
                func.avg(ProductVariant.calculated_price).label("avg_current_price"),
                func.avg(offer_price).label("avg_offer_price"),
                func.min(offer_price).label("min_offer_price"),
                func.max(offer_price).label("max_offer_price"),
            ).where(predicate)
        )).mappings().one()

        if not row["affected_count"]:
            return OfferPreviewResponse(
                affected_count=0,
                avg_current_price=ZERO,
                avg_offer_price=ZERO,
                min_offer_price=ZERO,
                max_offer_price=ZERO,
                samples=[],
            )

        sample_rows = (await self.db.execute(
            select(ProductVariant, offer_price.label("projected_price"))
            .where(predicate)
            .order_by(ProductVariant.sku_code)
            .limit(self.settings.PREVIEW_SAMPLE_SIZE)
        )).all()

        samples = [
            PreviewSample(
                sku_code=variant.sku_code,
                style_name=variant.style_name,
                brand=variant.brand,
                product_type=variant.product_type,
                current_price=variant.calculated_price,
                projected_price=round2(projected),
            )
            for variant, projected in sample_rows
        ]

        return OfferPreviewResponse(
            affected_count=row["affected_count"],
            avg_current_price=round2(row["avg_current_price"]),
            avg_offer_price=round2(row["avg_offer_price"]),
            min_offer_price=round2(row["min_offer_price"]),
            max_offer_price=round2(row["max_offer_price"]),
            samples=samples,
        )

    async def apply_offer(self, offer_id: uuid.UUID, performed_by: Optional[str] = None) -> MutationResult:
        offer = await self.get_offer(offer_id)
        return await BulkMutationService(self.db, self.settings).apply_special_offer(offer, performed_by)

    async def remove_offer(self, offer_id: uuid.UUID, performed_by: Optional[str] = None) -> MutationResult:
        offer = await self.get_offer(offer_id)
        return await BulkMutationService(self.db, self.settings).remove_special_offer(offer, performed_by)
