"""
Bulk Mutation Executor.

Applies a margin override or an offer activation/deactivation to a matched
variant set as one logical operation:

1. Validate input and build the match predicate (nothing written on failure).
2. Reject the whole set if any matched variant has a negative cost.
3. Issue a single multi-row UPDATE that recomputes calculated/final price in
   SQL, and commit. The store's statement atomicity guarantees no partially
   updated price set is ever visible.
4. Append exactly one audit entry. If that fails, the committed prices stay
   and AuditWriteFailure is raised so the caller reports an unaudited change.

Zero matches is not an error: nothing is written, no audit entry is made and
affected_count is 0. Overlapping concurrent operations are not locked against
each other; the later commit wins.
"""
import asyncio
import logging
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, Optional, Sequence

from pydantic import BaseModel
from sqlalchemy import and_, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.sql.elements import ColumnElement

from catalog_pricing.config import Settings, get_settings
from catalog_pricing.core.exceptions import (
    AuditWriteFailure, BulkOperationTimeout, NotFoundError, PricingValidationError,
)
from catalog_pricing.models.audit_log import AuditAction
from catalog_pricing.models.product_variant import ProductVariant
from catalog_pricing.models.special_offer import SpecialOffer
from catalog_pricing.schemas.audit_log import (
    BulkMarginOverrideSnapshot, BulkSpecialOfferSnapshot,
    SpecialOfferAppliedSnapshot, SpecialOfferRemovedSnapshot, VariantUpdatedSnapshot,
)
from catalog_pricing.schemas.base import MutationResult
from catalog_pricing.schemas.variant import VariantResponse
from catalog_pricing.services.audit_service import AuditService, offer_state
from catalog_pricing.services.margin_calculator import (
    calculated_price_expr, discounted_price_expr, final_price_expr,
    price_variant, to_percent, validate_cost, validate_discount,
)
from catalog_pricing.services.rule_resolver import (
    RuleResolver, Scope, normalize_sku_codes, offer_predicate, sku_list_predicate,
)

logger = logging.getLogger(__name__)


PRICING_FIELDS = ("margin_percent", "is_offer_active", "offer_discount_percent")


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    # SQLite hands back naive datetimes
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def has_calculated_price() -> ColumnElement:
    return ProductVariant.calculated_price.isnot(None)


def pricing_state(variant: ProductVariant) -> Dict[str, Any]:
    return {
        "cost": variant.cost,
        "margin_percent": variant.margin_percent,
        "calculated_price": variant.calculated_price,
        "is_offer_active": variant.is_offer_active,
        "offer_discount_percent": variant.offer_discount_percent,
        "final_price": variant.final_price,
        "applied_rule_id": str(variant.applied_rule_id) if variant.applied_rule_id else None,
    }


class BulkMutationService:
    """Set-based pricing writes with audit."""

    def __init__(self, db: AsyncSession, settings: Optional[Settings] = None):
        self.db = db
        self.settings = settings or get_settings()
        self.resolver = RuleResolver(db)
        self.audit = AuditService(db)

    # ==================== SET-BASED OPERATIONS ====================

    async def apply_margin_override(
        self,
        sku_codes: Sequence[str],
        margin_percent: Decimal,
        performed_by: Optional[str] = None,
    ) -> MutationResult:
        """
        Set margin_percent on every listed variant with a cost basis.

        Recomputes calculated and final price (keeping any active offer
        discount) and clears applied_rule_id: a manual override always wins
        over rule provenance. Unknown SKU codes are ignored.
        """
        codes = normalize_sku_codes(sku_codes)
        margin = to_percent(margin_percent)

        calculated = calculated_price_expr(ProductVariant.cost, margin)
        values = {
            "margin_percent": margin,
            "calculated_price": calculated,
            # SET expressions see pre-update values, so derive from cost again
            "final_price": final_price_expr(
                calculated, ProductVariant.is_offer_active, ProductVariant.offer_discount_percent,
            ),
            "applied_rule_id": None,
        }

        affected = await self._mutate(sku_list_predicate(codes), values, AuditAction.BULK_MARGIN_OVERRIDE)
        return await self._record(
            affected,
            AuditAction.BULK_MARGIN_OVERRIDE,
            BulkMarginOverrideSnapshot(sku_codes=codes, margin_percent=margin),
            performed_by,
        )

    async def apply_special_offer(
        self,
        offer: SpecialOffer,
        performed_by: Optional[str] = None,
    ) -> MutationResult:
        """
        Flag every priced variant in the offer's scope and discount its final price.

        Margin and calculated price are untouched. Whichever offer was applied
        last owns the discount on overlapping variants.
        """
        if not offer.is_active:
            raise NotFoundError("Active special offer", offer.id)
        self._check_window(offer)
        discount = validate_discount(offer.discount_percent)

        predicate = and_(offer_predicate(Scope.of(offer)), has_calculated_price())
        values = {
            "is_offer_active": True,
            "offer_discount_percent": discount,
            "final_price": discounted_price_expr(ProductVariant.calculated_price, discount),
        }
        # Captured before the UPDATE expires loaded instances
        snapshot = SpecialOfferAppliedSnapshot(offer=offer_state(offer))

        affected = await self._mutate(predicate, values, AuditAction.SPECIAL_OFFER_APPLIED)
        return await self._record(
            affected, AuditAction.SPECIAL_OFFER_APPLIED, snapshot, performed_by, rule_id=snapshot.offer.id,
        )

    async def remove_special_offer(
        self,
        offer: SpecialOffer,
        performed_by: Optional[str] = None,
    ) -> MutationResult:
        """Clear the offer flag on variants still in the offer's scope and restore final = calculated."""
        predicate = and_(offer_predicate(Scope.of(offer)), ProductVariant.is_offer_active.is_(True))
        values = {
            "is_offer_active": False,
            "offer_discount_percent": None,
            "final_price": ProductVariant.calculated_price,
        }
        snapshot = SpecialOfferRemovedSnapshot(offer=offer_state(offer))

        affected = await self._mutate(predicate, values, AuditAction.SPECIAL_OFFER_REMOVED)
        return await self._record(
            affected, AuditAction.SPECIAL_OFFER_REMOVED, snapshot, performed_by, rule_id=snapshot.offer.id,
        )

    async def bulk_set_special_offer(
        self,
        sku_codes: Sequence[str],
        discount_percent: Optional[Decimal],
        is_offer_active: bool = True,
        performed_by: Optional[str] = None,
    ) -> MutationResult:
        """Switch an ad-hoc discount on or off for an explicit SKU list."""
        codes = normalize_sku_codes(sku_codes)

        if is_offer_active:
            discount = validate_discount(discount_percent)
            if discount is None:
                raise PricingValidationError("discount_percent is required to activate an offer")
            predicate = and_(sku_list_predicate(codes), has_calculated_price())
            values = {
                "is_offer_active": True,
                "offer_discount_percent": discount,
                "final_price": discounted_price_expr(ProductVariant.calculated_price, discount),
            }
        else:
            discount = None
            predicate = sku_list_predicate(codes)
            values = {
                "is_offer_active": False,
                "offer_discount_percent": None,
                "final_price": ProductVariant.calculated_price,
            }

        affected = await self._mutate(predicate, values, AuditAction.BULK_SPECIAL_OFFER)
        return await self._record(
            affected,
            AuditAction.BULK_SPECIAL_OFFER,
            BulkSpecialOfferSnapshot(
                sku_codes=codes, discount_percent=discount, is_offer_active=is_offer_active,
            ),
            performed_by,
        )

    # ==================== SINGLE VARIANT ====================

    async def update_single_variant(
        self,
        sku_code: str,
        changes: Dict[str, Any],
        performed_by: Optional[str] = None,
    ) -> VariantResponse:
        """
        Partial pricing update for one variant.

        Same recomputation rules as the bulk paths. An explicit margin
        change clears applied_rule_id. A variant that has never been priced
        is seeded with DEFAULT_MARGIN_PERCENT; an explicit null margin is
        rejected.
        """
        changes = {k: v for k, v in changes.items() if k in PRICING_FIELDS}
        if not changes:
            raise PricingValidationError(
                "No pricing fields to update", {"allowed": list(PRICING_FIELDS)}
            )

        result = await self.db.execute(
            select(ProductVariant).where(ProductVariant.sku_code == sku_code)
        )
        variant = result.scalar_one_or_none()
        if not variant:
            raise NotFoundError("Product variant", sku_code)

        cost = validate_cost(variant.cost)

        for field in ("margin_percent", "is_offer_active"):
            if field in changes and changes[field] is None:
                raise PricingValidationError(f"{field} cannot be null")

        margin = changes.get("margin_percent", variant.margin_percent)
        if margin is None:
            margin = self.settings.DEFAULT_MARGIN_PERCENT
        is_offer_active = changes.get("is_offer_active", variant.is_offer_active)
        discount = changes.get("offer_discount_percent", variant.offer_discount_percent)

        breakdown = price_variant(cost, margin, is_offer_active, discount)
        previous = pricing_state(variant)

        variant.margin_percent = breakdown.margin_percent
        variant.calculated_price = breakdown.calculated_price
        variant.is_offer_active = breakdown.is_offer_active
        variant.offer_discount_percent = breakdown.offer_discount_percent
        variant.final_price = breakdown.final_price
        if "margin_percent" in changes:
            variant.applied_rule_id = None

        await self.db.commit()
        await self.db.refresh(variant)
        logger.info("Variant %s repriced: final_price=%s", sku_code, variant.final_price)
        # Built before the audit write; a failed write rolls back and expires the instance
        updated = VariantResponse.model_validate(variant)

        snapshot = VariantUpdatedSnapshot(sku_code=sku_code, changes=changes, previous=previous)
        try:
            await self.audit.record(
                AuditAction.VARIANT_UPDATED, snapshot, affected_count=1, performed_by=performed_by,
            )
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.error("Audit write failed after updating variant %s: %s", sku_code, e)
            raise AuditWriteFailure(
                f"Variant {sku_code} was updated but the change could not be audited",
                updated,
            ) from e

        return updated

    # ==================== INTERNALS ====================

    def _check_window(self, offer: SpecialOffer) -> None:
        now = datetime.now(timezone.utc)
        start, end = as_utc(offer.start_date), as_utc(offer.end_date)
        if start and now < start:
            raise PricingValidationError(f"Special offer '{offer.name}' starts at {start.isoformat()}")
        if end and now > end:
            raise PricingValidationError(f"Special offer '{offer.name}' expired at {end.isoformat()}")

    async def _execute_update(self, predicate: ColumnElement, values: Dict[str, Any]) -> int:
        stmt = (
            update(ProductVariant)
            .where(predicate)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        result = await self.db.execute(stmt)
        return result.rowcount

    async def _mutate(
        self,
        predicate: ColumnElement,
        values: Dict[str, Any],
        action: AuditAction,
    ) -> int:
        """Run one bounded, all-or-nothing UPDATE and commit. Returns the affected row count."""

        async def run() -> int:
            negative = await self.resolver.count_negative_costs(predicate)
            if negative:
                raise PricingValidationError(
                    f"{negative} matched variant(s) have a negative cost; nothing was changed",
                    {"negative_cost_count": negative},
                )

            affected = await self._execute_update(predicate, values)
            if affected == 0:
                await self.db.rollback()
                return 0

            await self.db.commit()
            return affected

        timeout = self.settings.BULK_OPERATION_TIMEOUT_SECONDS
        try:
            affected = await asyncio.wait_for(run(), timeout=timeout)
        except asyncio.TimeoutError:
            await self.db.rollback()
            logger.error("%s timed out after %ss; effect unknown", action.value, timeout)
            raise BulkOperationTimeout(
                f"{action.value} timed out after {timeout}s; re-query affected variants before retrying",
                {"action": action.value, "timeout_seconds": timeout},
            )
        except PricingValidationError:
            await self.db.rollback()
            raise

        # Loaded variants would otherwise keep their pre-update prices
        self.db.expire_all()
        logger.info("%s matched %d variants", action.value, affected)
        return affected

    async def _record(
        self,
        affected: int,
        action: AuditAction,
        snapshot: BaseModel,
        performed_by: Optional[str],
        rule_id=None,
    ) -> MutationResult:
        if affected == 0:
            return MutationResult(
                affected_count=0,
                audited=False,
                message="No matching variants; nothing changed",
            )

        result = MutationResult(
            affected_count=affected,
            message=f"Updated {affected} variants",
        )
        try:
            entry = await self.audit.record(
                action, snapshot, affected_count=affected, performed_by=performed_by, rule_id=rule_id,
            )
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.error("Audit write failed for %s (%d variants already updated): %s", action.value, affected, e)
            result.audited = False
            result.message = f"Updated {affected} variants but the change could not be audited"
            raise AuditWriteFailure(result.message, result) from e

        result.audit_log_id = entry.id
        return result
