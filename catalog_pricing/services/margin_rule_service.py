"""
Margin rule management and rule application.

Rules are applied in ascending priority (most specific first). Each rule
only claims variants that are unclaimed, already claimed by itself, or
claimed by a less specific or deactivated rule; sku_override rules always
claim their variant. All rule UPDATEs share one transaction and produce a
single rules_applied audit entry.
"""
import asyncio
import logging
import uuid
from decimal import Decimal
from typing import List, Optional, Tuple

from sqlalchemy import and_, func, or_, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.sql.elements import ColumnElement

from catalog_pricing.config import Settings, get_settings
from catalog_pricing.core.exceptions import (
    AuditWriteFailure, BulkOperationTimeout, NotFoundError, PricingValidationError,
)
from catalog_pricing.models.audit_log import AuditAction
from catalog_pricing.models.margin_rule import MarginRule, MarginRuleType, RULE_PRIORITIES
from catalog_pricing.models.product_variant import ProductVariant
from catalog_pricing.schemas.audit_log import (
    RuleCreatedSnapshot, RuleDeactivatedSnapshot, RulesAppliedSnapshot, RuleUpdatedSnapshot,
)
from catalog_pricing.schemas.margin_rule import (
    ApplyRulesResponse, MarginRuleCreate, MarginRulePreviewResponse, MarginRuleUpdate,
)
from catalog_pricing.schemas.special_offer import PreviewSample
from catalog_pricing.services.audit_service import AuditService, rule_state
from catalog_pricing.services.margin_calculator import (
    calculated_price_expr, final_price_expr, round2, to_percent,
)
from catalog_pricing.services.rule_resolver import RuleResolver, Scope, has_cost_basis, scope_predicate

logger = logging.getLogger(__name__)


ZERO = Decimal("0.00")
SCOPE_FIELDS = ("rule_type", "sku_code", "brand", "product_type", "category")


def claimable_by(rule: MarginRule) -> ColumnElement:
    """Variants a rule may take over during apply."""
    weaker_rules = select(MarginRule.id).where(
        or_(MarginRule.priority > rule.priority, MarginRule.is_active.is_(False))
    )
    return or_(
        ProductVariant.applied_rule_id.is_(None),
        ProductVariant.applied_rule_id == rule.id,
        ProductVariant.applied_rule_id.in_(weaker_rules),
    )


class MarginRuleService:
    def __init__(self, db: AsyncSession, settings: Optional[Settings] = None):
        self.db = db
        self.settings = settings or get_settings()
        self.resolver = RuleResolver(db)
        self.audit = AuditService(db)

    # ==================== CRUD ====================

    async def get_rule(self, rule_id: uuid.UUID) -> MarginRule:
        rule = await self.db.get(MarginRule, rule_id)
        if not rule:
            raise NotFoundError("Margin rule", rule_id)
        return rule

    async def ensure_default_rule(self) -> MarginRule:
        """Create the catch-all default rule if none is active."""
        result = await self.db.execute(
            select(MarginRule).where(
                MarginRule.rule_type == MarginRuleType.DEFAULT.value,
                MarginRule.is_active.is_(True),
            )
        )
        rule = result.scalars().first()
        if rule:
            return rule

        rule = MarginRule(
            name="Default margin",
            rule_type=MarginRuleType.DEFAULT.value,
            priority=RULE_PRIORITIES[MarginRuleType.DEFAULT],
            margin_percent=self.settings.DEFAULT_MARGIN_PERCENT,
            created_by="system",
        )
        self.db.add(rule)
        await self.db.commit()
        await self.db.refresh(rule)
        logger.info("Seeded default margin rule at %s%%", rule.margin_percent)
        return rule

    async def affected_count(self, rule: MarginRule) -> int:
        return await self.resolver.count(ProductVariant.applied_rule_id == rule.id)

    async def list_rules(self, include_inactive: bool = False) -> List[Tuple[MarginRule, int]]:
        """Rules in precedence order, each with the number of variants it currently prices."""
        counts = (
            select(ProductVariant.applied_rule_id, func.count().label("affected_count"))
            .where(ProductVariant.applied_rule_id.isnot(None))
            .group_by(ProductVariant.applied_rule_id)
            .subquery()
        )
        stmt = (
            select(MarginRule, func.coalesce(counts.c.affected_count, 0))
            .outerjoin(counts, counts.c.applied_rule_id == MarginRule.id)
            .order_by(MarginRule.priority.asc(), MarginRule.name.asc())
        )
        if not include_inactive:
            stmt = stmt.where(MarginRule.is_active.is_(True))
        return [(rule, count) for rule, count in (await self.db.execute(stmt)).all()]

    async def create_rule(self, data: MarginRuleCreate, created_by: Optional[str] = None) -> MarginRule:
        rule_type = MarginRuleType(data.rule_type)
        scope_predicate(Scope(
            rule_type=rule_type.value,
            sku_code=data.sku_code,
            brand=data.brand,
            product_type=data.product_type,
            category=data.category,
        ))

        rule = MarginRule(
            name=data.name,
            rule_type=rule_type.value,
            priority=RULE_PRIORITIES[rule_type],
            sku_code=data.sku_code,
            brand=data.brand,
            product_type=data.product_type,
            category=data.category,
            margin_percent=to_percent(data.margin_percent),
            created_by=created_by,
        )
        self.db.add(rule)
        await self.db.flush()
        await self.audit.record(
            AuditAction.RULE_CREATED,
            RuleCreatedSnapshot(rule=rule_state(rule)),
            performed_by=created_by,
            rule_id=rule.id,
            commit=False,
        )
        await self.db.commit()
        await self.db.refresh(rule)
        logger.info("Created margin rule %s (%s, %s%%)", rule.name, rule.rule_type, rule.margin_percent)
        return rule

    async def update_rule(
        self,
        rule_id: uuid.UUID,
        data: MarginRuleUpdate,
        performed_by: Optional[str] = None,
    ) -> MarginRule:
        """Update a rule. Prices only change on the next apply_rules."""
        rule = await self.get_rule(rule_id)
        previous = rule_state(rule)

        update_data = data.model_dump(exclude_unset=True)
        if update_data.get("rule_type") is not None:
            update_data["rule_type"] = MarginRuleType(update_data["rule_type"]).value
        for field in ("name", "rule_type", "margin_percent", "is_active"):
            if field in update_data and update_data[field] is None:
                raise PricingValidationError(f"{field} cannot be null")
        if "margin_percent" in update_data:
            update_data["margin_percent"] = to_percent(update_data["margin_percent"])

        if update_data.get("is_active") is False and rule.rule_type == MarginRuleType.DEFAULT.value:
            raise PricingValidationError("The default margin rule cannot be deactivated")

        merged = {field: getattr(rule, field) for field in SCOPE_FIELDS}
        merged.update({k: v for k, v in update_data.items() if k in SCOPE_FIELDS})
        scope_predicate(Scope(**merged))

        for field, value in update_data.items():
            setattr(rule, field, value)
        rule.priority = RULE_PRIORITIES[MarginRuleType(rule.rule_type)]

        await self.db.flush()
        await self.audit.record(
            AuditAction.RULE_UPDATED,
            RuleUpdatedSnapshot(rule=rule_state(rule)),
            performed_by=performed_by,
            rule_id=rule.id,
            rollback_data=previous,
            commit=False,
        )
        await self.db.commit()
        await self.db.refresh(rule)
        return rule

    async def deactivate_rule(self, rule_id: uuid.UUID, performed_by: Optional[str] = None) -> MarginRule:
        """Soft delete; variants keep their applied_rule_id."""
        rule = await self.get_rule(rule_id)
        if rule.rule_type == MarginRuleType.DEFAULT.value:
            raise PricingValidationError("The default margin rule cannot be deactivated")

        rule.is_active = False
        await self.db.flush()
        await self.audit.record(
            AuditAction.RULE_DEACTIVATED,
            RuleDeactivatedSnapshot(rule=rule_state(rule)),
            performed_by=performed_by,
            rule_id=rule.id,
            commit=False,
        )
        await self.db.commit()
        await self.db.refresh(rule)
        logger.info("Deactivated margin rule %s", rule.name)
        return rule

    # ==================== PREVIEW & APPLY ====================

    async def preview_rule(self, scope: Scope, margin_percent: Decimal) -> MarginRulePreviewResponse:
        """Dry run of a rule over its full scope, ignoring current rule ownership."""
        margin = to_percent(margin_percent)
        predicate = scope_predicate(scope)
        new_price = calculated_price_expr(ProductVariant.cost, margin)

        row = (await self.db.execute(
            select(
                func.count().label("affected_count"),
                func.avg(ProductVariant.cost).label("avg_cost"),
                func.avg(new_price).label("avg_new_price"),
                func.min(new_price).label("min_new_price"),
                func.max(new_price).label("max_new_price"),
            ).where(predicate)
        )).mappings().one()

        if not row["affected_count"]:
            return MarginRulePreviewResponse(
                affected_count=0,
                avg_cost=ZERO,
                avg_new_price=ZERO,
                min_new_price=ZERO,
                max_new_price=ZERO,
                samples=[],
            )

        sample_rows = (await self.db.execute(
            select(ProductVariant, new_price.label("projected_price"))
            .where(predicate)
            .order_by(ProductVariant.sku_code)
            .limit(self.settings.PREVIEW_SAMPLE_SIZE)
        )).all()

        return MarginRulePreviewResponse(
            affected_count=row["affected_count"],
            avg_cost=round2(row["avg_cost"]),
            avg_new_price=round2(row["avg_new_price"]),
            min_new_price=round2(row["min_new_price"]),
            max_new_price=round2(row["max_new_price"]),
            samples=[
                PreviewSample(
                    sku_code=variant.sku_code,
                    style_name=variant.style_name,
                    brand=variant.brand,
                    product_type=variant.product_type,
                    current_price=variant.calculated_price,
                    projected_price=round2(projected),
                )
                for variant, projected in sample_rows
            ],
        )

    async def _apply_rule(self, rule: MarginRule) -> int:
        predicate = scope_predicate(Scope.of(rule))
        if rule.rule_type != MarginRuleType.SKU_OVERRIDE.value:
            predicate = and_(predicate, claimable_by(rule))

        calculated = calculated_price_expr(ProductVariant.cost, rule.margin_percent)
        stmt = (
            update(ProductVariant)
            .where(predicate)
            .values(
                margin_percent=rule.margin_percent,
                calculated_price=calculated,
                final_price=final_price_expr(
                    calculated, ProductVariant.is_offer_active, ProductVariant.offer_discount_percent,
                ),
                applied_rule_id=rule.id,
            )
            .execution_options(synchronize_session=False)
        )
        result = await self.db.execute(stmt)
        logger.debug("Rule %s claimed %d variants", rule.name, result.rowcount)
        return result.rowcount

    async def apply_rules(self, performed_by: Optional[str] = None) -> ApplyRulesResponse:
        """Re-price every variant from the active rule set in one transaction."""
        rules = list((await self.db.execute(
            select(MarginRule)
            .where(MarginRule.is_active.is_(True))
            .order_by(MarginRule.priority.asc(), MarginRule.created_at.asc())
        )).scalars().all())
        states = [rule_state(rule) for rule in rules]

        async def run() -> int:
            negative = await self.resolver.count_negative_costs(has_cost_basis())
            if negative:
                raise PricingValidationError(
                    f"{negative} variant(s) have a negative cost; nothing was changed",
                    {"negative_cost_count": negative},
                )
            affected = 0
            for rule in rules:
                affected += await self._apply_rule(rule)
            await self.db.commit()
            return affected

        timeout = self.settings.BULK_OPERATION_TIMEOUT_SECONDS
        try:
            affected = await asyncio.wait_for(run(), timeout=timeout)
        except asyncio.TimeoutError:
            await self.db.rollback()
            logger.error("rules_applied timed out after %ss; effect unknown", timeout)
            raise BulkOperationTimeout(
                f"Applying margin rules timed out after {timeout}s; re-query variants before retrying",
                {"action": AuditAction.RULES_APPLIED.value, "timeout_seconds": timeout},
            )
        except PricingValidationError:
            await self.db.rollback()
            raise

        self.db.expire_all()
        logger.info("Applied %d margin rules to %d variants", len(rules), affected)

        result = ApplyRulesResponse(
            affected_count=affected,
            rules_applied=len(rules),
            message=f"Applied {len(rules)} rules to {affected} variants",
        )
        if affected == 0:
            result.audited = False
            return result

        try:
            await self.audit.record(
                AuditAction.RULES_APPLIED,
                RulesAppliedSnapshot(rules=states),
                affected_count=affected,
                performed_by=performed_by,
            )
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.error("Audit write failed after applying margin rules: %s", e)
            result.audited = False
            result.message = f"Applied {len(rules)} rules to {affected} variants but the change could not be audited"
            raise AuditWriteFailure(result.message, result) from e

        return result
