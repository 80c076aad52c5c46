"""
Tests for margin rules.

Tests cover:
- Create/update/deactivate with their audit entries
- The default rule (seeding, cannot be deactivated)
- apply_rules precedence, re-apply after edits, offers kept, single audit entry
- Rule preview
"""
from decimal import Decimal
import uuid

import pytest
from sqlalchemy import select

from catalog_pricing.core.exceptions import NotFoundError, PricingValidationError
from catalog_pricing.models import AuditAction, MarginRuleType, ProductVariant
from catalog_pricing.schemas.margin_rule import MarginRuleCreate, MarginRuleUpdate
from catalog_pricing.services.audit_service import AuditService
from catalog_pricing.services.bulk_mutation_service import BulkMutationService
from catalog_pricing.services.margin_calculator import price_variant
from catalog_pricing.services.margin_rule_service import MarginRuleService
from catalog_pricing.services.rule_resolver import Scope
from tests.factories import make_variant, seed


@pytest.fixture
def service(session, settings):
    return MarginRuleService(session, settings)


def rule_in(name, rule_type, margin, **scope) -> MarginRuleCreate:
    return MarginRuleCreate(name=name, rule_type=rule_type, margin_percent=Decimal(margin), **scope)


async def prices(session):
    result = await session.execute(select(ProductVariant).order_by(ProductVariant.sku_code))
    return {v.sku_code: v for v in result.scalars().all()}


async def entries(session, action: AuditAction):
    items, _ = await AuditService(session).list_entries(action=action.value)
    return items


@pytest.fixture
async def ruled_catalog(session, service):
    """
    Four variants and a rule at each level:

        SKU-1 Alpha T-Shirt   -> product_type T-Shirt (50%)
        SKU-2 Alpha Hoodie    -> brand Alpha (40%)
        SKU-3 Bravo T-Shirt   -> product_type T-Shirt (50%)
        SKU-4 Bravo Cap       -> sku_override (60%)
    """
    await seed(
        session,
        make_variant("SKU-1", brand="Alpha", product_type="T-Shirt"),
        make_variant("SKU-2", brand="Alpha", product_type="Hoodie"),
        make_variant("SKU-3", brand="Bravo", product_type="T-Shirt"),
        make_variant("SKU-4", brand="Bravo", product_type="Cap"),
    )
    default = await service.ensure_default_rule()
    brand = await service.create_rule(rule_in("Alpha", MarginRuleType.BRAND, "40", brand="Alpha"))
    tshirt = await service.create_rule(rule_in("Tees", MarginRuleType.PRODUCT_TYPE, "50", product_type="T-Shirt"))
    override = await service.create_rule(rule_in("Cap 4", MarginRuleType.SKU_OVERRIDE, "60", sku_code="SKU-4"))
    return {"default": default.id, "brand": brand.id, "tshirt": tshirt.id, "override": override.id}


# =============================================================
# TEST: CRUD
# =============================================================

class TestRuleCrud:

    async def test_create_derives_priority_and_audits(self, session, service):
        rule = await service.create_rule(
            rule_in("Alpha", MarginRuleType.BRAND, "40", brand="Alpha"), created_by="op-1",
        )
        rule_id = rule.id

        assert rule.priority == 4
        assert rule.is_active is True
        created = await entries(session, AuditAction.RULE_CREATED)
        assert len(created) == 1
        assert created[0].rule_id == rule_id
        assert created[0].performed_by == "op-1"
        assert created[0].rule_snapshot["kind"] == "rule_created"
        assert created[0].rule_snapshot["rule"]["brand"] == "Alpha"

    async def test_create_requires_scope_value(self, session, service):
        with pytest.raises(PricingValidationError):
            await service.create_rule(rule_in("No brand", MarginRuleType.BRAND, "40"))
        assert await entries(session, AuditAction.RULE_CREATED) == []

    async def test_update_keeps_previous_state_for_rollback(self, session, service):
        rule = await service.create_rule(rule_in("Alpha", MarginRuleType.BRAND, "40", brand="Alpha"))

        updated = await service.update_rule(rule.id, MarginRuleUpdate(margin_percent=Decimal("45")), "op-2")

        assert updated.margin_percent == Decimal("45")
        entry = (await entries(session, AuditAction.RULE_UPDATED))[0]
        assert Decimal(entry.rule_snapshot["rule"]["margin_percent"]) == Decimal("45")
        assert Decimal(entry.rollback_data["margin_percent"]) == Decimal("40")
        assert entry.performed_by == "op-2"

    async def test_update_rule_type_rederives_priority(self, service):
        rule = await service.create_rule(rule_in("Alpha", MarginRuleType.BRAND, "40", brand="Alpha"))

        updated = await service.update_rule(
            rule.id, MarginRuleUpdate(rule_type=MarginRuleType.CATEGORY, category="Tops"),
        )

        assert updated.rule_type == "category"
        assert updated.priority == 5

    async def test_update_rejects_null_margin(self, service):
        rule = await service.create_rule(rule_in("Alpha", MarginRuleType.BRAND, "40", brand="Alpha"))
        with pytest.raises(PricingValidationError):
            await service.update_rule(rule.id, MarginRuleUpdate(margin_percent=None))

    async def test_fractional_margin_stored_rounded(self, session, service):
        await seed(session, make_variant("SKU-1", cost="1000.00"))
        rule = await service.create_rule(rule_in("Alpha", MarginRuleType.BRAND, "12.345", brand="Alpha"))
        assert rule.margin_percent == Decimal("12.35")

        await service.apply_rules()

        variant = (await prices(session))["SKU-1"]
        assert variant.margin_percent == Decimal("12.35")
        assert variant.calculated_price == Decimal("1123.50")
        assert variant.final_price == price_variant(variant.cost, variant.margin_percent).final_price

    async def test_update_revalidates_scope(self, service):
        rule = await service.create_rule(rule_in("Alpha", MarginRuleType.BRAND, "40", brand="Alpha"))
        with pytest.raises(PricingValidationError):
            await service.update_rule(rule.id, MarginRuleUpdate(rule_type=MarginRuleType.SKU_OVERRIDE))

    async def test_deactivate_is_soft_and_audited(self, session, service):
        rule = await service.create_rule(rule_in("Alpha", MarginRuleType.BRAND, "40", brand="Alpha"))
        rule_id = rule.id

        await service.deactivate_rule(rule_id, performed_by="op")

        assert [r for r, _ in await service.list_rules()] == []
        inactive = await service.list_rules(include_inactive=True)
        assert inactive[0][0].id == rule_id
        assert inactive[0][0].is_active is False
        assert len(await entries(session, AuditAction.RULE_DEACTIVATED)) == 1

    async def test_unknown_rule(self, service):
        with pytest.raises(NotFoundError):
            await service.get_rule(uuid.uuid4())


class TestDefaultRule:

    async def test_seeded_once(self, service, settings):
        first = await service.ensure_default_rule()
        second = await service.ensure_default_rule()

        assert first.id == second.id
        assert first.margin_percent == settings.DEFAULT_MARGIN_PERCENT
        assert first.created_by == "system"
        assert first.priority == 6

    async def test_default_rule_cannot_be_deactivated(self, service):
        default = await service.ensure_default_rule()
        with pytest.raises(PricingValidationError):
            await service.deactivate_rule(default.id)
        with pytest.raises(PricingValidationError):
            await service.update_rule(default.id, MarginRuleUpdate(is_active=False))

    async def test_default_rule_margin_can_change(self, service):
        default = await service.ensure_default_rule()
        updated = await service.update_rule(default.id, MarginRuleUpdate(margin_percent=Decimal("35")))
        assert updated.margin_percent == Decimal("35")


# =============================================================
# TEST: Apply
# =============================================================

class TestApplyRules:

    async def test_most_specific_rule_wins(self, session, service, ruled_catalog):
        result = await service.apply_rules(performed_by="op")

        assert result.affected_count == 4
        assert result.rules_applied == 4
        assert result.audited is True

        variants = await prices(session)
        assert variants["SKU-1"].final_price == Decimal("15.00")
        assert variants["SKU-1"].applied_rule_id == ruled_catalog["tshirt"]
        assert variants["SKU-2"].final_price == Decimal("14.00")
        assert variants["SKU-2"].applied_rule_id == ruled_catalog["brand"]
        assert variants["SKU-3"].final_price == Decimal("15.00")
        assert variants["SKU-4"].final_price == Decimal("16.00")
        assert variants["SKU-4"].applied_rule_id == ruled_catalog["override"]

    async def test_single_audit_entry(self, session, service, ruled_catalog):
        await service.apply_rules(performed_by="op")

        applied = await entries(session, AuditAction.RULES_APPLIED)
        assert len(applied) == 1
        assert applied[0].affected_count == 4
        assert applied[0].performed_by == "op"
        assert len(applied[0].rule_snapshot["rules"]) == 4

    async def test_default_rule_catches_the_rest(self, session, service):
        await seed(session, make_variant("SKU-1", margin="10"))
        default = await service.ensure_default_rule()
        default_id = default.id

        await service.apply_rules()

        variant = (await prices(session))["SKU-1"]
        assert variant.margin_percent == Decimal("30")
        assert variant.final_price == Decimal("13.00")
        assert variant.applied_rule_id == default_id

    async def test_margin_update_propagates_on_reapply(self, session, service, ruled_catalog):
        await service.apply_rules()
        await service.update_rule(ruled_catalog["brand"], MarginRuleUpdate(margin_percent=Decimal("45")))

        # editing a rule alone does not reprice
        assert (await prices(session))["SKU-2"].final_price == Decimal("14.00")

        await service.apply_rules()
        assert (await prices(session))["SKU-2"].final_price == Decimal("14.50")

    async def test_deactivated_rule_releases_its_variants(self, session, service, ruled_catalog):
        await service.apply_rules()
        await service.deactivate_rule(ruled_catalog["tshirt"])

        await service.apply_rules()

        variants = await prices(session)
        assert variants["SKU-1"].applied_rule_id == ruled_catalog["brand"]
        assert variants["SKU-1"].final_price == Decimal("14.00")
        assert variants["SKU-3"].applied_rule_id == ruled_catalog["default"]
        assert variants["SKU-3"].final_price == Decimal("13.00")

    async def test_active_offer_kept_through_apply(self, session, service):
        await seed(session, make_variant("SKU-1", offer_discount="10"))
        await service.create_rule(rule_in("Alpha", MarginRuleType.BRAND, "50", brand="Alpha"))

        await service.apply_rules()

        variant = (await prices(session))["SKU-1"]
        assert variant.is_offer_active is True
        assert variant.calculated_price == Decimal("15.00")
        assert variant.final_price == Decimal("13.50")

    async def test_manual_override_is_repriced(self, session, settings, service, ruled_catalog):
        await BulkMutationService(session, settings).apply_margin_override(["SKU-2"], Decimal("99"))
        assert (await prices(session))["SKU-2"].applied_rule_id is None

        await service.apply_rules()

        variant = (await prices(session))["SKU-2"]
        assert variant.margin_percent == Decimal("40")
        assert variant.applied_rule_id == ruled_catalog["brand"]

    async def test_invariant_holds_after_apply(self, session, service, ruled_catalog):
        await service.apply_rules()
        for variant in (await prices(session)).values():
            expected = price_variant(
                variant.cost, variant.margin_percent, variant.is_offer_active, variant.offer_discount_percent,
            )
            assert variant.final_price == expected.final_price

    async def test_affected_counts_in_listing(self, service, ruled_catalog):
        await service.apply_rules()

        counts = {rule.id: count for rule, count in await service.list_rules()}

        assert counts[ruled_catalog["override"]] == 1
        assert counts[ruled_catalog["tshirt"]] == 2
        assert counts[ruled_catalog["brand"]] == 1
        assert counts[ruled_catalog["default"]] == 0

    async def test_listing_in_precedence_order(self, service, ruled_catalog):
        names = [rule.name for rule, _ in await service.list_rules()]
        assert names == ["Cap 4", "Tees", "Alpha", "Default margin"]

    async def test_nothing_to_price_is_not_audited(self, session, service):
        await service.ensure_default_rule()

        result = await service.apply_rules()

        assert result.affected_count == 0
        assert result.audited is False
        assert await entries(session, AuditAction.RULES_APPLIED) == []

    async def test_negative_cost_rejects_whole_apply(self, session, service, ruled_catalog):
        await seed(session, make_variant("NEG", cost="-1.00", margin=None))

        with pytest.raises(PricingValidationError):
            await service.apply_rules()

        variants = await prices(session)
        assert variants["SKU-1"].final_price == Decimal("13.00")
        assert variants["SKU-1"].applied_rule_id is None
        assert await entries(session, AuditAction.RULES_APPLIED) == []


# =============================================================
# TEST: Preview
# =============================================================

class TestRulePreview:

    async def test_preview_aggregates(self, session, service):
        await seed(
            session,
            make_variant("SKU-1", cost="10.00"),
            make_variant("SKU-2", cost="20.00"),
            make_variant("SKU-3", cost="5.00", brand="Bravo"),
        )

        preview = await service.preview_rule(Scope("brand", brand="Alpha"), Decimal("50"))

        assert preview.affected_count == 2
        assert preview.avg_cost == Decimal("15.00")
        assert preview.avg_new_price == Decimal("22.50")
        assert preview.min_new_price == Decimal("15.00")
        assert preview.max_new_price == Decimal("30.00")
        assert [s.sku_code for s in preview.samples] == ["SKU-1", "SKU-2"]
        assert preview.samples[0].current_price == Decimal("13.00")
        assert preview.samples[0].projected_price == Decimal("15.00")

    async def test_preview_no_matches(self, session, service):
        await seed(session, make_variant("SKU-1"))

        preview = await service.preview_rule(Scope("brand", brand="Acme"), Decimal("50"))

        assert preview.affected_count == 0
        assert preview.avg_new_price == Decimal("0")
        assert preview.samples == []

    async def test_preview_writes_nothing(self, session, service):
        await seed(session, make_variant("SKU-1"))
        await service.preview_rule(Scope("default"), Decimal("80"))
        assert (await prices(session))["SKU-1"].final_price == Decimal("13.00")
