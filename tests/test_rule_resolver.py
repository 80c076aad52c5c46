"""
Tests for scope resolution.

Tests cover:
- Matching per rule_type, including category substring matching
- Scope validation before any query
- Manual filter selection and SKU list normalization
"""
import pytest

from catalog_pricing.core.exceptions import PricingValidationError
from catalog_pricing.services.rule_resolver import (
    RuleResolver, Scope, escape_like, filter_predicate, normalize_sku_codes,
    offer_predicate, scope_predicate,
)
from tests.factories import make_variant, seed


@pytest.fixture
async def catalog(session):
    await seed(
        session,
        make_variant("A-1", brand="Alpha", product_type="T-Shirt", category="Clothing|Tops|Organic", style_code="ST-A"),
        make_variant("A-2", brand="Alpha", product_type="Hoodie", category="Clothing|Outerwear", style_code="ST-A"),
        make_variant("B-1", brand="Bravo", product_type="T-Shirt", category="clothing|TOPS", style_code="ST-B"),
        make_variant("B-2", brand="Bravo", product_type="Cap", category="Accessories|100%_Cotton", style_code="ST-C"),
        make_variant("NO-COST", brand="Alpha", cost=None, margin=None),
    )
    return RuleResolver(session)


class TestScopeMatching:

    async def test_brand_scope(self, catalog):
        codes = await catalog.resolve_sku_codes(offer_predicate(Scope("brand", brand="Alpha")))
        assert codes == ["A-1", "A-2"]

    async def test_variants_without_cost_never_match(self, catalog):
        codes = await catalog.resolve_sku_codes(scope_predicate(Scope("default")))
        assert "NO-COST" not in codes
        assert codes == ["A-1", "A-2", "B-1", "B-2"]

    async def test_sku_override_scope(self, catalog):
        codes = await catalog.resolve_sku_codes(offer_predicate(Scope("sku_override", sku_code="B-2")))
        assert codes == ["B-2"]

    async def test_category_is_case_insensitive_substring(self, catalog):
        codes = await catalog.resolve_sku_codes(offer_predicate(Scope("category", category="tops")))
        assert codes == ["A-1", "B-1"]

    async def test_category_wildcards_match_literally(self, catalog):
        codes = await catalog.resolve_sku_codes(offer_predicate(Scope("category", category="100%_cotton")))
        assert codes == ["B-2"]
        codes = await catalog.resolve_sku_codes(offer_predicate(Scope("category", category="%")))
        assert codes == ["B-2"]

    async def test_product_type_category(self, catalog):
        scope = Scope("product_type_category", product_type="T-Shirt", category="organic")
        assert await catalog.resolve_sku_codes(scope_predicate(scope)) == ["A-1"]

    async def test_unmatched_scope_resolves_to_nothing(self, catalog):
        assert await catalog.resolve_sku_codes(offer_predicate(Scope("brand", brand="Acme"))) == []


class TestScopeValidation:

    def test_missing_scope_value_rejected(self):
        with pytest.raises(PricingValidationError):
            offer_predicate(Scope("brand"))

    def test_blank_scope_value_rejected(self):
        with pytest.raises(PricingValidationError):
            offer_predicate(Scope("product_type", product_type="   "))

    def test_unknown_rule_type_rejected(self):
        with pytest.raises(PricingValidationError):
            offer_predicate(Scope("everything"))

    def test_margin_only_types_not_valid_for_offers(self):
        with pytest.raises(PricingValidationError):
            offer_predicate(Scope("default"))
        with pytest.raises(PricingValidationError):
            offer_predicate(Scope("product_type_category", product_type="Cap", category="x"))

    def test_escape_like(self):
        assert escape_like("50%_off\\") == "50\\%\\_off\\\\"


class TestManualSelection:

    async def test_select_by_filter(self, catalog):
        assert await catalog.select_by_filter(brand="Bravo") == ["B-1", "B-2"]
        assert await catalog.select_by_filter(style_code="ST-A", product_type="Hoodie") == ["A-2"]

    async def test_select_by_filter_on_offer_flag(self, session, catalog):
        await seed(session, make_variant("O-1", brand="Bravo", offer_discount="10"))
        assert await catalog.select_by_filter(has_offer=True) == ["O-1"]
        assert "O-1" not in await catalog.select_by_filter(has_offer=False)

    async def test_empty_filter_selects_every_priced_variant(self, catalog):
        assert await catalog.resolve_sku_codes(filter_predicate()) == ["A-1", "A-2", "B-1", "B-2"]

    def test_normalize_sku_codes_dedupes_in_order(self):
        assert normalize_sku_codes(["B", " A ", "B", ""]) == ["B", "A"]

    @pytest.mark.parametrize("codes", [[], None, ["", "  "]])
    def test_empty_sku_list_rejected(self, codes):
        with pytest.raises(PricingValidationError):
            normalize_sku_codes(codes)

    async def test_negative_costs_counted(self, session, catalog):
        await seed(session, make_variant("NEG", brand="Alpha", cost="-5.00", margin=None))
        assert await catalog.count_negative_costs(offer_predicate(Scope("brand", brand="Alpha"))) == 1
