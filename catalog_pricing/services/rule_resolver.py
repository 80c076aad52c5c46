"""
Rule Resolver.

Turns an offer/rule scope or a manual bulk-selection filter into a
parameterized SQLAlchemy predicate over product_variants, and resolves it
to the set of SKU codes currently matching.

Matching by rule_type:
- sku_override:           exact sku_code
- brand:                  exact brand
- product_type:           exact product_type
- category:               case-insensitive substring of the pipe-delimited tags
- product_type_category:  product_type AND category (margin rules only)
- default:                every priced variant (margin rules only)

Only variants with a cost basis participate in any resolution. When several
offers match one variant the most recently applied one wins; no "best
discount" is computed.
"""
import logging
from dataclasses import dataclass
from typing import List, Optional, Sequence, Union

from sqlalchemy import and_, func, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.sql.elements import ColumnElement

from catalog_pricing.core.exceptions import PricingValidationError
from catalog_pricing.models.margin_rule import MarginRule, MarginRuleType
from catalog_pricing.models.product_variant import ProductVariant
from catalog_pricing.models.special_offer import SpecialOffer, OfferRuleType

logger = logging.getLogger(__name__)


LIKE_ESCAPE = "\\"

OFFER_RULE_TYPES = {t.value for t in OfferRuleType}
MARGIN_RULE_TYPES = {t.value for t in MarginRuleType}


def escape_like(value: str) -> str:
    """Escape LIKE wildcards so user input only ever matches literally."""
    return (
        value.replace(LIKE_ESCAPE, LIKE_ESCAPE * 2)
        .replace("%", LIKE_ESCAPE + "%")
        .replace("_", LIKE_ESCAPE + "_")
    )


def contains_ci(column: ColumnElement, value: str) -> ColumnElement:
    """Case-insensitive 'contains' on a text column."""
    return column.ilike(f"%{escape_like(value)}%", escape=LIKE_ESCAPE)


def has_cost_basis() -> ColumnElement:
    return ProductVariant.cost.isnot(None)


def _clean(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    value = value.strip()
    return value or None


@dataclass(frozen=True)
class Scope:
    """A rule_type plus the scope values it may use."""
    rule_type: str
    sku_code: Optional[str] = None
    brand: Optional[str] = None
    product_type: Optional[str] = None
    category: Optional[str] = None

    @classmethod
    def of(cls, obj: Union[SpecialOffer, MarginRule]) -> "Scope":
        return cls(
            rule_type=obj.rule_type,
            sku_code=obj.sku_code,
            brand=obj.brand,
            product_type=obj.product_type,
            category=obj.category,
        )

    def to_dict(self) -> dict:
        return {
            "rule_type": self.rule_type,
            "sku_code": self.sku_code,
            "brand": self.brand,
            "product_type": self.product_type,
            "category": self.category,
        }


def _required(value: Optional[str], field: str, rule_type: str) -> str:
    value = _clean(value)
    if value is None:
        raise PricingValidationError(
            f"{field} is required for rule_type '{rule_type}'",
            {"rule_type": rule_type, "field": field},
        )
    return value


def scope_predicate(scope: Scope, allowed_types: Optional[set] = None) -> ColumnElement:
    """
    Build the match predicate for a scope.

    Raises PricingValidationError for an unknown rule_type or a missing scope
    value, before anything touches the store.
    """
    allowed = allowed_types if allowed_types is not None else MARGIN_RULE_TYPES
    rule_type = scope.rule_type.value if hasattr(scope.rule_type, "value") else scope.rule_type
    if rule_type not in allowed:
        raise PricingValidationError(f"Invalid rule type: {rule_type}", {"allowed": sorted(allowed)})

    if rule_type == MarginRuleType.SKU_OVERRIDE.value:
        match = ProductVariant.sku_code == _required(scope.sku_code, "sku_code", rule_type)
    elif rule_type == MarginRuleType.BRAND.value:
        match = ProductVariant.brand == _required(scope.brand, "brand", rule_type)
    elif rule_type == MarginRuleType.PRODUCT_TYPE.value:
        match = ProductVariant.product_type == _required(scope.product_type, "product_type", rule_type)
    elif rule_type == MarginRuleType.CATEGORY.value:
        match = contains_ci(ProductVariant.category, _required(scope.category, "category", rule_type))
    elif rule_type == MarginRuleType.PRODUCT_TYPE_CATEGORY.value:
        match = and_(
            ProductVariant.product_type == _required(scope.product_type, "product_type", rule_type),
            contains_ci(ProductVariant.category, _required(scope.category, "category", rule_type)),
        )
    else:
        # default rule: every priced variant
        return has_cost_basis()

    return and_(has_cost_basis(), match)


def offer_predicate(scope: Scope) -> ColumnElement:
    return scope_predicate(scope, OFFER_RULE_TYPES)


def filter_predicate(
    brand: Optional[str] = None,
    product_type: Optional[str] = None,
    style_code: Optional[str] = None,
    has_offer: Optional[bool] = None,
    sku_codes: Optional[Sequence[str]] = None,
) -> ColumnElement:
    """Predicate for a manual bulk selection. Unset fields do not filter."""
    conditions = [has_cost_basis()]
    if _clean(brand):
        conditions.append(ProductVariant.brand == _clean(brand))
    if _clean(product_type):
        conditions.append(ProductVariant.product_type == _clean(product_type))
    if _clean(style_code):
        conditions.append(ProductVariant.style_code == _clean(style_code))
    if has_offer is not None:
        conditions.append(ProductVariant.is_offer_active.is_(bool(has_offer)))
    if sku_codes is not None:
        conditions.append(ProductVariant.sku_code.in_(list(sku_codes)))
    return and_(*conditions)


def sku_list_predicate(sku_codes: Sequence[str]) -> ColumnElement:
    codes = normalize_sku_codes(sku_codes)
    return and_(has_cost_basis(), ProductVariant.sku_code.in_(codes))


def normalize_sku_codes(sku_codes: Optional[Sequence[str]]) -> List[str]:
    """De-duplicate an explicit SKU list, keeping order. Empty lists are rejected."""
    if not sku_codes:
        raise PricingValidationError("sku_codes must be a non-empty list")
    seen = set()
    codes = []
    for code in sku_codes:
        code = _clean(code)
        if code and code not in seen:
            seen.add(code)
            codes.append(code)
    if not codes:
        raise PricingValidationError("sku_codes must contain at least one SKU code")
    return codes


class RuleResolver:
    """Resolves predicates against the variant store."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def count(self, predicate: ColumnElement) -> int:
        result = await self.db.execute(
            select(func.count()).select_from(ProductVariant).where(predicate)
        )
        return result.scalar_one()

    async def count_negative_costs(self, predicate: ColumnElement) -> int:
        return await self.count(and_(predicate, ProductVariant.cost < 0))

    async def resolve_sku_codes(self, predicate: ColumnElement) -> List[str]:
        result = await self.db.execute(
            select(ProductVariant.sku_code).where(predicate).order_by(ProductVariant.sku_code)
        )
        return list(result.scalars().all())

    async def select_by_filter(
        self,
        brand: Optional[str] = None,
        product_type: Optional[str] = None,
        style_code: Optional[str] = None,
        has_offer: Optional[bool] = None,
    ) -> List[str]:
        """SKU codes matching a manual filter, to feed bulk operations."""
        codes = await self.resolve_sku_codes(
            filter_predicate(brand=brand, product_type=product_type, style_code=style_code, has_offer=has_offer)
        )
        logger.debug("select_by_filter matched %d variants", len(codes))
        return codes
