"""
Cursor Pagination Browser.

Drill-down listings over the variant table:

    brand -> product_type (within a brand) -> style (within brand/type) -> variant

Every page is keyed by the last-seen sort value instead of an offset. The
query fetches limit + 1 rows; the extra row only signals has_more. Group
keys and SKU codes are never touched by pricing writes, so cursors stay
valid while bulk mutations run; only the aggregate figures on a page can be
stale by the time it renders.

For variant listings sorted by anything other than sku_code the cursor is
an opaque token holding (sort_value, sku_code), compared as a row value so
rows sharing a sort value are neither skipped nor repeated.

The total count is a separate query built from the same base predicates,
never derived from the page query.
"""
import base64
import binascii
import json
import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import Numeric, and_, case, func, literal, or_, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload
from sqlalchemy.sql.elements import ColumnElement

from catalog_pricing.config import Settings, get_settings
from catalog_pricing.core.exceptions import NotFoundError, PricingValidationError
from catalog_pricing.models.margin_rule import MarginRule
from catalog_pricing.models.product_variant import ProductVariant
from catalog_pricing.schemas.catalog import (
    AggregateLevel, BrandAggregate, CatalogStats, CursorPage, FilterValues,
    ProductTypeAggregate, SortDirection, StyleAggregate,
)
from catalog_pricing.schemas.variant import VariantDetailResponse, VariantResponse
from catalog_pricing.services.margin_calculator import round2
from catalog_pricing.services.rule_resolver import contains_ci, has_cost_basis

logger = logging.getLogger(__name__)


ZERO = literal(Decimal("0"), Numeric(12, 2))

# Variant-level sort columns. Nullable pricing columns sort as 0.
VARIANT_SORT_COLUMNS = {
    "sku_code": ProductVariant.sku_code,
    "style_code": ProductVariant.style_code,
    "brand": ProductVariant.brand,
    "product_type": ProductVariant.product_type,
    "cost": ProductVariant.cost,
    "final_price": func.coalesce(ProductVariant.final_price, ZERO),
    "margin_percent": func.coalesce(ProductVariant.margin_percent, ZERO),
}
NUMERIC_SORT_COLUMNS = {"cost", "final_price", "margin_percent"}
DEFAULT_SORT = "sku_code"


@dataclass
class CatalogFilters:
    """Filters for a drill-down listing; unset fields do not filter."""
    brand: Optional[str] = None
    product_type: Optional[str] = None
    style_code: Optional[str] = None
    has_offer: Optional[bool] = None
    search: Optional[str] = None


def encode_cursor(value: Any, sku_code: str) -> str:
    payload = json.dumps([None if value is None else str(value), sku_code])
    return base64.urlsafe_b64encode(payload.encode("utf-8")).decode("ascii")


def decode_cursor(token: str, sort_by: str) -> Tuple[Any, str]:
    try:
        value, sku_code = json.loads(base64.urlsafe_b64decode(token.encode("ascii")))
    except (binascii.Error, UnicodeError, ValueError, TypeError):
        raise PricingValidationError("Malformed cursor", {"cursor": token})
    if not isinstance(sku_code, str) or value is None:
        raise PricingValidationError("Malformed cursor", {"cursor": token})
    if sort_by in NUMERIC_SORT_COLUMNS:
        try:
            value = Decimal(value)
        except ArithmeticError:
            raise PricingValidationError("Malformed cursor", {"cursor": token})
    return value, sku_code


def _money(value: Any) -> Optional[Decimal]:
    return None if value is None else round2(value)


def _offer_count() -> ColumnElement:
    return func.sum(case((ProductVariant.is_offer_active.is_(True), 1), else_=0))


class CatalogBrowserService:
    """Read side of the catalog: drill-down pages, stats, single variant lookup."""

    def __init__(self, db: AsyncSession, settings: Optional[Settings] = None):
        self.db = db
        self.settings = settings or get_settings()

    def _limit(self, limit: Optional[int]) -> int:
        if limit is None:
            return self.settings.DEFAULT_PAGE_LIMIT
        if limit < 1 or limit > self.settings.MAX_PAGE_LIMIT:
            raise PricingValidationError(
                f"limit must be between 1 and {self.settings.MAX_PAGE_LIMIT}", {"limit": limit}
            )
        return limit

    async def list_aggregates(
        self,
        level: AggregateLevel,
        filters: Optional[CatalogFilters] = None,
        cursor: Optional[str] = None,
        limit: Optional[int] = None,
        sort_by: str = DEFAULT_SORT,
        sort_dir: SortDirection = SortDirection.ASC,
    ) -> CursorPage:
        """Dispatch to the listing for one drill-down level."""
        filters = filters or CatalogFilters()
        limit = self._limit(limit)
        level = AggregateLevel(level)

        if level == AggregateLevel.BRAND:
            return await self.list_brands(filters, cursor, limit)
        if level == AggregateLevel.PRODUCT_TYPE:
            return await self.list_product_types(filters, cursor, limit)
        if level == AggregateLevel.STYLE:
            return await self.list_styles(filters, cursor, limit)
        return await self.list_variants(filters, cursor, limit, sort_by, sort_dir)

    # ==================== GROUP LEVELS ====================

    async def _group_page(
        self,
        key: ColumnElement,
        columns: List[ColumnElement],
        base: List[ColumnElement],
        cursor: Optional[str],
        limit: int,
    ) -> Tuple[List[Dict[str, Any]], Optional[str], bool, int]:
        stmt = select(key, *columns).where(*base).group_by(key)
        if cursor:
            stmt = stmt.where(key > cursor)
        stmt = stmt.order_by(key.asc()).limit(limit + 1)

        count_stmt = select(func.count(func.distinct(key))).where(*base)

        rows = (await self.db.execute(stmt)).mappings().all()
        total = (await self.db.execute(count_stmt)).scalar_one()

        has_more = len(rows) > limit
        rows = rows[:limit]
        next_cursor = rows[-1][key.key] if has_more else None
        return [dict(row) for row in rows], next_cursor, has_more, total

    async def list_brands(self, filters: CatalogFilters, cursor: Optional[str], limit: int) -> CursorPage:
        base = [has_cost_basis()]
        if filters.search:
            base.append(contains_ci(ProductVariant.brand, filters.search))

        rows, next_cursor, has_more, total = await self._group_page(
            ProductVariant.brand,
            [
                func.count(func.distinct(ProductVariant.style_code)).label("style_count"),
                func.count().label("variant_count"),
                func.avg(ProductVariant.margin_percent).label("avg_margin"),
                func.avg(ProductVariant.cost).label("avg_cost"),
                func.avg(ProductVariant.final_price).label("avg_final_price"),
                _offer_count().label("offer_count"),
            ],
            base, cursor, limit,
        )
        items = [
            BrandAggregate(
                brand=row["brand"],
                style_count=row["style_count"],
                variant_count=row["variant_count"],
                avg_margin=_money(row["avg_margin"]),
                avg_cost=_money(row["avg_cost"]),
                avg_final_price=_money(row["avg_final_price"]),
                offer_count=row["offer_count"] or 0,
            )
            for row in rows
        ]
        return CursorPage[BrandAggregate](items=items, next_cursor=next_cursor, has_more=has_more, total=total)

    async def list_product_types(self, filters: CatalogFilters, cursor: Optional[str], limit: int) -> CursorPage:
        base = [has_cost_basis()]
        if filters.brand:
            base.append(ProductVariant.brand == filters.brand)
        if filters.search:
            base.append(contains_ci(ProductVariant.product_type, filters.search))

        rows, next_cursor, has_more, total = await self._group_page(
            ProductVariant.product_type,
            [
                func.count(func.distinct(ProductVariant.style_code)).label("style_count"),
                func.count().label("variant_count"),
                func.avg(ProductVariant.margin_percent).label("avg_margin"),
                func.avg(ProductVariant.cost).label("avg_cost"),
                func.avg(ProductVariant.final_price).label("avg_final_price"),
                _offer_count().label("offer_count"),
            ],
            base, cursor, limit,
        )
        items = [
            ProductTypeAggregate(
                product_type=row["product_type"],
                style_count=row["style_count"],
                variant_count=row["variant_count"],
                avg_margin=_money(row["avg_margin"]),
                avg_cost=_money(row["avg_cost"]),
                avg_final_price=_money(row["avg_final_price"]),
                offer_count=row["offer_count"] or 0,
            )
            for row in rows
        ]
        return CursorPage[ProductTypeAggregate](items=items, next_cursor=next_cursor, has_more=has_more, total=total)

    async def list_styles(self, filters: CatalogFilters, cursor: Optional[str], limit: int) -> CursorPage:
        base = [has_cost_basis()]
        if filters.brand:
            base.append(ProductVariant.brand == filters.brand)
        if filters.product_type:
            base.append(ProductVariant.product_type == filters.product_type)
        if filters.search:
            base.append(or_(
                contains_ci(ProductVariant.style_code, filters.search),
                contains_ci(ProductVariant.style_name, filters.search),
            ))

        # Grouped by style_code alone so a style never appears twice
        rows, next_cursor, has_more, total = await self._group_page(
            ProductVariant.style_code,
            [
                func.max(ProductVariant.style_name).label("style_name"),
                func.max(ProductVariant.brand).label("brand"),
                func.max(ProductVariant.product_type).label("product_type"),
                func.count().label("variant_count"),
                func.avg(ProductVariant.margin_percent).label("avg_margin"),
                func.min(ProductVariant.cost).label("min_cost"),
                func.max(ProductVariant.cost).label("max_cost"),
                func.min(ProductVariant.final_price).label("min_final_price"),
                func.max(ProductVariant.final_price).label("max_final_price"),
                _offer_count().label("offer_count"),
            ],
            base, cursor, limit,
        )
        items = [
            StyleAggregate(
                style_code=row["style_code"],
                style_name=row["style_name"],
                brand=row["brand"],
                product_type=row["product_type"],
                variant_count=row["variant_count"],
                avg_margin=_money(row["avg_margin"]),
                min_cost=_money(row["min_cost"]),
                max_cost=_money(row["max_cost"]),
                min_final_price=_money(row["min_final_price"]),
                max_final_price=_money(row["max_final_price"]),
                offer_count=row["offer_count"] or 0,
            )
            for row in rows
        ]
        return CursorPage[StyleAggregate](items=items, next_cursor=next_cursor, has_more=has_more, total=total)

    # ==================== VARIANT LEVEL ====================

    def _variant_base(self, filters: CatalogFilters) -> List[ColumnElement]:
        base = [has_cost_basis()]
        if filters.brand:
            base.append(ProductVariant.brand == filters.brand)
        if filters.product_type:
            base.append(ProductVariant.product_type == filters.product_type)
        if filters.style_code:
            base.append(ProductVariant.style_code == filters.style_code)
        if filters.has_offer is not None:
            base.append(ProductVariant.is_offer_active.is_(bool(filters.has_offer)))
        if filters.search:
            base.append(or_(
                contains_ci(ProductVariant.sku_code, filters.search),
                contains_ci(ProductVariant.style_name, filters.search),
                contains_ci(ProductVariant.brand, filters.search),
            ))
        return base

    def _variant_cursor_predicate(
        self,
        sort_by: str,
        sort_expr: ColumnElement,
        cursor: str,
        descending: bool,
    ) -> ColumnElement:
        if sort_by == DEFAULT_SORT:
            return ProductVariant.sku_code < cursor if descending else ProductVariant.sku_code > cursor

        value, sku_code = decode_cursor(cursor, sort_by)
        if sort_by in NUMERIC_SORT_COLUMNS:
            value = literal(value, Numeric(12, 2))
        if descending:
            return or_(sort_expr < value, and_(sort_expr == value, ProductVariant.sku_code < sku_code))
        return or_(sort_expr > value, and_(sort_expr == value, ProductVariant.sku_code > sku_code))

    async def list_variants(
        self,
        filters: CatalogFilters,
        cursor: Optional[str],
        limit: int,
        sort_by: str = DEFAULT_SORT,
        sort_dir: SortDirection = SortDirection.ASC,
    ) -> CursorPage:
        if sort_by not in VARIANT_SORT_COLUMNS:
            raise PricingValidationError(
                f"Invalid sort column: {sort_by}", {"allowed": sorted(VARIANT_SORT_COLUMNS)}
            )
        descending = SortDirection(sort_dir) == SortDirection.DESC
        sort_expr = VARIANT_SORT_COLUMNS[sort_by]
        base = self._variant_base(filters)

        stmt = select(ProductVariant, sort_expr.label("sort_value")).where(*base)
        if cursor:
            stmt = stmt.where(self._variant_cursor_predicate(sort_by, sort_expr, cursor, descending))
        if sort_by == DEFAULT_SORT:
            order = [ProductVariant.sku_code.desc() if descending else ProductVariant.sku_code.asc()]
        elif descending:
            order = [sort_expr.desc(), ProductVariant.sku_code.desc()]
        else:
            order = [sort_expr.asc(), ProductVariant.sku_code.asc()]
        stmt = stmt.order_by(*order).limit(limit + 1)

        count_stmt = select(func.count()).select_from(ProductVariant).where(*base)

        rows = (await self.db.execute(stmt)).all()
        total = (await self.db.execute(count_stmt)).scalar_one()

        has_more = len(rows) > limit
        rows = rows[:limit]
        next_cursor = None
        if has_more:
            last_variant, last_value = rows[-1]
            if sort_by == DEFAULT_SORT:
                next_cursor = last_variant.sku_code
            else:
                next_cursor = encode_cursor(last_value, last_variant.sku_code)

        items = [VariantResponse.model_validate(variant) for variant, _ in rows]
        return CursorPage[VariantResponse](items=items, next_cursor=next_cursor, has_more=has_more, total=total)

    # ==================== LOOKUPS & STATS ====================

    async def get_variant(self, sku_code: str) -> VariantDetailResponse:
        result = await self.db.execute(
            select(ProductVariant)
            .options(selectinload(ProductVariant.applied_rule))
            .where(ProductVariant.sku_code == sku_code)
        )
        variant = result.scalar_one_or_none()
        if not variant:
            raise NotFoundError("Product variant", sku_code)

        detail = VariantDetailResponse.model_validate(variant)
        if variant.applied_rule is not None:
            detail.rule_name = variant.applied_rule.name
            detail.rule_type = variant.applied_rule.rule_type
        return detail

    async def catalog_stats(self) -> CatalogStats:
        row = (await self.db.execute(
            select(
                func.count().label("total_variants"),
                func.count(func.distinct(ProductVariant.style_code)).label("total_styles"),
                func.count(func.distinct(ProductVariant.brand)).label("total_brands"),
                func.count(func.distinct(ProductVariant.product_type)).label("total_product_types"),
                func.avg(ProductVariant.margin_percent).label("avg_margin"),
                func.avg(ProductVariant.cost).label("avg_cost"),
                func.avg(ProductVariant.final_price).label("avg_final_price"),
                _offer_count().label("offer_count"),
            ).where(has_cost_basis())
        )).mappings().one()

        active_rules = (await self.db.execute(
            select(func.count()).select_from(MarginRule).where(MarginRule.is_active.is_(True))
        )).scalar_one()

        return CatalogStats(
            total_variants=row["total_variants"],
            total_styles=row["total_styles"],
            total_brands=row["total_brands"],
            total_product_types=row["total_product_types"],
            avg_margin=_money(row["avg_margin"]),
            avg_cost=_money(row["avg_cost"]),
            avg_final_price=_money(row["avg_final_price"]),
            offer_count=row["offer_count"] or 0,
            active_rules_count=active_rules,
        )

    async def filter_values(self) -> FilterValues:
        brands = await self.db.execute(
            select(ProductVariant.brand).distinct().order_by(ProductVariant.brand)
        )
        product_types = await self.db.execute(
            select(ProductVariant.product_type).distinct().order_by(ProductVariant.product_type)
        )
        return FilterValues(
            brands=list(brands.scalars().all()),
            product_types=list(product_types.scalars().all()),
        )
