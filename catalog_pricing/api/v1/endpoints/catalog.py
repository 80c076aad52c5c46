"""API endpoints for catalog browsing and variant pricing writes."""
from typing import Optional

from fastapi import APIRouter, Query

from catalog_pricing.api.deps import DB, AppSettings, Operator
from catalog_pricing.schemas.base import MutationResult
from catalog_pricing.schemas.catalog import (
    AggregateLevel, BrandPage, CatalogStats, FilterValues, ProductTypePage,
    SortDirection, StylePage, VariantPage,
)
from catalog_pricing.schemas.variant import (
    BulkMarginRequest, BulkSpecialOfferRequest, SelectByFilterRequest,
    SelectByFilterResponse, VariantDetailResponse, VariantResponse, VariantUpdate,
)
from catalog_pricing.services.bulk_mutation_service import BulkMutationService
from catalog_pricing.services.catalog_browser_service import CatalogBrowserService, CatalogFilters
from catalog_pricing.services.rule_resolver import RuleResolver

router = APIRouter()


# ==================== Drill-down ====================

@router.get("/brands", response_model=BrandPage)
async def list_brands(
    db: DB,
    settings: AppSettings,
    cursor: Optional[str] = None,
    limit: Optional[int] = Query(None, ge=1),
    search: Optional[str] = None,
):
    """Brand aggregates, ordered by brand name."""
    service = CatalogBrowserService(db, settings)
    return await service.list_aggregates(
        AggregateLevel.BRAND, CatalogFilters(search=search), cursor, limit,
    )


@router.get("/product-types", response_model=ProductTypePage)
async def list_product_types(
    db: DB,
    settings: AppSettings,
    brand: Optional[str] = None,
    cursor: Optional[str] = None,
    limit: Optional[int] = Query(None, ge=1),
    search: Optional[str] = None,
):
    """Product type aggregates, optionally within one brand."""
    service = CatalogBrowserService(db, settings)
    return await service.list_aggregates(
        AggregateLevel.PRODUCT_TYPE, CatalogFilters(brand=brand, search=search), cursor, limit,
    )


@router.get("/styles", response_model=StylePage)
async def list_styles(
    db: DB,
    settings: AppSettings,
    brand: Optional[str] = None,
    product_type: Optional[str] = None,
    cursor: Optional[str] = None,
    limit: Optional[int] = Query(None, ge=1),
    search: Optional[str] = None,
):
    """Style aggregates within a brand and/or product type."""
    service = CatalogBrowserService(db, settings)
    return await service.list_aggregates(
        AggregateLevel.STYLE,
        CatalogFilters(brand=brand, product_type=product_type, search=search),
        cursor,
        limit,
    )


@router.get("/variants", response_model=VariantPage)
async def list_variants(
    db: DB,
    settings: AppSettings,
    brand: Optional[str] = None,
    product_type: Optional[str] = None,
    style_code: Optional[str] = None,
    has_offer: Optional[bool] = None,
    search: Optional[str] = None,
    cursor: Optional[str] = None,
    limit: Optional[int] = Query(None, ge=1),
    sort_by: str = "sku_code",
    sort_dir: SortDirection = SortDirection.ASC,
):
    """Individual variants with configurable sort."""
    service = CatalogBrowserService(db, settings)
    filters = CatalogFilters(
        brand=brand,
        product_type=product_type,
        style_code=style_code,
        has_offer=has_offer,
        search=search,
    )
    return await service.list_aggregates(
        AggregateLevel.VARIANT, filters, cursor, limit, sort_by=sort_by, sort_dir=sort_dir,
    )


@router.get("/stats", response_model=CatalogStats)
async def catalog_stats(db: DB, settings: AppSettings):
    """Catalog-wide pricing statistics."""
    return await CatalogBrowserService(db, settings).catalog_stats()


@router.get("/filter-values", response_model=FilterValues)
async def filter_values(db: DB, settings: AppSettings):
    """Distinct brands and product types for filter dropdowns."""
    return await CatalogBrowserService(db, settings).filter_values()


# ==================== Single variant ====================

@router.get("/variants/{sku_code}", response_model=VariantDetailResponse)
async def get_variant(sku_code: str, db: DB, settings: AppSettings):
    """Get one variant with the rule that set its margin."""
    return await CatalogBrowserService(db, settings).get_variant(sku_code)


@router.put("/variants/{sku_code}", response_model=VariantResponse)
async def update_variant(
    sku_code: str,
    variant_in: VariantUpdate,
    db: DB,
    settings: AppSettings,
    operator: Operator,
):
    """Partial pricing update; prices are recomputed from the stored cost."""
    service = BulkMutationService(db, settings)
    return await service.update_single_variant(
        sku_code, variant_in.model_dump(exclude_unset=True), performed_by=operator,
    )


# ==================== Bulk operations ====================

@router.post("/bulk/margin", response_model=MutationResult)
async def bulk_override_margin(
    request_in: BulkMarginRequest,
    db: DB,
    settings: AppSettings,
    operator: Operator,
):
    """Manual margin override for an explicit SKU list."""
    service = BulkMutationService(db, settings)
    return await service.apply_margin_override(
        request_in.sku_codes, request_in.margin_percent, performed_by=operator,
    )


@router.post("/bulk/special-offer", response_model=MutationResult)
async def bulk_special_offer(
    request_in: BulkSpecialOfferRequest,
    db: DB,
    settings: AppSettings,
    operator: Operator,
):
    """Switch an ad-hoc offer on or off for an explicit SKU list."""
    service = BulkMutationService(db, settings)
    return await service.bulk_set_special_offer(
        request_in.sku_codes,
        request_in.discount_percent,
        is_offer_active=request_in.is_offer_active,
        performed_by=operator,
    )


@router.post("/bulk/select-by-filter", response_model=SelectByFilterResponse)
async def select_by_filter(request_in: SelectByFilterRequest, db: DB):
    """Resolve a filter to SKU codes for a follow-up bulk operation."""
    codes = await RuleResolver(db).select_by_filter(**request_in.model_dump())
    return SelectByFilterResponse(sku_codes=codes, count=len(codes))
