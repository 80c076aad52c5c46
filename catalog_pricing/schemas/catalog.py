"""Pydantic schemas for the drill-down catalog browser."""
from decimal import Decimal
from enum import Enum
from typing import Generic, List, Optional, TypeVar

from pydantic import BaseModel

from catalog_pricing.schemas.variant import VariantResponse


T = TypeVar("T")


class AggregateLevel(str, Enum):
    """Drill-down levels, coarsest first."""
    BRAND = "brand"
    PRODUCT_TYPE = "product_type"
    STYLE = "style"
    VARIANT = "variant"


class SortDirection(str, Enum):
    ASC = "asc"
    DESC = "desc"


class CursorPage(BaseModel, Generic[T]):
    """One page of a cursor-driven listing."""
    items: List[T]
    next_cursor: Optional[str] = None
    has_more: bool
    # Full matching set size, from a count query without the cursor predicate
    total: int


class BrandAggregate(BaseModel):
    brand: str
    style_count: int
    variant_count: int
    avg_margin: Optional[Decimal] = None
    avg_cost: Optional[Decimal] = None
    avg_final_price: Optional[Decimal] = None
    offer_count: int


class ProductTypeAggregate(BaseModel):
    product_type: str
    style_count: int
    variant_count: int
    avg_margin: Optional[Decimal] = None
    avg_cost: Optional[Decimal] = None
    avg_final_price: Optional[Decimal] = None
    offer_count: int


class StyleAggregate(BaseModel):
    style_code: str
    style_name: Optional[str] = None
    brand: Optional[str] = None
    product_type: Optional[str] = None
    variant_count: int
    avg_margin: Optional[Decimal] = None
    min_cost: Optional[Decimal] = None
    max_cost: Optional[Decimal] = None
    min_final_price: Optional[Decimal] = None
    max_final_price: Optional[Decimal] = None
    offer_count: int


BrandPage = CursorPage[BrandAggregate]
ProductTypePage = CursorPage[ProductTypeAggregate]
StylePage = CursorPage[StyleAggregate]
VariantPage = CursorPage[VariantResponse]


class CatalogStats(BaseModel):
    total_variants: int
    total_styles: int
    total_brands: int
    total_product_types: int
    avg_margin: Optional[Decimal] = None
    avg_cost: Optional[Decimal] = None
    avg_final_price: Optional[Decimal] = None
    offer_count: int
    active_rules_count: int


class FilterValues(BaseModel):
    brands: List[str]
    product_types: List[str]
