from fastapi import APIRouter

from catalog_pricing.api.v1.endpoints import (
    audit_logs,
    catalog,
    margin_rules,
    special_offers,
)


api_router = APIRouter(prefix="/api/v1")

api_router.include_router(
    catalog.router,
    prefix="/catalog",
    tags=["Catalog"],
)
api_router.include_router(
    special_offers.router,
    prefix="/special-offers",
    tags=["Special Offers"],
)
api_router.include_router(
    margin_rules.router,
    prefix="/margin-rules",
    tags=["Margin Rules"],
)
api_router.include_router(
    audit_logs.router,
    prefix="/audit-logs",
    tags=["Audit Logs"],
)
