# Services module
from catalog_pricing.services.audit_service import AuditService
from catalog_pricing.services.rule_resolver import RuleResolver
from catalog_pricing.services.bulk_mutation_service import BulkMutationService
from catalog_pricing.services.catalog_browser_service import CatalogBrowserService
from catalog_pricing.services.special_offer_service import SpecialOfferService
from catalog_pricing.services.margin_rule_service import MarginRuleService

__all__ = [
    "AuditService",
    "RuleResolver",
    "BulkMutationService",
    "CatalogBrowserService",
    "SpecialOfferService",
    "MarginRuleService",
]
