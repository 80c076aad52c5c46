# Models module
from catalog_pricing.models.margin_rule import MarginRule, MarginRuleType, RULE_PRIORITIES
from catalog_pricing.models.special_offer import SpecialOffer, OfferRuleType
from catalog_pricing.models.product_variant import ProductVariant
from catalog_pricing.models.audit_log import AuditLog, AuditAction

__all__ = [
    "MarginRule",
    "MarginRuleType",
    "RULE_PRIORITIES",
    "SpecialOffer",
    "OfferRuleType",
    "ProductVariant",
    "AuditLog",
    "AuditAction",
]
