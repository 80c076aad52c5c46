"""
HTTP API tests.

Tests cover:
- Health and root endpoints
- Error mapping (400, 404, 207 unaudited, 504 timeout)
- Bulk operations, offer and rule flows end to end
- Variant paging and the audit log listing, including the operator header
"""
import asyncio
from decimal import Decimal

import httpx
from sqlalchemy.exc import SQLAlchemyError

from catalog_pricing.main import create_app
from catalog_pricing.services.audit_service import AuditService
from catalog_pricing.services.bulk_mutation_service import BulkMutationService
from tests.factories import make_variant, seed


OPERATOR = {"X-Operator-Id": "pricing-ops-7"}


def money(value) -> Decimal:
    return Decimal(str(value))


# =============================================================
# TEST: Health
# =============================================================

class TestHealth:

    async def test_health(self, client):
        response = await client.get("/health")
        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "healthy"
        assert body["checks"]["database"] == "connected"

    async def test_root(self, client):
        response = await client.get("/")
        assert response.status_code == 200
        assert response.json()["docs"] == "/docs"


# =============================================================
# TEST: Catalog
# =============================================================

class TestCatalogEndpoints:

    async def test_brand_pages(self, session, client):
        await seed(session, *[make_variant(f"{b}-1", brand=b) for b in ("Alpha", "Bravo", "Charlie")])

        page1 = (await client.get("/api/v1/catalog/brands", params={"limit": 2})).json()
        assert [row["brand"] for row in page1["items"]] == ["Alpha", "Bravo"]
        assert page1["next_cursor"] == "Bravo"
        assert page1["has_more"] is True

        page2 = (await client.get(
            "/api/v1/catalog/brands", params={"limit": 2, "cursor": page1["next_cursor"]},
        )).json()
        assert [row["brand"] for row in page2["items"]] == ["Charlie"]
        assert page2["has_more"] is False

    async def test_variant_paging_by_price(self, session, client):
        await seed(session, *[make_variant(f"SKU-{i}", cost="10.00" if i % 2 else "12.00") for i in range(7)])

        seen, cursor = [], None
        while True:
            params = {"limit": 3, "sort_by": "final_price", "sort_dir": "desc"}
            if cursor:
                params["cursor"] = cursor
            page = (await client.get("/api/v1/catalog/variants", params=params)).json()
            seen.extend(row["sku_code"] for row in page["items"])
            if not page["has_more"]:
                break
            cursor = page["next_cursor"]

        assert sorted(seen) == [f"SKU-{i}" for i in range(7)]
        assert len(seen) == len(set(seen))

    async def test_bad_sort_column_is_400(self, client):
        response = await client.get("/api/v1/catalog/variants", params={"sort_by": "password"})
        assert response.status_code == 400
        assert response.json()["error"] == "PricingValidationError"

    async def test_limit_above_max_is_400(self, client):
        response = await client.get("/api/v1/catalog/brands", params={"limit": 1000})
        assert response.status_code == 400

    async def test_unknown_variant_is_404(self, client):
        response = await client.get("/api/v1/catalog/variants/GHOST")
        assert response.status_code == 404
        assert response.json()["success"] is False

    async def test_update_variant(self, session, client):
        await seed(session, make_variant("SKU-1"))

        response = await client.put(
            "/api/v1/catalog/variants/SKU-1",
            json={"is_offer_active": True, "offer_discount_percent": "20"},
            headers=OPERATOR,
        )

        assert response.status_code == 200
        assert money(response.json()["final_price"]) == Decimal("10.40")

    async def test_stats_and_filter_values(self, session, client):
        await seed(session, make_variant("SKU-1", brand="Alpha"), make_variant("SKU-2", brand="Bravo"))

        stats = (await client.get("/api/v1/catalog/stats")).json()
        assert stats["total_variants"] == 2
        values = (await client.get("/api/v1/catalog/filter-values")).json()
        assert values["brands"] == ["Alpha", "Bravo"]


class TestBulkEndpoints:

    async def test_bulk_margin(self, session, client):
        await seed(session, make_variant("SKU-1"), make_variant("SKU-2"))

        response = await client.post(
            "/api/v1/catalog/bulk/margin",
            json={"sku_codes": ["SKU-1", "SKU-2", "GHOST"], "margin_percent": "50"},
            headers=OPERATOR,
        )

        assert response.status_code == 200
        body = response.json()
        assert body["affected_count"] == 2
        assert body["audited"] is True
        variant = (await client.get("/api/v1/catalog/variants/SKU-1")).json()
        assert money(variant["final_price"]) == Decimal("15.00")

    async def test_empty_sku_list_rejected(self, client):
        response = await client.post("/api/v1/catalog/bulk/margin", json={"sku_codes": [], "margin_percent": "5"})
        assert response.status_code == 422

    async def test_negative_cost_is_400(self, session, client):
        await seed(session, make_variant("NEG", cost="-2.00", margin=None))
        response = await client.post(
            "/api/v1/catalog/bulk/margin", json={"sku_codes": ["NEG"], "margin_percent": "10"},
        )
        assert response.status_code == 400

    async def test_bulk_special_offer(self, session, client):
        await seed(session, make_variant("SKU-1"))

        response = await client.post(
            "/api/v1/catalog/bulk/special-offer",
            json={"sku_codes": ["SKU-1"], "discount_percent": "50"},
        )

        assert response.json()["affected_count"] == 1
        variant = (await client.get("/api/v1/catalog/variants/SKU-1")).json()
        assert money(variant["final_price"]) == Decimal("6.50")

    async def test_select_by_filter(self, session, client):
        await seed(session, make_variant("A-1", brand="Alpha"), make_variant("B-1", brand="Bravo"))
        response = await client.post("/api/v1/catalog/bulk/select-by-filter", json={"brand": "Bravo"})
        assert response.json() == {"sku_codes": ["B-1"], "count": 1}

    async def test_audit_failure_is_207(self, session, client, monkeypatch):
        await seed(session, make_variant("SKU-1"))

        async def broken_record(self, *args, **kwargs):
            raise SQLAlchemyError("audit table unavailable")

        monkeypatch.setattr(AuditService, "record", broken_record)

        response = await client.post(
            "/api/v1/catalog/bulk/margin", json={"sku_codes": ["SKU-1"], "margin_percent": "50"},
        )

        assert response.status_code == 207
        body = response.json()
        assert body["success"] is True
        assert body["audited"] is False
        assert body["result"]["affected_count"] == 1

    async def test_single_variant_audit_failure_is_207(self, session, client, monkeypatch):
        await seed(session, make_variant("SKU-1"))

        async def broken_record(self, *args, **kwargs):
            raise SQLAlchemyError("audit table unavailable")

        monkeypatch.setattr(AuditService, "record", broken_record)

        response = await client.put("/api/v1/catalog/variants/SKU-1", json={"margin_percent": "50"})

        assert response.status_code == 207
        body = response.json()
        assert body["audited"] is False
        assert body["result"]["sku_code"] == "SKU-1"
        assert money(body["result"]["final_price"]) == Decimal("15.00")

    async def test_null_margin_is_400(self, session, client):
        await seed(session, make_variant("SKU-1"))

        response = await client.put("/api/v1/catalog/variants/SKU-1", json={"margin_percent": None})

        assert response.status_code == 400
        variant = (await client.get("/api/v1/catalog/variants/SKU-1")).json()
        assert money(variant["margin_percent"]) == Decimal("30")

    async def test_timeout_is_504(self, settings, database, session, monkeypatch):
        await seed(session, make_variant("SKU-1"))

        async def slow_update(self, predicate, values):
            await asyncio.sleep(1)
            return 0

        monkeypatch.setattr(BulkMutationService, "_execute_update", slow_update)
        app = create_app(settings.model_copy(update={"BULK_OPERATION_TIMEOUT_SECONDS": 0.05}))
        app.state.db = database

        async with httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://test") as ac:
            response = await ac.post(
                "/api/v1/catalog/bulk/margin", json={"sku_codes": ["SKU-1"], "margin_percent": "50"},
            )

        assert response.status_code == 504
        assert response.json()["effect"] == "unknown"


# =============================================================
# TEST: Offers and rules
# =============================================================

class TestSpecialOfferEndpoints:

    async def test_preview_with_no_matches(self, session, client):
        await seed(session, make_variant("SKU-1"))

        response = await client.post(
            "/api/v1/special-offers/preview",
            json={"rule_type": "brand", "brand": "Acme", "discount_percent": "15"},
        )

        assert response.status_code == 200
        body = response.json()
        assert body["affected_count"] == 0
        assert money(body["avg_offer_price"]) == Decimal("0")
        assert body["samples"] == []

    async def test_offer_lifecycle(self, session, client):
        await seed(session, make_variant("SKU-1"), make_variant("SKU-2", brand="Bravo"))

        created = await client.post(
            "/api/v1/special-offers",
            json={"name": "Alpha 20", "rule_type": "brand", "brand": "Alpha", "discount_percent": "20"},
            headers=OPERATOR,
        )
        assert created.status_code == 201
        offer_id = created.json()["id"]

        applied = await client.post(f"/api/v1/special-offers/{offer_id}/apply", headers=OPERATOR)
        assert applied.json()["affected_count"] == 1

        detail = (await client.get(f"/api/v1/special-offers/{offer_id}")).json()
        assert detail["affected_count"] == 1
        variant = (await client.get("/api/v1/catalog/variants/SKU-1")).json()
        assert money(variant["final_price"]) == Decimal("10.40")

        removed = await client.post(f"/api/v1/special-offers/{offer_id}/remove", headers=OPERATOR)
        assert removed.json()["affected_count"] == 1
        variant = (await client.get("/api/v1/catalog/variants/SKU-1")).json()
        assert money(variant["final_price"]) == Decimal("13.00")

        deleted = await client.delete(f"/api/v1/special-offers/{offer_id}")
        assert deleted.json()["is_active"] is False
        listing = (await client.get("/api/v1/special-offers")).json()
        assert listing["total"] == 0

    async def test_missing_scope_value_is_400(self, client):
        response = await client.post(
            "/api/v1/special-offers",
            json={"name": "No brand", "rule_type": "brand", "discount_percent": "20"},
        )
        assert response.status_code == 400

    async def test_discount_out_of_range_is_422(self, client):
        response = await client.post(
            "/api/v1/special-offers",
            json={"name": "Too much", "rule_type": "brand", "brand": "Alpha", "discount_percent": "150"},
        )
        assert response.status_code == 422

    async def test_unknown_offer_is_404(self, client):
        response = await client.post("/api/v1/special-offers/00000000-0000-0000-0000-000000000000/apply")
        assert response.status_code == 404

    async def test_expired_offers_hidden_unless_requested(self, client):
        await client.post(
            "/api/v1/special-offers",
            json={
                "name": "Last season", "rule_type": "brand", "brand": "Alpha", "discount_percent": "20",
                "start_date": "2020-01-01T00:00:00Z", "end_date": "2020-02-01T00:00:00Z",
            },
        )

        assert (await client.get("/api/v1/special-offers")).json()["total"] == 0
        listing = (await client.get("/api/v1/special-offers", params={"include_expired": True})).json()
        assert [item["name"] for item in listing["items"]] == ["Last season"]


class TestMarginRuleEndpoints:

    async def test_rule_lifecycle(self, session, client):
        await seed(session, make_variant("SKU-1"), make_variant("SKU-2", brand="Bravo"))

        created = await client.post(
            "/api/v1/margin-rules",
            json={"name": "Alpha", "rule_type": "brand", "brand": "Alpha", "margin_percent": "40"},
            headers=OPERATOR,
        )
        assert created.status_code == 201
        assert created.json()["priority"] == 4
        rule_id = created.json()["id"]

        applied = await client.post("/api/v1/margin-rules/apply", headers=OPERATOR)
        assert applied.status_code == 200
        assert applied.json()["affected_count"] == 1

        rule = (await client.get(f"/api/v1/margin-rules/{rule_id}")).json()
        assert rule["affected_count"] == 1

        updated = await client.put(f"/api/v1/margin-rules/{rule_id}", json={"margin_percent": "45"})
        assert money(updated.json()["margin_percent"]) == Decimal("45")

        deleted = await client.delete(f"/api/v1/margin-rules/{rule_id}")
        assert deleted.json()["is_active"] is False

    async def test_rule_preview(self, session, client):
        await seed(session, make_variant("SKU-1"))
        response = await client.post(
            "/api/v1/margin-rules/preview",
            json={"rule_type": "brand", "brand": "Alpha", "margin_percent": "50"},
        )
        body = response.json()
        assert body["affected_count"] == 1
        assert money(body["samples"][0]["projected_price"]) == Decimal("15.00")


# =============================================================
# TEST: Audit log
# =============================================================

class TestAuditLogEndpoints:

    async def test_operator_recorded_and_filterable(self, session, client):
        await seed(session, make_variant("SKU-1"))
        await client.post(
            "/api/v1/catalog/bulk/margin",
            json={"sku_codes": ["SKU-1"], "margin_percent": "50"},
            headers=OPERATOR,
        )
        await client.post("/api/v1/catalog/bulk/margin", json={"sku_codes": ["SKU-1"], "margin_percent": "40"})

        everything = (await client.get("/api/v1/audit-logs")).json()
        assert everything["total"] == 2

        mine = (await client.get("/api/v1/audit-logs", params={"performed_by": "pricing-ops-7"})).json()
        assert mine["total"] == 1
        entry = mine["items"][0]
        assert entry["action"] == "bulk_margin_override"
        assert entry["affected_count"] == 1
        assert entry["rule_snapshot"]["sku_codes"] == ["SKU-1"]
        assert entry["snapshot"]["kind"] == "bulk_margin_override"
        assert money(entry["snapshot"]["margin_percent"]) == Decimal("50")

    async def test_zero_match_writes_no_entry(self, client):
        response = await client.post(
            "/api/v1/catalog/bulk/margin", json={"sku_codes": ["GHOST"], "margin_percent": "50"},
        )
        assert response.status_code == 200
        assert response.json()["audited"] is False

        listing = (await client.get("/api/v1/audit-logs", params={"action": "bulk_margin_override"})).json()
        assert listing["total"] == 0

    async def test_limit_bounds(self, client):
        response = await client.get("/api/v1/audit-logs", params={"limit": 500})
        assert response.status_code == 422
