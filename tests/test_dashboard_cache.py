from app.core import cache
from tests.fixtures_data import PRODUCT_PAYLOAD, make_product


def _total_products(client, headers):
    return client.get("/api/dashboard/overview", headers=headers).json()["data"]["summary"]["total_products"]


def test_overview_is_cached_per_tenant_until_a_write(client, db, tenant_a, headers_a):
    make_product(db, tenant_a, "A-1")
    assert _total_products(client, headers_a) == 1

    # Rows inserted behind the API do not invalidate the cache
    make_product(db, tenant_a, "A-2")
    assert _total_products(client, headers_a) == 1

    client.post("/api/products", json=PRODUCT_PAYLOAD, headers=headers_a)
    assert _total_products(client, headers_a) == 3


def test_cache_entries_are_isolated_between_tenants(client, db, tenant_a, tenant_b, headers_a, headers_b):
    make_product(db, tenant_a, "A-1")

    assert _total_products(client, headers_a) == 1
    assert _total_products(client, headers_b) == 0


def test_ttl_expiry_and_tenant_invalidation():
    cache.put((1, "overview"), {"value": 1})
    cache.put((2, "overview"), {"value": 2})

    assert cache.get((1, "overview")) == {"value": 1}
    assert cache.get((1, "overview"), ttl=-1) is None

    cache.invalidate_tenant(2)
    assert cache.get((2, "overview")) is None


def test_all_tenants_overview_does_not_fill_tenant_cache(client, db, tenant_a, tenant_b, headers_a, super_headers):
    make_product(db, tenant_a, "A-1")
    make_product(db, tenant_b, "B-1")
    make_product(db, tenant_b, "B-2")

    cross_tenant = client.get(
        "/api/dashboard/overview",
        headers={**super_headers, "X-Tenant-ID": str(tenant_a.id), "X-All-Tenants": "1"},
    )

    assert cross_tenant.json()["data"]["summary"]["total_products"] == 3
    assert _total_products(client, headers_a) == 1
