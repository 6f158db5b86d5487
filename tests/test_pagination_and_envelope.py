import pytest

from app.core.responses import envelope, paginated
from app.services.listing import clamp_per_page
from tests.fixtures_data import make_product


@pytest.mark.parametrize("requested, expected", [(None, 15), (0, 15), (20, 20), (100, 100), (500, 100)])
def test_clamp_per_page(requested, expected):
    assert clamp_per_page(requested) == expected


def test_envelope_shape_without_tenant():
    assert envelope({"id": 1}, "Done") == {"success": True, "message": "Done", "data": {"id": 1}, "tenant": None}


def test_paginated_adds_meta():
    body = paginated([], {"total": 0}, "Nothing here")

    assert body["meta"] == {"total": 0}
    assert body["data"] == []


def test_per_page_is_capped_at_one_hundred(client, db, tenant_a, headers_a):
    make_product(db, tenant_a, "A-1")

    meta = client.get("/api/products", params={"per_page": 500}, headers=headers_a).json()["meta"]

    assert meta["per_page"] == 100


def test_page_past_the_end_is_empty(client, db, tenant_a, headers_a):
    for index in range(3):
        make_product(db, tenant_a, f"A-{index}")

    body = client.get("/api/products", params={"page": 5, "per_page": 2}, headers=headers_a).json()

    assert body["data"] == []
    assert body["meta"] == {
        "current_page": 5,
        "per_page": 2,
        "total": 3,
        "last_page": 2,
        "from": None,
        "to": None,
        "has_more_pages": False,
    }


def test_search_and_sort_apply_to_list(client, db, tenant_a, headers_a):
    make_product(db, tenant_a, "SAW-1", name="Hand Saw", price=15.0)
    make_product(db, tenant_a, "SAW-2", name="Circular Saw", price=90.0)
    make_product(db, tenant_a, "HAM-1", name="Claw Hammer", price=12.0)

    body = client.get(
        "/api/products",
        params={"search": "saw", "sort_by": "selling_price", "sort_direction": "asc"},
        headers=headers_a,
    ).json()

    assert [item["sku"] for item in body["data"]] == ["SAW-1", "SAW-2"]
    assert body["meta"]["from"] == 1
    assert body["meta"]["to"] == 2
