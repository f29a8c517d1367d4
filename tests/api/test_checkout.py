"""
Live-server checkout tests.

Run with:
    pytest tests/api
"""

from concurrent.futures import ThreadPoolExecutor

import pytest

from tests.conftest import APIClient, TEST_PASSWORD, assert_response


def _sell(client: APIClient, product_id: int, quantity: int, **extra):
    payload = {"items": [{"product_id": product_id, "quantity": quantity}], "payment_method": "cash"}
    payload.update(extra)
    return client.post("/api/sales", json=payload)


@pytest.mark.smoke
def test_health(client):
    response = client.get("/health")
    assert_response(response, 200, "Health check", "backend/duka/routes/system.py:health_route")


@pytest.mark.sales
def test_checkout_reprices_and_decrements(factory, seller_client):
    product = factory.create_product(quantity=10)

    response = _sell(seller_client, product["id"], 7)
    assert_response(response, 201, "Checkout 7 units at the tier price", "backend/duka/routes/sales.py:checkout_route")
    assert response.json()["total"] == "560.00"

    listing = factory.client.get("/api/products", params={"search": product["item_code"]})
    assert listing.json()["products"][0]["quantity"] == 3


@pytest.mark.sales
def test_oversell_is_rejected(factory, seller_client):
    product = factory.create_product(quantity=2)

    response = _sell(seller_client, product["id"], 3)
    assert_response(response, 409, "Checkout more than on hand", "backend/duka/services/stock_service.py")
    assert response.json()["details"]["available_quantity"] == 2


@pytest.mark.concurrent
def test_two_tills_race_for_the_same_stock(factory, test_config, server_manager):
    product = factory.create_product(quantity=10)

    tills = []
    for username in ("seller_one", "seller_two"):
        till = APIClient(test_config.backend_base_url, timeout=test_config.request_timeout)
        assert till.login(username, TEST_PASSWORD)
        tills.append(till)

    try:
        with ThreadPoolExecutor(max_workers=2) as pool:
            responses = list(pool.map(lambda c: _sell(c, product["id"], 6), tills))
    finally:
        for till in tills:
            till.close()

    statuses = sorted(r.status_code for r in responses)
    assert statuses == [201, 409], [r.text for r in responses]

    listing = factory.client.get("/api/products", params={"search": product["item_code"]})
    assert listing.json()["products"][0]["quantity"] == 4
