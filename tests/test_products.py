from __future__ import annotations

import threading

from pharmasite import store

ADMIN = {"Authorization": "Bearer test-admin"}

PRODUCT = {
    "name": "Cardio Plus 10mg",
    "sku": "CP-10",
    "category": "human",
    "price": 12.5,
    "stock_quantity": 40,
    "description": "Tablets",
}


def _create(client, **overrides):
    return client.post("/api/admin/products", json={**PRODUCT, **overrides}, headers=ADMIN)


def test_create_and_fetch_product(client) -> None:
    created = _create(client)

    assert created.status_code == 201
    body = created.json()
    assert body["slug"] == "cardio-plus-10mg"
    assert body["active"] is True

    fetched = client.get("/api/products/cardio-plus-10mg")
    assert fetched.status_code == 200
    assert fetched.json()["sku"] == "CP-10"


def test_create_product_validation(client) -> None:
    response = _create(client, name="", price=0, category="cosmetics", stock_quantity=-1)

    assert response.status_code == 422
    errors = response.json()["errors"]
    assert len(errors) == 4
    assert client.get("/api/products").json()["total"] == 0


def test_duplicate_sku_conflicts(client) -> None:
    _create(client)
    response = _create(client, name="Other name")

    assert response.status_code == 409


def test_public_listing_filters(client) -> None:
    _create(client)
    _create(client, name="Poultry Vita", sku="PV-1", category="veterinary")
    hidden = _create(client, name="Old Syrup", sku="OS-1").json()
    client.put(f"/api/admin/products/{hidden['id']}", json={"active": False}, headers=ADMIN)

    everything = client.get("/api/products").json()
    vet = client.get("/api/products", params={"category": "veterinary"}).json()
    search = client.get("/api/products", params={"q": "CARDIO"}).json()

    assert everything["total"] == 2
    assert [p["sku"] for p in vet["products"]] == ["PV-1"]
    assert [p["sku"] for p in search["products"]] == ["CP-10"]
    assert client.get("/api/products/old-syrup").status_code == 404
    admin = client.get("/api/admin/products", headers=ADMIN).json()
    assert admin["total"] == 3


def test_unknown_category_rejected(client) -> None:
    assert client.get("/api/products", params={"category": "toys"}).status_code == 400


def test_update_and_delete_product(client) -> None:
    product = _create(client).json()

    updated = client.put(
        f"/api/admin/products/{product['id']}", json={"price": 15}, headers=ADMIN
    )
    assert updated.status_code == 200
    assert updated.json()["price"] == 15.0
    assert updated.json()["name"] == PRODUCT["name"]

    bad = client.put(f"/api/admin/products/{product['id']}", json={"price": -2}, headers=ADMIN)
    assert bad.status_code == 422

    deleted = client.delete(f"/api/admin/products/{product['id']}", headers=ADMIN)
    assert deleted.json() == {"success": True}
    missing = client.delete(f"/api/admin/products/{product['id']}", headers=ADMIN)
    assert missing.status_code == 404


def test_inventory_overview_and_adjustments(client, configure) -> None:
    configure(LOW_STOCK_THRESHOLD=10)
    first = _create(client).json()
    _create(client, name="Poultry Vita", sku="PV-1", category="veterinary", stock_quantity=3)
    _create(client, name="Empty Box", sku="EB-1", stock_quantity=0)

    overview = client.get("/api/admin/inventory", headers=ADMIN).json()
    assert overview["total_products"] == 3
    assert overview["total_units"] == 43
    assert overview["out_of_stock"] == 1
    assert [item["sku"] for item in overview["low_stock"]] == ["EB-1", "PV-1"]

    adjusted = client.patch(
        f"/api/admin/inventory/{first['id']}", json={"delta": -5}, headers=ADMIN
    )
    assert adjusted.json()["stock_quantity"] == 35

    too_far = client.patch(
        f"/api/admin/inventory/{first['id']}", json={"delta": -100}, headers=ADMIN
    )
    assert too_far.status_code == 422

    not_int = client.patch(
        f"/api/admin/inventory/{first['id']}", json={"delta": "3"}, headers=ADMIN
    )
    assert not_int.status_code == 422


def test_concurrent_stock_adjustments_never_oversell(client) -> None:
    product = _create(client, stock_quantity=1).json()
    workers = 8
    barrier = threading.Barrier(workers)
    outcomes: list[str] = []
    lock = threading.Lock()

    def take_one() -> None:
        barrier.wait()
        try:
            store.adjust_stock(product["id"], -1)
            outcome = "applied"
        except ValueError:
            outcome = "refused"
        with lock:
            outcomes.append(outcome)

    threads = [threading.Thread(target=take_one) for _ in range(workers)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert outcomes.count("applied") == 1
    assert outcomes.count("refused") == workers - 1
    fetched = client.get(f"/api/products/{product['slug']}").json()
    assert fetched["stock_quantity"] == 0


def test_adjust_stock_on_missing_product(client) -> None:
    response = client.patch("/api/admin/inventory/999", json={"delta": 1}, headers=ADMIN)

    assert response.status_code == 404


def test_product_flags_and_image_url_are_type_checked(client) -> None:
    bad_active = _create(client, active="yes")
    bad_image = _create(client, sku="CP-11", image_url=42)

    assert bad_active.status_code == 422
    assert bad_active.json()["errors"] == ["active must be a boolean"]
    assert bad_image.status_code == 422
    assert bad_image.json()["errors"] == ["image_url must be a string or null"]

    product = _create(client, image_url=None, active=False).json()
    update = client.put(
        f"/api/admin/products/{product['id']}", json={"active": 1}, headers=ADMIN
    )
    assert update.status_code == 422


def test_list_valued_category_is_a_validation_error(client) -> None:
    response = _create(client, category=["human"])

    assert response.status_code == 422
    assert response.json()["errors"] == ["Category must be one of: human, veterinary"]
