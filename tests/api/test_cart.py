from __future__ import annotations

from uuid import uuid4

from fastapi.testclient import TestClient

from tests.conftest import auth, seed_product, seed_user


def test_cart_requires_token(client: TestClient) -> None:
    assert client.get("/v1/cart").status_code == 401


def test_new_cart_is_empty(client: TestClient) -> None:
    resp = client.get("/v1/cart", headers=auth(uuid4()))
    assert resp.status_code == 200
    assert resp.json() == {"items": [], "subtotal": 0}


def test_add_and_remove_items(client: TestClient) -> None:
    buyer = seed_user()
    ebook = seed_product(slug="ebook", price=500, discount_price=400)
    slides = seed_product(slug="slides", price=200)
    headers = auth(buyer.id)

    client.post("/v1/cart/items", json={"product_id": str(ebook.id)}, headers=headers)
    resp = client.post(
        "/v1/cart/items", json={"product_id": str(slides.id)}, headers=headers
    )
    assert resp.status_code == 200
    assert resp.json()["subtotal"] == 600

    resp = client.delete(f"/v1/cart/items/{ebook.id}", headers=headers)
    assert resp.json() == {
        "items": [{"product_id": str(slides.id), "price": 200}],
        "subtotal": 200,
    }


def test_adding_unknown_product_is_404(client: TestClient) -> None:
    resp = client.post(
        "/v1/cart/items", json={"product_id": str(uuid4())}, headers=auth(uuid4())
    )
    assert resp.status_code == 404
    assert resp.json() == {"detail": "product not found"}
