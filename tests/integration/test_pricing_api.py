QUOTE = "/api/v1/pricing/quote"


def test_quote_uses_catalog_price(client, db):
    r = client.get(QUOTE, params={"product_id": 1, "variant_id": "rgb-5"})
    assert r.status_code == 200
    body = r.json()
    assert body["unit_price"] == 5350
    assert body["currency"] == "CZK"
    assert body["warranties"] == []
    assert body["default_policy_id"] is None

def test_quote_prefers_active_override(client, db):
    db.overrides[(1, "rgb-5", "EUR")] = 215
    assert client.get(QUOTE, params={"product_id": 1, "variant_id": "rgb-5", "currency": "eur"}).json()["unit_price"] == 215
    assert client.get(QUOTE, params={"product_id": 1, "variant_id": "rgb-5"}).json()["unit_price"] == 5350

def test_quote_lists_warranties_with_default(client, db):
    db.policies.extend([
        {"id": "w24", "product_id": 1, "variant_id": "rgb-5", "months": 24, "fixed_price": 500},
        {"id": "w60", "product_id": 1, "variant_id": "rgb-5", "months": 60, "price_multiplier": 0.2},
    ])
    body = client.get(QUOTE, params={"product_id": 1, "variant_id": "rgb-5"}).json()
    assert [(w["months"], w["additional_cost"]) for w in body["warranties"]] == [(24, 500), (60, 1070)]
    assert body["default_policy_id"] == "w24"

def test_quote_estimated_for_longer_variant(client, db):
    db.policies.append({"id": "w24", "product_id": 1, "variant_id": "rgb-5", "months": 24, "fixed_price": 500})
    body = client.get(QUOTE, params={"product_id": 1, "variant_id": "rgb-15"}).json()
    [warranty] = body["warranties"]
    assert warranty["additional_cost"] == 1500
    assert warranty["estimated"] is True

def test_quote_unknown_variant(client, db):
    r = client.get(QUOTE, params={"product_id": 1, "variant_id": "nope"})
    assert r.status_code == 404
    assert r.json()["code"] == "variant_not_found"

def test_price_override_requires_admin(client, db):
    r = client.put("/api/v1/admin/prices", json={"product_id": 1, "variant_id": "rgb-5", "price": 4990})
    assert r.status_code == 401

def test_admin_can_set_override(authenticated_admin_client, db, monkeypatch):
    saved = {}

    def fake_upsert(product_id, variant_id, currency, price, is_active=True):
        saved.update(product_id=product_id, variant_id=variant_id, currency=currency, price=price, is_active=is_active)
        if is_active:
            db.overrides[(product_id, variant_id, currency)] = price
        return {"id": 1, **saved}

    monkeypatch.setattr("storefront.pricing.repository.upsert_price_override", fake_upsert)
    r = authenticated_admin_client.put(
        "/api/v1/admin/prices",
        json={"product_id": 1, "variant_id": "rgb-5", "currency": "czk", "price": 4990},
    )
    assert r.status_code == 200
    assert r.json()["status"] == "ok"
    assert saved["currency"] == "CZK"

    quote = authenticated_admin_client.get(QUOTE, params={"product_id": 1, "variant_id": "rgb-5"}).json()
    assert quote["unit_price"] == 4990

def test_admin_override_storage_failure(authenticated_admin_client, db, monkeypatch):
    monkeypatch.setattr("storefront.pricing.repository.upsert_price_override", lambda *a, **k: None)
    r = authenticated_admin_client.put("/api/v1/admin/prices", json={"product_id": 1, "variant_id": "rgb-5", "price": 1})
    assert r.status_code == 502

def test_negative_override_rejected(authenticated_admin_client, db):
    r = authenticated_admin_client.put("/api/v1/admin/prices", json={"product_id": 1, "variant_id": "rgb-5", "price": -5})
    assert r.status_code == 422
