"""
Parcours complets via l'API HTTP: panier -> checkout -> (paiement hébergé -> webhook).
"""
import pytest

CART = "/api/v1/cart"
CHECKOUT = "/api/v1/checkout"


@pytest.fixture
def warranty_policy(db):
    db.policies.append({"id": "w24", "product_id": 1, "variant_id": "rgb-5", "months": 24, "fixed_price": 500})
    return "w24"

def _cart_of_two(client, with_default_warranty=False):
    client.post(f"{CART}/items", json={"product_id": 1, "variant_id": "rgb-5", "with_default_warranty": with_default_warranty})
    return client.patch(f"{CART}/items/1", json={"quantity": 2}).json()

def _checkout(client, customer, payment_method):
    client.get(CHECKOUT)
    client.post(f"{CHECKOUT}/info", json=customer)
    client.post(f"{CHECKOUT}/delivery", json={"delivery_method_id": "free_eu_delivery", "payment_method": payment_method})
    return client.post(f"{CHECKOUT}/place-order")


def test_scenario_a_plain_cart_total(client, db):
    cart = _cart_of_two(client)
    assert cart["total"] == 10700
    assert cart["item_count"] == 2

def test_scenario_b_cart_with_fixed_warranty(client, db, warranty_policy):
    _cart_of_two(client)
    cart = client.patch(f"{CART}/items/1", json={"warranty_policy_id": warranty_policy}).json()
    assert cart["total"] == (5350 + 500) * 2
    assert cart["total"] == 11700

def test_scenario_c_cash_on_delivery(client, db, customer):
    _cart_of_two(client)
    r = _checkout(client, customer, "cash")
    assert r.status_code == 200
    order_id = r.json()["order_id"]

    assert db.orders[order_id]["status"] == "pending_cod"
    assert db.payment_sessions == []
    assert db.stripe_calls == []
    assert client.get(CART).json()["items"] == []

    confirmation = client.get(f"{CHECKOUT}/confirmation").json()
    assert confirmation["order_id"] == order_id
    assert confirmation["total"] == 10700
    assert confirmation["status"] == "pending_cod"

def test_scenario_d_card_payment_reconciled(client, db, customer, post_webhook, completed_event):
    _cart_of_two(client)
    r = _checkout(client, customer, "card")
    assert r.status_code == 200
    body = r.json()
    order_id = body["order_id"]
    assert body["next"] == "redirect"

    [session] = db.payment_sessions
    assert session["status"] == "pending"
    assert session["order_id"] == order_id
    assert db.orders[order_id]["status"] == "pending_payment"
    assert db.stripe_calls[0]["order_id"] == order_id

    # Stripe notifie le paiement (montants en unités mineures)
    event = completed_event("evt_d_1", order_id, session["stripe_session_id"], amount_total=1070000)
    assert post_webhook(event).status_code == 200

    assert db.orders[order_id]["status"] == "paid"
    assert db.payment_sessions[0]["status"] == "completed"
    assert len(db.transactions) == 1
    assert db.transactions[0]["amount"] == 10700

    # relivraison: aucun effet supplémentaire
    post_webhook(event)
    assert len(db.transactions) == 1

    # retour navigateur sur la page succès
    success = client.get(f"{CHECKOUT}/success", params={"session_id": session["stripe_session_id"]}).json()
    assert success["status"] == "paid"
    assert success["payment_session_status"] == "completed"
    assert client.get(CART).json()["items"] == []

def test_scenario_d_with_warranty_and_adapter_line_items(client, db, customer, warranty_policy):
    client.post(f"{CART}/items", json={"product_id": 1, "variant_id": "rgb-15", "with_default_warranty": False})
    client.patch(f"{CART}/items/1", json={"adapter": True, "plug_type": "EU"})
    # garantie estimée depuis la variante de base (500 * 15/5)
    client.patch(f"{CART}/items/1", json={"warranty_policy_id": warranty_policy})
    cart = client.get(CART).json()
    assert cart["total"] == 14900 + 1500 + 200

    body = _checkout(client, customer, "card").json()
    line_items = db.stripe_calls[0]["line_items"]
    assert len(line_items) == 3
    assert line_items[0]["price_data"]["unit_amount"] == 1490000
    assert line_items[1]["price_data"]["unit_amount"] == 150000
    assert line_items[2]["price_data"]["unit_amount"] == 20000
    assert db.orders[body["order_id"]]["total"] == 16600
