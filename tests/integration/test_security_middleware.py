from storefront.app_setup.middlewares import CSRF_COOKIE_NAME, CSRF_HEADER_NAME

ITEM = {"product_id": 1, "variant_id": "rgb-5"}


def test_security_headers_and_csrf_cookie(client):
    r = client.get("/api/v1/cart")
    assert r.headers["X-Frame-Options"] == "DENY"
    assert r.headers["X-Content-Type-Options"] == "nosniff"
    assert "default-src 'self'" in r.headers["Content-Security-Policy"]
    assert CSRF_COOKIE_NAME in client.cookies

def test_guest_mutations_do_not_need_csrf(client, db):
    assert client.post("/api/v1/cart/items", json=ITEM).status_code == 200

def test_logged_in_mutation_without_csrf_is_blocked(client, db):
    client.get("/api/v1/cart")
    client.cookies.set("sb_access", "dummy-session")
    r = client.post("/api/v1/cart/items", json=ITEM)
    assert r.status_code == 403
    assert r.json().get("detail") == "CSRF verification failed"

def test_logged_in_mutation_with_matching_token(client, db):
    client.get("/api/v1/cart")
    token = client.cookies.get(CSRF_COOKIE_NAME)
    client.cookies.set("sb_access", "dummy-session")
    r = client.post("/api/v1/cart/items", json=ITEM, headers={CSRF_HEADER_NAME: token})
    assert r.status_code == 200

def test_webhook_is_exempt_from_csrf(client, db):
    client.cookies.set("sb_access", "dummy-session")
    r = client.post("/api/v1/payments/webhook", content=b"{}", headers={"stripe-signature": "t=1,v1=bad"})
    # refus par la signature, pas par le CSRF
    assert r.status_code == 400

def test_auth_errors_stay_json_for_browsers():
    from fastapi import FastAPI, HTTPException
    from fastapi.testclient import TestClient
    from storefront.app_setup.exceptions import register_exception_handlers

    app = FastAPI()
    register_exception_handlers(app)

    @app.get("/private")
    def private():
        raise HTTPException(status_code=401, detail="Non authentifié")

    r = TestClient(app).get("/private", headers={"accept": "text/html"}, follow_redirects=False)
    assert r.status_code == 401
    assert r.json() == {"detail": "Non authentifié"}
    assert "location" not in r.headers
