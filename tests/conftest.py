import copy
import hashlib
import hmac
import json
import os
import time
import uuid
import pytest
from typing import Any, Dict, Generator, List, Optional
from unittest.mock import MagicMock

# Configuration de test (avant tout import de storefront: la config est lue à l'import)
os.environ.setdefault("DISABLE_FASTAPI_LIMITER_INIT_FOR_TESTS", "1")
os.environ.setdefault("CART_STORAGE", "memory")
os.environ.setdefault("STRIPE_WEBHOOK_SECRET", "whsec_test_secret")
os.environ.setdefault("ABANDONED_SWEEP_INTERVAL_SECONDS", "0")

from fastapi.testclient import TestClient

from storefront.app import app as fastapi_app
from storefront.cart.storage import MemoryStorage
from storefront.config import STRIPE_WEBHOOK_SECRET
from storefront.orders import status as order_status
from storefront.utils.security import require_admin

# Marquage automatique selon le dossier
def pytest_collection_modifyitems(config, items):
    for item in items:
        nodeid = item.nodeid.replace("\\", "/")
        if "tests/unit/" in nodeid:
            item.add_marker(pytest.mark.unit)
        elif "tests/integration/" in nodeid:
            item.add_marker(pytest.mark.integration)
        elif "tests/functional/" in nodeid:
            item.add_marker(pytest.mark.functional)

@pytest.fixture(scope="session")
def app():
    return fastapi_app

@pytest.fixture()
def storage(app) -> MemoryStorage:
    s = MemoryStorage()
    app.state.cart_storage = s
    yield s
    app.state.cart_storage = None

@pytest.fixture()
def client(app, storage) -> Generator[TestClient, None, None]:
    with TestClient(app) as c:
        yield c

@pytest.fixture
def authenticated_admin_client(app, client):
    app.dependency_overrides[require_admin] = lambda: {"id": "admin-user-id", "role": "admin", "email": "admin@example.com"}
    yield client
    app.dependency_overrides.pop(require_admin, None)

# Aucun test ne doit atteindre un vrai Supabase
@pytest.fixture(scope="function", autouse=True)
def mock_supabase_clients(monkeypatch):
    monkeypatch.setattr("storefront.infra.supabase_client.get_supabase", lambda: MagicMock())
    monkeypatch.setattr("storefront.infra.supabase_client.get_service_supabase", lambda: MagicMock())


RGB_PRODUCT = {
    "id": 1,
    "name": "LED pásek RGB",
    "image": "rgb.jpg",
    "stripe_product_id": "prod_rgb",
    "variants": [
        {"id": "rgb-5", "length": 5, "price": 5350, "stripePriceId": "price_rgb_5", "stockStatus": "in_stock"},
        {"id": "rgb-15", "length": 15, "price": 14900, "stockStatus": "in_stock"},
    ],
}


class FakeDB:
    """Tables en mémoire branchées à la place des repositories Supabase et de Stripe."""

    def __init__(self):
        self.products: Dict[int, Dict[str, Any]] = {1: copy.deepcopy(RGB_PRODUCT)}
        self.overrides: Dict[tuple, Any] = {}
        self.policies: List[Dict[str, Any]] = []
        self.orders: Dict[str, Dict[str, Any]] = {}
        self.payment_sessions: List[Dict[str, Any]] = []
        self.transactions: List[Dict[str, Any]] = []
        self.events: Dict[str, Dict[str, Any]] = {}
        self.stripe_calls: List[Dict[str, Any]] = []
        self.stripe_error: Optional[Exception] = None
        self.fail_insert_order = False

    # --- catalogue ---
    def get_product(self, product_id):
        product = self.products.get(int(product_id))
        return copy.deepcopy(product) if product else None

    def get_active_override(self, product_id, variant_id, currency):
        return self.overrides.get((int(product_id), variant_id, currency))

    def get_warranty_policies(self, product_id, variant_id=None):
        rows = sorted(
            (p for p in self.policies if p["product_id"] == product_id),
            key=lambda p: p.get("months") or 0,
        )
        if variant_id is None:
            return copy.deepcopy(rows)
        by_months: Dict[Any, Dict[str, Any]] = {}
        for row in rows:
            if row.get("variant_id") not in (None, "", variant_id):
                continue
            current = by_months.get(row.get("months"))
            if current is None or row.get("variant_id") == variant_id:
                by_months[row.get("months")] = row
        return copy.deepcopy(sorted(by_months.values(), key=lambda p: p.get("months") or 0))

    # --- commandes ---
    def insert_order(self, row):
        from storefront.errors import OrderPersistenceError
        if self.fail_insert_order:
            raise OrderPersistenceError("Impossible de créer la commande: supabase down")
        order_id = str(uuid.uuid4())
        self.orders[order_id] = {**copy.deepcopy(row), "id": order_id, "created_at": "2026-01-01T00:00:00+00:00"}
        return order_id

    def update_order_status(self, order_id, status):
        order = self.orders.get(order_id)
        if order and order["status"] in order_status.allowed_predecessors(status):
            order["status"] = status
            return True
        return False

    def get_order(self, order_id):
        order = self.orders.get(order_id)
        return copy.deepcopy(order) if order else None

    # --- paiements ---
    def insert_payment_session(self, *, order_id, stripe_session_id, amount, currency, user_id=None, status="pending"):
        existing = self.get_payment_session_by_external_id(stripe_session_id)
        if existing:
            return existing
        row = {
            "id": len(self.payment_sessions) + 1,
            "order_id": order_id,
            "stripe_session_id": stripe_session_id,
            "status": status,
            "amount": amount,
            "currency": currency.lower(),
            "user_id": user_id,
        }
        self.payment_sessions.append(row)
        return copy.deepcopy(row)

    def get_payment_session_by_external_id(self, stripe_session_id):
        for row in self.payment_sessions:
            if row["stripe_session_id"] == stripe_session_id:
                return copy.deepcopy(row)
        return None

    def update_payment_session_status(self, stripe_session_id, status, allowed_from):
        for row in self.payment_sessions:
            if row["stripe_session_id"] == stripe_session_id and row["status"] in allowed_from:
                row["status"] = status
                return True
        return False

    def insert_transaction(self, row):
        key = row.get("stripe_event_id")
        if key and any(t.get("stripe_event_id") == key for t in self.transactions):
            return False
        self.transactions.append(copy.deepcopy(row))
        return True

    def record_event(self, event_id, event_type, data):
        if event_id not in self.events:
            self.events[event_id] = {"stripe_event_id": event_id, "type": event_type, "data": data, "processed_at": None}
        return copy.deepcopy(self.events[event_id])

    def mark_event_processed(self, event_id):
        if event_id in self.events:
            self.events[event_id]["processed_at"] = "2026-01-01T00:00:00+00:00"

    # --- Stripe ---
    def create_hosted_session(self, *, line_items, order_id, customer_email, **kwargs):
        if self.stripe_error is not None:
            raise self.stripe_error
        session_id = f"cs_test_{len(self.stripe_calls) + 1}"
        self.stripe_calls.append({
            "id": session_id,
            "line_items": line_items,
            "order_id": order_id,
            "customer_email": customer_email,
        })
        return {"id": session_id, "url": f"https://checkout.stripe.test/{session_id}"}

    def install(self, monkeypatch):
        for name in ("get_product", "get_active_override", "get_warranty_policies"):
            monkeypatch.setattr(f"storefront.pricing.repository.{name}", getattr(self, name))
        for name in ("insert_order", "update_order_status", "get_order"):
            monkeypatch.setattr(f"storefront.orders.repository.{name}", getattr(self, name))
        for name in (
            "insert_payment_session",
            "get_payment_session_by_external_id",
            "update_payment_session_status",
            "insert_transaction",
            "record_event",
            "mark_event_processed",
        ):
            monkeypatch.setattr(f"storefront.payments.repository.{name}", getattr(self, name))
        monkeypatch.setattr("storefront.payments.stripe_client.create_hosted_session", self.create_hosted_session)
        return self


@pytest.fixture()
def db(monkeypatch) -> FakeDB:
    return FakeDB().install(monkeypatch)


def sign_stripe_payload(payload: str, secret: str = STRIPE_WEBHOOK_SECRET, timestamp: Optional[int] = None) -> str:
    """En-tête Stripe-Signature (schéma v1) pour un payload brut."""
    ts = int(timestamp if timestamp is not None else time.time())
    signed = f"{ts}.{payload}".encode("utf-8")
    digest = hmac.new(secret.encode("utf-8"), signed, hashlib.sha256).hexdigest()
    return f"t={ts},v1={digest}"

@pytest.fixture()
def post_webhook(client):
    def _post(event: Dict[str, Any], signature: Optional[str] = None):
        payload = json.dumps(event)
        return client.post(
            "/api/v1/payments/webhook",
            content=payload,
            headers={
                "content-type": "application/json",
                "stripe-signature": signature if signature is not None else sign_stripe_payload(payload),
            },
        )
    return _post

def checkout_completed_event(event_id: str, order_id: Optional[str], session_id: str,
                             amount_total: int = 1070000, payment_status: str = "paid") -> Dict[str, Any]:
    metadata = {"order_id": order_id} if order_id else {}
    return {
        "id": event_id,
        "object": "event",
        "type": "checkout.session.completed",
        "data": {"object": {
            "id": session_id,
            "object": "checkout.session",
            "payment_intent": "pi_test_1",
            "payment_status": payment_status,
            "amount_total": amount_total,
            "currency": "czk",
            "metadata": metadata,
        }},
    }

CUSTOMER = {
    "first_name": "Jana",
    "last_name": "Nováková",
    "email": "jana@example.com",
    "phone": "+420 777 123 456",
    "address": "Dlouhá 12",
    "city": "Praha",
    "postal_code": "11000",
    "country": "cz",
}

@pytest.fixture()
def customer() -> Dict[str, Any]:
    return dict(CUSTOMER)

@pytest.fixture()
def completed_event():
    return checkout_completed_event

@pytest.fixture()
def sign():
    return sign_stripe_payload
