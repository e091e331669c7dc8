import pytest
from unittest.mock import patch, MagicMock
from postgrest.exceptions import APIError

from storefront.errors import OrderPersistenceError
from storefront.payments import repository as payments_repo


def _unique_violation():
    return APIError({"message": "duplicate key value violates unique constraint", "code": "23505", "hint": None, "details": None})

def test_insert_payment_session_row():
    mock_client = MagicMock()
    mock_client.table.return_value.insert.return_value.execute.return_value = MagicMock(data=[{"id": 1}])
    with patch("storefront.infra.supabase_client.get_service_supabase", return_value=mock_client):
        row = payments_repo.insert_payment_session(
            order_id="o-1", stripe_session_id="cs_1", amount=10700, currency="CZK", user_id=None,
        )
    mock_client.table.assert_called_once_with("payment_sessions")
    mock_client.table.return_value.insert.assert_called_once_with({
        "order_id": "o-1",
        "stripe_session_id": "cs_1",
        "status": "pending",
        "amount": 10700,
        "currency": "czk",
        "user_id": None,
    })
    assert row == {"id": 1}

def test_insert_payment_session_failure_returns_none():
    with patch("storefront.infra.supabase_client.get_service_supabase", side_effect=Exception("down")):
        assert payments_repo.insert_payment_session(
            order_id="o-1", stripe_session_id="cs_1", amount=1, currency="czk",
        ) is None

def test_insert_transaction_duplicate_event_is_not_an_error():
    mock_client = MagicMock()
    mock_client.table.return_value.insert.return_value.execute.side_effect = _unique_violation()
    with patch("storefront.infra.supabase_client.get_service_supabase", return_value=mock_client):
        assert payments_repo.insert_transaction({"order_id": "o-1", "stripe_event_id": "evt_1"}) is False

def test_insert_transaction_other_error_raises():
    mock_client = MagicMock()
    mock_client.table.return_value.insert.return_value.execute.side_effect = Exception("timeout")
    with patch("storefront.infra.supabase_client.get_service_supabase", return_value=mock_client):
        with pytest.raises(OrderPersistenceError):
            payments_repo.insert_transaction({"order_id": "o-1", "stripe_event_id": "evt_1"})

def test_record_event_duplicate_returns_stored_row():
    mock_client = MagicMock()
    table = mock_client.table.return_value
    table.insert.return_value.execute.side_effect = _unique_violation()
    stored = {"stripe_event_id": "evt_1", "type": "checkout.session.completed", "processed_at": "2026-01-01T00:00:00Z"}
    table.select.return_value.eq.return_value.limit.return_value.execute.return_value = MagicMock(data=[stored])
    with patch("storefront.infra.supabase_client.get_service_supabase", return_value=mock_client):
        row = payments_repo.record_event("evt_1", "checkout.session.completed", {"id": "evt_1"})
    assert row["processed_at"] == "2026-01-01T00:00:00Z"

def test_record_event_failure_raises():
    with patch("storefront.infra.supabase_client.get_service_supabase", side_effect=Exception("down")):
        with pytest.raises(OrderPersistenceError):
            payments_repo.record_event("evt_1", "x", {})

def test_update_payment_session_status_is_conditional():
    mock_client = MagicMock()
    chain = mock_client.table.return_value.update.return_value.eq.return_value.in_.return_value
    chain.execute.return_value = MagicMock(data=[])
    with patch("storefront.infra.supabase_client.get_service_supabase", return_value=mock_client):
        changed = payments_repo.update_payment_session_status("cs_1", "completed", ["pending"])
    mock_client.table.return_value.update.return_value.eq.return_value.in_.assert_called_once_with("status", ["pending"])
    assert changed is False

def test_mark_event_processed_swallows_errors_after_logging(caplog):
    with patch("storefront.infra.supabase_client.get_service_supabase", side_effect=Exception("down")):
        payments_repo.mark_event_processed("evt_1")
    assert "mark_event_processed failed" in caplog.text
