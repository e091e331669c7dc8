import json
import pytest
from types import SimpleNamespace
import fakeredis

from storefront.cart import storage as storage_mod
from storefront.cart.storage import MemoryStorage, RedisStorage, StorageEvent


def test_memory_set_if_absent_is_exclusive():
    s = MemoryStorage()
    assert s.set_if_absent("lock", "a", ttl=30) is True
    assert s.set_if_absent("lock", "b", ttl=30) is False
    assert s.get("lock") == "a"
    s.delete("lock")
    assert s.set_if_absent("lock", "c") is True

def test_memory_ttl_expires(monkeypatch):
    now = {"t": 1000.0}
    monkeypatch.setattr(storage_mod, "time", SimpleNamespace(monotonic=lambda: now["t"]))
    s = MemoryStorage()
    s.set("k", "v", ttl=10)
    now["t"] += 9
    assert s.get("k") == "v"
    now["t"] += 2
    assert s.get("k") is None
    assert s.set_if_absent("k", "again", ttl=10) is True

def test_memory_pop_reads_once():
    s = MemoryStorage()
    s.set("slot", "snapshot")
    assert s.pop("slot") == "snapshot"
    assert s.pop("slot") is None
    assert s.get("slot") is None

def test_memory_listeners_skip_own_origin():
    s = MemoryStorage()
    seen_a, seen_b = [], []
    s.subscribe(seen_a.append, origin="a")
    unsubscribe_b = s.subscribe(seen_b.append, origin="b")
    s.set("cart", "[]", origin="a")
    assert seen_a == []
    assert seen_b == [StorageEvent("cart", "[]", "a")]
    unsubscribe_b()
    s.delete("cart", origin="a")
    assert len(seen_b) == 1


@pytest.fixture
def redis_client():
    return fakeredis.FakeRedis(decode_responses=True)

def test_redis_set_get_with_default_ttl(redis_client):
    s = RedisStorage(redis_client, ttl=3600)
    s.set("cart:1", "[]", origin="a")
    assert s.get("cart:1") == "[]"
    assert 0 < redis_client.ttl("cart:1") <= 3600

def test_redis_set_if_absent_and_pop(redis_client):
    s = RedisStorage(redis_client)
    assert s.set_if_absent("checkout-lock:1", "attempt", ttl=120) is True
    assert s.set_if_absent("checkout-lock:1", "other", ttl=120) is False
    assert redis_client.ttl("checkout-lock:1") > 0
    s.set("cod_order:1", '{"order_id": "o1"}')
    assert s.pop("cod_order:1") == '{"order_id": "o1"}'
    assert s.pop("cod_order:1") is None

def test_redis_delete_publishes_change(redis_client, monkeypatch):
    s = RedisStorage(redis_client)
    published = []
    monkeypatch.setattr(redis_client, "publish", lambda channel, message: published.append((channel, json.loads(message))))
    s.set("cart:1", "[]", origin="a")
    s.delete("cart:1", origin="a")
    assert [m["new_value"] for _, m in published] == ["[]", None]
    assert all(channel == RedisStorage.CHANNEL for channel, _ in published)

def test_redis_handle_message_dispatches_to_other_origins(redis_client):
    s = RedisStorage(redis_client)
    seen_a, seen_b = [], []
    s._listeners = [("a", seen_a.append), ("b", seen_b.append)]
    s.handle_message({"type": "message", "data": json.dumps({"key": "cart:1", "new_value": "[]", "origin": "a"})})
    assert seen_a == []
    assert seen_b == [StorageEvent("cart:1", "[]", "a")]

def test_redis_handle_message_ignores_malformed(redis_client):
    s = RedisStorage(redis_client)
    seen = []
    s._listeners = [(None, seen.append)]
    s.handle_message({"type": "message", "data": "not json"})
    s.handle_message({"type": "message", "data": json.dumps({"no_key": True})})
    assert seen == []
