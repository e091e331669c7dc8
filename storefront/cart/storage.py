"""
Stockage durable clé/valeur du panier + flux de changements inter-contextes.

- MemoryStorage: un dict partagé par tous les contextes du process (équivalent d'un localStorage
  partagé par les onglets); notifie les autres contextes à chaque écriture.
- RedisStorage: chaînes Redis avec TTL; les changements sont publiés sur un canal pub/sub pour
  que les contextes d'autres workers reçoivent l'événement.

Un contexte ne reçoit jamais ses propres écritures (origin identique), comme l'événement
'storage' d'un navigateur.
"""
from typing import Callable, Dict, List, NamedTuple, Optional, Tuple
import json
import logging
import threading
import time

logger = logging.getLogger(__name__)


class StorageEvent(NamedTuple):
    key: str
    new_value: Optional[str]
    origin: Optional[str]


Listener = Callable[[StorageEvent], None]


class MemoryStorage:
    def __init__(self):
        self._data: Dict[str, Tuple[str, Optional[float]]] = {}
        self._listeners: List[Tuple[Optional[str], Listener]] = []
        self._lock = threading.Lock()

    def _alive(self, key: str) -> Optional[str]:
        entry = self._data.get(key)
        if entry is None:
            return None
        value, expires_at = entry
        if expires_at is not None and expires_at <= time.monotonic():
            self._data.pop(key, None)
            return None
        return value

    def get(self, key: str) -> Optional[str]:
        with self._lock:
            return self._alive(key)

    def set(self, key: str, value: str, origin: Optional[str] = None, ttl: Optional[int] = None) -> None:
        with self._lock:
            self._data[key] = (value, time.monotonic() + ttl if ttl else None)
        self._notify(StorageEvent(key, value, origin))

    def set_if_absent(self, key: str, value: str, ttl: Optional[int] = None) -> bool:
        """Écriture atomique 'si absent' (verrous de soumission). Ne notifie pas."""
        with self._lock:
            if self._alive(key) is not None:
                return False
            self._data[key] = (value, time.monotonic() + ttl if ttl else None)
            return True

    def pop(self, key: str) -> Optional[str]:
        """Lecture puis suppression atomiques (emplacements à lecture unique). Ne notifie pas."""
        with self._lock:
            value = self._alive(key)
            self._data.pop(key, None)
            return value

    def delete(self, key: str, origin: Optional[str] = None) -> None:
        with self._lock:
            existed = self._data.pop(key, None) is not None
        if existed:
            self._notify(StorageEvent(key, None, origin))

    def subscribe(self, listener: Listener, origin: Optional[str] = None) -> Callable[[], None]:
        entry = (origin, listener)
        with self._lock:
            self._listeners.append(entry)

        def _unsubscribe():
            with self._lock:
                if entry in self._listeners:
                    self._listeners.remove(entry)
        return _unsubscribe

    def _notify(self, event: StorageEvent) -> None:
        with self._lock:
            listeners = list(self._listeners)
        for origin, listener in listeners:
            if origin is not None and origin == event.origin:
                continue
            listener(event)

    def close(self) -> None:
        with self._lock:
            self._listeners.clear()


class RedisStorage:
    CHANNEL = "storefront:storage"

    def __init__(self, client, ttl: Optional[int] = None, channel: Optional[str] = None):
        self.client = client
        self.ttl = ttl
        self.channel = channel or self.CHANNEL
        self._listeners: List[Tuple[Optional[str], Listener]] = []
        self._lock = threading.Lock()
        self._pubsub = None
        self._thread = None

    def get(self, key: str) -> Optional[str]:
        value = self.client.get(key)
        if isinstance(value, bytes):
            value = value.decode("utf-8")
        return value

    def set(self, key: str, value: str, origin: Optional[str] = None, ttl: Optional[int] = None) -> None:
        self.client.set(key, value, ex=ttl or self.ttl)
        self._publish(StorageEvent(key, value, origin))

    def set_if_absent(self, key: str, value: str, ttl: Optional[int] = None) -> bool:
        return bool(self.client.set(key, value, nx=True, ex=ttl or self.ttl))

    def pop(self, key: str) -> Optional[str]:
        value = self.client.getdel(key)
        if isinstance(value, bytes):
            value = value.decode("utf-8")
        return value

    def delete(self, key: str, origin: Optional[str] = None) -> None:
        if self.client.delete(key):
            self._publish(StorageEvent(key, None, origin))

    def _publish(self, event: StorageEvent) -> None:
        try:
            self.client.publish(self.channel, json.dumps(event._asdict()))
        except Exception:
            logger.exception("cart.storage publish failed key=%s", event.key)

    def subscribe(self, listener: Listener, origin: Optional[str] = None) -> Callable[[], None]:
        entry = (origin, listener)
        with self._lock:
            self._listeners.append(entry)
            if self._thread is None:
                self._pubsub = self.client.pubsub(ignore_subscribe_messages=True)
                self._pubsub.subscribe(**{self.channel: self.handle_message})
                self._thread = self._pubsub.run_in_thread(sleep_time=0.1, daemon=True)

        def _unsubscribe():
            with self._lock:
                if entry in self._listeners:
                    self._listeners.remove(entry)
        return _unsubscribe

    def handle_message(self, message) -> None:
        """Callback pub/sub: décode l'événement et le diffuse aux contextes abonnés (hors émetteur)."""
        data = (message or {}).get("data")
        if isinstance(data, bytes):
            data = data.decode("utf-8")
        try:
            payload = json.loads(data)
            event = StorageEvent(str(payload["key"]), payload.get("new_value"), payload.get("origin"))
        except (TypeError, ValueError, KeyError):
            logger.warning("cart.storage ignoring malformed change message")
            return
        with self._lock:
            listeners = list(self._listeners)
        for origin, listener in listeners:
            if origin is not None and origin == event.origin:
                continue
            listener(event)

    def close(self) -> None:
        with self._lock:
            self._listeners.clear()
            if self._thread is not None:
                self._thread.stop()
                self._thread = None
            if self._pubsub is not None:
                self._pubsub.close()
                self._pubsub = None
