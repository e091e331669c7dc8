"""
Panier: collection de lignes persistée, une ligne par id produit.

- Chaque mutation passe par _dispatch: lecture-modification-écriture de la liste complète,
  puis sérialisation complète vers le stockage; un échec d'écriture lève CartPersistenceError
  et laisse l'état en mémoire inchangé.
- Réhydratation défensive: JSON invalide, non-liste ou ligne invalide => panier vide.
- Synchronisation inter-contextes: dernier écrivain gagne, à la granularité de la liste entière;
  une écriture étrangère corrompue est ignorée (jamais fusionnée).
- Les totaux sont recalculés à chaque appel depuis l'état courant (aucun cache).
"""
from typing import Any, Callable, Dict, Iterable, List, Optional
from uuid import uuid4
import json
import logging

from pydantic import ValidationError

from storefront.config import ACCESSORY_SURCHARGE
from storefront.errors import CartPersistenceError
from storefront.pricing.resolver import compute_warranty_cost, to_number, as_amount, warranty_stripe_price
from .models import CartItem, ProductVariant, WarrantySelection
from .storage import StorageEvent

logger = logging.getLogger(__name__)

# module storefront.cart.store
def decode_cart(raw: Optional[str]) -> Optional[List[CartItem]]:
    """Décode une charge stockée; None si elle n'est pas digne de confiance."""
    if raw is None:
        return []
    try:
        parsed = json.loads(raw)
    except (TypeError, ValueError):
        return None
    if not isinstance(parsed, list):
        return None
    try:
        return [CartItem.model_validate(entry) for entry in parsed]
    except ValidationError:
        return None

def encode_cart(items: Iterable[CartItem]) -> str:
    return json.dumps([item.to_storage() for item in items])

def line_total(item: Dict[str, Any], accessory_surcharge: float = ACCESSORY_SURCHARGE) -> Optional[float]:
    """(prix variante + surcoût garantie) * quantité, + supplément adaptateur par unité. None si non numérique."""
    price = to_number((item.get("variant") or {}).get("price"))
    quantity = to_number(item.get("quantity"))
    warranty_cost = to_number((item.get("warranty") or {}).get("additional_cost", 0))
    if price is None or quantity is None or warranty_cost is None:
        return None
    total = (price + warranty_cost) * quantity
    if item.get("adapter"):
        total += accessory_surcharge * quantity
    return to_number(total)

def compute_totals(items: Iterable[Dict[str, Any]], accessory_surcharge: float = ACCESSORY_SURCHARGE) -> Dict[str, Any]:
    """Fonction pure sur des lignes sérialisées; total None si une ligne est non numérique."""
    item_count = 0
    total: Optional[float] = 0
    for item in items:
        item_count += int(to_number(item.get("quantity")) or 0)
        amount = line_total(item, accessory_surcharge)
        if amount is None or total is None:
            total = None
            continue
        total += amount
    return {"item_count": item_count, "total": as_amount(total) if total is not None else None}


class CartStore:
    """
    Un panier par clé de stockage. Cycle de vie explicite:
      store = CartStore.open(storage, "cart:<id>", subscribe=True)
      ...
      store.close()
    """

    def __init__(self, storage, key: str = "cart", *, origin: Optional[str] = None,
                 accessory_surcharge: float = ACCESSORY_SURCHARGE):
        self.storage = storage
        self.key = key
        self.origin = origin or uuid4().hex
        self.accessory_surcharge = accessory_surcharge
        self._items: List[CartItem] = []
        self._unsubscribe: Optional[Callable[[], None]] = None

    @classmethod
    def open(cls, storage, key: str = "cart", subscribe: bool = False, **kwargs) -> "CartStore":
        store = cls(storage, key, **kwargs)
        store.load()
        if subscribe:
            store._unsubscribe = storage.subscribe(store.on_storage_event, origin=store.origin)
        return store

    def close(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()
        return False

    # --- état ---
    @property
    def items(self) -> List[CartItem]:
        return [item.model_copy(deep=True) for item in self._items]

    def snapshot(self) -> List[Dict[str, Any]]:
        """Copie profonde sérialisable (valeurs simples uniquement)."""
        return [item.to_storage() for item in self._items]

    def get(self, product_id: int) -> Optional[CartItem]:
        for item in self._items:
            if item.id == product_id:
                return item.model_copy(deep=True)
        return None

    def has_item(self, product_id: int) -> bool:
        return any(item.id == product_id for item in self._items)

    def totals(self) -> Dict[str, Any]:
        return compute_totals(self.snapshot(), self.accessory_surcharge)

    # --- persistance ---
    def load(self) -> None:
        decoded = decode_cart(self.storage.get(self.key))
        if decoded is None:
            logger.error("cart.store corrupt payload for key=%s, starting with an empty cart", self.key)
            decoded = []
        self._items = decoded

    def _persist(self, items: List[CartItem]) -> None:
        try:
            self.storage.set(self.key, encode_cart(items), origin=self.origin)
        except Exception as e:
            logger.exception("cart.store failed to persist key=%s", self.key)
            raise CartPersistenceError(f"Panier non enregistré: {e}")

    def _dispatch(self, reducer: Callable[[List[CartItem]], List[CartItem]]) -> None:
        # l'état en mémoire n'avance qu'une fois l'écriture acceptée par le stockage
        items = reducer([item.model_copy(deep=True) for item in self._items])
        self._persist(items)
        self._items = items

    def on_storage_event(self, event: StorageEvent) -> None:
        if event.key != self.key or event.origin == self.origin or event.new_value is None:
            return
        decoded = decode_cart(event.new_value)
        if decoded is None:
            logger.warning("cart.store ignoring untrusted foreign write for key=%s", self.key)
            return
        self._items = decoded

    # --- mutations ---
    def add(self, product: Dict[str, Any], variant: ProductVariant, warranty: Optional[WarrantySelection] = None,
            warranty_policies: Optional[List[Dict[str, Any]]] = None) -> None:
        """Ajoute un produit; s'il est déjà présent, incrémente la quantité (variante conservée)."""
        product_id = int(product["id"])

        def reducer(items: List[CartItem]) -> List[CartItem]:
            for item in items:
                if item.id == product_id:
                    item.quantity += 1
                    return items
            items.append(CartItem(
                id=product_id,
                name=product.get("name") or "",
                image=product.get("image"),
                stripe_product_id=product.get("stripe_product_id") or product.get("stripeProductId"),
                variant=variant,
                quantity=1,
                warranty=warranty,
                warranty_policies=list(warranty_policies or []),
            ))
            return items
        self._dispatch(reducer)

    def remove(self, product_id: int) -> None:
        self._dispatch(lambda items: [item for item in items if item.id != product_id])

    def set_quantity(self, product_id: int, quantity: int) -> None:
        if quantity < 0:
            raise ValueError("quantity must be >= 0")
        if quantity == 0:
            return self.remove(product_id)

        def reducer(items: List[CartItem]) -> List[CartItem]:
            for item in items:
                if item.id == product_id:
                    item.quantity = quantity
            return items
        self._dispatch(reducer)

    def set_variant(self, product_id: int, variant: ProductVariant,
                    warranty_policies: Optional[List[Dict[str, Any]]] = None) -> None:
        """Change la variante en place; la garantie déjà choisie garde son coût instantané."""
        def reducer(items: List[CartItem]) -> List[CartItem]:
            for item in items:
                if item.id == product_id:
                    item.variant = variant
                    if warranty_policies is not None:
                        item.warranty_policies = list(warranty_policies)
            return items
        self._dispatch(reducer)

    def set_warranty(self, product_id: int, policy_id: Optional[str]) -> bool:
        """
        policy_id None: retire complètement la garantie.
        Sinon: recalcule l'instantané depuis la politique embarquée dans la ligne.
        Retourne False si la politique est inconnue de la ligne (état inchangé).
        """
        target = self.get(product_id)
        if target is None:
            return False
        if policy_id is None:
            selection = None
        else:
            policy = next((p for p in target.warranty_policies if str(p.get("id")) == str(policy_id)), None)
            if policy is None:
                logger.warning("cart.store unknown warranty policy product_id=%s policy_id=%s", product_id, policy_id)
                return False
            selection = WarrantySelection(
                policy_id=str(policy_id),
                months=policy.get("months") or 0,
                additional_cost=compute_warranty_cost(policy, target.variant.price),
                stripe_price_id=warranty_stripe_price(policy),
                description=policy.get("description"),
                terms=policy.get("terms"),
                estimated=bool(policy.get("estimated")),
            )

        def reducer(items: List[CartItem]) -> List[CartItem]:
            for item in items:
                if item.id == product_id:
                    item.warranty = selection
            return items
        self._dispatch(reducer)
        return True

    def set_accessory(self, product_id: int, adapter: bool) -> None:
        def reducer(items: List[CartItem]) -> List[CartItem]:
            for item in items:
                if item.id == product_id:
                    item.adapter = bool(adapter)
            return items
        self._dispatch(reducer)

    def set_plug_type(self, product_id: int, plug_type: Optional[str]) -> None:
        def reducer(items: List[CartItem]) -> List[CartItem]:
            for item in items:
                if item.id == product_id:
                    item.plug_type = plug_type
            return items
        self._dispatch(reducer)

    def clear(self) -> None:
        self._dispatch(lambda items: [])
