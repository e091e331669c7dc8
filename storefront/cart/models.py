# module storefront.cart.models
"""
Lignes de panier (sérialisables, validées à la réhydratation).

- La variante est copiée en entier (pas seulement son id) pour survivre aux changements du catalogue.
- La garantie est un instantané de valeur: additional_cost ne suit pas le prix de la politique
  tant que l'utilisateur ne re-sélectionne pas.
"""
from typing import Any, Dict, List, Literal, Optional
from pydantic import BaseModel, ConfigDict, Field


class ProductVariant(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str = Field(min_length=1)
    length: Optional[float] = None
    price: float = Field(ge=0, allow_inf_nan=False)
    stock_status: str = "in_stock"
    stripe_price_id: Optional[str] = None
    # prix catalogue auquel correspond stripe_price_id (price peut venir d'un prix administrateur)
    catalog_price: Optional[float] = Field(default=None, ge=0, allow_inf_nan=False)


class WarrantySelection(BaseModel):
    model_config = ConfigDict(extra="ignore")

    policy_id: str
    months: int = Field(ge=0)
    additional_cost: float = Field(default=0, ge=0, allow_inf_nan=False)
    stripe_price_id: Optional[str] = None
    description: Optional[str] = None
    terms: Optional[str] = None
    estimated: bool = False


class CartItem(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: int
    name: str = ""
    image: Optional[str] = None
    stripe_product_id: Optional[str] = None
    variant: ProductVariant
    quantity: int = Field(ge=1)
    warranty: Optional[WarrantySelection] = None
    warranty_policies: List[Dict[str, Any]] = Field(default_factory=list)
    adapter: bool = False
    plug_type: Optional[Literal["EU", "UK"]] = None

    def to_storage(self) -> Dict[str, Any]:
        # exclude_none: "pas de garantie" = clé absente, pas une garantie à 0
        return self.model_dump(mode="json", exclude_none=True)


def warranty_from_quote(quote: Dict[str, Any]) -> WarrantySelection:
    return WarrantySelection(
        policy_id=quote["policy_id"],
        months=quote.get("months") or 0,
        additional_cost=quote.get("additional_cost") or 0,
        stripe_price_id=quote.get("stripe_price_id"),
        description=quote.get("description"),
        terms=quote.get("terms"),
        estimated=bool(quote.get("estimated")),
    )
