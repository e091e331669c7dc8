from typing import Any, Dict
import logging

import storefront.infra.supabase_client as supabase_client

logger = logging.getLogger(__name__)

# module storefront.auth.service
def determine_role(metadata: Dict[str, Any] | None) -> str:
    role = str((metadata or {}).get("role", "")).lower()
    return "admin" if role == "admin" else "user"

def get_user_from_token(access_token: str) -> Dict[str, Any]:
    """Récupère et normalise l'utilisateur depuis supabase.auth.get_user(access_token)."""
    res = supabase_client.get_supabase().auth.get_user(access_token)
    user = getattr(res, "user", None) or {}
    if not isinstance(user, dict):
        user = {
            "id": getattr(user, "id", None),
            "email": getattr(user, "email", None),
            "app_metadata": getattr(user, "app_metadata", None),
        }
    if not user:
        return {}
    return {
        "id": user.get("id"),
        "email": user.get("email"),
        # le rôle vient d'app_metadata (non modifiable par l'utilisateur)
        "role": determine_role(user.get("app_metadata")),
    }
