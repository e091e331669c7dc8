from fastapi import Request, HTTPException, Depends
from typing import Optional, Dict, Any
import logging

logger = logging.getLogger(__name__)

COOKIE_NAME = "sb_access"

def _token_from_request(request: Request) -> Optional[str]:
    # Hybride: priorité au Bearer, fallback cookie
    auth_header = request.headers.get("Authorization", "")
    if auth_header.startswith("Bearer "):
        token = auth_header[7:].strip()
        if token:
            return token
    return request.cookies.get(COOKIE_NAME)

def get_current_user(request: Request) -> Dict[str, Any]:
    token = _token_from_request(request)
    if not token:
        raise HTTPException(status_code=401, detail="Non authentifié")
    try:
        from storefront.auth.service import get_user_from_token
        user = get_user_from_token(token)
    except Exception:
        raise HTTPException(status_code=401, detail="Session expirée, veuillez vous connecter")
    if not user.get("id"):
        raise HTTPException(status_code=401, detail="Session expirée, veuillez vous connecter")
    return user

def get_current_user_id(request: Request) -> Optional[str]:
    """
    Identité optionnelle: id de l'utilisateur connecté, sinon None (commande invité).
    Un jeton invalide est traité comme un invité, jamais comme une erreur.
    """
    if not _token_from_request(request):
        return None
    try:
        return get_current_user(request).get("id")
    except HTTPException:
        logger.info("utils.security invalid session token, continuing as guest")
        return None

def require_admin(user: Dict[str, Any] = Depends(get_current_user)) -> Dict[str, Any]:
    if user.get("role") != "admin":
        raise HTTPException(status_code=403, detail="Accès interdit")
    return user
