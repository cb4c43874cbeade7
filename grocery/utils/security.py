import logging
from typing import Any, Dict

from fastapi import Depends, HTTPException, Request

logger = logging.getLogger(__name__)

COOKIE_NAME = "sb_access"


def extract_token(request: Request) -> str | None:
    # Hybride: priorité au Bearer, fallback cookie
    auth_header = request.headers.get("Authorization", "")
    token = auth_header[7:].strip() if auth_header.startswith("Bearer ") else None
    return token or request.cookies.get(COOKIE_NAME)


def get_current_user(request: Request) -> Dict[str, Any]:
    """
    Utilisateur courant résolu depuis le token.
    - Pas de token -> 401 immédiat, sans toucher aux services
    - Token refusé par Supabase -> 401 (session expirée)
    """
    token = extract_token(request)
    if not token:
        raise HTTPException(status_code=401, detail="Not authenticated")

    services = getattr(request.app.state, "services", None)
    if services is None:
        raise HTTPException(status_code=503, detail="Service not configured")
    try:
        user = services.auth.get_user_from_token(token)
    except Exception:
        logger.info("auth.token rejected", exc_info=True)
        raise HTTPException(status_code=401, detail="Session expired, please sign in again")
    if not user.get("id"):
        raise HTTPException(status_code=401, detail="Session expired, please sign in again")
    return user


def require_user(user: Dict[str, Any] = Depends(get_current_user)) -> Dict[str, Any]:
    return user


def require_admin(user: Dict[str, Any] = Depends(get_current_user)) -> Dict[str, Any]:
    if user.get("role") != "admin":
        raise HTTPException(status_code=403, detail="Forbidden")
    return user
