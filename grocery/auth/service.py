"""Résolution d'un access token Supabase en utilisateur applicatif.
- Délègue à supabase.auth.get_user(access_token) (client anon, construit au démarrage)
- Normalise la réponse en {id, email, full_name, role, token}
"""
from typing import Any, Dict


def determine_role(app_metadata: Dict[str, Any] | None, user_metadata: Dict[str, Any] | None = None) -> str:
    """Rôle 'admin' si posé dans app_metadata (prioritaire) ou user_metadata, sinon 'user'."""
    for metadata in (app_metadata, user_metadata):
        if str((metadata or {}).get("role", "")).lower() == "admin":
            return "admin"
    return "user"


def _as_dict(user: Any) -> Dict[str, Any]:
    if isinstance(user, dict):
        return user
    return {
        "id": getattr(user, "id", None),
        "email": getattr(user, "email", None),
        "app_metadata": getattr(user, "app_metadata", None),
        "user_metadata": getattr(user, "user_metadata", None),
    }


# module grocery.auth.service
class AuthService:
    def __init__(self, client):
        self.client = client

    def get_user_from_token(self, access_token: str) -> Dict[str, Any]:
        res = self.client.auth.get_user(access_token)
        raw = _as_dict(getattr(res, "user", None) or {})
        user_metadata = raw.get("user_metadata") or {}
        return {
            "id": raw.get("id"),
            "email": raw.get("email"),
            "full_name": user_metadata.get("full_name"),
            "role": determine_role(raw.get("app_metadata"), user_metadata),
            "token": access_token,
        }
