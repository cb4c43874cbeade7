from supabase import create_client, Client


def create_service_client(url: str, service_key: str) -> Client:
    """
    Client Supabase service-role (bypass RLS), construit une seule fois au démarrage.
    Toutes les écritures commandes/paiements passent par ce client.
    """
    if not url or not service_key:
        raise RuntimeError("SUPABASE_URL/SUPABASE_SERVICE_KEY manquants")
    return create_client(url, service_key)


def create_anon_client(url: str, anon_key: str) -> Client:
    """Client 'anon' utilisé uniquement pour résoudre les access tokens (supabase.auth.get_user)."""
    if not url or not anon_key:
        raise RuntimeError("SUPABASE_URL/SUPABASE_ANON_KEY manquants")
    return create_client(url, anon_key)
