# grocery.config
from pathlib import Path
import os
from dotenv import load_dotenv

# Calculer le chemin du projet puis charger .env de manière explicite
BASE_DIR = Path(__file__).resolve().parent.parent
ENV_PATH = BASE_DIR / ".env"
load_dotenv(dotenv_path=ENV_PATH, override=True)

"""
Configuration centrale du service commandes/paiements.

- Charge le fichier .env à la racine du projet (BASE_DIR/.env)
- Normalise et expose les secrets/URLs (Supabase, Paystack), CORS/hosts
- Expose les politiques de réconciliation (expiration des commandes en attente, sweep, retries)
- Aucun composant ne lit ces constantes directement: build_services() les injecte
"""

def _clean_env(v: str) -> str:
    """
    Nettoie une valeur d'environnement:
    - supprime les espaces et guillemets (simples, doubles) et backticks
    - retourne toujours une chaîne (jamais None)
    """
    return (v or "").strip().strip("'").strip('"').strip("`")

def _int_env(name: str, default: int) -> int:
    raw = _clean_env(os.getenv(name) or "")
    try:
        return int(raw) if raw else default
    except ValueError:
        return default

def _float_env(name: str, default: float) -> float:
    raw = _clean_env(os.getenv(name) or "")
    try:
        return float(raw) if raw else default
    except ValueError:
        return default

# Supabase: URL et clés (anon pour l'auth, service-role pour les écritures)
SUPABASE_URL = _clean_env(os.getenv("SUPABASE_URL") or os.getenv("NEXT_PUBLIC_SUPABASE_URL") or "")
SUPABASE_ANON_KEY = _clean_env(os.getenv("SUPABASE_ANON_KEY") or os.getenv("SUPABASE_KEY") or "")
SUPABASE_SERVICE_KEY = _clean_env(os.getenv("SUPABASE_SERVICE_KEY") or os.getenv("SUPABASE_SERVICE_ROLE_KEY") or "")

if SUPABASE_URL and not SUPABASE_URL.startswith("http"):
    SUPABASE_URL = "https://" + SUPABASE_URL
if SUPABASE_URL.endswith("/"):
    SUPABASE_URL = SUPABASE_URL.rstrip("/")

# Paystack: clés, secret webhook (Paystack signe avec la clé secrète), réseau
PAYSTACK_SECRET_KEY = _clean_env(os.getenv("PAYSTACK_SECRET_KEY") or "")
PAYSTACK_PUBLIC_KEY = _clean_env(os.getenv("PAYSTACK_PUBLIC_KEY") or "")
PAYSTACK_WEBHOOK_SECRET = _clean_env(os.getenv("PAYSTACK_WEBHOOK_SECRET") or "") or PAYSTACK_SECRET_KEY
PAYSTACK_BASE_URL = (_clean_env(os.getenv("PAYSTACK_BASE_URL") or "") or "https://api.paystack.co").rstrip("/")
PAYSTACK_TIMEOUT_SECONDS = _float_env("PAYSTACK_TIMEOUT_SECONDS", 10.0)
PAYSTACK_CURRENCY = _clean_env(os.getenv("PAYSTACK_CURRENCY") or "") or "GHS"
PAYSTACK_CHANNELS = [
    c.strip() for c in os.getenv("PAYSTACK_CHANNELS", "card,bank,ussd,mobile_money").split(",") if c.strip()
]
PAYMENT_REFERENCE_PREFIX = _clean_env(os.getenv("PAYMENT_REFERENCE_PREFIX") or "") or "GROV"

# Front: base des URLs de retour après paiement
FRONTEND_URL = _clean_env(os.getenv("FRONTEND_URL") or "http://localhost:3000").rstrip("/")

# Politiques de réconciliation
PENDING_ORDER_TTL_MINUTES = _int_env("PENDING_ORDER_TTL_MINUTES", 30)
SWEEP_INTERVAL_SECONDS = _int_env("SWEEP_INTERVAL_SECONDS", 300)
SIDE_EFFECT_RETRY_GRACE_SECONDS = _int_env("SIDE_EFFECT_RETRY_GRACE_SECONDS", 120)

# Collaborateurs externes (rendu de facture, notification email)
INVOICE_RENDERER_URL = _clean_env(os.getenv("INVOICE_RENDERER_URL") or "")
NOTIFIER_URL = _clean_env(os.getenv("NOTIFIER_URL") or "")
COLLABORATOR_TIMEOUT_SECONDS = _float_env("COLLABORATOR_TIMEOUT_SECONDS", 15.0)

# Sécurité / CORS
COOKIE_SECURE = (os.getenv("COOKIE_SECURE", "false").lower() == "true")
CORS_ORIGINS = [o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()]
ALLOWED_HOSTS = [h.strip() for h in os.getenv("ALLOWED_HOSTS", "localhost,127.0.0.1").split(",") if h.strip()]
