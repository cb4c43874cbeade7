"""
ASGI entrypoint: expose `app` pour les process managers / déploiements.

- En production, un process manager (ex: gunicorn + uvicorn workers) importe `grocery.asgi:app`.
- Toute la configuration FastAPI est centralisée dans grocery.app_setup; ce fichier n'expose que l'instance.
"""

from grocery.app import app

if __name__ == "__main__":
    import os
    import uvicorn
    uvicorn.run(
        "grocery.asgi:app",
        host="0.0.0.0",
        port=int(os.getenv("PORT", "8000")),
        reload=True,
    )
