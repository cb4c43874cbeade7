"""
Factory d'application pour les entrypoints (grocery.app, grocery.asgi).
Ordonne les étapes d'initialisation de manière lisible et testable.
"""
from fastapi import FastAPI

from .exceptions import register_exception_handlers
from .lifespan import lifespan
from .middlewares import register_basic_middlewares, register_security_middleware
from .routers import register_routers


def create_app(services=None) -> FastAPI:
    """
    Construit l'app FastAPI avec le lifespan et enregistre middlewares, gestionnaires d'exceptions et routers.
    services: graphe de composants déjà construit (tests); sinon build_services() au démarrage.
    """
    app = FastAPI(title="Grocery Orders API", lifespan=lifespan)
    app.state.services = services
    register_basic_middlewares(app)
    register_security_middleware(app)
    register_exception_handlers(app)
    register_routers(app)
    return app
