"""
Gestionnaires d'exceptions, enregistrés une seule fois par la factory.
- HTTPException: JSON {"detail": ...} standard FastAPI
- Erreurs de validation du body: 400 (et non 422), comme les erreurs métier de validation
- OrderError: status_code porté par l'exception (400/401/404/409/502)
- Toute autre exception: loggée, 500 générique sans fuite de détails
"""
import logging

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from grocery.errors import OrderError

logger = logging.getLogger(__name__)


def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(HTTPException)
    async def http_exception_handler(request: Request, exc: HTTPException):
        return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail}, headers=getattr(exc, "headers", None))

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        errors = [
            {"loc": list(e.get("loc") or []), "msg": e.get("msg")}
            for e in exc.errors()
        ]
        return JSONResponse(status_code=400, content={"detail": "Invalid request", "errors": errors})

    @app.exception_handler(OrderError)
    async def order_error_handler(request: Request, exc: OrderError):
        if exc.status_code >= 500:
            logger.warning("%s %s -> %s (%s)", request.method, request.url.path, exc.status_code, exc.code)
        content = {"detail": exc.detail}
        if exc.code:
            content["code"] = exc.code
        return JSONResponse(status_code=exc.status_code, content=content)

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception):
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        return JSONResponse(status_code=500, content={"detail": "Internal server error"})
