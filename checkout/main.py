# checkout/main.py
import uvicorn
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from checkout.api.routers import carts, health, orders, webhooks
from checkout.data.database import Base, engine
from checkout.domain.errors import CheckoutError, PartiallyFailed
from checkout.utils.logging import get_logger

# import wszystkich modeli przed create_all
import checkout.data.models  # noqa: F401

logger = get_logger(__name__)


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"success": False, "message": message})


def register_error_handlers(app: FastAPI):
    @app.exception_handler(CheckoutError)
    def checkout_error_handler(request: Request, exc: CheckoutError):
        if exc.status_code >= 500 and not isinstance(exc, PartiallyFailed):
            logger.error(f"{request.method} {request.url.path}: {exc.__class__.__name__} {getattr(exc, 'detail', '')}")
        content = {"success": False, "message": exc.message}
        if isinstance(exc, PartiallyFailed):
            content["reference"] = exc.attempt_ref
        return JSONResponse(status_code=exc.status_code, content=content)

    @app.exception_handler(PermissionError)
    def permission_error_handler(request: Request, exc: PermissionError):
        return _error(403, str(exc))

    @app.exception_handler(ValueError)
    def value_error_handler(request: Request, exc: ValueError):
        return _error(400, str(exc))

    @app.exception_handler(StarletteHTTPException)
    def http_error_handler(request: Request, exc: StarletteHTTPException):
        return _error(exc.status_code, str(exc.detail))


def create_app() -> FastAPI:
    app = FastAPI(
        title="Checkout Service",
        version="1.0.0",
    )

    register_error_handlers(app)

    app.include_router(health.router)
    app.include_router(carts.router)
    app.include_router(orders.router)
    app.include_router(webhooks.router)

    return app


logger.info(f"Models registered in Base.metadata: {list(Base.metadata.tables.keys())}")
try:
    Base.metadata.create_all(bind=engine)
except Exception as e:
    logger.error(f"Failed to create tables: {e}")
    raise

app = create_app()

if __name__ == "__main__":
    uvicorn.run(app, host="0.0.0.0", port=8000)
