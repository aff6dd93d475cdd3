import logging
import os
from contextlib import asynccontextmanager
from typing import Optional

import pydantic
from fastapi import Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pymongo.errors import DuplicateKeyError, PyMongoError

import auth_routes
import product_routes
from config import Settings, configure_logging
from database import connect, ensure_indexes
from errors import AppError, RateLimitExceededError
from ratelimit import RateLimitStore, build_rate_limiters, rate_limit
from security import TokenService, make_password_context

logger = logging.getLogger(__name__)


# --------------------- Error handlers ---------------------

def _field_errors(errors) -> list:
    return [
        {
            "field": ".".join(str(p) for p in err.get("loc", ()) if p not in ("body", "query", "path")),
            "message": err.get("msg", "Invalid value"),
        }
        for err in errors
    ]


async def app_error_handler(request: Request, exc: AppError):
    headers = None
    if isinstance(exc, RateLimitExceededError):
        headers = {"Retry-After": str(exc.retry_after)}
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict(), headers=headers)


async def request_validation_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(status_code=400, content={"detail": "Validation failed", "errors": _field_errors(exc.errors())})


async def model_validation_handler(request: Request, exc: pydantic.ValidationError):
    return JSONResponse(status_code=400, content={"detail": "Validation failed", "errors": _field_errors(exc.errors())})


async def duplicate_key_handler(request: Request, exc: DuplicateKeyError):
    key_value = (exc.details or {}).get("keyValue") or {}
    field = next(iter(key_value), "field")
    return JSONResponse(
        status_code=400,
        content={"detail": f"{field} already exists", "errors": [{"field": field, "message": "already exists"}]},
    )


async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content={"detail": "Internal server error"})


# --------------------- App ---------------------

def create_app(settings: Optional[Settings] = None, rate_limit_store: Optional[RateLimitStore] = None) -> FastAPI:
    settings = settings or Settings.from_env()
    configure_logging(settings.log_level)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if app.state.db is not None:
            try:
                ensure_indexes(app.state.db)
            except PyMongoError as exc:
                logger.warning("Unable to ensure indexes: %s", exc)
        yield

    app = FastAPI(title="Bull-Mart API", version="1.0.0", lifespan=lifespan)
    app.state.settings = settings
    app.state.db = connect(settings)
    app.state.pwd_context = make_password_context(settings.bcrypt_rounds)
    app.state.tokens = TokenService(settings)
    app.state.rate_limiters = build_rate_limiters(settings, rate_limit_store)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(AppError, app_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.add_exception_handler(pydantic.ValidationError, model_validation_handler)
    app.add_exception_handler(DuplicateKeyError, duplicate_key_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)

    api_limit = [Depends(rate_limit("api"))]
    app.include_router(auth_routes.router, dependencies=api_limit)
    app.include_router(product_routes.router, dependencies=api_limit)

    @app.get("/")
    def read_root():
        return {"message": "Bull-Mart API is running"}

    @app.get("/test")
    def test_database():
        response = {
            "backend": "✅ Running",
            "database": "❌ Not Available",
            "database_name": None,
            "connection_status": "Not Connected",
            "collections": [],
        }
        db = app.state.db
        if db is None:
            return response
        response["database_name"] = db.name
        try:
            response["collections"] = db.list_collection_names()[:10]
            response["database"] = "✅ Connected & Working"
            response["connection_status"] = "Connected"
        except PyMongoError as e:
            response["database"] = f"⚠️  Connected but Error: {str(e)[:50]}"
        return response

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port)
