from fastapi import FastAPI, Request
from fastapi.concurrency import asynccontextmanager
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from starlette.exceptions import HTTPException as StarletteHTTPException
from api import router as api_router
from api.dependencies import limiter
from api.health import router as health_router
from api.services.errors import ServiceException
from api.services.security import require_secret
from db.engine import SessionLocal
from api.services.plans import PLANS
from db.repositories.settings_repository import SQUARE_REQUIRED_SETTINGS, SettingsRepository
import logging
import os


# Configure logging
logging.basicConfig(
    level=logging.INFO,
    filename=os.getenv("LOG_FILE", "log.txt"),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


def ensure_jwt_secret():
    """Fail fast unless a usable JWT_SECRET is configured (env or settings table)."""
    db = SessionLocal()
    try:
        jwt_secret = SettingsRepository(db).get_setting("JWT_SECRET")
    finally:
        db.close()

    try:
        require_secret(jwt_secret)
    except RuntimeError as e:
        logger.critical(f"Refusing to start: {e}")
        raise
    logger.info("JWT_SECRET loaded")
    return jwt_secret


def check_billing_settings():
    """Warn about billing settings that will make checkout fail. Returns the missing keys."""
    db = SessionLocal()
    try:
        settings_repo = SettingsRepository(db)
        missing = settings_repo.missing_settings(SQUARE_REQUIRED_SETTINGS)
        missing += settings_repo.missing_settings(plan.setting_key for plan in PLANS.values())
    finally:
        db.close()

    for key in missing:
        logger.warning(f"{key} not set; subscription requests that need it will fail")
    return missing


@asynccontextmanager
async def lifespan(app: FastAPI):
    ensure_jwt_secret()
    check_billing_settings()
    yield


app = FastAPI(title="Schengen Calc API", version="1.0.0", lifespan=lifespan)

app.state.limiter = limiter
app.add_middleware(SlowAPIMiddleware)

# CORS Configuration - Allow all by default, customize for production
allowed_origins = os.getenv("CORS_ORIGINS", "*").split(",")
if allowed_origins == ["*"]:
    logger.warning(
        "CORS is set to allow all origins (*). "
        "Set CORS_ORIGINS environment variable to restrict origins in production."
    )

app.add_middleware(
    CORSMiddleware,
    allow_origins=allowed_origins,
    allow_credentials=allowed_origins != ["*"],
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization", "X-Session-Token", "x-square-signature",
                   "x-square-hmacsha256-signature"],
    max_age=600,
)


# Security headers middleware
@app.middleware("http")
async def add_security_headers(request: Request, call_next):
    response = await call_next(request)
    response.headers["X-Content-Type-Options"] = "nosniff"
    response.headers["X-Frame-Options"] = "DENY"
    response.headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains"
    return response


app.include_router(health_router)
app.include_router(api_router, prefix="/api")


@app.exception_handler(ServiceException)
async def service_exception_handler(request: Request, exc: ServiceException):
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    if errors:
        location = ".".join(str(part) for part in errors[0].get("loc", ())[1:])
        message = f"Invalid request: {location} {errors[0].get('msg', '')}".strip()
    else:
        message = "Invalid request"
    return JSONResponse(status_code=400, content={"success": False, "error": message})


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded):
    return JSONResponse(
        status_code=429,
        content={"success": False, "error": f"Rate limit exceeded: {exc.detail}"},
    )


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse(
        status_code=exc.status_code,
        content={"success": False, "error": str(exc.detail)},
    )


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.exception(f"Unhandled error on {request.method} {request.url.path}")
    return JSONResponse(
        status_code=500,
        content={"success": False, "error": "Internal server error"},
    )


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("main:app", host="0.0.0.0", port=int(os.getenv("PORT", "8000")))
