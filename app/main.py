import sentry_sdk
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from app.config import get_settings
from app.errors import ConfigurationError, InvalidInputError, MalformedResponseError, UpstreamError
from app.logging_config import setup_logging
from app.middleware import RequesterMiddleware, RequestLoggingMiddleware, SecurityHeadersMiddleware
from app.ratelimit import limiter
from app.routes import classification, receipts

settings = get_settings()

# Sentry
if settings.sentry_dsn:
    sentry_sdk.init(
        dsn=settings.sentry_dsn,
        traces_sample_rate=0.1,
        send_default_pii=False,
    )

logger = setup_logging(settings.log_level)

app = FastAPI(title="MoneyFlow API", version="0.1.0")
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)


@app.exception_handler(ConfigurationError)
async def configuration_error_handler(request: Request, exc: ConfigurationError):
    logger.error(f"Service misconfigured: {exc}")
    return JSONResponse(status_code=503, content={"detail": "This feature is not available"})


@app.exception_handler(InvalidInputError)
async def invalid_input_handler(request: Request, exc: InvalidInputError):
    return JSONResponse(status_code=400, content={"detail": str(exc)})


@app.exception_handler(UpstreamError)
async def upstream_error_handler(request: Request, exc: UpstreamError):
    logger.error(
        f"Vendor call failed: {exc}",
        extra={"extra_data": {"provider": exc.provider, "vendor_status": exc.status_code}},
    )
    return JSONResponse(status_code=502, content={"detail": "Failed to extract data. Please try again."})


@app.exception_handler(MalformedResponseError)
async def malformed_response_handler(request: Request, exc: MalformedResponseError):
    logger.error(f"Vendor contract violation: {exc}", extra={"extra_data": {"provider": exc.provider}})
    return JSONResponse(status_code=500, content={"detail": "Unexpected response from the recognition service"})


# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["authorization", "x-client-info", "apikey", "content-type", "x-requester-id"],
)
app.add_middleware(SecurityHeadersMiddleware)
app.add_middleware(RequestLoggingMiddleware)
app.add_middleware(RequesterMiddleware)

# Routes
app.include_router(receipts.router, prefix="/api")
app.include_router(classification.router, prefix="/api")


@app.get("/health")
def health():
    return {"status": "ok"}


logger.info(
    "App configured",
    extra={"extra_data": {"ocr_provider": settings.ocr_provider, "sentry": bool(settings.sentry_dsn)}},
)
