import httpx
from fastapi import APIRouter, Depends, Request

from app.classification import classify_expenses
from app.config import Settings, get_settings
from app.deps import get_http_transport, require_requester
from app.errors import ConfigurationError
from app.ratelimit import limiter
from app.schemas import ClassificationIn

router = APIRouter()


@router.post("/expenses/classify")
@limiter.limit("30/minute")
async def classify(
    request: Request,
    data: ClassificationIn,
    requester_id: str = Depends(require_requester),
    settings: Settings = Depends(get_settings),
    transport: httpx.AsyncBaseTransport | None = Depends(get_http_transport),
):
    if not settings.openrouter_api_key:
        raise ConfigurationError("OPENROUTER_API_KEY not configured")

    return await classify_expenses(
        data,
        settings.openrouter_api_key,
        settings.app_url or "",
        requester_id=requester_id,
        timeout=settings.ocr_timeout,
        transport=transport,
    )
