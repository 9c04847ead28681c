import logging

from fastapi import APIRouter, Depends, Request

from app.config import Settings, get_settings
from app.deps import get_receipt_provider, require_requester
from app.errors import InvalidInputError
from app.ratelimit import limiter
from app.receipt.base import OcrRequest, OcrResult, ReceiptProvider
from app.receipt.factory import available_providers
from app.schemas import OcrIn

logger = logging.getLogger("moneyflow")
router = APIRouter()

MAX_IMAGE_CHARS = 14 * 1024 * 1024  # ~10 MB once base64-decoded


@router.post("/receipts/ocr", response_model=OcrResult)
@limiter.limit("20/minute")
async def scan_receipt(
    request: Request,
    data: OcrIn,
    requester_id: str = Depends(require_requester),
    provider: ReceiptProvider = Depends(get_receipt_provider),
):
    if not isinstance(data.image, str) or not data.image.strip():
        raise InvalidInputError("Invalid request: image (base64) required for OCR")
    if len(data.image) > MAX_IMAGE_CHARS:
        raise InvalidInputError("Image too large. Maximum size is 10 MB.")

    ocr_request = OcrRequest(
        image=data.image,
        requester_id=requester_id,
        options=data.options.to_options(),
    )
    result = await provider.process_receipt(ocr_request)

    logger.info(
        "Receipt scanned",
        extra={"extra_data": {
            "requester_id": requester_id,
            "provider": provider.provider_name(),
            "items_count": len(result.items),
        }},
    )
    return result


@router.get("/receipts/providers")
def list_providers(settings: Settings = Depends(get_settings)):
    return {
        "providers": available_providers(),
        "active": settings.ocr_provider.strip().lower(),
    }
