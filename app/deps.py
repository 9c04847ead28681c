import logging

import httpx
from fastapi import Depends, HTTPException, Request

from app.config import Settings, get_settings
from app.receipt.base import ReceiptProvider
from app.receipt.factory import provider_from_settings

logger = logging.getLogger("moneyflow")


def get_requester_id(request: Request) -> str | None:
    """Caller id forwarded by the authenticating gateway, if any."""
    return getattr(request.state, "requester_id", None)


def require_requester(request: Request) -> str:
    requester_id = get_requester_id(request)
    if not requester_id:
        logger.warning(
            "Request without caller identity",
            extra={"extra_data": {"path": request.url.path}},
        )
        raise HTTPException(status_code=401, detail="Missing authorization")
    return requester_id


def get_http_transport() -> httpx.AsyncBaseTransport | None:
    """Transport for outbound vendor calls; None means the real network."""
    return None


def get_receipt_provider(
    settings: Settings = Depends(get_settings),
    transport: httpx.AsyncBaseTransport | None = Depends(get_http_transport),
) -> ReceiptProvider:
    return provider_from_settings(settings, transport=transport)
