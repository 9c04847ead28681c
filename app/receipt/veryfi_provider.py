import logging
from datetime import date
from typing import Any

from pydantic import BaseModel, ValidationError

from app.errors import ConfigurationError, MalformedResponseError, UpstreamError
from app.http_client import post_json
from app.receipt.base import (
    BaseReceiptProvider,
    LineItem,
    OcrRequest,
    OcrResult,
    ReceiptImage,
    to_amount,
    today_iso,
)

VERYFI_API_ENDPOINT = "https://api.veryfi.com/api/v8/partner/documents"
VERYFI_TIMEOUT = 30.0

DEFAULT_VERYFI_OPTIONS = {
    "boost_mode": True,
    "confidence_details": True,
    "parse_address": True,
    "categories": [],
}


# --- Veryfi wire types (only the fields we read; the API returns many more) ---
# Summary fields are only logged, so their shape is not enforced.

class VeryfiLineItem(BaseModel):
    description: str | None = None
    full_description: str | None = None
    total: float | None = None
    quantity: float | None = None
    unit_of_measure: str | None = None
    price: float | None = None


class VeryfiResponse(BaseModel):
    line_items: list[Any] | None = None
    vendor: Any = None
    total: Any = None
    date: Any = None
    currency_code: Any = None
    confidence: Any = None

    @property
    def vendor_name(self) -> str | None:
        name = self.vendor.get("name") if isinstance(self.vendor, dict) else None
        return name if isinstance(name, str) else None


class VeryfiError(BaseModel):
    status: str | None = None
    error: str | None = None
    message: str | None = None


def parse_vendor_date(value: object) -> str | None:
    """Veryfi dates look like "2024-03-01 12:30:00"; keep the calendar date."""
    if not isinstance(value, str) or not value:
        return None
    try:
        return date.fromisoformat(value.strip()[:10]).isoformat()
    except ValueError:
        return None


class VeryfiOcrProvider(BaseReceiptProvider):
    """Receipt extraction with Veryfi, a vendor that returns line items natively."""

    name = "Veryfi"
    default_timeout = VERYFI_TIMEOUT

    def validate_config(self) -> None:
        super().validate_config()
        if not self.config.client_id:
            raise ConfigurationError("Veryfi: client id is required")
        if not self.config.client_name:
            raise ConfigurationError("Veryfi: client name (username) is required")

    def _headers(self) -> dict[str, str]:
        return {
            "Content-Type": "application/json",
            "Accept": "application/json",
            "CLIENT-ID": self.config.client_id,
            "Authorization": f"apikey {self.config.client_name}:{self.config.api_key}",
        }

    async def extract(self, request: OcrRequest, image: ReceiptImage) -> OcrResult:
        payload = {"file_data": image.data, **DEFAULT_VERYFI_OPTIONS}

        response = await post_json(
            self.name,
            VERYFI_API_ENDPOINT,
            payload,
            self._headers(),
            self.timeout,
            transport=self._transport,
        )

        if not response.is_success:
            raise UpstreamError(self.name, response.status_code, self._error_message(response))

        try:
            veryfi_data = VeryfiResponse.model_validate(response.json())
        except (ValueError, ValidationError) as e:
            raise MalformedResponseError(self.name, "response body does not match the document schema") from e

        result = self.map_response(veryfi_data, request)
        self.log(
            "Receipt processed successfully",
            vendor=veryfi_data.vendor_name,
            total=veryfi_data.total,
            confidence=veryfi_data.confidence,
            items_count=len(result.items),
        )
        return result

    def _error_message(self, response) -> str:
        try:
            error = VeryfiError.model_validate(response.json())
        except (ValueError, ValidationError):
            return response.reason_phrase or f"HTTP {response.status_code}"
        return error.error or error.message or response.reason_phrase or f"HTTP {response.status_code}"

    def map_response(self, veryfi_data: VeryfiResponse, request: OcrRequest) -> OcrResult:
        """Map Veryfi line items onto the unified LineItem shape, keeping vendor order."""
        expense_date = today_iso()
        if request.options.extract_date:
            expense_date = parse_vendor_date(veryfi_data.date) or expense_date

        items: list[LineItem] = []
        for position, raw in enumerate(veryfi_data.line_items or []):
            if not isinstance(raw, dict):
                self.log("Dropping non-object line item", logging.WARNING, position=position)
                continue
            try:
                line = VeryfiLineItem.model_validate(raw)
            except ValidationError:
                self.log("Dropping unreadable line item", logging.WARNING, position=position)
                continue

            quantity = line.quantity if line.quantity and line.quantity > 0 else None
            item = self.build_item(
                position,
                name=(line.description or "").strip() or line.full_description,
                amount=to_amount(line.total),
                expense_date=expense_date,
                quantity=quantity,
                unit=line.unit_of_measure or None,
            )
            if item is not None:
                items.append(item)

        return OcrResult(items=items)
