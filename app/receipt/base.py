import base64
import binascii
import logging
import math
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Annotated, Protocol

import httpx
from pydantic import BaseModel, ConfigDict, Field, PlainSerializer, ValidationError, field_validator

from app.errors import ConfigurationError, InvalidInputError

logger = logging.getLogger("moneyflow")

DATA_URL_RE = re.compile(r"^data:(?P<media_type>[\w.+-]+/[\w.+-]+);base64,")
DEFAULT_MEDIA_TYPE = "image/jpeg"

Amount = Annotated[
    Decimal,
    Field(ge=0),
    PlainSerializer(float, return_type=float, when_used="json"),
]


class OcrOptions(BaseModel):
    model_config = ConfigDict(frozen=True)

    extract_vendor: bool = False
    extract_total: bool = False
    extract_date: bool = False  # use the vendor's receipt date when it provides one
    language: str = "pl"


class OcrRequest(BaseModel):
    model_config = ConfigDict(frozen=True)

    image: str  # base64, or a data: URL
    requester_id: str | None = None  # logging only
    options: OcrOptions = OcrOptions()


class LineItem(BaseModel):
    """One purchased item, identical in shape whichever vendor read the receipt."""

    model_config = ConfigDict(frozen=True)

    name: str
    amount: Amount
    expense_date: str  # ISO-8601 calendar date
    quantity: float | None = Field(default=None, gt=0)
    unit: str | None = None

    @field_validator("name")
    @classmethod
    def _name_not_blank(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("name must not be empty")
        return value

    @field_validator("expense_date")
    @classmethod
    def _iso_date(cls, value: str) -> str:
        return date.fromisoformat(value).isoformat()


class OcrResult(BaseModel):
    items: list[LineItem] = []


class ProviderConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    api_key: str | None = None
    endpoint: str | None = None  # referer URL for OpenRouter
    client_id: str | None = None
    client_name: str | None = None
    model: str | None = None
    timeout: float | None = None  # seconds
    retries: int | None = None  # not consulted: vendor failures are never retried


class ReceiptProvider(Protocol):
    async def process_receipt(self, request: OcrRequest) -> OcrResult: ...

    def validate_config(self) -> None: ...

    def provider_name(self) -> str: ...


@dataclass(frozen=True)
class ReceiptImage:
    data: str  # base64 without any data: URL prefix
    media_type: str
    size: int  # decoded byte length

    @property
    def data_url(self) -> str:
        return f"data:{self.media_type};base64,{self.data}"


def load_image(image: object) -> ReceiptImage:
    """Validate a base64 receipt image, accepting either raw base64 or a data URL."""
    if not isinstance(image, str) or not image.strip():
        raise InvalidInputError("Invalid request: image (base64) required for OCR")

    data = image.strip()
    media_type = DEFAULT_MEDIA_TYPE
    match = DATA_URL_RE.match(data)
    if match:
        media_type = match.group("media_type")
        data = data[match.end():]

    try:
        raw = base64.b64decode(data, validate=True)
    except (binascii.Error, ValueError) as e:
        raise InvalidInputError("Invalid request: image is not valid base64") from e
    if not raw:
        raise InvalidInputError("Invalid request: image is empty")

    return ReceiptImage(data=data, media_type=media_type, size=len(raw))


def to_amount(value: object) -> Decimal | None:
    """Vendor number -> Decimal, or None when it is not a usable number."""
    if isinstance(value, bool) or not isinstance(value, (int, float, Decimal)):
        return None
    if isinstance(value, float) and not math.isfinite(value):
        return None
    return Decimal(str(value))


def today_iso() -> str:
    return date.today().isoformat()


class BaseReceiptProvider(ABC):
    """Shared config validation, input checks and logging for receipt providers."""

    name = "base"
    default_timeout = 30.0

    def __init__(self, config: ProviderConfig, transport: httpx.AsyncBaseTransport | None = None):
        self.config = config
        self._transport = transport
        self.validate_config()

    def provider_name(self) -> str:
        return self.name

    def validate_config(self) -> None:
        if not self.config.api_key:
            raise ConfigurationError(f"{self.provider_name()}: API key is required")

    @property
    def timeout(self) -> float:
        return self.config.timeout or self.default_timeout

    async def process_receipt(self, request: OcrRequest) -> OcrResult:
        image = load_image(request.image)
        self.log(
            "Processing receipt",
            requester_id=request.requester_id,
            image_bytes=image.size,
            timestamp=datetime.now(timezone.utc).isoformat(),
        )
        return await self.extract(request, image)

    @abstractmethod
    async def extract(self, request: OcrRequest, image: ReceiptImage) -> OcrResult:
        """Call the vendor and map its answer to an OcrResult."""

    def log(self, message: str, level: int = logging.INFO, **data) -> None:
        logger.log(
            level,
            f"[{self.provider_name()}] {message}",
            extra={"extra_data": {"provider": self.provider_name(), **data}},
        )

    def build_item(self, position: int, **fields) -> LineItem | None:
        """Build a LineItem, or drop the vendor line (returning None) if it is invalid."""
        if fields.get("amount") is None:
            self.log("Dropping line item without a usable amount", logging.WARNING, position=position)
            return None
        try:
            return LineItem(**fields)
        except ValidationError as e:
            self.log(
                "Dropping invalid line item",
                logging.WARNING,
                position=position,
                errors=[err["loc"][0] if err["loc"] else "item" for err in e.errors()],
            )
            return None
