import logging

from app.errors import ConfigurationError, MalformedResponseError
from app.openrouter import call_openrouter, completion_log_data, extract_json_content
from app.receipt.base import (
    BaseReceiptProvider,
    OcrRequest,
    OcrResult,
    ReceiptImage,
    to_amount,
    today_iso,
)

DEFAULT_OCR_MODEL = "anthropic/claude-3.5-sonnet"
DEFAULT_OCR_PARAMS = {
    "temperature": 0.1,
    "max_tokens": 1000,
}

LANGUAGE_NAMES = {
    "pl": "Polish",
    "en": "English",
    "de": "German",
    "uk": "Ukrainian",
}

INSTRUCTIONS = """\
You are an expert at reading fiscal receipts. Extract every purchased item from the receipt image.

Rules:
- For each item extract the product name and its price
- Ignore headers, footers, subtotals, VAT/tax lines and discounts
- Return only the list of products with their prices
- If a name is abbreviated, expand it to the full product name when it is unambiguous (e.g. "MLEKO 2%" -> "Mleko 2%")
- Prices are always bare numbers, without a currency symbol or code ("zł", "PLN")
- If you cannot read the name or the price of a line, skip that line
- Keep the items in the same order as on the receipt
- The receipt is in {language}; keep product names in that language

Response format: JSON with an items array, where every item has name (string) and price (number)"""

USER_PROMPT = "Extract all items from this receipt."


def build_ocr_system_prompt(language: str = "pl") -> str:
    return INSTRUCTIONS.format(language=LANGUAGE_NAMES.get(language.lower(), language))


def build_ocr_messages(image: ReceiptImage, language: str = "pl") -> list[dict]:
    return [
        {"role": "system", "content": build_ocr_system_prompt(language)},
        {
            "role": "user",
            "content": [
                {"type": "text", "text": USER_PROMPT},
                {"type": "image_url", "image_url": {"url": image.data_url}},
            ],
        },
    ]


def build_ocr_response_format() -> dict:
    """Strict JSON schema so the model answer can be parsed without a free-text parser."""
    return {
        "type": "json_schema",
        "json_schema": {
            "name": "receipt_items",
            "strict": True,
            "schema": {
                "type": "object",
                "properties": {
                    "items": {
                        "type": "array",
                        "items": {
                            "type": "object",
                            "properties": {
                                "name": {"type": "string", "description": "Product name"},
                                "price": {"type": "number", "minimum": 0, "description": "Product price"},
                            },
                            "required": ["name", "price"],
                            "additionalProperties": False,
                        },
                    },
                },
                "required": ["items"],
                "additionalProperties": False,
            },
        },
    }


class OpenRouterOcrProvider(BaseReceiptProvider):
    """Receipt extraction with a vision LLM behind OpenRouter, constrained to a JSON schema."""

    name = "OpenRouter"
    default_timeout = 60.0

    def validate_config(self) -> None:
        super().validate_config()
        if not self.config.endpoint:
            raise ConfigurationError("OpenRouter: referer URL (APP_URL) is required")

    @property
    def model(self) -> str:
        return self.config.model or DEFAULT_OCR_MODEL

    async def extract(self, request: OcrRequest, image: ReceiptImage) -> OcrResult:
        payload = {
            "model": self.model,
            "messages": build_ocr_messages(image, request.options.language),
            "response_format": build_ocr_response_format(),
            **DEFAULT_OCR_PARAMS,
        }

        completion = await call_openrouter(
            payload,
            self.config.api_key,
            self.config.endpoint,
            timeout=self.timeout,
            transport=self._transport,
        )
        content = extract_json_content(completion)

        raw_items = content.get("items") if isinstance(content, dict) else None
        if not isinstance(raw_items, list):
            raise MalformedResponseError(self.name, "content has no items array")

        expense_date = today_iso()
        items = []
        for position, raw in enumerate(raw_items):
            if not isinstance(raw, dict):
                self.log("Dropping non-object line item", logging.WARNING, position=position)
                continue
            item = self.build_item(
                position,
                name=raw.get("name"),
                amount=to_amount(raw.get("price")),
                expense_date=expense_date,
            )
            if item is not None:
                items.append(item)

        self.log(
            "Receipt processed successfully",
            **completion_log_data(completion),
            items_count=len(items),
            dropped_count=len(raw_items) - len(items),
        )
        return OcrResult(items=items)
