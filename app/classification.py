"""Expense classification with an LLM.

Prompts and strict JSON-schema response formats for classifying one expense
(``single``) or a list of expenses (``batch``) against the caller's categories.
"""
import logging
from datetime import datetime, timezone

import httpx

from app.errors import InvalidInputError, MalformedResponseError
from app.openrouter import PROVIDER, call_openrouter, completion_log_data, extract_json_content
from app.schemas import CategoryIn, ClassificationIn

logger = logging.getLogger("moneyflow")

CLASSIFICATION_MODEL = "openai/gpt-4o-mini"
CLASSIFICATION_TEMPERATURE = 0.2
MAX_TOKENS = {"single": 500, "batch": 2000}
CONFIDENCE_THRESHOLD = 0.7
FALLBACK_CATEGORY = "Inne"

RULES = f"""\
### CLASSIFICATION RULES:

1. Decide which of the existing categories the expense fits best.
2. If the **match confidence is >= {CONFIDENCE_THRESHOLD}**, return the id and name of that category.
3. If the **confidence is < {CONFIDENCE_THRESHOLD}**, propose a **new category name** following the rules below.
4. Rate confidence on a 0-1 scale, taking into account:
   - keywords in the description,
   - the purchase context (place, service, product),
   - the amount (larger amounts can indicate larger purchases, e.g. electronics, appliances, a car).
5. New categories must be:
   - short (1-3 words),
   - unambiguous and easy to understand,
   - descriptive (e.g. "Sprzęt fotograficzny", not "Rzeczy"),
   - in Polish.
6. Use the "{FALLBACK_CATEGORY}" category **only** when none of the existing ones fits and a new category would be too narrow or unique.
7. Always give a short (1-2 sentence) reasoning for the choice."""


def format_categories(categories: list[CategoryIn]) -> str:
    return "\n".join(f'- ID: {cat.id}, Name: "{cat.name}"' for cat in categories)


def build_system_prompt(categories: list[CategoryIn]) -> str:
    return f"""\
You are an expert in classifying personal expenses.
YOUR TASK:
Based on the description of a single expense, match it to one of the existing categories or, if no match is confident enough, propose a new category.

---

### EXISTING CATEGORIES:
{format_categories(categories)}
---

{RULES}
8. Return the result **as JSON**.
"""


def build_user_prompt(description: str) -> str:
    return f"""\
Classify the following expense:

Description: {description}

Return the result **as JSON only**, without any extra comments, descriptions or text."""


def build_batch_system_prompt(categories: list[CategoryIn]) -> str:
    return f"""\
You are an expert in classifying personal expenses.
YOUR TASK:
For every expense in the list, match it to one of the existing categories or, if no match is confident enough, propose a new category.

---

### EXISTING CATEGORIES:
{format_categories(categories)}
---

{RULES}
8. Return the result **as JSON**, as an array of objects.
9. Keep the order of the expenses: the result for expense no. 1 must come first, and so on.
10. Proposed new category names must be unique and must not repeat the names of existing categories.
11. For a new category return null in the categoryId and categoryName fields and fill newCategoryName with the new name.
"""


def build_batch_user_prompt(expenses) -> str:
    lines = []
    for idx, exp in enumerate(expenses, start=1):
        line = f'{idx}. Description: "{exp.description}", Amount: {exp.amount} PLN'
        if exp.date:
            line += f", Date: {exp.date}"
        lines.append(line)
    expenses_text = "\n".join(lines)

    return f"""\
Classify the following {len(expenses)} expenses:

{expenses_text}

IMPORTANT: Return an array with exactly {len(expenses)} results in the same order. Every result must contain the fields: categoryId, categoryName, confidence, isNewCategory, reasoning.
Return the result **as JSON only**, without any extra comments, descriptions or text."""


def _result_properties() -> dict:
    return {
        "categoryId": {
            "type": ["string", "null"],
            "description": "Id of the matched category, or null for a new category",
        },
        "categoryName": {
            "type": ["string", "null"],
            "description": "Name of the matched category from the list of existing categories",
        },
        "confidence": {
            "type": "number",
            "minimum": 0,
            "maximum": 1,
            "description": "Match confidence on a 0-1 scale",
        },
        "isNewCategory": {
            "type": "boolean",
            "description": "true when a new category is proposed, false when an existing one matched",
        },
        "newCategoryName": {
            "type": "string",
            "description": "Proposed name of the new category",
        },
        "reasoning": {
            "type": "string",
            "description": "Short explanation of the classification decision",
        },
    }


def build_response_format(kind: str, expected_count: int | None = None) -> dict:
    if kind == "single":
        return {
            "type": "json_schema",
            "json_schema": {
                "name": "expense_classification",
                "strict": True,
                "schema": {
                    "type": "object",
                    "properties": _result_properties(),
                    "required": ["categoryId", "categoryName", "confidence", "isNewCategory", "reasoning"],
                    "additionalProperties": False,
                },
            },
        }

    return {
        "type": "json_schema",
        "json_schema": {
            "name": "batch_expense_classification",
            "strict": True,
            "schema": {
                "type": "object",
                "properties": {
                    "results": {
                        "type": "array",
                        "minItems": expected_count,
                        "maxItems": expected_count,
                        "items": {
                            "type": "object",
                            "properties": _result_properties(),
                            "required": [
                                "categoryId",
                                "categoryName",
                                "confidence",
                                "isNewCategory",
                                "reasoning",
                                "newCategoryName",
                            ],
                            "additionalProperties": False,
                        },
                    },
                },
                "required": ["results"],
                "additionalProperties": False,
            },
        },
    }


def build_messages(data: ClassificationIn) -> list[dict]:
    if data.type == "single":
        return [
            {"role": "system", "content": build_system_prompt(data.categories)},
            {"role": "user", "content": build_user_prompt(data.description)},
        ]
    return [
        {"role": "system", "content": build_batch_system_prompt(data.categories)},
        {"role": "user", "content": build_batch_user_prompt(data.expenses)},
    ]


def validate_request(data: ClassificationIn) -> None:
    if data.type not in ("single", "batch"):
        raise InvalidInputError("Invalid request: type must be single or batch")
    if data.type == "single" and not (data.description and data.description.strip()):
        raise InvalidInputError("Invalid request: description required for single classification")
    if data.type == "batch" and not data.expenses:
        raise InvalidInputError("Invalid request: expenses array required for batch classification")
    if not data.categories:
        raise InvalidInputError("No categories available for classification")


def unknown_category_ids(parsed: dict, categories: list[CategoryIn]) -> list[dict]:
    """Category ids the model returned that are not in the caller's list."""
    known = {cat.id for cat in categories}
    results = parsed.get("results") if "results" in parsed else [parsed]
    return [
        {"categoryId": r.get("categoryId"), "categoryName": r.get("categoryName")}
        for r in results or []
        if isinstance(r, dict) and r.get("categoryId") and r.get("categoryId") not in known
    ]


def build_payload(data: ClassificationIn) -> dict:
    expected_count = len(data.expenses) if data.type == "batch" else None
    return {
        "model": CLASSIFICATION_MODEL,
        "messages": build_messages(data),
        "response_format": build_response_format(data.type, expected_count),
        "temperature": CLASSIFICATION_TEMPERATURE,
        "max_tokens": MAX_TOKENS[data.type],
        "top_p": data.top_p if data.top_p is not None else 1,
        "frequency_penalty": data.frequency_penalty if data.frequency_penalty is not None else 0,
        "presence_penalty": data.presence_penalty if data.presence_penalty is not None else 0,
    }


async def classify_expenses(
    data: ClassificationIn,
    api_key: str,
    referer: str,
    requester_id: str | None = None,
    timeout: float | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> dict:
    validate_request(data)
    payload = build_payload(data)

    logger.info(
        "Classification request",
        extra={"extra_data": {
            "requester_id": requester_id,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "model": CLASSIFICATION_MODEL,
            "type": data.type,
            "count": len(data.expenses) if data.type == "batch" else 1,
        }},
    )

    completion = await call_openrouter(payload, api_key, referer, timeout=timeout, transport=transport)

    logger.info(
        "OpenRouter classification response",
        extra={"extra_data": completion_log_data(completion)},
    )

    parsed = extract_json_content(completion)
    if not isinstance(parsed, dict):
        raise MalformedResponseError(PROVIDER, "classification content is not a JSON object")
    if data.type == "batch" and not isinstance(parsed.get("results"), list):
        raise MalformedResponseError(PROVIDER, "classification content has no results array")

    invalid = unknown_category_ids(parsed, data.categories)
    if invalid:
        logger.warning(
            "AI returned unknown category ids",
            extra={"extra_data": {"requester_id": requester_id, "categories": invalid}},
        )

    return parsed
