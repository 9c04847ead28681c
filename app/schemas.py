from typing import Any

from pydantic import BaseModel, Field

from app.receipt.base import OcrOptions


# --- Receipts ---

class OcrOptionsIn(BaseModel):
    extract_vendor: bool = Field(False, alias="extractVendor")
    extract_total: bool = Field(False, alias="extractTotal")
    extract_date: bool = Field(False, alias="extractDate")
    language: str = "pl"

    model_config = {"populate_by_name": True}

    def to_options(self) -> OcrOptions:
        return OcrOptions(
            extract_vendor=self.extract_vendor,
            extract_total=self.extract_total,
            extract_date=self.extract_date,
            language=self.language,
        )


class OcrIn(BaseModel):
    image: Any = None  # base64 or data: URL; type and encoding are checked when loaded
    options: OcrOptionsIn = OcrOptionsIn()


# --- Classification ---

class CategoryIn(BaseModel):
    id: str
    name: str


class ExpenseToClassifyIn(BaseModel):
    description: str
    amount: float
    date: str | None = None


class ClassificationIn(BaseModel):
    type: str | None = None  # "single" | "batch"
    description: str | None = None  # single
    expenses: list[ExpenseToClassifyIn] | None = None  # batch
    categories: list[CategoryIn] = []
    top_p: float | None = None
    frequency_penalty: float | None = None
    presence_penalty: float | None = None
