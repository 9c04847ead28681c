from datetime import date
from decimal import Decimal

import httpx
import pytest

from app.errors import MalformedResponseError, UpstreamError
from app.receipt.base import OcrOptions, OcrRequest
from app.receipt.veryfi_provider import (
    VERYFI_API_ENDPOINT,
    VeryfiOcrProvider,
    VeryfiResponse,
    parse_vendor_date,
)

BREAD_RESPONSE = {
    "line_items": [{"description": "Bread", "total": 3.50, "quantity": 1, "unit_of_measure": "pc"}],
}


def _provider(config, stub):
    return VeryfiOcrProvider(config, transport=stub.transport)


@pytest.mark.asyncio
async def test_bread_line_item(veryfi_config, vendor, image_b64, today):
    stub = vendor(json_body=BREAD_RESPONSE)

    result = await _provider(veryfi_config, stub).process_receipt(OcrRequest(image=image_b64))

    assert len(result.items) == 1
    item = result.items[0]
    assert item.name == "Bread"
    assert item.amount == Decimal("3.50")
    assert item.quantity == 1
    assert item.unit == "pc"
    assert item.expense_date == today


@pytest.mark.asyncio
async def test_request_uses_two_part_credentials(veryfi_config, vendor, image_b64):
    stub = vendor(json_body=BREAD_RESPONSE)

    await _provider(veryfi_config, stub).process_receipt(OcrRequest(image=f"data:image/jpeg;base64,{image_b64}"))

    request = stub.calls[0]
    assert str(request.url) == VERYFI_API_ENDPOINT
    assert request.headers["CLIENT-ID"] == "vf-client"
    assert request.headers["Authorization"] == "apikey alice:vf-key"
    assert stub.last_json == {
        "file_data": image_b64,
        "boost_mode": True,
        "confidence_details": True,
        "parse_address": True,
        "categories": [],
    }


@pytest.mark.asyncio
async def test_vendor_order_and_richer_fields(veryfi_config, vendor, image_b64):
    stub = vendor(json_body={
        "vendor": {"name": "Biedronka", "address": "ul. Polna 1"},
        "total": 15.47,
        "confidence": 0.97,
        "date": "2024-03-01 12:30:00",
        "line_items": [
            {"description": "Pomidory", "total": 7.79, "quantity": 0.602, "unit_of_measure": "kg"},
            {"description": None, "full_description": "Jogurt naturalny 400g", "total": 3.49},
            {"description": "Woda", "total": 4.19, "quantity": 0},
        ],
    })

    result = await _provider(veryfi_config, stub).process_receipt(OcrRequest(image=image_b64))

    assert [i.name for i in result.items] == ["Pomidory", "Jogurt naturalny 400g", "Woda"]
    assert result.items[0].quantity == pytest.approx(0.602)
    assert result.items[0].unit == "kg"
    assert result.items[1].quantity is None
    assert result.items[2].quantity is None


@pytest.mark.asyncio
async def test_lines_without_name_or_total_are_dropped(veryfi_config, vendor, image_b64):
    stub = vendor(json_body={"line_items": [
        {"description": "Bread", "total": 3.5},
        {"description": "", "total": 2.0},
        {"description": "Discount", "total": -1.0},
        {"description": "Bag"},
        {"description": "Broken", "total": "n/a"},
    ]})

    result = await _provider(veryfi_config, stub).process_receipt(OcrRequest(image=image_b64))

    assert [i.name for i in result.items] == ["Bread"]


@pytest.mark.asyncio
async def test_missing_or_empty_line_items(veryfi_config, vendor, image_b64):
    for body in ({"line_items": []}, {"line_items": None}, {"total": 10}):
        stub = vendor(json_body=body)
        result = await _provider(veryfi_config, stub).process_receipt(OcrRequest(image=image_b64))
        assert result.items == []


@pytest.mark.asyncio
async def test_error_envelope_message(veryfi_config, vendor, image_b64):
    stub = vendor(status=401, json_body={"status": "fail", "error": "Not Authorized"})

    with pytest.raises(UpstreamError) as exc_info:
        await _provider(veryfi_config, stub).process_receipt(OcrRequest(image=image_b64))

    assert exc_info.value.status_code == 401
    assert exc_info.value.message == "Not Authorized"
    assert len(stub.calls) == 1


@pytest.mark.asyncio
async def test_error_falls_back_to_status_text(veryfi_config, vendor, image_b64):
    stub = vendor(status=500, text="<html>oops</html>")

    with pytest.raises(UpstreamError) as exc_info:
        await _provider(veryfi_config, stub).process_receipt(OcrRequest(image=image_b64))

    assert exc_info.value.status_code == 500
    assert exc_info.value.message == "Internal Server Error"
    assert len(stub.calls) == 1


@pytest.mark.asyncio
async def test_non_json_success_body_is_malformed(veryfi_config, vendor, image_b64):
    stub = vendor(status=200, text="not json")

    with pytest.raises(MalformedResponseError):
        await _provider(veryfi_config, stub).process_receipt(OcrRequest(image=image_b64))


@pytest.mark.asyncio
async def test_connection_failure_is_upstream_error(veryfi_config, vendor, image_b64):
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(UpstreamError) as exc_info:
        await _provider(veryfi_config, vendor(handler)).process_receipt(OcrRequest(image=image_b64))
    assert exc_info.value.status_code is None


@pytest.mark.asyncio
async def test_vendor_date_only_when_requested(veryfi_config, vendor, image_b64, today):
    body = {"date": "2024-03-01 12:30:00", "line_items": [{"description": "Bread", "total": 3.5}]}

    default = await _provider(veryfi_config, vendor(json_body=body)).process_receipt(OcrRequest(image=image_b64))
    with_date = await _provider(veryfi_config, vendor(json_body=body)).process_receipt(
        OcrRequest(image=image_b64, options=OcrOptions(extract_date=True))
    )

    assert default.items[0].expense_date == today
    assert with_date.items[0].expense_date == "2024-03-01"


def test_parse_vendor_date():
    assert parse_vendor_date("2024-03-01 12:30:00") == "2024-03-01"
    assert parse_vendor_date("2024-03-01") == "2024-03-01"
    assert parse_vendor_date("yesterday") is None
    assert parse_vendor_date(None) is None
    assert parse_vendor_date(20240301) is None


@pytest.mark.asyncio
async def test_non_object_line_items_are_dropped_one_by_one(veryfi_config, vendor, image_b64):
    stub = vendor(json_body={"line_items": [
        {"description": "Bread", "total": 3.5},
        None,
        "Milk 2.99",
        {"description": "Butter", "total": 7.49},
    ]})

    result = await _provider(veryfi_config, stub).process_receipt(OcrRequest(image=image_b64))

    assert [i.name for i in result.items] == ["Bread", "Butter"]


@pytest.mark.asyncio
async def test_odd_summary_fields_do_not_discard_items(veryfi_config, vendor, image_b64):
    stub = vendor(json_body={
        "vendor": {"name": "Lidl", "address": {"line1": "ul. Polna 1", "city": "Kraków"}},
        "total": {"value": 3.5},
        "confidence": "high",
        "date": 20240301,
        "line_items": [{"description": "Bread", "total": 3.5}],
    })

    result = await _provider(veryfi_config, stub).process_receipt(
        OcrRequest(image=image_b64, options=OcrOptions(extract_date=True))
    )

    assert [i.name for i in result.items] == ["Bread"]
    assert result.items[0].expense_date == date.today().isoformat()


def test_vendor_name_tolerates_any_vendor_shape():
    assert VeryfiResponse(vendor={"name": "Lidl"}).vendor_name == "Lidl"
    assert VeryfiResponse(vendor="Lidl").vendor_name is None
    assert VeryfiResponse(vendor={"name": 7}).vendor_name is None
