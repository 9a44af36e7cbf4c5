import dataclasses

import pytest

from gridledger.services import cash_service, invoice_service
from gridledger.services.record_store import RecordStore
from gridledger.validation import MalformedInput


# =============================================================================
# Deposits / payments
# =============================================================================

def test_save_deposit_mints_daily_id_and_defaults(ctx):
    result = cash_service.save_deposit(
        ctx, {"estimate_id": "0000001-00", "client": "東和建設", "amount": "50000"},
        user_email="staff@example.com",
    )

    assert result.id == "DEP-20240315-00001"
    deposit = cash_service.list_deposits(ctx)[0]
    assert deposit["amount"] == 50000
    assert deposit["type"] == cash_service.TYPE_DEFAULT
    assert deposit["status"] == cash_service.STATUS_DEFAULT
    assert deposit["registrant"] == "staff@example.com"
    assert deposit["date"] == "2024/03/15 10:00"


def test_save_with_existing_id_rewrites_in_place(ctx):
    first = cash_service.save_payment(ctx, {"order_id": "0000001-00", "amount": 100})

    again = cash_service.save_payment(ctx, {"id": first.id, "order_id": "0000001-00", "amount": 250})

    assert again.id == first.id
    payments = cash_service.list_payments(ctx)
    assert len(payments) == 1
    assert payments[0]["amount"] == 250


def test_listing_is_newest_first(ctx):
    cash_service.save_deposit(ctx, {"date": "2024/01/10", "amount": 1})
    cash_service.save_deposit(ctx, {"date": "2024/02/10", "amount": 2})
    cash_service.save_deposit(ctx, {"amount": 3})

    assert [d["amount"] for d in cash_service.list_deposits(ctx)] == [3, 2, 1]


def test_lookups_use_exact_ids(ctx):
    cash_service.save_deposit(ctx, {"estimate_id": "0000001-00", "amount": 1})
    cash_service.save_deposit(ctx, {"estimate_id": "0000001-00-2", "amount": 2})
    cash_service.save_payment(ctx, {"order_id": "0000003-00", "amount": 3})

    assert [d["amount"] for d in cash_service.deposits_for_estimate(ctx, "0000001-00")] == [1]
    assert [p["amount"] for p in cash_service.payments_for_order(ctx, "0000003-00")] == [3]
    assert cash_service.payments_for_order(ctx, "") == []


# =============================================================================
# Invoices
# =============================================================================

def test_save_invoice_stores_payment_amount(ctx):
    result = invoice_service.save_invoice(ctx, {"supplier": "山田工業", "amount": 110000, "offset": 10000})

    assert result.id == "INV-0315100000"
    invoice = invoice_service.list_invoices(ctx)[0]
    assert invoice["payment"] == 100000
    assert invoice["status"] == invoice_service.STATUS_DEFAULT


def test_invoices_saved_in_the_same_second_keep_distinct_ids(ctx):
    first = invoice_service.save_invoice(ctx, {"supplier": "A", "amount": 1})
    second = invoice_service.save_invoice(ctx, {"supplier": "B", "amount": 2})

    assert second.id == first.id + "-2"
    assert len(invoice_service.list_invoices(ctx)) == 2


def test_rewrite_keeps_stored_status(ctx):
    saved = invoice_service.save_invoice(ctx, {"supplier": "A", "amount": 1})
    assert invoice_service.update_invoice_status(ctx, saved.id, "確認済").success

    invoice_service.save_invoice(ctx, {"id": saved.id, "supplier": "A", "amount": 5, "status": "未確認"})

    record = RecordStore.open(ctx, "invoice").find(saved.id)
    assert record.get("status") == "確認済"
    assert record.get("amount") == 5


def test_update_status_of_missing_invoice(ctx):
    result = invoice_service.update_invoice_status(ctx, "INV-nope", "確認済")

    assert result.reason == "not_found"


def test_update_status_requires_status(ctx):
    saved = invoice_service.save_invoice(ctx, {"supplier": "A", "amount": 1})

    assert invoice_service.update_invoice_status(ctx, saved.id, " ").reason == "malformed"


def test_parse_text_invoice():
    content = "\n".join([
        "【工事番号】 0000001-00",
        "件名: 本社改修",
        "請求元：山田工業",
        "請求金額: ¥35,000",
        "日付: 2024/03/20",
        "内容: クロス工事",
    ])

    parsed = invoice_service.parse_invoice_text(content)

    assert parsed == {
        "construction_id": "0000001-00",
        "project": "本社改修",
        "supplier": "山田工業",
        "amount": 35000,
        "content": "クロス工事",
        "date": "2024/03/20",
    }


def test_parse_text_last_matching_line_wins():
    parsed = invoice_service.parse_invoice_text("金額: 100\n合計: 200\n")

    assert parsed["amount"] == 200


def test_decode_text_bytes_falls_back_to_shift_jis():
    raw = "請求金額: 1000".encode("shift_jis")

    assert invoice_service.decode_text_bytes(raw) == "請求金額: 1000"
    assert invoice_service.decode_text_bytes("工事名: A".encode("utf-8")) == "工事名: A"


def test_parse_invoice_file_from_input_folder(ctx, tmp_path):
    folder = tmp_path / "inbox"
    folder.mkdir()
    (folder / "seikyu.txt").write_bytes("請求元: 佐藤電気\n金額: 1,200\n".encode("shift_jis"))
    (folder / "notes.bin").write_bytes(b"\x00\x01")
    ctx.settings = dataclasses.replace(ctx.settings, invoice_input_folder=str(folder))

    files = invoice_service.list_invoice_files(ctx)
    parsed = invoice_service.parse_invoice_file(ctx, "seikyu.txt")

    assert [f["name"] for f in files] == ["seikyu.txt"]
    assert parsed["supplier"] == "佐藤電気"
    assert parsed["amount"] == 1200
    with pytest.raises(invoice_service.UnsupportedInvoiceFile):
        invoice_service.parse_invoice_file(ctx, "notes.bin")


def test_invoice_folder_must_be_configured(ctx):
    with pytest.raises(MalformedInput):
        invoice_service.list_invoice_files(ctx)
