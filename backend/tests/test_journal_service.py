"""
Monthly journal tests.

Uses a small custom configuration so rows are easy to read:
    name, source, fixed, ordinal, type
"""

import base64

import pytest

from gridledger.services import cash_service, estimate_service, invoice_service, journal_service
from gridledger.services.journal_service import JournalConfig, render_csv
from gridledger.services.schema import JOURNAL_CONFIG_HEADERS
from gridledger.validation import MalformedInput

from conftest import estimate_payload


def _configure(ctx, rows, sales_clients=(), purchase_suppliers=()):
    sheet = ctx.settings.sheet("journal_config")
    ctx.grid.ensure_sheet(sheet, JOURNAL_CONFIG_HEADERS)
    body = [list(r) + ["", "", "", ""] for r in rows]
    for i, name in enumerate(sales_clients):
        while len(body) <= i:
            body.append([""] * 8)
        body[i][6] = name
    for i, name in enumerate(purchase_suppliers):
        while len(body) <= i:
            body.append([""] * 8)
        body[i][7] = name
    ctx.grid.set_range(sheet, 2, 1, body)


SIMPLE_CONFIG = [
    ["取引先", "supplier", "", 1, "仕入"],
    ["取引先", "client", "", 1, "売上"],
    ["年月", "date", "", 2, "共通"],
    ["発生高", "amount", "", 3, "共通"],
    ["現金小切手", "cash_check", "", 4, "共通"],
    ["振込", "transfer", "", 5, "共通"],
    ["相殺", "offset", "", 6, "共通"],
    ["区分", "fixed", "A", 7, "共通"],
]


@pytest.fixture
def month_data(ctx):
    _configure(ctx, SIMPLE_CONFIG)
    invoice_service.save_invoice(ctx, {"supplier": "山田工業", "date": "2024/03/20", "amount": 35000,
                                       "offset": 5000, "status": "確認済"})
    invoice_service.save_invoice(ctx, {"supplier": "未確認商店", "date": "2024/03/21", "amount": 999})
    cash_service.save_payment(ctx, {"supplier": "山田工業", "date": "2024/03/28", "type": "現金", "amount": 1000})
    cash_service.save_payment(ctx, {"supplier": "山田工業", "date": "2024/03/29", "type": "振込", "amount": 20000})
    cash_service.save_payment(ctx, {"supplier": "山田工業", "date": "2024/04/01", "type": "振込", "amount": 7})
    estimate_service.save_estimate(ctx, estimate_payload(status="請求済"))
    cash_service.save_deposit(ctx, {"client": "東和建設", "date": "2024/03/30", "type": "小切手", "amount": 50000})
    return ctx


def test_default_config_is_seeded_once(ctx):
    assert journal_service.seed_journal_config(ctx) is True
    assert journal_service.seed_journal_config(ctx) is False

    config = journal_service.load_journal_config(ctx)

    assert len(config.columns) == len(journal_service.DEFAULT_JOURNAL_CONFIG)
    assert [c.source for c in config.purchase_columns][:3] == ["supplier", "fixed", "amount"]


def test_unseeded_config_reads_defaults_without_writing(ctx):
    lock = ctx.locks.get("stores")
    assert lock.try_acquire(100)
    try:
        config = journal_service.load_journal_config(ctx)
        preview = journal_service.preview_journal(ctx, 2024, 3)
    finally:
        lock.release()

    assert len(config.columns) == len(journal_service.DEFAULT_JOURNAL_CONFIG)
    assert preview["headers"][0] == "取引先名"
    assert not ctx.grid.sheet_exists(ctx.settings.sheet("journal_config"))


def test_config_orders_columns_and_missing_ordinal_sorts_last():
    rows = [
        JOURNAL_CONFIG_HEADERS,
        ["B", "amount", "", "2", "売上"],
        ["Z", "fixed", "x", "", "売上"],
        ["A", "client", "", "1", "売上"],
        ["C", "date", "", "3", "共通", "", "東和建設", "山田工業"],
    ]

    config = JournalConfig.from_rows(rows)

    assert [c.name for c in config.sales_columns] == ["A", "B", "C", "Z"]
    assert [c.name for c in config.purchase_columns] == ["C"]
    assert config.sales_clients == ["東和建設"]
    assert config.purchase_suppliers == ["山田工業"]


def test_preview_puts_purchase_rows_before_sales_rows(month_data):
    preview = journal_service.preview_journal(month_data, 2024, 3)

    assert preview["headers"] == ["取引先", "年月", "発生高", "現金小切手", "振込", "相殺", "区分"]
    assert preview["rows"] == [
        ["山田工業", "2024/03", 35000, 1000, 20000, 5000, "A"],
        ["東和建設", "2024/03", 100000, 50000, 0, "", "A"],
    ]


def test_preview_single_side(month_data):
    preview = journal_service.preview_journal(month_data, 2024, 3, include_purchases=False)

    assert [r[0] for r in preview["rows"]] == ["東和建設"]


def test_configured_counterparties_are_always_emitted(ctx):
    _configure(ctx, SIMPLE_CONFIG, purchase_suppliers=["佐藤電気"])

    preview = journal_service.preview_journal(ctx, 2024, 3, include_sales=False)

    assert preview["rows"] == [["佐藤電気", "2024/03", 0, 0, 0, 0, "A"]]


def test_render_csv_quotes_every_field_with_crlf_and_bom():
    content = render_csv(["a", "b"], [['x"y', 1], [None, "z"]])

    assert content == '\ufeff"a","b"\r\n"x""y","1"\r\n"","z"'


def test_export_is_deterministic_base64(month_data):
    first = journal_service.export_journal(month_data, 2024, 3)
    second = journal_service.export_journal(month_data, "2024", "3")

    assert first.success
    assert first.extra["filename"] == "集計表_2024年3月.csv"
    assert first.extra["count"] == 2
    assert first.extra["data"] == second.extra["data"]
    decoded = base64.b64decode(first.extra["data"]).decode("utf-8")
    assert decoded.startswith('\ufeff"取引先","年月"')
    assert not decoded.endswith("\r\n")


def test_export_empty_month_reports_empty(ctx):
    _configure(ctx, SIMPLE_CONFIG)

    result = journal_service.export_journal(ctx, 2023, 1)

    assert result.success is False
    assert result.reason == journal_service.EMPTY
    assert result.message == journal_service.EMPTY_MESSAGE


@pytest.mark.parametrize("year, month", [("x", 1), (2024, 13), (None, None)])
def test_preview_rejects_bad_period(ctx, year, month):
    with pytest.raises(MalformedInput):
        journal_service.preview_journal(ctx, year, month)


def test_journal_years(month_data):
    assert journal_service.journal_years(month_data) == [2024]


def test_journal_years_defaults_to_current_year(ctx):
    assert journal_service.journal_years(ctx) == [2024]
