import pytest

from gridledger.services import estimate_service, master_service
from gridledger.services.cache_service import MASTERS_KEY
from gridledger.services.schema import MASTER_HEADERS

from conftest import estimate_payload


def _fill(ctx, key, rows):
    sheet = ctx.settings.sheet(key)
    ctx.grid.ensure_sheet(sheet, MASTER_HEADERS[key])
    ctx.grid.set_range(sheet, 2, 1, rows)


@pytest.fixture
def masters(ctx):
    _fill(ctx, "master_basic", [
        ["クロス張替", "量産品", "m2", 1200],
        ["", "名前なし", "m2", 1],
    ])
    _fill(ctx, "master_client", [
        ["東和建設", "内装", "クロス張替", "量産品", "m2", "¥1,100"],
        ["東和建設", "内装", "床CF", "", "m2", 2800],
        ["大成工務店", "外装", "塗装", "", "m2", 3000],
    ])
    _fill(ctx, "master_set", [
        ["トイレ改修 A", "設備", "便器交換", "", 1, "台", 80000, "", ""],
        ["トイレ改修 A", "内装", "床CF", "", 2, "m2", "", 6000, ""],
        ["トイレ改修 A", "値引", "出精値引", "", 1, "式", "", -5000, "端数"],
        ["浴室改修", "設備", "ユニットバス", "", 1, "式", 0, 0, ""],
    ])
    _fill(ctx, "master_vendor", [
        ["V001", "山田工業", "御中", "三井住友 普通 1234567"],
        ["V002", "佐藤電気", "", ""],
        ["V003", "山田工業", "御中", "重複"],
        ["V004", "", "様", ""],
    ])
    return ctx


def test_get_masters(masters):
    result = master_service.get_masters(masters)

    assert result["clients"] == ["東和建設", "大成工務店"]
    assert result["sets"] == ["トイレ改修 A", "浴室改修"]
    assert [v["display_name"] for v in result["vendors"]] == ["山田工業 御中", "佐藤電気"]
    # later rows with the same display name win
    assert result["vendors"][0]["account"] == "重複"
    assert masters.cache.get(MASTERS_KEY) is not None


def test_get_masters_without_sheets(ctx):
    assert master_service.get_masters(ctx) == {"clients": [], "sets": [], "vendors": []}


def test_unified_products_merge_every_source(masters):
    estimate_service.save_estimate(masters, estimate_payload())

    products = master_service.unified_products(masters)

    by_source = {}
    for p in products:
        by_source.setdefault(p["source"], []).append(p)
    assert [p["price"] for p in by_source["基本"]] == [1200]
    assert {p["product"] for p in by_source["元請:東和建設"]} == {"クロス張替", "床CF"}
    assert by_source["元請:東和建設"][0]["price"] == 1100
    assert {p["product"]: p["price"] for p in by_source["セット"]} == {
        "便器交換": 80000, "床CF": 3000, "出精値引": 0, "ユニットバス": 0,
    }
    assert by_source["履歴"][0]["price"] == 100000


def test_unified_products_newest_history_price_wins(ctx):
    estimate_service.save_estimate(ctx, estimate_payload())
    newer = estimate_payload()
    newer["items"][0]["price"] = 90000
    estimate_service.save_estimate(ctx, newer)

    history = [p for p in master_service.unified_products(ctx) if p["source"] == "履歴"]

    assert [p["price"] for p in history] == [90000]


@pytest.mark.parametrize("keyword, expected", [
    ("", ["トイレ改修 A"]),
    ("トイレ ａ", ["トイレ改修 A"]),
    ("浴室", []),
    ("キッチン", []),
])
def test_search_sets(masters, keyword, expected):
    assert [s["name"] for s in master_service.search_sets(masters, keyword)] == expected


def test_search_sets_totals(masters):
    found = master_service.search_sets(masters, "トイレ")[0]

    assert found == {"name": "トイレ改修 A", "first_item": "便器交換", "total_price": 86000, "count": 3}


def test_set_details_derive_missing_values(masters):
    items = master_service.set_details(masters, "トイレ改修 A")

    assert [(i["product"], i["qty"], i["price"], i["amount"]) for i in items] == [
        ("便器交換", 1, 80000, 80000),
        ("床CF", 2, 3000, 6000),
        ("出精値引", 1, 0, -5000),
    ]
    assert items[2]["remarks"] == "端数"


def test_set_details_unknown_set(masters):
    assert master_service.set_details(masters, "存在しない") == []
