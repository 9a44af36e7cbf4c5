import pytest

from gridledger.services import estimate_service, order_service
from gridledger.services.grid_storage import MemoryGrid
from gridledger.services.record_store import RecordStore

from conftest import estimate_payload


def _orders(ctx):
    return RecordStore.open(ctx, "order").records()


def test_save_mints_id_and_stamps_date(ctx):
    result = estimate_service.save_estimate(ctx, estimate_payload())

    assert result.success
    assert result.id == "0000001-00"
    estimate = estimate_service.get_estimate(ctx, result.id)
    assert estimate["header"]["date"] == "2024/03/15"
    assert estimate["header"]["status"] == estimate_service.STATUS_DEFAULT
    assert estimate["total_amount"] == 100000


def test_save_accepts_wrapped_payload(ctx):
    result = estimate_service.save_estimate(ctx, {"estimate": estimate_payload()})

    assert result.success


@pytest.mark.parametrize("payload", [None, [], {"items": []}, {"estimate": {"header": "x"}}])
def test_save_rejects_payload_without_header(ctx, payload):
    result = estimate_service.save_estimate(ctx, payload)

    assert result.success is False
    assert result.reason == "malformed"
    assert result.message.startswith("Invalid")
    assert not ctx.grid.sheet_exists(ctx.settings.sheet("estimate"))


def test_save_derives_one_order_per_vendor(ctx):
    payload = estimate_payload()
    payload["items"] += [
        {"product": "照明", "qty": 3, "cost": 2500.5, "vendor": "佐藤電気"},
        {"product": "配線", "qty": 2, "cost": 1000, "vendor": "佐藤電気"},
        {"product": "諸経費", "qty": 0, "cost": 0, "vendor": "佐藤電気"},
        {"product": "養生", "qty": 1, "cost": 500, "vendor": ""},
    ]

    estimate_service.save_estimate(ctx, payload, user_email="staff@example.com")

    orders = {o.get("vendor"): o for o in _orders(ctx)}
    assert set(orders) == {"山田工業", "佐藤電気"}
    sato = orders["佐藤電気"]
    assert [i["product"] for i in sato.items] == ["照明", "配線"]
    # round(3 * 2500.5) = round(7501.5) -> 7502
    assert [i["amount"] for i in sato.items] == [7502, 2000]
    assert sato.get("estimate_id") == "0000001-00"
    assert sato.get("creator") == "staff@example.com"
    assert sato.get("status") == order_service.ORDER_STATUS_DEFAULT


def test_resave_replaces_derived_orders(ctx):
    first = estimate_service.save_estimate(ctx, estimate_payload())
    payload = estimate_payload(first.id)
    payload["items"][0]["vendor"] = "佐藤電気"

    second = estimate_service.save_estimate(ctx, payload)

    assert second.id == first.id
    orders = _orders(ctx)
    assert [o.get("vendor") for o in orders] == ["佐藤電気"]
    assert orders[0].id == "0000002-00"
    assert len(RecordStore.open(ctx, "estimate").records()) == 1


def test_get_estimate_annotates_ordered_quantities(ctx):
    result = estimate_service.save_estimate(ctx, estimate_payload())

    item = estimate_service.get_estimate(ctx, result.id)["items"][0]

    assert item["ordered_qty"] == 1
    assert item["ordered_amount"] == 40000
    assert item["ordered_vendors"] == "山田工業"


def test_get_missing_estimate_is_none(ctx):
    assert estimate_service.get_estimate(ctx, "0000404-00") is None


def test_active_projects_skip_closed_estimates(ctx):
    estimate_service.save_estimate(ctx, estimate_payload(project="A"))
    estimate_service.save_estimate(ctx, estimate_payload(project="B", status="完了"))
    estimate_service.save_estimate(ctx, estimate_payload(project="C"))

    active = estimate_service.list_active_projects(ctx)

    assert [p["project"] for p in active] == ["C", "A"]
    assert active[0]["name"] == "東和建設 C"


def test_client_history_filters_by_client(ctx):
    estimate_service.save_estimate(ctx, estimate_payload(project="A"))
    estimate_service.save_estimate(ctx, estimate_payload(project="B", client="別会社"))

    history = estimate_service.client_history(ctx, "東和建設")

    assert [h["header"]["project"] for h in history] == ["A"]
    assert history[0]["items"][0]["amount"] == "100000"
    assert estimate_service.client_history(ctx, "") == []


def test_issue_bill_sets_status_and_publishes(ctx):
    saved = estimate_service.save_estimate(ctx, estimate_payload())
    grid = ctx.grid
    assert isinstance(grid, MemoryGrid)
    grid.mutations.clear()

    result = estimate_service.issue_bill(ctx, saved.id)

    assert result.success
    assert estimate_service.get_estimate(ctx, saved.id)["header"]["status"] == estimate_service.STATUS_BILLED
    # status-only write touches one cell
    assert [m[0] for m in grid.mutations] == ["set_range"]
    assert any(name.startswith("御請求書_東和建設") for name in ctx.blobs.list_files())


def test_issue_bill_for_missing_estimate(ctx):
    result = estimate_service.issue_bill(ctx, "0000404-00")

    assert result.success is False
    assert result.reason == "not_found"


def test_save_estimate_document_returns_url(ctx):
    result = estimate_service.save_estimate_document(ctx, estimate_payload())

    assert result.success
    assert result.id == "0000001-00"
    html = (ctx.blobs.folder / next(ctx.blobs.list_files())).read_text(encoding="utf-8")
    assert "御見積書" in html
    assert "100,000" in html


def test_store_busy_returns_busy_envelope(ctx):
    lock = ctx.locks.get("stores")
    assert lock.try_acquire(100)
    try:
        result = estimate_service.save_estimate(ctx, estimate_payload())
    finally:
        lock.release()

    assert result.success is False
    assert result.reason == "busy"
    assert result.message == "Busy"
