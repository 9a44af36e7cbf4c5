# Overview: Received invoice operations; saves, listing, status writes and invoice file parsing.

"""
Invoice Service

Invoices are single-row runs (no line items). payment = amount - offset is
stored alongside the amounts so aggregations read one column.

PARSING:
- Text invoices are read line by line. A line matches a field when it is
  "【keyword】 value" or "keyword: value" (ASCII or full-width colon). For
  each field the last matching keyword wins.
- Images and PDFs go to the inference API with the active-project list as
  context and a structured-output schema.
"""

from __future__ import annotations

import logging
import mimetypes
import re
from datetime import datetime
from pathlib import Path
from typing import Any

from ..text_utils import parse_currency, to_number
from ..time_utils import format_sheet_date, parse_sheet_date
from ..validation import MalformedInput, require_mapping, text
from .concurrency import WriteResult, run_mutation
from .estimate_service import list_active_projects
from .grid_storage import plain_value
from .inference_service import UpstreamFailure
from .record_codec import Record
from .record_store import RecordStore
from .sequence_service import invoice_id


logger = logging.getLogger(__name__)

STATUS_DEFAULT = "未確認"
STATUS_CONFIRMED = "確認済"
STATUS_PAID = "支払済"
ACCEPTED_STATUSES = (STATUS_CONFIRMED, STATUS_PAID)

INVOICE_FILE_LIMIT = 30

FIELD_KEYWORDS = (
    ("construction_id", ("工事番号", "工事ID", "No")),
    ("project", ("現場名", "工事名", "案件名", "件名")),
    ("supplier", ("請求業者", "業者名", "請求元", "会社名")),
    ("amount", ("金額", "請求金額", "合計", "税込金額")),
    ("content", ("内容", "但し書き", "品名", "詳細")),
    ("date", ("日付", "請求日", "発行日")),
)

_UTF8_MARKERS = re.compile(r"工事|現場|請求|金額|日付|業者")

IMAGE_RESPONSE_SCHEMA = {
    "type": "OBJECT",
    "properties": {
        "constructionId": {"type": "STRING"},
        "supplier": {"type": "STRING"},
        "date": {"type": "STRING"},
        "amount": {"type": "NUMBER"},
        "content": {"type": "STRING"},
        "registrationNumber": {"type": "STRING", "description": "T+13 digits"},
    },
}


class UnsupportedInvoiceFile(Exception):
    """Raised for invoice files that are neither text, image nor PDF."""
    pass


def _invoice_view(record: Record) -> dict[str, Any]:
    return {
        "id": record.id,
        "status": record.get("status"),
        "registered_at": record.get("registered_at"),
        "file_id": record.get("file_id"),
        "construction_id": record.get("construction_id"),
        "project": record.get("project"),
        "supplier": record.get("supplier"),
        "date": record.get("date"),
        "amount": parse_currency(record.get("amount")),
        "offset": parse_currency(record.get("offset")),
        "payment": parse_currency(record.get("payment")),
        "content": record.get("content"),
        "remarks": record.get("remarks"),
        "registration_number": record.get("registration_number"),
    }


def list_invoices(ctx) -> list[dict[str, Any]]:
    """Every invoice (display values), most recently added first."""
    invoices = [_invoice_view(r) for r in RecordStore.open(ctx, "invoice", display=True).records()]
    invoices.reverse()
    return invoices


def _fresh_invoice_id(ctx, store: RecordStore) -> str:
    """Time-based id; a second save within the same second gets a "-2", "-3", ... suffix."""
    base = invoice_id(ctx.now())
    record_id, n = base, 1
    while store.find(record_id) is not None:
        n += 1
        record_id = f"{base}-{n}"
    return record_id


def save_invoice(ctx, payload: Any) -> WriteResult:
    """
    Create an invoice, or fully rewrite an existing one.

    Rewrites keep the stored status; status changes go through
    update_invoice_status.
    """
    def _op() -> WriteResult:
        data = require_mapping(payload)
        amount = to_number(data.get("amount"))
        offset = to_number(data.get("offset"))

        store = RecordStore.open(ctx, "invoice")
        record_id = text(data.get("id"))
        existing = store.find(record_id) if record_id else None
        if not record_id:
            record_id = _fresh_invoice_id(ctx, store)

        if existing is not None:
            status = existing.get("status")
        else:
            status = text(data.get("status")) or STATUS_DEFAULT

        store.replace(Record(id=record_id, header={
            "status": status,
            "registered_at": ctx.timestamp(),
            "file_id": text(data.get("file_id")),
            "construction_id": text(data.get("construction_id")),
            "project": text(data.get("project")),
            "supplier": text(data.get("supplier")),
            "date": text(data.get("date")),
            "amount": amount,
            "offset": offset,
            "payment": amount - offset,
            "content": text(data.get("content")),
            "remarks": text(data.get("remarks")),
            "registration_number": text(data.get("registration_number")),
        }))
        logger.info("Saved invoice %s (%s)", record_id, "update" if existing else "new")
        return WriteResult.ok(record_id)

    return run_mutation(ctx, _op)


def update_invoice_status(ctx, record_id: str, status: str) -> WriteResult:
    record_id, status = text(record_id), text(status)

    def _op() -> WriteResult:
        if not status:
            raise MalformedInput("status is required")
        RecordStore.open(ctx, "invoice").write_field(record_id, "status", status)
        return WriteResult.ok(record_id)

    return run_mutation(ctx, _op)


# =============================================================================
# Parsing
# =============================================================================

def decode_text_bytes(data: bytes) -> str:
    """UTF-8 first; Shift_JIS when the UTF-8 reading shows no invoice words."""
    content = data.decode("utf-8", errors="replace")
    if _UTF8_MARKERS.search(content):
        return content
    try:
        return data.decode("shift_jis")
    except UnicodeDecodeError:
        return content


def parse_invoice_text(content: str) -> dict[str, Any]:
    result: dict[str, Any] = {
        "construction_id": "",
        "project": "",
        "supplier": "",
        "amount": 0,
        "content": "",
        "date": "",
    }
    for raw in re.split(r"\r\n|\n", content or ""):
        line = raw.strip()
        if not line:
            continue
        for key, keywords in FIELD_KEYWORDS:
            for keyword in keywords:
                kw = re.escape(keyword)
                value = ""
                m = re.match(rf"^【\s*{kw}\s*】\s*(.*)$", line)
                if m:
                    value = m.group(1).strip()
                if not value:
                    m = re.match(rf"^{kw}\s*[:：]\s*(.*)$", line)
                    if m:
                        value = m.group(1).strip()
                if value:
                    result[key] = parse_currency(value) if key == "amount" else value
    return result


def parse_invoice_image(ctx, data: bytes, mime_type: str) -> dict[str, Any]:
    """
    Extract invoice fields from an image or PDF through the inference API.

    Raises UpstreamFailure when inference is unavailable or fails.
    """
    if ctx.inference is None:
        raise UpstreamFailure("Inference API is not configured")

    projects = "\n".join(f"{p['id']}: {p['name']}" for p in list_active_projects(ctx))
    prompt = (
        "あなたは建築積算のプロです。画像から情報を抽出してください。\n"
        "【重要】以下のリストを参照し、最も関連性が高い「工事番号(constructionId)」を推測してください。\n"
        f"リスト: {projects}\n"
        "抽出項目: constructionId, supplier, date(yyyy/MM/dd), amount(税込), content, "
        "registrationNumber(Tから始まる13桁の番号)"
    )
    outcome = ctx.inference.generate(
        prompt, inline_data=data, mime_type=mime_type, response_schema=IMAGE_RESPONSE_SCHEMA
    )
    parsed = outcome.json()
    if not isinstance(parsed, dict):
        raise UpstreamFailure("Inference returned a non-object result")
    return {
        "construction_id": text(parsed.get("constructionId")),
        "supplier": text(parsed.get("supplier")),
        "date": text(parsed.get("date")),
        "amount": parse_currency(parsed.get("amount")),
        "content": text(parsed.get("content")),
        "registration_number": text(parsed.get("registrationNumber")),
    }


def _input_folder(ctx) -> Path:
    folder = ctx.settings.invoice_input_folder
    if not folder:
        raise MalformedInput("請求書受取フォルダが未設定です")
    return Path(folder)


def _mime_type(path: Path) -> str:
    return mimetypes.guess_type(path.name)[0] or "application/octet-stream"


def list_invoice_files(ctx) -> list[dict[str, Any]]:
    """Text, image and PDF files in the invoice input folder, newest first."""
    folder = _input_folder(ctx)
    if not folder.is_dir():
        return []
    files = []
    for path in folder.iterdir():
        if not path.is_file():
            continue
        mime = _mime_type(path)
        if "image" in mime or "pdf" in mime or "text" in mime:
            updated = datetime.fromtimestamp(path.stat().st_mtime)
            files.append({"id": path.name, "name": path.name, "mime": mime, "updated": updated})
    files.sort(key=lambda f: f["updated"], reverse=True)
    return [
        dict(f, updated=format_sheet_date(f["updated"]))
        for f in files[:INVOICE_FILE_LIMIT]
    ]


def parse_invoice_file(ctx, name: str) -> dict[str, Any]:
    """Dispatch one input-folder file to the text or image parser."""
    folder = _input_folder(ctx)
    path = folder / Path(text(name)).name
    if not path.is_file():
        raise MalformedInput(f"File not found: {name}")
    mime = _mime_type(path)
    if "text" in mime or path.suffix.lower() == ".txt":
        return parse_invoice_text(decode_text_bytes(path.read_bytes()))
    if "image" in mime or "pdf" in mime:
        return parse_invoice_image(ctx, path.read_bytes(), mime)
    raise UnsupportedInvoiceFile(f"Unsupported file type: {mime}")


def invoice_date(record: Record) -> datetime | None:
    """Billing date, falling back to the registration timestamp."""
    return parse_sheet_date(record.get("date")) or parse_sheet_date(record.get("registered_at"))


def invoice_payment(record: Record) -> int | float:
    return parse_currency(plain_value(record.get("payment")))
