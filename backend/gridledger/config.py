# backend/gridledger/config.py
from __future__ import annotations
import os


def _env_float(name: str, default: float) -> float:
    try:
        return float(os.environ.get(name, default))
    except (TypeError, ValueError):
        return default


def _env_int(name: str, default: int) -> int:
    try:
        return int(os.environ.get(name, default))
    except (TypeError, ValueError):
        return default


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # Counter storage and the database cache backend live here
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL",  # optional alternative location
        "sqlite:///gridledger.sqlite3",  # default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Grid storage: "workbook" (openpyxl .xlsx file) or "memory"
    GRID_BACKEND = os.environ.get("GRID_BACKEND", "workbook")
    WORKBOOK_PATH = os.environ.get("WORKBOOK_PATH", "gridledger.xlsx")

    # Sequence counters: "database" (script_properties table) or "memory"
    PROPERTY_BACKEND = os.environ.get("PROPERTY_BACKEND", "database")

    # Read cache: "database" or "memory"
    CACHE_BACKEND = os.environ.get("CACHE_BACKEND", "database")

    STORE_LOCK_TIMEOUT_SECONDS = _env_float("STORE_LOCK_TIMEOUT_SECONDS", 10.0)
    SEQUENCE_LOCK_TIMEOUT_SECONDS = _env_float("SEQUENCE_LOCK_TIMEOUT_SECONDS", 5.0)

    TIMEZONE = os.environ.get("TIMEZONE", "Asia/Tokyo")
    ADMIN_USERS = os.environ.get("ADMIN_USERS", "")

    # Generated documents are written here; invoices to parse are read from INVOICE_INPUT_FOLDER
    SAVE_FOLDER = os.environ.get("SAVE_FOLDER", "documents")
    INVOICE_INPUT_FOLDER = os.environ.get("INVOICE_INPUT_FOLDER", "")

    INFERENCE_API_KEY = os.environ.get("INFERENCE_API_KEY", "")
    INFERENCE_ENDPOINT = os.environ.get(
        "INFERENCE_ENDPOINT",
        "https://generativelanguage.googleapis.com/v1beta/models",
    )
    INFERENCE_MODEL = os.environ.get("INFERENCE_MODEL", "gemini-3-flash-preview")
    INFERENCE_MAX_ATTEMPTS = _env_int("INFERENCE_MAX_ATTEMPTS", 3)
    INFERENCE_BACKOFF_SECONDS = _env_float("INFERENCE_BACKOFF_SECONDS", 1.0)
    INFERENCE_TIMEOUT_SECONDS = _env_float("INFERENCE_TIMEOUT_SECONDS", 60.0)

    # Sheet titles as stored in the workbook; keys are the logical store names
    SHEET_NAMES = {
        "estimate": "見積リスト",
        "order": "発注リスト",
        "invoice": "受取請求書リスト",
        "deposit": "入金リスト",
        "payment": "出金リスト",
        "master_basic": "基本単価マスタ",
        "master_client": "元請別単価マスタ",
        "master_set": "見積セットマスタ",
        "master_vendor": "発注先マスタ",
        "journal_config": "仕訳設定マスタ",
    }
