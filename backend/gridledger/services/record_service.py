# Overview: Store-wide record operations; delete by id across every store, sheet setup and user status.

from __future__ import annotations

import logging
from typing import Any

from ..validation import MalformedInput, text
from .concurrency import NOT_FOUND, WriteResult, run_mutation
from .journal_service import seed_journal_config
from .master_service import ensure_master_sheets
from .record_store import RecordStore
from .schema import RECORD_SCHEMAS


logger = logging.getLogger(__name__)


def delete_record(ctx, record_id: str, kind: str | None = None) -> WriteResult:
    """
    Delete every run carrying record_id, from one store or from all of them.

    Estimate and order ids come from separate counters with the same
    format, so callers that know the entity pass `kind`; without it every
    grouped store is swept under one lock acquisition.
    """
    record_id = text(record_id)
    kind = text(kind) or None

    def _op() -> WriteResult:
        if not record_id:
            raise MalformedInput("id is required")
        if kind is not None and kind not in RECORD_SCHEMAS:
            raise MalformedInput(f"Unknown record type: {kind}")
        keys = [kind] if kind else list(RECORD_SCHEMAS)
        removed = [key for key in keys if RecordStore.open(ctx, key).delete(record_id)]
        if not removed:
            return WriteResult.failed("Not found", NOT_FOUND)
        logger.info("Deleted %s from %s", record_id, ", ".join(removed))
        return WriteResult.ok(record_id)

    return run_mutation(ctx, _op)


def initialize_sheets(ctx) -> WriteResult:
    """
    Create every store and master sheet with headers; seed the journal config.

    Returns the write envelope with `created` (sheet names made by this call).
    """

    def _op() -> WriteResult:
        created = []
        for key in RECORD_SCHEMAS:
            store = RecordStore.open(ctx, key)
            if ctx.grid.ensure_sheet(store.sheet, store.schema.titles()):
                created.append(store.sheet)
        created.extend(ensure_master_sheets(ctx))
        if seed_journal_config(ctx):
            created.append(ctx.settings.sheet("journal_config"))
        return WriteResult.ok(created=created)

    return run_mutation(ctx, _op)


def auth_status(ctx, email: str | None) -> dict[str, Any]:
    email = text(email).lower()
    return {"is_admin": bool(email) and email in ctx.settings.admin_users, "email": email or "unknown"}
