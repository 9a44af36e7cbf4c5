# Overview: Explicit runtime context (settings + collaborators) passed to every service call.

"""
Ledger Context

Settings are read from the Flask config exactly once (create_app) into a
frozen LedgerSettings. The context bundles them with the collaborators a
service needs: grid storage, counter storage, read cache, locks, sequence
generator, blob storage, document renderer, inference client and clock.

Services take the context as their first argument and never look at
current_app or os.environ.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Mapping
from zoneinfo import ZoneInfo

from ..time_utils import format_timestamp
from .cache_service import DatabaseCacheBackend, MemoryCacheBackend, ReadCache
from .concurrency import LockRegistry
from .document_service import DocumentRenderer, LocalBlobStorage
from .grid_storage import GridStorage, MemoryGrid, WorkbookGrid
from .inference_service import InferenceClient
from .property_store import DatabasePropertyStore, MemoryPropertyStore
from .sequence_service import SequenceGenerator


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LedgerSettings:
    sheet_names: Mapping[str, str]
    timezone: str = "Asia/Tokyo"
    store_lock_timeout: float = 10.0
    sequence_lock_timeout: float = 5.0
    admin_users: tuple[str, ...] = ()
    save_folder: str = "documents"
    invoice_input_folder: str = ""

    @classmethod
    def from_mapping(cls, config: Mapping[str, Any]) -> "LedgerSettings":
        admins = config.get("ADMIN_USERS") or ""
        if isinstance(admins, str):
            admins = admins.split(",")
        return cls(
            sheet_names=dict(config["SHEET_NAMES"]),
            timezone=config.get("TIMEZONE", "Asia/Tokyo"),
            store_lock_timeout=float(config.get("STORE_LOCK_TIMEOUT_SECONDS", 10.0)),
            sequence_lock_timeout=float(config.get("SEQUENCE_LOCK_TIMEOUT_SECONDS", 5.0)),
            admin_users=tuple(a.strip().lower() for a in admins if a and a.strip()),
            save_folder=config.get("SAVE_FOLDER", "documents"),
            invoice_input_folder=config.get("INVOICE_INPUT_FOLDER", ""),
        )

    def sheet(self, key: str) -> str:
        return self.sheet_names[key]


@dataclass
class LedgerContext:
    settings: LedgerSettings
    grid: GridStorage
    properties: Any
    cache: ReadCache
    locks: LockRegistry
    sequences: SequenceGenerator
    blobs: Any = None
    renderer: DocumentRenderer = field(default_factory=DocumentRenderer)
    inference: InferenceClient | None = None
    # Returns an aware datetime; converted to the configured timezone by now()
    clock: Callable[[], datetime] = field(default=lambda: datetime.now(ZoneInfo("UTC")))

    def now(self) -> datetime:
        """Current local time (naive, in settings.timezone)."""
        current = self.clock()
        if current.tzinfo is None:
            return current
        return current.astimezone(ZoneInfo(self.settings.timezone)).replace(tzinfo=None)

    def timestamp(self) -> str:
        return format_timestamp(self.now())


def build_grid(config: Mapping[str, Any]) -> GridStorage:
    backend = (config.get("GRID_BACKEND") or "workbook").lower()
    if backend == "memory":
        return MemoryGrid()
    if backend == "workbook":
        return WorkbookGrid(config.get("WORKBOOK_PATH", "gridledger.xlsx"))
    raise ValueError(f"Unknown GRID_BACKEND '{backend}'")


def build_context(
    config: Mapping[str, Any],
    *,
    grid: GridStorage | None = None,
    properties=None,
    cache_backend=None,
    inference: InferenceClient | None = None,
    blobs=None,
    renderer: DocumentRenderer | None = None,
    clock: Callable[[], datetime] | None = None,
) -> LedgerContext:
    """Assemble a context from Flask config; keyword overrides win (tests)."""
    settings = LedgerSettings.from_mapping(config)

    if grid is None:
        grid = build_grid(config)

    if properties is None:
        if (config.get("PROPERTY_BACKEND") or "database").lower() == "memory":
            properties = MemoryPropertyStore()
        else:
            properties = DatabasePropertyStore()

    if cache_backend is None:
        if (config.get("CACHE_BACKEND") or "database").lower() == "memory":
            cache_backend = MemoryCacheBackend()
        else:
            cache_backend = DatabaseCacheBackend()

    if inference is None and config.get("INFERENCE_API_KEY"):
        inference = InferenceClient.from_config(config)

    if blobs is None:
        blobs = LocalBlobStorage(settings.save_folder)

    locks = LockRegistry()
    ctx = LedgerContext(
        settings=settings,
        grid=grid,
        properties=properties,
        cache=ReadCache(cache_backend),
        locks=locks,
        sequences=SequenceGenerator(properties, locks, timeout_seconds=settings.sequence_lock_timeout),
        blobs=blobs,
        renderer=renderer or DocumentRenderer(),
        inference=inference,
    )
    if clock is not None:
        ctx.clock = clock
    logger.info("Ledger context ready (grid=%s, cache=%s)", type(grid).__name__, type(cache_backend).__name__)
    return ctx
