# Overview: Printable documents; pagination, Jinja2 rendering, PDF conversion and blob storage.

"""
Document Service

Estimates, bills, orders and project ledgers are rendered from Jinja2
templates (gridledger/templates), converted to PDF by an injected converter
and stored through a blob storage collaborator that returns a public URL.

If no converter is configured, the rendered HTML itself is stored (with an
.html name) so the pipeline still works in development.

Any failure while rendering, converting or storing raises UpstreamFailure;
nothing is written to the grid stores from here.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Iterable, Iterator

from jinja2 import Environment, PackageLoader, TemplateError, select_autoescape

from ..text_utils import clean_filename
from .inference_service import UpstreamFailure


logger = logging.getLogger(__name__)

ESTIMATE_FIRST_PAGE_ROWS = 20
ORDER_FIRST_PAGE_ROWS = 22
NEXT_PAGE_ROWS = 35

PADDING_ROW = {"is_padding": True}


def paginate_items(items: Iterable[dict], first_page_rows: int, next_page_rows: int | None = None) -> list[list[dict]]:
    """
    Split items into printable pages; every page is padded to its row count.

    An empty item list still yields one padded first page.
    """
    next_page_rows = next_page_rows or first_page_rows
    queue = [dict(item) for item in (items or [])]
    pages: list[list[dict]] = []
    limit = first_page_rows
    while queue:
        chunk, queue = queue[:limit], queue[limit:]
        chunk.extend(dict(PADDING_ROW) for _ in range(limit - len(chunk)))
        pages.append(chunk)
        limit = next_page_rows
    if not pages:
        pages.append([dict(PADDING_ROW) for _ in range(first_page_rows)])
    return pages


# =============================================================================
# Blob storage
# =============================================================================

@dataclass(frozen=True)
class StoredFile:
    name: str
    path: str
    url: str


class LocalBlobStorage:
    """
    Folder-backed blob storage.

    Files marked public are listed in a `.public` manifest; the URL is a
    file:// URI of the stored document.
    """

    MANIFEST = ".public"

    def __init__(self, folder: str | Path):
        self.folder = Path(folder)

    def create_file(self, name: str, data: bytes) -> StoredFile:
        self.folder.mkdir(parents=True, exist_ok=True)
        target = self.folder / name
        stem, suffix = target.stem, target.suffix
        n = 1
        while target.exists():
            target = self.folder / f"{stem} ({n}){suffix}"
            n += 1
        target.write_bytes(data)
        return StoredFile(name=target.name, path=str(target), url=target.resolve().as_uri())

    def set_public_readable(self, stored: StoredFile) -> None:
        with open(self.folder / self.MANIFEST, "a", encoding="utf-8") as fh:
            fh.write(stored.name + "\n")

    def list_files(self) -> Iterator[str]:
        if not self.folder.is_dir():
            return iter(())
        return (p.name for p in sorted(self.folder.iterdir()) if p.is_file() and p.name != self.MANIFEST)

    def read_file(self, name: str) -> bytes:
        return (self.folder / name).read_bytes()


# =============================================================================
# Rendering
# =============================================================================

class DocumentRenderer:
    """Jinja2 renderer plus an optional HTML -> PDF converter."""

    def __init__(self, converter: Callable[[str], bytes] | None = None, env: Environment | None = None):
        self.converter = converter
        self.env = env or Environment(
            loader=PackageLoader("gridledger", "templates"),
            autoescape=select_autoescape(["html"]),
        )

    def render(self, template_name: str, data: dict[str, Any]) -> str:
        try:
            return self.env.get_template(template_name).render(data=data)
        except TemplateError as exc:
            raise UpstreamFailure(f"Template {template_name} failed: {exc}") from exc


def publish_document(ctx, template_name: str, data: dict[str, Any], filename: str) -> str:
    """
    Render, convert and store one document. Returns its public URL.

    `filename` is given without extension.
    """
    html = ctx.renderer.render(template_name, data)
    name = clean_filename(filename) or "document"
    try:
        if ctx.renderer.converter is not None:
            payload, name = ctx.renderer.converter(html), name + ".pdf"
        else:
            payload, name = html.encode("utf-8"), name + ".html"
        stored = ctx.blobs.create_file(name, payload)
        ctx.blobs.set_public_readable(stored)
    except UpstreamFailure:
        raise
    except Exception as exc:
        logger.exception("Failed to publish document %s", name)
        raise UpstreamFailure(f"Document storage failed: {exc}") from exc
    logger.info("Published document %s", stored.name)
    return stored.url
