"""
Shared ingestion flow.

    workbook -> layout (once) -> typed rows -> match -> staged upserts -> batches

Subclasses provide the layout resolver and the row-to-document mapping. The
base class owns loading, staging, batching and the summary.
"""

from __future__ import annotations

from typing import Any, Optional

from ..canonical import PersonMatcher, build_identity_index
from ..canonical.normalization import name_cc_key, normalize_cost_center, normalize_name
from ..config import Settings, settings as default_settings
from ..errors import PartialBatchFailure
from ..logging_config import get_logger, log_error, log_ingestion
from ..models import IngestionSummary, SourceType
from ..store import DocumentStore
from .layouts import LayoutDescriptor
from .workbook import SheetGrid, WorkbookSource, load_workbook, source_name

logger = get_logger(__name__)


def normalized_block(person: str, cc: str) -> dict[str, str]:
    """The ``normalized`` sub-document stored on every ingested record."""
    name_key = normalize_name(person)
    cc_key = normalize_cost_center(cc)
    return {"name": name_key, "cc": cc_key, "nameCc": name_cc_key(name_key, cc_key)}


class BaseIngestor:
    """
    Base class of the three ingestors.

    Usage:
        ingestor = UtilizationIngestor(store)
        summary = await ingestor.ingest("auslastung.xlsx")
    """

    source_type: SourceType
    requires_match = True

    def __init__(self, store: DocumentStore, settings: Optional[Settings] = None):
        self.store = store
        self.settings = settings or default_settings
        self.config = self.settings.ingestion

    # ─────────────────────────────────────────────────────────────────────────
    # Hooks
    # ─────────────────────────────────────────────────────────────────────────

    @property
    def collection(self) -> str:
        return getattr(self.settings.collections, self.source_type.value)

    def default_sheet(self) -> Optional[str]:
        raise NotImplementedError

    def resolve_layout(self, grid: SheetGrid) -> LayoutDescriptor:
        raise NotImplementedError

    async def stage_rows(
        self,
        grid: SheetGrid,
        layout: LayoutDescriptor,
        matcher: Optional[PersonMatcher],
        summary: IngestionSummary,
        staged: dict[str, dict[str, Any]],
    ) -> None:
        raise NotImplementedError

    # ─────────────────────────────────────────────────────────────────────────
    # Flow
    # ─────────────────────────────────────────────────────────────────────────

    async def ingest(
        self,
        source: WorkbookSource,
        sheet: Optional[str] = None,
        source_file: Optional[str] = None,
    ) -> IngestionSummary:
        """
        Ingest one workbook.

        Raises:
            MalformedWorkbook: header or required columns not found (nothing written)
            PartialBatchFailure: a batch failed; earlier batches stay committed
        """
        source_file = source_file or source_name(source)
        workbook = load_workbook(source)
        grid = SheetGrid.from_workbook(workbook, sheet or self.default_sheet())
        layout = self.resolve_layout(grid)

        summary = IngestionSummary(collection=self.collection, source_file=source_file)
        matcher = None
        if self.requires_match:
            index = await build_identity_index(self.store, self.settings.collections.employees)
            matcher = PersonMatcher(index)

        staged: dict[str, dict[str, Any]] = {}
        await self.stage_rows(grid, layout, matcher, summary, staged)
        await self.commit(staged, summary)

        log_ingestion(
            logger,
            collection=summary.collection,
            source_file=source_file,
            written=summary.written,
            matched=summary.matched,
            ambiguous=summary.ambiguous,
            unmatched=summary.unmatched,
            skipped=summary.skipped,
            sheet=grid.title,
        )
        return summary

    async def commit(self, staged: dict[str, dict[str, Any]], summary: IngestionSummary) -> None:
        """Write staged documents in batches of ``batch_size``."""
        items = list(staged.items())
        size = self.config.batch_size
        for start in range(0, len(items), size):
            chunk = items[start:start + size]
            batch = self.store.batch()
            for doc_id, data in chunk:
                batch.set(self.collection, doc_id, data, merge=True)
            try:
                await batch.commit()
            except Exception as e:
                log_error(logger, e, {
                    "collection": self.collection,
                    "batch_start": start,
                    "committed_batches": summary.batches_committed,
                })
                raise PartialBatchFailure(
                    f"{self.collection}: batch {summary.batches_committed + 1} failed "
                    f"after {summary.written} documents were written",
                    committed_batches=summary.batches_committed,
                    failed_collections=[self.collection],
                    summary=summary,
                ) from e
            summary.written += len(chunk)
            summary.batches_committed += 1
