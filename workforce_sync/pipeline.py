"""
Upload pipeline.

Wires the store, trigger dispatcher, propagation engine and consolidation
merger together the way a deployment runs them:

    upload -> ingest -> drain triggers (propagation) -> rebuild consolidated view

Usage:
    async with DocumentStore.open(settings.database_url) as store:
        pipeline = SyncPipeline(store)
        summary = await pipeline.upload_utilization("auslastung.xlsx")
        print(pipeline.unresolved_report())
"""

from __future__ import annotations

from typing import Optional

from .backfill import BackfillJob
from .config import Settings, settings as default_settings
from .consolidation import ConsolidationMerger, ConsolidationReport
from .errors import PartialBatchFailure
from .events import TriggerDispatcher
from .ingestion import BaseIngestor, DeploymentPlanIngestor, MasterIngestor, UtilizationIngestor
from .ingestion.workbook import WorkbookSource
from .logging_config import get_logger, log_error
from .models import BackfillReport, IngestionSummary, UnresolvedRow
from .propagation import PropagationEngine
from .reporting import unresolved_csv
from .store import DocumentStore

logger = get_logger(__name__)


class SyncPipeline:
    """Upload, propagation and consolidation for one store."""

    def __init__(self, store: DocumentStore, settings: Optional[Settings] = None):
        self.store = store
        self.settings = settings or default_settings
        self.dispatcher = TriggerDispatcher(store, max_events=self.settings.max_trigger_events)
        self.engine = PropagationEngine(store, self.settings)
        self.engine.register(self.dispatcher)
        self.merger = ConsolidationMerger(store, self.settings)
        self.backfill_job = BackfillJob(self.engine)
        self.unresolved: list[UnresolvedRow] = []

    def close(self) -> None:
        self.dispatcher.close()

    # ─────────────────────────────────────────────────────────────────────────
    # Uploads
    # ─────────────────────────────────────────────────────────────────────────

    async def upload_master(
        self, source: WorkbookSource, sheet: Optional[str] = None, source_file: Optional[str] = None
    ) -> IngestionSummary:
        return await self._upload(MasterIngestor(self.store, self.settings), source, sheet, source_file)

    async def upload_utilization(
        self, source: WorkbookSource, sheet: Optional[str] = None, source_file: Optional[str] = None
    ) -> IngestionSummary:
        return await self._upload(UtilizationIngestor(self.store, self.settings), source, sheet, source_file)

    async def upload_deployment_plan(
        self, source: WorkbookSource, sheet: Optional[str] = None, source_file: Optional[str] = None
    ) -> IngestionSummary:
        return await self._upload(DeploymentPlanIngestor(self.store, self.settings), source, sheet, source_file)

    async def _upload(
        self,
        ingestor: BaseIngestor,
        source: WorkbookSource,
        sheet: Optional[str],
        source_file: Optional[str],
    ) -> IngestionSummary:
        try:
            summary = await ingestor.ingest(source, sheet=sheet, source_file=source_file)
        except PartialBatchFailure as e:
            # committed batches still propagate; their unresolved rows stay visible
            if e.summary is not None:
                self.unresolved.extend(e.summary.unresolved)
            await self._drain_after_failure(ingestor.collection)
            raise

        self.unresolved.extend(summary.unresolved)
        try:
            await self.dispatcher.drain()
        except Exception as e:
            log_error(logger, e, {"stage": "propagation", "collection": summary.collection})
            # the upload itself committed, so the view is rebuilt from what is stored
            await self._consolidate_after_upload(summary.collection)
            raise PartialBatchFailure(
                f"{summary.collection}: {summary.written} documents written, "
                f"propagation failed: {e}",
                committed_batches=summary.batches_committed,
                failed_collections=list(getattr(e, "failed_collections", [])),
                summary=summary,
            ) from e

        await self._consolidate_after_upload(summary.collection)
        return summary

    async def _drain_after_failure(self, collection: str) -> None:
        """Drain while an ingestion error is pending; drain errors are only logged."""
        try:
            await self.dispatcher.drain()
        except Exception as e:
            log_error(logger, e, {"stage": "propagation", "collection": collection})

    async def _consolidate_after_upload(self, collection: str) -> None:
        try:
            await self.merger.consolidate_all()
        except Exception as e:
            log_error(logger, e, {"stage": "consolidation", "collection": collection})

    # ─────────────────────────────────────────────────────────────────────────
    # Maintenance
    # ─────────────────────────────────────────────────────────────────────────

    async def backfill(self, dry_run: bool = False) -> BackfillReport:
        report = await self.backfill_job.run(dry_run=dry_run)
        await self.dispatcher.drain()
        return report

    async def consolidate(self, person_id: Optional[str] = None) -> ConsolidationReport:
        if person_id is None:
            return await self.merger.consolidate_all()
        view = await self.merger.consolidate_person(person_id)
        written = 1 if view is not None else 0
        return ConsolidationReport(person_ids=1, written=written, skipped=1 - written)

    def unresolved_report(self) -> str:
        """CSV of every unresolved row collected by uploads so far."""
        return unresolved_csv(self.unresolved)
