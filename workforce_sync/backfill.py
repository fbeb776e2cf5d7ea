"""
Backfill: replay source-of-truth propagation over all historical records.

Safe to run any number of times; the propagation guard turns every repeat
into zero writes.
"""

from __future__ import annotations

from .logging_config import get_logger
from .models import BackfillReport
from .propagation import PropagationEngine, person_of

logger = get_logger(__name__)


async def backfill_person_ids(engine: PropagationEngine, dry_run: bool = False) -> BackfillReport:
    """
    Push every resolved ``personId`` of the source-of-truth collection to the
    other collections.

    Args:
        engine: Propagation engine bound to the store
        dry_run: Only count the records that would be replayed

    Returns:
        BackfillReport with scanned records, propagated records and writes
    """
    report = BackfillReport()
    documents = await engine.store.query(engine.source_of_truth, has_person_id=True)
    logger.info("backfill_started", collection=engine.source_of_truth, records=len(documents))

    for document in documents:
        report.scanned += 1
        if dry_run or not person_of(document.data):
            continue
        outcome = await engine.propagate_from(document)
        report.propagated += 1
        report.writes += outcome.writes

    logger.info(
        "backfill_completed",
        scanned=report.scanned,
        propagated=report.propagated,
        writes=report.writes,
        dry_run=dry_run,
    )
    return report


class BackfillJob:
    """Thin wrapper so the pipeline and CLI can hold a configured job."""

    def __init__(self, engine: PropagationEngine):
        self.engine = engine

    async def run(self, dry_run: bool = False) -> BackfillReport:
        return await backfill_person_ids(self.engine, dry_run=dry_run)
