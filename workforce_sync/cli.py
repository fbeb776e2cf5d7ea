"""
Command line entry point.

    workforce-sync init-db
    workforce-sync upload master export.xlsx
    workforce-sync upload utilization auslastung.xlsx --report unresolved.csv
    workforce-sync upload plan einsatzplan.xlsx --sheet Einsatzplan
    workforce-sync backfill [--dry-run]
    workforce-sync consolidate [--person-id ID]
    workforce-sync completeness
"""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
from dataclasses import asdict
from pathlib import Path
from typing import Optional, Sequence

from .config import Settings, settings as default_settings
from .errors import MalformedWorkbook, PartialBatchFailure
from .logging_config import get_logger
from .pipeline import SyncPipeline
from .reporting import write_unresolved_report
from .store import DocumentStore

logger = get_logger(__name__)

UPLOAD_KINDS = ("master", "utilization", "plan")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="workforce-sync",
        description="Workforce spreadsheet ingestion, person id propagation and consolidation",
    )
    parser.add_argument("--database-url", type=str, help="Override WORKFORCE_DATABASE_URL")
    subparsers = parser.add_subparsers(dest="command", help="Commands")

    subparsers.add_parser("init-db", help="Create the document table")

    upload_parser = subparsers.add_parser("upload", help="Ingest one spreadsheet export")
    upload_parser.add_argument("kind", choices=UPLOAD_KINDS, help="Which export the file is")
    upload_parser.add_argument("file", type=Path, help="Path to the .xlsx file")
    upload_parser.add_argument("--sheet", type=str, help="Sheet name (defaults per export)")
    upload_parser.add_argument("--report", type=Path, help="Write unresolved rows as CSV here")

    backfill_parser = subparsers.add_parser("backfill", help="Replay person id propagation")
    backfill_parser.add_argument("--dry-run", action="store_true", help="Only count records")

    consolidate_parser = subparsers.add_parser("consolidate", help="Rebuild the consolidated view")
    consolidate_parser.add_argument("--person-id", type=str, help="Rebuild a single person")

    subparsers.add_parser("completeness", help="Summarize the consolidated view")
    return parser


async def _run(args: argparse.Namespace, settings: Settings) -> int:
    url = args.database_url or settings.database_url
    async with DocumentStore.open(
        url,
        echo=settings.database_echo,
        max_batch_operations=settings.ingestion.max_batch_operations,
    ) as store:
        if args.command == "init-db":
            print(f"Schema ready at {url}")
            return 0

        pipeline = SyncPipeline(store, settings)
        try:
            if args.command == "upload":
                return await _upload(pipeline, args)

            if args.command == "backfill":
                report = await pipeline.backfill(dry_run=args.dry_run)
                print(json.dumps(asdict(report), indent=2))
                return 0

            if args.command == "consolidate":
                report = await pipeline.consolidate(person_id=args.person_id)
                print(json.dumps(asdict(report), indent=2))
                return 0

            if args.command == "completeness":
                report = await pipeline.merger.completeness_report()
                print(json.dumps(report.to_dict(), indent=2))
                return 0
        finally:
            pipeline.close()
    return 2


async def _upload(pipeline: SyncPipeline, args: argparse.Namespace) -> int:
    uploads = {
        "master": pipeline.upload_master,
        "utilization": pipeline.upload_utilization,
        "plan": pipeline.upload_deployment_plan,
    }
    exit_code = 0
    try:
        summary = await uploads[args.kind](args.file, sheet=args.sheet)
    except MalformedWorkbook as e:
        print(f"❌ {e}", file=sys.stderr)
        return 1
    except PartialBatchFailure as e:
        print(f"⚠️  {e}", file=sys.stderr)
        if e.summary is None:
            return 1
        summary = e.summary
        exit_code = 1

    output = summary.to_dict()
    output["unresolved"] = len(summary.unresolved)
    print(json.dumps(output, indent=2))

    if args.report:
        path = write_unresolved_report(pipeline.unresolved, args.report)
        print(f"Unresolved rows written to {path}")
    return exit_code


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    if not args.command:
        parser.print_help()
        return 2
    return asyncio.run(_run(args, default_settings))


if __name__ == "__main__":
    sys.exit(main())
