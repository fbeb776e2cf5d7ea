"""
End-to-end tests: upload -> propagation -> consolidation.
"""

import pytest

from workforce_sync.canonical.id_utils import deterministic_id
from workforce_sync.config import IngestionConfig, Settings
from workforce_sync.consolidation import ConsolidationMerger
from workforce_sync.errors import MalformedWorkbook, PartialBatchFailure
from workforce_sync.pipeline import SyncPipeline
from workforce_sync.store import DocumentStore, WriteBatch

HANS = {"first": "Hans", "last": "Müller", "cc": "DE-01", "staffing": "ja"}
H1 = deterministic_id("employees", "Müller, Hans", "DE-01")


class TestSyncPipeline:
    """Test the full upload flow."""

    def test_three_uploads_build_consolidated_view(self, run, db_url, test_settings, master_xlsx, utilization_xlsx, plan_xlsx):
        master = master_xlsx([HANS, {"first": "Eva", "last": "Meier", "cc": "X"}])
        utilization = utilization_xlsx([("Mueller, Hans (10023)", "DE-01", {"KW 25/01": 0.8})])
        plan = plan_xlsx([{
            "name": "Müller, Hans",
            "cc": "DE-01",
            "team": "Platform",
            "weeks": {"KW34(2025)": ("Apollo", 20, None)},
        }])

        async def scenario():
            async with DocumentStore.open(db_url) as store:
                pipeline = SyncPipeline(store, test_settings)
                await pipeline.upload_master(master, source_file="master.xlsx")
                await pipeline.upload_utilization(utilization, source_file="util.xlsx")
                await pipeline.upload_deployment_plan(plan, source_file="plan.xlsx")
                pipeline.close()
                return (
                    await store.get("employees", H1),
                    await store.get("consolidated", H1),
                    await store.count("consolidated"),
                )

        employee, view, count = run(scenario())
        assert employee.data["personId"] == H1
        assert count == 2

        data = view.data
        assert data["person"] == "Müller, Hans"
        assert data["team"] == "Platform"
        assert data["availableForStaffing"] is True
        assert data["utilization"] == {"25/01": 80.0}
        assert data["deploymentPlan"] == {
            "25/34": [{"project": "Apollo", "location": "Not specified", "utilizationPercent": 80.0}],
        }
        assert data["dataCompleteness"] == {
            "hasMaster": True, "hasUtilization": True, "hasDeploymentPlan": True,
        }
        assert data["lastUploadFiles"] == {
            "employees": "master.xlsx",
            "utilization": "util.xlsx",
            "deployment_plan": "plan.xlsx",
        }

    def test_unresolved_rows_accumulate(self, run, db_url, test_settings, master_xlsx, utilization_xlsx, plan_xlsx):
        master = master_xlsx([HANS])
        utilization = utilization_xlsx([("Unbekannt, Udo", "Z", {"KW 25/01": 0.5})])
        plan = plan_xlsx([{"name": "Niemand, Nora", "weeks": {"KW34(2025)": ("Apollo", 0, "Köln")}}])

        async def scenario():
            async with DocumentStore.open(db_url) as store:
                pipeline = SyncPipeline(store, test_settings)
                await pipeline.upload_master(master)
                await pipeline.upload_utilization(utilization)
                await pipeline.upload_deployment_plan(plan)
                return pipeline.unresolved_report()

        lines = run(scenario()).splitlines()
        assert lines[0] == "collection,rowIndex,person,cc,reason"
        assert lines[1] == '"utilization","4","Unbekannt, Udo","Z","unmatched"'
        assert lines[2] == '"deployment_plan","3","Niemand, Nora","","unmatched"'

    def test_consolidation_failure_does_not_fail_upload(self, run, db_url, test_settings, master_xlsx, monkeypatch):
        """The upload already succeeded; a broken rebuild is logged, not raised."""
        async def broken(self):
            raise RuntimeError("view store down")

        monkeypatch.setattr(ConsolidationMerger, "consolidate_all", broken)

        async def scenario():
            async with DocumentStore.open(db_url) as store:
                summary = await SyncPipeline(store, test_settings).upload_master(master_xlsx([HANS]))
                return summary, await store.count("employees"), await store.count("consolidated")

        summary, employees, consolidated = run(scenario())
        assert summary.written == 1
        assert employees == 1
        assert consolidated == 0

    def test_malformed_upload_raises(self, run, db_url, test_settings, utilization_xlsx):
        async def scenario():
            async with DocumentStore.open(db_url) as store:
                with pytest.raises(MalformedWorkbook):
                    await SyncPipeline(store, test_settings).upload_deployment_plan(utilization_xlsx([]))

        run(scenario())

    def test_partial_failure_still_propagates_committed(self, run, db_url, master_xlsx, utilization_xlsx, monkeypatch):
        settings = Settings(database_url=db_url, ingestion=IngestionConfig(batch_size=1))
        master = master_xlsx([HANS, {"first": "Eva", "last": "Meier", "cc": "X"}])
        utilization = utilization_xlsx([
            ("Müller, Hans", "DE-01", {"KW 25/01": 0.5}),
            ("Meier, Eva", "X", {"KW 25/01": 0.5}),
            ("Unbekannt, Udo", "Z", {"KW 25/01": 0.5}),
        ])
        original_commit = WriteBatch.commit

        async def fail_second_utilization_batch(self):
            if any(op.collection == "utilization" and op.doc_id != H1 for op in self._operations):
                raise RuntimeError("write rejected")
            return await original_commit(self)

        async def scenario():
            async with DocumentStore.open(db_url) as store:
                pipeline = SyncPipeline(store, settings)
                await pipeline.upload_master(master)
                monkeypatch.setattr(WriteBatch, "commit", fail_second_utilization_batch)
                with pytest.raises(PartialBatchFailure):
                    await pipeline.upload_utilization(utilization)
                monkeypatch.setattr(WriteBatch, "commit", original_commit)
                return pipeline.unresolved, await store.get("employees", H1)

        unresolved, employee = run(scenario())
        assert [u.person for u in unresolved] == ["Unbekannt, Udo"]
        assert employee.data["personId"] == H1

    def test_consolidate_single_person(self, run, db_url, test_settings):
        async def scenario():
            async with DocumentStore.open(db_url) as store:
                await store.set("employees", "H1", {"person": "Müller, Hans", "cc": "DE-01"})
                pipeline = SyncPipeline(store, test_settings)
                found = await pipeline.consolidate(person_id="H1")
                missing = await pipeline.consolidate(person_id="ghost")
                return found, missing

        found, missing = run(scenario())
        assert (found.written, found.skipped) == (1, 0)
        assert (missing.written, missing.skipped) == (0, 1)

    def test_backfill_through_pipeline(self, run, db_url, test_settings):
        async def scenario():
            async with DocumentStore.open(db_url) as store:
                await store.set("employees", "H1", {"person": "Müller, Hans", "cc": "DE-01"})
                await store.set("utilization", "H1", {"person": "Müller, Hans", "cc": "DE-01", "personId": "H1"})
                pipeline = SyncPipeline(store, test_settings)
                report = await pipeline.backfill()
                return report, await store.get("employees", "H1")

        report, employee = run(scenario())
        assert report.writes == 1
        assert employee.data["personId"] == "H1"

    def test_propagation_failure_keeps_summary_and_unresolved(self, run, db_url, test_settings, master_xlsx, utilization_xlsx, monkeypatch):
        """Ingestion committed but a propagation target failed: nothing is lost."""
        master = master_xlsx([HANS])
        utilization = utilization_xlsx([
            ("Müller, Hans", "DE-01", {"KW 25/01": 0.5}),
            ("Unbekannt, Udo", "Z", {"KW 25/01": 0.5}),
        ])
        original_commit = WriteBatch.commit

        async def fail_employee_person_ids(self):
            if any(op.collection == "employees" and op.data and "personId" in op.data for op in self._operations):
                raise RuntimeError("employees store down")
            return await original_commit(self)

        async def scenario():
            async with DocumentStore.open(db_url) as store:
                pipeline = SyncPipeline(store, test_settings)
                await pipeline.upload_master(master)
                monkeypatch.setattr(WriteBatch, "commit", fail_employee_person_ids)
                with pytest.raises(PartialBatchFailure) as exc:
                    await pipeline.upload_utilization(utilization)
                monkeypatch.setattr(WriteBatch, "commit", original_commit)
                return (
                    exc.value,
                    pipeline.unresolved,
                    await store.get("utilization", H1),
                    await store.get("consolidated", H1),
                )

        error, unresolved, utilization_doc, view = run(scenario())
        assert error.summary is not None
        assert error.summary.written == 1
        assert error.committed_batches == 1
        assert error.failed_collections == ["employees"]
        assert [u.person for u in unresolved] == ["Unbekannt, Udo"]
        assert utilization_doc is not None
        assert view.data["dataCompleteness"]["hasUtilization"] is True

    def test_ingestion_error_survives_failing_drain(self, run, db_url, master_xlsx, utilization_xlsx, monkeypatch):
        """A propagation error while draining does not replace the ingestion error."""
        settings = Settings(database_url=db_url, ingestion=IngestionConfig(batch_size=1))
        master = master_xlsx([HANS, {"first": "Eva", "last": "Meier", "cc": "X"}])
        utilization = utilization_xlsx([
            ("Müller, Hans", "DE-01", {"KW 25/01": 0.5}),
            ("Meier, Eva", "X", {"KW 25/01": 0.5}),
            ("Unbekannt, Udo", "Z", {"KW 25/01": 0.5}),
        ])
        original_commit = WriteBatch.commit

        async def fail_second_batch_and_propagation(self):
            for op in self._operations:
                if op.collection == "utilization" and op.doc_id != H1:
                    raise RuntimeError("write rejected")
                if op.collection == "employees" and op.data and "personId" in op.data:
                    raise RuntimeError("employees store down")
            return await original_commit(self)

        async def scenario():
            async with DocumentStore.open(db_url) as store:
                pipeline = SyncPipeline(store, settings)
                await pipeline.upload_master(master)
                monkeypatch.setattr(WriteBatch, "commit", fail_second_batch_and_propagation)
                with pytest.raises(PartialBatchFailure) as exc:
                    await pipeline.upload_utilization(utilization)
                monkeypatch.setattr(WriteBatch, "commit", original_commit)
                return exc.value, pipeline.unresolved

        error, unresolved = run(scenario())
        assert error.failed_collections == ["utilization"]
        assert error.summary is not None
        assert error.summary.written == 1
        assert [u.person for u in unresolved] == ["Unbekannt, Udo"]
