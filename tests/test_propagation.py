"""
Tests for personId propagation.
"""

import pytest

from workforce_sync.errors import IdentityConflict, PartialBatchFailure
from workforce_sync.events import TriggerDispatcher
from workforce_sync.models import PropagationAction
from workforce_sync.propagation import PropagationEngine, person_of, plan_person_id_update
from workforce_sync.store import DocumentStore, WriteBatch

HANS = {"person": "Müller, Hans", "cc": "DE-01"}


# ═══════════════════════════════════════════════════════════════════════════════
# STATE TRANSITION
# ═══════════════════════════════════════════════════════════════════════════════

class TestPlanPersonIdUpdate:
    """Test the guarded personId transition."""

    def test_same_id_unchanged(self):
        update = plan_person_id_update({"personId": "H1"}, "H1")
        assert update.action is PropagationAction.UNCHANGED
        assert update.patch is None

    def test_missing_id_assigned(self):
        update = plan_person_id_update({}, "H1", at="2025-01-01T00:00:00+00:00")
        assert update.action is PropagationAction.ASSIGNED
        assert update.patch == {"personId": "H1", "personIdSetAt": "2025-01-01T00:00:00+00:00"}

    def test_empty_id_assigned(self):
        assert plan_person_id_update({"personId": ""}, "H1").action is PropagationAction.ASSIGNED

    def test_differing_id_annotated_not_replaced(self):
        update = plan_person_id_update({"personId": "OLD"}, "H1", at="t")
        assert update.action is PropagationAction.CONFLICT
        assert update.patch == {"personIdConflict": {"previous": "OLD", "incoming": "H1", "at": "t"}}
        assert "personId" not in update.patch

    def test_same_conflict_not_rewritten(self):
        current = {"personId": "OLD", "personIdConflict": {"previous": "OLD", "incoming": "H1", "at": "t"}}
        assert plan_person_id_update(current, "H1").action is PropagationAction.UNCHANGED

    def test_new_conflict_replaces_old_annotation(self):
        current = {"personId": "OLD", "personIdConflict": {"previous": "OLD", "incoming": "H1", "at": "t"}}
        update = plan_person_id_update(current, "H2", at="t2")
        assert update.action is PropagationAction.CONFLICT
        assert update.patch["personIdConflict"]["incoming"] == "H2"

    def test_person_of_falls_back_to_name_parts(self):
        assert person_of({"lastName": "Meier", "firstName": "Eva"}) == "Meier, Eva"
        assert person_of({}) == ""


# ═══════════════════════════════════════════════════════════════════════════════
# ENGINE
# ═══════════════════════════════════════════════════════════════════════════════

class TestPropagationEngine:
    """Test event handling against a real store."""

    def test_source_of_truth_pushes_to_targets(self, run, db_url, test_settings):
        async def scenario():
            async with DocumentStore.open(db_url) as store:
                engine = PropagationEngine(store, test_settings)
                await store.set("employees", "H1", HANS)
                await store.set("deployment_plan", "H1", HANS)
                event = await store.set("utilization", "H1", {**HANS, "personId": "H1"})
                first = await engine.handle(event)
                second = await engine.handle(event)
                return first, second, await store.get("employees", "H1"), await store.get("deployment_plan", "H1")

        first, second, employee, plan = run(scenario())
        assert first.action is PropagationAction.PROPAGATED
        assert first.writes == 2
        assert second.action is PropagationAction.UNCHANGED
        assert second.writes == 0
        assert employee.data["personId"] == "H1"
        assert plan.data["personId"] == "H1"
        assert "personIdSetAt" in plan.data

    def test_target_with_other_cc_untouched(self, run, db_url, test_settings):
        async def scenario():
            async with DocumentStore.open(db_url) as store:
                engine = PropagationEngine(store, test_settings)
                await store.set("employees", "X", {"person": "Müller, Hans", "cc": "DE-02"})
                event = await store.set("utilization", "H1", {**HANS, "personId": "H1"})
                outcome = await engine.handle(event)
                return outcome, await store.get("employees", "X")

        outcome, other = run(scenario())
        assert outcome.writes == 0
        assert "personId" not in other.data

    def test_conflict_keeps_both_values(self, run, db_url, test_settings):
        """An existing differing id is never overwritten, and the annotation is written once."""
        async def scenario():
            async with DocumentStore.open(db_url) as store:
                engine = PropagationEngine(store, test_settings)
                await store.set("employees", "H1", {**HANS, "personId": "OLD"})
                event = await store.set("utilization", "H1", {**HANS, "personId": "H1"})
                first = await engine.handle(event)
                second = await engine.handle(event)
                return first, second, await store.get("employees", "H1")

        first, second, employee = run(scenario())
        assert first.conflicts == 1
        assert first.writes == 1
        assert second.writes == 0
        assert employee.data["personId"] == "OLD"
        assert employee.data["personIdConflict"]["previous"] == "OLD"
        assert employee.data["personIdConflict"]["incoming"] == "H1"

    def test_target_write_assigned_from_source_of_truth(self, run, db_url, test_settings):
        async def scenario():
            async with DocumentStore.open(db_url) as store:
                engine = PropagationEngine(store, test_settings)
                await store.set("utilization", "H1", {**HANS, "personId": "H1"})
                event = await store.set("deployment_plan", "P9", {"person": "Mueller, Hans", "cc": "de-01"})
                outcome = await engine.handle(event)
                return outcome, await store.get("deployment_plan", "P9")

        outcome, plan = run(scenario())
        assert outcome.action is PropagationAction.ASSIGNED
        assert outcome.person_id == "H1"
        assert plan.data["personId"] == "H1"

    def test_name_only_fallback(self, run, db_url, test_settings):
        """A target without cost center resolves by name when the name is unique."""
        async def scenario():
            async with DocumentStore.open(db_url) as store:
                engine = PropagationEngine(store, test_settings)
                await store.set("utilization", "H1", {**HANS, "personId": "H1"})
                result = await engine.find_person_id("Müller, Hans", None)
                wrong_cc = await engine.find_person_id("Müller, Hans", "ZZ")
                return result, wrong_cc

        result, wrong_cc = run(scenario())
        assert result.person_id == "H1"
        assert wrong_cc.person_id == "H1"

    def test_shared_name_is_ambiguous(self, run, db_url, test_settings):
        async def scenario():
            async with DocumentStore.open(db_url) as store:
                engine = PropagationEngine(store, test_settings)
                await store.set("utilization", "A1", {"person": "Schmidt, Anna", "cc": "A", "personId": "A1"})
                await store.set("utilization", "A2", {"person": "Schmidt, Anna", "cc": "B", "personId": "A2"})
                event = await store.set("deployment_plan", "P1", {"person": "Schmidt, Anna", "cc": ""})
                exact = await engine.find_person_id("Schmidt, Anna", "B")
                return await engine.handle(event), exact, await store.get("deployment_plan", "P1")

        outcome, exact, plan = run(scenario())
        assert outcome.action is PropagationAction.AMBIGUOUS
        assert outcome.writes == 0
        assert "personId" not in plan.data
        assert exact.person_id == "A2"

    def test_unknown_person_not_found(self, run, db_url, test_settings):
        async def scenario():
            async with DocumentStore.open(db_url) as store:
                engine = PropagationEngine(store, test_settings)
                event = await store.set("employees", "E1", {"person": "Nobody, Nemo", "cc": "A"})
                return await engine.handle(event)

        assert run(scenario()).action is PropagationAction.NOT_FOUND

    def test_strict_mode_raises_after_annotating(self, run, db_url, test_settings):
        async def scenario():
            async with DocumentStore.open(db_url) as store:
                engine = PropagationEngine(store, test_settings, strict=True)
                await store.set("utilization", "H1", {**HANS, "personId": "H1"})
                event = await store.set("employees", "H1", {**HANS, "personId": "OLD"})
                with pytest.raises(IdentityConflict) as exc:
                    await engine.handle(event)
                return exc.value, await store.get("employees", "H1")

        error, employee = run(scenario())
        assert error.path == "employees/H1"
        assert (error.previous, error.incoming) == ("OLD", "H1")
        assert employee.data["personIdConflict"]["incoming"] == "H1"

    @pytest.mark.parametrize("collection,data", [
        ("utilization", {"person": "Müller, Hans"}),
        ("employees", {"cc": "DE-01"}),
        ("consolidated", {**HANS, "personId": "H1"}),
    ])
    def test_skipped_events(self, run, db_url, test_settings, collection, data):
        """No id to push, no person, or an unwatched collection."""
        async def scenario():
            async with DocumentStore.open(db_url) as store:
                engine = PropagationEngine(store, test_settings)
                return await engine.handle(await store.set(collection, "H1", data))

        assert run(scenario()).action is PropagationAction.SKIPPED

    def test_delete_is_skipped(self, run, db_url, test_settings):
        """Deleting a source-of-truth record does not unlink dependents."""
        async def scenario():
            async with DocumentStore.open(db_url) as store:
                engine = PropagationEngine(store, test_settings)
                await store.set("employees", "H1", {**HANS, "personId": "H1"})
                await store.set("utilization", "H1", {**HANS, "personId": "H1"})
                outcome = await engine.handle(await store.delete("utilization", "H1"))
                return outcome, await store.get("employees", "H1")

        outcome, employee = run(scenario())
        assert outcome.action is PropagationAction.SKIPPED
        assert employee.data["personId"] == "H1"

    def test_failing_target_does_not_block_others(self, run, db_url, test_settings, monkeypatch):
        original_commit = WriteBatch.commit

        async def commit_unless_plan(self):
            if any(op.collection == "deployment_plan" for op in self._operations):
                raise RuntimeError("plan store down")
            return await original_commit(self)

        async def scenario():
            async with DocumentStore.open(db_url) as store:
                engine = PropagationEngine(store, test_settings)
                await store.set("employees", "H1", HANS)
                await store.set("deployment_plan", "H1", HANS)
                event = await store.set("utilization", "H1", {**HANS, "personId": "H1"})
                monkeypatch.setattr(WriteBatch, "commit", commit_unless_plan)
                with pytest.raises(PartialBatchFailure) as exc:
                    await engine.handle(event)
                monkeypatch.setattr(WriteBatch, "commit", original_commit)
                return exc.value, await store.get("employees", "H1"), await store.get("deployment_plan", "H1")

        error, employee, plan = run(scenario())
        assert error.failed_collections == ["deployment_plan"]
        assert error.committed_batches == 1
        assert employee.data["personId"] == "H1"
        assert "personId" not in plan.data


# ═══════════════════════════════════════════════════════════════════════════════
# DISPATCH LOOP
# ═══════════════════════════════════════════════════════════════════════════════

class TestPropagationThroughDispatcher:
    """Test that engine writes retrigger the engine and still terminate."""

    def test_reaches_fixed_point(self, run, db_url, test_settings):
        async def scenario():
            async with DocumentStore.open(db_url) as store:
                dispatcher = TriggerDispatcher(store, max_events=50)
                PropagationEngine(store, test_settings).register(dispatcher)
                await store.set("employees", "H1", HANS)
                await store.set("deployment_plan", "H1", HANS)
                await store.set("utilization", "H1", {**HANS, "personId": "H1"})
                first = await dispatcher.drain()
                second = await dispatcher.drain()
                return first, second, await store.get("employees", "H1"), await store.get("deployment_plan", "H1")

        first, second, employee, plan = run(scenario())
        # three writes, then two target updates that come back as unchanged
        assert first == 5
        assert second == 0
        assert employee.data["personId"] == "H1"
        assert plan.data["personId"] == "H1"

    def test_conflicts_terminate(self, run, db_url, test_settings):
        async def scenario():
            async with DocumentStore.open(db_url) as store:
                dispatcher = TriggerDispatcher(store, max_events=50)
                PropagationEngine(store, test_settings).register(dispatcher)
                await store.set("employees", "H1", {**HANS, "personId": "OLD"})
                await store.set("utilization", "H1", {**HANS, "personId": "H1"})
                await dispatcher.drain()
                return await store.get("employees", "H1")

        employee = run(scenario())
        assert employee.data["personId"] == "OLD"
        assert employee.data["personIdConflict"]["incoming"] == "H1"
