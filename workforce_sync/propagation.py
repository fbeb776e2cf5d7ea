"""
PERSON ID PROPAGATION

Keeps ``personId`` in sync across the employee master, utilization and
deployment plan collections. One write event in, zero or more writes out:

- a write to the source-of-truth collection carrying a ``personId`` pushes
  that id to every matching record of the other collections;
- a write to any other watched collection looks the id up in the source of
  truth and assigns it to the written record.

An existing, differing id is never replaced. A ``personIdConflict``
annotation ``{previous, incoming, at}`` is stored next to it instead.

Every write is guarded by "skip if already equal". The engine is re-invoked
by its own writes, and that guard is what lets the event queue run dry.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Mapping, Optional

from .canonical.identity_index import identity_display_name
from .config import Settings, settings as default_settings
from .errors import IdentityConflict, PartialBatchFailure
from .events import WriteEvent
from .logging_config import get_logger, log_error, log_propagation
from .models import MatchResult, MatchStatus, PropagationAction, PropagationOutcome
from .store import Document, DocumentStore, now_iso

if TYPE_CHECKING:
    from .events import TriggerDispatcher

logger = get_logger(__name__)


@dataclass(frozen=True)
class PersonIdUpdate:
    """Patch to apply to one document, and what kind of change it is."""
    action: PropagationAction
    patch: Optional[dict[str, Any]] = None


def plan_person_id_update(current: Mapping[str, Any], incoming: str, at: Optional[str] = None) -> PersonIdUpdate:
    """
    Decide how ``incoming`` lands on a document whose state is ``current``.

    - same id                       -> unchanged
    - no id                         -> assign ``personId`` / ``personIdSetAt``
    - differing id, same conflict   -> unchanged
    - differing id                  -> ``personIdConflict`` annotation
    """
    existing = current.get("personId")
    if existing == incoming:
        return PersonIdUpdate(PropagationAction.UNCHANGED)

    at = at or now_iso()
    if not existing:
        return PersonIdUpdate(
            PropagationAction.ASSIGNED,
            {"personId": incoming, "personIdSetAt": at},
        )

    conflict = current.get("personIdConflict") or {}
    if conflict.get("previous") == existing and conflict.get("incoming") == incoming:
        return PersonIdUpdate(PropagationAction.UNCHANGED)

    return PersonIdUpdate(
        PropagationAction.CONFLICT,
        {"personIdConflict": {"previous": existing, "incoming": incoming, "at": at}},
    )


class PropagationEngine:
    """
    Event handler for the watched collections.

    Usage:
        engine = PropagationEngine(store)
        engine.register(dispatcher)
        await dispatcher.drain()
    """

    def __init__(
        self,
        store: DocumentStore,
        settings: Optional[Settings] = None,
        strict: bool = False,
    ):
        self.store = store
        self.settings = settings or default_settings
        self.collections = self.settings.collections
        self.source_of_truth = self.settings.source_of_truth
        self.strict = strict

    @property
    def targets(self) -> tuple[str, ...]:
        return tuple(c for c in self.collections.watched() if c != self.source_of_truth)

    def register(self, dispatcher: "TriggerDispatcher") -> None:
        for collection in self.collections.watched():
            dispatcher.register(collection, self.handle)

    # ─────────────────────────────────────────────────────────────────────────
    # Event entry point
    # ─────────────────────────────────────────────────────────────────────────

    async def handle(self, event: WriteEvent) -> PropagationOutcome:
        """Handle one committed write."""
        if event.deleted or event.after is None:
            return self._outcome(PropagationAction.SKIPPED, event, reason="deleted")
        if event.collection not in self.collections.watched():
            return self._outcome(PropagationAction.SKIPPED, event, reason="not_watched")

        document = Document(event.collection, event.doc_id, event.after)
        person = person_of(document.data)
        if not person:
            logger.warning("propagation_without_person", collection=event.collection, doc_id=event.doc_id)
            return self._outcome(PropagationAction.SKIPPED, event, reason="no_person")

        if event.collection == self.source_of_truth:
            person_id = document.get("personId")
            if not person_id:
                return self._outcome(PropagationAction.SKIPPED, event, reason="no_person_id")
            return await self.propagate_from(document)

        return await self.assign_from_source_of_truth(document)

    # ─────────────────────────────────────────────────────────────────────────
    # Source of truth -> targets
    # ─────────────────────────────────────────────────────────────────────────

    async def propagate_from(self, document: Document) -> PropagationOutcome:
        """Push the document's ``personId`` to every matching target record."""
        person_id = str(document.get("personId"))
        writes, conflicts = await self.propagate_to_targets(
            person_of(document.data), document.get("cc") or None, person_id
        )
        action = PropagationAction.PROPAGATED if writes else PropagationAction.UNCHANGED
        outcome = PropagationOutcome(
            action, document.collection, document.doc_id, person_id, writes, conflicts
        )
        log_propagation(
            logger, action.value, document.collection, document.doc_id, person_id, writes,
            conflicts=conflicts,
        )
        return outcome

    async def propagate_to_targets(
        self,
        person: str,
        cc: Optional[str],
        person_id: str,
    ) -> tuple[int, int]:
        """
        Upsert ``person_id`` on matching records of every target collection.

        One batch per collection. A failing collection does not stop the
        others; failures surface afterwards as ``PartialBatchFailure``.

        Returns:
            (writes, conflicts)
        """
        writes = conflicts = committed = 0
        failed: list[str] = []
        at = now_iso()

        for collection in self.targets:
            matches = await self.store.query(collection, name=person, cc=cc or None)
            updates: list[tuple[Document, PersonIdUpdate]] = []
            for doc in matches:
                update = plan_person_id_update(doc.data, person_id, at)
                if update.patch is not None:
                    updates.append((doc, update))
            if not updates:
                continue

            try:
                for start in range(0, len(updates), self.store.max_batch_operations):
                    batch = self.store.batch()
                    for doc, update in updates[start:start + self.store.max_batch_operations]:
                        batch.set(collection, doc.doc_id, update.patch, merge=True)
                    await batch.commit()
                    committed += 1
            except Exception as e:
                log_error(logger, e, {"collection": collection, "person_id": person_id})
                failed.append(collection)
                continue

            for doc, update in updates:
                writes += 1
                if update.action is PropagationAction.CONFLICT:
                    conflicts += 1
                    self._report_conflict(doc, update)

        if failed:
            raise PartialBatchFailure(
                f"propagation of {person_id} failed for {', '.join(failed)}",
                committed_batches=committed,
                failed_collections=failed,
            )
        return writes, conflicts

    # ─────────────────────────────────────────────────────────────────────────
    # Target <- source of truth
    # ─────────────────────────────────────────────────────────────────────────

    async def find_person_id(self, person: str, cc: Optional[str]) -> MatchResult:
        """
        Resolved id for (person, cc) in the source-of-truth collection.

        Exact name + cost center first, then name only. Two or more
        name-only hits are ambiguous and resolve to nothing.
        """
        if not person:
            return MatchResult.unmatched()
        if cc:
            exact = await self.store.query(
                self.source_of_truth, name=person, cc=cc, has_person_id=True, limit=1
            )
            if exact:
                return MatchResult.matched(str(exact[0].get("personId")))

        candidates = await self.store.query(
            self.source_of_truth, name=person, has_person_id=True, limit=2
        )
        if not candidates:
            return MatchResult.unmatched()
        if len(candidates) > 1:
            logger.warning("propagation_ambiguous", person=person, candidates=len(candidates))
            return MatchResult.ambiguous()
        return MatchResult.matched(str(candidates[0].get("personId")))

    async def assign_from_source_of_truth(self, document: Document) -> PropagationOutcome:
        result = await self.find_person_id(person_of(document.data), document.get("cc") or None)
        if result.status is MatchStatus.UNMATCHED:
            return self._log(PropagationOutcome(
                PropagationAction.NOT_FOUND, document.collection, document.doc_id
            ))
        if result.status is MatchStatus.AMBIGUOUS:
            return self._log(PropagationOutcome(
                PropagationAction.AMBIGUOUS, document.collection, document.doc_id
            ))
        return await self.upsert_person_id(document.collection, document.doc_id, result.person_id)

    async def upsert_person_id(self, collection: str, doc_id: str, person_id: str) -> PropagationOutcome:
        """Guarded single-document upsert of ``personId``."""
        current = await self.store.get(collection, doc_id)
        if current is None:
            return self._log(PropagationOutcome(PropagationAction.SKIPPED, collection, doc_id, person_id))

        update = plan_person_id_update(current.data, person_id)
        outcome = PropagationOutcome(update.action, collection, doc_id, person_id)
        if update.patch is not None:
            await self.store.set(collection, doc_id, update.patch, merge=True)
            outcome.writes = 1
            if update.action is PropagationAction.CONFLICT:
                outcome.conflicts = 1
                self._report_conflict(current, update)
        self._log(outcome)

        if self.strict and update.action is PropagationAction.CONFLICT:
            conflict = update.patch["personIdConflict"]
            raise IdentityConflict(current.path, conflict["previous"], conflict["incoming"])
        return outcome

    # ─────────────────────────────────────────────────────────────────────────
    # Helpers
    # ─────────────────────────────────────────────────────────────────────────

    def _report_conflict(self, document: Document, update: PersonIdUpdate) -> None:
        conflict = update.patch["personIdConflict"]
        logger.warning(
            "propagation_conflict",
            path=document.path,
            previous=conflict["previous"],
            incoming=conflict["incoming"],
        )

    def _outcome(self, action: PropagationAction, event: WriteEvent, **context: Any) -> PropagationOutcome:
        outcome = PropagationOutcome(action, event.collection, event.doc_id)
        logger.debug("propagation_skipped", collection=event.collection, doc_id=event.doc_id, **context)
        return outcome

    def _log(self, outcome: PropagationOutcome) -> PropagationOutcome:
        log_propagation(
            logger, outcome.action.value, outcome.collection, outcome.doc_id,
            outcome.person_id, outcome.writes, conflicts=outcome.conflicts,
        )
        return outcome


def person_of(data: Mapping[str, Any]) -> str:
    return identity_display_name(data).strip()
