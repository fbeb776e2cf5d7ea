"""
CONSOLIDATED PERSON VIEW

Rebuilds one derived document per person from the latest employee master,
utilization and deployment plan records. The view is never patched: every
rebuild recomputes it from the three sources and replaces the stored document.

Field priorities:

    person                     identity > plan > utilization
    cc                         plan > identity > utilization
    team, department           plan > identity
    businessLine, ...          identity > plan
    email, company, ...        identity
    planLocation, grade        plan

Time-indexed maps are copied from their own source only.
"""

from __future__ import annotations

import asyncio
from dataclasses import asdict, dataclass, field
from typing import Any, Optional

from .canonical.normalization import split_person_name
from .config import Settings, settings as default_settings
from .logging_config import get_logger
from .store import Document, DocumentStore, now_iso

logger = get_logger(__name__)

IDENTITY = "identity"
PLAN = "plan"
UTILIZATION = "utilization"

FIELD_PRIORITIES: dict[str, tuple[str, ...]] = {
    "person": (IDENTITY, PLAN, UTILIZATION),
    "cc": (PLAN, IDENTITY, UTILIZATION),
    "team": (PLAN, IDENTITY),
    "department": (PLAN, IDENTITY),
    "businessLine": (IDENTITY, PLAN),
    "availableFrom": (IDENTITY, PLAN),
    "availableForStaffing": (IDENTITY, PLAN),
    "seniorityLevel": (IDENTITY, PLAN),
    "email": (IDENTITY,),
    "company": (IDENTITY,),
    "location": (IDENTITY,),
    "experienceSinceYear": (IDENTITY,),
    "profileUrl": (IDENTITY,),
    "planLocation": (PLAN,),
    "grade": (PLAN,),
}

DEFAULT_PROJECT = "Unknown"
DEFAULT_LOCATION = "Not specified"


@dataclass
class PersonSources:
    """Latest record of each source for one person id. Any may be missing."""
    person_id: str
    identity: Optional[Document] = None
    utilization: Optional[Document] = None
    plan: Optional[Document] = None

    @property
    def empty(self) -> bool:
        return self.identity is None and self.utilization is None and self.plan is None

    def source(self, name: str) -> dict[str, Any]:
        document = getattr(self, name)
        return document.data if document is not None else {}


@dataclass
class ConsolidationReport:
    person_ids: int = 0
    written: int = 0
    skipped: int = 0


@dataclass
class CompletenessReport:
    total_records: int = 0
    completeness_stats: dict[str, int] = field(default_factory=dict)
    sample_ids: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def _present(value: Any) -> bool:
    return value is not None and value != ""


def pick(field_name: str, sources: PersonSources) -> Any:
    """First present value of ``field_name`` in priority order."""
    for name in FIELD_PRIORITIES[field_name]:
        value = sources.source(name).get(field_name)
        if _present(value):
            return value
    return None


def deployment_entries(values: Any) -> dict[str, list[dict[str, Any]]]:
    result: dict[str, list[dict[str, Any]]] = {}
    for week, entries in (values or {}).items():
        if not isinstance(entries, list):
            continue
        result[week] = [
            {
                **entry,
                "project": entry.get("project") or DEFAULT_PROJECT,
                "location": entry.get("location") or DEFAULT_LOCATION,
                "utilizationPercent": entry.get("utilizationPercent"),
            }
            for entry in entries
            if isinstance(entry, dict)
        ]
    return result


def merge_person(sources: PersonSources, existing: Optional[dict[str, Any]] = None, preserve: tuple[str, ...] = ()) -> dict[str, Any]:
    """Build the consolidated document. Pure apart from the timestamp."""
    identity, utilization, plan = (
        sources.source(IDENTITY), sources.source(UTILIZATION), sources.source(PLAN)
    )
    now = now_iso()
    view: dict[str, Any] = {name: pick(name, sources) for name in FIELD_PRIORITIES}

    person = view["person"] or ""
    last_name, first_name = split_person_name(person)
    view.update({
        "personId": sources.person_id,
        "person": person,
        "lastName": last_name,
        "firstName": first_name,
        "utilization": dict(utilization.get("values") or {}),
        "deploymentPlan": deployment_entries(plan.get("values")),
        "lastUploadFiles": {
            "employees": identity.get("sourceFile"),
            "utilization": utilization.get("sourceFile"),
            "deployment_plan": plan.get("sourceFile"),
        },
        "dataCompleteness": {
            "hasMaster": sources.identity is not None,
            "hasUtilization": sources.utilization is not None,
            "hasDeploymentPlan": sources.plan is not None,
        },
        "createdAt": (existing or {}).get("createdAt") or now,
        "updatedAt": now,
    })
    if existing:
        for name in preserve:
            if name in existing and existing[name] is not None:
                view[name] = existing[name]
    return view


class ConsolidationMerger:
    """
    Rebuilds the consolidated collection.

    Usage:
        merger = ConsolidationMerger(store)
        await merger.consolidate_person(person_id)   # targeted repair
        await merger.consolidate_all()               # full population
    """

    def __init__(self, store: DocumentStore, settings: Optional[Settings] = None):
        self.store = store
        self.settings = settings or default_settings
        self.collections = self.settings.collections
        self.config = self.settings.consolidation

    async def _latest(self, collection: str, person_id: str) -> Optional[Document]:
        document = await self.store.get(collection, person_id)
        if document is not None:
            return document
        matches = await self.store.query(collection, person_id=person_id, limit=1)
        return matches[0] if matches else None

    async def load_sources(self, person_id: str) -> PersonSources:
        identity, utilization, plan = await asyncio.gather(
            self._latest(self.collections.employees, person_id),
            self._latest(self.collections.utilization, person_id),
            self._latest(self.collections.deployment_plan, person_id),
        )
        return PersonSources(person_id, identity, utilization, plan)

    async def build_view(self, person_id: str) -> Optional[dict[str, Any]]:
        """Consolidated document for ``person_id``; ``None`` when no source has it."""
        sources = await self.load_sources(person_id)
        if sources.empty:
            logger.debug("consolidation_no_sources", person_id=person_id)
            return None
        existing = await self.store.get(self.collections.consolidated, person_id)
        return merge_person(
            sources,
            existing.data if existing is not None else None,
            tuple(self.config.preserve_fields),
        )

    async def consolidate_person(self, person_id: str) -> Optional[dict[str, Any]]:
        view = await self.build_view(person_id)
        if view is None:
            return None
        await self.store.set(self.collections.consolidated, person_id, view, merge=False)
        logger.info("person_consolidated", person_id=person_id, **view["dataCompleteness"])
        return view

    async def observed_person_ids(self) -> list[str]:
        """Every person id seen in any of the three source collections."""
        ids: set[str] = set(await self.store.doc_ids(self.collections.employees))
        for collection in self.collections.watched():
            ids.update(await self.store.person_ids(collection))
        return sorted(ids)

    async def consolidate_all(self) -> ConsolidationReport:
        """Rebuild every person, ``chunk_size`` at a time; one batch per chunk."""
        person_ids = await self.observed_person_ids()
        report = ConsolidationReport(person_ids=len(person_ids))
        size = min(self.config.chunk_size, self.store.max_batch_operations)

        for start in range(0, len(person_ids), size):
            chunk = person_ids[start:start + size]
            views = await asyncio.gather(*(self.build_view(pid) for pid in chunk))
            batch = self.store.batch()
            for person_id, view in zip(chunk, views):
                if view is None:
                    report.skipped += 1
                    continue
                batch.set(self.collections.consolidated, person_id, view, merge=False)
            staged = len(batch)
            await batch.commit()
            report.written += staged

        logger.info(
            "consolidation_completed",
            person_ids=report.person_ids,
            written=report.written,
            skipped=report.skipped,
        )
        return report

    async def completeness_report(self, sample_size: int = 3) -> CompletenessReport:
        documents = await self.store.all(self.collections.consolidated)
        stats = {"hasMaster": 0, "hasUtilization": 0, "hasDeploymentPlan": 0, "hasAllThree": 0}
        for document in documents:
            flags = document.get("dataCompleteness") or {}
            for name in ("hasMaster", "hasUtilization", "hasDeploymentPlan"):
                if flags.get(name):
                    stats[name] += 1
            if all(flags.get(n) for n in ("hasMaster", "hasUtilization", "hasDeploymentPlan")):
                stats["hasAllThree"] += 1
        return CompletenessReport(
            total_records=len(documents),
            completeness_stats=stats,
            sample_ids=[d.doc_id for d in documents[:sample_size]],
        )
