"""
Configuration for the workforce sync service.

All values can be overridden from the environment, e.g.
``WORKFORCE_DATABASE_URL=postgresql+asyncpg://...`` or
``WORKFORCE_INGESTION__BATCH_SIZE=200``.
"""

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings

from . import __version__ as APP_VERSION


class CollectionNames(BaseSettings):
    """Names of the document collections in the shared store."""

    employees: str = Field(
        default="employees",
        description="Employee master (PersonIdentity) collection."
    )
    utilization: str = Field(
        default="utilization",
        description="Historical utilization facts, keyed by person id."
    )
    deployment_plan: str = Field(
        default="deployment_plan",
        description="Forward deployment plan facts, keyed by person id."
    )
    consolidated: str = Field(
        default="consolidated",
        description="Derived per-person view. Never authoritative."
    )

    def watched(self) -> tuple[str, str, str]:
        """Collections whose writes trigger propagation."""
        return (self.employees, self.utilization, self.deployment_plan)


class IngestionConfig(BaseSettings):
    """Workbook parsing and batching limits."""

    # ─────────────────────────────────────────────────────────────────────────
    # BATCHING
    # ─────────────────────────────────────────────────────────────────────────
    batch_size: int = Field(
        default=400,
        description="Upserts staged per committed batch."
    )
    max_batch_operations: int = Field(
        default=500,
        description="Hard per-batch operation limit of the store."
    )

    # ─────────────────────────────────────────────────────────────────────────
    # HEADER DETECTION
    # ─────────────────────────────────────────────────────────────────────────
    master_header_scan_rows: int = Field(
        default=20,
        description="Rows scanned for the employee master header."
    )
    utilization_header_scan_rows: int = Field(
        default=20,
        description="Rows scanned for the utilization header."
    )
    plan_header_scan_rows: int = Field(
        default=8,
        description="Rows scanned for the deployment plan header."
    )
    week_label_scan_rows: int = Field(
        default=5,
        description="Top rows searched for week labels above a project column."
    )
    merged_lookahead_rows: int = Field(
        default=3,
        description="Rows walked upwards when a week label sits in a merged cell."
    )

    # ─────────────────────────────────────────────────────────────────────────
    # SHEET SELECTION (falls back to the first sheet)
    # ─────────────────────────────────────────────────────────────────────────
    master_sheet: str = "Search Results"
    utilization_sheet: str | None = None
    plan_sheet: str = "Einsatzplan"

    @field_validator("batch_size", "max_batch_operations")
    @classmethod
    def _positive(cls, value: int) -> int:
        if value < 1:
            raise ValueError("batch limits must be positive")
        return value

    @model_validator(mode="after")
    def _batch_within_limit(self) -> "IngestionConfig":
        if self.batch_size > self.max_batch_operations:
            raise ValueError(
                f"batch_size {self.batch_size} exceeds max_batch_operations "
                f"{self.max_batch_operations}"
            )
        return self


class ConsolidationConfig(BaseSettings):
    """Consolidated view rebuild settings."""

    chunk_size: int = Field(
        default=50,
        description="Person ids rebuilt concurrently per chunk in full-population mode."
    )
    preserve_fields: list[str] = Field(
        default_factory=list,
        description="Fields on a consolidated document owned by external collaborators. "
                    "Carried over on rebuild instead of being dropped."
    )


class Settings(BaseSettings):
    """Application settings."""

    # Service
    service_name: str = "workforce-sync"
    service_version: str = APP_VERSION

    # Store
    database_url: str = Field(
        default="sqlite+aiosqlite:///./workforce.db",
        description="SQLAlchemy async URL of the document store."
    )
    database_echo: bool = False

    collections: CollectionNames = Field(default_factory=CollectionNames)
    source_of_truth: str = Field(
        default="utilization",
        description="Collection whose resolved person ids are propagated to the others."
    )

    ingestion: IngestionConfig = Field(default_factory=IngestionConfig)
    consolidation: ConsolidationConfig = Field(default_factory=ConsolidationConfig)

    max_trigger_events: int = Field(
        default=10_000,
        description="Upper bound of write events handled per drain; exceeding it means "
                    "propagation is retriggering itself."
    )

    class Config:
        env_prefix = "WORKFORCE_"
        env_nested_delimiter = "__"

    @model_validator(mode="after")
    def _source_of_truth_is_watched(self) -> "Settings":
        if self.source_of_truth not in self.collections.watched():
            raise ValueError(
                f"source_of_truth {self.source_of_truth!r} is not one of "
                f"{self.collections.watched()}"
            )
        return self


# Global settings instance
settings = Settings()
