"""
SPREADSHEET INGESTION

One ingestor per export. All of them resolve a layout once, map rows to typed
records, match against a fresh identity index and commit in bounded batches.
"""

from .base import BaseIngestor
from .deployment_plan import DeploymentPlanIngestor
from .layouts import LayoutDescriptor, MasterLayout, PlanLayout, UtilizationLayout
from .master import MasterIngestor
from .utilization import UtilizationIngestor

__all__ = [
    'BaseIngestor',
    'DeploymentPlanIngestor',
    'LayoutDescriptor',
    'MasterIngestor',
    'MasterLayout',
    'PlanLayout',
    'UtilizationIngestor',
    'UtilizationLayout',
]
