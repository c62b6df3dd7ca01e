"""
Entidades del dominio.
"""
from results_sync.domain.entities.experiment import (
    Experiment,
    Lift,
    Metric,
    MetricResult,
    Project,
    Reach,
    ResultsPayload,
    Variation,
    normalize_key,
)
from results_sync.domain.entities.sync_models import (
    DesiredRow,
    DestinationRecord,
    DestinationSnapshot,
    MetricSelection,
    OperationError,
    ReconciliationPlan,
    ReconciliationReport,
    RecordUpdate,
    RowMode,
    RunStatus,
    SyncResult,
    SyncStrategy,
)

__all__ = [
    "DesiredRow",
    "DestinationRecord",
    "DestinationSnapshot",
    "Experiment",
    "Lift",
    "Metric",
    "MetricResult",
    "MetricSelection",
    "OperationError",
    "Project",
    "Reach",
    "ReconciliationPlan",
    "ReconciliationReport",
    "RecordUpdate",
    "ResultsPayload",
    "RowMode",
    "RunStatus",
    "SyncResult",
    "SyncStrategy",
    "Variation",
    "normalize_key",
]
