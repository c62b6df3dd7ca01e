"""
Servicios de aplicacion.

Logica pura del sync: derivacion de filas y reconciliacion.
"""
from results_sync.application.services.reconciliation import (
    ReconciliationExecutor,
    chunked,
    ensure_unique_keys,
    plan_full_replace,
    plan_reconciliation,
)
from results_sync.application.services.row_deriver import (
    DeriverConfig,
    Fields,
    RowDeriver,
    normalize_visitors_remaining,
    select_winning_result,
)

__all__ = [
    "DeriverConfig",
    "Fields",
    "ReconciliationExecutor",
    "RowDeriver",
    "chunked",
    "ensure_unique_keys",
    "normalize_visitors_remaining",
    "plan_full_replace",
    "plan_reconciliation",
    "select_winning_result",
]
