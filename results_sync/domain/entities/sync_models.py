"""
Tipos del lado destino (Airtable) y opciones del sync.

Se mantienen libres de I/O para poder testearlos fácilmente.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Tuple


class RowMode(str, Enum):
    """Entidad que constituye una fila destino (y por tanto su clave natural)."""
    EXPERIMENT = "experiment"   # una fila por experimento, clave = experiment id
    VARIATION = "variation"     # una fila por variacion, clave = variation id


class SyncStrategy(str, Enum):
    """
    UPSERT actualiza en sitio (conserva metadata manual del record en Airtable).
    REPLACE borra todo y recrea (no deja filas residuales si cambia la clave).
    """
    UPSERT = "upsert"
    REPLACE = "replace"


class MetricSelection(str, Enum):
    TARGET = "target"     # metrica que coincide con (name, field, aggregator)
    PRIMARY = "primary"   # primera metrica del payload


class RunStatus(str, Enum):
    COMPLETE = "complete"
    PARTIAL = "partial"
    ABORTED = "aborted"


@dataclass(frozen=True)
class DesiredRow:
    """Fila deseada: clave natural + fields planos listos para Airtable."""

    natural_key: str
    fields: Dict[str, Any]


@dataclass(frozen=True)
class DestinationRecord:
    """Registro Airtable mínimo para el snapshot."""

    record_id: str
    fields: Dict[str, Any]


@dataclass
class DestinationSnapshot:
    """
    Estado actual de la tabla destino.

    - by_key: clave natural -> record_id
    - orphans: records sin clave o con clave repetida; nunca pueden
      reconciliarse y se borran al converger.
    """

    by_key: Dict[str, str] = field(default_factory=dict)
    orphans: List[str] = field(default_factory=list)


@dataclass(frozen=True)
class RecordUpdate:
    record_id: str
    fields: Dict[str, Any]


@dataclass
class ReconciliationPlan:
    creates: List[Dict[str, Any]] = field(default_factory=list)
    updates: List[RecordUpdate] = field(default_factory=list)
    deletes: List[str] = field(default_factory=list)
    # Si True, los deletes se ejecutan antes que los creates (estrategia REPLACE)
    deletes_first: bool = False

    @property
    def summary(self) -> Dict[str, int]:
        return {
            "creates": len(self.creates),
            "updates": len(self.updates),
            "deletes": len(self.deletes),
        }


@dataclass(frozen=True)
class OperationError:
    """Fallo de un batch de mutaciones (create/update/delete)."""

    operation: str
    record_count: int
    message: str


@dataclass
class ReconciliationReport:
    created: int = 0
    updated: int = 0
    deleted: int = 0
    errors: List[OperationError] = field(default_factory=list)

    @property
    def has_errors(self) -> bool:
        return bool(self.errors)


@dataclass
class SyncResult:
    """Resultado final visible de una corrida."""

    status: RunStatus
    desired_rows: int = 0
    skipped_experiments: List[Tuple[str, str]] = field(default_factory=list)
    # Proyectos cuyo listado de experimentos quedó truncado
    incomplete_projects: List[str] = field(default_factory=list)
    plan: Dict[str, int] = field(default_factory=dict)
    report: ReconciliationReport = field(default_factory=ReconciliationReport)
    error: str = ""

    @property
    def error_count(self) -> int:
        return len(self.report.errors)
