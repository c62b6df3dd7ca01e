"""
Configuración de fixtures para pytest.
"""
from __future__ import annotations

import itertools
from typing import Any, Dict, List, Optional

import pytest

from results_sync.domain.entities.sync_models import DestinationRecord, RecordUpdate
from results_sync.shared.exceptions.sync import (
    DestinationApiError,
    SourceApiError,
    TruncatedListingError,
)
from results_sync.infrastructure.external.airtable.airtable_client import (
    AIRTABLE_MAX_BATCH,
    AirtableTableConfig,
)


def make_lift(value: float, **overrides: Any) -> Dict[str, Any]:
    lift = {
        "value": value,
        "significance": 0.95,
        "visitors_remaining": 1200,
        "confidence_interval": [value - 1, value + 1],
    }
    lift.update(overrides)
    return lift


def make_results(metric_results: Dict[str, Any], **overrides: Any) -> Dict[str, Any]:
    """Payload de resultados con la métrica de revenue objetivo."""
    payload = {
        "start_time": "2024-03-01T10:00:00Z",
        "end_time": "2024-03-20T10:00:00Z",
        "metrics": [
            {"name": "Pageviews", "field": None, "aggregator": "count", "results": {}},
            {
                "name": "Universal Sale",
                "field": "revenue",
                "aggregator": "sum",
                "results": metric_results,
            },
        ],
    }
    payload.update(overrides)
    return payload


def make_experiment(experiment_id: int, status: str = "running", **overrides: Any) -> Dict[str, Any]:
    payload = {
        "id": experiment_id,
        "name": f"Experimento {experiment_id}",
        "status": status,
        "project_id": 1,
        "variations": [
            {"variation_id": experiment_id * 10 + 1, "name": "Original"},
            {"variation_id": experiment_id * 10 + 2, "name": "Variation #1"},
        ],
    }
    payload.update(overrides)
    return payload


class FakeAirtable:
    """
    Tabla Airtable en memoria: implementa iter_records y las mutaciones
    en batch con el mismo contrato que AirtableClient.
    """

    def __init__(self, key_field: str = "ID") -> None:
        self.table = AirtableTableConfig(table_name="Results export", key_field=key_field)
        self.records: Dict[str, Dict[str, Any]] = {}
        self.calls: List[tuple[str, int]] = []
        self.fail_operations: set[str] = set()
        self._ids = itertools.count(1)

    def seed(self, fields: Dict[str, Any], record_id: Optional[str] = None) -> str:
        record_id = record_id or f"rec{next(self._ids):04d}"
        self.records[record_id] = dict(fields)
        return record_id

    async def iter_records(self, *, fields=None, page_size: int = 100):
        for record_id, record_fields in list(self.records.items()):
            yield DestinationRecord(record_id=record_id, fields=dict(record_fields))

    async def create_many(self, rows: List[Dict[str, Any]]) -> List[str]:
        self._record_call("create", len(rows))
        return [self.seed(row) for row in rows]

    async def update_many(self, updates: List[RecordUpdate]) -> None:
        self._record_call("update", len(updates))
        for update in updates:
            self.records[update.record_id].update(update.fields)

    async def delete_many(self, record_ids: List[str]) -> None:
        self._record_call("delete", len(record_ids))
        for record_id in record_ids:
            del self.records[record_id]

    def keys(self) -> set[str]:
        return {str(fields.get(self.table.key_field)) for fields in self.records.values()}

    def _record_call(self, operation: str, size: int) -> None:
        assert size <= AIRTABLE_MAX_BATCH
        self.calls.append((operation, size))
        if operation in self.fail_operations:
            raise DestinationApiError(f"{operation} rechazado", status_code=422)


class FakeOptimizely:
    """Origen Optimizely en memoria (payloads crudos)."""

    def __init__(
        self,
        projects: List[Dict[str, Any]],
        experiments: Dict[Any, List[Dict[str, Any]]],
        results: Optional[Dict[Any, Optional[Dict[str, Any]]]] = None,
    ) -> None:
        self.projects = projects
        self.experiments = experiments
        self.results = results or {}
        self.results_requested: List[Any] = []
        self.failing_results: set[Any] = set()
        # project_id -> páginas servidas antes de cortar el listado
        self.page_caps: Dict[Any, int] = {}

    async def list_projects(self):
        return list(self.projects)

    async def list_experiments(self, project_id):
        experiments = list(self.experiments.get(project_id, []))
        if project_id in self.page_caps:
            cap = self.page_caps[project_id]
            raise TruncatedListingError("/experiments", cap, experiments[:cap])
        return experiments

    async def get_results(self, experiment_id):
        self.results_requested.append(experiment_id)
        if experiment_id in self.failing_results:
            raise SourceApiError("Optimizely error 503 tras 5 reintentos", status_code=503)
        return self.results.get(experiment_id)


@pytest.fixture
def fake_airtable() -> FakeAirtable:
    return FakeAirtable()
