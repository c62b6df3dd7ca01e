"""
Lectura del snapshot de la tabla destino: clave natural -> record_id.

La enumeración debe completarse antes de calcular cualquier diff: una
página perdida haría que sus claves parezcan obsoletas y se borren en la
misma corrida. Cualquier error aborta con SnapshotReadError.
"""
from __future__ import annotations

from loguru import logger

from results_sync.domain.entities.experiment import normalize_key
from results_sync.domain.entities.sync_models import DestinationSnapshot
from results_sync.infrastructure.external.airtable.airtable_client import AirtableClient
from results_sync.shared.exceptions.sync import ExternalApiError, SnapshotReadError


class SnapshotReader:
    def __init__(self, airtable: AirtableClient) -> None:
        self._airtable = airtable

    async def load_snapshot(self) -> DestinationSnapshot:
        key_field = self._airtable.table.key_field
        snapshot = DestinationSnapshot()

        try:
            async for record in self._airtable.iter_records(fields=[key_field]):
                key = normalize_key(record.fields.get(key_field))
                if key is None or key in snapshot.by_key:
                    # Sin clave o repetido: no puede reconciliarse
                    snapshot.orphans.append(record.record_id)
                    continue
                snapshot.by_key[key] = record.record_id
        except ExternalApiError as e:
            raise SnapshotReadError(f"No se pudo leer la tabla destino completa: {e.message}") from e

        logger.info(
            f"Snapshot Airtable '{self._airtable.table.table_name}': "
            f"{len(snapshot.by_key)} records con clave, {len(snapshot.orphans)} huerfanos"
        )
        return snapshot
