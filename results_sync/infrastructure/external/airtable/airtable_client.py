"""
Cliente mínimo de Airtable REST API (sin SDKs externos).

Requisitos cubiertos:
- httpx async
- paginación por offset
- rate-limit/backoff (429, 5xx)
- mutaciones en batch (máximo 10 records por llamada) con typecast
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, AsyncIterator, Optional
from urllib.parse import quote

from results_sync.domain.entities.sync_models import DestinationRecord, RecordUpdate
from results_sync.infrastructure.external.http_client import RetryingApiClient
from results_sync.shared.exceptions.sync import DestinationApiError

# Limite de records por request de create/update/delete
AIRTABLE_MAX_BATCH = 10


@dataclass(frozen=True)
class AirtableCredentials:
    token: str
    base_id: str


@dataclass(frozen=True)
class AirtableTableConfig:
    """Tabla destino y columna que guarda la clave natural."""

    table_name: str = "Results export"
    key_field: str = "ID"


class AirtableClient(RetryingApiClient):
    """
    Cliente HTTP de Airtable para una tabla.

    Importante:
    - Todas las mutaciones piden typecast: los valores derivados son
      primitivas Python (strings ISO, floats) y Airtable los convierte
      al tipo declarado de cada columna.
    - No parte batches: el caller (ReconciliationExecutor) ya entrega
      bloques de como máximo AIRTABLE_MAX_BATCH.
    """

    error_class = DestinationApiError
    service_name = "Airtable"

    def __init__(
        self,
        credentials: AirtableCredentials,
        table: AirtableTableConfig,
        *,
        base_url: str = "https://api.airtable.com/v0",
        **kwargs: Any,
    ) -> None:
        super().__init__(
            base_url=base_url,
            headers={
                "Authorization": f"Bearer {credentials.token}",
                "Content-Type": "application/json",
            },
            **kwargs,
        )
        self._table = table
        self._table_path = f"/{credentials.base_id}/{quote(table.table_name, safe='')}"

    @property
    def table(self) -> AirtableTableConfig:
        return self._table

    async def iter_records(
        self,
        *,
        fields: Optional[list[str]] = None,
        page_size: int = 100,
    ) -> AsyncIterator[DestinationRecord]:
        """
        Itera todos los registros de la tabla, página por página.

        - Maneja paginación por 'offset' hasta que Airtable deja de devolverlo
        """
        offset: Optional[str] = None

        while True:
            query: list[tuple[str, Any]] = [("pageSize", page_size)]
            if offset:
                query.append(("offset", offset))
            # Airtable permite repetir "fields[]" en querystring.
            for f in fields or []:
                query.append(("fields[]", f))

            payload = self._json(await self._request("GET", self._table_path, params=query))

            for rec in payload.get("records") or []:
                rec_id = rec.get("id")
                if not rec_id:
                    # Caso raro; preferimos fallar temprano y visible.
                    raise DestinationApiError("Airtable devolvió un record sin 'id'")
                yield DestinationRecord(record_id=rec_id, fields=rec.get("fields") or {})

            offset = payload.get("offset")
            if not offset:
                break

    async def list_all(self, *, fields: Optional[list[str]] = None) -> list[DestinationRecord]:
        return [record async for record in self.iter_records(fields=fields)]

    async def create_many(self, rows: list[dict[str, Any]]) -> list[str]:
        """Crea records y retorna sus ids asignados por Airtable."""
        self._check_batch(len(rows))
        body = {"records": [{"fields": fields} for fields in rows], "typecast": True}
        payload = self._json(await self._request("POST", self._table_path, json=body))
        return [rec.get("id") for rec in payload.get("records") or []]

    async def update_many(self, updates: list[RecordUpdate]) -> None:
        self._check_batch(len(updates))
        body = {
            "records": [{"id": u.record_id, "fields": u.fields} for u in updates],
            "typecast": True,
        }
        await self._request("PATCH", self._table_path, json=body)

    async def delete_many(self, record_ids: list[str]) -> None:
        if not record_ids:
            return
        self._check_batch(len(record_ids))
        query = [("records[]", record_id) for record_id in record_ids]
        await self._request("DELETE", self._table_path, params=query)

    @staticmethod
    def _check_batch(size: int) -> None:
        if size > AIRTABLE_MAX_BATCH:
            raise ValueError(f"Airtable acepta máximo {AIRTABLE_MAX_BATCH} records por llamada (recibidos {size})")
