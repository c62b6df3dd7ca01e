"""
Motor de reconciliacion filas deseadas -> tabla Airtable.

Diseño (resumen):
- plan_reconciliation: diff por clave natural contra el snapshot del destino.
    * clave presente en snapshot -> update (y se marca como reconciliada)
    * clave ausente -> create
    * claves del snapshot no reconciliadas + huerfanos -> delete
- plan_full_replace: alternativa que borra todo y recrea cada fila deseada.
- ReconciliationExecutor: ejecuta el plan en batches del tamaño maximo del
  destino, con fan-out concurrente acotado por semaforo.

Los errores de un batch no cancelan a sus hermanos; se acumulan en el
reporte para que la convergencia parcial sea visible.
"""
from __future__ import annotations

import asyncio
from typing import (
    Any,
    Awaitable,
    Callable,
    Dict,
    Iterable,
    List,
    Optional,
    Protocol,
    Sequence,
    TypeVar,
)

from loguru import logger

from results_sync.domain.entities.sync_models import (
    DesiredRow,
    DestinationSnapshot,
    OperationError,
    ReconciliationPlan,
    ReconciliationReport,
    RecordUpdate,
)
from results_sync.shared.exceptions.sync import DuplicateNaturalKeyError, ExternalApiError

T = TypeVar("T")

DEFAULT_BATCH_SIZE = 10


class DestinationGateway(Protocol):
    """Operaciones de mutacion del destino (ver AirtableClient)."""

    async def create_many(self, rows: List[Dict[str, Any]]) -> List[str]: ...

    async def update_many(self, updates: List[RecordUpdate]) -> None: ...

    async def delete_many(self, record_ids: List[str]) -> None: ...


def chunked(items: Sequence[T], size: int) -> List[List[T]]:
    """Parte una secuencia en bloques de tamaño fijo (el ultimo puede ser menor)."""
    if size <= 0:
        raise ValueError("size debe ser positivo")
    return [list(items[i:i + size]) for i in range(0, len(items), size)]


def ensure_unique_keys(desired_rows: Iterable[DesiredRow]) -> None:
    """Rechaza la corrida si dos filas deseadas comparten clave natural."""
    seen = set()
    for row in desired_rows:
        if row.natural_key in seen:
            raise DuplicateNaturalKeyError(row.natural_key)
        seen.add(row.natural_key)


def plan_reconciliation(
    desired_rows: Sequence[DesiredRow],
    snapshot: DestinationSnapshot,
    *,
    protected_keys: Iterable[str] = (),
) -> ReconciliationPlan:
    """
    Calcula creates/updates/deletes minimos.

    protected_keys: claves cuyo record no debe borrarse aunque no haya fila
    deseada (experimentos omitidos por datos mal formados en esta corrida).
    """
    ensure_unique_keys(desired_rows)
    protected = set(protected_keys)

    # Copia de trabajo: el snapshot del caller no se modifica
    pending: Dict[str, str] = dict(snapshot.by_key)
    plan = ReconciliationPlan()

    for row in desired_rows:
        record_id = pending.pop(row.natural_key, None)
        if record_id is None:
            plan.creates.append(dict(row.fields))
        else:
            plan.updates.append(RecordUpdate(record_id=record_id, fields=dict(row.fields)))

    for key, record_id in pending.items():
        if key not in protected:
            plan.deletes.append(record_id)
    plan.deletes.extend(snapshot.orphans)
    return plan


def plan_full_replace(
    desired_rows: Sequence[DesiredRow],
    snapshot: DestinationSnapshot,
    *,
    protected_keys: Iterable[str] = (),
) -> ReconciliationPlan:
    """
    Borra todos los records existentes y crea cada fila deseada.

    No deja filas residuales aunque cambie la derivacion de la clave natural,
    pero pierde la metadata manual asociada a cada record_id.
    """
    ensure_unique_keys(desired_rows)
    protected = set(protected_keys)
    deletes = [record_id for key, record_id in snapshot.by_key.items() if key not in protected]
    deletes.extend(snapshot.orphans)
    return ReconciliationPlan(
        creates=[dict(row.fields) for row in desired_rows],
        deletes=deletes,
        deletes_first=True,
    )


class ReconciliationExecutor:
    """
    Ejecuta un ReconciliationPlan contra el destino.

    Uso:
        executor = ReconciliationExecutor(airtable, batch_size=10, max_concurrency=4)
        report = await executor.execute(plan)
    """

    def __init__(
        self,
        gateway: DestinationGateway,
        *,
        batch_size: int = DEFAULT_BATCH_SIZE,
        max_concurrency: int = 4,
    ) -> None:
        self._gateway = gateway
        self._batch_size = batch_size
        self._max_concurrency = max_concurrency

    async def execute(self, plan: ReconciliationPlan) -> ReconciliationReport:
        report = ReconciliationReport()
        # Un unico semaforo: creates y updates concurrentes comparten el limite
        semaphore = asyncio.Semaphore(self._max_concurrency)
        logger.info(f"Ejecutando plan de reconciliacion: {plan.summary}")

        if plan.deletes_first:
            report.deleted = await self._run("delete", plan.deletes, self._gateway.delete_many, report, semaphore)
            if report.has_errors and plan.creates:
                # Crear sobre un borrado incompleto duplicaria filas
                logger.error(
                    f"Deletes incompletos: se omiten {len(plan.creates)} creates para no duplicar filas"
                )
                report.errors.append(
                    OperationError(
                        operation="create",
                        record_count=len(plan.creates),
                        message="omitido: el borrado previo no se completo",
                    )
                )
                return report
            report.created = await self._run("create", plan.creates, self._gateway.create_many, report, semaphore)
            return report

        created, updated = await asyncio.gather(
            self._run("create", plan.creates, self._gateway.create_many, report, semaphore),
            self._run("update", plan.updates, self._gateway.update_many, report, semaphore),
        )
        report.created = created
        report.updated = updated
        report.deleted = await self._run("delete", plan.deletes, self._gateway.delete_many, report, semaphore)
        return report

    async def _run(
        self,
        operation: str,
        items: Sequence[Any],
        call: Callable[[List[Any]], Awaitable[Any]],
        report: ReconciliationReport,
        semaphore: asyncio.Semaphore,
    ) -> int:
        """Ejecuta una operacion en batches concurrentes; retorna records afectados."""
        if not items:
            return 0

        batches = chunked(items, self._batch_size)

        async def run_batch(batch: List[Any]) -> Optional[OperationError]:
            async with semaphore:
                try:
                    await call(batch)
                    return None
                except ExternalApiError as e:
                    logger.error(f"Fallo {operation} de {len(batch)} records: {e.message}")
                    return OperationError(
                        operation=operation,
                        record_count=len(batch),
                        message=e.message,
                    )

        outcomes = await asyncio.gather(*(run_batch(batch) for batch in batches))

        affected = 0
        for batch, error in zip(batches, outcomes):
            if error is None:
                affected += len(batch)
            else:
                report.errors.append(error)

        logger.debug(f"{operation}: {affected}/{len(items)} records en {len(batches)} batches")
        return affected
