"""
Caso de uso: sincronización Optimizely -> Airtable.

Diseño (resumen):
- Lee el snapshot completo de Airtable (clave natural -> record_id)
- Lista proyectos y experimentos de Optimizely (fan-out acotado)
- Trae resultados solo de experimentos iniciados
- Deriva las filas deseadas (RowDeriver)
- Calcula el plan (upsert o replace) y lo ejecuta en batches

Orden estricto entre fases: ninguna mutación se emite antes de tener
el snapshot completo y todas las filas deseadas calculadas.
"""
from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Any, Iterable, List, Mapping, Optional, Tuple

from loguru import logger

from results_sync.application.services.reconciliation import (
    DestinationGateway,
    ReconciliationExecutor,
    plan_full_replace,
    plan_reconciliation,
)
from results_sync.application.services.row_deriver import DeriverConfig, RowDeriver
from results_sync.core.config import Settings
from results_sync.domain.entities.experiment import (
    Experiment,
    Project,
    ResultsPayload,
    normalize_key,
)
from results_sync.domain.entities.sync_models import (
    DesiredRow,
    MetricSelection,
    ReconciliationPlan,
    RowMode,
    RunStatus,
    SyncResult,
    SyncStrategy,
)
from results_sync.infrastructure.external.airtable.airtable_client import (
    AIRTABLE_MAX_BATCH,
    AirtableClient,
    AirtableCredentials,
    AirtableTableConfig,
)
from results_sync.infrastructure.external.airtable.snapshot_reader import SnapshotReader
from results_sync.infrastructure.external.optimizely.optimizely_client import (
    OptimizelyClient,
    OptimizelyCredentials,
)
from results_sync.shared.exceptions.base import AppException
from results_sync.shared.exceptions.sync import (
    MalformedPayloadError,
    SourceApiError,
    SyncConfigError,
    TruncatedListingError,
)


@dataclass(frozen=True)
class SyncJobConfig:
    """
    Config de una corrida.

    skip_malformed: si True, un experimento mal formado (o cuyos resultados
    no se pudieron traer) se omite con log y sus filas existentes se
    conservan; si False, aborta la corrida completa.
    """

    row_mode: RowMode = RowMode.EXPERIMENT
    strategy: SyncStrategy = SyncStrategy.UPSERT
    excluded_projects: Tuple[str, ...] = ("Dev Test Project",)
    skip_malformed: bool = True
    source_max_concurrency: int = 8
    destination_max_concurrency: int = 4
    batch_size: int = AIRTABLE_MAX_BATCH
    dry_run: bool = False


@dataclass
class _ExperimentOutcome:
    rows: List[DesiredRow] = field(default_factory=list)
    skipped: Optional[Tuple[str, str]] = None
    protected_keys: List[str] = field(default_factory=list)


@dataclass
class CollectedRows:
    rows: List[DesiredRow] = field(default_factory=list)
    skipped: List[Tuple[str, str]] = field(default_factory=list)
    protected_keys: List[str] = field(default_factory=list)
    incomplete_projects: List[str] = field(default_factory=list)


class ResultsSyncUseCase:
    """
    Orquestador del pipeline para una tabla.
    """

    def __init__(
        self,
        *,
        source: OptimizelyClient,
        snapshot_reader: SnapshotReader,
        destination: DestinationGateway,
        deriver: RowDeriver,
        config: SyncJobConfig,
    ) -> None:
        self._source = source
        self._snapshot_reader = snapshot_reader
        self._destination = destination
        self._deriver = deriver
        self._config = config

    async def run(self) -> SyncResult:
        """
        Ejecuta una corrida completa. Nunca termina en éxito parcial silencioso:
        el estado final es complete, partial (con errores) o aborted.
        """
        logger.info(
            f"Iniciando sync Optimizely -> Airtable "
            f"(modo={self._config.row_mode.value}, estrategia={self._config.strategy.value})"
        )

        try:
            snapshot = await self._snapshot_reader.load_snapshot()
            collected = await self.collect_desired_rows()
            plan = self.build_plan(collected, snapshot)
        except AppException as e:
            logger.error(f"Sync abortado antes de mutar Airtable: {e.message}")
            return SyncResult(status=RunStatus.ABORTED, error=e.message)

        result = SyncResult(
            status=RunStatus.COMPLETE,
            desired_rows=len(collected.rows),
            skipped_experiments=collected.skipped,
            incomplete_projects=collected.incomplete_projects,
            plan=plan.summary,
        )
        if collected.incomplete_projects:
            result.status = RunStatus.PARTIAL
            result.error = (
                "Listado de experimentos incompleto en: "
                + ", ".join(collected.incomplete_projects)
            )

        if self._config.dry_run:
            logger.info(f"Dry run: plan calculado sin ejecutar {plan.summary}")
            return result

        logger.info("Aplicando cambios en Airtable...")
        executor = ReconciliationExecutor(
            self._destination,
            batch_size=self._config.batch_size,
            max_concurrency=self._config.destination_max_concurrency,
        )
        result.report = await executor.execute(plan)

        if result.report.has_errors:
            result.status = RunStatus.PARTIAL
            logger.warning(
                f"Sync parcial: {result.error_count} errores. "
                f"created={result.report.created}, updated={result.report.updated}, "
                f"deleted={result.report.deleted}"
            )
        elif result.status is RunStatus.PARTIAL:
            logger.warning(f"Sync parcial: {result.error}")
        else:
            logger.success(
                f"Sync completado. created={result.report.created}, "
                f"updated={result.report.updated}, deleted={result.report.deleted}"
            )
        return result

    def build_plan(self, collected: CollectedRows, snapshot) -> ReconciliationPlan:
        if collected.incomplete_projects:
            # Sin el listado completo no se sabe qué filas son obsoletas:
            # solo se crean y actualizan filas, ningún record con clave se borra
            logger.warning(
                "Listado incompleto: se omiten los deletes de records con clave "
                f"(estrategia {self._config.strategy.value} degradada a upsert)"
            )
            return plan_reconciliation(
                collected.rows,
                snapshot,
                protected_keys=list(snapshot.by_key),
            )
        if self._config.strategy is SyncStrategy.REPLACE:
            return plan_full_replace(collected.rows, snapshot, protected_keys=collected.protected_keys)
        return plan_reconciliation(collected.rows, snapshot, protected_keys=collected.protected_keys)

    async def collect_desired_rows(self) -> CollectedRows:
        """Trae proyectos, experimentos y resultados, y deriva todas las filas."""
        semaphore = asyncio.Semaphore(self._config.source_max_concurrency)
        excluded = set(self._config.excluded_projects)

        projects = [Project.from_payload(raw) for raw in await self._source.list_projects()]
        projects = [p for p in projects if p.name not in excluded]
        logger.info(f"{len(projects)} proyectos a sincronizar")

        collected = CollectedRows()

        async def fetch_experiments(project: Project) -> List[Tuple[Project, Any]]:
            async with semaphore:
                try:
                    raw_experiments = await self._source.list_experiments(project.id)
                except TruncatedListingError as e:
                    if not self._config.skip_malformed:
                        raise
                    logger.warning(f"Proyecto '{project.name}': {e.message}")
                    collected.incomplete_projects.append(project.name)
                    raw_experiments = e.items
            logger.debug(f"Proyecto '{project.name}': {len(raw_experiments)} experimentos")
            return [(project, raw) for raw in raw_experiments]

        per_project = await asyncio.gather(*(fetch_experiments(p) for p in projects))
        units = [unit for units in per_project for unit in units]

        outcomes = await asyncio.gather(
            *(self._process_experiment(project, raw, semaphore) for project, raw in units)
        )

        for outcome in outcomes:
            collected.rows.extend(outcome.rows)
            collected.protected_keys.extend(outcome.protected_keys)
            if outcome.skipped:
                collected.skipped.append(outcome.skipped)

        logger.info(
            f"Filas deseadas: {len(collected.rows)} "
            f"(experimentos omitidos: {len(collected.skipped)})"
        )
        return collected

    async def _process_experiment(
        self,
        project: Project,
        raw_experiment: Any,
        semaphore: asyncio.Semaphore,
    ) -> _ExperimentOutcome:
        try:
            experiment = Experiment.from_payload(raw_experiment)
            # La API no permite filtrar archivados
            if experiment.is_archived:
                return _ExperimentOutcome()

            results: Optional[ResultsPayload] = None
            if experiment.is_started:
                async with semaphore:
                    raw_results = await self._source.get_results(experiment.id)
                results = ResultsPayload.from_payload(raw_results)

            return _ExperimentOutcome(rows=self._deriver.derive(project, experiment, results))
        except (MalformedPayloadError, SourceApiError) as e:
            if not self._config.skip_malformed:
                raise
            experiment_id = raw_experiment.get("id") if isinstance(raw_experiment, Mapping) else None
            logger.warning(
                f"Omitiendo experimento {experiment_id} del proyecto '{project.name}': {e.message}"
            )
            return _ExperimentOutcome(
                skipped=(str(experiment_id), e.message),
                protected_keys=self._recoverable_keys(raw_experiment),
            )

    def _recoverable_keys(self, raw_experiment: Any) -> List[str]:
        """Claves naturales que aún se pueden leer de un experimento omitido."""
        if not isinstance(raw_experiment, Mapping):
            return []
        if self._config.row_mode is RowMode.EXPERIMENT:
            key = normalize_key(raw_experiment.get("id"))
            return [key] if key else []
        keys = []
        for raw_variation in raw_experiment.get("variations") or []:
            if isinstance(raw_variation, Mapping):
                key = normalize_key(raw_variation.get("variation_id"))
                if key:
                    keys.append(key)
        return keys


def _parse_option(enum_cls, raw: str, setting: str):
    try:
        return enum_cls(raw.strip().lower())
    except ValueError as e:
        allowed = ", ".join(member.value for member in enum_cls)
        raise SyncConfigError(f"{setting}='{raw}' no es válido (opciones: {allowed})", setting=setting) from e


def _required(settings: Settings, names: Iterable[str]) -> None:
    for name in names:
        if not getattr(settings, name):
            raise SyncConfigError(f"Falta variable de entorno obligatoria: {name}", setting=name)


def build_from_settings(
    settings: Settings,
    *,
    dry_run: bool = False,
    row_mode: Optional[str] = None,
    strategy: Optional[str] = None,
) -> tuple[ResultsSyncUseCase, OptimizelyClient, AirtableClient]:
    """
    Constructor “oficial” del pipeline a partir de Settings.

    Env vars requeridas:
    - OPTIMIZELY_API_TOKEN
    - AIRTABLE_API_TOKEN
    - AIRTABLE_BASE_ID

    Retorna también los clientes para que el caller los cierre.
    """
    _required(settings, ("OPTIMIZELY_API_TOKEN", "AIRTABLE_API_TOKEN", "AIRTABLE_BASE_ID"))

    if not 1 <= settings.AIRTABLE_BATCH_SIZE <= AIRTABLE_MAX_BATCH:
        raise SyncConfigError(
            f"AIRTABLE_BATCH_SIZE debe estar entre 1 y {AIRTABLE_MAX_BATCH}",
            setting="AIRTABLE_BATCH_SIZE",
        )

    job_config = SyncJobConfig(
        row_mode=_parse_option(RowMode, row_mode or settings.SYNC_ROW_MODE, "SYNC_ROW_MODE"),
        strategy=_parse_option(SyncStrategy, strategy or settings.SYNC_STRATEGY, "SYNC_STRATEGY"),
        excluded_projects=tuple(settings.excluded_projects),
        skip_malformed=settings.SYNC_SKIP_MALFORMED,
        source_max_concurrency=max(1, settings.SOURCE_MAX_CONCURRENCY),
        destination_max_concurrency=max(1, settings.DESTINATION_MAX_CONCURRENCY),
        batch_size=settings.AIRTABLE_BATCH_SIZE,
        dry_run=dry_run,
    )
    deriver = RowDeriver(
        DeriverConfig(
            row_mode=job_config.row_mode,
            metric_selection=_parse_option(
                MetricSelection, settings.SYNC_METRIC_SELECTION, "SYNC_METRIC_SELECTION"
            ),
            target_metric=(
                settings.SYNC_TARGET_METRIC_NAME,
                settings.SYNC_TARGET_METRIC_FIELD,
                settings.SYNC_TARGET_METRIC_AGGREGATOR,
            ),
        )
    )

    http_options = {"timeout_s": settings.HTTP_TIMEOUT_S, "max_retries": settings.HTTP_MAX_RETRIES}
    optimizely = OptimizelyClient(
        OptimizelyCredentials(token=settings.OPTIMIZELY_API_TOKEN),
        base_url=settings.OPTIMIZELY_API_BASE_URL,
        page_size=settings.OPTIMIZELY_PAGE_SIZE,
        max_pages=settings.OPTIMIZELY_MAX_PAGES,
        **http_options,
    )
    airtable = AirtableClient(
        AirtableCredentials(token=settings.AIRTABLE_API_TOKEN, base_id=settings.AIRTABLE_BASE_ID),
        AirtableTableConfig(
            table_name=settings.AIRTABLE_TABLE_NAME,
            key_field=settings.AIRTABLE_KEY_FIELD,
        ),
        base_url=settings.AIRTABLE_API_BASE_URL,
        **http_options,
    )

    use_case = ResultsSyncUseCase(
        source=optimizely,
        snapshot_reader=SnapshotReader(airtable),
        destination=airtable,
        deriver=deriver,
        config=job_config,
    )
    return use_case, optimizely, airtable
