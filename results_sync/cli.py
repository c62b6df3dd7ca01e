"""
CLI: Optimizely -> Airtable (one-way sync de resultados de experimentos).

Uso recomendado:
  - Ejecutar como job (cron/systemd timer/scheduler del proveedor).
  - Cada corrida recalcula el set completo de filas deseadas.

Variables de entorno requeridas:
  - OPTIMIZELY_API_TOKEN
  - AIRTABLE_API_TOKEN
  - AIRTABLE_BASE_ID

Ejecución:
  results-sync
  results-sync --dry-run
  results-sync --row-mode variation --strategy replace

Códigos de salida: 0 completo, 2 parcial, 1 abortado o error de configuración.
"""
from __future__ import annotations

import argparse
import asyncio
from pathlib import Path
from typing import Optional, Sequence

from dotenv import load_dotenv
from loguru import logger

from results_sync.application.use_cases.results_sync_use_cases import build_from_settings
from results_sync.core.config import get_settings
from results_sync.core.logging_config import configure_logging
from results_sync.domain.entities.sync_models import RowMode, RunStatus, SyncResult, SyncStrategy
from results_sync.shared.exceptions.sync import SyncConfigError

EXIT_CODES = {
    RunStatus.COMPLETE: 0,
    RunStatus.PARTIAL: 2,
    RunStatus.ABORTED: 1,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="results-sync",
        description="Sincroniza resultados de experimentos de Optimizely en una tabla Airtable.",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Calcula el plan (creates/updates/deletes) sin modificar Airtable.",
    )
    parser.add_argument(
        "--row-mode",
        choices=[m.value for m in RowMode],
        default=None,
        help="Una fila por experimento o por variación (override de SYNC_ROW_MODE).",
    )
    parser.add_argument(
        "--strategy",
        choices=[s.value for s in SyncStrategy],
        default=None,
        help="upsert (actualiza en sitio) o replace (borra y recrea). Override de SYNC_STRATEGY.",
    )
    parser.add_argument(
        "--env-file",
        default=None,
        help="Archivo .env adicional a cargar antes de leer la configuración.",
    )
    return parser


async def run_sync(args: argparse.Namespace) -> SyncResult:
    settings = get_settings()
    configure_logging(settings)

    use_case, optimizely, airtable = build_from_settings(
        settings,
        dry_run=args.dry_run,
        row_mode=args.row_mode,
        strategy=args.strategy,
    )
    async with optimizely, airtable:
        return await use_case.run()


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    # Cargar variables desde .env si existe (sin pisar el entorno real)
    if args.env_file:
        load_dotenv(Path(args.env_file), override=False)
    load_dotenv(Path.cwd() / ".env", override=False)

    try:
        result = asyncio.run(run_sync(args))
    except SyncConfigError as e:
        logger.error(e.message)
        return EXIT_CODES[RunStatus.ABORTED]

    logger.info(
        f"Resultado: status={result.status.value}, filas_deseadas={result.desired_rows}, "
        f"plan={result.plan}, errores={result.error_count}"
    )
    return EXIT_CODES[result.status]


if __name__ == "__main__":
    raise SystemExit(main())
