"""
Configuracion de loguru para el job.
"""
import sys

from loguru import logger

from results_sync.core.config import Settings


def configure_logging(settings: Settings) -> None:
    """
    Reemplaza el handler por defecto de loguru por uno con el nivel configurado.
    Si LOG_FILE esta definido, agrega ademas un archivo rotativo.
    """
    logger.remove()
    logger.add(sys.stderr, level=settings.LOG_LEVEL)

    if settings.LOG_FILE:
        logger.add(
            settings.LOG_FILE,
            rotation="50 MB",
            retention="10 days",
            level=settings.LOG_LEVEL
        )
