"""
Configuracion central del job de sincronizacion.
Gestiona variables de entorno y las convierte en objetos de configuracion
explicitos que se pasan a cada colaborador (sin handles globales de tabla).
"""
from typing import List

from pydantic import Field, computed_field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """
    Clase de configuracion del job.
    Lee variables de entorno y proporciona valores por defecto.

    Los tokens no tienen valor por defecto util: la validacion se hace
    al construir el job (ver build_from_settings), no al importar.
    """

    # Optimizely (origen)
    OPTIMIZELY_API_TOKEN: str = Field(default="")
    OPTIMIZELY_API_BASE_URL: str = Field(default="https://api.optimizely.com/v2")
    # 100 es el maximo per_page que acepta la API
    OPTIMIZELY_PAGE_SIZE: int = Field(default=100)
    OPTIMIZELY_MAX_PAGES: int = Field(default=50)

    # Airtable (destino)
    AIRTABLE_API_TOKEN: str = Field(default="")
    AIRTABLE_API_BASE_URL: str = Field(default="https://api.airtable.com/v0")
    AIRTABLE_BASE_ID: str = Field(default="")
    AIRTABLE_TABLE_NAME: str = Field(default="Results export")
    AIRTABLE_KEY_FIELD: str = Field(default="ID")
    # Limite de registros por llamada de la API de Airtable
    AIRTABLE_BATCH_SIZE: int = Field(default=10)

    # Comportamiento del sync
    SYNC_ROW_MODE: str = Field(default="experiment")
    SYNC_STRATEGY: str = Field(default="upsert")
    SYNC_METRIC_SELECTION: str = Field(default="target")
    SYNC_TARGET_METRIC_NAME: str = Field(default="Universal Sale")
    SYNC_TARGET_METRIC_FIELD: str = Field(default="revenue")
    SYNC_TARGET_METRIC_AGGREGATOR: str = Field(default="sum")
    SYNC_EXCLUDED_PROJECTS: str = Field(default="Dev Test Project")
    SYNC_SKIP_MALFORMED: bool = Field(default=True)

    # Concurrencia y red
    SOURCE_MAX_CONCURRENCY: int = Field(default=8)
    DESTINATION_MAX_CONCURRENCY: int = Field(default=4)
    HTTP_TIMEOUT_S: float = Field(default=30.0)
    HTTP_MAX_RETRIES: int = Field(default=5)

    # Logging
    LOG_LEVEL: str = Field(default="INFO")
    LOG_FILE: str = Field(default="")

    @computed_field
    @property
    def excluded_projects(self) -> List[str]:
        """Lista de nombres de proyecto que nunca se sincronizan."""
        return parse_name_list(self.SYNC_EXCLUDED_PROJECTS)

    class Config:
        """Configuracion de Pydantic."""
        env_file = ".env"
        case_sensitive = True
        extra = "ignore"


def parse_name_list(raw: str) -> List[str]:
    """
    Parsea una lista separada por comas.
    Ignora entradas vacias y espacios alrededor de cada nombre.
    """
    return [name.strip() for name in (raw or "").split(",") if name.strip()]


def get_settings() -> Settings:
    """Construye Settings leyendo el entorno actual."""
    return Settings()
