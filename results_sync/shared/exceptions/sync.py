"""
Excepciones del pipeline Optimizely -> Airtable.
"""
from typing import Any, Optional

from results_sync.shared.exceptions.base import AppException


class SyncConfigError(AppException):
    """Error de configuración del pipeline."""

    def __init__(self, message: str, setting: Optional[str] = None):
        details = {"setting": setting} if setting else None
        super().__init__(message=message, error_code="SYNC_CONFIG_ERROR", details=details)


class MalformedPayloadError(AppException):
    """Falta un campo de identidad requerido en un payload del origen."""

    def __init__(self, entity: str, field: str, payload: Any = None):
        super().__init__(
            message=f"{entity} sin campo requerido '{field}'",
            error_code="MALFORMED_PAYLOAD",
            details={"entity": entity, "field": field, "payload": payload},
        )
        self.entity = entity
        self.field = field


class DuplicateNaturalKeyError(AppException):
    """Dos filas deseadas comparten la misma clave natural en una corrida."""

    def __init__(self, natural_key: str):
        super().__init__(
            message=f"Clave natural duplicada en filas deseadas: {natural_key}",
            error_code="DUPLICATE_NATURAL_KEY",
            details={"natural_key": natural_key},
        )
        self.natural_key = natural_key


class ExternalApiError(AppException):
    """Error de integración HTTP con un servicio externo (tras reintentos)."""

    service = "external"

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(
            message=message,
            error_code=f"{self.service.upper()}_API_ERROR",
            details={"status_code": status_code} if status_code is not None else None,
        )
        self.status_code = status_code


class SourceApiError(ExternalApiError):
    """Error de integración con Optimizely."""

    service = "optimizely"


class DestinationApiError(ExternalApiError):
    """Error de integración con Airtable."""

    service = "airtable"


class SnapshotReadError(AppException):
    """No se pudo enumerar por completo la tabla destino."""

    def __init__(self, message: str):
        super().__init__(message=message, error_code="SNAPSHOT_READ_ERROR")


class TruncatedListingError(SourceApiError):
    """Un listado paginado llegó al máximo de páginas sin terminar."""

    def __init__(self, path: str, max_pages: int, items: Optional[list] = None):
        super().__init__(f"Optimizely {path}: se alcanzó el máximo de {max_pages} páginas; el listado está incompleto")
        self.path = path
        self.max_pages = max_pages
        self.items = items or []
