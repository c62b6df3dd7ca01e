"""
Cliente mínimo de Optimizely REST API v2 (solo lectura).

Requisitos cubiertos:
- httpx async
- paginación por número de página (per_page + page)
- 204 No Content en resultados -> None
- rate-limit/backoff heredado de RetryingApiClient
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional

import httpx
from loguru import logger

from results_sync.infrastructure.external.http_client import RetryingApiClient
from results_sync.shared.exceptions.sync import SourceApiError, TruncatedListingError


@dataclass(frozen=True)
class OptimizelyCredentials:
    token: str


class OptimizelyClient(RetryingApiClient):
    """
    Cliente HTTP de Optimizely. Retorna JSON crudo; el parseo a entidades
    lo hace el caso de uso para poder aislar payloads mal formados.
    """

    error_class = SourceApiError
    service_name = "Optimizely"

    def __init__(
        self,
        credentials: OptimizelyCredentials,
        *,
        base_url: str = "https://api.optimizely.com/v2",
        page_size: int = 100,
        max_pages: int = 50,
        **kwargs: Any,
    ) -> None:
        super().__init__(
            base_url=base_url,
            headers={"Authorization": f"Bearer {credentials.token}"},
            **kwargs,
        )
        self._page_size = page_size
        self._max_pages = max_pages

    async def list_projects(self) -> list[dict[str, Any]]:
        return await self._get_paged("/projects", params={})

    async def list_experiments(self, project_id: Any) -> list[dict[str, Any]]:
        return await self._get_paged("/experiments", params={"project_id": project_id})

    async def get_results(self, experiment_id: Any) -> Optional[dict[str, Any]]:
        """Resultados de un experimento; None si la API responde 204 No Content."""
        resp = await self._request("GET", f"/experiments/{experiment_id}/results")
        return self._json_or_none(resp)

    async def _get_paged(self, path: str, *, params: dict[str, Any]) -> list[dict[str, Any]]:
        """
        Recorre páginas hasta recibir una página corta.

        La API no expone un indicador de "hay más": una página llena puede
        ser la última. Se corta también si una página no trae ids nuevos
        (la API ignoró el parámetro page).

        Si se llega a max_pages sin ver una página corta el listado puede
        estar incompleto: se lanza TruncatedListingError con lo leído.
        """
        items: list[dict[str, Any]] = []
        seen_ids: set[Any] = set()

        for page in range(1, self._max_pages + 1):
            query = {**params, "per_page": self._page_size, "page": page}
            payload = self._json_or_none(await self._request("GET", path, params=query)) or []
            if not isinstance(payload, list):
                raise SourceApiError(f"Optimizely devolvió un payload inesperado en {path}: {type(payload).__name__}")

            new_items = [
                item for item in payload
                if not (isinstance(item, dict) and item.get("id") in seen_ids)
            ]
            if payload and not new_items:
                break
            for item in new_items:
                if isinstance(item, dict):
                    seen_ids.add(item.get("id"))
            items.extend(new_items)

            if len(payload) < self._page_size:
                break
        else:
            logger.warning(f"Optimizely {path} {params}: máximo de {self._max_pages} páginas alcanzado")
            raise TruncatedListingError(path, self._max_pages, items)

        return items

    def _json_or_none(self, resp: httpx.Response) -> Any:
        # Optimizely API puede responder 204 No Content
        if resp.status_code == 204 or not resp.content:
            return None
        return self._json(resp)
