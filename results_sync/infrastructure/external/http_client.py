"""
Base comun para los clientes HTTP del job (httpx async).

Requisitos cubiertos:
- timeout por llamada
- rate-limit/backoff (429, 5xx, timeouts)
- sin reintentos ciegos de operaciones no idempotentes
"""
from __future__ import annotations

import asyncio
from typing import Any, Optional, Type

import httpx
from loguru import logger

from results_sync.shared.exceptions.sync import ExternalApiError

IDEMPOTENT_METHODS = frozenset({"GET", "PUT", "PATCH", "DELETE"})


class RetryingApiClient:
    """
    Request HTTP con backoff, compartido por Optimizely y Airtable.

    Estrategia:
    - 429: respeta Retry-After si existe, si no exponencial con jitter simple.
      Un 429 significa que el request fue rechazado, asi que se reintenta
      incluso un POST.
    - 5xx y timeouts: exponencial con jitter, solo para metodos idempotentes.
      Un POST que expira pudo haberse aplicado: reintentarlo podria duplicar filas.
    - 4xx (no 429): error inmediato (config/auth mal).
    """

    error_class: Type[ExternalApiError] = ExternalApiError
    service_name = "api"

    def __init__(
        self,
        *,
        base_url: str,
        headers: dict[str, str],
        client: Optional[httpx.AsyncClient] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        timeout_s: float = 30.0,
        max_retries: int = 5,
        min_backoff_s: float = 0.8,
        max_backoff_s: float = 20.0,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._headers = headers
        self._max_retries = max_retries
        self._min_backoff_s = min_backoff_s
        self._max_backoff_s = max_backoff_s
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=timeout_s, transport=transport)

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()

    def _json(self, resp: httpx.Response) -> Any:
        """Decodifica el body; un 2xx con JSON invalido es error del servicio."""
        try:
            return resp.json()
        except ValueError as e:
            raise self.error_class(
                f"{self.service_name} devolvió JSON inválido: {e}",
                status_code=resp.status_code,
            ) from e

    def _backoff_s(self, attempt: int) -> float:
        # Exponencial simple + jitter proporcional
        base = min(self._max_backoff_s, self._min_backoff_s * (2**attempt))
        return base + (0.15 * base)

    async def _request(
        self,
        method: str,
        path: str,
        *,
        params: Any = None,
        json: Any = None,
    ) -> httpx.Response:
        url = f"{self._base_url}{path}"
        idempotent = method.upper() in IDEMPOTENT_METHODS

        for attempt in range(self._max_retries + 1):
            try:
                resp = await self._client.request(
                    method,
                    url,
                    params=params,
                    json=json,
                    headers=self._headers,
                )
            except httpx.TimeoutException as e:
                if not idempotent or attempt >= self._max_retries:
                    raise self.error_class(
                        f"{self.service_name} timeout en {method} {path} tras {attempt} reintentos: {e}"
                    ) from e
                sleep_s = self._backoff_s(attempt)
                logger.warning(f"{self.service_name} timeout en {method} {path}, reintentando en {sleep_s:.1f}s")
                await asyncio.sleep(sleep_s)
                continue
            except httpx.HTTPError as e:
                raise self.error_class(f"{self.service_name} error de red en {method} {path}: {e}") from e

            if 200 <= resp.status_code < 300:
                return resp

            # Errores recuperables
            retryable = resp.status_code == 429 or (idempotent and 500 <= resp.status_code < 600)
            if retryable:
                if attempt >= self._max_retries:
                    raise self.error_class(
                        f"{self.service_name} error {resp.status_code} tras {attempt} reintentos: {resp.text}",
                        status_code=resp.status_code,
                    )

                retry_after = resp.headers.get("Retry-After")
                if retry_after:
                    try:
                        sleep_s = float(retry_after)
                    except ValueError:
                        sleep_s = self._min_backoff_s
                else:
                    sleep_s = self._backoff_s(attempt)

                logger.warning(
                    f"{self.service_name} respondio {resp.status_code} en {method} {path}, "
                    f"reintentando en {sleep_s:.1f}s"
                )
                await asyncio.sleep(sleep_s)
                continue

            # Errores no recuperables
            raise self.error_class(
                f"{self.service_name} request falló {resp.status_code}: {resp.text}",
                status_code=resp.status_code,
            )

        raise self.error_class(f"{self.service_name} sin respuesta en {method} {path}")
