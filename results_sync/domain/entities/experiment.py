"""
Modelo de datos del origen (Optimizely REST v2).

Los payloads de Optimizely son JSON profundamente opcionales. Cada entidad
expone un constructor from_payload que hace chequeos de presencia explicitos:

- Campos de identidad faltantes (ids, nombres, status) -> MalformedPayloadError.
- Subestructuras opcionales faltantes o mal formadas -> None / vacio, nunca error.
"""
from __future__ import annotations

from dataclasses import dataclass, field as dataclass_field
from typing import Any, Dict, List, Mapping, Optional, Tuple, Union

from results_sync.shared.exceptions.sync import MalformedPayloadError

SourceId = Union[int, str]

STATUS_ARCHIVED = "archived"
STATUS_NOT_STARTED = "not_started"


def normalize_key(value: Any) -> Optional[str]:
    """
    Normaliza un identificador a su forma de clave natural (string).

    123, "123" y 123.0 producen la misma clave "123". Airtable puede devolver
    un campo numerico como float aunque se haya escrito un entero.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    text = str(value).strip()
    return text or None


def _require(payload: Mapping[str, Any], key: str, entity: str) -> Any:
    value = payload.get(key)
    if value is None or (isinstance(value, str) and not value.strip()):
        raise MalformedPayloadError(entity, key, payload=dict(payload))
    return value


def _ensure_mapping(payload: Any, entity: str) -> Mapping[str, Any]:
    if not isinstance(payload, Mapping):
        raise MalformedPayloadError(entity, "<root>", payload=payload)
    return payload


def _as_number(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return value
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


@dataclass(frozen=True)
class Project:
    id: SourceId
    name: str

    @classmethod
    def from_payload(cls, payload: Any) -> "Project":
        payload = _ensure_mapping(payload, "Project")
        return cls(
            id=_require(payload, "id", "Project"),
            name=_require(payload, "name", "Project"),
        )


@dataclass(frozen=True)
class Variation:
    """Un brazo de tratamiento dentro de un experimento."""

    variation_id: SourceId
    name: str

    @property
    def key(self) -> str:
        return normalize_key(self.variation_id)

    @classmethod
    def from_payload(cls, payload: Any) -> "Variation":
        payload = _ensure_mapping(payload, "Variation")
        return cls(
            variation_id=_require(payload, "variation_id", "Variation"),
            name=_require(payload, "name", "Variation"),
        )


@dataclass(frozen=True)
class Experiment:
    id: SourceId
    name: str
    status: str
    variations: Tuple[Variation, ...] = ()

    @property
    def key(self) -> str:
        return normalize_key(self.id)

    @property
    def is_archived(self) -> bool:
        return self.status == STATUS_ARCHIVED

    @property
    def is_started(self) -> bool:
        return self.status != STATUS_NOT_STARTED

    @classmethod
    def from_payload(cls, payload: Any) -> "Experiment":
        payload = _ensure_mapping(payload, "Experiment")
        raw_variations = payload.get("variations") or []
        return cls(
            id=_require(payload, "id", "Experiment"),
            name=_require(payload, "name", "Experiment"),
            status=_require(payload, "status", "Experiment"),
            variations=tuple(Variation.from_payload(v) for v in raw_variations),
        )


@dataclass(frozen=True)
class Lift:
    """
    Comparacion estadistica de una variacion contra el baseline.

    visitors_remaining se guarda tal cual llega; la normalizacion del
    valor centinela (max int) la hace el RowDeriver.
    """

    value: float
    significance: Optional[float] = None
    visitors_remaining: Optional[float] = None
    confidence_interval: Optional[Tuple[float, float]] = None

    @classmethod
    def from_payload(cls, payload: Any) -> Optional["Lift"]:
        if not isinstance(payload, Mapping):
            return None
        value = _as_number(payload.get("value"))
        if value is None:
            # Un lift sin valor no permite comparar variaciones
            return None

        interval = payload.get("confidence_interval")
        confidence_interval = None
        if isinstance(interval, (list, tuple)) and len(interval) == 2:
            confidence_interval = (interval[0], interval[1])

        return cls(
            value=value,
            significance=payload.get("significance"),
            visitors_remaining=payload.get("visitors_remaining"),
            confidence_interval=confidence_interval,
        )


@dataclass(frozen=True)
class MetricResult:
    """Resultado de una metrica para una variacion (value en centavos)."""

    variation_id: str
    value: Optional[float] = None
    lift: Optional[Lift] = None
    name: Optional[str] = None

    @classmethod
    def from_payload(cls, variation_id: str, payload: Any) -> Optional["MetricResult"]:
        if not isinstance(payload, Mapping):
            return None
        return cls(
            variation_id=variation_id,
            value=_as_number(payload.get("value")),
            lift=Lift.from_payload(payload.get("lift")),
            name=payload.get("name"),
        )


@dataclass(frozen=True)
class Metric:
    name: Optional[str]
    field: Optional[str]
    aggregator: Optional[str]
    # Orden de insercion = orden del payload (relevante para el desempate)
    results: Dict[str, MetricResult] = dataclass_field(default_factory=dict)

    def matches(self, target: Tuple[str, str, str]) -> bool:
        return (self.name, self.field, self.aggregator) == tuple(target)

    @classmethod
    def from_payload(cls, payload: Any) -> Optional["Metric"]:
        if not isinstance(payload, Mapping):
            return None
        results: Dict[str, MetricResult] = {}
        raw_results = payload.get("results")
        if isinstance(raw_results, Mapping):
            for raw_key, raw_result in raw_results.items():
                key = normalize_key(raw_key)
                result = MetricResult.from_payload(key, raw_result) if key else None
                if result is not None:
                    results[key] = result
        return cls(
            name=payload.get("name"),
            field=payload.get("field"),
            aggregator=payload.get("aggregator"),
            results=results,
        )


@dataclass(frozen=True)
class Reach:
    """Visitantes por variacion (variation_id -> count)."""

    variations: Dict[str, Optional[int]] = dataclass_field(default_factory=dict)

    def count_for(self, variation_key: str) -> Optional[int]:
        return self.variations.get(variation_key)

    @classmethod
    def from_payload(cls, payload: Any) -> Optional["Reach"]:
        if not isinstance(payload, Mapping):
            return None
        raw_variations = payload.get("variations")
        if not isinstance(raw_variations, Mapping):
            return None
        variations: Dict[str, Optional[int]] = {}
        for raw_key, entry in raw_variations.items():
            key = normalize_key(raw_key)
            if key and isinstance(entry, Mapping) and "count" in entry:
                variations[key] = entry.get("count")
        return cls(variations=variations)


@dataclass(frozen=True)
class ResultsPayload:
    start_time: Optional[str] = None
    end_time: Optional[str] = None
    metrics: Tuple[Metric, ...] = ()
    reach: Optional[Reach] = None

    @classmethod
    def from_payload(cls, payload: Any) -> Optional["ResultsPayload"]:
        """None si Optimizely no devolvio contenido (204)."""
        if payload is None:
            return None
        payload = _ensure_mapping(payload, "ResultsPayload")
        metrics: List[Metric] = []
        for raw_metric in payload.get("metrics") or []:
            metric = Metric.from_payload(raw_metric)
            if metric is not None:
                metrics.append(metric)
        return cls(
            start_time=payload.get("start_time"),
            end_time=payload.get("end_time"),
            metrics=tuple(metrics),
            reach=Reach.from_payload(payload.get("reach")),
        )
