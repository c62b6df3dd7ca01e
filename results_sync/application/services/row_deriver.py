"""
Derivacion de filas Airtable a partir de proyecto, experimento y resultados.

Transforma la estructura anidada de Optimizely a fields planos. Cada field
es una contribucion opcional con nombre; las contribuciones se acumulan en
una lista ordenada y se combinan una sola vez al final:

- Contribucion ausente -> el field no aparece ("no aplica").
- Contribucion con valor None -> null explicito ("conocido pero no disponible").

Airtable trata distinto omitir una columna y mandarla en null, por eso la
diferencia se preserva.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

from results_sync.domain.entities.experiment import (
    Experiment,
    Metric,
    MetricResult,
    Project,
    ResultsPayload,
    Variation,
)
from results_sync.domain.entities.sync_models import DesiredRow, MetricSelection, RowMode

# Optimizely usa max int64 (y a veces max uint64) para "sin estimacion"
VISITORS_REMAINING_SENTINEL = 2**63 - 1

DEFAULT_TARGET_METRIC = ("Universal Sale", "revenue", "sum")


class Fields:
    """Nombres de columnas en la tabla Airtable."""
    NAME = "Name"
    ID = "ID"
    PROJECT = "Project"
    STATUS = "Status"
    EXPERIMENT = "Experiment"
    EXPERIMENT_ID = "Experiment ID"
    START = "Start"
    END = "End"
    PRIMARY_METRIC = "Primary Metric"
    TOTAL_REVENUE = "Total Revenue"
    IMPROVEMENT = "Improvement"
    SIGNIFICANCE = "Statistical Significance"
    REMAINING_VISITORS = "Remaining Visitors"
    CI_LOWER = "Confidence Interval - Lower Bound"
    CI_UPPER = "Confidence Interval - Upper Bound"
    WINNING_VARIATION = "Winning Variation"
    TOTAL_VISITORS = "Total Visitors"


@dataclass(frozen=True)
class FieldContribution:
    name: str
    value: Any


@dataclass(frozen=True)
class DeriverConfig:
    """
    Config del RowDeriver.

    - row_mode: una fila por experimento (con variacion ganadora) o por variacion
    - metric_selection: metrica objetivo (revenue) o la primaria del experimento
    - target_metric: tupla (name, field, aggregator) de la metrica objetivo
    """

    row_mode: RowMode = RowMode.EXPERIMENT
    metric_selection: MetricSelection = MetricSelection.TARGET
    target_metric: Tuple[str, str, str] = DEFAULT_TARGET_METRIC


def normalize_visitors_remaining(value: Any) -> Optional[Any]:
    """Convierte el centinela de "sin estimacion" en None."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        number = value
    else:
        try:
            number = float(value)
        except (TypeError, ValueError):
            return None
    if number >= VISITORS_REMAINING_SENTINEL:
        return None
    return value


def select_winning_result(metric: Metric) -> Optional[MetricResult]:
    """
    Variacion con mayor lift.value entre las que tienen lift.

    Un valor posterior debe ser estrictamente mayor para desplazar al
    actual: en un empate gana la primera variacion encontrada.
    """
    winner: Optional[MetricResult] = None
    for result in metric.results.values():
        if result.lift is None:
            continue
        if winner is None or result.lift.value > winner.lift.value:
            winner = result
    return winner


def merge_contributions(contributions: List[FieldContribution]) -> Dict[str, Any]:
    """Combina en orden declarado; si un nombre se repite gana el ultimo."""
    fields: Dict[str, Any] = {}
    for contribution in contributions:
        fields[contribution.name] = contribution.value
    return fields


class RowDeriver:
    """
    Funcion pura (project, experiment, results) -> filas deseadas.

    Uso:
        deriver = RowDeriver(DeriverConfig(row_mode=RowMode.VARIATION))
        rows = deriver.derive(project, experiment, results)
    """

    def __init__(self, config: Optional[DeriverConfig] = None) -> None:
        self._config = config or DeriverConfig()

    @property
    def config(self) -> DeriverConfig:
        return self._config

    def derive(
        self,
        project: Project,
        experiment: Experiment,
        results: Optional[ResultsPayload],
    ) -> List[DesiredRow]:
        if experiment.is_archived:
            return []
        if not experiment.is_started:
            # Sin resultados reales aunque el payload venga informado
            results = None

        metric = self.select_metric(results) if results is not None else None

        if self._config.row_mode is RowMode.VARIATION:
            return [
                self._variation_row(project, experiment, variation, results, metric)
                for variation in experiment.variations
            ]
        return [self._experiment_row(project, experiment, results, metric)]

    def select_metric(self, results: ResultsPayload) -> Optional[Metric]:
        if not results.metrics:
            return None
        if self._config.metric_selection is MetricSelection.PRIMARY:
            return results.metrics[0]
        for metric in results.metrics:
            if metric.matches(self._config.target_metric):
                return metric
        return None

    def _experiment_row(
        self,
        project: Project,
        experiment: Experiment,
        results: Optional[ResultsPayload],
        metric: Optional[Metric],
    ) -> DesiredRow:
        contributions = [
            FieldContribution(Fields.NAME, experiment.name),
            FieldContribution(Fields.ID, experiment.id),
            FieldContribution(Fields.PROJECT, project.name),
            FieldContribution(Fields.STATUS, experiment.status),
        ]
        contributions += self._timing(results)

        if metric is not None:
            contributions += self._metric_name(metric)
            winner = select_winning_result(metric)
            if winner is not None:
                contributions += self._result_fields(winner)
                winner_name = winner.name or self._variation_name(experiment, winner.variation_id)
                if winner_name:
                    contributions.append(FieldContribution(Fields.WINNING_VARIATION, winner_name))
                contributions += self._reach(results, winner.variation_id)

        return DesiredRow(natural_key=experiment.key, fields=merge_contributions(contributions))

    def _variation_row(
        self,
        project: Project,
        experiment: Experiment,
        variation: Variation,
        results: Optional[ResultsPayload],
        metric: Optional[Metric],
    ) -> DesiredRow:
        contributions = [
            FieldContribution(Fields.NAME, variation.name),
            FieldContribution(Fields.ID, variation.variation_id),
            FieldContribution(Fields.EXPERIMENT, experiment.name),
            FieldContribution(Fields.EXPERIMENT_ID, experiment.id),
            FieldContribution(Fields.PROJECT, project.name),
            FieldContribution(Fields.STATUS, experiment.status),
        ]
        contributions += self._timing(results)

        if metric is not None:
            contributions += self._metric_name(metric)
            result = metric.results.get(variation.key)
            if result is not None:
                contributions += self._result_fields(result)

        if results is not None:
            contributions += self._reach(results, variation.key)

        return DesiredRow(natural_key=variation.key, fields=merge_contributions(contributions))

    def _timing(self, results: Optional[ResultsPayload]) -> List[FieldContribution]:
        if results is None:
            return []
        contributions = []
        if results.start_time is not None:
            contributions.append(FieldContribution(Fields.START, results.start_time))
        if results.end_time is not None:
            contributions.append(FieldContribution(Fields.END, results.end_time))
        return contributions

    def _metric_name(self, metric: Metric) -> List[FieldContribution]:
        if self._config.metric_selection is MetricSelection.PRIMARY and metric.name:
            return [FieldContribution(Fields.PRIMARY_METRIC, metric.name)]
        return []

    def _result_fields(self, result: MetricResult) -> List[FieldContribution]:
        contributions = []
        # Solo la metrica objetivo es monetaria (centavos)
        if self._config.metric_selection is MetricSelection.TARGET and result.value is not None:
            contributions.append(FieldContribution(Fields.TOTAL_REVENUE, result.value / 100))

        lift = result.lift
        if lift is None:
            return contributions

        contributions.append(FieldContribution(Fields.IMPROVEMENT, lift.value))
        if lift.significance is not None:
            contributions.append(FieldContribution(Fields.SIGNIFICANCE, lift.significance))
        # Null explicito solo para el centinela; sin dato el field se omite
        if lift.visitors_remaining is not None:
            contributions.append(
                FieldContribution(
                    Fields.REMAINING_VISITORS,
                    normalize_visitors_remaining(lift.visitors_remaining),
                )
            )
        if lift.confidence_interval is not None:
            lower, upper = lift.confidence_interval
            contributions += [
                FieldContribution(Fields.CI_LOWER, lower),
                FieldContribution(Fields.CI_UPPER, upper),
            ]
        return contributions

    def _reach(self, results: Optional[ResultsPayload], variation_key: str) -> List[FieldContribution]:
        if results is None or results.reach is None:
            return []
        if variation_key not in results.reach.variations:
            return []
        return [FieldContribution(Fields.TOTAL_VISITORS, results.reach.count_for(variation_key))]

    @staticmethod
    def _variation_name(experiment: Experiment, variation_key: str) -> Optional[str]:
        for variation in experiment.variations:
            if variation.key == variation_key:
                return variation.name
        return None
