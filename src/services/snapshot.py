"""Current values of every cost gauge, replaced atomically on each refresh.

The snapshot doubles as a ``prometheus_client`` custom collector: it is
registered on the exporter's own ``CollectorRegistry`` and rendered by
``generate_latest`` on every scrape.
"""

from __future__ import annotations

import threading
from collections.abc import Iterable, Iterator

from prometheus_client.core import GaugeMetricFamily
from prometheus_client.registry import Collector

from helpers.constants import APP_LOGGER
from services.label_schema import LabelSchema

Rows = dict[tuple[str, ...], float]
LOGGER = APP_LOGGER.bind(component="snapshot")


class MetricSnapshot(Collector):
    """Thread-safe mapping ``metric name -> label tuple -> value``.

    Only :meth:`replace` mutates it; scrapes read under the same lock, so a
    reader sees either the whole previous refresh or the whole new one.
    """

    def __init__(self, schemas: Iterable[LabelSchema]) -> None:
        self._lock = threading.Lock()
        self._schemas: dict[str, LabelSchema] = {
            s.metric.metric_name: s for s in schemas
        }
        self._rows: dict[str, Rows] = {name: {} for name in self._schemas}

    @property
    def schemas(self) -> dict[str, LabelSchema]:
        return dict(self._schemas)

    def replace(self, staged: dict[str, Rows]) -> int:
        """Clear every metric then publish ``staged``; returns the row count.

        Rows of unknown metrics or with the wrong number of label values are
        dropped with an error log.
        """
        published = 0
        with self._lock:
            for rows in self._rows.values():
                rows.clear()
            for name, rows in staged.items():
                schema = self._schemas.get(name)
                if schema is None:
                    LOGGER.error(msg="Unknown metric in refresh", metric_name=name)
                    continue
                for labels, value in rows.items():
                    if len(labels) != len(schema.names):
                        LOGGER.error(
                            msg="Label cardinality mismatch, row skipped",
                            metric_name=name,
                            labels=list(labels),
                            expected=list(schema.names),
                        )
                        continue
                    self._rows[name][labels] = value
                    published += 1
        return published

    def rows(self, metric_name: str) -> Rows:
        """Copy of the current rows of one metric."""
        with self._lock:
            return dict(self._rows.get(metric_name, {}))

    def row_count(self) -> int:
        with self._lock:
            return sum(len(rows) for rows in self._rows.values())

    # ── prometheus_client Collector interface ─────────────────────────────

    def _family(self, schema: LabelSchema) -> GaugeMetricFamily:
        return GaugeMetricFamily(
            schema.metric.metric_name,
            schema.metric.metric_description,
            labels=list(schema.names),
        )

    def describe(self) -> Iterator[GaugeMetricFamily]:
        for schema in self._schemas.values():
            yield self._family(schema)

    def collect(self) -> Iterator[GaugeMetricFamily]:
        with self._lock:
            families = []
            for name, schema in self._schemas.items():
                family = self._family(schema)
                for labels, value in self._rows[name].items():
                    family.add_metric(list(labels), value)
                families.append(family)
        yield from families
