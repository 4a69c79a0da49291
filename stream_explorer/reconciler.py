import logging
from numbers import Number
from typing import Dict, Iterable, List, Optional, Tuple

from .chart import ChartSink
from .config import CLUSTER_HOST, REDRAW_BATCH_SIZE
from .models import (
    DerivedSeries,
    Direction,
    Record,
    RenderInstruction,
    ViewContext,
    VisibleWindow,
)
from .range_cache import RangeCache

log = logging.getLogger("StreamExplorer.Reconciler")


def _is_number(value) -> bool:
    return isinstance(value, Number) and not isinstance(value, bool)


def cluster_record(payload: Record) -> Dict[str, float]:
    """Attribute-wise sum over every host except the synthetic cluster host."""
    cluster: Dict[str, float] = {}
    for host, attributes in payload.items():
        if host == CLUSTER_HOST or not isinstance(attributes, dict):
            continue
        for attribute, value in attributes.items():
            if _is_number(value):
                cluster[attribute] = cluster.get(attribute, 0) + value
    return cluster


class Reconciler:
    """
    Turns incoming (id, record) pairs into cache updates and ordered chart
    instructions.
    """

    def __init__(self, context: ViewContext, cache: RangeCache, chart: ChartSink,
                 redraw_batch_size: int = REDRAW_BATCH_SIZE):
        self.context = context
        self.cache = cache
        self.chart = chart
        self.redraw_batch_size = redraw_batch_size
        # Newest record seen per topic, cluster included; feeds host/attribute discovery.
        self.last_records: Dict[str, Record] = {}

    def resolve_values(self, record: Record) -> List[float]:
        values = []
        for entry in self.context.selector:
            host_values = record.get(entry.host)
            if not isinstance(host_values, dict):
                host_values = {}
            if isinstance(entry, DerivedSeries):
                values.append(self._call_derived(entry, host_values))
            else:
                value = host_values.get(entry.attribute, 0)
                values.append(value if _is_number(value) else 0)
        return values

    @staticmethod
    def _call_derived(entry: DerivedSeries, host_values: Dict) -> float:
        try:
            value = entry.function(host_values)
        except Exception as e:
            log.warning(f"Derived attribute '{entry.name}' failed for host '{entry.host}': {e}")
            return 0
        if not _is_number(value):
            log.warning(f"Derived attribute '{entry.name}' returned non-numeric {value!r}")
            return 0
        return value

    def direction_for(self, record_id: str) -> Optional[Direction]:
        first, last = self.chart.first_id, self.chart.last_id
        if last is None or record_id > last:
            return Direction.ASCENDING
        if record_id < first:
            return Direction.DESCENDING
        return None

    def on_incoming(self, record_id: str, payload: Record, is_live: bool = False,
                    force: bool = False) -> RenderInstruction:
        record = dict(payload)
        record[CLUSTER_HOST] = cluster_record(payload)

        instruction = RenderInstruction(record_id, self.resolve_values(record),
                                        self.direction_for(record_id))
        if instruction.direction is None:
            log.debug(f"Record {record_id} already displayed, not re-rendered")

        self.cache.insert(record_id, payload)
        self.last_records[self.context.topic] = record

        if is_live and record_id > self.context.window.end:
            self.context.window = VisibleWindow(self.context.window.start, record_id)

        self.chart.render(instruction, self.context.series_names())
        if self._should_redraw(force):
            self.chart.redraw()
        return instruction

    def _should_redraw(self, force: bool) -> bool:
        if force or not self.context.granularity.cacheable:
            return True
        return self.chart.point_count % self.redraw_batch_size == 0

    def replay(self, entries: Iterable[Tuple[str, Record]]):
        """Render cached entries in order, then redraw once."""
        count = 0
        for record_id, payload in entries:
            self.on_incoming(record_id, payload)
            count += 1
        if count:
            log.debug(f"Replayed {count} cached records")
        self.flush()

    def flush(self):
        self.chart.redraw()
