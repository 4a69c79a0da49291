"""
Chart sink interface and an in-memory chart model.

The engine only ever appends or prepends points; the sink owns the ordered
x-axis and one value array per series, in selector order.
"""

import logging
from collections import deque
from dataclasses import dataclass, field
from typing import Callable, Deque, Dict, List, Optional, Protocol, Sequence, Tuple

from .models import Direction, RenderInstruction

log = logging.getLogger("StreamExplorer.Chart")


class ChartSink(Protocol):
    """What the reconciler needs from a chart widget."""

    @property
    def first_id(self) -> Optional[str]: ...

    @property
    def last_id(self) -> Optional[str]: ...

    @property
    def point_count(self) -> int: ...

    def render(self, instruction: RenderInstruction, names: Sequence[str]) -> None: ...
    def redraw(self) -> None: ...
    def clear(self) -> None: ...


@dataclass
class ChartSeries:
    name: str
    data: Deque[float] = field(default_factory=deque)


class ChartModel:
    """ChartSink keeping the chart's option arrays in memory."""

    def __init__(self, on_redraw: Optional[Callable[["ChartModel"], None]] = None):
        self.x_axis: Deque[str] = deque()
        self.series: List[ChartSeries] = []
        self.legend: List[str] = []
        self.redraw_count = 0
        self._on_redraw = on_redraw

    @property
    def first_id(self) -> Optional[str]:
        return self.x_axis[0] if self.x_axis else None

    @property
    def last_id(self) -> Optional[str]:
        return self.x_axis[-1] if self.x_axis else None

    @property
    def point_count(self) -> int:
        return len(self.x_axis)

    def render(self, instruction: RenderInstruction, names: Sequence[str]):
        if not self.series:
            # Series are created lazily so the names follow the selector in effect
            # when the first point arrives.
            for name in names:
                self.series.append(ChartSeries(name))
                self.legend.append(name)

        if instruction.direction is None:
            return
        if len(instruction.values) != len(self.series):
            log.warning(f"Dropping point {instruction.id}: {len(instruction.values)} values "
                        f"for {len(self.series)} series")
            return

        if instruction.direction is Direction.ASCENDING:
            self.x_axis.append(instruction.id)
            for series, value in zip(self.series, instruction.values):
                series.data.append(value)
        else:
            self.x_axis.appendleft(instruction.id)
            for series, value in zip(self.series, instruction.values):
                series.data.appendleft(value)

    def redraw(self):
        self.redraw_count += 1
        if self._on_redraw:
            self._on_redraw(self)

    def clear(self):
        self.x_axis.clear()
        self.series = []
        self.legend = []

    def rows(self) -> List[Tuple[str, Dict[str, float]]]:
        """Displayed points in order, as (id, {series name: value})."""
        columns = [(s.name, list(s.data)) for s in self.series]
        return [
            (record_id, {name: values[i] for name, values in columns})
            for i, record_id in enumerate(self.x_axis)
        ]
