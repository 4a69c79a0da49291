import enum
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Tuple, Union

from .config import CLUSTER_HOST
from .exceptions import InvalidRangeError
from .timekeys import Granularity

# {host: {attribute: value}}
Record = Dict[str, Dict[str, Any]]


class Direction(enum.Enum):
    ASCENDING = 'append'
    DESCENDING = 'prepend'


@dataclass(frozen=True)
class VisibleWindow:
    """The range currently requested/displayed, both ends inclusive."""
    start: str
    end: str

    def __post_init__(self):
        if self.start > self.end:
            raise InvalidRangeError(f"window start {self.start} is after end {self.end}")

    def __str__(self):
        return f"[{self.start} .. {self.end}]"


@dataclass(frozen=True)
class DirectSeries:
    """Plain lookup of ``record[host][attribute]``."""
    host: str
    attribute: str

    @property
    def label(self) -> str:
        return self.attribute


@dataclass(frozen=True)
class DerivedSeries:
    """User-defined attribute computed by ``function(record[host])``."""
    host: str
    name: str
    function: Callable[[Dict[str, Any]], Any] = field(compare=False, repr=False)

    @property
    def label(self) -> str:
        return self.name


SeriesEntry = Union[DirectSeries, DerivedSeries]


def series_name(entry: SeriesEntry, host_count: int) -> str:
    """Bare attribute for a single host or the cluster, ``host/attribute`` otherwise."""
    if host_count <= 1 or entry.host == CLUSTER_HOST:
        return entry.label
    return f"{entry.host}/{entry.label}"


@dataclass
class RenderInstruction:
    id: str
    values: List[float]
    direction: Optional[Direction]  # None means the id is already displayed


@dataclass
class ViewContext:
    """
    Explicit view state shared by reference between the cache, the
    reconciler, the zoom controller and their owner.

    Components hold the same instance and read the fields they need when
    they need them, so a topic/id/granularity switch made by the owner is
    seen everywhere without re-wiring.
    """
    topic: str
    series_id: str
    granularity: Granularity
    window: VisibleWindow
    hosts: List[str] = field(default_factory=list)
    selector: List[SeriesEntry] = field(default_factory=list)

    @property
    def cache_key(self) -> Tuple[str, str, Granularity]:
        return self.topic, self.series_id, self.granularity

    def series_names(self) -> List[str]:
        host_count = len({entry.host for entry in self.selector})
        return [series_name(entry, host_count) for entry in self.selector]
