import logging
from collections import deque
from typing import Deque, Dict, List, Optional, Tuple

from .models import Record, ViewContext, VisibleWindow
from .timekeys import approximately_equal

log = logging.getLogger("StreamExplorer.RangeCache")


class RangeCache:
    """
    Ordered, gap-aware store of fetched records for the active
    (topic, series id, granularity) of a ViewContext.

    The cache only grows at its edges: a record is prepended when it is
    older than everything held, appended when it is newer, and dropped
    otherwise. It never merges a range that starts before its earliest id;
    such a request invalidates it wholesale.
    """

    def __init__(self, context: ViewContext):
        self.context = context
        self._key = context.cache_key
        self._ids: Deque[str] = deque()
        self._records: Dict[str, Record] = {}

    def __len__(self):
        return len(self._ids)

    @property
    def is_empty(self) -> bool:
        return not self._ids

    @property
    def earliest(self) -> Optional[str]:
        return self._ids[0] if self._ids else None

    @property
    def latest(self) -> Optional[str]:
        return self._ids[-1] if self._ids else None

    def _matches_context(self) -> bool:
        return self._key == self.context.cache_key

    def reset(self):
        """Discard every cached record and re-key to the current context."""
        if self._ids:
            log.debug(f"Discarding {len(self._ids)} cached records for {self._key}")
        self._key = self.context.cache_key
        self._ids.clear()
        self._records.clear()

    def missing_range(self, desired: VisibleWindow) -> Optional[VisibleWindow]:
        """
        Return the sub-range of ``desired`` that still has to be fetched.

        None means ``desired`` is fully covered and should be replayed from
        ``snapshot()`` without touching the network.
        """
        if not self.context.granularity.cacheable:
            return desired

        if self.is_empty or not self._matches_context():
            self.reset()
            return desired

        earliest, latest = self._ids[0], self._ids[-1]
        if earliest < desired.start or approximately_equal(earliest, desired.start):
            if desired.end > latest:
                return VisibleWindow(latest, desired.end)
            return None

        log.debug(f"Desired range {desired} starts before cached {earliest}, invalidating cache")
        self.reset()
        return desired

    def insert(self, record_id: str, record: Record) -> bool:
        """Add a record at either edge. Returns False if it was dropped."""
        if not self.context.granularity.cacheable:
            return False
        if not self._matches_context():
            self.reset()

        if not self._ids:
            self._ids.append(record_id)
        elif record_id < self._ids[0]:
            self._ids.appendleft(record_id)
        elif record_id > self._ids[-1]:
            self._ids.append(record_id)
        else:
            return False
        self._records[record_id] = record
        return True

    def snapshot(self) -> List[Tuple[str, Record]]:
        return [(record_id, self._records[record_id]) for record_id in self._ids]
