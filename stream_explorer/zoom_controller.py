import datetime
import enum
import logging
from typing import Callable, Optional, Protocol

from .config import DEFAULT_ZOOM_END, DEFAULT_ZOOM_START
from .models import ViewContext, VisibleWindow
from .range_cache import RangeCache
from .timekeys import default_lookback, shift, to_instant, to_record_id

log = logging.getLogger("StreamExplorer.ZoomController")


class ZoomState(enum.Enum):
    IDLE = 'idle'
    BACKFILL_PENDING = 'backfill_pending'
    TAIL_PENDING = 'tail_pending'


class BoundedFetcher(Protocol):
    async def start_bounded(self, window: VisibleWindow,
                            on_done: Optional[Callable[[Optional[BaseException]], None]] = None): ...


class ZoomController:
    """
    Watches the chart's zoom extent (percent of the full data range) and
    turns edge drags into bounded fetches.

    Dragging the left handle to 0% without changing the extent width asks
    for older data, dragging the right handle to 100% asks for newer data.
    Any change of width is a plain re-scale and only updates the remembered
    width.
    """

    def __init__(self, context: ViewContext, cache: RangeCache, fetcher: BoundedFetcher,
                 start_pct: float = DEFAULT_ZOOM_START, end_pct: float = DEFAULT_ZOOM_END,
                 clock: Callable[[], datetime.datetime] = datetime.datetime.now):
        self.context = context
        self.cache = cache
        self.fetcher = fetcher
        self.width = end_pct - start_pct
        self.state = ZoomState.IDLE
        self.session = None
        self._clock = clock

    async def on_zoom(self, start_pct: float, end_pct: float) -> Optional[VisibleWindow]:
        """Handle one zoom observation; returns the window being fetched, if any."""
        width = end_pct - start_pct
        if self.state is not ZoomState.IDLE:
            log.debug(f"Zoom {start_pct}-{end_pct} ignored while {self.state.value}")
            return None

        granularity = self.context.granularity
        lookback = default_lookback(granularity)
        window = self.context.window

        if start_pct == 0 and end_pct != 100 and width == self.width:
            new_start = to_record_id(shift(to_instant(window.start), -lookback, granularity), granularity)
            desired = VisibleWindow(new_start, window.start)
            self.context.window = VisibleWindow(new_start, window.end)
            pending = ZoomState.BACKFILL_PENDING
            log.info(f"Requesting older data {desired}")
        elif end_pct == 100 and start_pct != 0 and width == self.width:
            candidate = shift(to_instant(window.end), lookback, granularity)
            now = self._clock()
            if candidate > now:
                candidate = now
            new_end = to_record_id(candidate, granularity)
            if new_end <= window.end:
                log.debug(f"Window already ends at {window.end}, nothing newer to request")
                return None
            desired = VisibleWindow(window.end, new_end)
            self.context.window = VisibleWindow(window.start, new_end)
            pending = ZoomState.TAIL_PENDING
            log.info(f"Requesting newer data {desired}")
        else:
            self.width = width
            return None

        missing = self.cache.missing_range(desired)
        if missing is None or missing.start == missing.end:
            log.debug(f"Nothing to fetch for {desired}")
            return None

        self.state = pending
        self.session = await self.fetcher.start_bounded(missing, on_done=self._on_done)
        return missing

    def reset(self, start_pct: float = DEFAULT_ZOOM_START, end_pct: float = DEFAULT_ZOOM_END):
        """Forget a pending fetch and the remembered extent, e.g. after the chart was rebuilt."""
        self.width = end_pct - start_pct
        self.state = ZoomState.IDLE
        self.session = None

    def _on_done(self, error: Optional[BaseException] = None):
        if error is not None:
            log.warning(f"Zoom fetch failed while {self.state.value}: {error}")
        self.state = ZoomState.IDLE
