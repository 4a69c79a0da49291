"""
Explorer: the owner of one chart view.

Wires the range cache, reconciler, chart and zoom controller to a stream
transport, and enforces the ordering rules between fetches:

* at most one bounded fetch and at most one live-tail stream are open;
* auto-refresh is always disabled before a bounded fetch starts, so the
  live tail and a bounded fetch never write to the cache at the same time;
* a failed live tail reconnects after a fixed delay for as long as
  auto-refresh stays enabled, a failed bounded fetch is reported instead.
"""

import asyncio
import contextlib
import datetime
import enum
import logging
from typing import Callable, Dict, List, Optional

from .chart import ChartModel, ChartSink
from .config import AUTOFRESH_RESUME_WINDOW_SECONDS, FOREVER, LIVE_RECONNECT_DELAY_SECONDS
from .exceptions import InvalidRangeError
from .models import ViewContext, VisibleWindow
from .profile import AttributeRef, Profile
from .range_cache import RangeCache
from .reconciler import Reconciler
from .stream_session import StreamSession, Transport
from .timekeys import Granularity, approximately_equal, resolve_window, to_instant, to_record_id
from .zoom_controller import ZoomController

log = logging.getLogger("StreamExplorer.Explorer")


class AutoRefreshState(enum.Enum):
    DISABLED = 'disabled'
    CONNECTING = 'connecting'  # waiting out the reconnect delay
    STREAMING = 'streaming'


def _log_notification(message: str):
    log.error(message)


class Explorer:
    def __init__(self, profile: Profile, transport: Transport, chart: Optional[ChartSink] = None,
                 notifier: Optional[Callable[[str], None]] = None,
                 reconnect_delay: float = LIVE_RECONNECT_DELAY_SECONDS,
                 clock: Callable[[], datetime.datetime] = datetime.datetime.now):
        self.profile = profile
        self.transport = transport
        self.chart = chart if chart is not None else ChartModel()
        self.notifier = notifier or _log_notification
        self.reconnect_delay = reconnect_delay
        self._clock = clock

        self.context = ViewContext(
            topic=profile.topic,
            series_id=profile.series_id,
            granularity=profile.unit,
            window=resolve_window('', '', profile.unit, now=clock()),
            hosts=list(profile.hosts),
            selector=profile.build_selector(),
        )
        self.cache = RangeCache(self.context)
        self.reconciler = Reconciler(self.context, self.cache, self.chart)
        self.zoom = ZoomController(self.context, self.cache, self, clock=clock)

        self.autofresh_state = AutoRefreshState.DISABLED
        self.reconnect_count = 0
        self._bounded: Optional[StreamSession] = None
        self._live: Optional[StreamSession] = None
        self._reconnect_task: Optional[asyncio.Task] = None

    # --- Selection ---

    async def select(self, topic: Optional[str] = None, series_id: Optional[str] = None,
                     granularity: Optional[Granularity] = None, hosts: Optional[List[str]] = None,
                     attributes: Optional[List[AttributeRef]] = None):
        """Change what is being viewed. Takes effect on the next show()."""
        await self.disable_autofresh()
        if topic is not None:
            self.profile.topic = topic
        if series_id is not None:
            self.profile.series_id = series_id
        if granularity is not None:
            self.profile.unit = granularity
        if hosts:
            self.profile.hosts = list(hosts)
        if attributes:
            self.profile.attributes = list(attributes)

        old_key = self.context.cache_key
        old_granularity = self.context.granularity
        self.context.topic = self.profile.topic
        self.context.series_id = self.profile.series_id
        self.context.granularity = self.profile.unit
        self.context.hosts = list(self.profile.hosts)
        self.context.selector = self.profile.build_selector()

        if self.context.granularity is not old_granularity:
            self.context.window = resolve_window('', '', self.context.granularity, now=self._clock())
        if self.context.cache_key != old_key:
            log.info(f"View switched to topic={self.context.topic} id={self.context.series_id} "
                     f"unit={self.context.granularity.value}")
            self.cache.reset()

    async def select_topic(self, topic: str, topics: Dict[str, Dict]):
        """Switch topic, taking its default id, hosts and attributes from the topic listing."""
        meta = topics.get(topic) or {}
        hosts = meta.get('host') or []
        attrs = meta.get('attr') or []
        await self.select(
            topic=topic,
            series_id=meta.get('id', ''),
            hosts=[hosts] if isinstance(hosts, str) else hosts,
            attributes=[AttributeRef.from_json(a) for a in ([attrs] if isinstance(attrs, str) else attrs)],
        )

    # --- Bounded fetches ---

    def stream_params(self, start: str, end: str, live: bool = False) -> Dict[str, str]:
        params = {'start': start, 'end': end, 'topic': self.context.topic, 'id': self.context.series_id}
        if not live:
            params['dataset'] = self.context.granularity.dataset
        return params

    async def show(self, start_text: str = '', end_text: str = '') -> Optional[VisibleWindow]:
        """
        Display a range: validate it, replay whatever the cache already
        covers and fetch only the missing part. Returns the fetched window,
        or None when nothing had to be fetched or the range was rejected.
        """
        try:
            window = resolve_window(start_text, end_text, self.context.granularity,
                                    current=self.context.window, now=self._clock())
        except InvalidRangeError as e:
            self.notifier(str(e))
            return None

        await self.disable_autofresh()
        await self._close_bounded()
        self.reconciler.last_records.clear()

        self.context.window = window
        missing = self.cache.missing_range(window)

        self.chart.clear()
        self.zoom.reset()
        self.reconciler.replay(self.cache.snapshot())

        if missing is None or missing.start == missing.end:
            log.info(f"Range {window} served from cache ({len(self.cache)} records)")
            return None

        session = await self.start_bounded(missing)
        await session.wait()
        return missing

    async def start_bounded(self, window: VisibleWindow,
                            on_done: Optional[Callable[[Optional[BaseException]], None]] = None) -> StreamSession:
        """Open a bounded fetch for ``window`` without waiting for it to finish."""
        await self.disable_autofresh()
        await self._close_bounded(reset_zoom=False)

        session = StreamSession(self.transport, purpose='bounded')
        self._bounded = session

        def on_record(record_id, payload):
            self.reconciler.on_incoming(record_id, payload, is_live=False)

        def on_end():
            self.reconciler.flush()
            log.info(f"Fetched {window}, {self.chart.point_count} points displayed")
            if on_done:
                on_done(None)

        def on_error(error):
            self.reconciler.flush()
            self.notifier(f"fetch {window} failed: {error}")
            if on_done:
                on_done(error)

        log.info(f"Fetching {window} for topic={self.context.topic} id={self.context.series_id}")
        session.open(self.stream_params(window.start, window.end), on_record, on_end, on_error)
        return session

    async def _close_bounded(self, reset_zoom: bool = True):
        if self._bounded is not None and not self._bounded.closed:
            await self._bounded.close()
            if reset_zoom:
                self.zoom.reset()
        self._bounded = None

    # --- Auto-refresh ---

    async def enable_autofresh(self) -> bool:
        if not self.context.granularity.supports_autofresh:
            self.notifier("only minute/second/subsecond support autofresh")
            return False
        if self.autofresh_state is not AutoRefreshState.DISABLED:
            return True
        await self._close_bounded()
        self.profile.autofresh = True
        self.autofresh_state = AutoRefreshState.CONNECTING
        await self._open_live()
        return True

    async def disable_autofresh(self):
        self.profile.autofresh = False
        if self.autofresh_state is AutoRefreshState.DISABLED:
            return
        self.autofresh_state = AutoRefreshState.DISABLED
        task, self._reconnect_task = self._reconnect_task, None
        if task is not None and task is not asyncio.current_task():
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
        if self._live is not None:
            await self._live.close()
            self._live = None
        log.info("Auto-refresh disabled")

    def _live_cursor(self) -> str:
        """Resume from the window end if it is recent, otherwise start over from now."""
        now = self._clock()
        window = self.context.window
        age = abs((now - to_instant(window.end)).total_seconds())
        if age < AUTOFRESH_RESUME_WINDOW_SECONDS:
            latest = self.cache.latest
            if latest is not None and not approximately_equal(latest, window.end):
                # Live records would be appended after a gap the cache cannot bridge.
                log.info(f"Cache ends at {latest}, not at {window.end}, discarding it before live tail")
                self.cache.reset()
            return window.end

        log.info(f"Window end {window.end} is {int(age)}s old, restarting live view from now")
        self.cache.reset()
        self.chart.clear()
        cursor = to_record_id(now, self.context.granularity)
        self.context.window = VisibleWindow(min(window.start, cursor), cursor)
        return cursor

    async def _open_live(self):
        if self._live is not None:
            await self._live.close()
        cursor = self._live_cursor()
        session = StreamSession(self.transport, purpose='live')
        self._live = session
        self.autofresh_state = AutoRefreshState.STREAMING
        log.info(f"Live tail from {cursor} for topic={self.context.topic} id={self.context.series_id}")
        session.open(
            self.stream_params(cursor, FOREVER, live=True),
            self._on_live_record,
            lambda: self._on_live_closed(None),
            self._on_live_closed,
        )

    def _on_live_record(self, record_id, payload):
        if self.autofresh_state is AutoRefreshState.DISABLED:
            return
        self.reconciler.on_incoming(record_id, payload, is_live=True)

    def _on_live_closed(self, error: Optional[BaseException]):
        if self.autofresh_state is AutoRefreshState.DISABLED:
            return
        if error is not None:
            log.warning(f"Live tail stopped: {error}. Reconnecting in {self.reconnect_delay}s")
        else:
            log.warning(f"Live tail closed by server. Reconnecting in {self.reconnect_delay}s")
        self.autofresh_state = AutoRefreshState.CONNECTING
        self._reconnect_task = asyncio.create_task(self._reconnect_after_delay())

    async def _reconnect_after_delay(self):
        await asyncio.sleep(self.reconnect_delay)
        if self.autofresh_state is not AutoRefreshState.CONNECTING:
            return
        self.reconnect_count += 1
        self._reconnect_task = None
        await self._open_live()

    async def close(self):
        # Shutting down is not a user choice, the saved preference survives it.
        autofresh = self.profile.autofresh
        await self.disable_autofresh()
        await self._close_bounded()
        self.profile.autofresh = autofresh
