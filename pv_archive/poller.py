"""Real-time polling of a trailing window.

    poller = RealTimePoller(pipeline, ["ROOM:LI30:1:OUTSIDE_TEMP"], on_result=redraw)
    poller.start()
    ...
    await poller.stop()
"""

import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional, Sequence

from pv_archive.models import PipelineResult
from pv_archive.pipeline import ArchivePipeline
from pv_archive.timespec import batch_size_for
from pv_archive.utils.exceptions import ArchiveError

logger = logging.getLogger(__name__)


class RealTimePoller:
    def __init__(self,
                 pipeline: ArchivePipeline,
                 pvs: Sequence[str],
                 on_result: Optional[Callable[[PipelineResult], None]] = None,
                 window_seconds: Optional[int] = None,
                 interval_seconds: Optional[float] = None,
                 target_width: Optional[int] = None,
                 clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc)) -> None:
        realtime = pipeline.cfg.realtime
        self.pipeline = pipeline
        self.pvs = list(pvs)
        self.on_result = on_result
        self.window_seconds = window_seconds or realtime.window_seconds
        self.interval_seconds = interval_seconds or realtime.interval_seconds
        self.target_width = target_width
        self._clock = clock
        self._task: Optional[asyncio.Task] = None
        self._stopping: Optional[asyncio.Event] = None
        self.ticks = 0

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> "RealTimePoller":
        """Start polling on the running event loop. Returns self as the stop handle."""
        if self.is_running:
            return self
        self._stopping = asyncio.Event()
        self._task = asyncio.get_running_loop().create_task(self._run())
        return self

    async def stop(self) -> None:
        """Cancel the timer and wait for an in-flight fetch to drain."""
        if self._task is None:
            return
        self._stopping.set()
        try:
            await self._task
        finally:
            self._task = None

    async def _run(self) -> None:
        batch_size = batch_size_for(self.window_seconds, self.pipeline.cfg)
        while not self._stopping.is_set():
            await self.tick(batch_size)
            try:
                await asyncio.wait_for(self._stopping.wait(), timeout=self.interval_seconds)
            except asyncio.TimeoutError:
                pass

    async def tick(self, batch_size: Optional[int] = None) -> Optional[PipelineResult]:
        end = self._clock()
        start = end - timedelta(seconds=self.window_seconds)
        self.ticks += 1
        try:
            result = await self.pipeline.fetch(self.pvs, start, end, target_width=self.target_width,
                                               batch_size=batch_size)
        except ArchiveError as exc:
            logger.error("Real-time poll failed: %s", exc)
            return None
        if self.on_result is not None:
            try:
                self.on_result(result)
            except Exception:
                logger.exception("Real-time result callback %r failed", self.on_result)
        return result
