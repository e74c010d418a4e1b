"""The retrieval pipeline.

    resolve binning -> build one request per PV -> fetch in batches
        -> normalize each response -> assemble the matrix

Per-PV failures never fail a fetch: the PV gets an empty series and an entry
in ``PipelineResult.errors``. Only invalid input (InvalidRange) is raised, and
always before the first request goes out.
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional, Sequence

import httpx
from pydantic import ValidationError

from pv_archive.assembler import assemble
from pv_archive.config import ArchiverConfig
from pv_archive.fetcher import BatchedFetcher
from pv_archive.models import (NormalizedPoint, NormalizedSeries,
                               PipelineResult, Query, SeriesMatrix)
from pv_archive.normalizer import normalize, normalize_response
from pv_archive.observer import PipelineObserver
from pv_archive.operators import get_bin_operator
from pv_archive.request_builder import RequestBuilder
from pv_archive.snapshot import SnapshotClient
from pv_archive.timespec import TimeSpec, timeout_for, validate_range
from pv_archive.utils.exceptions import FetchError, InvalidRange

logger = logging.getLogger(__name__)


class ArchivePipeline:
    def __init__(self,
                 config: Optional[ArchiverConfig] = None,
                 observers: Iterable[PipelineObserver] = (),
                 transport: Optional[httpx.AsyncBaseTransport] = None,
                 snapshot_client: Optional[SnapshotClient] = None) -> None:
        self.cfg = config or ArchiverConfig()
        self.timespec = TimeSpec.from_config(self.cfg)
        self.builder = RequestBuilder(self.cfg)
        self.fetcher = BatchedFetcher.from_config(self.cfg, transport=transport)
        self._snapshot_client = snapshot_client
        self._observers: List[PipelineObserver] = list(observers)

        # last successful matrix; kept on display while a new fetch is in flight
        self.last_matrix: Optional[SeriesMatrix] = None

    def add_observer(self, observer: PipelineObserver) -> None:
        self._observers.append(observer)

    def _notify(self, event: str, *args) -> None:
        for observer in self._observers:
            try:
                getattr(observer, event)(*args)
            except Exception:
                logger.exception("Observer %r failed in %s", observer, event)

    async def fetch(self,
                    pvs: Sequence[str],
                    start: datetime,
                    end: datetime,
                    target_width: Optional[int] = None,
                    operator: Optional[str] = None,
                    batch_size: Optional[int] = None) -> PipelineResult:
        """
        Fetch and normalize ``pvs`` over [start, end].

        Args:
            pvs: PV names. Duplicates are fetched once.
            start, end: Time range. Naive datetimes are UTC.
            target_width: Display points wanted; defaults to target_points.default.
            operator: Aggregation operator for binned ranges; defaults to
                binning.default_operator. Ignored when the range is fetched raw.
            batch_size: Concurrent requests; defaults to batch_sizes.default.

        Raises:
            InvalidRange: For end <= start, target_width < 1, no PVs, an empty
                PV name, or an operator that is unknown or needs more than a
                bin size (ncount, nth, flyers, ...). Nothing has been sent
                when this is raised.
        """
        target_width = self.cfg.target_points.default if target_width is None else target_width
        pvs = list(dict.fromkeys(pvs or ()))
        if not pvs:
            raise InvalidRange("No PVs specified")
        validate_range(start, end, target_width)
        if operator is not None:
            try:
                get_bin_operator(operator)
            except ValueError as exc:
                raise InvalidRange(str(exc)) from exc

        try:
            queries = [Query(pv=pv, start=start, end=end, target_width=target_width) for pv in pvs]
        except ValidationError as exc:
            raise InvalidRange(f"Invalid query: {exc}") from exc

        start, end = queries[0].start, queries[0].end
        binning = self.timespec.resolve(start, end, target_width, operator)
        requests = [self.builder.build(query, binning) for query in queries]
        duration = queries[0].duration_seconds
        self._notify("on_fetch_start", pvs, binning)
        logger.info("Fetching %d PVs from %s to %s (%s)", len(pvs), start.isoformat(), end.isoformat(),
                    "raw" if binning.is_raw else f"{binning.operator}_{binning.bin_size_seconds}")

        results = await self.fetcher.fetch_all(requests, batch_size=batch_size,
                                               timeout=timeout_for(duration, self.cfg))

        series: List[NormalizedSeries] = []
        errors: Dict[str, FetchError] = {}
        for result in results:
            pv = result.request.pv
            if result.ok:
                s, error = normalize_response(result.response, pv)
            else:
                s, error = normalize(pv, "", ()), result.error
            series.append(s)
            if error is not None:
                errors[pv] = error
                self._notify("on_pv_error", pv, error)

        matrix = assemble(series, pvs)
        if len(errors) < len(pvs):
            self.last_matrix = matrix
        else:
            logger.warning("All %d PV requests failed; keeping the previous matrix", len(pvs))

        result = PipelineResult(matrix=matrix, series=series, errors=errors, binning=binning,
                                fetched_at=datetime.now(timezone.utc))
        self._notify("on_fetch_complete", result)
        return result

    def fetch_sync(self, pvs: Sequence[str], start: datetime, end: datetime, **kwargs) -> PipelineResult:
        return asyncio.run(self.fetch(pvs, start, end, **kwargs))

    @property
    def snapshot_client(self) -> SnapshotClient:
        if self._snapshot_client is None:
            self._snapshot_client = SnapshotClient(self.cfg)
        return self._snapshot_client

    async def snapshot(self, pvs: Sequence[str], at: Optional[datetime] = None) -> Dict[str, NormalizedPoint]:
        """Current (or point-in-time) values, fetched off the event loop."""
        return await asyncio.to_thread(self.snapshot_client.get_values, pvs, at)
