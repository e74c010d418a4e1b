"""Normalization of archiver responses.

The archiver returns, per PV::

    {"meta": {"name": ..., "EGU": ...},
     "data": [{"secs": ..., "nanos": ..., "val": ..., "severity": ..., "status": ...}, ...]}

``val`` is either a bare number (raw sample) or ``[mean, stddev, min, max,
count]`` (statistical bin). Points that cannot be read are dropped; one bad
sample never invalidates a series.
"""

import logging
import math
from numbers import Real
from typing import Any, Dict, Iterable, List, Optional, Tuple

import numpy as np

from pv_archive.models import (NormalizedPoint, NormalizedSeries, RawSample,
                               Sample, SeriesStats, StatisticalSample)
from pv_archive.utils.exceptions import MalformedResponse

logger = logging.getLogger(__name__)

STAT_TUPLE_LENGTH = 5


def _is_number(value: Any) -> bool:
    return isinstance(value, Real) and not isinstance(value, bool)


def _is_finite(value: Any) -> bool:
    return _is_number(value) and math.isfinite(value)


def _to_int(value: Any, default: int = 0) -> int:
    return int(value) if _is_finite(value) else default


def parse_sample(val: Any) -> Optional[Sample]:
    """Decide the sample shape once. Returns None for anything unreadable."""
    if isinstance(val, (list, tuple)):
        if len(val) != STAT_TUPLE_LENGTH or not all(_is_finite(v) for v in val):
            return None
        mean, stddev, vmin, vmax, count = val
        return StatisticalSample(mean=mean, stddev=stddev, min=vmin, max=vmax, count=int(count))
    if _is_finite(val):
        return RawSample(value=val)
    return None


def parse_point(raw: Any) -> Optional[NormalizedPoint]:
    if not isinstance(raw, dict):
        return None
    secs = raw.get("secs")
    if not _is_finite(secs):
        return None
    sample = parse_sample(raw.get("val"))
    if sample is None:
        return None
    nanos = _to_int(raw.get("nanos"))
    timestamp_ms = int(secs) * 1000 + nanos // 1_000_000
    return NormalizedPoint.from_sample(
        timestamp_ms,
        sample,
        severity=_to_int(raw.get("severity")),
        status=_to_int(raw.get("status")),
    )


def series_stats(points: List[NormalizedPoint]) -> SeriesStats:
    if not points:
        return SeriesStats()
    values = np.fromiter((p.value for p in points), dtype=float, count=len(points))
    counts = np.fromiter((p.count for p in points), dtype=float, count=len(points))
    total = counts.sum()
    # count-weighted so that binned and raw series report comparable means
    mean = float(np.average(values, weights=counts)) if total > 0 else float(values.mean())
    return SeriesStats(
        point_count=len(points),
        sample_count=int(total),
        first_ms=points[0].timestamp_ms,
        last_ms=points[-1].timestamp_ms,
        min=min(p.min for p in points),
        max=max(p.max for p in points),
        mean=mean,
    )


def normalize(pv: str, unit: str, raw_points: Optional[Iterable[Any]]) -> NormalizedSeries:
    """
    Normalize the raw points of one PV.

    Args:
        pv (str): Series name.
        unit (str): Engineering unit (EGU).
        raw_points (iterable): Points as returned by the archiver.

    Returns:
        NormalizedSeries: Points strictly ascending by timestamp. Unreadable
            points are dropped. Points sharing a timestamp keep the first to
            arrive.
    """
    points = []
    dropped = 0
    for raw in raw_points or ():
        point = parse_point(raw)
        if point is None:
            dropped += 1
        else:
            points.append(point)
    if dropped:
        logger.debug("Dropped %d invalid points from %s", dropped, pv)

    # sorted() is stable, so arrival order breaks ties
    points = sorted(points, key=lambda p: p.timestamp_ms)
    unique: List[NormalizedPoint] = []
    for point in points:
        if unique and unique[-1].timestamp_ms == point.timestamp_ms:
            continue
        unique.append(point)

    return NormalizedSeries(name=pv, unit=unit or "", points=unique, stats=series_stats(unique))


def _unit(entry: Dict[str, Any]) -> str:
    meta = entry.get("meta")
    unit = meta.get("EGU") if isinstance(meta, dict) else None
    return unit if isinstance(unit, str) else ""


def normalize_response(payload: Any, pv: str) -> Tuple[NormalizedSeries, Optional[MalformedResponse]]:
    """
    Normalize a whole ``getData.json`` response for the requested PV.

    The series is always named after the requested PV (the archiver reports
    the operator expression, e.g. ``mean_900(PV)``, as its name). A payload of
    the wrong shape yields an empty series together with the
    MalformedResponse describing it.
    """
    if not isinstance(payload, list):
        error = MalformedResponse(pv, f"expected a JSON array, got {type(payload).__name__}")
    elif not payload:
        # the archiver answers [] for a PV without data in range
        return normalize(pv, "", ()), None
    elif not isinstance(payload[0], dict):
        error = MalformedResponse(pv, "array element is not an object")
    else:
        entry = payload[0]
        unit = _unit(entry)
        data = entry.get("data")
        if isinstance(data, list):
            return normalize(pv, unit, data), None
        error = MalformedResponse(pv, "'data' is missing or not a list")
        logger.warning("Malformed response for %s: %s", pv, error.message)
        return normalize(pv, unit, ()), error

    logger.warning("Malformed response for %s: %s", pv, error.message)
    return normalize(pv, "", ()), error


def normalize_snapshot(payload: Any) -> Dict[str, NormalizedPoint]:
    """Map a ``getDataAtTime`` response to one point per PV; unreadable entries are skipped."""
    if not isinstance(payload, dict):
        raise MalformedResponse("getDataAtTime", f"expected a JSON object, got {type(payload).__name__}")
    values = {}
    for pv, raw in payload.items():
        point = parse_point(raw)
        if point is None:
            logger.debug("Skipping unreadable snapshot for %s", pv)
            continue
        values[pv] = point
    return values
