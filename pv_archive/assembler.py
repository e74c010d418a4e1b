import logging
from typing import Dict, Iterable, List, Optional, Sequence

from pv_archive.models import NormalizedSeries, SeriesMatrix

logger = logging.getLogger(__name__)


def assemble(series: Sequence[NormalizedSeries], pvs: Optional[Iterable[str]] = None) -> SeriesMatrix:
    """
    Merge per-PV series into one matrix on the union of their timestamps.

    Every PV in ``pvs`` gets a column, all None when it has no series. A
    column holds None wherever its series has no sample at that exact
    timestamp; nothing is interpolated.
    """
    order: List[str] = list(dict.fromkeys(pvs or ()))
    by_name: Dict[str, NormalizedSeries] = {}
    for s in series:
        if s.name in by_name:
            logger.warning("Duplicate series for %s; keeping the first", s.name)
            continue
        by_name[s.name] = s
        if s.name not in order:
            order.append(s.name)

    timestamps = sorted({p.timestamp_ms for s in by_name.values() for p in s.points})
    index = {ts: i for i, ts in enumerate(timestamps)}

    columns: Dict[str, List[Optional[float]]] = {}
    units: Dict[str, str] = {}
    for name in order:
        column: List[Optional[float]] = [None] * len(timestamps)
        s = by_name.get(name)
        if s is not None:
            for point in s.points:
                column[index[point.timestamp_ms]] = point.value
        columns[name] = column
        units[name] = s.unit if s is not None else ""

    return SeriesMatrix(timestamps=timestamps, columns=columns, units=units)
