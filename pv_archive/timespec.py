"""Resolution-adaptive choice of server-side binning.

Short ranges are fetched raw. Longer ranges are binned so that roughly two
seconds of data back each rendered pixel, snapped up to a canonical bin size.
"""

import re
from datetime import datetime, timedelta, timezone
from typing import Optional, Sequence, Tuple

from pv_archive.config import DEFAULT_LADDER, ArchiverConfig
from pv_archive.models import RAW_BINNING, ResolvedBinning, as_utc
from pv_archive.utils.exceptions import InvalidRange

RAW_THRESHOLD_SECONDS = 3600
WEEK_SECONDS = 7 * 86400

_RELATIVE_RANGE = re.compile(r"^(\d+)([smhdw])$")
_UNIT_SECONDS = {"s": 1, "m": 60, "h": 3600, "d": 86400, "w": WEEK_SECONDS}


class TimeSpec:
    def __init__(self,
                 ladder: Sequence[int] = DEFAULT_LADDER,
                 raw_threshold_seconds: int = RAW_THRESHOLD_SECONDS,
                 default_operator: str = "mean") -> None:
        self.ladder = tuple(ladder)
        self.raw_threshold_seconds = raw_threshold_seconds
        self.default_operator = default_operator

    @classmethod
    def from_config(cls, config: ArchiverConfig) -> "TimeSpec":
        return cls(ladder=config.binning.ladder,
                   raw_threshold_seconds=config.binning.raw_threshold_seconds,
                   default_operator=config.binning.default_operator)

    def snap(self, raw_bin_size: int) -> int:
        """First ladder entry >= raw_bin_size, or the largest entry."""
        for step in self.ladder:
            if step >= raw_bin_size:
                return step
        return self.ladder[-1]

    def resolve(self, start: datetime, end: datetime, target_width: int,
                operator: Optional[str] = None) -> ResolvedBinning:
        duration = int((as_utc(end) - as_utc(start)).total_seconds())
        if duration <= self.raw_threshold_seconds:
            return RAW_BINNING

        half_width = max(1, target_width // 2)
        raw_bin_size = max(1, duration // half_width)
        return ResolvedBinning(operator=operator or self.default_operator, bin_size_seconds=self.snap(raw_bin_size))


_DEFAULT_TIMESPEC = TimeSpec()


def resolve(start: datetime, end: datetime, target_width: int,
            operator: Optional[str] = None) -> ResolvedBinning:
    """Resolve binning with the default ladder and raw threshold."""
    return _DEFAULT_TIMESPEC.resolve(start, end, target_width, operator)


def validate_range(start: datetime, end: datetime, target_width: int) -> None:
    if start is None or end is None:
        raise InvalidRange("Invalid time range specified: start and end are required")
    if as_utc(end) <= as_utc(start):
        raise InvalidRange(f"Invalid time range specified: end {end.isoformat()} <= start {start.isoformat()}")
    if target_width is None or target_width < 1:
        raise InvalidRange(f"Invalid target width {target_width!r}: must be >= 1")


def parse_relative_range(spec: str, now: Optional[datetime] = None) -> Tuple[datetime, datetime]:
    """
    Turn a relative range like "15m", "3h", "7d" or "2w" into (start, end),
    ending at ``now`` (default: current UTC time).
    """
    match = _RELATIVE_RANGE.match(spec.strip()) if spec else None
    if not match or int(match.group(1)) == 0:
        raise InvalidRange(f"Invalid relative range {spec!r}. Expected e.g. '15m', '1h', '7d'")
    end = as_utc(now) if now is not None else datetime.now(timezone.utc)
    seconds = int(match.group(1)) * _UNIT_SECONDS[match.group(2)]
    return end - timedelta(seconds=seconds), end


def batch_size_for(duration_seconds: float, config: ArchiverConfig) -> int:
    """Short ranges can afford more concurrent requests than long ones."""
    if duration_seconds <= config.binning.raw_threshold_seconds:
        return config.batch_sizes.large
    if duration_seconds > WEEK_SECONDS:
        return config.batch_sizes.small
    return config.batch_sizes.default


def timeout_for(duration_seconds: float, config: ArchiverConfig) -> float:
    """Per-request deadline tier for a range of the given length."""
    if duration_seconds > 30 * 86400:
        return config.timeouts.extended
    if duration_seconds > WEEK_SECONDS:
        return config.timeouts.long
    return config.timeouts.default

