"""Data types shared by the retrieval pipeline.

Upstream samples come in two shapes. The shape is decided once, when a point
is parsed, and carried downstream as a tagged variant
(:class:`RawSample` | :class:`StatisticalSample`).
"""

from datetime import datetime, timezone
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from pv_archive.utils.exceptions import FetchError


def as_utc(value: datetime) -> datetime:
    """Naive datetimes are read as UTC; aware ones are converted to UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class Query(BaseModel):
    model_config = ConfigDict(frozen=True)

    pv: str = Field(..., min_length=1, description="PV name, unmodified")
    start: datetime
    end: datetime
    target_width: int = Field(..., gt=0, description="Desired number of display points")

    @field_validator("start", "end")
    @classmethod
    def _to_utc(cls, value: datetime) -> datetime:
        return as_utc(value)

    @property
    def duration_seconds(self) -> int:
        return int((self.end - self.start).total_seconds())


class ResolvedBinning(BaseModel):
    """Server-side aggregation for a query. ``operator is None`` means raw samples."""

    model_config = ConfigDict(frozen=True)

    operator: Optional[str] = None
    bin_size_seconds: Optional[int] = Field(None, ge=1)

    @model_validator(mode="after")
    def _both_or_neither(self):
        if (self.operator is None) != (self.bin_size_seconds is None):
            raise ValueError("operator and bin_size_seconds must be set together")
        return self

    @property
    def is_raw(self) -> bool:
        return self.operator is None


RAW_BINNING = ResolvedBinning()


class RawSample(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["raw"] = "raw"
    value: float


class StatisticalSample(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["statistical"] = "statistical"
    mean: float
    stddev: float
    min: float
    max: float
    count: int


Sample = Annotated[Union[RawSample, StatisticalSample], Field(discriminator="kind")]


class NormalizedPoint(BaseModel):
    model_config = ConfigDict(frozen=True)

    timestamp_ms: int
    value: float
    min: float
    max: float
    stddev: float = 0.0
    count: int = 1
    severity: int = 0
    status: int = 0

    @classmethod
    def from_sample(cls, timestamp_ms: int, sample: Sample, severity: int = 0, status: int = 0):
        if isinstance(sample, StatisticalSample):
            # archive tuples are occasionally inconsistent; keep min <= value <= max
            return cls(
                timestamp_ms=timestamp_ms,
                value=sample.mean,
                min=min(sample.min, sample.mean),
                max=max(sample.max, sample.mean),
                stddev=sample.stddev,
                count=sample.count,
                severity=severity,
                status=status,
            )
        return cls(
            timestamp_ms=timestamp_ms,
            value=sample.value,
            min=sample.value,
            max=sample.value,
            severity=severity,
            status=status,
        )


class SeriesStats(BaseModel):
    point_count: int = 0
    sample_count: int = 0
    first_ms: Optional[int] = None
    last_ms: Optional[int] = None
    min: Optional[float] = None
    max: Optional[float] = None
    mean: Optional[float] = None


class NormalizedSeries(BaseModel):
    name: str
    unit: str = ""
    points: List[NormalizedPoint] = Field(default_factory=list)
    stats: SeriesStats = Field(default_factory=SeriesStats)

    def __len__(self) -> int:
        return len(self.points)

    @property
    def timestamps(self) -> List[int]:
        return [p.timestamp_ms for p in self.points]

    @property
    def values(self) -> List[float]:
        return [p.value for p in self.points]


class SeriesMatrix(BaseModel):
    timestamps: List[int] = Field(default_factory=list)
    columns: Dict[str, List[Optional[float]]] = Field(default_factory=dict)
    units: Dict[str, str] = Field(default_factory=dict)


class ArchiveRequest(BaseModel):
    """A fully built HTTP request against the archiver."""

    model_config = ConfigDict(frozen=True)

    pv: str
    url: str
    method: str = "GET"
    headers: Dict[str, str] = Field(default_factory=dict)
    params: Dict[str, str] = Field(default_factory=dict)
    body: Optional[Any] = None


class FetchResult(BaseModel):
    """Outcome of one PV request: exactly one of ``response`` or ``error`` is set."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    request: ArchiveRequest
    response: Optional[Any] = None
    error: Optional[FetchError] = None

    @property
    def ok(self) -> bool:
        return self.error is None


class PipelineResult(BaseModel):
    model_config = ConfigDict(arbitrary_types_allowed=True)

    matrix: SeriesMatrix
    series: List[NormalizedSeries]
    errors: Dict[str, FetchError] = Field(default_factory=dict)
    binning: ResolvedBinning
    fetched_at: datetime

    @property
    def ok(self) -> bool:
        return not self.errors
