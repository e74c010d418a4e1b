from .assembler import assemble
from .config import ArchiverConfig, load_config
from .fetcher import BatchedFetcher, fetch_all
from .models import (RAW_BINNING, ArchiveRequest, FetchResult,
                     NormalizedPoint, NormalizedSeries, PipelineResult, Query,
                     RawSample, ResolvedBinning, SeriesMatrix, SeriesStats,
                     StatisticalSample)
from .normalizer import normalize, normalize_response
from .observer import LastResultObserver, PipelineObserver
from .operators import OPERATORS, pv_expression
from .pipeline import ArchivePipeline
from .poller import RealTimePoller
from .request_builder import RequestBuilder, build, format_archive_timestamp
from .snapshot import SnapshotClient
from .timespec import TimeSpec, parse_relative_range, resolve, validate_range
from .utils.exceptions import *
