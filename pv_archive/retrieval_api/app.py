"""
Retrieval API service.

Thin REST layer that runs the retrieval pipeline and returns its normalized
output to a browser renderer.

- GET /series   -> SeriesMatrix + per-PV errors for a time range
- GET /snapshot -> point-in-time values for a list of PVs
- GET /health

Usage (development):
    uvicorn pv_archive.retrieval_api.app:app --reload --port 8000

Configuration:
    Read through `pv_archive.config.load_config`, i.e. the YAML file named by
    PV_ARCHIVE_CONFIG plus the PV_ARCHIVE_BASE_URL override.
"""

from __future__ import annotations

import logging
from datetime import datetime
from functools import lru_cache
from typing import Dict, List, Optional

from fastapi import Depends, FastAPI, HTTPException, Query
from pydantic import BaseModel

from pv_archive.config import load_config
from pv_archive.models import NormalizedPoint, ResolvedBinning, SeriesStats
from pv_archive.pipeline import ArchivePipeline
from pv_archive.timespec import parse_relative_range
from pv_archive.utils.exceptions import (ConfigError, FetchError, HttpError,
                                         InvalidRange)

logger = logging.getLogger(__name__)


###############################################################################
# Response models
###############################################################################


class PVError(BaseModel):
    kind: str
    message: str
    status_code: Optional[int] = None


class SeriesResponse(BaseModel):
    timestamps: List[int]
    columns: Dict[str, List[Optional[float]]]
    units: Dict[str, str]
    stats: Dict[str, SeriesStats]
    errors: Dict[str, PVError]
    binning: ResolvedBinning


def _pv_error(error: FetchError) -> PVError:
    return PVError(kind=error.__class__.__name__, message=error.message,
                   status_code=getattr(error, "status_code", None))


###############################################################################
# Dependencies
###############################################################################


@lru_cache(maxsize=1)
def get_pipeline() -> ArchivePipeline:
    """
    One pipeline per process, shared by every API client.

    Its `last_matrix` therefore belongs to whichever request finished last and
    may cover an unrelated PV set; the endpoints below only return the result
    of their own fetch and never read it.
    """
    try:
        cfg = load_config()
    except ConfigError as exc:
        raise HTTPException(status_code=503, detail=str(exc)) from exc
    logging.basicConfig(level=cfg.log_level)
    return ArchivePipeline(cfg)


###############################################################################
# FastAPI app
###############################################################################

app = FastAPI(title="PV Archive Retrieval API", version="0.1.0")


@app.get("/health", summary="Health check")
def health() -> Dict[str, str]:
    return {"status": "ok"}


@app.get("/series", response_model=SeriesResponse, summary="Normalized series for a time range")
async def get_series(
    pv: List[str] = Query(..., description="PV name; repeat for several PVs"),
    start: Optional[datetime] = Query(default=None, description="Start time (ISO-8601)"),
    end: Optional[datetime] = Query(default=None, description="End time (ISO-8601)"),
    last: Optional[str] = Query(default=None, description="Relative range instead of start/end, e.g. 1h"),
    width: Optional[int] = Query(default=None, description="Target number of points"),
    operator: Optional[str] = Query(default=None, description="Aggregation operator for binned ranges"),
    pipeline: ArchivePipeline = Depends(get_pipeline),
) -> SeriesResponse:
    try:
        if last is not None:
            start, end = parse_relative_range(last)
        elif start is None or end is None:
            raise InvalidRange("Either 'last' or both 'start' and 'end' are required")
        result = await pipeline.fetch(pv, start, end, target_width=width, operator=operator)
    except InvalidRange as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc

    return SeriesResponse(
        timestamps=result.matrix.timestamps,
        columns=result.matrix.columns,
        units=result.matrix.units,
        stats={s.name: s.stats for s in result.series},
        errors={name: _pv_error(err) for name, err in result.errors.items()},
        binning=result.binning,
    )


@app.get("/snapshot", response_model=Dict[str, NormalizedPoint], summary="Point-in-time PV values")
async def get_snapshot(
    pv: List[str] = Query(..., description="PV name; repeat for several PVs"),
    at: Optional[datetime] = Query(default=None, description="Instant (ISO-8601); default now"),
    pipeline: ArchivePipeline = Depends(get_pipeline),
) -> Dict[str, NormalizedPoint]:
    try:
        return await pipeline.snapshot(pv, at)
    except HttpError as exc:
        raise HTTPException(status_code=502, detail=f"Archiver error: HTTP {exc.status_code}") from exc
    except FetchError as exc:
        raise HTTPException(status_code=503, detail=f"Failed to reach archiver: {exc.message}") from exc
