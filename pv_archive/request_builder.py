"""Builds archiver requests.

Timestamps are sent as ``YYYY-MM-DDTHH:MM:SS.000+HH:MM``: whole seconds, a
literal ``.000`` millisecond field and an explicit signed offset. The archiver
rejects the ``Z`` suffix, so UTC is written as ``-00:00``.
"""

import json
import logging
from datetime import datetime, timezone
from typing import Iterable, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pv_archive.config import ArchiverConfig
from pv_archive.models import ArchiveRequest, Query, ResolvedBinning, as_utc
from pv_archive.operators import pv_expression
from pv_archive.utils.exceptions import ConfigError

logger = logging.getLogger(__name__)

JSON_HEADERS = {"Accept": "application/json"}


def get_timezone(name: Optional[str]):
    if not name or name.upper() == "UTC":
        return timezone.utc
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError) as exc:
        raise ConfigError(f"Unknown timezone '{name}'") from exc


def format_archive_timestamp(value: datetime, tz=None) -> str:
    """
    Format an instant for the archiver.

    Args:
        value (datetime): The instant. Naive values are taken as UTC.
        tz (tzinfo, optional): Zone whose UTC offset is written. Defaults to UTC.
    """
    local = as_utc(value).astimezone(tz or timezone.utc)
    offset = local.utcoffset()
    total_minutes = int(offset.total_seconds() // 60) if offset else 0
    sign = "+" if total_minutes > 0 else "-"
    hours, minutes = divmod(abs(total_minutes), 60)
    return f"{local.strftime('%Y-%m-%dT%H:%M:%S')}.000{sign}{hours:02d}:{minutes:02d}"


class RequestBuilder:
    def __init__(self, config: ArchiverConfig) -> None:
        self.base_url = config.base_url
        self.donotchunk = config.donotchunk
        self.tz = get_timezone(config.timezone)

    def build(self, query: Query, binning: ResolvedBinning) -> ArchiveRequest:
        pv = query.pv
        expression = pv_expression(pv, binning.operator, binning.bin_size_seconds)
        params = {
            "pv": expression,
            "from": format_archive_timestamp(query.start, self.tz),
            "to": format_archive_timestamp(query.end, self.tz),
        }
        if self.donotchunk:
            params["donotchunk"] = "true"

        logger.debug("Built request for %s: pv=%s from=%s to=%s",
                     pv, expression, params["from"], params["to"])
        return ArchiveRequest(
            pv=pv,
            url=f"{self.base_url}/getData.json",
            method="GET",
            headers=dict(JSON_HEADERS),
            params=params,
        )

    def build_snapshot(self, pvs: Iterable[str], at: Optional[datetime] = None) -> ArchiveRequest:
        """Point-in-time lookup: one POST carrying the whole PV list."""
        pvs = list(pvs)
        at = at or datetime.now(timezone.utc)
        return ArchiveRequest(
            pv=",".join(pvs),
            url=f"{self.base_url}/getDataAtTime",
            method="POST",
            headers={**JSON_HEADERS, "Content-Type": "application/json"},
            params={"at": format_archive_timestamp(at, self.tz)},
            body=json.dumps(pvs),
        )


def build(query: Query, binning: ResolvedBinning, config: Optional[ArchiverConfig] = None) -> ArchiveRequest:
    return RequestBuilder(config or ArchiverConfig()).build(query, binning)
