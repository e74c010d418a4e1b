"""Point-in-time ("current value") lookups.

One POST to ``getDataAtTime`` carries the whole PV list::

    client = SnapshotClient(load_config())
    values = client.get_values(["ROOM:LI30:1:OUTSIDE_TEMP", "VPIO:IN20:111:VRAW"])
    values["ROOM:LI30:1:OUTSIDE_TEMP"].value
"""

import logging
from datetime import datetime
from typing import Dict, Iterable, Optional

import requests

from pv_archive.config import ArchiverConfig
from pv_archive.models import NormalizedPoint
from pv_archive.normalizer import normalize_snapshot
from pv_archive.request_builder import RequestBuilder
from pv_archive.utils.exceptions import (HttpError, MalformedResponse, Timeout,
                                         TransportError)

logger = logging.getLogger(__name__)

SNAPSHOT_KEY = "getDataAtTime"


class SnapshotClient:
    def __init__(self, config: ArchiverConfig, session: Optional[requests.Session] = None) -> None:
        self.builder = RequestBuilder(config)
        self.timeout = config.timeouts.default
        self.session = session or requests.Session()

    def get_values(self, pvs: Iterable[str], at: Optional[datetime] = None) -> Dict[str, NormalizedPoint]:
        """
        Retrieve the latest value of each PV at ``at`` (default: now).

        Raises:
            HttpError: On a non-2xx answer.
            Timeout: If the archiver does not answer within the default timeout.
            TransportError: On connection failures.
            MalformedResponse: If the body is not a JSON object.
        """
        pvs = list(pvs)
        if not pvs:
            return {}
        request = self.builder.build_snapshot(pvs, at)
        logger.debug("POST %s at=%s for %d PVs", request.url, request.params["at"], len(pvs))

        try:
            response = self.session.post(
                request.url,
                params=request.params,
                headers=request.headers,
                data=request.body,
                timeout=self.timeout,
            )
        except requests.Timeout as exc:
            raise Timeout(SNAPSHOT_KEY, self.timeout) from exc
        except requests.RequestException as exc:
            raise TransportError(SNAPSHOT_KEY, str(exc)) from exc

        if not response.ok:
            raise HttpError(SNAPSHOT_KEY, response.status_code, response.text)
        try:
            payload = response.json()
        except ValueError as exc:
            raise MalformedResponse(SNAPSHOT_KEY, f"response is not JSON: {exc}") from exc
        return normalize_snapshot(payload)
