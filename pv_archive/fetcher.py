"""Batched, bounded-concurrency fetching of archiver requests.

Requests run in fixed-size batches. A batch settles completely (every member
succeeded, failed or timed out) before the next one is dispatched, and each
member's outcome lands in its own result slot. Nothing is retried.
"""

import asyncio
import json
import logging
from typing import List, Optional, Sequence

import httpx

from pv_archive.config import ArchiverConfig
from pv_archive.models import ArchiveRequest, FetchResult
from pv_archive.utils.exceptions import (FetchError, HttpError,
                                         MalformedResponse, Timeout,
                                         TransportError)

logger = logging.getLogger(__name__)


class BatchedFetcher:
    def __init__(self,
                 batch_size: int = 5,
                 timeout: float = 30.0,
                 transport: Optional[httpx.AsyncBaseTransport] = None) -> None:
        if batch_size < 1:
            raise ValueError("batch_size must be >= 1")
        self.batch_size = batch_size
        self.timeout = timeout
        self._transport = transport

    @classmethod
    def from_config(cls, config: ArchiverConfig, **kwargs) -> "BatchedFetcher":
        kwargs.setdefault("batch_size", config.batch_sizes.default)
        kwargs.setdefault("timeout", config.timeouts.default)
        return cls(**kwargs)

    def _client(self, batch_size: int) -> httpx.AsyncClient:
        # the pool ceiling equals the batch size
        limits = httpx.Limits(max_connections=batch_size, max_keepalive_connections=batch_size)
        return httpx.AsyncClient(limits=limits, timeout=None, transport=self._transport)

    async def fetch_all(self, requests: Sequence[ArchiveRequest],
                        batch_size: Optional[int] = None,
                        timeout: Optional[float] = None) -> List[FetchResult]:
        """
        Fetch every request; return one FetchResult per request, in input order.
        """
        batch_size = batch_size or self.batch_size
        timeout = timeout or self.timeout
        results: List[FetchResult] = []

        async with self._client(batch_size) as client:
            for first in range(0, len(requests), batch_size):
                batch = requests[first:first + batch_size]
                logger.debug("Dispatching batch %d (%d requests)", first // batch_size + 1, len(batch))
                settled = await asyncio.gather(*(self._fetch_one(client, req, timeout) for req in batch))
                results.extend(settled)

        failures = sum(1 for r in results if not r.ok)
        if failures:
            logger.info("Fetched %d PVs, %d failed", len(results), failures)
        return results

    def fetch_all_sync(self, requests: Sequence[ArchiveRequest], **kwargs) -> List[FetchResult]:
        return asyncio.run(self.fetch_all(requests, **kwargs))

    async def _fetch_one(self, client: httpx.AsyncClient, request: ArchiveRequest,
                         timeout: float) -> FetchResult:
        try:
            payload = await asyncio.wait_for(self._send(client, request), timeout=timeout)
        except asyncio.TimeoutError:
            error = Timeout(request.pv, timeout)
        except FetchError as exc:
            error = exc
        except httpx.TimeoutException:
            error = Timeout(request.pv, timeout)
        except httpx.HTTPError as exc:
            error = TransportError(request.pv, str(exc) or exc.__class__.__name__)
        else:
            return FetchResult(request=request, response=payload)

        logger.warning("Request for %s failed: %s", request.pv, error.message)
        return FetchResult(request=request, error=error)

    async def _send(self, client: httpx.AsyncClient, request: ArchiveRequest):
        logger.debug("%s %s %s", request.method, request.url, request.params)
        response = await client.request(
            request.method,
            request.url,
            params=request.params,
            headers=request.headers,
            content=request.body,
        )
        if not response.is_success:
            raise HttpError(request.pv, response.status_code, response.text)
        try:
            return response.json()
        except (json.JSONDecodeError, UnicodeDecodeError) as exc:
            raise MalformedResponse(request.pv, f"response is not JSON: {exc}") from exc


async def fetch_all(requests: Sequence[ArchiveRequest], batch_size: int = 5,
                    timeout: float = 30.0) -> List[FetchResult]:
    return await BatchedFetcher(batch_size=batch_size, timeout=timeout).fetch_all(requests)
