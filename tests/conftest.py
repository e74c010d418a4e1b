import asyncio
import json
from urllib.parse import parse_qs

import httpx
import pytest

from pv_archive.config import ArchiverConfig

BASE_URL = "http://archiver.test/retrieval/data"


class FakeArchiver:
    """
    httpx transport standing in for the archiver.

    `behaviour` maps a PV name to a JSON-able payload, an int status code,
    ("sleep", seconds) or ("raise", exception).
    """

    def __init__(self, behaviour=None):
        self.behaviour = behaviour or {}
        self.requests = []
        self.in_flight = 0
        self.max_in_flight = 0
        self.batches = []

    @staticmethod
    def pv_name(expression):
        # mean_900(PV) -> PV
        if expression.endswith(")") and "(" in expression:
            return expression[expression.index("(") + 1:-1]
        return expression

    async def handler(self, request: httpx.Request) -> httpx.Response:
        params = {k: v[0] for k, v in parse_qs(request.url.query.decode()).items()}
        self.requests.append((request.method, request.url.path, params))
        pv = self.pv_name(params.get("pv", ""))

        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            action = self.behaviour.get(pv, [{"meta": {"name": pv, "EGU": "V"}, "data": []}])
            if isinstance(action, tuple) and action[0] == "sleep":
                await asyncio.sleep(action[1])
                return httpx.Response(200, json=[{"meta": {"name": pv}, "data": []}])
            if isinstance(action, tuple) and action[0] == "raise":
                raise action[1]
            if isinstance(action, int):
                return httpx.Response(action, text=f"error for {pv}")
            if isinstance(action, str):
                return httpx.Response(200, text=action)
            return httpx.Response(200, content=json.dumps(action).encode(),
                                  headers={"Content-Type": "application/json"})
        finally:
            self.in_flight -= 1

    @property
    def transport(self):
        return httpx.MockTransport(self.handler)

    @property
    def requested_pvs(self):
        return [self.pv_name(params["pv"]) for _, _, params in self.requests]


def archive_payload(name, points, egu="degC"):
    return [{"meta": {"name": name, "EGU": egu}, "data": points}]


@pytest.fixture
def config():
    return ArchiverConfig(base_url=BASE_URL)


@pytest.fixture
def fake_archiver():
    return FakeArchiver()
