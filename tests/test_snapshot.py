import json
from datetime import datetime, timezone

import pytest
import requests

from pv_archive.snapshot import SnapshotClient
from pv_archive.utils.exceptions import (HttpError, MalformedResponse, Timeout,
                                         TransportError)

AT = datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc)


class FakeResponse:
    def __init__(self, status_code=200, payload=None, text=None):
        self.status_code = status_code
        self.ok = 200 <= status_code < 300
        self._payload = payload
        self.text = text if text is not None else json.dumps(payload)

    def json(self):
        if self._payload is None:
            raise ValueError("No JSON object could be decoded")
        return self._payload


class FakeSession:
    def __init__(self, response=None, exc=None):
        self.response = response
        self.exc = exc
        self.calls = []

    def post(self, url, **kwargs):
        self.calls.append((url, kwargs))
        if self.exc is not None:
            raise self.exc
        return self.response


def test_get_values(config):
    session = FakeSession(FakeResponse(payload={
        "A:PV": {"secs": 1704110400, "nanos": 250000000, "val": 3.5, "severity": 1, "status": 2},
        "B:PV": {"secs": 1704110400, "nanos": 0, "val": [1, 0, 1, 1, 1]},
    }))
    client = SnapshotClient(config, session=session)

    values = client.get_values(["A:PV", "B:PV"], at=AT)

    url, kwargs = session.calls[0]
    assert url == "http://archiver.test/retrieval/data/getDataAtTime"
    assert kwargs["params"] == {"at": "2024-01-01T12:00:00.000-00:00"}
    assert json.loads(kwargs["data"]) == ["A:PV", "B:PV"]
    assert kwargs["timeout"] == 30
    assert values["A:PV"].value == 3.5
    assert values["A:PV"].timestamp_ms == 1704110400250
    assert values["A:PV"].severity == 1
    assert values["B:PV"].count == 1


def test_empty_pv_list_sends_nothing(config):
    session = FakeSession()
    assert SnapshotClient(config, session=session).get_values([]) == {}
    assert session.calls == []


def test_http_error(config):
    session = FakeSession(FakeResponse(status_code=500, text="Internal error"))
    with pytest.raises(HttpError) as excinfo:
        SnapshotClient(config, session=session).get_values(["A"], at=AT)
    assert excinfo.value.status_code == 500
    assert excinfo.value.body == "Internal error"


@pytest.mark.parametrize("exc,expected", [
    (requests.Timeout("slow"), Timeout),
    (requests.ConnectionError("refused"), TransportError),
])
def test_network_errors(config, exc, expected):
    with pytest.raises(expected):
        SnapshotClient(config, session=FakeSession(exc=exc)).get_values(["A"], at=AT)


def test_non_json_body(config):
    session = FakeSession(FakeResponse(text="<html>"))
    with pytest.raises(MalformedResponse):
        SnapshotClient(config, session=session).get_values(["A"], at=AT)
