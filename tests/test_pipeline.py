import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from pv_archive import ArchivePipeline, LastResultObserver
from pv_archive.config import ArchiverConfig
from pv_archive.utils.exceptions import (HttpError, InvalidRange,
                                         MalformedResponse, Timeout)

from conftest import BASE_URL, FakeArchiver, archive_payload

START = datetime(2024, 1, 1, tzinfo=timezone.utc)


def _points(*pairs):
    return [{"secs": secs, "nanos": 0, "val": val} for secs, val in pairs]


def test_invalid_range_fails_before_any_request(config, fake_archiver):
    pipeline = ArchivePipeline(config, transport=fake_archiver.transport)

    with pytest.raises(InvalidRange):
        pipeline.fetch_sync(["A"], START + timedelta(hours=1), START)
    with pytest.raises(InvalidRange):
        pipeline.fetch_sync(["A"], START, START)
    with pytest.raises(InvalidRange):
        pipeline.fetch_sync(["A"], START, START + timedelta(hours=1), target_width=0)
    with pytest.raises(InvalidRange):
        pipeline.fetch_sync([], START, START + timedelta(hours=1))
    with pytest.raises(InvalidRange):
        pipeline.fetch_sync(["A"], START, START + timedelta(days=1), operator="average")

    assert fake_archiver.requests == []


@pytest.mark.parametrize("operator", ["flyers", "ignoreflyers", "ncount", "nth", "optimized"])
def test_operator_without_plain_bin_size_is_rejected(config, fake_archiver, operator):
    pipeline = ArchivePipeline(config, transport=fake_archiver.transport)

    with pytest.raises(InvalidRange, match="cannot be used for binned retrieval"):
        pipeline.fetch_sync(["A"], START, START + timedelta(days=1), target_width=1000, operator=operator)

    assert fake_archiver.requests == []


def test_empty_pv_name_is_rejected(config, fake_archiver):
    pipeline = ArchivePipeline(config, transport=fake_archiver.transport)

    with pytest.raises(InvalidRange):
        pipeline.fetch_sync(["A", ""], START, START + timedelta(hours=1))

    assert fake_archiver.requests == []


def test_raw_fetch_end_to_end(config):
    archiver = FakeArchiver({
        "A": archive_payload("A", _points((1, 10.0), (3, 30.0)), egu="V"),
        "B": archive_payload("B", _points((2, 20.0), (3, 33.0)), egu="mA"),
    })
    pipeline = ArchivePipeline(config, transport=archiver.transport)

    result = pipeline.fetch_sync(["A", "B"], START, START + timedelta(minutes=30))

    assert result.ok
    assert result.binning.is_raw
    assert sorted(archiver.requested_pvs) == ["A", "B"]
    assert sorted(params["pv"] for _, _, params in archiver.requests) == ["A", "B"]
    assert result.matrix.timestamps == [1000, 2000, 3000]
    assert result.matrix.columns == {"A": [10.0, None, 30.0], "B": [None, 20.0, 33.0]}
    assert result.matrix.units == {"A": "V", "B": "mA"}
    assert pipeline.last_matrix == result.matrix


def test_binned_fetch_sends_operator_expression(config):
    archiver = FakeArchiver({"A": archive_payload("mean_300(A)", [{"secs": 1, "val": [1.0, 0.1, 0.5, 1.5, 12]}])})
    pipeline = ArchivePipeline(config, transport=archiver.transport)

    result = pipeline.fetch_sync(["A"], START, START + timedelta(days=1), target_width=1000)

    assert result.binning.operator == "mean"
    assert result.binning.bin_size_seconds == 300
    assert archiver.requests[0][2]["pv"] == "mean_300(A)"
    assert result.series[0].name == "A"
    assert result.series[0].points[0].count == 12


def test_requested_operator(config):
    archiver = FakeArchiver()
    pipeline = ArchivePipeline(config, transport=archiver.transport)

    pipeline.fetch_sync(["A"], START, START + timedelta(days=1), target_width=1000, operator="max")

    assert archiver.requests[0][2]["pv"] == "max_300(A)"


def test_partial_failure_keeps_other_pvs(config):
    archiver = FakeArchiver({
        "GOOD": archive_payload("GOOD", _points((1, 1.0))),
        "BAD": 500,
        "ODD": [{"meta": {"name": "ODD"}}],
    })
    observer = LastResultObserver()
    pipeline = ArchivePipeline(config, transport=archiver.transport, observers=[observer])

    result = pipeline.fetch_sync(["GOOD", "BAD", "ODD"], START, START + timedelta(minutes=5))

    assert not result.ok
    assert set(result.errors) == {"BAD", "ODD"}
    assert isinstance(result.errors["BAD"], HttpError)
    assert isinstance(result.errors["ODD"], MalformedResponse)
    assert result.matrix.columns == {"GOOD": [1.0], "BAD": [None], "ODD": [None]}
    assert [len(s) for s in result.series] == [1, 0, 0]
    assert observer.last_result is result
    assert set(observer.errors) == {"BAD", "ODD"}


def test_timeout_in_first_batch_of_two(config):
    pvs = [f"PV:{i}" for i in range(1, 8)]
    behaviour = {pv: archive_payload(pv, _points((i, float(i)))) for i, pv in enumerate(pvs, start=1)}
    behaviour["PV:3"] = ("sleep", 2)
    archiver = FakeArchiver(behaviour)
    cfg = ArchiverConfig(base_url=BASE_URL, timeouts={"default": 0.2})
    pipeline = ArchivePipeline(cfg, transport=archiver.transport)

    result = pipeline.fetch_sync(pvs, START, START + timedelta(minutes=5))

    assert list(result.errors) == ["PV:3"]
    assert isinstance(result.errors["PV:3"], Timeout)
    assert [s.name for s in result.series] == pvs
    assert list(result.matrix.columns) == pvs
    for i, pv in enumerate(pvs, start=1):
        expected = None if pv == "PV:3" else float(i)
        assert result.matrix.columns[pv][result.matrix.timestamps.index(i * 1000)] == expected


def test_last_matrix_survives_total_failure(config):
    archiver = FakeArchiver({"A": archive_payload("A", _points((1, 1.0)))})
    pipeline = ArchivePipeline(config, transport=archiver.transport)
    first = pipeline.fetch_sync(["A"], START, START + timedelta(minutes=5))

    archiver.behaviour["A"] = 503
    second = pipeline.fetch_sync(["A"], START, START + timedelta(minutes=5))

    assert second.matrix.columns == {"A": []}
    assert pipeline.last_matrix == first.matrix


def test_duplicate_pvs_are_fetched_once(config, fake_archiver):
    pipeline = ArchivePipeline(config, transport=fake_archiver.transport)
    result = pipeline.fetch_sync(["A", "A", "B"], START, START + timedelta(minutes=5))
    assert sorted(fake_archiver.requested_pvs) == ["A", "B"]
    assert list(result.matrix.columns) == ["A", "B"]


def test_failing_observer_does_not_break_fetch(config, fake_archiver):
    class Broken(LastResultObserver):
        def on_fetch_complete(self, result):
            raise RuntimeError("boom")

    pipeline = ArchivePipeline(config, transport=fake_archiver.transport, observers=[Broken()])
    assert pipeline.fetch_sync(["A"], START, START + timedelta(minutes=5)).ok


def test_snapshot_runs_off_loop(config):
    class StubSnapshot:
        def get_values(self, pvs, at=None):
            return {pv: at for pv in pvs}

    pipeline = ArchivePipeline(config, snapshot_client=StubSnapshot())
    assert asyncio.run(pipeline.snapshot(["A", "B"], START)) == {"A": START, "B": START}
