from __future__ import annotations

import threading

import pytest

from automation_diag.collect.base import JobSummary
from automation_diag.collect.streams import materialize_streams, record_sort_key, should_materialize
from automation_diag.util.errors import CollectionCancelled

from fakes import at

JOB = JobSummary(job_id="2", runbook_name="R1", creation_time=at(2), status="Failed")


def test_records_are_emitted_in_ascending_record_id_order(scenario_service) -> None:
    account = scenario_service.accounts[0]

    result = materialize_streams(scenario_service, account, JOB, include_all_values=False)

    assert [r.record_id for r in result.rows] == ["3", "10", "20"]


def test_only_error_records_are_materialized_by_default(scenario_service) -> None:
    account = scenario_service.accounts[0]

    result = materialize_streams(scenario_service, account, JOB, include_all_values=False)

    values = {r.record_id: r.value for r in result.rows}
    assert values["3"] == {"record": "3", "job": "2"}
    assert values["10"] is None
    assert values["20"] is None
    assert [c[3] for c in scenario_service.calls_of("get_stream_value")] == ["3"]


def test_include_all_values_materializes_every_record(scenario_service) -> None:
    account = scenario_service.accounts[0]

    result = materialize_streams(scenario_service, account, JOB, include_all_values=True)

    assert all(r.value is not None for r in result.rows)
    assert len(scenario_service.calls_of("get_stream_value")) == 3


def test_rows_are_denormalized_with_job_identity(scenario_service) -> None:
    account = scenario_service.accounts[0]

    result = materialize_streams(scenario_service, account, JOB, include_all_values=False)
    row = result.rows[0].as_row()

    assert row["job_id"] == "2"
    assert row["runbook_name"] == "R1"
    assert row["job_status"] == "Failed"
    assert row["stream_record_id"] == "3"
    assert row["stream_type"] == "Error"
    assert row["summary"] == "boom"
    assert row["time"] == at(2).isoformat()


def test_value_fetch_failure_is_isolated_to_the_record(scenario_service) -> None:
    account = scenario_service.accounts[0]
    scenario_service.fail_on.add(("get_stream_value", "A:2:10"))

    result = materialize_streams(scenario_service, account, JOB, include_all_values=True)

    values = {r.record_id: r.value for r in result.rows}
    assert values["10"] is None
    assert values["3"] is not None
    assert values["20"] is not None
    assert len(result.errors) == 1
    assert result.errors[0]["item"] == "2:10"
    assert result.errors[0]["step"] == "stream_value"


def test_job_without_streams_yields_no_rows(scenario_service) -> None:
    account = scenario_service.accounts[0]
    job = JobSummary(job_id="1", runbook_name="R1", creation_time=at(1))

    result = materialize_streams(scenario_service, account, job, include_all_values=True)

    assert result.rows == []
    assert result.errors == []


def test_cancel_stops_value_fetches(scenario_service) -> None:
    account = scenario_service.accounts[0]
    cancel = threading.Event()
    cancel.set()

    with pytest.raises(CollectionCancelled):
        materialize_streams(scenario_service, account, JOB, include_all_values=True, cancel=cancel)
    assert scenario_service.calls_of("get_stream_value") == []


@pytest.mark.parametrize(
    "stream_type,include_all,expected",
    [
        ("Error", False, True),
        ("error", False, True),
        ("Output", False, False),
        ("Warning", False, False),
        ("Output", True, True),
        ("", True, True),
        ("", False, False),
    ],
)
def test_should_materialize(stream_type, include_all, expected) -> None:
    assert should_materialize(stream_type, include_all) is expected


def test_record_sort_key_orders_numeric_before_text() -> None:
    ids = ["job:0002", "10", "2", "job:0001"]

    assert sorted(ids, key=record_sort_key) == ["2", "10", "job:0001", "job:0002"]
