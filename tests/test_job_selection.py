from __future__ import annotations

import pytest

from automation_diag.collect.base import CollectionFilters, JobSummary
from automation_diag.collect.jobs import (
    MODE_JOB_IDS,
    MODE_LAST_N,
    MODE_RUNBOOK_NAMES,
    last_n_by_creation,
    resolve_job_window,
    select_jobs,
)

from fakes import FakeService, at


def _jobs(n: int, runbook: str = "R1") -> list[JobSummary]:
    return [JobSummary(job_id=f"{i:03d}", runbook_name=runbook, creation_time=at(i)) for i in range(n)]


@pytest.mark.parametrize("count,window", [(0, 1), (3, 5), (5, 5), (10, 3), (1, 1)])
def test_last_n_returns_most_recent_descending(count, window) -> None:
    jobs = _jobs(count)
    # Listing order must not matter
    shuffled = jobs[1::2] + jobs[0::2]

    selected = last_n_by_creation(shuffled, window)

    assert len(selected) == min(window, count)
    expected = sorted(jobs, key=lambda j: j.creation_time, reverse=True)[:window]
    assert [j.job_id for j in selected] == [j.job_id for j in expected]


def test_last_n_breaks_creation_time_ties_by_job_id() -> None:
    jobs = [
        JobSummary(job_id="b", runbook_name="R", creation_time=at(1)),
        JobSummary(job_id="a", runbook_name="R", creation_time=at(1)),
        JobSummary(job_id="c", runbook_name="R", creation_time=None),
    ]

    assert [j.job_id for j in last_n_by_creation(jobs, 3)] == ["b", "a", "c"]
    assert [j.job_id for j in last_n_by_creation(list(reversed(jobs)), 3)] == ["b", "a", "c"]


def test_last_n_rejects_non_positive_window() -> None:
    with pytest.raises(ValueError):
        last_n_by_creation(_jobs(2), 0)


def test_job_ids_take_precedence_over_runbook_names() -> None:
    jobs = [
        JobSummary(job_id="1", runbook_name="R1", creation_time=at(1)),
        JobSummary(job_id="2", runbook_name="R1", creation_time=at(2)),
        JobSummary(job_id="3", runbook_name="R2", creation_time=at(3)),
    ]
    disjoint = CollectionFilters(job_ids=frozenset({"2"}), runbook_names=frozenset({"R2"}))
    overlapping = CollectionFilters(job_ids=frozenset({"3", "1"}), runbook_names=frozenset({"R2"}))

    mode, selected, truncated = resolve_job_window(jobs, disjoint)
    assert mode == MODE_JOB_IDS
    assert [j.job_id for j in selected] == ["2"]
    assert truncated is False

    mode, selected, _ = resolve_job_window(jobs, overlapping)
    assert mode == MODE_JOB_IDS
    assert [j.job_id for j in selected] == ["1", "3"]


def test_job_ids_ignore_window_size() -> None:
    jobs = _jobs(5)
    filters = CollectionFilters(job_ids=frozenset(j.job_id for j in jobs), job_window_size=2)

    _, selected, truncated = resolve_job_window(jobs, filters)

    assert len(selected) == 5
    assert truncated is False


def test_runbook_filter_windows_within_matching_jobs() -> None:
    jobs = _jobs(4, runbook="R1") + [
        JobSummary(job_id="x", runbook_name="R2", creation_time=at(100)),
    ]
    filters = CollectionFilters(runbook_names=frozenset({"R1"}), job_window_size=2)

    mode, selected, truncated = resolve_job_window(jobs, filters)

    assert mode == MODE_RUNBOOK_NAMES
    assert [j.job_id for j in selected] == ["003", "002"]
    assert truncated is True


def test_truncation_only_flagged_when_window_is_full() -> None:
    jobs = _jobs(3)

    _, _, truncated_exact = resolve_job_window(jobs, CollectionFilters(job_window_size=3))
    _, _, truncated_fewer = resolve_job_window(jobs, CollectionFilters(job_window_size=4))

    assert truncated_exact is True
    assert truncated_fewer is False


def test_select_jobs_scenario_last_two(scenario_service) -> None:
    account = scenario_service.accounts[0]

    selection = select_jobs(scenario_service, account, CollectionFilters(job_window_size=2))

    assert selection.mode == MODE_LAST_N
    assert [s.job_id for s in selection.summaries] == ["3", "2"]
    assert [j["job_id"] for j in selection.jobs] == ["3", "2"]
    assert selection.truncated is True
    assert [c[2] for c in scenario_service.calls_of("get_job")] == ["3", "2"]


def test_select_jobs_id_filter_wins_regardless_of_runbook(scenario_service) -> None:
    account = scenario_service.accounts[0]
    filters = CollectionFilters(job_ids=frozenset({"2"}), runbook_names=frozenset({"R2"}))

    selection = select_jobs(scenario_service, account, filters)

    assert [j["job_id"] for j in selection.jobs] == ["2"]
    assert selection.summaries[0].runbook_name == "R1"


def test_select_jobs_empty_account_is_not_an_error() -> None:
    service = FakeService()
    account = service.add_account("empty")

    selection = select_jobs(service, account, CollectionFilters())

    assert selection.jobs == []
    assert selection.truncated is False


def test_select_jobs_refreshes_status_from_detail(scenario_service, monkeypatch) -> None:
    account = scenario_service.accounts[0]
    monkeypatch.setattr(scenario_service, "get_job", lambda _account, job_id: {"job_id": job_id, "status": "Running"})

    selection = select_jobs(scenario_service, account, CollectionFilters(job_ids=frozenset({"2"})))

    assert selection.summaries[0].status == "Running"


def test_collection_filters_reject_bad_window() -> None:
    with pytest.raises(ValueError):
        CollectionFilters(job_window_size=0)
    with pytest.raises(ValueError):
        CollectionFilters(job_window_size=True)
