"""Compliance statistics."""

from datetime import timedelta

from ticket_notifier.sla.domain import AssignmentTrackingRecord, StatsAggregator

from tests.factories import T0, make_record


def summarize(records, **kwargs):
    return StatsAggregator(critical_threshold_seconds=300).summarize(records, now=T0, **kwargs)


def test_counts_by_status():
    records = [
        make_record("1", "active", deadline=T0 + timedelta(minutes=2)),     # critical
        make_record("2", "active", deadline=T0 - timedelta(minutes=1)),     # overdue
        make_record("3", "active", deadline=T0 + timedelta(hours=1), is_paused=True),
        make_record("4", "missed"),
        make_record("5", "hit"),
    ]

    stats = summarize(records)

    assert stats.total_tracked == 5
    assert (stats.active, stats.missed, stats.hit) == (3, 1, 1)
    assert stats.critical == 1
    assert stats.overdue == 1
    assert stats.paused == 1
    assert stats.hit_rate == 0.2


def test_hit_rate_excludes_unwarranted():
    records = [
        make_record("1", "hit"),
        make_record("2", "missed", has_unwarranted_tag=True),
    ]
    stats = summarize(records)

    assert stats.hit_rate == 1.0
    assert stats.unwarranted == 1


def test_hit_rate_undefined_without_records():
    stats = summarize([])
    assert stats.hit_rate is None
    assert stats.by_agent == []


def test_average_time_to_hit():
    records = [
        make_record("1", "hit", assigned_at=T0, hit_at=T0 + timedelta(seconds=100)),
        make_record("2", "hit", assigned_at=T0, hit_at=T0 + timedelta(seconds=201)),
        make_record("3", "hit"),
    ]
    assert summarize(records).average_time_to_hit_seconds == 150.5


def test_tolerates_missing_fields():
    stats = summarize([make_record("1", "active", sla_bucket=None)])

    assert stats.critical == 0
    assert stats.overdue == 0
    assert stats.by_agent[0].key == "Unattributed"
    assert stats.by_sla_type[0].key == "Other"


def test_breakdowns():
    records = [
        make_record("1", "hit", assignee_name="Ana", sla_bucket="FRT"),
        make_record("2", "missed", assignee_name="Ana", sla_bucket="TTC"),
        make_record("3", "hit", assignee_email="bo@example.com", sla_bucket="FRT"),
    ]
    stats = summarize(records)

    assert [(row.key, row.total_tracked) for row in stats.by_agent] == [("Ana", 2), ("bo@example.com", 1)]
    assert stats.by_agent[0].hit_rate == 0.5
    assert [(row.key, row.hit) for row in stats.by_sla_type] == [("FRT", 2), ("TTC", 0)]
    assert "total_assigned" not in stats.by_agent[0].to_dict()


def test_assignment_denominators():
    records = [make_record("1", "hit", assignee_name="Ana")]
    assignments = [
        AssignmentTrackingRecord("1", T0, T0, assignee_name="Ana"),
        AssignmentTrackingRecord("2", T0, T0, assignee_name="Ana"),
        AssignmentTrackingRecord("3", T0, T0, assignee_name="Cy"),
    ]

    stats = summarize(records, assignments=assignments)
    rows = {row.key: row for row in stats.by_agent}

    assert rows["Ana"].total_assigned == 2
    assert rows["Cy"].total_assigned == 1
    assert rows["Cy"].total_tracked == 0
    assert rows["Cy"].hit_rate is None


def test_alert_channel_echo():
    stats = summarize([], alert_channel="#sla")
    assert stats.alerting_enabled is True
    assert stats.to_dict()["alert_channel"] == "#sla"
