"""Deadline calculation, violation detection and record serialization."""

from datetime import datetime, time, timedelta, timezone

from ticket_notifier.sla.domain import (
    AlertEntry,
    Assignee,
    BusinessCalendar,
    DeadlineCalculator,
    SLAApplied,
    SLARecord,
    TicketSnapshot,
    ViolationDetector,
)

from tests.factories import T0, make_record, make_snapshot, utc


class TestDeadlineCalculator:

    def test_deadline_ignores_calendar(self, utc_calendar):
        # Friday 16:58 + 5 minutes lands after hours; still plain arithmetic
        assigned = utc(2024, 1, 19, 16, 58)
        assert DeadlineCalculator.compute_deadline(assigned, 300, utc_calendar) == utc(2024, 1, 19, 17, 3)

    def test_first_assignment_wins(self):
        snapshot = make_snapshot(first_assignment_at=T0, last_assignment_at=T0 + timedelta(hours=1))
        assert DeadlineCalculator.resolve_assignment(snapshot) == (T0, "first_assignment")

    def test_last_assignment_fallback(self):
        later = T0 + timedelta(hours=1)
        snapshot = make_snapshot(first_assignment_at=None, last_assignment_at=later)
        assert DeadlineCalculator.resolve_assignment(snapshot) == (later, "last_assignment")

    def test_updated_at_only_with_assignee(self):
        snapshot = make_snapshot(first_assignment_at=None, updated_at=T0)
        assert DeadlineCalculator.resolve_assignment(snapshot) == (T0, "updated_at")

        unassigned = make_snapshot(first_assignment_at=None, updated_at=T0, assignee=None)
        assert DeadlineCalculator.resolve_assignment(unassigned) == (None, None)

    def test_business_seconds_whole_days_only(self, utc_calendar):
        start = utc(2024, 1, 15, 9, 0)
        assert DeadlineCalculator.business_seconds_elapsed(start, start + timedelta(hours=23), utc_calendar) == 0
        assert DeadlineCalculator.business_seconds_elapsed(
            start, start + timedelta(days=2, hours=3), utc_calendar
        ) == 2 * 8 * 3600

    def test_business_seconds_disabled_calendar(self, always_open_calendar):
        start = utc(2024, 1, 15, 9, 0)
        assert DeadlineCalculator.business_seconds_elapsed(
            start, start + timedelta(minutes=90), always_open_calendar
        ) == 5400

    def test_business_seconds_custom_window(self):
        calendar = BusinessCalendar(timezone="UTC", start_time=time(10, 0), end_time=time(14, 0))
        start = utc(2024, 1, 15, 9, 0)
        assert DeadlineCalculator.business_seconds_elapsed(start, start + timedelta(days=1), calendar) == 4 * 3600


class TestViolationDetector:

    deadline = T0 + timedelta(seconds=300)

    def test_missed_status_fires(self):
        alert = ViolationDetector.detect("missed", False, self.deadline, T0)
        assert alert.kind == "status_missed"
        assert alert.status_at_emission == "missed"

    def test_missed_fires_without_deadline(self):
        assert ViolationDetector.detect("missed", False, None, T0).kind == "status_missed"

    def test_missed_fires_once(self):
        first = ViolationDetector.detect("missed", False, self.deadline, T0)
        assert ViolationDetector.detect("missed", False, self.deadline, T0 + timedelta(hours=1), [first]) is None

    def test_deadline_violation(self):
        now = T0 + timedelta(seconds=301)
        alert = ViolationDetector.detect("active", False, self.deadline, now)
        assert alert.kind == "deadline_violation"
        assert alert.deadline_at_emission == self.deadline

    def test_not_overdue_at_deadline(self):
        assert ViolationDetector.detect("active", False, self.deadline, self.deadline) is None

    def test_paused_ticket_never_violates(self):
        assert ViolationDetector.detect("active", True, self.deadline, T0 + timedelta(hours=2)) is None

    def test_no_deadline_no_violation(self):
        assert ViolationDetector.detect("active", False, None, T0 + timedelta(days=2)) is None

    def test_hit_never_violates(self):
        assert ViolationDetector.detect("hit", False, self.deadline, T0 + timedelta(hours=2)) is None

    def test_deadline_violation_deduped_by_deadline(self):
        now = T0 + timedelta(seconds=301)
        first = ViolationDetector.detect("active", False, self.deadline, now)
        assert ViolationDetector.detect("active", False, self.deadline, now, [first]) is None

        new_deadline = self.deadline + timedelta(hours=1)
        later = new_deadline + timedelta(seconds=1)
        assert ViolationDetector.detect("active", False, new_deadline, later, [first]).kind == "deadline_violation"

    def test_dedup_is_offset_independent(self):
        first = ViolationDetector.detect("active", False, self.deadline, T0 + timedelta(seconds=301))
        eastern = self.deadline.astimezone(timezone(timedelta(hours=-5)))
        assert ViolationDetector.detect("active", False, eastern, T0 + timedelta(hours=1), [first]) is None


class TestTicketSnapshot:

    def test_linked_sla_fallback(self):
        snapshot = make_snapshot(sla_status=None, linked_sla_applied=SLAApplied("NRT", "active"))
        assert snapshot.effective_sla.name == "NRT"

    def test_sla_without_status_is_ignored(self):
        snapshot = TicketSnapshot(id="1001", sla_applied=SLAApplied("First Response Time", None))
        assert snapshot.effective_sla is None

    def test_snoozed_in_future_is_paused(self):
        snapshot = make_snapshot(snoozed_until=T0 + timedelta(minutes=5))
        assert snapshot.is_paused(T0) is True
        assert snapshot.is_paused(T0 + timedelta(minutes=6)) is False

    def test_waiting_on_customer_is_paused(self):
        assert make_snapshot(state_category="waiting_on_customer").is_paused(T0) is True
        assert make_snapshot(state_category="in_progress").is_paused(T0) is False

    def test_has_tag_is_case_insensitive_containment(self):
        snapshot = make_snapshot(tags=["Unwarranted SLA - billing"])
        assert snapshot.has_tag("unwarranted sla") is True

    def test_has_assignee(self):
        assert make_snapshot(assignee=None, assignee_id="7").has_assignee is True
        assert make_snapshot(assignee=Assignee(name="Only a name")).has_assignee is False


class TestSLARecord:

    def test_round_trip_keeps_alert_history(self):
        deadline = T0 + timedelta(seconds=300)
        record = make_record(
            deadline=deadline,
            assigned_at=T0,
            assigned_at_source="first_assignment",
            tags=["vip"],
            assignee_name="Jane Doe",
        )
        record.append_alert(AlertEntry("deadline_violation", T0 + timedelta(seconds=301), deadline, "active"))

        restored = SLARecord.from_dict("1001", record.to_dict())
        assert restored == record
        assert restored.has_status_missed_alert() is False

    def test_serialized_alert_keys(self):
        entry = AlertEntry("status_missed", T0, None, "missed")
        assert entry.to_dict() == {
            "type": "status_missed",
            "timestamp": T0.isoformat(),
            "deadline": None,
            "status": "missed",
        }

    def test_append_alert_is_idempotent(self):
        record = make_record()
        entry = AlertEntry("status_missed", T0, None, "missed")
        assert record.append_alert(entry) is True
        assert record.append_alert(AlertEntry("status_missed", T0 + timedelta(hours=1), None, "missed")) is False
        assert record.alert_count == 1

    def test_remaining_seconds(self):
        record = make_record(deadline=T0 + timedelta(seconds=90))
        assert record.remaining_seconds(T0) == 90
        assert record.remaining_seconds(T0 + timedelta(hours=1)) == 0
        assert make_record().remaining_seconds(T0) is None

    def test_from_dict_accepts_unix_seconds(self):
        record = SLARecord.from_dict("9", {
            "sla_status": "active",
            "deadline": 1705327500,
            "updated_at": "2024-01-15T14:00:00Z",
        })
        assert record.deadline == datetime(2024, 1, 15, 14, 5, tzinfo=timezone.utc)
        assert record.sla_name == "Unknown SLA"
