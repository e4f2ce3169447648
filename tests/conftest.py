"""Shared fixtures for the test-suite."""

from datetime import time

import pytest

from ticket_notifier.sla.application import (
    AssignmentTrackingService,
    SLAEvaluationService,
    SLATrackingService,
    StaticDurationPolicyProvider,
)
from ticket_notifier.sla.domain import BusinessCalendar, BusinessHoursResolver, DurationPolicy
from ticket_notifier.sla.infrastructure import AssignmentTrackingStore, SLATrackingStore

from tests.factories import T0, FakeClock, InMemoryTable, RecordingNotifier


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(T0)


@pytest.fixture
def utc_calendar() -> BusinessCalendar:
    """Mon-Fri 09:00-17:00 UTC."""
    return BusinessCalendar(start_time=time(9, 0), end_time=time(17, 0), timezone="UTC")


@pytest.fixture
def always_open_calendar() -> BusinessCalendar:
    return BusinessCalendar(enabled=False, timezone="UTC")


@pytest.fixture
def sla_table() -> InMemoryTable:
    return InMemoryTable()


@pytest.fixture
def assignment_table() -> InMemoryTable:
    return InMemoryTable()


@pytest.fixture
async def sla_store(sla_table) -> SLATrackingStore:
    store = SLATrackingStore(sla_table)
    await store.load()
    return store


@pytest.fixture
async def assignment_store(assignment_table) -> AssignmentTrackingStore:
    store = AssignmentTrackingStore(assignment_table)
    await store.load()
    return store


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def tracking_service(sla_store, assignment_store, always_open_calendar, notifier, clock) -> SLATrackingService:
    return SLATrackingService(
        store=sla_store,
        policy_provider=StaticDurationPolicyProvider(DurationPolicy()),
        calendar=always_open_calendar,
        notifier=notifier,
        clock=clock,
        alert_channel="#sla-alerts",
        assignment_store=assignment_store,
    )


@pytest.fixture
def assignment_service(assignment_store, clock) -> AssignmentTrackingService:
    return AssignmentTrackingService(assignment_store, clock=clock)


@pytest.fixture
def evaluation_service(tracking_service, assignment_service, always_open_calendar, clock) -> SLAEvaluationService:
    resolver = BusinessHoursResolver(always_open_calendar, clock=clock)
    return SLAEvaluationService(tracking_service, resolver, assignment_service)
