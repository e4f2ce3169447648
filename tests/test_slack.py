"""Slack client, circuit breaker and SLA alert notifier."""

import json
from datetime import timedelta

import httpx
import pytest

from ticket_notifier.sla.application import SLATrackingService, StaticDurationPolicyProvider
from ticket_notifier.sla.infrastructure import CircuitBreaker, SlackClient, SlackSLANotifier

from tests.factories import T0, make_record, make_snapshot


class Recorder:
    """MockTransport handler replaying canned responses."""

    def __init__(self, *responses):
        self.responses = list(responses)
        self.requests = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        response = self.responses.pop(0) if len(self.responses) > 1 else self.responses[0]
        if isinstance(response, Exception):
            raise response
        return response


def ok() -> httpx.Response:
    return httpx.Response(200, json={"ok": True, "ts": "1.2"})


def client_for(recorder: Recorder, **kwargs) -> SlackClient:
    return SlackClient(
        token="xoxb-test",
        base_url="https://slack.test/api",
        backoff_base=0,
        transport=httpx.MockTransport(recorder),
        **kwargs
    )


class TestSlackClient:

    async def test_posts_message(self):
        recorder = Recorder(ok())
        client = client_for(recorder)

        assert await client.post_message("#sla", [{"type": "divider"}], "hello") is True

        request = recorder.requests[0]
        assert request.url.path == "/api/chat.postMessage"
        assert request.headers["Authorization"] == "Bearer xoxb-test"
        assert json.loads(request.content) == {"channel": "#sla", "blocks": [{"type": "divider"}], "text": "hello"}
        await client.close()

    async def test_retries_server_errors(self):
        recorder = Recorder(httpx.Response(503), httpx.Response(429), ok())
        client = client_for(recorder)

        assert await client.post_message("#sla", [], "hi") is True
        assert len(recorder.requests) == 3

    async def test_retries_transport_errors(self):
        recorder = Recorder(httpx.ConnectError("down"), ok())
        client = client_for(recorder)

        assert await client.post_message("#sla", [], "hi") is True
        assert len(recorder.requests) == 2

    async def test_gives_up_after_max_retries(self):
        recorder = Recorder(httpx.Response(500))
        client = client_for(recorder, max_retries=2)

        assert await client.post_message("#sla", [], "hi") is False
        assert len(recorder.requests) == 2

    async def test_slack_rejection_is_not_retried(self):
        recorder = Recorder(httpx.Response(200, json={"ok": False, "error": "channel_not_found"}))
        client = client_for(recorder)

        assert await client.post_message("#nope", [], "hi") is False
        assert len(recorder.requests) == 1

    @pytest.mark.parametrize("response", [
        httpx.Response(200, text="<html>gateway</html>"),
        httpx.Response(200, json=["ok"]),
    ])
    async def test_unreadable_body_is_a_failed_delivery(self, response):
        recorder = Recorder(response)
        client = client_for(recorder)

        assert await client.post_message("#sla", [], "hi") is False
        assert len(recorder.requests) == 1

    async def test_unreadable_body_does_not_abort_processing(self, sla_store, always_open_calendar, clock):
        recorder = Recorder(httpx.Response(200, text="not json"))
        notifier = SlackSLANotifier(client_for(recorder), "#sla-alerts", "https://app.example.com/tickets")
        service = SLATrackingService(
            store=sla_store,
            policy_provider=StaticDurationPolicyProvider(),
            calendar=always_open_calendar,
            notifier=notifier,
            clock=clock,
        )

        result = await service.process_ticket(make_snapshot(sla_status="missed"))

        assert result.violation_occurred is True
        assert result.alert_sent is False
        assert sla_store.get("1001").alert_history == []

    async def test_client_errors_are_not_retried(self):
        recorder = Recorder(httpx.Response(400))
        client = client_for(recorder)

        assert await client.post_message("#sla", [], "hi") is False
        assert len(recorder.requests) == 1

    async def test_open_circuit_skips_requests(self):
        recorder = Recorder(httpx.Response(200, json={"ok": False, "error": "invalid_auth"}))
        client = client_for(recorder)

        for _ in range(5):
            await client.post_message("#sla", [], "hi")
        assert client.circuit_breaker.state == "open"

        assert await client.post_message("#sla", [], "hi") is False
        assert len(recorder.requests) == 5


class TestCircuitBreaker:

    def test_half_open_after_timeout(self):
        now = [0.0]
        breaker = CircuitBreaker(failure_threshold=2, recovery_timeout=10, clock=lambda: now[0])

        breaker.record_failure()
        assert breaker.state == "closed"
        breaker.record_failure()
        assert breaker.allow_request() is False

        now[0] = 10.0
        assert breaker.state == "half_open"
        assert breaker.allow_request() is True

        breaker.record_failure()
        assert breaker.state == "open"

    def test_success_closes(self):
        breaker = CircuitBreaker(failure_threshold=1)
        breaker.record_failure()
        breaker.record_success()
        assert breaker.state == "closed"


class TestSlackSLANotifier:

    def notifier(self, recorder):
        return SlackSLANotifier(client_for(recorder), "#sla-alerts", "https://app.example.com/tickets/")

    def test_deadline_blocks(self):
        notifier = self.notifier(Recorder(ok()))
        record = make_record(
            "215",
            deadline=T0 + timedelta(minutes=5),
            assignee_name="Jane Doe",
            assignee_email="jane@example.com",
            ticket_state="In progress",
        )
        snapshot = make_snapshot("215", subject="Sync broken", created_at=T0)

        blocks = notifier.build_blocks(record, snapshot, "deadline_violation", record.deadline)

        assert blocks[0]["text"]["text"] == "⏰ SLA Deadline Violated"
        fields = [f["text"] for f in blocks[1]["fields"]]
        assert fields == [
            "*SLA Name:*\nFirst Response Time",
            "*Ticket ID:*\n215",
            "*Assignee:*\nJane Doe (jane@example.com)",
            "*Status:*\nIn progress",
        ]
        assert blocks[2]["text"]["text"] == "*Subject:*\nSync broken"
        assert blocks[3]["elements"][0]["text"] == "Deadline: 2024-01-15 14:05 UTC | Created: 2024-01-15 14:00 UTC"
        button = blocks[4]["elements"][0]
        assert button["url"] == "https://app.example.com/tickets/215"
        assert button["style"] == "danger"

    def test_missed_blocks_with_missing_fields(self):
        notifier = self.notifier(Recorder(ok()))
        record = make_record("9", "missed")
        snapshot = make_snapshot("9", sla_status="missed")

        blocks = notifier.build_blocks(record, snapshot, "status_missed", None)

        assert blocks[0]["text"]["text"] == "⚠️ SLA Missed"
        assert blocks[1]["fields"][2]["text"] == "*Assignee:*\nUnassigned"
        assert blocks[2]["text"]["text"] == "*Subject:*\nNo subject"
        assert blocks[3]["elements"][0]["text"].startswith("Deadline: Unknown")

    async def test_send_posts_to_channel(self):
        recorder = Recorder(ok())
        notifier = self.notifier(recorder)

        sent = await notifier.send_sla_alert(make_record("9", "missed"), make_snapshot("9"), "status_missed", None)

        assert sent is True
        body = json.loads(recorder.requests[0].content)
        assert body["channel"] == "#sla-alerts"
        assert body["text"].startswith("⚠️ SLA Missed: ticket 9")
        await notifier.close()
