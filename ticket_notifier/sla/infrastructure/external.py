"""
SLA External Service Integrations
==================================

External services for SLA tracking:
- YAML duration policy file watcher
- Slack Web API alerts
- APScheduler for background evaluation and store reloads
"""

import asyncio
import threading
import time
from datetime import datetime
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, List, Optional

import httpx
import yaml
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from pydantic import ValidationError
from watchdog.events import FileSystemEventHandler
from watchdog.observers import Observer

from ticket_notifier.config import AlertKind
from ticket_notifier.core import ConfigurationException
from ticket_notifier.sla.application.services import IDurationPolicyProvider, ISLAAlertNotifier
from ticket_notifier.sla.domain import DurationPolicy, SLARecord, TicketSnapshot
from ticket_notifier.shared.infrastructure.logging import get_logger

logger = get_logger(__name__)


class ConfigFileHandler(FileSystemEventHandler):
    """Watchdog event handler for duration policy file changes."""

    def __init__(self, policy_manager: "DurationPolicyManager", config_path: Path):
        self.policy_manager = policy_manager
        self.config_path = config_path
        super().__init__()

    def on_modified(self, event):
        """Handle file modification event."""
        if event.is_directory:
            return
        if Path(event.src_path).resolve() == self.config_path.resolve():
            logger.info("SLA policy file changed", extra={"path": event.src_path})
            self.policy_manager.reload()

    on_created = on_modified


class DurationPolicyManager(IDurationPolicyProvider):
    """
    Thread-safe duration policy provider with hot-reload support.

    The YAML file is layered over a base policy (built from environment
    settings). Recognised keys:

        sla_durations:        # seconds per bucket
          FRT: 300
          TTC: 86400
        sla_keywords:         # extra name keywords per bucket
          FRT: ["first reply"]

    A missing file means the base policy applies. A reload that fails
    keeps the previous policy.
    """

    def __init__(self, base_policy: Optional[DurationPolicy] = None):
        self._base = base_policy or DurationPolicy()
        self._policy: DurationPolicy = self._base
        self._lock = threading.Lock()
        self._path: Optional[Path] = None
        self._observer = None

    def load(self, path: Path) -> DurationPolicy:
        """
        Initial policy load.

        Raises:
            ConfigurationException: If the file exists but is invalid
        """
        self._path = Path(path)
        try:
            self._policy = self._load_from_file(self._path)
        except (OSError, yaml.YAMLError, ValidationError, ValueError) as e:
            raise ConfigurationException(
                f"Invalid SLA policy file {self._path}",
                {"path": str(self._path), "error": str(e)}
            ) from e
        logger.info("SLA duration policy loaded", extra={"durations": self._policy.durations})
        return self._policy

    def _load_from_file(self, path: Path) -> DurationPolicy:
        """Load and parse the YAML policy file."""
        if not path.exists():
            logger.info("SLA policy file not found, using environment policy", extra={"path": str(path)})
            return self._base

        with open(path, "r") as f:
            data = yaml.safe_load(f) or {}

        if not isinstance(data, dict):
            raise ValueError("policy file must contain a mapping")

        durations = data.get("sla_durations") or {}
        keywords = data.get("sla_keywords") or {}
        if not isinstance(durations, dict) or not isinstance(keywords, dict):
            raise ValueError("sla_durations and sla_keywords must be mappings")

        return self._base.merged_with(
            durations={str(k).strip().upper(): int(v) for k, v in durations.items()},
            keywords={str(k).strip().upper(): [str(w) for w in v or []] for k, v in keywords.items()},
        )

    def reload(self) -> bool:
        """Reload the policy from file, keeping the old one on failure."""
        if self._path is None:
            return False

        try:
            new_policy = self._load_from_file(self._path)
        except (OSError, yaml.YAMLError, ValidationError, ValueError) as e:
            logger.error(
                "Failed to reload SLA policy, keeping previous policy",
                extra={"path": str(self._path), "error": str(e)}
            )
            return False

        with self._lock:
            self._policy = new_policy
        logger.info("SLA duration policy reloaded", extra={"durations": new_policy.durations})
        return True

    def start_watching(self) -> None:
        """
        Start watching the policy file for changes.

        Skips watching if the file doesn't exist or file events are not
        available (e.g. some containers).
        """
        if self._path is None:
            raise RuntimeError("Policy not loaded. Call load() first.")

        if not self._path.exists():
            logger.info("SLA policy file doesn't exist, skipping file watch", extra={"path": str(self._path)})
            return

        try:
            self._observer = Observer()
            handler = ConfigFileHandler(self, self._path)
            self._observer.schedule(handler, str(self._path.parent), recursive=False)
            self._observer.start()
            logger.info("Started watching SLA policy file", extra={"path": str(self._path)})
        except OSError as e:
            logger.warning("File watching not available, using static policy", extra={"error": str(e)})
            self._observer = None

    def stop_watching(self) -> None:
        """Stop watching (safe to call even if not watching)."""
        if self._observer is not None:
            self._observer.stop()
            self._observer.join(timeout=5)
            self._observer = None

    def get_policy(self) -> DurationPolicy:
        with self._lock:
            return self._policy


class CircuitState:
    """Circuit breaker states."""
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitBreaker:
    """
    Circuit breaker for preventing cascade failures.

    States:
    - CLOSED: Normal operation, requests pass through
    - OPEN: After N failures, reject all requests for M seconds
    - HALF_OPEN: After timeout, allow one test request
    """

    def __init__(
        self,
        failure_threshold: int = 5,
        recovery_timeout: float = 60.0,
        clock: Callable[[], float] = time.monotonic
    ):
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self._clock = clock
        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._last_failure_time: Optional[float] = None

    @property
    def state(self) -> str:
        """Get current circuit state."""
        if self._state == CircuitState.OPEN and self._last_failure_time is not None:
            if self._clock() - self._last_failure_time >= self.recovery_timeout:
                self._state = CircuitState.HALF_OPEN
        return self._state

    def allow_request(self) -> bool:
        return self.state in (CircuitState.CLOSED, CircuitState.HALF_OPEN)

    def record_success(self) -> None:
        self._failure_count = 0
        self._state = CircuitState.CLOSED

    def record_failure(self) -> None:
        self._failure_count += 1
        self._last_failure_time = self._clock()

        if self._failure_count >= self.failure_threshold or self._state == CircuitState.HALF_OPEN:
            self._state = CircuitState.OPEN
            logger.warning(
                "Circuit breaker opened",
                extra={
                    "failure_count": self._failure_count,
                    "recovery_timeout": self.recovery_timeout
                }
            )


class SlackClient:
    """
    Slack Web API client with circuit breaker and retry logic.

    Handles posting Block Kit messages with:
    - Circuit breaker to prevent cascade failures
    - Exponential backoff retry on transport errors, 429 and 5xx
    - Timeout handling
    """

    RETRYABLE_STATUS = {429, 500, 502, 503, 504}

    def __init__(
        self,
        token: str,
        base_url: str = "https://slack.com/api",
        timeout: float = 5.0,
        max_retries: int = 3,
        backoff_base: float = 1.0,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        self._token = token
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._max_retries = max_retries
        self._backoff_base = backoff_base
        self._transport = transport
        self._circuit_breaker = CircuitBreaker(failure_threshold=5, recovery_timeout=60)
        self._http_client: Optional[httpx.AsyncClient] = None

    @property
    def circuit_breaker(self) -> CircuitBreaker:
        return self._circuit_breaker

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(
                base_url=self._base_url,
                timeout=self._timeout,
                headers={"Authorization": f"Bearer {self._token}"},
                transport=self._transport,
            )
        return self._http_client

    async def post_message(self, channel: str, blocks: List[Dict[str, Any]], text: str) -> bool:
        """
        Post a message with chat.postMessage.

        Returns:
            True if Slack accepted the message, False otherwise
        """
        if not self._circuit_breaker.allow_request():
            logger.warning("Circuit breaker open, skipping Slack message", extra={"channel": channel})
            return False

        payload = {"channel": channel, "blocks": blocks, "text": text}

        for attempt in range(self._max_retries):
            try:
                client = await self._get_client()
                response = await client.post("/chat.postMessage", json=payload)
            except httpx.HTTPError as e:
                logger.error(
                    "Slack request failed",
                    extra={"error": str(e), "attempt": attempt + 1, "channel": channel}
                )
            else:
                if response.status_code == 200:
                    try:
                        body = response.json()
                    except ValueError:
                        body = None
                    if not isinstance(body, dict):
                        logger.error(
                            "Slack returned an unreadable body",
                            extra={"channel": channel, "body": response.text[:200]}
                        )
                        self._circuit_breaker.record_failure()
                        return False
                    if body.get("ok"):
                        self._circuit_breaker.record_success()
                        return True
                    # Rejected by Slack (bad channel, bad token...): retrying won't help
                    logger.error(
                        "Slack rejected message",
                        extra={"error": body.get("error"), "channel": channel}
                    )
                    self._circuit_breaker.record_failure()
                    return False

                logger.warning(
                    "Slack API returned non-200",
                    extra={"status_code": response.status_code, "attempt": attempt + 1}
                )
                if response.status_code not in self.RETRYABLE_STATUS:
                    break

            if attempt < self._max_retries - 1:
                await asyncio.sleep(self._backoff_base * (2 ** attempt))

        self._circuit_breaker.record_failure()
        return False

    async def close(self) -> None:
        """Close HTTP client."""
        if self._http_client:
            await self._http_client.aclose()
            self._http_client = None


def format_instant(value: Optional[datetime]) -> str:
    return value.strftime("%Y-%m-%d %H:%M UTC") if value else "Unknown"


class SlackSLANotifier(ISLAAlertNotifier):
    """
    Sends SLA violation alerts to a Slack channel as Block Kit messages.
    """

    HEADERS = {
        AlertKind.DEADLINE_VIOLATION: "⏰ SLA Deadline Violated",
        AlertKind.STATUS_MISSED: "⚠️ SLA Missed",
    }

    def __init__(self, client: SlackClient, channel: str, ticket_link_base_url: str):
        self._client = client
        self._channel = channel
        self._ticket_link_base_url = ticket_link_base_url.rstrip("/")

    @property
    def channel(self) -> str:
        return self._channel

    def ticket_link(self, ticket_id: str) -> str:
        return f"{self._ticket_link_base_url}/{ticket_id}"

    def build_blocks(
        self,
        record: SLARecord,
        snapshot: TicketSnapshot,
        kind: str,
        deadline: Optional[datetime]
    ) -> List[Dict[str, Any]]:
        """Build the Block Kit payload for an alert."""
        assignee = record.assignee_name or "Unassigned"
        if record.assignee_email:
            assignee = f"{assignee} ({record.assignee_email})"
        status = record.ticket_state or "Open"

        return [
            {
                "type": "header",
                "text": {"type": "plain_text", "text": self.HEADERS.get(kind, "SLA Alert"), "emoji": True}
            },
            {
                "type": "section",
                "fields": [
                    {"type": "mrkdwn", "text": f"*SLA Name:*\n{record.sla_name}"},
                    {"type": "mrkdwn", "text": f"*Ticket ID:*\n{record.ticket_id}"},
                    {"type": "mrkdwn", "text": f"*Assignee:*\n{assignee}"},
                    {"type": "mrkdwn", "text": f"*Status:*\n{status}"},
                ]
            },
            {
                "type": "section",
                "text": {"type": "mrkdwn", "text": f"*Subject:*\n{snapshot.subject or 'No subject'}"}
            },
            {
                "type": "context",
                "elements": [
                    {
                        "type": "mrkdwn",
                        "text": f"Deadline: {format_instant(deadline)} | Created: {format_instant(snapshot.created_at)}"
                    }
                ]
            },
            {
                "type": "actions",
                "elements": [
                    {
                        "type": "button",
                        "text": {"type": "plain_text", "text": "Open in Intercom", "emoji": True},
                        "url": self.ticket_link(record.ticket_id),
                        "style": "danger"
                    }
                ]
            }
        ]

    async def send_sla_alert(
        self,
        record: SLARecord,
        snapshot: TicketSnapshot,
        kind: str,
        deadline: Optional[datetime]
    ) -> bool:
        blocks = self.build_blocks(record, snapshot, kind, deadline)
        text = f"{self.HEADERS.get(kind, 'SLA Alert')}: ticket {record.ticket_id} ({record.sla_name})"
        return await self._client.post_message(self._channel, blocks, text)

    async def close(self) -> None:
        await self._client.close()


class SLAScheduler:
    """
    Wrapper for APScheduler running the background jobs.

    Manages the lifecycle of the scheduler and jobs.
    """

    def __init__(self):
        self._scheduler: Optional[AsyncIOScheduler] = None
        self._jobs: List[Dict[str, Any]] = []
        self._running = False

    def add_job(
        self,
        job_func: Callable[[], Awaitable[Any]],
        interval_seconds: int,
        job_id: str,
        name: str
    ) -> None:
        """Register an interval job; must be called before start()."""
        self._jobs.append({
            "func": job_func,
            "seconds": interval_seconds,
            "id": job_id,
            "name": name,
        })

    async def start(self) -> None:
        """Start the scheduler with the registered jobs."""
        if self._running:
            logger.warning("SLA scheduler already running")
            return

        self._scheduler = AsyncIOScheduler()

        for job in self._jobs:
            self._scheduler.add_job(
                job["func"],
                "interval",
                seconds=job["seconds"],
                id=job["id"],
                name=job["name"],
                misfire_grace_time=60,
                max_instances=1,
                coalesce=True,
                replace_existing=True
            )

        self._scheduler.start()
        self._running = True

        logger.info(
            "SLA scheduler started",
            extra={"jobs": {job["id"]: job["seconds"] for job in self._jobs}}
        )

    async def stop(self) -> None:
        """Stop the scheduler gracefully."""
        if not self._running:
            return

        if self._scheduler:
            self._scheduler.shutdown(wait=False)

        self._running = False
        logger.info("SLA scheduler stopped")

    @property
    def job_ids(self) -> List[str]:
        return [job["id"] for job in self._jobs]

    @property
    def is_running(self) -> bool:
        """Check if scheduler is running."""
        return self._running
