"""
Hourly digest scheduler.

A community is due when its local time (from its own timezone) is within
[DIGEST_SEND_HOUR:00, DIGEST_SEND_HOUR+1:00) on its digest weekday and its
last-digest-sent marker is unset or older than the start of that window.
The marker is advanced only after a dispatch was attempted, so repeated
ticks within the same window send at most once.
"""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from datetime import UTC, datetime
from zoneinfo import ZoneInfo

from neighborly.config import DIGEST_SEND_HOUR, SCHEDULER_MAX_WORKERS
from neighborly.contracts.collaborators import CommunityStore, RecipientDirectory
from neighborly.contracts.models import (
    Community,
    CommunityOutcome,
    CommunityStatus,
    DigestMode,
    Recipient,
    RunReport,
    ensure_utc,
    utc_now,
)
from neighborly.digest.pipeline import DigestPipeline
from neighborly.observability.logging import get_logger
from neighborly.observability.structured import EventType, RunLogger, new_run_id
from neighborly.observability.telemetry import counter, log_event

logger = get_logger(__name__)

NO_SUBSCRIBERS_REASON = "no subscribers with digest enabled"


def window_start(
    community: Community, now: datetime, send_hour: int = DIGEST_SEND_HOUR
) -> datetime:
    """
    Start of the send window for the community's local day containing `now`, in UTC.

    Raises:
        ZoneInfoNotFoundError: If the community timezone cannot be resolved
    """
    local = ensure_utc(now).astimezone(ZoneInfo(community.timezone))
    start = local.replace(hour=send_hour, minute=0, second=0, microsecond=0)
    return start.astimezone(UTC)


def is_due(community: Community, now: datetime, send_hour: int = DIGEST_SEND_HOUR) -> bool:
    """
    Whether the community should receive its digest at `now`.

    Raises:
        ZoneInfoNotFoundError: If the community timezone cannot be resolved
    """
    local = ensure_utc(now).astimezone(ZoneInfo(community.timezone))
    if local.weekday() != community.digest_weekday or local.hour != send_hour:
        return False
    marker = community.last_digest_sent
    return marker is None or marker < window_start(community, now, send_hour)


def eligible_recipients(recipients: list[Recipient]) -> list[Recipient]:
    return [r for r in recipients if r.is_eligible]


class DigestScheduler:
    """Runs the digest for every due community on each tick."""

    def __init__(
        self,
        store: CommunityStore,
        directory: RecipientDirectory,
        pipeline: DigestPipeline,
        max_workers: int = SCHEDULER_MAX_WORKERS,
        send_hour: int = DIGEST_SEND_HOUR,
    ):
        self.store = store
        self.directory = directory
        self.pipeline = pipeline
        self.max_workers = max(1, max_workers)
        self.send_hour = send_hour

    def _outcome(
        self, community: Community, status: CommunityStatus, **fields
    ) -> CommunityOutcome:
        return CommunityOutcome(
            community_id=community.id, community_name=community.name, status=status, **fields
        )

    def run_community(self, community: Community, now: datetime, run_id: str) -> CommunityOutcome:
        """
        Run the digest for one due community.

        Side Effects:
            - Reads recipients, runs the pipeline (sends email)
            - Advances the community's marker on a completed dispatch
        """
        run_log = RunLogger(community_id=community.id, run_id=run_id)
        run_log.log_event(EventType.RUN_START, community_name=community.name)

        try:
            recipients = eligible_recipients(self.directory.recipients(community.id))
        except Exception as e:
            logger.exception("Recipient lookup failed for %s", community.id)
            run_log.log_event(EventType.RUN_ERROR, stage="recipients", error=str(e))
            return self._outcome(
                community, CommunityStatus.ERROR, reason=f"recipient lookup failed: {e}"
            )

        if not recipients:
            logger.info("Skipping %s: %s", community.id, NO_SUBSCRIBERS_REASON)
            run_log.log_event(EventType.RUN_SKIPPED, reason=NO_SUBSCRIBERS_REASON)
            return self._outcome(community, CommunityStatus.SKIPPED, reason=NO_SUBSCRIBERS_REASON)

        result = self.pipeline.run(community, recipients, now, DigestMode.NORMAL, run_log)
        if not result.success or result.context.dispatch is None:
            reason = result.error or "dispatch did not run"
            run_log.log_event(EventType.RUN_ERROR, error=reason)
            return self._outcome(community, CommunityStatus.ERROR, reason=reason)

        try:
            self.store.mark_digest_sent(community.id, now)
            run_log.log_event(EventType.MARKER_SAVED, sent_at=now)
        except Exception as e:
            logger.warning("Failed to persist digest marker for %s: %s", community.id, e)
            run_log.log_event(EventType.MARKER_SAVE_ERROR, error=str(e))

        dispatch = result.context.dispatch
        run_log.log_event(EventType.RUN_OK, sent=dispatch.sent, failed=dispatch.failed)
        return self._outcome(
            community,
            CommunityStatus.SENT,
            recipient_count=len(recipients),
            sent=dispatch.sent,
            failed=dispatch.failed,
        )

    def _evaluate(
        self, community: Community, now: datetime, run_id: str
    ) -> CommunityOutcome | None:
        """Outcome for a community, or None when it is not due."""
        try:
            if not is_due(community, now, self.send_hour):
                return None
        except Exception as e:
            logger.error("Eligibility check failed for %s: %s", community.id, e)
            return self._outcome(
                community,
                CommunityStatus.ERROR,
                reason=f"eligibility check failed: invalid timezone {community.timezone!r}",
            )

        try:
            return self.run_community(community, now, run_id)
        except Exception as e:
            logger.exception("Digest run failed for %s", community.id)
            reason = str(e) or type(e).__name__
            return self._outcome(community, CommunityStatus.ERROR, reason=reason)

    def tick(self, now: datetime | None = None) -> RunReport:
        """
        Evaluate every community once.

        Returns:
            RunReport with one outcome per due community
        """
        now = ensure_utc(now or utc_now())
        report = RunReport(run_id=new_run_id(), started_at=now)
        communities = self.store.list_communities()

        if self.max_workers > 1 and len(communities) > 1:
            with ThreadPoolExecutor(max_workers=self.max_workers) as executor:
                results = list(
                    executor.map(lambda c: self._evaluate(c, now, report.run_id), communities)
                )
        else:
            results = [self._evaluate(c, now, report.run_id) for c in communities]

        report.outcomes = [o for o in results if o is not None]

        for outcome in report.outcomes:
            counter(f"digest.scheduler.{outcome.status}")
        log_event(
            "digest.scheduler.tick",
            run_id=report.run_id,
            communities=len(communities),
            due=len(report.outcomes),
            sent=report.sent,
            failed=report.failed,
        )
        return report
