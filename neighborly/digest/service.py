"""
Direct invocation of the digest for one community, plus default wiring.

Direct runs (test recipient, preview, debug, or a manual send) never advance
the community's last-digest-sent marker; only the scheduler does.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from pathlib import Path

from neighborly.contracts.collaborators import (
    ActivitySource,
    CommunityStore,
    EmailSender,
    RecipientDirectory,
    TextSynthesisService,
)
from neighborly.contracts.models import DigestMode, DigestRequest, Recipient, ensure_utc, utc_now
from neighborly.digest.aggregator import ActivityAggregator
from neighborly.digest.dispatcher import Dispatcher
from neighborly.digest.errors import CommunityNotFoundError
from neighborly.digest.pipeline import DigestContext, DigestPipeline, DigestResult, StageResult
from neighborly.digest.scheduler import DigestScheduler, eligible_recipients
from neighborly.digest.synthesizer import ContentSynthesizer
from neighborly.digest.urls import DigestLinkBuilder
from neighborly.observability.logging import get_logger
from neighborly.observability.structured import EventType, RunLogger

logger = get_logger(__name__)

TEST_RECIPIENT_NAME = "Test User"


class DigestService:
    """Runs the pipeline on demand for a single community."""

    def __init__(
        self,
        store: CommunityStore,
        directory: RecipientDirectory,
        pipeline: DigestPipeline,
    ):
        self.store = store
        self.directory = directory
        self.pipeline = pipeline

    def _recipients(self, request: DigestRequest) -> list[Recipient]:
        if request.test_recipient:
            return [Recipient(email=request.test_recipient, name=TEST_RECIPIENT_NAME)]
        if request.mode is not DigestMode.NORMAL:
            return []
        return eligible_recipients(self.directory.recipients(request.community_id))

    def invoke(self, request: DigestRequest, now: datetime | None = None) -> DigestResult:
        """
        Run the digest for request.community_id.

        A failed recipient lookup is returned as a failed DigestResult (no
        stage runs) rather than raised.

        Raises:
            CommunityNotFoundError: If the community does not exist
        """
        community = self.store.get(request.community_id)
        if community is None:
            raise CommunityNotFoundError(request.community_id)

        now = ensure_utc(now or utc_now())
        run_log = RunLogger(community_id=community.id)
        try:
            recipients = self._recipients(request)
        except Exception as e:
            logger.exception("Recipient lookup failed for %s", community.id)
            run_log.log_event(EventType.RUN_ERROR, stage="recipients", error=str(e))
            context = DigestContext(
                community=community, recipients=[], now=now, mode=request.mode, run_log=run_log
            )
            failure = StageResult(
                success=False,
                stage_name="recipients",
                items_processed=0,
                items_output=0,
                errors=[f"recipient lookup failed: {e}"],
            )
            return DigestResult(context=context, stage_results=[failure], success=False)

        logger.info(
            "Direct digest run for %s (mode=%s, recipients=%d)",
            community.id,
            request.mode.value,
            len(recipients),
        )
        return self.pipeline.run(community, recipients, now, request.mode, run_log)


@dataclass
class DigestComponents:
    """Everything the CLI and API need, wired from one set of collaborators."""

    store: CommunityStore
    pipeline: DigestPipeline
    scheduler: DigestScheduler
    service: DigestService


def build_components(
    source: ActivitySource,
    directory: RecipientDirectory,
    store: CommunityStore,
    synthesis_service: TextSynthesisService | None,
    sender: EmailSender,
    links: DigestLinkBuilder | None = None,
    **dispatcher_options,
) -> DigestComponents:
    """Wire the pipeline, scheduler and direct-invocation service."""
    links = links or DigestLinkBuilder()
    pipeline = DigestPipeline.build(
        aggregator=ActivityAggregator(source),
        synthesizer=ContentSynthesizer(synthesis_service, links=links),
        dispatcher=Dispatcher(sender, **dispatcher_options),
    )
    return DigestComponents(
        store=store,
        pipeline=pipeline,
        scheduler=DigestScheduler(store, directory, pipeline),
        service=DigestService(store, directory, pipeline),
    )


def build_default_components(snapshot_path: Path | None = None) -> DigestComponents:
    """
    Wire production adapters from settings.

    Uses the JSON snapshot store for data, Gemini for synthesis when a Google
    project or API key is configured, and Resend for delivery.
    """
    from neighborly.delivery.resend_client import ResendEmailSender
    from neighborly.infrastructure.settings import (
        GOOGLE_API_KEY,
        GOOGLE_CLOUD_PROJECT,
        SNAPSHOT_PATH,
    )
    from neighborly.llm.gemini import GeminiSynthesisService
    from neighborly.storage.snapshot import SnapshotStore

    store = SnapshotStore(snapshot_path or SNAPSHOT_PATH)
    synthesis: TextSynthesisService | None = None
    if GOOGLE_CLOUD_PROJECT or GOOGLE_API_KEY:
        synthesis = GeminiSynthesisService()
    else:
        logger.warning("No Gemini credentials configured; digests will use fallback content")

    return build_components(
        source=store,
        directory=store,
        store=store,
        synthesis_service=synthesis,
        sender=ResendEmailSender(),
    )
