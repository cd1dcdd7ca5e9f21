"""
Digest Pipeline - per-community digest run

Stages (each declares what it depends on):
    aggregate -> group -> synthesize -> link -> render -> dispatch

The scheduler and direct invocation both go through DigestPipeline.run().
The mode decides how far the run goes:
    - DEBUG stops after grouping and returns the raw data
    - PREVIEW stops after rendering and returns the HTML body
    - NORMAL dispatches to every recipient

The pipeline never touches the last-digest-sent marker.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Protocol

from neighborly.contracts.models import (
    ActivityGroup,
    AggregatedActivity,
    Community,
    DigestBrief,
    DigestMode,
    DispatchSummary,
    GroupedActivity,
    Recipient,
    RenderedMessage,
    SynthesizedContent,
)
from neighborly.digest.aggregator import ActivityAggregator
from neighborly.digest.brief import build_brief
from neighborly.digest.dispatcher import Dispatcher
from neighborly.digest.grouper import ActivityGrouper
from neighborly.digest.markup import MarkupLinker
from neighborly.digest.renderer import DigestRenderer
from neighborly.digest.synthesizer import ContentSynthesizer
from neighborly.observability.logging import get_logger
from neighborly.observability.structured import RunLogger

logger = get_logger(__name__)


# ============================================================================
# Data Structures
# ============================================================================


@dataclass
class DigestContext:
    """
    Shared context across pipeline stages.

    Each stage reads the fields its dependencies populated and writes its own.
    """

    # Inputs
    community: Community
    recipients: list[Recipient]
    now: datetime
    mode: DigestMode
    run_log: RunLogger

    # Stage outputs
    aggregated: AggregatedActivity | None = None
    groups: list[ActivityGroup] = field(default_factory=list)
    brief: DigestBrief | None = None
    content: SynthesizedContent | None = None
    linked: SynthesizedContent | None = None
    message: RenderedMessage | None = None
    dispatch: DispatchSummary | None = None


@dataclass
class StageResult:
    """Output contract for pipeline stages."""

    success: bool
    stage_name: str
    items_processed: int
    items_output: int
    metadata: dict[str, Any] = field(default_factory=dict)
    errors: list[str] = field(default_factory=list)


class DigestStage(Protocol):
    """
    Contract: all digest stages implement this protocol.

    Side Effects: stages write their output into the context
    """

    name: str
    depends_on: list[str]

    def process(self, context: DigestContext) -> StageResult: ...


class PipelineValidationError(Exception):
    """Raised when pipeline stage dependencies are invalid"""

    pass


# ============================================================================
# Stages
# ============================================================================


class AggregateStage:
    name = "aggregate"
    depends_on: list[str] = []

    def __init__(self, aggregator: ActivityAggregator):
        self.aggregator = aggregator

    def process(self, context: DigestContext) -> StageResult:
        """
        Side Effects:
            - Reads the activity source
            - Sets context.aggregated

        Raises:
            AggregationError: If every source fails
        """
        context.aggregated = self.aggregator.aggregate(
            context.community.id, context.now, context.run_log
        )
        return StageResult(
            success=True,
            stage_name=self.name,
            items_processed=len(context.aggregated.records),
            items_output=len(context.aggregated.records),
            metadata={"failed_kinds": [k.value for k in context.aggregated.failed_kinds]},
        )


class GroupStage:
    name = "group"
    depends_on = ["aggregate"]

    def __init__(self, grouper: ActivityGrouper):
        self.grouper = grouper

    def process(self, context: DigestContext) -> StageResult:
        """Side Effects: sets context.groups"""
        aggregated = context.aggregated
        assert aggregated is not None
        context.groups = self.grouper.group(
            aggregated.records, aggregated.window_start, aggregated.window_end, context.run_log
        )
        return StageResult(
            success=True,
            stage_name=self.name,
            items_processed=len(aggregated.records),
            items_output=len(context.groups),
        )


class SynthesizeStage:
    name = "synthesize"
    depends_on = ["aggregate", "group"]

    def __init__(self, synthesizer: ContentSynthesizer):
        self.synthesizer = synthesizer

    def process(self, context: DigestContext) -> StageResult:
        """
        Side Effects:
            - Calls the generative-text service (at most once)
            - Sets context.brief and context.content
        """
        assert context.aggregated is not None
        context.brief = build_brief(context.community, context.aggregated, context.groups)
        context.content = self.synthesizer.synthesize(context.brief, context.run_log)
        return StageResult(
            success=True,
            stage_name=self.name,
            items_processed=len(context.groups),
            items_output=len(context.content.suggestions),
            metadata={"used_fallback": context.content.used_fallback},
        )


class LinkStage:
    name = "link"
    depends_on = ["synthesize"]

    def __init__(self, linker: MarkupLinker):
        self.linker = linker

    def process(self, context: DigestContext) -> StageResult:
        """Side Effects: sets context.linked"""
        assert context.content is not None and context.brief is not None
        context.linked = self.linker.link_content(context.content, context.brief, context.run_log)
        return StageResult(success=True, stage_name=self.name, items_processed=1, items_output=1)


class RenderStage:
    name = "render"
    depends_on = ["link"]

    def __init__(self, renderer: DigestRenderer):
        self.renderer = renderer

    def process(self, context: DigestContext) -> StageResult:
        """Side Effects: sets context.message"""
        assert context.linked is not None and context.brief is not None
        context.message = self.renderer.render(context.brief, context.linked)
        return StageResult(success=True, stage_name=self.name, items_processed=1, items_output=1)


class DispatchStage:
    name = "dispatch"
    depends_on = ["render"]

    def __init__(self, dispatcher: Dispatcher):
        self.dispatcher = dispatcher

    def process(self, context: DigestContext) -> StageResult:
        """
        Side Effects:
            - Sends one email per recipient
            - Sets context.dispatch
        """
        assert context.message is not None
        context.dispatch = self.dispatcher.dispatch(
            context.message, context.recipients, context.run_log
        )
        return StageResult(
            success=True,
            stage_name=self.name,
            items_processed=len(context.recipients),
            items_output=context.dispatch.sent,
            metadata={"failed": context.dispatch.failed},
        )


# ============================================================================
# Result
# ============================================================================


@dataclass
class DigestResult:
    """Final output of a pipeline run"""

    context: DigestContext
    stage_results: list[StageResult]
    success: bool

    @property
    def error(self) -> str | None:
        for result in self.stage_results:
            if not result.success:
                return "; ".join(result.errors) or f"stage {result.stage_name} failed"
        return None

    @property
    def html(self) -> str | None:
        return self.context.message.html if self.context.message else None

    def debug_data(self) -> dict[str, Any]:
        """Aggregated and grouped data, before synthesis."""
        aggregated = self.context.aggregated
        records = aggregated.records if aggregated else []
        roster = aggregated.roster if aggregated else []
        return {
            "communityId": self.context.community.id,
            "window": {
                "start": aggregated.window_start.isoformat() if aggregated else None,
                "end": aggregated.window_end.isoformat() if aggregated else None,
            },
            "failedKinds": [k.value for k in aggregated.failed_kinds] if aggregated else [],
            "records": [r.model_dump(mode="json") for r in records],
            "roster": [r.model_dump(mode="json") for r in roster],
            "groups": [
                {
                    "groupId": g.group_id if isinstance(g, GroupedActivity) else None,
                    "kind": g.kind.value,
                    "actorId": g.actor_id,
                    "summary": g.summary,
                    "recordIds": [r.id for r in g.records],
                }
                for g in self.context.groups
            ],
        }

    def to_dict(self) -> dict[str, Any]:
        """Convert to dict for API responses."""
        if self.context.mode is DigestMode.DEBUG:
            return self.debug_data()
        if self.context.mode is DigestMode.PREVIEW:
            message = self.context.message
            return {"subject": message.subject if message else None, "html": self.html}
        data = (self.context.dispatch or DispatchSummary()).to_dict()
        if not self.success:
            data["perCommunityErrors"] = {self.context.community.id: self.error}
        return data


# ============================================================================
# Orchestrator
# ============================================================================


@dataclass
class DigestPipeline:
    """
    Orchestrates digest stages with explicit dependencies.

    Usage:
        pipeline = DigestPipeline.build(source, synthesis_service, email_sender)
        result = pipeline.run(community, recipients, now, DigestMode.NORMAL, run_log)
    """

    stages: list[DigestStage]

    @classmethod
    def build(
        cls,
        aggregator: ActivityAggregator,
        synthesizer: ContentSynthesizer,
        dispatcher: Dispatcher,
        grouper: ActivityGrouper | None = None,
        linker: MarkupLinker | None = None,
        renderer: DigestRenderer | None = None,
    ) -> DigestPipeline:
        return cls(
            stages=[
                AggregateStage(aggregator),
                GroupStage(grouper or ActivityGrouper()),
                SynthesizeStage(synthesizer),
                LinkStage(linker or MarkupLinker(synthesizer.links)),
                RenderStage(renderer or DigestRenderer(synthesizer.links)),
                DispatchStage(dispatcher),
            ]
        )

    def validate_dependencies(self) -> list[str]:
        """Every stage's dependencies must run before it."""
        errors = []
        seen: set[str] = set()
        for stage in self.stages:
            for dep in stage.depends_on:
                if dep not in seen:
                    errors.append(f"Stage '{stage.name}' depends on '{dep}' which has not run")
            seen.add(stage.name)
        return errors

    @staticmethod
    def _last_stage(mode: DigestMode) -> str:
        if mode is DigestMode.DEBUG:
            return "group"
        if mode is DigestMode.PREVIEW:
            return "render"
        return "dispatch"

    def run(
        self,
        community: Community,
        recipients: list[Recipient],
        now: datetime,
        mode: DigestMode,
        run_log: RunLogger,
    ) -> DigestResult:
        """
        Execute stages in order up to the mode's last stage.

        Returns:
            DigestResult; success is False if any stage raised

        Raises:
            PipelineValidationError: If stage dependencies are invalid
        """
        validation_errors = self.validate_dependencies()
        if validation_errors:
            raise PipelineValidationError(
                "Pipeline validation failed:\n" + "\n".join(validation_errors)
            )

        context = DigestContext(
            community=community, recipients=recipients, now=now, mode=mode, run_log=run_log
        )
        last_stage = self._last_stage(mode)

        stage_results: list[StageResult] = []
        for stage in self.stages:
            try:
                logger.info("Running stage %s for %s", stage.name, community.id)
                result = stage.process(context)
                stage_results.append(result)
                if not result.success:
                    logger.error("Stage '%s' failed: %s", stage.name, result.errors)
                    break
            except Exception as e:
                logger.exception("Stage '%s' raised exception for %s", stage.name, community.id)
                stage_results.append(
                    StageResult(
                        success=False,
                        stage_name=stage.name,
                        items_processed=0,
                        items_output=0,
                        errors=[str(e) or type(e).__name__],
                    )
                )
                break

            if stage.name == last_stage:
                break

        return DigestResult(
            context=context,
            stage_results=stage_results,
            success=all(r.success for r in stage_results),
        )
