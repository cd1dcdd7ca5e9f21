"""
Unit tests for digest pipeline foundation

Tests:
- Pipeline dependency validation
- Stage execution order and early stop per mode
- Stage exceptions become failed results
"""

from __future__ import annotations

from dataclasses import dataclass, field

import pytest

from neighborly.contracts.models import DigestMode
from neighborly.digest.pipeline import (
    DigestContext,
    DigestPipeline,
    PipelineValidationError,
    StageResult,
)

# ============================================================================
# Mock Stages for Testing
# ============================================================================


@dataclass
class RecordingStage:
    """Mock stage that records that it ran"""

    name: str
    depends_on: list[str] = field(default_factory=list)
    log: list[str] = field(default_factory=list)
    fail_with: Exception | None = None

    def process(self, context: DigestContext) -> StageResult:
        self.log.append(self.name)
        if self.fail_with is not None:
            raise self.fail_with
        return StageResult(success=True, stage_name=self.name, items_processed=1, items_output=1)


def full_chain(log: list[str], **failures: Exception) -> list[RecordingStage]:
    names = ["aggregate", "group", "synthesize", "link", "render", "dispatch"]
    stages = []
    previous: list[str] = []
    for name in names:
        stages.append(
            RecordingStage(name=name, depends_on=previous, log=log, fail_with=failures.get(name))
        )
        previous = [name]
    return stages


# ============================================================================
# Validation
# ============================================================================


def test_pipeline_validates_correct_dependencies():
    """Pipeline should accept valid dependency ordering"""
    pipeline = DigestPipeline(full_chain([]))
    assert pipeline.validate_dependencies() == []


def test_pipeline_detects_missing_dependency():
    pipeline = DigestPipeline(
        [RecordingStage("group", depends_on=["aggregate"]), RecordingStage("aggregate")]
    )
    errors = pipeline.validate_dependencies()
    assert len(errors) == 1
    assert "group" in errors[0]
    assert "aggregate" in errors[0]


def test_run_refuses_invalid_pipeline(community, recipients, now, run_log):
    pipeline = DigestPipeline([RecordingStage("render", depends_on=["link"])])
    with pytest.raises(PipelineValidationError):
        pipeline.run(community, recipients, now, DigestMode.NORMAL, run_log)


def test_default_pipeline_is_valid(links):
    from conftest import FakeActivitySource, FakeEmailSender

    from neighborly.digest.aggregator import ActivityAggregator
    from neighborly.digest.dispatcher import Dispatcher
    from neighborly.digest.synthesizer import ContentSynthesizer

    pipeline = DigestPipeline.build(
        aggregator=ActivityAggregator(FakeActivitySource()),
        synthesizer=ContentSynthesizer(None, links=links),
        dispatcher=Dispatcher(FakeEmailSender()),
    )
    assert [s.name for s in pipeline.stages] == [
        "aggregate",
        "group",
        "synthesize",
        "link",
        "render",
        "dispatch",
    ]
    assert pipeline.validate_dependencies() == []


# ============================================================================
# Execution
# ============================================================================


@pytest.mark.parametrize(
    "mode, expected",
    [
        (DigestMode.NORMAL, ["aggregate", "group", "synthesize", "link", "render", "dispatch"]),
        (DigestMode.PREVIEW, ["aggregate", "group", "synthesize", "link", "render"]),
        (DigestMode.DEBUG, ["aggregate", "group"]),
    ],
)
def test_mode_decides_last_stage(mode, expected, community, recipients, now, run_log):
    log: list[str] = []
    result = DigestPipeline(full_chain(log)).run(community, recipients, now, mode, run_log)
    assert log == expected
    assert result.success is True
    assert [r.stage_name for r in result.stage_results] == expected


def test_stage_exception_stops_pipeline(community, recipients, now, run_log):
    """A raising stage is recorded as failed and later stages do not run"""
    log: list[str] = []
    stages = full_chain(log, aggregate=ConnectionError("all sources down"))
    result = DigestPipeline(stages).run(community, recipients, now, DigestMode.NORMAL, run_log)

    assert log == ["aggregate"]
    assert result.success is False
    assert result.error == "all sources down"
    assert result.to_dict() == {
        "sent": 0,
        "failed": 0,
        "perCommunityErrors": {"c-1": "all sources down"},
    }


def test_preview_result_without_message(community, recipients, now, run_log):
    log: list[str] = []
    result = DigestPipeline(full_chain(log)).run(
        community, recipients, now, DigestMode.PREVIEW, run_log
    )
    # Recording stages never render, so there is no HTML
    assert result.html is None
    assert result.to_dict() == {"subject": None, "html": None}
