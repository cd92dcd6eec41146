"""Tests for the pipeline orchestrator, with fake collaborators and a real local server."""

import json

import aiohttp
import pytest

from revamp.errors import AuditTimeoutError, BuildError, GenerationError, NavigationError
from revamp.models import AuditResult, ContentDirectory, PipelineOutcome, PipelineStage
from revamp.services.pipeline import AccessibilityPipeline
from revamp.services.static_server import active_servers


class FakeCapture:
    def __init__(self, error=None):
        self.error = error
        self.calls = []

    async def capture(self, url, destination):
        self.calls.append(url)
        if self.error:
            raise self.error
        destination.mkdir(parents=True, exist_ok=True)
        (destination / "index.html").write_text("<html><body>before</body></html>")
        (destination / "text.json").write_text(json.dumps({"texts": ["Welcome home"]}))
        (destination / "palette.json").write_text(json.dumps({"colors": ["rgb(0, 0, 0)"]}))
        return ContentDirectory(root=destination)


class FakeGenerator:
    def __init__(self, error=None):
        self.error = error
        self.inputs = []

    async def generate(self, capture_dir, destination):
        self.inputs.append(capture_dir)
        if self.error:
            raise self.error
        destination.mkdir(parents=True, exist_ok=True)
        (destination / "index.html").write_text("<html lang=\"en\"><body>after</body></html>")
        return ContentDirectory(root=destination)


class FakeAuditor:
    """Fetches the served page for real and reports violations based on its body."""

    def __init__(self, fail_on=None, error=None):
        self.fail_on = fail_on
        self.error = error
        self.bodies = []
        self.live_servers = []

    async def audit(self, url):
        async with aiohttp.ClientSession() as session:
            async with session.get(url) as response:
                body = await response.text()
        self.bodies.append(body)
        self.live_servers.append(active_servers())
        if self.fail_on and self.fail_on in body:
            raise self.error
        count = 10 if "before" in body else 2
        return AuditResult(violations=[{"id": f"rule-{i}"} for i in range(count)])


def _pipeline(settings, capture=None, generator=None, auditor=None, progress=None):
    return AccessibilityPipeline(
        capture=capture or FakeCapture(),
        generator=generator or FakeGenerator(),
        auditor=auditor or FakeAuditor(),
        settings=settings,
        on_progress=progress.append_event if progress else None,
    )


class ProgressLog:
    def __init__(self):
        self.stages = []

    def append_event(self, stage, message):
        self.stages.append(stage)


@pytest.mark.asyncio
async def test_successful_run_returns_outcome(settings):
    auditor = FakeAuditor()
    generator = FakeGenerator()
    progress = ProgressLog()
    pipeline = _pipeline(settings, generator=generator, auditor=auditor, progress=progress)

    outcome = await pipeline.run("https://example.com")

    assert outcome == PipelineOutcome(before=90, after=98)
    assert outcome.improvement == 8
    assert pipeline.stage == PipelineStage.DONE
    assert pipeline.failed_stage is None
    assert progress.stages == [
        PipelineStage.CAPTURING,
        PipelineStage.AUDITING_BEFORE,
        PipelineStage.GENERATING,
        PipelineStage.AUDITING_AFTER,
        PipelineStage.DONE,
    ]
    # Each audit saw its own stage's content
    assert "before" in auditor.bodies[0]
    assert "after" in auditor.bodies[1]
    # Generation received the captured directory
    assert generator.inputs[0].root.name == "capture"


@pytest.mark.asyncio
async def test_one_server_per_audit(settings):
    baseline = active_servers()
    auditor = FakeAuditor()

    await _pipeline(settings, auditor=auditor).run("https://example.com")

    assert auditor.live_servers == [baseline + 1, baseline + 1]
    assert active_servers() == baseline


@pytest.mark.asyncio
async def test_runs_use_separate_work_dirs(settings):
    generator_a, generator_b = FakeGenerator(), FakeGenerator()
    await _pipeline(settings, generator=generator_a).run("https://example.com")
    await _pipeline(settings, generator=generator_b).run("https://example.com")

    assert generator_a.inputs[0].root != generator_b.inputs[0].root
    assert generator_a.inputs[0].root.parent.parent == settings.work_dir


@pytest.mark.asyncio
async def test_capture_failure_propagates_unchanged(settings):
    error = NavigationError("Failed to load https://nowhere.invalid")
    generator = FakeGenerator()
    auditor = FakeAuditor()
    pipeline = _pipeline(settings, capture=FakeCapture(error=error), generator=generator, auditor=auditor)

    with pytest.raises(NavigationError) as exc_info:
        await pipeline.run("https://nowhere.invalid")

    assert exc_info.value is error
    assert pipeline.stage == PipelineStage.FAILED
    assert pipeline.failed_stage == PipelineStage.CAPTURING
    assert generator.inputs == []
    assert auditor.bodies == []


@pytest.mark.asyncio
async def test_before_audit_timeout(settings):
    auditor = FakeAuditor(fail_on="before", error=AuditTimeoutError("never idle"))
    generator = FakeGenerator()
    pipeline = _pipeline(settings, generator=generator, auditor=auditor)

    with pytest.raises(TimeoutError):
        await pipeline.run("https://example.com")

    assert pipeline.failed_stage == PipelineStage.AUDITING_BEFORE
    assert generator.inputs == []


@pytest.mark.asyncio
@pytest.mark.parametrize("error", [GenerationError("HTTP 500"), BuildError("npm run build failed", returncode=1)])
async def test_generation_failures(settings, error):
    auditor = FakeAuditor()
    pipeline = _pipeline(settings, generator=FakeGenerator(error=error), auditor=auditor)

    with pytest.raises(type(error)) as exc_info:
        await pipeline.run("https://example.com")

    assert exc_info.value is error
    assert pipeline.failed_stage == PipelineStage.GENERATING
    assert len(auditor.bodies) == 1


@pytest.mark.asyncio
async def test_after_audit_failure(settings):
    baseline = active_servers()
    auditor = FakeAuditor(fail_on="after", error=AuditTimeoutError("never idle"))
    pipeline = _pipeline(settings, auditor=auditor)

    with pytest.raises(AuditTimeoutError):
        await pipeline.run("https://example.com")

    assert pipeline.failed_stage == PipelineStage.AUDITING_AFTER
    assert active_servers() == baseline


@pytest.mark.asyncio
async def test_consecutive_runs_do_not_leak_servers(settings):
    baseline = active_servers()

    await _pipeline(settings).run("https://example.com")
    assert active_servers() == baseline

    failing = FakeAuditor(fail_on="after", error=AuditTimeoutError("never idle"))
    with pytest.raises(AuditTimeoutError):
        await _pipeline(settings, auditor=failing).run("https://example.com")
    assert active_servers() == baseline

    outcome = await _pipeline(settings).run("https://example.com")
    assert outcome == PipelineOutcome(before=90, after=98)
    assert active_servers() == baseline


@pytest.mark.asyncio
async def test_state_resets_between_runs(settings):
    capture = FakeCapture(error=NavigationError("down"))
    pipeline = _pipeline(settings, capture=capture)
    with pytest.raises(NavigationError):
        await pipeline.run("https://example.com")

    capture.error = None
    outcome = await pipeline.run("https://example.com")

    assert outcome.before == 90
    assert pipeline.stage == PipelineStage.DONE
    assert pipeline.failed_stage is None
