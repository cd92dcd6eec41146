from datetime import datetime
from pathlib import Path
from typing import Callable, Optional
import logging
import uuid

from ..config import Settings, get_settings
from ..models import ContentDirectory, PipelineOutcome, PipelineStage
from .audit_runner import BrowserAuditRunner
from .scoring import score
from .site_capture import SiteCapture
from .site_generator import SiteGenerator, create_generator
from .static_server import serve

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[PipelineStage, str], None]


class AccessibilityPipeline:
    """Capture -> audit (before) -> generate -> audit (after), strictly in sequence.

    Each stage hands its output directory to the next one explicitly. Any
    failure leaves the pipeline in FAILED and the original exception is
    re-raised untouched; no partial outcome is ever built.
    """

    def __init__(
        self,
        capture: Optional[SiteCapture] = None,
        generator: Optional[SiteGenerator] = None,
        auditor: Optional[BrowserAuditRunner] = None,
        settings: Optional[Settings] = None,
        on_progress: Optional[ProgressCallback] = None,
    ):
        self.settings = settings or get_settings()
        self.capture = capture or SiteCapture(self.settings)
        self.generator = generator or create_generator(self.settings)
        self.auditor = auditor or BrowserAuditRunner(self.settings)
        self.on_progress = on_progress
        self.stage: Optional[PipelineStage] = None
        self.failed_stage: Optional[PipelineStage] = None

    async def run(self, url: str) -> PipelineOutcome:
        logger.info(f"Starting accessibility pipeline for: {url}")
        self.stage = None
        self.failed_stage = None
        run_dir = self._new_run_dir()

        try:
            self._enter(PipelineStage.CAPTURING, f"Capturing {url}")
            captured = await self.capture.capture(url, run_dir / "capture")

            self._enter(PipelineStage.AUDITING_BEFORE, "Auditing captured site")
            before = await self.audit_directory(captured)

            self._enter(PipelineStage.GENERATING, "Generating redesigned site")
            generated = await self.generator.generate(captured, run_dir / "generated")

            self._enter(PipelineStage.AUDITING_AFTER, "Auditing generated site")
            after = await self.audit_directory(generated)
        except Exception as e:
            self.failed_stage = self.stage
            self.stage = PipelineStage.FAILED
            logger.error(f"Pipeline failed during {self.failed_stage.value if self.failed_stage else 'setup'}: {e}")
            raise

        outcome = PipelineOutcome(before=before, after=after)
        self._enter(PipelineStage.DONE, f"Before {outcome.before}, after {outcome.after}")
        return outcome

    async def audit_directory(self, directory: ContentDirectory) -> int:
        """Serve a content directory locally, audit it, and reduce to a score"""
        async with serve(directory, self.settings) as base_url:
            result = await self.auditor.audit(base_url)
        value = score(result)
        logger.info(f"Accessibility score for {directory.root}: {value}% ({len(result.violations)} violations)")
        return value

    def _enter(self, stage: PipelineStage, message: str) -> None:
        self.stage = stage
        logger.info(f"[{stage.value}] {message}")
        if self.on_progress:
            self.on_progress(stage, message)

    def _new_run_dir(self) -> Path:
        name = f"run-{datetime.now().strftime('%Y%m%d-%H%M%S')}-{uuid.uuid4().hex[:8]}"
        run_dir = self.settings.work_dir / name
        run_dir.mkdir(parents=True, exist_ok=True)
        return run_dir
