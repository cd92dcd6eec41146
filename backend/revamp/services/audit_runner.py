from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, AsyncIterator, Optional
import asyncio
import logging

import aiohttp
from playwright.async_api import Error as PlaywrightError
from playwright.async_api import Page
from playwright.async_api import TimeoutError as PlaywrightTimeoutError
from playwright.async_api import async_playwright

from ..config import Settings, get_settings
from ..errors import AuditEngineError, AuditTimeoutError, NavigationError
from ..models import AuditResult

logger = logging.getLogger(__name__)

AXE_FILENAME = "axe.min.js"

# Runs inside the page; resolves once axe has finished
AXE_RUN_SCRIPT = """async () => {
    if (!window.axe || typeof window.axe.run !== 'function') {
        throw new Error('axe-core is not loaded in the page');
    }
    const results = await window.axe.run(document);
    return {
        violations: results.violations,
        passes: results.passes,
        incomplete: results.incomplete,
        inapplicable: results.inapplicable
    };
}"""

_active_sessions = 0


def active_sessions() -> int:
    """Number of browser sessions opened by the runner and not yet closed"""
    return _active_sessions


async def ensure_axe_script(settings: Settings) -> Path:
    """Return a local axe.min.js, downloading it into the cache once if needed"""
    if settings.axe_script_path:
        if not settings.axe_script_path.is_file():
            raise AuditEngineError(f"axe-core script not found at {settings.axe_script_path}")
        return settings.axe_script_path

    cached = settings.cache_dir / AXE_FILENAME
    if cached.is_file() and cached.stat().st_size > 0:
        return cached

    logger.info(f"Downloading axe-core from {settings.axe_cdn_url}")
    try:
        timeout = aiohttp.ClientTimeout(total=30)
        async with aiohttp.ClientSession(timeout=timeout) as session:
            async with session.get(settings.axe_cdn_url) as response:
                if response.status != 200:
                    raise AuditEngineError(f"axe-core download failed: HTTP {response.status}")
                script = await response.read()
    except (aiohttp.ClientError, asyncio.TimeoutError) as e:
        raise AuditEngineError(f"axe-core download failed: {e}") from e

    if not script.strip():
        raise AuditEngineError("axe-core download returned an empty script")

    cached.parent.mkdir(parents=True, exist_ok=True)
    partial = cached.with_suffix(".part")
    partial.write_bytes(script)
    partial.replace(cached)
    return cached


class BrowserAuditRunner:
    """Loads a URL in a headless browser and runs axe-core against it"""

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()

    async def audit(self, url: str) -> AuditResult:
        axe_path = await ensure_axe_script(self.settings)

        async with self._session() as page:
            await self._navigate(page, url)
            await self._inject_axe(page, axe_path)
            raw = await self._run_axe(page)

        result = AuditResult.from_engine(raw)
        logger.info(
            f"Audited {url}: {len(result.violations)} violations, "
            f"{len(result.passes)} passes, {len(result.incomplete)} incomplete"
        )
        return result

    @asynccontextmanager
    async def _session(self) -> AsyncIterator[Page]:
        """Fresh browser + context for one audit, always torn down"""
        global _active_sessions

        playwright = await async_playwright().start()
        try:
            browser = await playwright.chromium.launch(
                headless=True,
                chromium_sandbox=self.settings.browser_sandbox,
            )
            _active_sessions += 1
            try:
                context = await browser.new_context()
                page = await context.new_page()
                page.set_default_timeout(self.settings.quiescence_timeout_ms)
                yield page
            finally:
                try:
                    await browser.close()
                finally:
                    _active_sessions -= 1
        finally:
            await playwright.stop()

    async def _navigate(self, page: Page, url: str) -> None:
        timeout = self.settings.quiescence_timeout_ms
        try:
            response = await page.goto(url, wait_until="networkidle", timeout=timeout)
        except PlaywrightTimeoutError as e:
            raise AuditTimeoutError(f"{url} did not reach network idle within {timeout}ms") from e
        except PlaywrightError as e:
            raise NavigationError(f"Failed to load {url}: {e}") from e

        if response is not None and not response.ok:
            try:
                body = await response.body()
            except PlaywrightError:
                body = b""
            if not body.strip():
                raise NavigationError(f"{url} returned HTTP {response.status} with no content")
            logger.warning(f"{url} returned HTTP {response.status}, auditing the error page")

    async def _inject_axe(self, page: Page, axe_path: Path) -> None:
        try:
            await page.add_script_tag(path=str(axe_path))
        except PlaywrightError as e:
            raise AuditEngineError(f"Failed to inject axe-core: {e}") from e

    async def _run_axe(self, page: Page) -> Any:
        try:
            return await page.evaluate(AXE_RUN_SCRIPT)
        except PlaywrightError as e:
            raise AuditEngineError(f"axe-core run failed: {e}") from e
