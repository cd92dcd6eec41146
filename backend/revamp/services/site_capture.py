from typing import Any, Dict, List, Optional
from pathlib import Path
from urllib.parse import urljoin, urlparse
import asyncio
import json
import logging

import aiohttp
from bs4 import BeautifulSoup
from browserbase import Browserbase
from playwright.async_api import Error as PlaywrightError
from playwright.async_api import TimeoutError as PlaywrightTimeoutError
from playwright.async_api import async_playwright

from ..config import Settings, get_settings
from ..errors import AuditTimeoutError, NavigationError
from ..models import ContentDirectory

logger = logging.getLogger(__name__)

TEXT_FILE = "text.json"
PALETTE_FILE = "palette.json"
SCREENSHOT_FILE = "screenshot.png"

USER_AGENT = "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36"

# Visible text nodes, skipping hidden elements and very short fragments
VISIBLE_TEXT_SCRIPT = """() => {
    const walker = document.createTreeWalker(document.body, NodeFilter.SHOW_TEXT, {
        acceptNode: (node) => {
            const parent = node.parentElement;
            if (!parent) return NodeFilter.FILTER_REJECT;
            const style = window.getComputedStyle(parent);
            if (style.display === 'none' || style.visibility === 'hidden') {
                return NodeFilter.FILTER_REJECT;
            }
            return node.textContent && node.textContent.trim()
                ? NodeFilter.FILTER_ACCEPT
                : NodeFilter.FILTER_REJECT;
        }
    });
    const texts = [];
    let node;
    while ((node = walker.nextNode())) {
        const text = node.textContent.trim();
        if (text.length > 2) texts.push(text);
    }
    return texts;
}"""

# Distinct computed colors used anywhere on the page
PALETTE_SCRIPT = """() => {
    const colors = new Set();
    document.querySelectorAll('*').forEach(el => {
        const styles = window.getComputedStyle(el);
        [styles.color, styles.backgroundColor, styles.borderColor].forEach(color => {
            if (color && color !== 'rgba(0, 0, 0, 0)' && color !== 'transparent') {
                colors.add(color);
            }
        });
    });
    return Array.from(colors);
}"""


def _asset_filename(prefix: str, index: int, url: str) -> str:
    name = Path(urlparse(url).path).name or "asset"
    return f"{prefix}_{index}_{name}"


class SiteCapture:
    """Snapshots a live page (DOM, text, images, CSS, palette, screenshot) into a directory"""

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()
        self.browser = None
        self.context = None
        self.playwright = None
        self.session_id = None

        logger.info(f"Browserbase configured: {bool(self.settings.browserbase_api_key and self.settings.browserbase_project_id)}")

    async def initialize(self):
        """Initialize the browser instance"""
        if self.settings.browserbase_api_key and self.settings.browserbase_project_id:
            try:
                await self._initialize_browserbase()
                logger.info("Successfully initialized Browserbase browser")
                return
            except Exception as e:
                logger.error(f"Failed to initialize Browserbase: {e}")
                logger.info("Falling back to local browser")
                await self.close()
        await self._initialize_local()

    async def _initialize_browserbase(self):
        """Initialize Browserbase cloud browser"""
        browserbase = Browserbase(api_key=self.settings.browserbase_api_key)
        session = browserbase.sessions.create(project_id=self.settings.browserbase_project_id)
        self.session_id = session.id

        self.playwright = await async_playwright().start()
        self.browser = await self.playwright.chromium.connect_over_cdp(session.connect_url)
        self.context = self.browser.contexts[0]

    async def _initialize_local(self):
        """Initialize local browser instance"""
        self.playwright = await async_playwright().start()
        self.browser = await self.playwright.chromium.launch(
            headless=True,
            chromium_sandbox=self.settings.browser_sandbox,
        )
        self.context = await self.browser.new_context(
            viewport={'width': 1920, 'height': 1080},
            user_agent=USER_AGENT,
        )

    async def capture(self, url: str, destination: Path) -> ContentDirectory:
        """Capture url into destination and return it as a content directory"""
        destination.mkdir(parents=True, exist_ok=True)
        content_dir = ContentDirectory(root=destination, index_document=self.settings.index_document)

        try:
            await self.initialize()
            page = await self.context.new_page()
            try:
                await self._load(page, url)
                page_url = page.url or url

                html = await page.content()
                content_dir.index_path.write_text(html, encoding="utf-8")

                texts = await page.evaluate(VISIBLE_TEXT_SCRIPT)
                self._write_json(destination / TEXT_FILE, {"texts": texts})

                colors = await page.evaluate(PALETTE_SCRIPT)
                self._write_json(destination / PALETTE_FILE, {"colors": colors})

                await page.screenshot(path=str(destination / SCREENSHOT_FILE), full_page=True)
            finally:
                await page.close()
        finally:
            await self.close()

        assets = self.extract_asset_urls(html, page_url)
        await self.download_assets(assets, destination)

        logger.info(f"Captured {url}: {len(texts)} text blocks, {len(colors)} colors")
        return content_dir

    async def _load(self, page, url: str) -> None:
        timeout = self.settings.quiescence_timeout_ms
        try:
            response = await page.goto(url, wait_until="networkidle", timeout=timeout)
        except PlaywrightTimeoutError as e:
            raise AuditTimeoutError(f"{url} did not reach network idle within {timeout}ms") from e
        except PlaywrightError as e:
            raise NavigationError(f"Failed to load {url}: {e}") from e
        if response is not None and not response.ok:
            raise NavigationError(f"{url} returned HTTP {response.status}")

    def extract_asset_urls(self, html: str, page_url: str) -> Dict[str, List[str]]:
        """Absolute image and stylesheet URLs referenced by the page"""
        soup = BeautifulSoup(html, 'html.parser')

        images = []
        for img in soup.find_all('img'):
            src = img.get('src')
            if src:
                images.append(urljoin(page_url, src))

        stylesheets = []
        for link in soup.find_all('link', rel='stylesheet'):
            href = link.get('href')
            if href:
                stylesheets.append(urljoin(page_url, href))

        return {'images': images, 'css': stylesheets}

    async def download_assets(self, assets: Dict[str, List[str]], destination: Path) -> Dict[str, int]:
        """Download images into images/ and stylesheets into css/; failures are skipped"""
        saved = {'images': 0, 'css': 0}
        prefixes = {'images': 'image', 'css': 'style'}

        timeout = aiohttp.ClientTimeout(total=30)
        async with aiohttp.ClientSession(timeout=timeout, headers={'User-Agent': USER_AGENT}) as session:
            for kind, urls in assets.items():
                target_dir = destination / kind
                target_dir.mkdir(parents=True, exist_ok=True)

                for i, asset_url in enumerate(urls):
                    if urlparse(asset_url).scheme not in ('http', 'https'):
                        logger.debug(f"Skipping non-http asset: {asset_url[:80]}")
                        continue
                    try:
                        async with session.get(asset_url) as response:
                            if response.status != 200:
                                logger.warning(f"Failed to download {kind} asset {asset_url}: HTTP {response.status}")
                                continue
                            body = await response.read()
                    except (aiohttp.ClientError, asyncio.TimeoutError) as e:
                        logger.warning(f"Failed to download {kind} asset {asset_url}: {e}")
                        continue

                    (target_dir / _asset_filename(prefixes[kind], i, asset_url)).write_bytes(body)
                    saved[kind] += 1

        logger.info(f"Downloaded {saved['images']} images and {saved['css']} stylesheets")
        return saved

    def _write_json(self, path: Path, data: Any) -> None:
        path.write_text(json.dumps(data, indent=2), encoding="utf-8")

    async def close(self):
        """Close browser resources"""
        if self.browser:
            await self.browser.close()
            self.browser = None
            self.context = None
        if self.playwright:
            await self.playwright.stop()
            self.playwright = None
