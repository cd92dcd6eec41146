from abc import ABC, abstractmethod
from typing import Dict, List, Optional
from pathlib import Path
import asyncio
import io
import json
import logging
import re
import shlex
import zipfile

import aiohttp
from anthropic import APIError, AsyncAnthropic

from ..config import Settings, get_settings
from ..errors import BuildError, GenerationError
from ..models import ContentDirectory
from .site_capture import PALETTE_FILE, TEXT_FILE

logger = logging.getLogger(__name__)

MAX_PROMPT_TEXTS = 20
MAX_PROMPT_COLORS = 10

ARCHIVE_STACK = "Built with Next.js, TypeScript, and Tailwind CSS, exported as a static site"
SINGLE_PAGE_STACK = "A single self-contained HTML file with inline CSS"

ACCESSIBILITY_REQUIREMENTS = """- Modern accessible site following WCAG 2.2 AA standards
- Dark mode toggle support
- Minimum 44px tap targets for touch accessibility
- Semantic HTML5 structure with proper heading hierarchy
- Comprehensive ARIA labels and descriptions
- Skip navigation link for keyboard users
- Language attribute set to English (lang="en")
- Supports 200% zoom without horizontal scrolling
- Color contrast ratios >= 4.5:1 for normal text
- Keyboard navigation without focus traps
- Alt text for all images
- Form labels properly associated
- Error messages clearly announced to screen readers"""


def load_brief(capture_dir: ContentDirectory) -> Dict[str, List[str]]:
    """Read the extracted text and palette written by the capture step"""
    try:
        texts = json.loads((capture_dir.root / TEXT_FILE).read_text(encoding="utf-8")).get("texts", [])
        colors = json.loads((capture_dir.root / PALETTE_FILE).read_text(encoding="utf-8")).get("colors", [])
    except (OSError, ValueError) as e:
        raise GenerationError(f"Capture in {capture_dir.root} has no usable text/palette: {e}") from e
    return {"texts": texts, "colors": colors}


def build_prompt(brief: Dict[str, List[str]], stack: str = ARCHIVE_STACK) -> str:
    content = " ".join(brief["texts"][:MAX_PROMPT_TEXTS])
    colors = ", ".join(brief["colors"][:MAX_PROMPT_COLORS])
    return f"""Create a modern accessible website using this content and color scheme:

CONTENT: {content}

COLORS: {colors}

REQUIREMENTS:
- {stack}
{ACCESSIBILITY_REQUIREMENTS}

Please create a complete, production-ready website that dramatically improves accessibility while maintaining visual appeal."""


class SiteGenerator(ABC):
    """Turns a capture into a new, servable content directory"""

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()

    @abstractmethod
    async def generate(self, capture_dir: ContentDirectory, destination: Path) -> ContentDirectory:
        """Build a new site from capture_dir under destination"""


class ArchiveSiteGenerator(SiteGenerator):
    """Remote generation service returning a project archive, built locally"""

    async def generate(self, capture_dir: ContentDirectory, destination: Path) -> ContentDirectory:
        prompt = build_prompt(load_brief(capture_dir))
        destination.mkdir(parents=True, exist_ok=True)

        archive = await self.request_archive(prompt)
        (destination / "site.zip").write_bytes(archive)

        logger.info("Extracting generated site...")
        project_dir = self.find_project_root(self.extract_archive(archive, destination / "site"))

        for command in self.settings.build_commands:
            await self.run_command(command, project_dir)

        output = ContentDirectory(
            root=project_dir / self.settings.build_output_dir,
            index_document=self.settings.index_document,
        )
        if not output.has_index():
            raise BuildError(f"Build finished but {output.index_path} does not exist")
        return output

    async def request_archive(self, prompt: str) -> bytes:
        logger.info(f"Calling generation service at {self.settings.generation_api_url}")
        payload = {"prompt": prompt, "model": self.settings.generation_model}
        timeout = aiohttp.ClientTimeout(total=self.settings.generation_timeout_s)
        try:
            async with aiohttp.ClientSession(timeout=timeout) as session:
                async with session.post(self.settings.generation_api_url, json=payload) as response:
                    if not 200 <= response.status < 300:
                        raise GenerationError(
                            f"Generation service error: {response.status} {response.reason}"
                        )
                    body = await response.read()
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise GenerationError(f"Generation service request failed: {e}") from e

        if not body:
            raise GenerationError("Generation service returned an empty payload")
        return body

    def extract_archive(self, archive: bytes, target: Path) -> Path:
        target.mkdir(parents=True, exist_ok=True)
        root = target.resolve()
        try:
            with zipfile.ZipFile(io.BytesIO(archive)) as zf:
                for member in zf.namelist():
                    resolved = (root / member).resolve()
                    if resolved != root and root not in resolved.parents:
                        raise GenerationError(f"Archive entry escapes the extraction directory: {member}")
                zf.extractall(root)
        except zipfile.BadZipFile as e:
            raise GenerationError(f"Generation service did not return a zip archive: {e}") from e
        return root

    def find_project_root(self, extracted: Path) -> Path:
        """Descend into a single wrapping folder, as many archives have one"""
        entries = [p for p in extracted.iterdir() if p.name != "__MACOSX"]
        if len(entries) == 1 and entries[0].is_dir() and not (extracted / "package.json").exists():
            return entries[0]
        return extracted

    async def run_command(self, command: str, cwd: Path) -> None:
        args = shlex.split(command)
        logger.info(f"Running '{command}' in {cwd}")
        try:
            process = await asyncio.create_subprocess_exec(*args, cwd=str(cwd))
        except OSError as e:
            raise BuildError(f"Could not start '{command}': {e}", command=args) from e

        returncode = await process.wait()
        if returncode != 0:
            raise BuildError(f"Command '{command}' failed with code {returncode}", command=args, returncode=returncode)


class LLMSiteGenerator(SiteGenerator):
    """Single-page generation through the Anthropic Messages API"""

    SYSTEM_PROMPT = (
        "You are an expert accessibility-focused web developer. Generate one complete, "
        "self-contained HTML document with inline CSS. Return only the code."
    )

    def __init__(self, settings: Optional[Settings] = None, client: Optional[AsyncAnthropic] = None):
        super().__init__(settings)
        self.client = client or AsyncAnthropic(api_key=self.settings.anthropic_api_key)
        self.max_tokens = 15000
        self.max_iterations = 4

    async def generate(self, capture_dir: ContentDirectory, destination: Path) -> ContentDirectory:
        prompt = build_prompt(load_brief(capture_dir), stack=SINGLE_PAGE_STACK)
        html = await self._generate_with_continuation(prompt)
        if not html.strip():
            raise GenerationError("Model returned an empty document")

        destination.mkdir(parents=True, exist_ok=True)
        output = ContentDirectory(root=destination, index_document=self.settings.index_document)
        output.index_path.write_text(self._ensure_html_completeness(html), encoding="utf-8")
        return output

    async def _complete(self, system: str, prompt: str) -> str:
        try:
            response = await self.client.messages.create(
                model=self.settings.anthropic_model,
                max_tokens=self.max_tokens,
                temperature=0.2,
                system=system,
                messages=[{"role": "user", "content": prompt}],
            )
        except APIError as e:
            raise GenerationError(f"Anthropic API error: {e}") from e
        if not response.content:
            return ""
        return self._clean_html(response.content[0].text)

    async def _generate_with_continuation(self, prompt: str) -> str:
        html = await self._complete(self.SYSTEM_PROMPT, prompt)

        iteration = 1
        while html and not self._is_html_complete(html) and iteration < self.max_iterations:
            context = html[-800:]
            continuation = await self._complete(
                "Continue the HTML exactly where it left off. Return only code.",
                f"Continue this HTML document until it is complete with </html>:\n\n...{context}",
            )
            if not continuation:
                break
            html = self._merge_continuation(html, continuation)
            iteration += 1
            logger.info(f"Continuation iteration {iteration} completed")

        return html

    def _clean_html(self, html: str) -> str:
        """Strip markdown fences and any prose around the document"""
        html = re.sub(r'```html\s*\n?', '', html, flags=re.IGNORECASE)
        html = re.sub(r'```\s*\n?', '', html)

        lines = html.split('\n')
        start_idx = 0
        end_idx = len(lines)
        for i, line in enumerate(lines):
            if line.strip().lower().startswith(('<!doctype', '<html')):
                start_idx = i
                break
        for i in range(len(lines) - 1, -1, -1):
            if '</html>' in lines[i].lower():
                end_idx = i + 1
                break
        return '\n'.join(lines[start_idx:end_idx]).strip()

    def _is_html_complete(self, html: str) -> bool:
        html_lower = html.lower()
        required = ['<!doctype', '<html', '<head', '</head>', '<body', '</body>', '</html>']
        return all(element in html_lower for element in required)

    def _merge_continuation(self, initial_html: str, continuation: str) -> str:
        continuation = re.sub(r'<!DOCTYPE[^>]*>', '', continuation, flags=re.IGNORECASE)
        continuation = re.sub(r'<html[^>]*>', '', continuation, flags=re.IGNORECASE)
        continuation = re.sub(r'<head[^>]*>.*?</head>', '', continuation, flags=re.DOTALL | re.IGNORECASE)
        continuation = re.sub(r'<body[^>]*>', '', continuation, flags=re.IGNORECASE)

        # Drop a trailing partial line from the truncated part
        lines = initial_html.split('\n')
        for i in range(len(lines) - 1, -1, -1):
            if lines[i].strip().endswith(('>', '}', ';')):
                initial_html = '\n'.join(lines[:i + 1])
                break
        return initial_html + '\n' + continuation

    def _ensure_html_completeness(self, html: str) -> str:
        if '<!doctype' not in html.lower():
            html = '<!DOCTYPE html>\n' + html
        if '</body>' not in html.lower():
            html += '\n</body>'
        if '</html>' not in html.lower():
            html += '\n</html>'
        return html


def create_generator(settings: Optional[Settings] = None) -> SiteGenerator:
    settings = settings or get_settings()
    if settings.generator_backend == "anthropic":
        return LLMSiteGenerator(settings)
    if settings.generator_backend == "archive":
        return ArchiveSiteGenerator(settings)
    raise ValueError(f"Unknown GENERATOR_BACKEND: {settings.generator_backend!r}")
