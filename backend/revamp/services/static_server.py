from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncIterator, Optional, Set, Tuple
import logging

from aiohttp import web

from ..config import Settings, get_settings
from ..models import ContentDirectory

logger = logging.getLogger(__name__)

CONTENT_KEY = web.AppKey("content", ContentDirectory)

# Servers started and not yet stopped
_live_servers: Set["ServerHandle"] = set()


def active_servers() -> int:
    """Number of ephemeral servers currently listening"""
    return len(_live_servers)


class ServerHandle:
    def __init__(self, runner: web.AppRunner, base_url: str, content: ContentDirectory):
        self.runner = runner
        self.base_url = base_url
        self.content = content
        self.closed = False

    def __repr__(self) -> str:
        state = "closed" if self.closed else "open"
        return f"<ServerHandle {self.base_url} {state}>"


def resolve_path(content: ContentDirectory, request_path: str) -> Optional[Path]:
    """Map a request path to a file inside the content directory, or None"""
    try:
        root = content.root.resolve()
        relative = request_path.lstrip("/")
        candidate = (root / relative).resolve() if relative else root

        # Reject anything that escapes the served tree
        if candidate != root and root not in candidate.parents:
            return None

        if candidate.is_dir():
            candidate = candidate / content.index_document

        return candidate if candidate.is_file() else None
    except (OSError, ValueError):
        return None


def format_base_url(host: str, port: int) -> str:
    """http URL for a bound address; IPv6 literals are bracketed"""
    if ":" in host and not host.startswith("["):
        host = f"[{host}]"
    return f"http://{host}:{port}/"


async def _serve_file(request: web.Request) -> web.StreamResponse:
    content = request.app[CONTENT_KEY]
    target = resolve_path(content, request.match_info.get("path", ""))
    if target is None:
        logger.debug(f"404 {request.path}")
        return web.Response(status=404, text="Not Found")
    # FileResponse picks the content type from the extension (.html -> text/html)
    return web.FileResponse(target)


async def start(directory: ContentDirectory, settings: Optional[Settings] = None) -> Tuple[str, ServerHandle]:
    """Serve a content directory on a local port; returns (base_url, handle)"""
    settings = settings or get_settings()

    app = web.Application()
    app[CONTENT_KEY] = directory
    app.router.add_get("/{path:.*}", _serve_file)

    runner = web.AppRunner(app, access_log=None)
    await runner.setup()
    try:
        site = web.TCPSite(runner, settings.server_host, settings.server_port)
        await site.start()
    except Exception:
        await runner.cleanup()
        raise

    host, port = runner.addresses[0][:2]
    base_url = format_base_url(host, port)
    handle = ServerHandle(runner, base_url, directory)
    _live_servers.add(handle)

    logger.info(f"Serving {directory.root} at {base_url}")
    return base_url, handle


async def stop(handle: ServerHandle) -> None:
    """Stop listening. Safe to call more than once."""
    if handle.closed:
        return
    handle.closed = True
    try:
        await handle.runner.cleanup()
    finally:
        _live_servers.discard(handle)
        logger.info(f"Stopped server at {handle.base_url}")


@asynccontextmanager
async def serve(directory: ContentDirectory, settings: Optional[Settings] = None) -> AsyncIterator[str]:
    """Run a server for the duration of the block and yield its base URL"""
    base_url, handle = await start(directory, settings)
    try:
        yield base_url
    finally:
        await stop(handle)
