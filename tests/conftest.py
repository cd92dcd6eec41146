"""Shared fixtures for the revamp test suite."""

import pytest

from revamp.config import Settings
from revamp.models import ContentDirectory


@pytest.fixture()
def settings(tmp_path):
    """Settings isolated to a temp dir, with a local (fake) axe script."""
    axe = tmp_path / "axe.min.js"
    axe.write_text("window.axe = {run: async () => ({violations: [], passes: [], incomplete: [], inapplicable: []})};")
    return Settings(
        quiescence_timeout_ms=1500,
        work_dir=tmp_path / "runs",
        cache_dir=tmp_path / "cache",
        axe_script_path=axe,
        build_commands=[],
        browser_sandbox=False,
    )


@pytest.fixture()
def site_dir(tmp_path):
    """A small static site: index, stylesheet, nested page."""
    root = tmp_path / "site"
    (root / "about").mkdir(parents=True)
    (root / "index.html").write_bytes(b"<!DOCTYPE html><html lang=\"en\"><body><h1>Home</h1></body></html>")
    (root / "style.css").write_text("body { color: #222; }")
    (root / "about" / "index.html").write_text("<html><body>About</body></html>")
    return ContentDirectory(root=root)
