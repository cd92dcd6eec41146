import os
from dataclasses import dataclass, field
from functools import lru_cache
from pathlib import Path
from typing import List, Optional

from dotenv import load_dotenv

load_dotenv()

DEFAULT_AXE_CDN_URL = "https://cdnjs.cloudflare.com/ajax/libs/axe-core/4.9.1/axe.min.js"


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None or value.strip() == "":
        return default
    try:
        return int(value)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {value!r}")


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None or value.strip() == "":
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def _env_list(name: str, default: List[str], sep: str = ",") -> List[str]:
    value = os.getenv(name)
    if not value:
        return list(default)
    return [item.strip() for item in value.split(sep) if item.strip()]


@dataclass
class Settings:
    """Runtime configuration, read from the environment (and .env)"""

    # Audit harness
    quiescence_timeout_ms: int = 30000
    server_host: str = "127.0.0.1"
    server_port: int = 0  # 0 means OS-assigned
    index_document: str = "index.html"
    browser_sandbox: bool = True

    # Filesystem
    work_dir: Path = Path("runs")
    cache_dir: Path = Path.home() / ".cache" / "revamp"

    # axe-core
    axe_script_path: Optional[Path] = None
    axe_cdn_url: str = DEFAULT_AXE_CDN_URL

    # Generation
    generator_backend: str = "archive"
    generation_api_url: str = "https://api.v0.app/generate"
    generation_model: str = "claude-3.5-sonnet"
    generation_timeout_s: int = 300
    build_commands: List[str] = field(default_factory=lambda: ["npm install", "npm run build"])
    build_output_dir: str = "out"
    anthropic_api_key: Optional[str] = None
    anthropic_model: str = "claude-sonnet-4-20250514"

    # Capture
    browserbase_api_key: Optional[str] = None
    browserbase_project_id: Optional[str] = None

    # API / logging
    log_level: str = "INFO"
    cors_origins: List[str] = field(default_factory=lambda: ["http://localhost:3000"])

    @classmethod
    def from_env(cls) -> "Settings":
        axe_path = os.getenv("AXE_SCRIPT_PATH")
        return cls(
            quiescence_timeout_ms=_env_int("REVAMP_QUIESCENCE_TIMEOUT_MS", 30000),
            server_host=os.getenv("REVAMP_SERVER_HOST", "127.0.0.1"),
            server_port=_env_int("REVAMP_SERVER_PORT", 0),
            index_document=os.getenv("REVAMP_INDEX_DOCUMENT", "index.html"),
            browser_sandbox=_env_bool("REVAMP_BROWSER_SANDBOX", True),
            work_dir=Path(os.getenv("REVAMP_WORK_DIR", "runs")),
            cache_dir=Path(os.getenv("REVAMP_CACHE_DIR", str(Path.home() / ".cache" / "revamp"))),
            axe_script_path=Path(axe_path) if axe_path else None,
            axe_cdn_url=os.getenv("AXE_CDN_URL", DEFAULT_AXE_CDN_URL),
            generator_backend=os.getenv("GENERATOR_BACKEND", "archive").lower(),
            generation_api_url=os.getenv("GENERATION_API_URL", "https://api.v0.app/generate"),
            generation_model=os.getenv("GENERATION_MODEL", "claude-3.5-sonnet"),
            generation_timeout_s=_env_int("GENERATION_TIMEOUT_S", 300),
            build_commands=_env_list("REVAMP_BUILD_COMMANDS", ["npm install", "npm run build"], sep=";"),
            build_output_dir=os.getenv("REVAMP_BUILD_OUTPUT_DIR", "out"),
            anthropic_api_key=os.getenv("ANTHROPIC_API_KEY"),
            anthropic_model=os.getenv("ANTHROPIC_MODEL", "claude-sonnet-4-20250514"),
            browserbase_api_key=os.getenv("BROWSERBASE_API_KEY"),
            browserbase_project_id=os.getenv("BROWSERBASE_PROJECT_ID"),
            log_level=os.getenv("REVAMP_LOG_LEVEL", "INFO").upper(),
            cors_origins=_env_list("REVAMP_CORS_ORIGINS", ["http://localhost:3000"]),
        )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings.from_env()
