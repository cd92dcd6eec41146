"""Error taxonomy for the capture / audit / generate pipeline.

Nothing here is retried or swallowed: services clean up their own resources
and let these propagate to the orchestrator, which re-raises them unchanged.
"""

from typing import List, Optional


class RevampError(Exception):
    """Base class for pipeline failures"""


class NavigationError(RevampError):
    """Target URL unreachable or returned no renderable content"""


class AuditTimeoutError(RevampError, TimeoutError):
    """Page never reached network quiescence within the configured wait"""


class AuditEngineError(RevampError):
    """axe-core could not be injected, or threw while running"""


class GenerationError(RevampError):
    """Generation service failed or returned an empty payload"""


class BuildError(RevampError):
    """A build command for the generated project failed"""

    def __init__(self, message: str, command: Optional[List[str]] = None, returncode: Optional[int] = None):
        super().__init__(message)
        self.command = command
        self.returncode = returncode
