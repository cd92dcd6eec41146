"""Reduce an axe-core result to a single comparable score.

The score is ``max(0, 100 - number of violated rules)``. It is a coarse,
bounded before/after signal rather than a calibrated percentage: every
violated rule counts once, whatever its impact or WCAG level, and the floor
at 0 absorbs pages with more than 100 violated rules.
"""

from collections import Counter
from typing import Any, Dict

from ..models import AUDIT_RESULT_SETS, AuditResult

MAX_SCORE = 100


def score(result: AuditResult) -> int:
    return max(0, MAX_SCORE - len(result.violations))


def summarize(result: AuditResult) -> Dict[str, Any]:
    """Counts per result set and per violation impact, alongside the score"""
    impacts = Counter((violation.get("impact") or "unknown") for violation in result.violations)
    summary: Dict[str, Any] = {name: len(getattr(result, name)) for name in AUDIT_RESULT_SETS}
    summary["impact"] = dict(impacts)
    summary["violated_rules"] = [violation.get("id") for violation in result.violations]
    summary["score"] = score(result)
    return summary
