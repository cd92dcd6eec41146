from enum import Enum
import json
from pathlib import Path
from typing import Any, Dict, List, Tuple

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .errors import AuditEngineError

AUDIT_RESULT_SETS = ("violations", "passes", "incomplete", "inapplicable")


class ContentDirectory(BaseModel):
    """A servable static site snapshot (original capture or generated site)"""

    model_config = ConfigDict(frozen=True)

    root: Path
    index_document: str = "index.html"

    @property
    def index_path(self) -> Path:
        return self.root / self.index_document

    def has_index(self) -> bool:
        return self.index_path.is_file()


class AuditResult(BaseModel):
    """axe-core output split into its four result sets.

    The records themselves are owned by axe-core and kept as plain dicts.
    """

    violations: List[Dict[str, Any]] = Field(default_factory=list)
    passes: List[Dict[str, Any]] = Field(default_factory=list)
    incomplete: List[Dict[str, Any]] = Field(default_factory=list)
    inapplicable: List[Dict[str, Any]] = Field(default_factory=list)

    @classmethod
    def from_engine(cls, raw: Any) -> "AuditResult":
        """Build a result from the object returned by axe.run()"""
        if not isinstance(raw, dict):
            raise AuditEngineError(f"Unexpected axe result type: {type(raw).__name__}")

        sets = {}
        for name in AUDIT_RESULT_SETS:
            records = raw.get(name, [])
            if not isinstance(records, list):
                raise AuditEngineError(f"axe result field '{name}' is not a list")
            sets[name] = records

        # axe reports one rule per outcome, so a rule id may appear in several
        # sets; the same rule over the same nodes may not
        seen: Dict[Tuple[str, Tuple[str, ...]], str] = {}
        for name, records in sets.items():
            for record in records:
                if not isinstance(record, dict) or record.get("id") is None:
                    continue
                targets = tuple(
                    json.dumps(node.get("target"), sort_keys=True)
                    for node in record.get("nodes") or []
                    if isinstance(node, dict)
                )
                if not targets:
                    continue
                key = (record["id"], targets)
                if key in seen:
                    raise AuditEngineError(
                        f"Rule '{record['id']}' reported for the same nodes in both '{seen[key]}' and '{name}'"
                    )
                seen[key] = name

        try:
            return cls(**sets)
        except ValidationError as e:
            raise AuditEngineError(f"Malformed axe result: {e}") from e


class PipelineStage(str, Enum):
    CAPTURING = "capturing"
    AUDITING_BEFORE = "auditing_before"
    GENERATING = "generating"
    AUDITING_AFTER = "auditing_after"
    DONE = "done"
    FAILED = "failed"


class PipelineOutcome(BaseModel):
    model_config = ConfigDict(frozen=True)

    before: int = Field(ge=0, le=100)
    after: int = Field(ge=0, le=100)

    @property
    def improvement(self) -> int:
        return self.after - self.before
