from __future__ import annotations

from typing import Any, Dict, List, Literal, Optional
from pydantic import BaseModel, Field


Severity = Literal["low", "medium", "high"]


class ActionItem(BaseModel):
    task: str
    assignee: Optional[str] = None


class Blocker(BaseModel):
    issue: str
    severity: Severity = "medium"


class AnalysisResult(BaseModel):
    """Structured insight extracted from a standup transcript.

    Always fully populated: sequences are empty rather than absent.
    """

    summary: str = ""
    action_items: List[ActionItem] = Field(default_factory=list)
    blockers: List[Blocker] = Field(default_factory=list)
    updates: List[str] = Field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return self.model_dump()


def _text(value: Any) -> str:
    if value is None:
        return ""
    return str(value).strip()


def _as_list(value: Any) -> List[Any]:
    return list(value) if isinstance(value, (list, tuple)) else []


def _normalize_severity(value: Any) -> str:
    sev = _text(value).lower()
    if sev in {"low", "minor"}:
        return "low"
    if sev in {"high", "critical", "major", "blocking"}:
        return "high"
    return "medium"


def coerce_analysis_dict(raw: Any) -> AnalysisResult:
    """Coerce an arbitrary provider payload into an AnalysisResult.

    Missing or malformed sub-fields become empty defaults instead of failing the
    whole analysis. Accepts both camelCase and snake_case keys, and the legacy
    ``description`` key for action items and blockers.
    """
    data: Dict[str, Any] = raw if isinstance(raw, dict) else {}

    summary = _text(data.get("summary"))

    items: List[ActionItem] = []
    for item in _as_list(data.get("actionItems", data.get("action_items"))):
        if isinstance(item, dict):
            task = _text(item.get("task") or item.get("description"))
            assignee = _text(item.get("assignee")) or None
        else:
            task, assignee = _text(item), None
        if task:
            items.append(ActionItem(task=task, assignee=assignee))

    blockers: List[Blocker] = []
    for blk in _as_list(data.get("blockers")):
        if isinstance(blk, dict):
            issue = _text(blk.get("issue") or blk.get("description"))
            severity = _normalize_severity(blk.get("severity"))
        else:
            issue, severity = _text(blk), "medium"
        if issue:
            blockers.append(Blocker(issue=issue, severity=severity))  # type: ignore[arg-type]

    updates = [_text(u) for u in _as_list(data.get("updates")) if _text(u)]

    return AnalysisResult(summary=summary, action_items=items, blockers=blockers, updates=updates)
