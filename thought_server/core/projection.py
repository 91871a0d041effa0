"""Verbosity-specific views of machine results.

Each level lists its fields explicitly: ``minimal`` carries identifiers,
confidence, category and next-step flags; ``standard`` adds content and
chain status; ``verbose`` adds context, sub-scores, metrics and adaptation
history. Metrics are left out whenever metric tracking is off.
"""
from typing import Any, Dict, Optional, Union

from ..config import Verbosity
from ..models.records import DraftRecord, IntegratedResult, StepCategory, ThoughtResult

LEVELS = ("minimal", "standard", "verbose")


def _level(verbosity: str) -> int:
    if verbosity not in LEVELS:
        raise ValueError(f"Unknown verbosity '{verbosity}'")
    return LEVELS.index(verbosity)


def _category(category: Optional[StepCategory]) -> Optional[Dict[str, Any]]:
    if category is None:
        return None
    return category.model_dump(exclude_none=True)


def project_draft(
    record: DraftRecord,
    verbosity: Verbosity = "standard",
    metric_tracking: bool = True,
) -> Dict[str, Any]:
    level = _level(verbosity)
    view: Dict[str, Any] = {
        "draftNumber": record.draft_number,
        "totalDrafts": record.total_drafts,
        "confidence": record.confidence,
        "category": _category(record.category),
        "nextStepNeeded": record.next_step_needed,
        "isRevision": record.is_revision,
    }
    if record.is_revision:
        view["revisesDraft"] = record.revises_draft
    if level >= 1:
        view.update({
            "content": record.content,
            "needsRevision": record.needs_revision,
            "isCritique": record.is_critique,
            "critiqueFocus": record.critique_focus,
            "reasoningChain": list(record.reasoning_chain),
            "creativityScore": record.creativity_score,
        })
    if level >= 2:
        view["context"] = record.context.model_dump()
        view["score"] = record.score.model_dump() if record.score else None
        if metric_tracking:
            view["metrics"] = record.metrics.model_dump()
    return view


def project_thought(
    result: ThoughtResult,
    verbosity: Verbosity = "standard",
    metric_tracking: bool = True,
) -> Dict[str, Any]:
    level = _level(verbosity)
    record = result.record
    view: Dict[str, Any] = {
        "thoughtNumber": record.thought_number,
        "totalThoughts": record.total_thoughts,
        "confidence": record.confidence,
        "category": _category(record.category),
        "nextThoughtNeeded": record.next_thought_needed,
        "branchId": record.branch_id,
    }
    if level >= 1:
        view.update({
            "thought": record.content,
            "needsRevision": record.needs_revision,
            "isRevision": record.is_revision,
            "revisesThought": record.revises_thought,
            "branchFromThought": record.branch_from,
            "branches": list(result.branches),
            "historyLength": result.history_length,
            "progress": result.progress,
            "phase": result.phase,
            "summary": result.summary.model_dump() if result.summary else None,
        })
    if level >= 2:
        view["needsMoreThoughts"] = record.needs_more_thoughts
        view["context"] = record.context.model_dump()
        view["score"] = record.score.model_dump() if record.score else None
        view["adaptationHistory"] = [entry.model_dump() for entry in result.adaptation_history]
        if metric_tracking:
            view["metrics"] = record.metrics.model_dump()
    return view


def project_integrated(
    result: IntegratedResult,
    verbosity: Verbosity = "standard",
    metric_tracking: bool = True,
) -> Dict[str, Any]:
    level = _level(verbosity)
    view: Dict[str, Any] = {
        "thoughtNumber": result.thought.record.thought_number,
        "draftNumber": result.draft.draft_number,
        "confidence": result.confidence,
        "category": _category(result.category),
        "nextStepNeeded": result.draft.next_step_needed,
    }
    if level >= 1:
        view.update({
            "categoryCorrected": result.category_corrected,
            "phase": result.phase,
            "thought": project_thought(result.thought, verbosity, metric_tracking),
            "draft": project_draft(result.draft, verbosity, metric_tracking),
            "enhancements": result.enhancements.model_dump(),
        })
    if level >= 2 and metric_tracking:
        view["metrics"] = result.metrics.model_dump()
    return view


def project(
    result: Union[DraftRecord, ThoughtResult, IntegratedResult],
    verbosity: Verbosity = "standard",
    metric_tracking: bool = True,
) -> Dict[str, Any]:
    """Dispatch to the projection of the result's type."""
    if isinstance(result, IntegratedResult):
        return project_integrated(result, verbosity, metric_tracking)
    if isinstance(result, ThoughtResult):
        return project_thought(result, verbosity, metric_tracking)
    if isinstance(result, DraftRecord):
        return project_draft(result, verbosity, metric_tracking)
    raise TypeError(f"Cannot project {type(result).__name__}")
