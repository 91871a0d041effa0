"""Tool-call request models.

Fields accept both snake_case names and the camelCase names used by
tool-calling clients (``draftNumber``, ``revisesThought`` ...).
"""
from typing import List, Optional
from pydantic import BaseModel, ConfigDict, Field, StrictBool, model_validator
from pydantic.alias_generators import to_camel

from .records import DRAFT_CATEGORIES, THOUGHT_CATEGORIES, StepCategory, StepContext


class ToolRequest(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )


def _check_category(category: Optional[StepCategory], allowed) -> None:
    if category is not None and category.type not in allowed:
        raise ValueError(
            f"Invalid category type '{category.type}'. Valid types are: {', '.join(allowed)}"
        )


class DraftRequest(ToolRequest):
    """Parameters of the chain-of-draft tool."""
    content: str = Field(min_length=1)
    draft_number: int = Field(ge=1)
    total_drafts: int = Field(ge=1)
    next_step_needed: StrictBool
    needs_revision: StrictBool = False
    is_revision: StrictBool = False
    revises_draft: Optional[int] = Field(default=None, ge=1)
    is_critique: StrictBool = False
    critique_focus: Optional[str] = None
    reasoning_chain: List[str] = []
    category: Optional[StepCategory] = None
    context: StepContext = Field(default_factory=StepContext)

    @model_validator(mode="after")
    def _check_shape(self) -> "DraftRequest":
        if self.is_revision:
            if self.revises_draft is None:
                raise ValueError("revisesDraft is required when isRevision is true")
            if self.revises_draft >= self.draft_number:
                raise ValueError(
                    f"revisesDraft ({self.revises_draft}) must be less than "
                    f"draftNumber ({self.draft_number})"
                )
        _check_category(self.category, DRAFT_CATEGORIES)
        return self


class ThoughtRequest(ToolRequest):
    """Parameters of the sequential-thinking tool."""
    thought: str = Field(min_length=1)
    thought_number: int = Field(ge=1)
    total_thoughts: int = Field(ge=1)
    next_thought_needed: StrictBool
    is_revision: StrictBool = False
    revises_thought: Optional[int] = Field(default=None, ge=1)
    branch_from_thought: Optional[int] = Field(default=None, ge=1)
    branch_id: Optional[str] = None
    needs_more_thoughts: StrictBool = False
    category: Optional[StepCategory] = None
    context: StepContext = Field(default_factory=StepContext)

    @model_validator(mode="after")
    def _check_shape(self) -> "ThoughtRequest":
        if self.is_revision:
            if self.revises_thought is None:
                raise ValueError("revisesThought is required when isRevision is true")
            if self.revises_thought >= self.thought_number:
                raise ValueError(
                    f"revisesThought ({self.revises_thought}) must be less than "
                    f"thoughtNumber ({self.thought_number})"
                )
        if (self.branch_from_thought is None) != (self.branch_id is None):
            raise ValueError("branchFromThought and branchId must be provided together")
        _check_category(self.category, THOUGHT_CATEGORIES)
        return self


class ToolFeatures(BaseModel):
    """Optional behaviours requested for an integrated turn."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    parallel_processing: bool = False
    monitoring: bool = True


class IntegratedRequest(ToolRequest):
    """Parameters of the integrated-thinking tool.

    Draft-side numbering defaults to the thought numbering, except on a
    branch turn where the thought numbering restarts and ``draftNumber``
    must be given. A missing category is derived from the step position.
    """
    content: str = Field(min_length=1)
    thought_number: int = Field(ge=1)
    total_thoughts: int = Field(ge=1)
    draft_number: Optional[int] = Field(default=None, ge=1)
    total_drafts: Optional[int] = Field(default=None, ge=1)
    next_step_needed: Optional[StrictBool] = None
    needs_revision: StrictBool = False
    is_revision: StrictBool = False
    revises_draft: Optional[int] = Field(default=None, ge=1)
    revises_thought: Optional[int] = Field(default=None, ge=1)
    branch_from_thought: Optional[int] = Field(default=None, ge=1)
    branch_id: Optional[str] = None
    is_critique: StrictBool = False
    critique_focus: Optional[str] = None
    reasoning_chain: List[str] = []
    category: Optional[StepCategory] = None
    context: StepContext = Field(default_factory=StepContext)
    features: ToolFeatures = Field(default_factory=ToolFeatures, alias="mcpFeatures")

    @model_validator(mode="after")
    def _apply_defaults(self) -> "IntegratedRequest":
        if self.branch_id is not None and self.draft_number is None:
            raise ValueError("draftNumber is required when branchId is set")
        if self.draft_number is None:
            self.draft_number = self.thought_number
        if self.total_drafts is None:
            self.total_drafts = self.total_thoughts
        if self.next_step_needed is None:
            self.next_step_needed = self.thought_number < self.total_thoughts
        if self.is_revision:
            if self.revises_draft is None:
                raise ValueError("revisesDraft is required when isRevision is true")
            if self.revises_draft >= self.draft_number:
                raise ValueError(
                    f"revisesDraft ({self.revises_draft}) must be less than "
                    f"draftNumber ({self.draft_number})"
                )
            if self.revises_thought is None:
                self.revises_thought = self.revises_draft
        if (self.branch_from_thought is None) != (self.branch_id is None):
            raise ValueError("branchFromThought and branchId must be provided together")
        _check_category(self.category, DRAFT_CATEGORIES)
        return self


class SetFeatureRequest(ToolRequest):
    """Parameters of the set-feature tool."""
    feature: str = Field(min_length=1)
    enabled: StrictBool
