"""Draft refinement cycle: initial, critique, revision, final."""
import asyncio
import time
from typing import Any, Dict, List, Mapping, Optional, Union

from ..config import DraftConfig, EnhancementConfig
from ..models.records import DraftRecord, ProcessingState, StepCategory, StepMetrics
from ..models.requests import DraftRequest
from ..utils.logging import get_logger
from .debug import DebugControl
from .errors import (
    InputValidationError,
    InvariantViolationError,
    ProcessingError,
    ReferenceNotFoundError,
    validate_request,
)
from .scoring import Scorer, apply_floors, is_acceptable
from .storage import SessionStore

logger = get_logger(__name__)


class DraftRefinementMachine:
    """Scores, validates and persists draft steps per session."""

    def __init__(
        self,
        store: SessionStore,
        scorer: Scorer,
        config: DraftConfig,
        enhancement: EnhancementConfig,
        debug: DebugControl,
        history_window: int = 5,
    ):
        self.store = store
        self.scorer = scorer
        self.config = config
        self.enhancement = enhancement
        self.debug = debug
        self.history_window = history_window
        self._locks: Dict[str, asyncio.Lock] = {}
        self._states: Dict[str, ProcessingState] = {}

    def state(self, session_id: str) -> ProcessingState:
        """Processing state of a session (created on first use)."""
        if session_id not in self._states:
            self._states[session_id] = ProcessingState()
        return self._states[session_id]

    def _lock(self, session_id: str) -> asyncio.Lock:
        if session_id not in self._locks:
            self._locks[session_id] = asyncio.Lock()
        return self._locks[session_id]

    async def submit_draft(
        self,
        session_id: str,
        request: Union[DraftRequest, Mapping[str, Any]],
    ) -> DraftRecord:
        """Validate, score and persist one draft."""
        request = validate_request(DraftRequest, request)
        if request.draft_number > self.config.max_drafts:
            raise InputValidationError(
                f"draftNumber {request.draft_number} exceeds the maximum of "
                f"{self.config.max_drafts} drafts",
                phase="validation",
            )
        if request.is_revision and not self.config.revision_enabled:
            raise InvariantViolationError(
                "Revisions are disabled in current configuration", phase="validation"
            )

        async with self._lock(session_id):
            state = self.state(session_id)
            is_critique = request.is_critique or (
                request.category is not None and request.category.type == "critique"
            )
            if request.is_revision:
                state.phase = "revision"
            elif is_critique:
                state.phase = "critique"
            else:
                state.phase = "drafting"

            if self.enhancement.dynamic_adaptation:
                state.record_adaptation(
                    "Optimizing processing parameters",
                    "Dynamic adaptation based on session metrics",
                )

            failing_phase = state.phase
            try:
                record = await self._process(session_id, request, is_critique)
            except ProcessingError as e:
                self._fail(session_id, state, e)
                raise e.attach(failing_phase, state.snapshot())
            except Exception as e:
                error = ProcessingError(f"Failed to process draft: {e}")
                self._fail(session_id, state, error)
                raise error.attach(failing_phase, state.snapshot()) from e

            state.completed_steps += 1
            state.estimated_remaining_steps = max(0, request.total_drafts - request.draft_number)
            if request.draft_number >= request.total_drafts and not request.next_step_needed:
                state.phase = "completion"

        if self.debug.performance_monitoring:
            logger.info(
                "draft_metrics",
                session_id=session_id,
                draft=record.draft_number,
                processing_time_ms=record.metrics.processing_time_ms,
                resource_bytes=record.metrics.resource_bytes,
                phase=state.phase,
            )
        return record

    async def _process(
        self,
        session_id: str,
        request: DraftRequest,
        is_critique: bool,
    ) -> DraftRecord:
        start = time.perf_counter()
        number = request.draft_number

        version = await self.store.get_version(session_id, number)
        history = await self.store.get_recent(session_id, self.history_window, before=number)

        original: Optional[DraftRecord] = None
        if request.is_revision:
            original = await self.store.get_one(session_id, request.revises_draft)
            if original is None:
                raise ReferenceNotFoundError(
                    f"Draft {request.revises_draft} to revise not found in session {session_id}",
                    phase="revision",
                )

        previous: Optional[DraftRecord] = None
        if number > 1:
            previous = await self.store.get_one(session_id, number - 1)

        score = await self.scorer.score_step(
            request.content,
            context=request.context,
            history=history,
            threshold=self.config.confidence_threshold,
            is_revision=request.is_revision,
            original_text=original.content if original else None,
            parallel=self.config.parallel_processing,
        )
        computed = score.confidence
        confidence = apply_floors(
            computed,
            thresholds=self.config,
            revision_floor=original.confidence if original else None,
            previous_confidence=previous.confidence if previous else None,
        )
        if confidence != computed:
            logger.debug(
                "draft_confidence_raised",
                session_id=session_id,
                draft=number,
                computed=round(computed, 4),
                confidence=round(confidence, 4),
            )

        acceptable = is_acceptable(
            request.content,
            computed,
            request.is_revision,
            previous.confidence if previous else None,
            self.config,
        )

        record = DraftRecord(
            content=request.content,
            sequence_number=number,
            total_estimated=request.total_drafts,
            is_revision=request.is_revision,
            revises_sequence_number=request.revises_draft if request.is_revision else None,
            category=self._categorize(request, is_critique, confidence),
            confidence=confidence,
            needs_revision=request.needs_revision or not acceptable,
            metrics=StepMetrics(
                processing_time_ms=(time.perf_counter() - start) * 1000,
                resource_bytes=self.scorer.memory_probe(),
                dependency_chain=self._dependency_chain(request, previous),
            ),
            context=request.context,
            score=score,
            is_critique=is_critique,
            critique_focus=request.critique_focus,
            reasoning_chain=list(request.reasoning_chain),
            next_step_needed=request.next_step_needed,
            creativity_score=score.creativity,
        )

        await self.store.upsert(session_id, record, expected_version=version)
        logger.info(
            "draft_processed",
            session_id=session_id,
            draft=number,
            confidence=round(confidence, 4),
            category=record.category.type if record.category else None,
            needs_revision=record.needs_revision,
        )
        return record

    def _categorize(
        self,
        request: DraftRequest,
        is_critique: bool,
        confidence: float,
    ) -> Optional[StepCategory]:
        if not self.enhancement.categorization:
            return request.category

        if request.is_revision:
            category_type = "revision"
        elif is_critique:
            category_type = "critique"
        elif (
            request.category is not None
            and request.category.type == "final"
            and request.draft_number >= request.total_drafts
        ):
            category_type = "final"
        else:
            category_type = "initial"

        metadata = request.category.metadata if request.category else None
        return StepCategory(type=category_type, confidence=confidence, metadata=metadata)

    @staticmethod
    def _dependency_chain(
        request: DraftRequest,
        previous: Optional[DraftRecord],
    ) -> List[str]:
        chain = []
        if request.is_revision:
            chain.append(f"Revises draft {request.revises_draft}")
        if previous is not None:
            chain.append(f"Follows draft {previous.draft_number}")
        return chain

    def _fail(self, session_id: str, state: ProcessingState, error: ProcessingError) -> None:
        state.phase = "error"
        if self.debug.error_capture:
            logger.error(
                "draft_failed",
                session_id=session_id,
                kind=error.kind,
                error=error.message,
                state=state.snapshot(),
            )

    async def close_session(self, session_id: str, purge: bool = False) -> None:
        """Forget in-memory state; with ``purge`` also delete persisted drafts."""
        self._states.pop(session_id, None)
        self._locks.pop(session_id, None)
        if purge:
            await self.store.delete_session(session_id)
