"""Tests for the draft refinement machine."""
import asyncio

import pytest

from conftest import SECOND_TEXT, SHORT_TEXT, TECHNICAL_TEXT
from thought_server.config import ServerConfig, build_config
from thought_server.core import (
    DraftRefinementMachine,
    InputValidationError,
    InvariantViolationError,
    ReferenceNotFoundError,
    StorageError,
)
from thought_server.models import DraftRecord


def draft(number, total=3, content=TECHNICAL_TEXT, **kwargs):
    payload = {
        "content": content,
        "draftNumber": number,
        "totalDrafts": total,
        "nextStepNeeded": number < total,
    }
    payload.update(kwargs)
    return payload


async def test_first_technical_draft_is_bounded(drafts):
    """Test a first technical draft scores between the floor and the ceiling."""
    record = await drafts.submit_draft("s1", draft(1, category={"type": "initial"}))

    assert 0.55 <= record.confidence <= 0.95
    assert record.confidence >= 0.6
    assert record.category.type == "initial"
    assert record.score.content_type == "technical"
    assert not record.needs_revision
    assert drafts.state("s1").phase == "drafting"


async def test_revision_meets_revision_floor(drafts, store):
    """Test a revision of a 0.6 draft is raised to the revision minimum."""
    await store.upsert(
        "s1",
        DraftRecord(content=TECHNICAL_TEXT, sequence_number=1, total_estimated=3, confidence=0.6),
    )

    record = await drafts.submit_draft(
        "s1", draft(2, content=SECOND_TEXT, isRevision=True, revisesDraft=1)
    )

    assert record.confidence >= 0.65
    assert record.is_revision
    assert record.revises_draft == 1
    assert record.category.type == "revision"
    assert "Revises draft 1" in record.metrics.dependency_chain
    assert drafts.state("s1").phase == "revision"


async def test_revision_keeps_original_confidence(drafts, store):
    await store.upsert(
        "s1",
        DraftRecord(content=TECHNICAL_TEXT, sequence_number=1, total_estimated=3, confidence=0.9),
    )

    record = await drafts.submit_draft(
        "s1", draft(2, content=SECOND_TEXT, isRevision=True, revisesDraft=1)
    )
    assert record.confidence >= 0.9


async def test_confidence_grows_between_drafts(drafts):
    """Test the growth floor between consecutive drafts."""
    first = await drafts.submit_draft("s1", draft(1))
    second = await drafts.submit_draft("s1", draft(2, content=SECOND_TEXT))

    assert second.confidence >= min(1.0, first.confidence + 0.05) - 1e-9
    assert "Follows draft 1" in second.metrics.dependency_chain


async def test_growth_is_capped(drafts, store):
    await store.upsert(
        "s1",
        DraftRecord(content=TECHNICAL_TEXT, sequence_number=1, total_estimated=3, confidence=0.99),
    )
    record = await drafts.submit_draft("s1", draft(2, content=SECOND_TEXT))
    assert record.confidence == 1.0


async def test_short_content_needs_revision(drafts):
    record = await drafts.submit_draft("s1", draft(1, content=SHORT_TEXT))

    assert record.needs_revision
    assert record.confidence >= 0.6


async def test_missing_revision_target(drafts, store):
    """Test that revising an unknown draft fails without persisting anything."""
    with pytest.raises(ReferenceNotFoundError) as exc_info:
        await drafts.submit_draft("s1", draft(2, isRevision=True, revisesDraft=1))

    error = exc_info.value
    assert error.phase == "revision"
    assert error.state["phase"] == "error"
    assert error.status_code == 404
    assert await store.count("s1") == 0
    assert drafts.state("s1").phase == "error"


async def test_error_phase_resets_on_next_submission(drafts):
    with pytest.raises(ReferenceNotFoundError):
        await drafts.submit_draft("s1", draft(2, isRevision=True, revisesDraft=1))

    await drafts.submit_draft("s1", draft(1))
    assert drafts.state("s1").phase == "drafting"


@pytest.mark.parametrize(
    "payload",
    [
        {"draftNumber": 1, "totalDrafts": 3, "nextStepNeeded": True},
        draft(0),
        draft(1, nextStepNeeded="yes"),
        draft(2, isRevision=True),
        draft(2, isRevision=True, revisesDraft=2),
        draft(1, category={"type": "analysis"}),
    ],
)
async def test_malformed_requests(drafts, store, payload):
    """Test that malformed requests are rejected before anything is stored."""
    with pytest.raises(InputValidationError) as exc_info:
        await drafts.submit_draft("s1", payload)

    assert exc_info.value.phase == "validation"
    assert exc_info.value.message.startswith("Invalid parameters")
    assert await store.count("s1") == 0


async def test_max_drafts(drafts):
    with pytest.raises(InputValidationError, match="maximum of 10"):
        await drafts.submit_draft("s1", draft(11, total=12))


async def test_revisions_disabled(store, scorer, debug):
    config = build_config(ServerConfig(), overrides={"draft": {"revision_enabled": False}})
    machine = DraftRefinementMachine(store, scorer, config.draft, config.enhancement, debug)
    await machine.submit_draft("s1", draft(1))

    with pytest.raises(InvariantViolationError):
        await machine.submit_draft("s1", draft(2, isRevision=True, revisesDraft=1))


async def test_resubmission_overwrites(drafts, store):
    """Test that re-submitting a draft number keeps a single row."""
    await drafts.submit_draft("s1", draft(1))
    await drafts.submit_draft("s1", draft(1, content=SECOND_TEXT))

    assert await store.count("s1") == 1
    assert await store.get_version("s1", 1) == 2
    assert (await store.get_one("s1", 1)).content == SECOND_TEXT


async def test_resubmission_scores_against_earlier_drafts(drafts, store):
    """Test that later drafts do not crowd earlier ones out of the history."""
    for number, confidence in ((1, 0.6), (2, 0.5)):
        await store.upsert("s1", DraftRecord(
            content=TECHNICAL_TEXT,
            sequence_number=number,
            total_estimated=10,
            confidence=confidence,
            needs_revision=True,
        ))
    for number in range(4, 11):
        await store.upsert("s1", DraftRecord(
            content=TECHNICAL_TEXT, sequence_number=number, total_estimated=10, confidence=0.9,
        ))

    record = await drafts.submit_draft("s1", draft(3, total=10))
    assert record.score.history == 0.0


async def test_concurrent_submissions_are_serialized(drafts, store):
    """Test that racing writes to one draft both land, one after the other."""
    await asyncio.gather(
        drafts.submit_draft("s1", draft(1)),
        drafts.submit_draft("s1", draft(1, content=SECOND_TEXT)),
    )

    assert await store.count("s1") == 1
    assert await store.get_version("s1", 1) == 2


async def test_categories(drafts):
    """Test category assignment by role and position."""
    premature = await drafts.submit_draft("s1", draft(1, category={"type": "final"}))
    critique = await drafts.submit_draft("s1", draft(2, isCritique=True, critiqueFocus="clarity"))
    final = await drafts.submit_draft("s1", draft(3, category={"type": "final"}))

    assert premature.category.type == "initial"
    assert critique.category.type == "critique"
    assert critique.is_critique
    assert critique.critique_focus == "clarity"
    assert final.category.type == "final"
    assert final.category.confidence == final.confidence


async def test_completion_phase(drafts):
    await drafts.submit_draft("s1", draft(1, total=2))
    await drafts.submit_draft("s1", draft(2, total=2))

    state = drafts.state("s1")
    assert state.phase == "completion"
    assert state.completed_steps == 2
    assert state.estimated_remaining_steps == 0


async def test_sessions_are_isolated(drafts, store):
    await drafts.submit_draft("a", draft(1))
    await drafts.submit_draft("b", draft(1))
    await drafts.submit_draft("b", draft(2))

    assert await store.count("a") == 1
    assert await store.count("b") == 2
    assert drafts.state("a").completed_steps == 1


async def test_store_failure_propagates(drafts, store):
    """Test that a closed store surfaces as a storage error."""
    await store.close()

    with pytest.raises(StorageError) as exc_info:
        await drafts.submit_draft("s1", draft(1))
    assert exc_info.value.phase == "drafting"
    assert drafts.state("s1").phase == "error"


async def test_close_session_purges(drafts, store):
    await drafts.submit_draft("s1", draft(1))

    await drafts.close_session("s1")
    assert await store.count("s1") == 1

    await drafts.close_session("s1", purge=True)
    assert await store.count("s1") == 0


async def test_request_fields_are_kept(drafts, store):
    context = {
        "problemScope": "cache invalidation",
        "constraints": ["no downtime", ""],
        "assumptions": ["single region", 42],
    }
    await drafts.submit_draft(
        "s1", draft(1, reasoningChain=["measure", "decide"], context=context)
    )

    stored = await store.get_one("s1", 1)
    assert stored.reasoning_chain == ["measure", "decide"]
    assert stored.context.problem_scope == "cache invalidation"
    assert stored.context.constraints == ["no downtime"]
    assert stored.context.assumptions == ["single region"]
    assert stored.next_step_needed
