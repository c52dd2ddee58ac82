"""
ShelVey Orchestrator - Escalation Tests
=======================================

Level transitions, resolution, timeout sweep and concurrent promotions.
"""

from uuid import UUID, uuid4

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession

from shelvey.core.exceptions import InvalidLevelTransition, NotFound
from shelvey.core.models import (
    EffectKind,
    Escalation,
    EscalationLevel,
    EscalationStatus,
    HandlerType,
    Project,
)
from shelvey.core.repositories import AuditRepository, EffectRepository
from shelvey.core.workflow import EscalationEngine, TimeoutScheduler


async def open_escalation(engine: EscalationEngine, project_id: UUID, **overrides) -> Escalation:
    fields = {
        "agent_id": "market-analyst",
        "agent_name": "Market Analyst",
        "issue_type": "blocked",
        "issue_description": "Cannot access the competitor pricing dataset",
        "manager_id": "head-of-research",
    }
    fields.update(overrides)
    return await engine.create_escalation(project_id, **fields)


@pytest_asyncio.fixture
async def escalation(escalations: EscalationEngine, initialized_project: UUID) -> Escalation:
    return await open_escalation(escalations, initialized_project)


# ==========================================================================
# Creation
# ==========================================================================

class TestCreateEscalation:
    """Tests for opening escalations."""

    async def test_starts_at_manager_level(self, escalation: Escalation, clock):
        assert escalation.escalation_level == EscalationLevel.MANAGER
        assert escalation.current_handler_type == HandlerType.MANAGER
        assert escalation.current_handler_id == "head-of-research"
        assert escalation.status == EscalationStatus.OPEN
        assert escalation.escalated_to_manager_at == clock.now
        assert escalation.attempted_solutions == []
        assert escalation.user_id == "user-1"

    async def test_notifies_manager_and_owner(self, db_session: AsyncSession, escalation: Escalation, initialized_project: UUID):
        audit = AuditRepository(db_session)

        messages = await audit.list_messages(initialized_project)
        assert len(messages) == 1
        assert messages[0].to_agent_id == "head-of-research"
        assert messages[0].priority == "urgent"
        assert messages[0].context["escalation_id"] == str(escalation.id)

        notifications = await audit.list_notifications(initialized_project, type="escalation")
        assert len(notifications) == 1

    async def test_unknown_project(self, escalations: EscalationEngine):
        with pytest.raises(NotFound):
            await open_escalation(escalations, uuid4())


# ==========================================================================
# Level Transitions
# ==========================================================================

class TestLevelTransitions:
    """Tests for the manager → CEO → human path."""

    async def test_escalate_to_manager_marks_in_progress(self, escalations: EscalationEngine, escalation: Escalation):
        updated = await escalations.escalate_to_manager(escalation.id, "creative-director", "Creative Director")

        assert updated.escalation_level == EscalationLevel.MANAGER
        assert updated.current_handler_id == "creative-director"
        assert updated.status == EscalationStatus.IN_PROGRESS

    async def test_escalate_to_ceo(self, escalations: EscalationEngine, escalation: Escalation, clock):
        clock.advance(minutes=1)

        updated = await escalations.escalate_to_ceo(escalation.id, "Out of ideas")

        assert updated.escalation_level == EscalationLevel.SENIOR_AGENT
        assert updated.current_handler_type == HandlerType.SENIOR_AGENT
        assert updated.current_handler_id == "ceo-agent"
        assert updated.escalated_to_ceo_at == clock.now
        assert updated.attempted_solutions == [
            {"level": "manager", "reason": "Out of ideas", "timestamp": clock.now.isoformat()},
        ]

    async def test_escalate_to_human(self, escalations: EscalationEngine, db_session: AsyncSession, escalation: Escalation, initialized_project: UUID):
        await escalations.escalate_to_ceo(escalation.id, "Out of ideas")

        updated = await escalations.escalate_to_human(escalation.id, "Needs a budget decision")

        assert updated.escalation_level == EscalationLevel.HUMAN
        assert updated.current_handler_type == HandlerType.HUMAN
        assert updated.current_handler_id == "human_user"
        assert updated.status == EscalationStatus.PENDING_HUMAN
        assert [a["level"] for a in updated.attempted_solutions] == ["manager", "ceo"]

        notifications = await AuditRepository(db_session).list_notifications(
            initialized_project, type="escalation_human"
        )
        assert len(notifications) == 1
        assert notifications[0].priority == "high"

        effects = EffectRepository(db_session)
        assert len(await effects.list_all(EffectKind.SEND_EMAIL)) == 1
        assert len(await effects.list_all(EffectKind.SEND_NOTIFICATION)) == 1

    async def test_cannot_skip_to_human(self, escalations: EscalationEngine, escalation: Escalation):
        with pytest.raises(InvalidLevelTransition) as exc_info:
            await escalations.escalate_to_human(escalation.id, "skip")

        assert exc_info.value.message == (
            f"Escalation {escalation.id} cannot escalate_to_human: expected level 2, "
            f"found level 1 (status open)"
        )

    async def test_cannot_escalate_to_ceo_twice(self, escalations: EscalationEngine, escalation: Escalation):
        await escalations.escalate_to_ceo(escalation.id, "first")

        with pytest.raises(InvalidLevelTransition, match="expected level 1, found level 2"):
            await escalations.escalate_to_ceo(escalation.id, "second")

    async def test_cannot_reassign_manager_after_promotion(self, escalations: EscalationEngine, escalation: Escalation):
        await escalations.escalate_to_ceo(escalation.id, "first")

        with pytest.raises(InvalidLevelTransition):
            await escalations.escalate_to_manager(escalation.id, "head-of-research")

    async def test_levels_never_decrease(self, escalations: EscalationEngine, escalation: Escalation):
        levels = [escalation.escalation_level]
        levels.append((await escalations.escalate_to_ceo(escalation.id, "a")).escalation_level)
        levels.append((await escalations.escalate_to_human(escalation.id, "b")).escalation_level)

        for operation in (
            escalations.escalate_to_ceo(escalation.id, "c"),
            escalations.escalate_to_human(escalation.id, "d"),
        ):
            with pytest.raises(InvalidLevelTransition):
                await operation

        assert levels == [1, 2, 3]


# ==========================================================================
# Resolution
# ==========================================================================

class TestResolution:
    """Tests for the terminal resolved state."""

    async def test_resolve_notifies_creator(self, escalations: EscalationEngine, db_session: AsyncSession, escalation: Escalation, initialized_project: UUID, clock):
        resolved = await escalations.resolve_escalation(escalation.id, "fixed", resolved_by="human_user")

        assert resolved.status == EscalationStatus.RESOLVED
        assert resolved.resolution == "fixed"
        assert resolved.resolution_type == "resolved"
        assert resolved.resolved_at == clock.now

        messages = await AuditRepository(db_session).list_messages(initialized_project)
        answer = [m for m in messages if m.message_type == "answer"]
        assert len(answer) == 1
        assert answer[0].to_agent_id == "market-analyst"
        assert answer[0].from_agent_name == "Human User"

    async def test_resolved_is_terminal(self, escalations: EscalationEngine, escalation: Escalation):
        await escalations.resolve_escalation(escalation.id, "fixed", resolved_by="head-of-research")

        for operation in (
            escalations.escalate_to_manager(escalation.id, "someone"),
            escalations.escalate_to_ceo(escalation.id, "late"),
            escalations.resolve_escalation(escalation.id, "again", resolved_by="x"),
            escalations.add_solution_attempt(escalation.id, {"note": "late"}),
        ):
            with pytest.raises(InvalidLevelTransition, match="status resolved"):
                await operation

    async def test_resolve_from_human_level(self, escalations: EscalationEngine, escalation: Escalation):
        await escalations.escalate_to_ceo(escalation.id, "a")
        await escalations.escalate_to_human(escalation.id, "b")

        resolved = await escalations.resolve_escalation(escalation.id, "approved budget", resolved_by="human_user")

        assert resolved.status == EscalationStatus.RESOLVED
        assert resolved.escalation_level == EscalationLevel.HUMAN


class TestSolutionAttempts:
    """Tests for attempts and handler responses."""

    async def test_add_solution_attempt(self, escalations: EscalationEngine, escalation: Escalation, clock):
        updated = await escalations.add_solution_attempt(escalation.id, {"tried": "cached copy"})

        assert updated.attempted_solutions == [
            {"tried": "cached copy", "timestamp": clock.now.isoformat()},
        ]
        assert updated.escalation_level == EscalationLevel.MANAGER
        assert updated.status == EscalationStatus.OPEN

    async def test_respond_resolve(self, escalations: EscalationEngine, escalation: Escalation):
        updated = await escalations.respond_to_escalation(
            escalation.id, responder_id="head-of-research", response="Use the public API", action="resolve"
        )

        assert updated.status == EscalationStatus.RESOLVED
        assert updated.resolved_by == "head-of-research"

    async def test_respond_escalate_walks_the_path(self, escalations: EscalationEngine, escalation: Escalation):
        first = await escalations.respond_to_escalation(
            escalation.id, responder_id="head-of-research", response="Beyond me", action="escalate"
        )
        assert first.escalation_level == EscalationLevel.SENIOR_AGENT

        second = await escalations.respond_to_escalation(
            escalation.id, responder_id="ceo-agent", response="Needs the owner", action="escalate"
        )
        assert second.escalation_level == EscalationLevel.HUMAN

        with pytest.raises(InvalidLevelTransition, match="found level 3"):
            await escalations.respond_to_escalation(
                escalation.id, responder_id="human_user", response="?", action="escalate"
            )

    async def test_respond_other_records_attempt(self, escalations: EscalationEngine, escalation: Escalation):
        updated = await escalations.respond_to_escalation(
            escalation.id,
            responder_id="head-of-research",
            responder_type="manager",
            response="Try the archive",
            action="suggest",
        )

        assert updated.status == EscalationStatus.OPEN
        assert updated.attempted_solutions[-1]["response"] == "Try the archive"
        assert updated.attempted_solutions[-1]["responder_type"] == "manager"

    async def test_get_escalations_filters(self, escalations: EscalationEngine, initialized_project: UUID):
        first = await open_escalation(escalations, initialized_project)
        second = await open_escalation(escalations, initialized_project, issue_type="quality")
        await escalations.escalate_to_ceo(second.id, "a")

        newest_first = await escalations.get_escalations(project_id=initialized_project)
        assert {e.id for e in newest_first} == {first.id, second.id}
        assert newest_first[0].created_at >= newest_first[1].created_at

        level_two = await escalations.get_escalations(project_id=initialized_project, level=2)
        assert [e.id for e in level_two] == [second.id]

        open_only = await escalations.get_escalations(status=EscalationStatus.OPEN)
        assert {e.id for e in open_only} == {first.id, second.id}

        assert len(await escalations.get_escalations(project_id=initialized_project, limit=1)) == 1


# ==========================================================================
# Timeouts
# ==========================================================================

class TestCheckTimeouts:
    """Tests for the timeout sweep."""

    async def test_nothing_due_before_manager_timeout(self, escalations: EscalationEngine, escalation: Escalation, initialized_project: UUID, clock):
        clock.advance(minutes=4, seconds=59)

        result = await escalations.check_timeouts(initialized_project)

        assert result == {"checked": 1, "escalated": 0}

    async def test_exactly_at_manager_timeout_is_not_due(self, escalations: EscalationEngine, escalation: Escalation, initialized_project: UUID, clock):
        """Promotion needs strictly more than the timeout to have passed."""
        clock.advance(minutes=5)

        result = await escalations.check_timeouts(initialized_project)

        assert result == {"checked": 1, "escalated": 0}
        updated = await escalations.escalations.get(escalation.id)
        assert updated.escalation_level == EscalationLevel.MANAGER

    async def test_manager_timeout_promotes_to_ceo(self, escalations: EscalationEngine, escalation: Escalation, initialized_project: UUID, clock):
        clock.advance(minutes=5, seconds=1)

        result = await escalations.check_timeouts(initialized_project)

        assert result == {"checked": 1, "escalated": 1}
        updated = await escalations.escalations.get(escalation.id)
        assert updated.escalation_level == EscalationLevel.SENIOR_AGENT
        assert updated.current_handler_type == HandlerType.SENIOR_AGENT
        assert updated.escalated_to_ceo_at is not None
        assert len(updated.attempted_solutions) == 1
        assert updated.attempted_solutions[0]["level"] == "manager"
        assert "timeout" in updated.attempted_solutions[0]["reason"]

    async def test_ceo_timeout_promotes_to_human(self, escalations: EscalationEngine, db_session: AsyncSession, escalation: Escalation, initialized_project: UUID, clock):
        clock.advance(minutes=5, seconds=1)
        assert (await escalations.check_timeouts(initialized_project))["escalated"] == 1

        # Exactly ten minutes at the senior agent is not yet overdue
        clock.advance(minutes=10)
        assert (await escalations.check_timeouts(initialized_project))["escalated"] == 0

        clock.advance(seconds=1)
        result = await escalations.check_timeouts(initialized_project)

        assert result == {"checked": 1, "escalated": 1}
        updated = await escalations.escalations.get(escalation.id)
        assert updated.escalation_level == EscalationLevel.HUMAN
        assert updated.status == EscalationStatus.PENDING_HUMAN

        notifications = await AuditRepository(db_session).list_notifications(
            initialized_project, type="escalation_human"
        )
        assert len(notifications) == 1

    async def test_human_level_is_not_swept(self, escalations: EscalationEngine, escalation: Escalation, initialized_project: UUID, clock):
        await escalations.escalate_to_ceo(escalation.id, "a")
        await escalations.escalate_to_human(escalation.id, "b")
        clock.advance(hours=5)

        result = await escalations.check_timeouts(initialized_project)

        assert result == {"checked": 0, "escalated": 0}

    async def test_sweep_is_idempotent(self, escalations: EscalationEngine, escalation: Escalation, initialized_project: UUID, clock):
        clock.advance(minutes=6)

        first = await escalations.check_timeouts(initialized_project)
        second = await escalations.check_timeouts(initialized_project)

        assert first["escalated"] == 1
        assert second["escalated"] == 0
        updated = await escalations.escalations.get(escalation.id)
        assert updated.escalation_level == EscalationLevel.SENIOR_AGENT
        assert len(updated.attempted_solutions) == 1

    async def test_resolved_escalation_is_not_promoted(self, escalations: EscalationEngine, escalation: Escalation, initialized_project: UUID, clock):
        await escalations.resolve_escalation(escalation.id, "fixed", resolved_by="human_user")
        clock.advance(hours=1)

        result = await escalations.check_timeouts(initialized_project)

        assert result == {"checked": 0, "escalated": 0}
        updated = await escalations.escalations.get(escalation.id)
        assert updated.status == EscalationStatus.RESOLVED
        assert updated.escalation_level == EscalationLevel.MANAGER

    async def test_scheduler_tick_sweeps_all_projects(self, escalations: EscalationEngine, orchestrator, session_factory, escalation: Escalation, clock):
        other_project = uuid4()
        await orchestrator.initialize_project(other_project, user_id="user-2")
        other = await open_escalation(escalations, other_project)
        clock.advance(minutes=5, seconds=1)

        scheduler = TimeoutScheduler(session_factory=session_factory, clock=clock)
        result = await scheduler.tick()

        assert result == {"projects": 2, "checked": 2, "escalated": 2}
        for escalation_id in (escalation.id, other.id):
            updated = await escalations.escalations.get(escalation_id)
            assert updated.escalation_level == EscalationLevel.SENIOR_AGENT


# ==========================================================================
# Concurrency
# ==========================================================================

class TestConcurrentPromotion:
    """Two writers promoting the same escalation from separate sessions."""

    async def test_stale_writer_loses(self, session_pair, clock):
        first, second = session_pair
        project_id = uuid4()
        first.add(Project(id=project_id, user_id="user-1", current_phase=1))
        await first.commit()

        winner = EscalationEngine(first, clock=clock)
        loser = EscalationEngine(second, clock=clock)
        escalation = await open_escalation(winner, project_id)

        original_get = loser.escalations.get
        raced = False

        async def get_then_race(escalation_id, fresh=True):
            # Read the row, then let the other writer commit before returning
            nonlocal raced
            row = await original_get(escalation_id, fresh=fresh)
            if not raced:
                raced = True
                await winner.escalate_to_ceo(escalation_id, "winner")
            return row

        loser.escalations.get = get_then_race

        with pytest.raises(InvalidLevelTransition, match="expected level 1, found level 2"):
            await loser.escalate_to_ceo(escalation.id, "loser")

        stored = await winner.escalations.get(escalation.id)
        assert stored.escalation_level == EscalationLevel.SENIOR_AGENT
        assert [a["reason"] for a in stored.attempted_solutions] == ["winner"]
