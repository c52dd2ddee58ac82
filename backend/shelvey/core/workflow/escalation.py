"""
Escalation Engine - agent issue escalation path.

Handles escalation: Team Manager → Senior Agent (CEO) → Human
"""

import logging
from datetime import timedelta
from typing import Any, Optional
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from shelvey.core.clock import Clock, ensure_utc, utcnow
from shelvey.core.config import Settings, settings as default_settings
from shelvey.core.exceptions import ConcurrentModification, InvalidLevelTransition
from shelvey.core.models import (
    EffectKind,
    Escalation,
    EscalationLevel,
    EscalationStatus,
    HandlerType,
)
from shelvey.core.repositories import (
    AuditRepository,
    EffectRepository,
    EscalationRepository,
    ProjectRepository,
)

logger = logging.getLogger(__name__)


class EscalationEngine:
    """
    Escalation state machine.

    Escalation Path:
    1. Team manager - default handler for a new escalation
    2. Senior agent (CEO) - manager gave up or timed out
    3. Human - final level, requires intervention

    Escalation is triggered:
    - Explicitly by the current handler
    - By check_timeouts when a level's time budget runs out

    Levels only move forward one step at a time. RESOLVED is terminal.
    """

    # Escalation path in order
    ESCALATION_PATH = [
        EscalationLevel.MANAGER,
        EscalationLevel.SENIOR_AGENT,
        EscalationLevel.HUMAN,
    ]

    # Statuses the timeout sweep looks at
    SWEEPABLE = (EscalationStatus.OPEN, EscalationStatus.IN_PROGRESS)

    def __init__(
        self,
        db: AsyncSession,
        clock: Clock = utcnow,
        config: Optional[Settings] = None,
    ):
        self.db = db
        self.clock = clock
        self.config = config or default_settings
        self.escalations = EscalationRepository(db)
        self.projects = ProjectRepository(db)
        self.audit = AuditRepository(db)
        self.effects = EffectRepository(db)

    # ======================================================================
    # Transitions
    # ======================================================================

    async def create_escalation(
        self,
        project_id: UUID,
        agent_id: str,
        issue_type: str,
        issue_description: str,
        user_id: Optional[str] = None,
        agent_name: Optional[str] = None,
        context: Optional[dict] = None,
        task_id: Optional[str] = None,
        deliverable_id: Optional[str] = None,
        team_id: Optional[str] = None,
        manager_id: Optional[str] = None,
    ) -> Escalation:
        """
        Open a new escalation at the manager level.

        Notifies the manager with an urgent message and the project owner
        with a notification.
        """
        project = await self.projects.get_or_404(project_id)
        user_id = user_id or project.user_id
        now = self.clock()

        escalation = self.escalations.add(
            Escalation(
                user_id=user_id,
                project_id=project_id,
                created_by_agent_id=agent_id,
                created_by_agent_name=agent_name,
                escalation_level=EscalationLevel.MANAGER,
                current_handler_type=HandlerType.MANAGER,
                current_handler_id=manager_id,
                status=EscalationStatus.OPEN,
                issue_type=issue_type,
                issue_description=issue_description,
                context=context or {},
                task_id=task_id,
                deliverable_id=deliverable_id,
                team_id=team_id,
                attempted_solutions=[],
                escalated_to_manager_at=now,
            )
        )
        await self.db.flush()

        self.audit.log_activity(
            agent_id=agent_id,
            agent_name=agent_name,
            action=f"Created escalation: {issue_type}",
            status="pending",
            details={
                "escalation_id": str(escalation.id),
                "issue_type": issue_type,
                "manager_id": manager_id,
            },
        )
        self.audit.add_message(
            user_id=user_id,
            project_id=project_id,
            from_agent_id=agent_id,
            from_agent_name=agent_name,
            to_agent_id=manager_id,
            to_agent_name="Team Manager",
            team_id=team_id,
            message_type="request_help",
            subject=f"Escalation: {issue_type}",
            content=issue_description,
            context={
                "escalation_id": str(escalation.id),
                "task_id": task_id,
                "deliverable_id": deliverable_id,
            },
            priority="urgent",
        )
        self.audit.add_notification(
            user_id=user_id,
            project_id=project_id,
            type="escalation",
            title=f"Agent Escalation: {issue_type}",
            message=f"{agent_name or agent_id} has created an escalation: {issue_description[:100]}",
            priority="normal",
            notification_metadata={
                "escalation_id": str(escalation.id),
                "agent_id": agent_id,
                "issue_type": issue_type,
            },
        )
        await self.db.commit()

        logger.info(f"Escalation {escalation.id} created by {agent_id}: {issue_type}")
        return escalation

    async def escalate_to_manager(
        self,
        escalation_id: UUID,
        manager_id: str,
        manager_name: Optional[str] = None,
    ) -> Escalation:
        """(Re)assign a level-1 escalation to a manager and mark it in progress."""
        escalation = await self.escalations.get(escalation_id)
        self._require_level(escalation, "escalate_to_manager", EscalationLevel.MANAGER)

        escalation.current_handler_type = HandlerType.MANAGER
        escalation.current_handler_id = manager_id
        escalation.escalated_to_manager_at = self.clock()
        escalation.status = EscalationStatus.IN_PROGRESS

        self.audit.log_activity(
            agent_id=manager_id,
            agent_name=manager_name,
            action=f"Assigned escalation: {escalation.issue_type}",
            status="in_progress",
            details={"escalation_id": str(escalation_id)},
        )
        await self._commit(escalation_id, "escalate_to_manager", EscalationLevel.MANAGER)

        logger.info(f"Escalation {escalation_id} assigned to manager {manager_id}")
        return escalation

    async def escalate_to_ceo(self, escalation_id: UUID, reason: str) -> Escalation:
        """
        Promote a level-1 escalation to the senior agent.

        Args:
            escalation_id: Escalation to promote
            reason: Why the manager could not resolve it

        Raises:
            InvalidLevelTransition: Not at level 1, or already resolved
        """
        escalation = await self.escalations.get(escalation_id)
        self._require_level(escalation, "escalate_to_ceo", EscalationLevel.MANAGER)

        now = self.clock()
        previous_handler = escalation.current_handler_id
        previous_attempts = list(escalation.attempted_solutions or [])

        escalation.escalation_level = EscalationLevel.SENIOR_AGENT
        escalation.current_handler_type = HandlerType.SENIOR_AGENT
        escalation.current_handler_id = self.config.SENIOR_AGENT_ID
        escalation.escalated_to_ceo_at = now
        escalation.attempted_solutions = [
            *previous_attempts,
            {"level": "manager", "reason": reason, "timestamp": now.isoformat()},
        ]

        self.audit.add_message(
            user_id=escalation.user_id,
            project_id=escalation.project_id,
            from_agent_id=previous_handler or "manager",
            from_agent_name="Team Manager",
            to_agent_id=self.config.SENIOR_AGENT_ID,
            to_agent_name=self.config.SENIOR_AGENT_NAME,
            message_type="request_help",
            subject=f"CEO Escalation: {escalation.issue_type}",
            content=f"Manager escalation: {reason}\n\nOriginal issue: {escalation.issue_description}",
            context={
                "escalation_id": str(escalation_id),
                "previous_attempts": previous_attempts,
            },
            priority="urgent",
        )
        self.audit.log_activity(
            agent_id="coo",
            agent_name="COO Agent",
            action=f"Escalated to CEO: {escalation.issue_type}",
            status="pending",
            details={"escalation_id": str(escalation_id), "reason": reason},
        )
        await self._commit(escalation_id, "escalate_to_ceo", EscalationLevel.MANAGER)

        logger.info(f"Escalation {escalation_id} promoted to senior agent: {reason}")
        return escalation

    async def escalate_to_human(self, escalation_id: UUID, reason: str) -> Escalation:
        """
        Promote a level-2 escalation to the human operator.

        Creates an urgent notification and queues the email and notification
        effects. Delivery happens after commit and never undoes the promotion.

        Raises:
            InvalidLevelTransition: Not at level 2, or already resolved
        """
        escalation = await self.escalations.get(escalation_id)
        self._require_level(escalation, "escalate_to_human", EscalationLevel.SENIOR_AGENT)

        now = self.clock()
        previous_attempts = list(escalation.attempted_solutions or [])

        escalation.escalation_level = EscalationLevel.HUMAN
        escalation.current_handler_type = HandlerType.HUMAN
        escalation.current_handler_id = self.config.HUMAN_HANDLER_ID
        escalation.escalated_to_human_at = now
        escalation.status = EscalationStatus.PENDING_HUMAN
        escalation.attempted_solutions = [
            *previous_attempts,
            {"level": "ceo", "reason": reason, "timestamp": now.isoformat()},
        ]

        self.audit.add_notification(
            user_id=escalation.user_id,
            project_id=escalation.project_id,
            type="escalation_human",
            title="URGENT: Human Intervention Required",
            message=f"The agents need your help! Issue: {escalation.issue_description[:150]}",
            priority="high",
            notification_metadata={
                "escalation_id": str(escalation_id),
                "issue_type": escalation.issue_type,
                "attempted_solutions": previous_attempts,
                "context": escalation.context,
            },
        )
        email = {
            "user_id": escalation.user_id,
            "template": "escalation_human",
            "data": {
                "escalation_id": str(escalation_id),
                "issue_type": escalation.issue_type,
                "issue_description": escalation.issue_description,
                "attempted_solutions": previous_attempts,
            },
        }
        self.effects.enqueue(EffectKind.SEND_EMAIL, email)
        self.effects.enqueue(
            EffectKind.SEND_NOTIFICATION,
            {
                "user_id": escalation.user_id,
                "type": "escalation_human",
                "priority": "high",
                "escalation_id": str(escalation_id),
                "reason": reason,
            },
        )
        self.audit.log_activity(
            agent_id=self.config.SENIOR_AGENT_ID,
            agent_name=self.config.SENIOR_AGENT_NAME,
            action=f"Escalated to Human User: {escalation.issue_type}",
            status="pending",
            details={"escalation_id": str(escalation_id), "reason": reason},
        )
        await self._commit(escalation_id, "escalate_to_human", EscalationLevel.SENIOR_AGENT)

        logger.warning(f"Human intervention requested for escalation {escalation_id}: {reason}")
        return escalation

    async def resolve_escalation(
        self,
        escalation_id: UUID,
        resolution: str,
        resolved_by: str,
        resolution_type: Optional[str] = None,
    ) -> Escalation:
        """Close an escalation. Terminal: a resolved escalation never changes again."""
        escalation = await self.escalations.get(escalation_id)
        self._require_unresolved(escalation, "resolve_escalation")

        resolution_type = resolution_type or "resolved"
        escalation.resolution = resolution
        escalation.resolution_type = resolution_type
        escalation.resolved_by = resolved_by
        escalation.resolved_at = self.clock()
        escalation.status = EscalationStatus.RESOLVED

        resolver_name = "Human User" if resolved_by == self.config.HUMAN_HANDLER_ID else resolved_by
        self.audit.add_message(
            user_id=escalation.user_id,
            project_id=escalation.project_id,
            from_agent_id=resolved_by,
            from_agent_name=resolver_name,
            to_agent_id=escalation.created_by_agent_id,
            to_agent_name=escalation.created_by_agent_name,
            message_type="answer",
            subject=f"Escalation Resolved: {escalation.issue_type}",
            content=resolution,
            context={"escalation_id": str(escalation_id), "resolution_type": resolution_type},
            priority="high",
        )
        self.audit.log_activity(
            agent_id=resolved_by,
            agent_name=resolver_name,
            action=f"Resolved escalation: {escalation.issue_type}",
            details={"escalation_id": str(escalation_id), "resolution_type": resolution_type},
        )
        await self._commit(escalation_id, "resolve_escalation", None)

        logger.info(f"Escalation {escalation_id} resolved by {resolved_by}")
        return escalation

    async def add_solution_attempt(self, escalation_id: UUID, attempt: dict[str, Any]) -> Escalation:
        """Append a timestamped attempt. Level and status are unchanged."""
        escalation = await self.escalations.get(escalation_id)
        self._require_unresolved(escalation, "add_solution_attempt")

        escalation.attempted_solutions = [
            *(escalation.attempted_solutions or []),
            {**attempt, "timestamp": self.clock().isoformat()},
        ]
        await self._commit(escalation_id, "add_solution_attempt", None)

        logger.debug(f"Solution attempt recorded on escalation {escalation_id}")
        return escalation

    async def respond_to_escalation(
        self,
        escalation_id: UUID,
        responder_id: str,
        response: str,
        action: Optional[str] = None,
        responder_type: Optional[str] = None,
    ) -> Escalation:
        """
        Handler response.

        - resolve: closes the escalation with the response as resolution
        - escalate: promotes to the next level (rejected at level 3)
        - anything else: recorded as a solution attempt
        """
        if action == "resolve":
            return await self.resolve_escalation(
                escalation_id,
                resolution=response,
                resolved_by=responder_id,
                resolution_type="resolved",
            )

        if action == "escalate":
            escalation = await self.escalations.get(escalation_id)
            if escalation.escalation_level == EscalationLevel.MANAGER:
                return await self.escalate_to_ceo(escalation_id, reason=response)
            if escalation.escalation_level == EscalationLevel.SENIOR_AGENT:
                return await self.escalate_to_human(escalation_id, reason=response)
            raise InvalidLevelTransition(
                escalation_id,
                "escalate",
                int(EscalationLevel.SENIOR_AGENT),
                escalation.escalation_level,
                escalation.status.value,
            )

        return await self.add_solution_attempt(
            escalation_id,
            {
                "responder_id": responder_id,
                "responder_type": responder_type,
                "response": response,
                "action": action,
            },
        )

    # ======================================================================
    # Queries
    # ======================================================================

    async def get_escalations(
        self,
        project_id: Optional[UUID] = None,
        status: Optional[EscalationStatus] = None,
        level: Optional[int] = None,
        limit: int = 50,
    ) -> list[Escalation]:
        """Filtered escalations, newest first."""
        return list(
            await self.escalations.query(
                project_id=project_id, status=status, level=level, limit=limit
            )
        )

    async def check_timeouts(self, project_id: UUID) -> dict[str, int]:
        """
        Promote escalations whose handler did not respond in time.

        Level 1 is promoted once more than MANAGER_TIMEOUT_SECONDS have passed
        since it reached the manager, level 2 once more than
        CEO_TIMEOUT_SECONDS have passed since it reached the senior agent.
        Rows that change concurrently are skipped.

        Returns:
            {"checked": open escalations examined, "escalated": promotions}
        """
        now = self.clock()
        manager_timeout = self.config.manager_timeout
        ceo_timeout = self.config.ceo_timeout

        candidates = await self.escalations.list_by_status(project_id, self.SWEEPABLE)

        # Snapshot before any commit or rollback expires the rows
        due = []
        for escalation in candidates:
            level = escalation.escalation_level
            if level == EscalationLevel.MANAGER:
                since = ensure_utc(escalation.escalated_to_manager_at)
                if since is not None and now - since > manager_timeout:
                    due.append((escalation.id, level))
            elif level == EscalationLevel.SENIOR_AGENT:
                since = ensure_utc(escalation.escalated_to_ceo_at)
                if since is not None and now - since > ceo_timeout:
                    due.append((escalation.id, level))

        escalated = 0
        for escalation_id, level in due:
            try:
                if level == EscalationLevel.MANAGER:
                    await self.escalate_to_ceo(
                        escalation_id,
                        reason=f"Manager response timeout ({self._minutes(manager_timeout)} minutes)",
                    )
                else:
                    await self.escalate_to_human(
                        escalation_id,
                        reason=f"CEO response timeout ({self._minutes(ceo_timeout)} minutes)",
                    )
            except (InvalidLevelTransition, ConcurrentModification) as e:
                logger.info(f"Timeout sweep skipped escalation {escalation_id}: {e.message}")
                continue
            escalated += 1

        if escalated:
            logger.info(f"Timeout sweep for project {project_id}: {escalated}/{len(candidates)} promoted")

        return {"checked": len(candidates), "escalated": escalated}

    # ======================================================================
    # Internals
    # ======================================================================

    @staticmethod
    def _minutes(delta: timedelta) -> int:
        return int(delta.total_seconds() // 60)

    def _require_unresolved(self, escalation: Escalation, operation: str) -> None:
        if escalation.is_resolved:
            raise InvalidLevelTransition(
                escalation.id,
                operation,
                None,
                escalation.escalation_level,
                escalation.status.value,
            )

    def _require_level(
        self,
        escalation: Escalation,
        operation: str,
        expected: EscalationLevel,
    ) -> None:
        if escalation.is_resolved or escalation.escalation_level != expected:
            raise InvalidLevelTransition(
                escalation.id,
                operation,
                int(expected),
                escalation.escalation_level,
                escalation.status.value,
            )

    async def _commit(
        self,
        escalation_id: UUID,
        operation: str,
        expected: Optional[EscalationLevel],
    ) -> None:
        """Commit a transition; a stale version reports the state that won."""
        try:
            await self.db.commit()
        except StaleDataError:
            await self.db.rollback()
            current = await self.escalations.get(escalation_id)
            if expected is None and not current.is_resolved:
                raise ConcurrentModification("Escalation", escalation_id)
            raise InvalidLevelTransition(
                escalation_id,
                operation,
                int(expected) if expected is not None else None,
                current.escalation_level,
                current.status.value,
            )
