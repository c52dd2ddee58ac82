"""
Data access layer.

One repository per entity. Reads that precede a state transition use
``fresh=True`` so the identity map is refreshed from the database
(``populate_existing``); the write that follows is version-checked by the
mapper.
"""

from datetime import datetime
from typing import Any, Optional, Sequence
from uuid import UUID, uuid4

from sqlalchemy import and_, func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from shelvey.core.exceptions import NotFound
from shelvey.core.models import (
    ActivityLog,
    AgentMessage,
    Deliverable,
    EffectKind,
    EffectStatus,
    Escalation,
    EscalationStatus,
    Notification,
    OutboundEffect,
    Phase,
    Project,
    Team,
    TeamMemberStatus,
    TeamStatus,
)


def _fresh(stmt, fresh: bool):
    if fresh:
        return stmt.execution_options(populate_existing=True)
    return stmt


def _claimable(stale_before: datetime):
    return or_(
        OutboundEffect.status == EffectStatus.PENDING,
        and_(
            OutboundEffect.status == EffectStatus.SENDING,
            OutboundEffect.claimed_at < stale_before,
        ),
    )


# ==========================================================================
# Pipeline
# ==========================================================================

class ProjectRepository:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def get(self, project_id: UUID, fresh: bool = False) -> Optional[Project]:
        result = await self.db.execute(
            _fresh(select(Project).where(Project.id == project_id), fresh)
        )
        return result.scalar_one_or_none()

    async def get_or_404(self, project_id: UUID, fresh: bool = False) -> Project:
        project = await self.get(project_id, fresh=fresh)
        if project is None:
            raise NotFound("Project", project_id)
        return project

    def add(self, project: Project) -> Project:
        self.db.add(project)
        return project


class PhaseRepository:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def count_for_project(self, project_id: UUID) -> int:
        result = await self.db.execute(
            select(func.count()).select_from(Phase).where(Phase.project_id == project_id)
        )
        return result.scalar() or 0

    async def list_for_project(self, project_id: UUID, fresh: bool = False) -> Sequence[Phase]:
        result = await self.db.execute(
            _fresh(
                select(Phase)
                .where(Phase.project_id == project_id)
                .order_by(Phase.phase_number),
                fresh,
            )
        )
        return result.scalars().all()

    async def get_by_number(
        self, project_id: UUID, phase_number: int, fresh: bool = True
    ) -> Phase:
        result = await self.db.execute(
            _fresh(
                select(Phase).where(
                    Phase.project_id == project_id,
                    Phase.phase_number == phase_number,
                ),
                fresh,
            )
        )
        phase = result.scalar_one_or_none()
        if phase is None:
            raise NotFound("Phase", f"{project_id}/{phase_number}")
        return phase

    async def get(self, phase_id: UUID, fresh: bool = True) -> Phase:
        result = await self.db.execute(
            _fresh(select(Phase).where(Phase.id == phase_id), fresh)
        )
        phase = result.scalar_one_or_none()
        if phase is None:
            raise NotFound("Phase", phase_id)
        return phase

    async def get_for_team(self, team_id: UUID, fresh: bool = True) -> Optional[Phase]:
        result = await self.db.execute(
            _fresh(select(Phase).where(Phase.team_id == team_id), fresh)
        )
        return result.scalar_one_or_none()

    def add(self, phase: Phase) -> Phase:
        self.db.add(phase)
        return phase


class TeamRepository:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def get(self, team_id: UUID, fresh: bool = True) -> Team:
        result = await self.db.execute(
            _fresh(select(Team).where(Team.id == team_id), fresh)
        )
        team = result.scalar_one_or_none()
        if team is None:
            raise NotFound("Team", team_id)
        return team

    async def list_active(self, project_id: UUID) -> Sequence[Team]:
        result = await self.db.execute(
            select(Team)
            .where(Team.project_id == project_id, Team.status == TeamStatus.ACTIVE)
            .order_by(Team.activation_phase)
        )
        return result.scalars().all()

    def set_members_status(
        self,
        team: Team,
        status: TeamMemberStatus,
        current_task: Optional[str] = None,
    ) -> None:
        for member in team.members:
            member.status = status
            member.current_task = current_task

    def add(self, team: Team) -> Team:
        self.db.add(team)
        return team


class DeliverableRepository:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def get(self, deliverable_id: UUID, fresh: bool = True) -> Deliverable:
        result = await self.db.execute(
            _fresh(select(Deliverable).where(Deliverable.id == deliverable_id), fresh)
        )
        deliverable = result.scalar_one_or_none()
        if deliverable is None:
            raise NotFound("Deliverable", deliverable_id)
        return deliverable

    async def list_for_phase(self, phase_id: UUID, fresh: bool = True) -> Sequence[Deliverable]:
        result = await self.db.execute(
            _fresh(
                select(Deliverable)
                .where(Deliverable.phase_id == phase_id)
                .order_by(Deliverable.position),
                fresh,
            )
        )
        return result.scalars().all()

    def add(self, deliverable: Deliverable) -> Deliverable:
        self.db.add(deliverable)
        return deliverable


# ==========================================================================
# Escalations
# ==========================================================================

class EscalationRepository:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def get(self, escalation_id: UUID, fresh: bool = True) -> Escalation:
        result = await self.db.execute(
            _fresh(select(Escalation).where(Escalation.id == escalation_id), fresh)
        )
        escalation = result.scalar_one_or_none()
        if escalation is None:
            raise NotFound("Escalation", escalation_id)
        return escalation

    async def list_by_status(
        self,
        project_id: UUID,
        statuses: Sequence[EscalationStatus],
    ) -> Sequence[Escalation]:
        result = await self.db.execute(
            _fresh(
                select(Escalation)
                .where(
                    Escalation.project_id == project_id,
                    Escalation.status.in_(statuses),
                )
                .order_by(Escalation.escalated_to_manager_at),
                True,
            )
        )
        return result.scalars().all()

    async def query(
        self,
        project_id: Optional[UUID] = None,
        status: Optional[EscalationStatus] = None,
        level: Optional[int] = None,
        limit: int = 50,
    ) -> Sequence[Escalation]:
        stmt = select(Escalation).order_by(Escalation.created_at.desc()).limit(limit)
        if project_id:
            stmt = stmt.where(Escalation.project_id == project_id)
        if status:
            stmt = stmt.where(Escalation.status == status)
        if level:
            stmt = stmt.where(Escalation.escalation_level == level)
        result = await self.db.execute(stmt)
        return result.scalars().all()

    async def project_ids_with_status(
        self, statuses: Sequence[EscalationStatus]
    ) -> list[UUID]:
        result = await self.db.execute(
            select(Escalation.project_id)
            .where(Escalation.status.in_(statuses))
            .distinct()
        )
        return list(result.scalars().all())

    def add(self, escalation: Escalation) -> Escalation:
        self.db.add(escalation)
        return escalation


# ==========================================================================
# Audit sinks
# ==========================================================================

class AuditRepository:
    """Messages, notifications and activity logs. Append-only."""

    def __init__(self, db: AsyncSession):
        self.db = db

    def add_message(self, **fields: Any) -> AgentMessage:
        message = AgentMessage(id=uuid4(), **fields)
        self.db.add(message)
        return message

    def add_notification(self, **fields: Any) -> Notification:
        notification = Notification(id=uuid4(), **fields)
        self.db.add(notification)
        return notification

    def log_activity(
        self,
        agent_id: str,
        action: str,
        agent_name: Optional[str] = None,
        status: str = "completed",
        details: Optional[dict] = None,
    ) -> ActivityLog:
        entry = ActivityLog(
            id=uuid4(),
            agent_id=agent_id,
            agent_name=agent_name,
            action=action,
            status=status,
            details=details or {},
        )
        self.db.add(entry)
        return entry

    async def list_messages(self, project_id: UUID) -> Sequence[AgentMessage]:
        result = await self.db.execute(
            select(AgentMessage)
            .where(AgentMessage.project_id == project_id)
            .order_by(AgentMessage.created_at)
        )
        return result.scalars().all()

    async def list_notifications(
        self, project_id: UUID, type: Optional[str] = None
    ) -> Sequence[Notification]:
        stmt = select(Notification).where(Notification.project_id == project_id)
        if type:
            stmt = stmt.where(Notification.type == type)
        result = await self.db.execute(stmt.order_by(Notification.created_at))
        return result.scalars().all()


class EffectRepository:
    """Outbox of fire-and-forget side effects."""

    def __init__(self, db: AsyncSession):
        self.db = db

    def enqueue(self, kind: EffectKind, payload: dict) -> OutboundEffect:
        effect = OutboundEffect(
            id=uuid4(),
            kind=kind,
            payload=payload,
            status=EffectStatus.PENDING,
            attempts=0,
        )
        self.db.add(effect)
        return effect

    async def list_claimable(
        self, stale_before: datetime, limit: int = 100
    ) -> Sequence[OutboundEffect]:
        """PENDING rows plus SENDING rows whose claim went stale."""
        result = await self.db.execute(
            select(OutboundEffect)
            .where(_claimable(stale_before))
            .order_by(OutboundEffect.created_at)
            .limit(limit)
        )
        return result.scalars().all()

    async def claim(
        self,
        effect_ids: Sequence[UUID],
        now: datetime,
        stale_before: datetime,
    ) -> Sequence[OutboundEffect]:
        """
        Mark rows SENDING with a conditional UPDATE per row.

        A row another drain claimed first matches no row and is left out.
        Does not commit.
        """
        claimed = []
        for effect_id in effect_ids:
            result = await self.db.execute(
                update(OutboundEffect)
                .where(OutboundEffect.id == effect_id, _claimable(stale_before))
                .values(status=EffectStatus.SENDING, claimed_at=now)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 1:
                claimed.append(effect_id)

        if not claimed:
            return []

        result = await self.db.execute(
            _fresh(
                select(OutboundEffect)
                .where(OutboundEffect.id.in_(claimed))
                .order_by(OutboundEffect.created_at),
                True,
            )
        )
        return result.scalars().all()

    async def list_all(self, kind: Optional[EffectKind] = None) -> Sequence[OutboundEffect]:
        stmt = select(OutboundEffect).order_by(OutboundEffect.created_at)
        if kind:
            stmt = stmt.where(OutboundEffect.kind == kind)
        result = await self.db.execute(stmt)
        return result.scalars().all()
