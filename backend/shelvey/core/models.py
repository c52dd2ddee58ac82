"""
ShelVey Orchestrator - Database Models
=======================================

SQLAlchemy models for the phase pipeline and the escalation protocol.

Phase, Deliverable and Escalation carry a ``version`` column used by the
mapper for optimistic locking: every UPDATE is issued as
``WHERE id = :id AND version = :read_version``.
"""

import enum
from datetime import datetime
from typing import Optional
from uuid import UUID, uuid4

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    Enum,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
    Uuid,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from shelvey.core.clock import utcnow
from shelvey.core.database import Base


def _enum_values(enum_cls: type[enum.Enum]) -> list[str]:
    """Persist enum values (not member names)."""
    return [member.value for member in enum_cls]


# ==========================================================================
# Enums
# ==========================================================================

class ProjectStatus(str, enum.Enum):
    """Overall project status."""
    ACTIVE = "active"
    COMPLETED = "completed"


class PhaseStatus(str, enum.Enum):
    """Phase lifecycle: pending → active → (review) → completed."""
    PENDING = "pending"
    ACTIVE = "active"
    REVIEW = "review"          # All deliverables produced, approval pending
    COMPLETED = "completed"


class TeamStatus(str, enum.Enum):
    """Team activation status, kept in lock-step with its phase."""
    INACTIVE = "inactive"
    ACTIVE = "active"


class TeamMemberRole(str, enum.Enum):
    """Role of an agent inside a team."""
    MANAGER = "manager"
    LEAD = "lead"
    MEMBER = "member"


class TeamMemberStatus(str, enum.Enum):
    """Working state of a team member."""
    IDLE = "idle"
    WORKING = "working"
    REVIEWING = "reviewing"
    ACTIVE = "active"


class DeliverableStatus(str, enum.Enum):
    """Deliverable production status."""
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    REVIEW = "review"                          # Produced, awaiting approvals
    REVISION_REQUESTED = "revision_requested"
    APPROVED = "approved"                      # Both approvals granted


class EscalationLevel(enum.IntEnum):
    """Escalation handler levels (strictly increasing)."""
    MANAGER = 1        # Team manager
    SENIOR_AGENT = 2   # Senior authority agent (CEO agent)
    HUMAN = 3          # Human operator


class HandlerType(str, enum.Enum):
    """Type of the party currently handling an escalation."""
    MANAGER = "manager"
    SENIOR_AGENT = "senior_agent"
    HUMAN = "human"


class EscalationStatus(str, enum.Enum):
    """Escalation status. RESOLVED is terminal."""
    OPEN = "open"
    IN_PROGRESS = "in_progress"
    PENDING_HUMAN = "pending_human"
    RESOLVED = "resolved"


class EffectKind(str, enum.Enum):
    """Outbound side effects delivered to external collaborators."""
    TRIGGER_WORK = "trigger_work"
    SEND_NOTIFICATION = "send_notification"
    SEND_EMAIL = "send_email"


class EffectStatus(str, enum.Enum):
    """Delivery status of an outbound effect."""
    PENDING = "pending"
    SENDING = "sending"        # Claimed by a drain
    DELIVERED = "delivered"
    FAILED = "failed"


# ==========================================================================
# Mixins
# ==========================================================================

class TimestampMixin:
    """Mixin that adds created_at and updated_at timestamps."""

    # Client-side defaults: values must stay loaded after flush (AsyncSession
    # cannot lazy-load expired attributes).
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        server_default=func.now(),
        nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        server_default=func.now(),
        onupdate=utcnow,
        nullable=False,
    )


# ==========================================================================
# Pipeline Models
# ==========================================================================

class Project(Base, TimestampMixin):
    """
    A business being built through the six-phase pipeline.
    """

    __tablename__ = "projects"

    id: Mapped[UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid4,
    )
    user_id: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
        index=True,
    )
    name: Mapped[Optional[str]] = mapped_column(
        String(255),
        nullable=True,
    )
    current_phase: Mapped[int] = mapped_column(
        Integer,
        default=1,
        nullable=False,
    )  # 1-6
    status: Mapped[ProjectStatus] = mapped_column(
        Enum(ProjectStatus, values_callable=_enum_values),
        default=ProjectStatus.ACTIVE,
        nullable=False,
    )

    # Relationships
    phases: Mapped[list["Phase"]] = relationship(
        back_populates="project",
        lazy="selectin",
        order_by="Phase.phase_number",
    )

    def __repr__(self) -> str:
        return f"<Project {self.id} [phase {self.current_phase}]>"


class Team(Base, TimestampMixin):
    """
    A division team, activated and deactivated together with its phase.
    """

    __tablename__ = "teams"

    id: Mapped[UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid4,
    )
    project_id: Mapped[UUID] = mapped_column(
        Uuid,
        ForeignKey("projects.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    division: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
    )  # research, brand, development, content, marketing, sales
    name: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
    )
    activation_phase: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
    )
    status: Mapped[TeamStatus] = mapped_column(
        Enum(TeamStatus, values_callable=_enum_values),
        default=TeamStatus.INACTIVE,
        nullable=False,
    )

    # Relationships
    members: Mapped[list["TeamMember"]] = relationship(
        back_populates="team",
        lazy="selectin",
        order_by="TeamMember.agent_id",
    )

    @property
    def manager(self) -> Optional["TeamMember"]:
        return next(
            (m for m in self.members if m.role == TeamMemberRole.MANAGER),
            None,
        )

    def __repr__(self) -> str:
        return f"<Team {self.division} [{self.status.value}]>"


class TeamMember(Base, TimestampMixin):
    """
    An agent belonging to a team.
    """

    __tablename__ = "team_members"

    id: Mapped[UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid4,
    )
    team_id: Mapped[UUID] = mapped_column(
        Uuid,
        ForeignKey("teams.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    agent_id: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
    )
    agent_name: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
    )
    role: Mapped[TeamMemberRole] = mapped_column(
        Enum(TeamMemberRole, values_callable=_enum_values),
        default=TeamMemberRole.MEMBER,
        nullable=False,
    )
    status: Mapped[TeamMemberStatus] = mapped_column(
        Enum(TeamMemberStatus, values_callable=_enum_values),
        default=TeamMemberStatus.IDLE,
        nullable=False,
    )
    current_task: Mapped[Optional[str]] = mapped_column(
        Text,
        nullable=True,
    )

    # Relationships
    team: Mapped["Team"] = relationship(back_populates="members")

    def __repr__(self) -> str:
        return f"<TeamMember {self.agent_id} [{self.status.value}]>"


class Phase(Base, TimestampMixin):
    """
    One of the six ordered phases of a project.

    Invariant: phase N may become ACTIVE only when phase N-1 is COMPLETED.
    """

    __tablename__ = "phases"
    __table_args__ = (
        UniqueConstraint("project_id", "phase_number", name="uq_phase_project_number"),
    )

    id: Mapped[UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid4,
    )
    project_id: Mapped[UUID] = mapped_column(
        Uuid,
        ForeignKey("projects.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    phase_number: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
    )
    name: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
    )
    status: Mapped[PhaseStatus] = mapped_column(
        Enum(PhaseStatus, values_callable=_enum_values),
        default=PhaseStatus.PENDING,
        nullable=False,
        index=True,
    )
    team_id: Mapped[Optional[UUID]] = mapped_column(
        Uuid,
        ForeignKey("teams.id", ondelete="SET NULL"),
        nullable=True,
    )
    started_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )
    completed_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )
    version: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
    )

    # Relationships
    project: Mapped["Project"] = relationship(back_populates="phases")
    team: Mapped[Optional["Team"]] = relationship(lazy="selectin")
    deliverables: Mapped[list["Deliverable"]] = relationship(
        back_populates="phase",
        lazy="selectin",
        order_by="Deliverable.position",
    )

    __mapper_args__ = {"version_id_col": version}

    def __repr__(self) -> str:
        return f"<Phase {self.phase_number} [{self.status.value}]>"


class Deliverable(Base, TimestampMixin):
    """
    A unit of phase output gated by dual approval.
    """

    __tablename__ = "deliverables"

    id: Mapped[UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid4,
    )
    phase_id: Mapped[UUID] = mapped_column(
        Uuid,
        ForeignKey("phases.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    position: Mapped[int] = mapped_column(
        Integer,
        default=0,
        nullable=False,
    )
    name: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
    )
    deliverable_type: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
    )
    description: Mapped[Optional[str]] = mapped_column(
        Text,
        nullable=True,
    )
    status: Mapped[DeliverableStatus] = mapped_column(
        Enum(DeliverableStatus, values_callable=_enum_values),
        default=DeliverableStatus.PENDING,
        nullable=False,
    )
    assigned_agent_id: Mapped[Optional[str]] = mapped_column(
        String(100),
        nullable=True,
    )
    content: Mapped[Optional[dict]] = mapped_column(
        JSON,
        nullable=True,
    )

    # Dual approval
    authority_approved: Mapped[bool] = mapped_column(
        Boolean,
        default=False,
        nullable=False,
    )
    human_approved: Mapped[bool] = mapped_column(
        Boolean,
        default=False,
        nullable=False,
    )
    approved_by: Mapped[Optional[str]] = mapped_column(
        String(100),
        nullable=True,
    )
    approved_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )
    feedback_history: Mapped[list] = mapped_column(
        JSON,
        default=list,
        nullable=False,
    )  # [{source, feedback, approved, timestamp}]
    version: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
    )

    # Relationships
    phase: Mapped["Phase"] = relationship(back_populates="deliverables")

    __mapper_args__ = {"version_id_col": version}

    def __repr__(self) -> str:
        return f"<Deliverable {self.name} [{self.status.value}]>"


# ==========================================================================
# Escalation Models
# ==========================================================================

class Escalation(Base, TimestampMixin):
    """
    An issue raised by an agent, handled by increasingly senior parties.

    Level moves 1 → 2 → 3 only; RESOLVED is terminal.
    """

    __tablename__ = "escalations"

    id: Mapped[UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid4,
    )
    user_id: Mapped[Optional[str]] = mapped_column(
        String(100),
        nullable=True,
    )
    project_id: Mapped[UUID] = mapped_column(
        Uuid,
        ForeignKey("projects.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    created_by_agent_id: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
    )
    created_by_agent_name: Mapped[Optional[str]] = mapped_column(
        String(255),
        nullable=True,
    )

    # Handler state
    escalation_level: Mapped[int] = mapped_column(
        Integer,
        default=EscalationLevel.MANAGER,
        nullable=False,
        index=True,
    )
    current_handler_type: Mapped[HandlerType] = mapped_column(
        Enum(HandlerType, values_callable=_enum_values),
        default=HandlerType.MANAGER,
        nullable=False,
    )
    current_handler_id: Mapped[Optional[str]] = mapped_column(
        String(100),
        nullable=True,
    )
    status: Mapped[EscalationStatus] = mapped_column(
        Enum(EscalationStatus, values_callable=_enum_values),
        default=EscalationStatus.OPEN,
        nullable=False,
        index=True,
    )

    # Issue
    issue_type: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
    )
    issue_description: Mapped[str] = mapped_column(
        Text,
        nullable=False,
    )
    context: Mapped[dict] = mapped_column(
        JSON,
        default=dict,
        nullable=False,
    )
    task_id: Mapped[Optional[str]] = mapped_column(
        String(100),
        nullable=True,
    )
    deliverable_id: Mapped[Optional[str]] = mapped_column(
        String(100),
        nullable=True,
    )
    team_id: Mapped[Optional[str]] = mapped_column(
        String(100),
        nullable=True,
    )
    attempted_solutions: Mapped[list] = mapped_column(
        JSON,
        default=list,
        nullable=False,
    )  # Append-only: [{level, reason, timestamp}]

    # Per-level timestamps
    escalated_to_manager_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )
    escalated_to_ceo_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )
    escalated_to_human_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    # Resolution
    resolution: Mapped[Optional[str]] = mapped_column(
        Text,
        nullable=True,
    )
    resolution_type: Mapped[Optional[str]] = mapped_column(
        String(50),
        nullable=True,
    )
    resolved_by: Mapped[Optional[str]] = mapped_column(
        String(100),
        nullable=True,
    )
    resolved_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )
    version: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
    )

    __mapper_args__ = {"version_id_col": version}

    @property
    def is_resolved(self) -> bool:
        return self.status == EscalationStatus.RESOLVED

    def __repr__(self) -> str:
        return f"<Escalation {self.id} L{self.escalation_level} [{self.status.value}]>"


# ==========================================================================
# Audit Models (write-only from the engine's point of view)
# ==========================================================================

class AgentMessage(Base, TimestampMixin):
    """
    Directed note between agents (or an agent and a human).
    """

    __tablename__ = "agent_messages"

    id: Mapped[UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid4,
    )
    user_id: Mapped[Optional[str]] = mapped_column(
        String(100),
        nullable=True,
    )
    project_id: Mapped[Optional[UUID]] = mapped_column(
        Uuid,
        ForeignKey("projects.id", ondelete="CASCADE"),
        nullable=True,
        index=True,
    )
    from_agent_id: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
    )
    from_agent_name: Mapped[Optional[str]] = mapped_column(
        String(255),
        nullable=True,
    )
    to_agent_id: Mapped[Optional[str]] = mapped_column(
        String(100),
        nullable=True,
    )
    to_agent_name: Mapped[Optional[str]] = mapped_column(
        String(255),
        nullable=True,
    )
    team_id: Mapped[Optional[str]] = mapped_column(
        String(100),
        nullable=True,
    )
    message_type: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
    )  # request_help, answer, directive
    subject: Mapped[str] = mapped_column(
        String(500),
        nullable=False,
    )
    content: Mapped[Optional[str]] = mapped_column(
        Text,
        nullable=True,
    )
    context: Mapped[dict] = mapped_column(
        JSON,
        default=dict,
        nullable=False,
    )
    priority: Mapped[str] = mapped_column(
        String(20),
        default="normal",
        nullable=False,
    )  # low, normal, high, urgent

    def __repr__(self) -> str:
        return f"<AgentMessage {self.from_agent_id} → {self.to_agent_id}>"


class Notification(Base, TimestampMixin):
    """
    Human-visible notification.
    """

    __tablename__ = "notifications"

    id: Mapped[UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid4,
    )
    user_id: Mapped[Optional[str]] = mapped_column(
        String(100),
        nullable=True,
        index=True,
    )
    project_id: Mapped[Optional[UUID]] = mapped_column(
        Uuid,
        ForeignKey("projects.id", ondelete="CASCADE"),
        nullable=True,
        index=True,
    )
    type: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
    )  # escalation, escalation_human, phase_completion
    title: Mapped[str] = mapped_column(
        String(500),
        nullable=False,
    )
    message: Mapped[str] = mapped_column(
        Text,
        nullable=False,
    )
    priority: Mapped[str] = mapped_column(
        String(20),
        default="normal",
        nullable=False,
    )
    notification_metadata: Mapped[dict] = mapped_column(
        JSON,
        default=dict,
        nullable=False,
    )
    read: Mapped[bool] = mapped_column(
        Boolean,
        default=False,
        nullable=False,
    )

    def __repr__(self) -> str:
        return f"<Notification {self.type} [{self.priority}]>"


class ActivityLog(Base, TimestampMixin):
    """
    Append-only activity sink. Never read for control flow.
    """

    __tablename__ = "activity_logs"

    id: Mapped[UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid4,
    )
    agent_id: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
    )
    agent_name: Mapped[Optional[str]] = mapped_column(
        String(255),
        nullable=True,
    )
    action: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
    )
    status: Mapped[str] = mapped_column(
        String(20),
        default="completed",
        nullable=False,
    )
    details: Mapped[dict] = mapped_column(
        JSON,
        default=dict,
        nullable=False,
    )

    def __repr__(self) -> str:
        return f"<ActivityLog {self.agent_id}: {self.action[:40]}>"


class OutboundEffect(Base, TimestampMixin):
    """
    Outbox row for a fire-and-forget side effect.

    Written in the same transaction as the state change that caused it;
    delivered afterwards by the EffectDispatcher.
    A drain claims a row (PENDING → SENDING) in a committed UPDATE before
    sending it, so concurrent drains never deliver the same row twice.
    """

    __tablename__ = "outbound_effects"

    id: Mapped[UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid4,
    )
    kind: Mapped[EffectKind] = mapped_column(
        Enum(EffectKind, values_callable=_enum_values),
        nullable=False,
    )
    payload: Mapped[dict] = mapped_column(
        JSON,
        default=dict,
        nullable=False,
    )
    status: Mapped[EffectStatus] = mapped_column(
        Enum(EffectStatus, values_callable=_enum_values),
        default=EffectStatus.PENDING,
        nullable=False,
        index=True,
    )
    attempts: Mapped[int] = mapped_column(
        Integer,
        default=0,
        nullable=False,
    )
    last_error: Mapped[Optional[str]] = mapped_column(
        Text,
        nullable=True,
    )
    claimed_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )
    delivered_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    def __repr__(self) -> str:
        return f"<OutboundEffect {self.kind.value} [{self.status.value}]>"
