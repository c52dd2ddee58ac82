"""
Phase Orchestrator - six-phase project lifecycle.

Owns the ordered phase lifecycle of every project:
Research → Brand → Development → Content → Marketing → Sales
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Optional
from uuid import UUID, uuid4

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.attributes import flag_modified
from sqlalchemy.orm.exc import StaleDataError

from shelvey.core.clock import Clock, utcnow
from shelvey.core.config import settings
from shelvey.core.exceptions import (
    ApprovalsPending,
    ConcurrentModification,
    InvalidPhaseTransition,
    NotFound,
    OrchestrationError,
    PrerequisiteNotMet,
)
from shelvey.core.models import (
    Deliverable,
    DeliverableStatus,
    EffectKind,
    Phase,
    PhaseStatus,
    Project,
    ProjectStatus,
    Team,
    TeamMember,
    TeamMemberRole,
    TeamMemberStatus,
    TeamStatus,
)
from shelvey.core.repositories import (
    AuditRepository,
    DeliverableRepository,
    EffectRepository,
    PhaseRepository,
    ProjectRepository,
    TeamRepository,
)
from shelvey.core.workflow.approval import ApprovalGate, Approver
from shelvey.core.workflow.templates import PHASE_TEMPLATES, TOTAL_PHASES

logger = logging.getLogger(__name__)

COORDINATOR_ID = "coo"
COORDINATOR_NAME = "COO Agent"


# ==========================================================================
# Results
# ==========================================================================

@dataclass
class InitializationResult:
    project: Project
    phases: list[Phase]
    created: bool


@dataclass
class PhaseCompletion:
    completed_phase: Phase
    next_phase: Optional[Phase] = None
    project_completed: bool = False


@dataclass
class ProjectOverview:
    project: Project
    phases: list[Phase]
    active_teams: list[Team]


@dataclass
class ApprovalResult:
    deliverable: Deliverable
    changed: bool
    fully_approved: bool
    pending_approvals: list[Approver] = field(default_factory=list)
    completion: Optional[PhaseCompletion] = None


@dataclass
class PhaseProgress:
    phase_number: int
    phase_name: str
    status: PhaseStatus
    team: Optional[str]
    total_deliverables: int
    approved_deliverables: int
    progress: int
    is_complete: bool
    can_advance: bool
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None


@dataclass
class ProjectProgress:
    phases: list[PhaseProgress]
    completed_phases: int
    total_phases: int
    progress: int
    current_phase: Optional[PhaseProgress]


@dataclass
class TeamStats:
    total_members: int
    working: int
    idle: int
    pending_deliverables: int
    in_progress: int
    completed: int


@dataclass
class TeamStatusReport:
    team: Team
    phase: Optional[Phase]
    deliverables: list[Deliverable]
    stats: TeamStats


@dataclass
class TaskAssignment:
    team: Team
    member: TeamMember
    deliverable: Optional[Deliverable] = None


# ==========================================================================
# Orchestrator
# ==========================================================================

class PhaseOrchestrator:
    """
    Phase lifecycle manager.

    Per phase: PENDING → ACTIVE → (REVIEW) → COMPLETED

    - Phase N may be activated only once phase N-1 is COMPLETED
    - Completing a phase deactivates its team and activates the next phase
    - A phase completes when every deliverable passes the ApprovalGate

    Every transition reads the affected rows fresh, validates the
    pre-state, and commits all of its writes (phase, team, members,
    outbox) in one transaction. The version column on Phase and
    Deliverable rejects a write whose row changed after the read.
    """

    # Phase execution order
    PHASE_ORDER = list(range(1, TOTAL_PHASES + 1))

    # Statuses from which a phase may be completed
    COMPLETABLE = (PhaseStatus.ACTIVE, PhaseStatus.REVIEW)

    def __init__(self, db: AsyncSession, clock: Clock = utcnow):
        self.db = db
        self.clock = clock
        self.projects = ProjectRepository(db)
        self.phases = PhaseRepository(db)
        self.teams = TeamRepository(db)
        self.deliverables = DeliverableRepository(db)
        self.audit = AuditRepository(db)
        self.effects = EffectRepository(db)

    # ======================================================================
    # Lifecycle
    # ======================================================================

    async def initialize_project(
        self,
        project_id: UUID,
        user_id: str,
        name: Optional[str] = None,
    ) -> InitializationResult:
        """
        Create the six phases, their teams and deliverables.

        Phase 1 starts ACTIVE with its team activated and a work trigger
        queued; phases 2-6 start PENDING. Calling this again for the same
        project writes nothing and returns the existing phases.

        Args:
            project_id: Project identifier
            user_id: Owner of the project
            name: Optional project name (used when the project is created here)

        Returns:
            InitializationResult with created=False if already initialized
        """
        if await self.phases.count_for_project(project_id) > 0:
            logger.info(f"Project {project_id} already initialized")
            return await self._existing_initialization(project_id)

        project = await self.projects.get(project_id)
        if project is None:
            project = self.projects.add(
                Project(
                    id=project_id,
                    user_id=user_id,
                    name=name,
                    current_phase=1,
                    status=ProjectStatus.ACTIVE,
                )
            )
            await self.db.flush()

        now = self.clock()
        phases = []

        for number in self.PHASE_ORDER:
            template = PHASE_TEMPLATES[number]
            is_first = number == 1

            team = self.teams.add(
                Team(
                    id=uuid4(),
                    project_id=project.id,
                    division=template.division,
                    name=template.team_name,
                    activation_phase=number,
                    status=TeamStatus.ACTIVE if is_first else TeamStatus.INACTIVE,
                    members=[
                        TeamMember(
                            id=uuid4(),
                            agent_id=member.agent_id,
                            agent_name=member.agent_name,
                            role=TeamMemberRole(member.role),
                            status=TeamMemberStatus.IDLE,
                        )
                        for member in template.members
                    ],
                )
            )

            phase = self.phases.add(
                Phase(
                    id=uuid4(),
                    project=project,
                    phase_number=number,
                    name=template.name,
                    status=PhaseStatus.ACTIVE if is_first else PhaseStatus.PENDING,
                    team=team,
                    started_at=now if is_first else None,
                    deliverables=[
                        Deliverable(
                            id=uuid4(),
                            position=position,
                            name=item.name,
                            deliverable_type=item.type,
                            description=item.description,
                            status=DeliverableStatus.PENDING,
                            authority_approved=False,
                            human_approved=False,
                            feedback_history=[],
                        )
                        for position, item in enumerate(template.deliverables)
                    ],
                )
            )
            phases.append(phase)

        project.current_phase = 1
        self._queue_work_trigger(project, phases[0])
        self.audit.log_activity(
            agent_id=COORDINATOR_ID,
            agent_name=COORDINATOR_NAME,
            action="initialize_project",
            details={"project_id": str(project.id), "phases": len(phases)},
        )

        try:
            await self.db.commit()
        except IntegrityError:
            # A concurrent initialization inserted the phases first
            await self.db.rollback()
            logger.info(f"Project {project_id} initialized concurrently")
            return await self._existing_initialization(project_id)

        logger.info(
            f"Initialized project {project_id}: {len(phases)} phases, "
            f"{PHASE_TEMPLATES[1].team_name} activated"
        )
        return InitializationResult(project=project, phases=phases, created=True)

    async def activate_phase(self, project_id: UUID, phase_number: int) -> Phase:
        """
        Activate a PENDING phase.

        Raises:
            PrerequisiteNotMet: Previous phase is not COMPLETED
            InvalidPhaseTransition: Phase is not PENDING
            NotFound: Unknown project or phase
        """
        self._validate_phase_number(phase_number)
        project = await self.projects.get_or_404(project_id, fresh=True)
        phase = await self.phases.get_by_number(project_id, phase_number)

        await self._activate(project, phase)
        self.audit.log_activity(
            agent_id=COORDINATOR_ID,
            agent_name=COORDINATOR_NAME,
            action="activate_phase",
            details={"project_id": str(project_id), "phase_number": phase_number},
        )
        await self._commit_phase(project_id, phase_number)

        logger.info(f"Activated phase {phase_number} for project {project_id}")
        return phase

    async def complete_phase(self, project_id: UUID, phase_number: int) -> PhaseCompletion:
        """
        Complete an ACTIVE or REVIEW phase and activate the next one.

        This is the only way phases advance. Every deliverable of the phase
        must carry both approvals. Completing phase 6 completes the project.

        Raises:
            InvalidPhaseTransition: Phase is not ACTIVE or REVIEW
            ApprovalsPending: Some deliverable lacks authority or human approval
            NotFound: Unknown project or phase
        """
        self._validate_phase_number(phase_number)
        project = await self.projects.get_or_404(project_id, fresh=True)
        phase = await self.phases.get_by_number(project_id, phase_number)

        completion = await self._complete(project, phase)
        await self._commit_phase(project_id, phase_number)

        logger.info(f"Completed phase {phase_number} for project {project_id}")
        return completion

    async def get_status(self, project_id: UUID) -> ProjectOverview:
        """Read-only aggregate of phases, deliverables and active teams."""
        project = await self.projects.get_or_404(project_id, fresh=True)
        phases = await self.phases.list_for_project(project_id, fresh=True)
        active_teams = await self.teams.list_active(project_id)
        return ProjectOverview(
            project=project,
            phases=list(phases),
            active_teams=list(active_teams),
        )

    async def delegate_to_manager(self, team_id: UUID, directive: str) -> Team:
        """
        Hand a directive to the team's manager.

        Sets the manager to WORKING with the directive as its current task.
        """
        team = await self.teams.get(team_id)
        manager = team.manager
        if manager is None:
            raise NotFound("Team manager", team_id)

        manager.status = TeamMemberStatus.WORKING
        manager.current_task = directive

        self.audit.add_message(
            project_id=team.project_id,
            from_agent_id=COORDINATOR_ID,
            from_agent_name=COORDINATOR_NAME,
            to_agent_id=manager.agent_id,
            to_agent_name=manager.agent_name,
            team_id=str(team.id),
            message_type="directive",
            subject=f"Directive for {team.name}",
            content=directive,
            context={"team_id": str(team.id)},
            priority="normal",
        )
        self.audit.log_activity(
            agent_id=COORDINATOR_ID,
            agent_name=COORDINATOR_NAME,
            action="delegate_to_manager",
            details={"team_id": str(team.id), "directive": directive},
        )
        await self.db.commit()

        logger.info(f"Delegated to {manager.agent_id}: {directive[:60]}")
        return team

    async def get_current_phase(self, project_id: UUID) -> Optional[Phase]:
        """The ACTIVE or REVIEW phase of a project; None once all phases completed."""
        await self.projects.get_or_404(project_id)
        phases = await self.phases.list_for_project(project_id, fresh=True)
        if not phases:
            raise NotFound("Phases for project", project_id)
        return next((p for p in phases if p.status in self.COMPLETABLE), None)

    async def get_team_status(self, team_id: UUID) -> TeamStatusReport:
        """Members, the deliverables of the team's phase, and headcounts."""
        team = await self.teams.get(team_id)
        phase = await self.phases.get_for_team(team.id)
        deliverables = list(phase.deliverables) if phase else []

        statuses = [d.status for d in deliverables]
        stats = TeamStats(
            total_members=len(team.members),
            working=sum(1 for m in team.members if m.status == TeamMemberStatus.WORKING),
            idle=sum(1 for m in team.members if m.status == TeamMemberStatus.IDLE),
            pending_deliverables=statuses.count(DeliverableStatus.PENDING),
            in_progress=statuses.count(DeliverableStatus.IN_PROGRESS),
            completed=statuses.count(DeliverableStatus.APPROVED),
        )
        return TeamStatusReport(team=team, phase=phase, deliverables=deliverables, stats=stats)

    async def assign_task(
        self,
        team_id: UUID,
        agent_id: str,
        deliverable_id: Optional[UUID] = None,
        task: Optional[str] = None,
    ) -> TaskAssignment:
        """
        Put a team member to work.

        With a deliverable, the deliverable is assigned to the agent and
        moves to IN_PROGRESS (unless already produced), and the member's
        current task is the deliverable name. Without one, ``task`` is the
        member's current task.

        Raises:
            NotFound: Unknown team, member or deliverable
            InvalidPhaseTransition: The deliverable's phase is not open
            OrchestrationError: Deliverable belongs to another team, or
                neither a deliverable nor a task was given
        """
        if deliverable_id is None and not task:
            raise OrchestrationError("assign_task requires a deliverable_id or a task")

        team = await self.teams.get(team_id)
        member = next((m for m in team.members if m.agent_id == agent_id), None)
        if member is None:
            raise NotFound("Team member", f"{team_id}/{agent_id}")

        deliverable = None
        if deliverable_id is not None:
            deliverable = await self.deliverables.get(deliverable_id)
            phase = await self.phases.get(deliverable.phase_id)
            if phase.team_id != team.id:
                raise OrchestrationError(
                    f"Deliverable {deliverable_id} does not belong to team {team_id}"
                )
            self._require_open_phase(phase, "accept assignments")

            deliverable.assigned_agent_id = agent_id
            if deliverable.status in (DeliverableStatus.PENDING, DeliverableStatus.REVISION_REQUESTED):
                deliverable.status = DeliverableStatus.IN_PROGRESS
            self._touch(phase)

        member.status = TeamMemberStatus.WORKING
        member.current_task = deliverable.name if deliverable is not None else task

        self.audit.log_activity(
            agent_id=COORDINATOR_ID,
            agent_name=COORDINATOR_NAME,
            action="assign_task",
            details={
                "team_id": str(team.id),
                "agent_id": agent_id,
                "deliverable_id": str(deliverable_id) if deliverable_id else None,
            },
        )
        await self._commit(
            lambda: ConcurrentModification("Deliverable", deliverable_id)
        )

        logger.info(f"Assigned {member.current_task!r} to {agent_id}")
        return TaskAssignment(team=team, member=member, deliverable=deliverable)

    # ======================================================================
    # Deliverables
    # ======================================================================

    async def approve_deliverable(
        self,
        deliverable_id: UUID,
        approver: Approver,
        approved_by: Optional[str] = None,
        feedback: Optional[str] = None,
    ) -> ApprovalResult:
        """
        Record one side of the dual approval.

        Approving twice is a no-op, also after the phase has completed.
        When both approvals are present the deliverable becomes APPROVED;
        when every deliverable of the phase is approved the phase completes
        and the next phase activates.
        """
        deliverable = await self.deliverables.get(deliverable_id)
        phase = await self.phases.get(deliverable.phase_id)
        project = await self.projects.get_or_404(phase.project_id, fresh=True)

        gate = ApprovalGate.of(deliverable)
        updated = gate.approve(approver)

        if updated == gate:
            return ApprovalResult(
                deliverable=deliverable,
                changed=False,
                fully_approved=gate.complete,
                pending_approvals=gate.pending,
            )

        self._require_open_phase(phase, "accept approvals")

        now = self.clock()
        updated.apply_to(deliverable)
        if approver == Approver.HUMAN:
            deliverable.approved_by = approved_by
            deliverable.approved_at = now
        if feedback:
            deliverable.feedback_history = [
                *deliverable.feedback_history,
                {
                    "source": approver.value,
                    "feedback": feedback,
                    "approved": True,
                    "timestamp": now.isoformat(),
                },
            ]
        if updated.complete:
            deliverable.status = DeliverableStatus.APPROVED

        self.audit.log_activity(
            agent_id=settings.SENIOR_AGENT_ID if approver == Approver.AUTHORITY else (approved_by or "user"),
            agent_name=settings.SENIOR_AGENT_NAME if approver == Approver.AUTHORITY else "User",
            action=f"Approved {deliverable.deliverable_type} deliverable",
            details={"deliverable_id": str(deliverable.id), "approver": approver.value},
        )

        self._touch(phase)

        completion = None
        siblings = await self.deliverables.list_for_phase(phase.id, fresh=False)
        if updated.complete and all(ApprovalGate.of(d).complete for d in siblings):
            completion = await self._complete(project, phase)
        elif self._all_produced(siblings):
            self._move_to_review(phase)

        await self._commit(
            lambda: ConcurrentModification("Deliverable", deliverable_id)
        )

        logger.info(
            f"Deliverable {deliverable_id} approved by {approver.value} "
            f"(fully approved: {updated.complete})"
        )
        return ApprovalResult(
            deliverable=deliverable,
            changed=True,
            fully_approved=updated.complete,
            pending_approvals=updated.pending,
            completion=completion,
        )

    async def reject_deliverable(
        self,
        deliverable_id: UUID,
        feedback: str,
        source: str = "User",
    ) -> Deliverable:
        """
        Request a revision. Approval flags are left as they are.
        """
        deliverable = await self.deliverables.get(deliverable_id)
        phase = await self.phases.get(deliverable.phase_id)
        self._require_open_phase(phase, "accept revisions")

        deliverable.feedback_history = [
            *deliverable.feedback_history,
            {
                "source": source,
                "feedback": feedback,
                "approved": False,
                "timestamp": self.clock().isoformat(),
            },
        ]
        deliverable.status = DeliverableStatus.REVISION_REQUESTED

        if phase.status == PhaseStatus.REVIEW:
            phase.status = PhaseStatus.ACTIVE
        self._touch(phase)

        await self._commit(
            lambda: ConcurrentModification("Deliverable", deliverable_id)
        )

        logger.info(f"Revision requested for deliverable {deliverable_id}")
        return deliverable

    async def submit_deliverable(
        self,
        deliverable_id: UUID,
        content: Optional[dict] = None,
        agent_id: Optional[str] = None,
    ) -> Deliverable:
        """
        Mark a deliverable as produced.

        When every deliverable of an ACTIVE phase has been produced the
        phase moves to REVIEW.
        """
        deliverable = await self.deliverables.get(deliverable_id)
        phase = await self.phases.get(deliverable.phase_id)
        self._require_open_phase(phase, "accept submissions")

        if content is not None:
            deliverable.content = content
        if agent_id:
            deliverable.assigned_agent_id = agent_id
        if deliverable.status != DeliverableStatus.APPROVED:
            deliverable.status = DeliverableStatus.REVIEW
        self._touch(phase)

        siblings = await self.deliverables.list_for_phase(phase.id, fresh=False)
        if self._all_produced(siblings):
            self._move_to_review(phase)

        await self._commit(
            lambda: ConcurrentModification("Deliverable", deliverable_id)
        )

        logger.info(f"Deliverable {deliverable_id} submitted for review")
        return deliverable

    # ======================================================================
    # Progress
    # ======================================================================

    async def check_phase_completion(self, project_id: UUID, phase_number: int) -> PhaseProgress:
        """Count approved deliverables of a phase."""
        self._validate_phase_number(phase_number)
        phase = await self.phases.get_by_number(project_id, phase_number)
        return self._progress(phase)

    async def get_project_progress(self, project_id: UUID) -> ProjectProgress:
        """Per-phase progress plus an overall summary."""
        await self.projects.get_or_404(project_id)
        phases = await self.phases.list_for_project(project_id, fresh=True)
        if not phases:
            raise NotFound("Phases for project", project_id)

        progress = [self._progress(phase) for phase in phases]
        completed = sum(1 for p in progress if p.status == PhaseStatus.COMPLETED)
        current = next(
            (p for p in progress if p.status in (PhaseStatus.ACTIVE, PhaseStatus.REVIEW)),
            None,
        )
        return ProjectProgress(
            phases=progress,
            completed_phases=completed,
            total_phases=TOTAL_PHASES,
            progress=round(completed / TOTAL_PHASES * 100),
            current_phase=current,
        )

    # ======================================================================
    # Internals
    # ======================================================================

    async def _activate(self, project: Project, phase: Phase) -> None:
        """Activate a phase and its team. Does not commit."""
        if phase.phase_number > 1:
            previous = await self.phases.get_by_number(
                project.id, phase.phase_number - 1, fresh=False
            )
            if previous.status != PhaseStatus.COMPLETED:
                raise PrerequisiteNotMet(
                    phase.phase_number,
                    previous.phase_number,
                    previous.status.value,
                )

        if phase.status != PhaseStatus.PENDING:
            raise InvalidPhaseTransition(
                phase.phase_number,
                "be activated",
                [PhaseStatus.PENDING.value],
                phase.status.value,
            )

        phase.status = PhaseStatus.ACTIVE
        phase.started_at = self.clock()
        project.current_phase = phase.phase_number

        if phase.team is not None:
            phase.team.status = TeamStatus.ACTIVE
            self.teams.set_members_status(phase.team, TeamMemberStatus.IDLE)

        self._queue_work_trigger(project, phase)

    async def _complete(self, project: Project, phase: Phase) -> PhaseCompletion:
        """Complete a phase and activate its successor. Does not commit."""
        if phase.status not in self.COMPLETABLE:
            raise InvalidPhaseTransition(
                phase.phase_number,
                "be completed",
                [s.value for s in self.COMPLETABLE],
                phase.status.value,
            )

        unapproved = sum(1 for d in phase.deliverables if not ApprovalGate.of(d).complete)
        if unapproved:
            raise ApprovalsPending(phase.phase_number, unapproved, len(phase.deliverables))

        phase.status = PhaseStatus.COMPLETED
        phase.completed_at = self.clock()

        if phase.team is not None:
            phase.team.status = TeamStatus.INACTIVE
            self.teams.set_members_status(phase.team, TeamMemberStatus.IDLE)

        completion = PhaseCompletion(completed_phase=phase)

        if phase.phase_number < TOTAL_PHASES:
            next_phase = await self.phases.get_by_number(
                project.id, phase.phase_number + 1
            )
            await self._activate(project, next_phase)
            completion.next_phase = next_phase
        else:
            project.status = ProjectStatus.COMPLETED
            completion.project_completed = True

        self.effects.enqueue(
            EffectKind.SEND_EMAIL,
            {
                "user_id": project.user_id,
                "type": "phase_completion",
                "data": {
                    "project_id": str(project.id),
                    "phase_name": phase.name,
                    "phase_number": phase.phase_number,
                    "next_phase_name": completion.next_phase.name if completion.next_phase else None,
                },
            },
        )
        self.audit.add_notification(
            user_id=project.user_id,
            project_id=project.id,
            type="phase_completion",
            title=f"Phase {phase.phase_number} completed: {phase.name}",
            message=(
                f"Advanced to phase {completion.next_phase.phase_number}: {completion.next_phase.name}"
                if completion.next_phase
                else "All phases completed! Business is ready to launch."
            ),
            priority="normal",
            notification_metadata={"phase_id": str(phase.id)},
        )
        self.audit.log_activity(
            agent_id=COORDINATOR_ID,
            agent_name=COORDINATOR_NAME,
            action="complete_phase",
            details={"project_id": str(project.id), "phase_number": phase.phase_number},
        )
        return completion

    def _queue_work_trigger(self, project: Project, phase: Phase) -> None:
        self.effects.enqueue(
            EffectKind.TRIGGER_WORK,
            {
                "action": "start_phase_work",
                "user_id": project.user_id,
                "project_id": str(project.id),
                "phase_id": str(phase.id),
                "phase_number": phase.phase_number,
            },
        )

    def _touch(self, phase: Phase) -> None:
        """
        Write the phase row along with any deliverable change.

        The phase version then moves on every deliverable write, so two
        sessions deciding the phase's aggregate state from different
        snapshots cannot both commit.
        """
        phase.updated_at = self.clock()
        # Force the UPDATE even when the timestamp is unchanged
        flag_modified(phase, "updated_at")

    def _move_to_review(self, phase: Phase) -> None:
        if phase.status == PhaseStatus.ACTIVE:
            phase.status = PhaseStatus.REVIEW
            logger.info(f"Phase {phase.phase_number} moved to review")

    @staticmethod
    def _all_produced(deliverables) -> bool:
        produced = (DeliverableStatus.REVIEW, DeliverableStatus.APPROVED)
        return bool(deliverables) and all(d.status in produced for d in deliverables)

    def _require_open_phase(self, phase: Phase, operation: str) -> None:
        if phase.status not in self.COMPLETABLE:
            raise InvalidPhaseTransition(
                phase.phase_number,
                operation,
                [s.value for s in self.COMPLETABLE],
                phase.status.value,
            )

    def _progress(self, phase: Phase) -> PhaseProgress:
        total = len(phase.deliverables)
        approved = sum(1 for d in phase.deliverables if ApprovalGate.of(d).complete)
        is_complete = total > 0 and approved == total
        return PhaseProgress(
            phase_number=phase.phase_number,
            phase_name=phase.name,
            status=phase.status,
            team=phase.team.name if phase.team else None,
            total_deliverables=total,
            approved_deliverables=approved,
            progress=round(approved / total * 100) if total else 0,
            is_complete=is_complete,
            can_advance=is_complete and phase.phase_number < TOTAL_PHASES,
            started_at=phase.started_at,
            completed_at=phase.completed_at,
        )

    @staticmethod
    def _validate_phase_number(phase_number: int) -> None:
        if not 1 <= phase_number <= TOTAL_PHASES:
            raise OrchestrationError(
                f"Invalid phase number: {phase_number}. Valid: 1-{TOTAL_PHASES}"
            )

    async def _existing_initialization(self, project_id: UUID) -> InitializationResult:
        project = await self.projects.get_or_404(project_id, fresh=True)
        phases = await self.phases.list_for_project(project_id, fresh=True)
        return InitializationResult(project=project, phases=list(phases), created=False)

    async def _commit_phase(self, project_id: UUID, phase_number: int) -> None:
        async def conflict() -> OrchestrationError:
            phase = await self.phases.get_by_number(project_id, phase_number)
            return InvalidPhaseTransition(
                phase_number,
                "be updated (concurrent transition)",
                ["unchanged"],
                phase.status.value,
            )

        try:
            await self.db.commit()
        except StaleDataError:
            await self.db.rollback()
            raise await conflict()

    async def _commit(self, on_conflict: Callable[[], OrchestrationError]) -> None:
        try:
            await self.db.commit()
        except StaleDataError:
            await self.db.rollback()
            raise on_conflict()
