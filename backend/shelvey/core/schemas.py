"""
ShelVey Orchestrator - Pydantic Schemas
========================================

Action payloads and response schemas for the action endpoints.
Payload keys are accepted in snake_case or camelCase (``projectId``).
"""

from datetime import datetime
from typing import Any, Optional
from uuid import UUID

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from shelvey.core.models import (
    DeliverableStatus,
    EscalationStatus,
    HandlerType,
    PhaseStatus,
    ProjectStatus,
    TeamMemberRole,
    TeamMemberStatus,
    TeamStatus,
)
from shelvey.core.workflow.approval import Approver
from shelvey.core.workflow.templates import TOTAL_PHASES


# ==========================================================================
# Base Schemas
# ==========================================================================

class BaseSchema(BaseModel):
    """Base schema for responses."""

    model_config = ConfigDict(
        from_attributes=True,
        populate_by_name=True,
        str_strip_whitespace=True,
    )


class TimestampSchema(BaseSchema):
    """Schema with timestamp fields."""

    created_at: datetime
    updated_at: datetime


class ActionPayload(BaseModel):
    """Base schema for action payloads. Unknown keys (``action``) are ignored."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        str_strip_whitespace=True,
        extra="ignore",
    )


# ==========================================================================
# Phase Orchestrator Payloads
# ==========================================================================

class InitializeProjectPayload(ActionPayload):
    project_id: UUID
    user_id: str = Field(..., min_length=1)
    name: Optional[str] = Field(None, max_length=255)


class ProjectPayload(ActionPayload):
    project_id: UUID


class PhasePayload(ActionPayload):
    project_id: UUID
    phase_number: int = Field(..., ge=1, le=TOTAL_PHASES)


class DelegatePayload(ActionPayload):
    team_id: UUID
    directive: str = Field(..., min_length=1)


class ApproveDeliverablePayload(ActionPayload):
    deliverable_id: UUID
    approver: Approver = Field(
        ...,
        validation_alias=AliasChoices("approver", "approval_type", "approvalType"),
    )
    approved_by: Optional[str] = None
    feedback: Optional[str] = None

    @field_validator("approver", mode="before")
    @classmethod
    def parse_approver(cls, v: Any) -> Approver:
        if isinstance(v, Approver):
            return v
        return Approver.parse(v)


class RejectDeliverablePayload(ActionPayload):
    deliverable_id: UUID
    feedback: str = Field(..., min_length=1)
    source: str = "User"


class SubmitDeliverablePayload(ActionPayload):
    deliverable_id: UUID
    content: Optional[dict[str, Any]] = None
    agent_id: Optional[str] = None


class TeamPayload(ActionPayload):
    team_id: UUID


class AssignTaskPayload(ActionPayload):
    team_id: UUID
    agent_id: str = Field(..., min_length=1)
    deliverable_id: Optional[UUID] = None
    task: Optional[str] = None


# ==========================================================================
# Escalation Payloads
# ==========================================================================

class CreateEscalationPayload(ActionPayload):
    project_id: UUID
    agent_id: str = Field(..., min_length=1)
    issue_type: str = Field(..., min_length=1, max_length=100)
    issue_description: str = Field(..., min_length=1)
    user_id: Optional[str] = None
    agent_name: Optional[str] = None
    context: Optional[dict[str, Any]] = None
    task_id: Optional[str] = None
    deliverable_id: Optional[str] = None
    team_id: Optional[str] = None
    manager_id: Optional[str] = None


class EscalationPayload(ActionPayload):
    escalation_id: UUID


class EscalateToManagerPayload(EscalationPayload):
    manager_id: str = Field(..., min_length=1)
    manager_name: Optional[str] = None


class EscalateReasonPayload(EscalationPayload):
    reason: str = Field(..., min_length=1)


class ResolveEscalationPayload(EscalationPayload):
    resolution: str = Field(..., min_length=1)
    resolved_by: str = Field(..., min_length=1)
    resolution_type: Optional[str] = None


class SolutionAttemptPayload(EscalationPayload):
    attempt: dict[str, Any]


class GetEscalationsPayload(ActionPayload):
    project_id: Optional[UUID] = None
    status: Optional[EscalationStatus] = None
    level: Optional[int] = Field(None, ge=1, le=3)
    limit: int = Field(50, ge=1, le=500)


class RespondToEscalationPayload(EscalationPayload):
    responder_id: str = Field(..., min_length=1)
    response: str = Field(..., min_length=1)
    action: Optional[str] = Field(
        None,
        validation_alias=AliasChoices("response_action", "responseAction"),
    )
    responder_type: Optional[str] = None


# ==========================================================================
# Responses
# ==========================================================================

class TeamMemberResponse(BaseSchema):
    id: UUID
    agent_id: str
    agent_name: str
    role: TeamMemberRole
    status: TeamMemberStatus
    current_task: Optional[str]


class TeamResponse(BaseSchema):
    id: UUID
    project_id: UUID
    division: str
    name: str
    activation_phase: int
    status: TeamStatus
    members: list[TeamMemberResponse] = []


class DeliverableResponse(TimestampSchema):
    id: UUID
    phase_id: UUID
    name: str
    deliverable_type: str
    description: Optional[str]
    status: DeliverableStatus
    assigned_agent_id: Optional[str]
    content: Optional[dict[str, Any]]
    authority_approved: bool
    human_approved: bool
    approved_by: Optional[str]
    approved_at: Optional[datetime]
    feedback_history: list[dict[str, Any]] = []


class PhaseResponse(BaseSchema):
    id: UUID
    project_id: UUID
    phase_number: int
    name: str
    status: PhaseStatus
    team_id: Optional[UUID]
    started_at: Optional[datetime]
    completed_at: Optional[datetime]
    deliverables: list[DeliverableResponse] = []


class ProjectResponse(TimestampSchema):
    id: UUID
    user_id: str
    name: Optional[str]
    current_phase: int
    status: ProjectStatus


class InitializationResponse(BaseSchema):
    project: ProjectResponse
    phases: list[PhaseResponse]
    created: bool


class PhaseCompletionResponse(BaseSchema):
    completed_phase: PhaseResponse
    next_phase: Optional[PhaseResponse] = None
    project_completed: bool = False


class ProjectOverviewResponse(BaseSchema):
    project: ProjectResponse
    phases: list[PhaseResponse]
    active_teams: list[TeamResponse]


class ApprovalResponse(BaseSchema):
    deliverable: DeliverableResponse
    changed: bool
    fully_approved: bool
    pending_approvals: list[Approver] = []
    completion: Optional[PhaseCompletionResponse] = None


class TeamStatsResponse(BaseSchema):
    total_members: int
    working: int
    idle: int
    pending_deliverables: int
    in_progress: int
    completed: int


class TeamStatusResponse(BaseSchema):
    team: TeamResponse
    deliverables: list[DeliverableResponse]
    stats: TeamStatsResponse


class TaskAssignmentResponse(BaseSchema):
    team: TeamResponse
    member: TeamMemberResponse
    deliverable: Optional[DeliverableResponse] = None


class PhaseProgressResponse(BaseSchema):
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


class ProjectProgressResponse(BaseSchema):
    phases: list[PhaseProgressResponse]
    completed_phases: int
    total_phases: int
    progress: int
    current_phase: Optional[PhaseProgressResponse]


class EscalationResponse(TimestampSchema):
    id: UUID
    user_id: Optional[str]
    project_id: UUID
    created_by_agent_id: str
    created_by_agent_name: Optional[str]
    escalation_level: int
    current_handler_type: HandlerType
    current_handler_id: Optional[str]
    status: EscalationStatus
    issue_type: str
    issue_description: str
    context: dict[str, Any] = {}
    task_id: Optional[str]
    deliverable_id: Optional[str]
    team_id: Optional[str]
    attempted_solutions: list[dict[str, Any]] = []
    escalated_to_manager_at: Optional[datetime]
    escalated_to_ceo_at: Optional[datetime]
    escalated_to_human_at: Optional[datetime]
    resolution: Optional[str]
    resolution_type: Optional[str]
    resolved_by: Optional[str]
    resolved_at: Optional[datetime]


class TimeoutSweepResponse(BaseSchema):
    checked: int
    escalated: int


class HealthResponse(BaseSchema):
    """Health check response."""

    status: str = "healthy"
    version: str
    environment: str
    database: str = "connected"


class ErrorResponse(BaseModel):
    """Failure envelope."""

    success: bool = False
    error: str
