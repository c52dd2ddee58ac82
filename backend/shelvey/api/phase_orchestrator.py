"""
Phase Orchestrator API Routes.

Action endpoint for the six-phase project lifecycle.
"""

from typing import Any

from fastapi import APIRouter, BackgroundTasks, Depends, Request, status
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from shelvey.api.deps import (
    ActionRegistry,
    EffectDrain,
    failure,
    get_clock,
    get_effect_drain,
)
from shelvey.core.clock import Clock
from shelvey.core.database import get_db
from shelvey.core.schemas import (
    ApprovalResponse,
    ApproveDeliverablePayload,
    AssignTaskPayload,
    DelegatePayload,
    DeliverableResponse,
    InitializationResponse,
    InitializeProjectPayload,
    PhaseCompletionResponse,
    PhasePayload,
    PhaseProgressResponse,
    PhaseResponse,
    ProjectOverviewResponse,
    ProjectPayload,
    ProjectProgressResponse,
    RejectDeliverablePayload,
    SubmitDeliverablePayload,
    TaskAssignmentResponse,
    TeamPayload,
    TeamResponse,
    TeamStatusResponse,
)
from shelvey.core.workflow import PhaseOrchestrator

router = APIRouter(prefix="/api/v1/phase-orchestrator", tags=["phase-orchestrator"])

actions = ActionRegistry("phase-orchestrator")


# ==========================================================================
# Actions
# ==========================================================================

@actions.register("initialize_project")
async def initialize_project(orchestrator: PhaseOrchestrator, body: dict[str, Any]):
    payload = InitializeProjectPayload.model_validate(body)
    result = await orchestrator.initialize_project(
        payload.project_id,
        user_id=payload.user_id,
        name=payload.name,
    )
    return InitializationResponse.model_validate(result)


@actions.register("activate_phase")
async def activate_phase(orchestrator: PhaseOrchestrator, body: dict[str, Any]):
    payload = PhasePayload.model_validate(body)
    phase = await orchestrator.activate_phase(payload.project_id, payload.phase_number)
    return PhaseResponse.model_validate(phase)


@actions.register("complete_phase")
async def complete_phase(orchestrator: PhaseOrchestrator, body: dict[str, Any]):
    payload = PhasePayload.model_validate(body)
    completion = await orchestrator.complete_phase(payload.project_id, payload.phase_number)
    return PhaseCompletionResponse.model_validate(completion)


@actions.register("get_status")
async def get_status(orchestrator: PhaseOrchestrator, body: dict[str, Any]):
    payload = ProjectPayload.model_validate(body)
    overview = await orchestrator.get_status(payload.project_id)
    return ProjectOverviewResponse.model_validate(overview)


@actions.register("delegate_to_manager")
async def delegate_to_manager(orchestrator: PhaseOrchestrator, body: dict[str, Any]):
    payload = DelegatePayload.model_validate(body)
    team = await orchestrator.delegate_to_manager(payload.team_id, payload.directive)
    return TeamResponse.model_validate(team)


@actions.register("get_current_phase")
async def get_current_phase(orchestrator: PhaseOrchestrator, body: dict[str, Any]):
    payload = ProjectPayload.model_validate(body)
    phase = await orchestrator.get_current_phase(payload.project_id)
    return PhaseResponse.model_validate(phase) if phase is not None else None


@actions.register("get_team_status")
async def get_team_status(orchestrator: PhaseOrchestrator, body: dict[str, Any]):
    payload = TeamPayload.model_validate(body)
    report = await orchestrator.get_team_status(payload.team_id)
    return TeamStatusResponse.model_validate(report)


@actions.register("assign_task")
async def assign_task(orchestrator: PhaseOrchestrator, body: dict[str, Any]):
    payload = AssignTaskPayload.model_validate(body)
    assignment = await orchestrator.assign_task(
        payload.team_id,
        payload.agent_id,
        deliverable_id=payload.deliverable_id,
        task=payload.task,
    )
    return TaskAssignmentResponse.model_validate(assignment)


@actions.register("approve_deliverable")
async def approve_deliverable(orchestrator: PhaseOrchestrator, body: dict[str, Any]):
    payload = ApproveDeliverablePayload.model_validate(body)
    result = await orchestrator.approve_deliverable(
        payload.deliverable_id,
        payload.approver,
        approved_by=payload.approved_by,
        feedback=payload.feedback,
    )
    return ApprovalResponse.model_validate(result)


@actions.register("reject_deliverable")
async def reject_deliverable(orchestrator: PhaseOrchestrator, body: dict[str, Any]):
    payload = RejectDeliverablePayload.model_validate(body)
    deliverable = await orchestrator.reject_deliverable(
        payload.deliverable_id,
        payload.feedback,
        source=payload.source,
    )
    return DeliverableResponse.model_validate(deliverable)


@actions.register("submit_deliverable")
async def submit_deliverable(orchestrator: PhaseOrchestrator, body: dict[str, Any]):
    payload = SubmitDeliverablePayload.model_validate(body)
    deliverable = await orchestrator.submit_deliverable(
        payload.deliverable_id,
        content=payload.content,
        agent_id=payload.agent_id,
    )
    return DeliverableResponse.model_validate(deliverable)


@actions.register("check_phase_completion")
async def check_phase_completion(orchestrator: PhaseOrchestrator, body: dict[str, Any]):
    payload = PhasePayload.model_validate(body)
    progress = await orchestrator.check_phase_completion(payload.project_id, payload.phase_number)
    return PhaseProgressResponse.model_validate(progress)


@actions.register("get_project_progress")
async def get_project_progress(orchestrator: PhaseOrchestrator, body: dict[str, Any]):
    payload = ProjectPayload.model_validate(body)
    progress = await orchestrator.get_project_progress(payload.project_id)
    return ProjectProgressResponse.model_validate(progress)


# ==========================================================================
# Endpoint
# ==========================================================================

@router.post("")
async def handle_action(
    request: Request,
    background_tasks: BackgroundTasks,
    db: AsyncSession = Depends(get_db),
    clock: Clock = Depends(get_clock),
    drain: EffectDrain = Depends(get_effect_drain),
) -> JSONResponse:
    """
    Dispatch a phase orchestrator action.

    Body: {"action": "<name>", ...payload}. Actions: initialize_project,
    activate_phase, complete_phase, get_status, get_current_phase,
    delegate_to_manager, get_team_status, assign_task, approve_deliverable,
    reject_deliverable, submit_deliverable, check_phase_completion,
    get_project_progress.
    """
    try:
        body = await request.json()
    except ValueError:
        return failure(status.HTTP_400_BAD_REQUEST, "Request body must be valid JSON")

    orchestrator = PhaseOrchestrator(db, clock=clock)
    return await actions.dispatch(body, orchestrator, db, background_tasks, drain)
