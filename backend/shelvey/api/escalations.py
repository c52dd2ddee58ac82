"""
Escalation Handler API Routes.

Action endpoint for agent escalations.
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
    CreateEscalationPayload,
    EscalateReasonPayload,
    EscalateToManagerPayload,
    EscalationResponse,
    GetEscalationsPayload,
    ProjectPayload,
    ResolveEscalationPayload,
    RespondToEscalationPayload,
    SolutionAttemptPayload,
    TimeoutSweepResponse,
)
from shelvey.core.workflow import EscalationEngine

router = APIRouter(prefix="/api/v1/escalation-handler", tags=["escalations"])

actions = ActionRegistry("escalation-handler")


# ==========================================================================
# Actions
# ==========================================================================

@actions.register("create_escalation")
async def create_escalation(engine: EscalationEngine, body: dict[str, Any]):
    payload = CreateEscalationPayload.model_validate(body)
    escalation = await engine.create_escalation(**payload.model_dump())
    return EscalationResponse.model_validate(escalation)


@actions.register("escalate_to_manager")
async def escalate_to_manager(engine: EscalationEngine, body: dict[str, Any]):
    payload = EscalateToManagerPayload.model_validate(body)
    escalation = await engine.escalate_to_manager(
        payload.escalation_id,
        manager_id=payload.manager_id,
        manager_name=payload.manager_name,
    )
    return EscalationResponse.model_validate(escalation)


@actions.register("escalate_to_ceo")
async def escalate_to_ceo(engine: EscalationEngine, body: dict[str, Any]):
    payload = EscalateReasonPayload.model_validate(body)
    escalation = await engine.escalate_to_ceo(payload.escalation_id, reason=payload.reason)
    return EscalationResponse.model_validate(escalation)


@actions.register("escalate_to_human")
async def escalate_to_human(engine: EscalationEngine, body: dict[str, Any]):
    payload = EscalateReasonPayload.model_validate(body)
    escalation = await engine.escalate_to_human(payload.escalation_id, reason=payload.reason)
    return EscalationResponse.model_validate(escalation)


@actions.register("resolve_escalation")
async def resolve_escalation(engine: EscalationEngine, body: dict[str, Any]):
    payload = ResolveEscalationPayload.model_validate(body)
    escalation = await engine.resolve_escalation(
        payload.escalation_id,
        resolution=payload.resolution,
        resolved_by=payload.resolved_by,
        resolution_type=payload.resolution_type,
    )
    return EscalationResponse.model_validate(escalation)


@actions.register("add_solution_attempt")
async def add_solution_attempt(engine: EscalationEngine, body: dict[str, Any]):
    payload = SolutionAttemptPayload.model_validate(body)
    escalation = await engine.add_solution_attempt(payload.escalation_id, payload.attempt)
    return EscalationResponse.model_validate(escalation)


@actions.register("get_escalations")
async def get_escalations(engine: EscalationEngine, body: dict[str, Any]):
    payload = GetEscalationsPayload.model_validate(body)
    escalations = await engine.get_escalations(
        project_id=payload.project_id,
        status=payload.status,
        level=payload.level,
        limit=payload.limit,
    )
    return [EscalationResponse.model_validate(e) for e in escalations]


@actions.register("check_timeouts")
async def check_timeouts(engine: EscalationEngine, body: dict[str, Any]):
    payload = ProjectPayload.model_validate(body)
    result = await engine.check_timeouts(payload.project_id)
    return TimeoutSweepResponse.model_validate(result)


@actions.register("respond_to_escalation")
async def respond_to_escalation(engine: EscalationEngine, body: dict[str, Any]):
    payload = RespondToEscalationPayload.model_validate(body)
    escalation = await engine.respond_to_escalation(
        payload.escalation_id,
        responder_id=payload.responder_id,
        response=payload.response,
        action=payload.action,
        responder_type=payload.responder_type,
    )
    return EscalationResponse.model_validate(escalation)


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
    Dispatch an escalation action.

    Body: {"action": "<name>", ...payload}. Actions: create_escalation,
    escalate_to_manager, escalate_to_ceo, escalate_to_human,
    resolve_escalation, add_solution_attempt, get_escalations,
    check_timeouts, respond_to_escalation.
    """
    try:
        body = await request.json()
    except ValueError:
        return failure(status.HTTP_400_BAD_REQUEST, "Request body must be valid JSON")

    engine = EscalationEngine(db, clock=clock)
    return await actions.dispatch(body, engine, db, background_tasks, drain)
