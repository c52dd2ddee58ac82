"""
ShelVey Orchestrator - API Dependencies
========================================

Shared dependencies for the action endpoints: the clock, the outbox drain
scheduled after each successful action, and the action dispatcher that wraps
results and errors in the response envelope.
"""

from typing import Any, Awaitable, Callable, Optional

import structlog
from fastapi import BackgroundTasks, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from shelvey.core.clock import Clock, utcnow
from shelvey.core.database import get_db_session
from shelvey.core.exceptions import OrchestrationError, UnknownAction
from shelvey.core.schemas import ErrorResponse
from shelvey.core.workflow.effects import EffectDispatcher

logger = structlog.get_logger()

EffectDrain = Callable[[], Awaitable[Any]]
ActionHandler = Callable[[Any, dict[str, Any]], Awaitable[Any]]


# ==========================================================================
# Dependencies
# ==========================================================================

def get_clock() -> Clock:
    """Wall clock. Overridden in tests to simulate elapsed time."""
    return utcnow


async def drain_outbox() -> None:
    """Deliver pending outbound effects in a fresh session."""
    async with get_db_session() as db:
        await EffectDispatcher(db).drain()


def get_effect_drain() -> EffectDrain:
    return drain_outbox


# ==========================================================================
# Action Dispatch
# ==========================================================================

class ActionRegistry:
    """Maps action names to handlers for one endpoint."""

    def __init__(self, endpoint: str):
        self.endpoint = endpoint
        self.handlers: dict[str, ActionHandler] = {}

    def register(self, name: str) -> Callable[[ActionHandler], ActionHandler]:
        def decorator(handler: ActionHandler) -> ActionHandler:
            self.handlers[name] = handler
            return handler
        return decorator

    @property
    def actions(self) -> list[str]:
        return list(self.handlers)

    async def dispatch(
        self,
        body: Any,
        service: Any,
        db: AsyncSession,
        background_tasks: BackgroundTasks,
        drain: Optional[EffectDrain] = None,
    ) -> JSONResponse:
        """
        Run the handler for ``body["action"]`` and build the envelope.

        Returns:
            200 {"success": true, "data": ...} on success, otherwise
            {"success": false, "error": ...} with the error's status code
        """
        if not isinstance(body, dict):
            return failure(status.HTTP_400_BAD_REQUEST, "Request body must be a JSON object")

        action = body.get("action")
        handler = self.handlers.get(action)
        if handler is None:
            return failure(status.HTTP_400_BAD_REQUEST, UnknownAction(action).message)

        logger.info("Action received", endpoint=self.endpoint, action=action)

        try:
            result = await handler(service, body)
        except ValidationError as e:
            return failure(status.HTTP_400_BAD_REQUEST, _validation_message(e))
        except OrchestrationError as e:
            logger.info(
                "Action rejected",
                endpoint=self.endpoint,
                action=action,
                error=e.message,
                status_code=e.status_code,
            )
            await db.rollback()
            return failure(e.status_code, e.message)

        if drain is not None:
            background_tasks.add_task(drain)

        return JSONResponse(content={"success": True, "data": _to_json(result)})


def failure(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=ErrorResponse(error=message).model_dump(),
    )


def _to_json(result: Any) -> Any:
    if isinstance(result, BaseModel):
        return result.model_dump(mode="json")
    if isinstance(result, list):
        return [_to_json(item) for item in result]
    return result


def _validation_message(error: ValidationError) -> str:
    first = error.errors()[0]
    location = ".".join(str(part) for part in first.get("loc", ()))
    if location:
        return f"Invalid payload: {location}: {first.get('msg')}"
    return f"Invalid payload: {first.get('msg')}"
