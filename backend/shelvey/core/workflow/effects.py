"""
Outbound Effects - delivery of fire-and-forget side effects.

State transitions write OutboundEffect rows in their own transaction; this
module delivers them afterwards to the external collaborators:

- trigger_work      → task-execution service (starts a team's work)
- send_notification → alerting service
- send_email        → email service

Delivery is best-effort. Failures are recorded on the effect row, which goes
back to PENDING for the next drain until EFFECT_MAX_ATTEMPTS. They never
touch the phase or escalation state that produced the effect.
"""

from dataclasses import dataclass
from typing import Optional

import httpx
import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from shelvey.core.clock import Clock, utcnow
from shelvey.core.config import Settings, settings as default_settings
from shelvey.core.exceptions import ExternalDispatchFailure
from shelvey.core.models import EffectKind, EffectStatus, OutboundEffect
from shelvey.core.repositories import EffectRepository

logger = structlog.get_logger()


@dataclass
class DrainResult:
    """Outcome of one outbox drain."""
    attempted: int = 0
    delivered: int = 0
    failed: int = 0

    def as_dict(self) -> dict:
        return {
            "attempted": self.attempted,
            "delivered": self.delivered,
            "failed": self.failed,
        }


class EffectDispatcher:
    """
    Delivers outbox rows over HTTP.

    When the target URL for an effect kind is not configured the dispatcher
    runs in logging-only mode: the effect is logged and marked delivered.
    """

    def __init__(
        self,
        db: AsyncSession,
        config: Optional[Settings] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        clock: Clock = utcnow,
    ):
        self.db = db
        self.config = config or default_settings
        self.transport = transport
        self.clock = clock
        self.effects = EffectRepository(db)

    def target_url(self, kind: EffectKind) -> Optional[str]:
        return {
            EffectKind.TRIGGER_WORK: self.config.WORK_EXECUTOR_URL,
            EffectKind.SEND_NOTIFICATION: self.config.NOTIFICATION_SERVICE_URL,
            EffectKind.SEND_EMAIL: self.config.EMAIL_SERVICE_URL,
        }.get(kind)

    async def drain(self, limit: int = 100) -> DrainResult:
        """
        Claim deliverable effects, attempt each once, then commit.

        The claim is committed before anything is sent, so a concurrent
        drain skips rows this one holds. A claim older than
        EFFECT_CLAIM_TIMEOUT_SECONDS is treated as abandoned.
        """
        result = DrainResult()
        now = self.clock()
        stale_before = now - self.config.effect_claim_timeout

        candidates = await self.effects.list_claimable(stale_before, limit=limit)
        if not candidates:
            return result

        claimed = await self.effects.claim(
            [effect.id for effect in candidates], now, stale_before
        )
        await self.db.commit()
        if not claimed:
            return result

        async with httpx.AsyncClient(
            timeout=self.config.HTTP_TIMEOUT_SECONDS,
            transport=self.transport,
        ) as client:
            for effect in claimed:
                result.attempted += 1
                if await self.deliver(effect, client):
                    result.delivered += 1
                elif effect.status == EffectStatus.FAILED:
                    result.failed += 1

        await self.db.commit()

        logger.info("outbox_drained", **result.as_dict())
        return result

    async def deliver(self, effect: OutboundEffect, client: httpx.AsyncClient) -> bool:
        """
        Deliver a single effect.

        Returns:
            True if delivered. Failures are recorded on the row, not raised.
        """
        effect.attempts += 1
        try:
            await self._send(effect, client)
        except ExternalDispatchFailure as e:
            effect.last_error = e.reason
            effect.status = (
                EffectStatus.FAILED
                if effect.attempts >= self.config.EFFECT_MAX_ATTEMPTS
                else EffectStatus.PENDING
            )
            logger.warning(
                "effect_dispatch_failed",
                effect_id=str(effect.id),
                kind=effect.kind.value,
                attempts=effect.attempts,
                error=e.reason,
            )
            return False

        effect.status = EffectStatus.DELIVERED
        effect.delivered_at = self.clock()
        effect.last_error = None
        return True

    async def _send(self, effect: OutboundEffect, client: httpx.AsyncClient) -> None:
        url = self.target_url(effect.kind)

        if not url:
            logger.info(
                "effect_logged",
                effect_id=str(effect.id),
                kind=effect.kind.value,
                payload=effect.payload,
                mode="logging_only",
            )
            return

        headers = {"Content-Type": "application/json"}
        if self.config.SERVICE_API_KEY:
            headers["Authorization"] = f"Bearer {self.config.SERVICE_API_KEY}"

        try:
            response = await client.post(url, json=effect.payload, headers=headers)
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            raise ExternalDispatchFailure(effect.kind.value, str(e) or type(e).__name__)

        if response.status_code >= 400:
            raise ExternalDispatchFailure(
                effect.kind.value, f"HTTP {response.status_code}"
            )

        logger.debug("effect_dispatched", effect_id=str(effect.id), kind=effect.kind.value)
