import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field

from app.config import settings
from app.services import clickup
from app.services.deploy_log import DeploymentLog

Sleep = Callable[[float], Awaitable[None]]

CHECKLIST_ITEM_BATCH_SIZE = 5
CHECKLIST_ITEM_BATCH_DELAY_MS = 200


@dataclass
class FixedCooldownPolicy:
    """Wait a fixed time after a 429, then let the caller move to the next item."""

    cooldown_seconds: float = field(default_factory=lambda: settings.rate_limit_cooldown_seconds)

    def cooldown_for(self, error: Exception) -> float:
        if clickup.is_rate_limited(error):
            return self.cooldown_seconds
        return 0.0


@dataclass
class RateLimitGovernor:
    delay_between_calls_ms: int = field(
        default_factory=lambda: settings.default_delay_between_calls_ms
    )
    policy: FixedCooldownPolicy = field(default_factory=FixedCooldownPolicy)
    attachment_delay_ms: int = field(default_factory=lambda: settings.checklist_delay_ms)
    rollback_delay_ms: int = field(default_factory=lambda: settings.rollback_delay_ms)
    sleep: Sleep = asyncio.sleep

    async def pause(self, milliseconds: int | float) -> None:
        if milliseconds > 0:
            await self.sleep(milliseconds / 1000)

    def task_delay_ms(self, depth: int) -> int:
        # depth 0 is a phase, 1 an action, 2 a sub-action
        return self.delay_between_calls_ms // (depth + 1)

    async def before_task(self, depth: int) -> None:
        await self.pause(self.task_delay_ms(depth))

    async def before_attachment(self) -> None:
        await self.pause(self.attachment_delay_ms)

    async def before_checklist_item(self, index: int) -> None:
        if index > 0 and index % CHECKLIST_ITEM_BATCH_SIZE == 0:
            await self.pause(CHECKLIST_ITEM_BATCH_DELAY_MS)

    async def after_delete(self) -> None:
        await self.pause(self.rollback_delay_ms)

    async def after_failure(self, error: Exception, log: DeploymentLog) -> bool:
        cooldown = self.policy.cooldown_for(error)
        if cooldown <= 0:
            return False
        log.info(f"Rate limited - waiting {cooldown:g} seconds before continuing...")
        await self.sleep(cooldown)
        return True
