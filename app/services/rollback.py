from dataclasses import dataclass, field

import httpx

from app.services import clickup
from app.services.deploy_log import DeploymentLog
from app.services.rate_limit import RateLimitGovernor


@dataclass
class RollbackManager:
    client: httpx.AsyncClient
    governor: RateLimitGovernor
    log: DeploymentLog
    created_task_ids: list[str] = field(default_factory=list)
    rolled_back: bool = False

    def record(self, task_id: str) -> None:
        self.created_task_ids.append(task_id)

    async def rollback(self) -> int:
        """Delete every recorded task, newest first. Returns the number deleted."""
        if self.rolled_back:
            return 0
        self.rolled_back = True

        self.log.warning("Deployment failed - initiating rollback...")
        deleted_count = 0
        for task_id in reversed(self.created_task_ids):
            try:
                await clickup.delete_task(self.client, task_id)
            except Exception as exc:
                self.log.error(f"Failed to delete task {task_id}: {clickup.error_message(exc)}")
            else:
                deleted_count += 1
                self.log.info(f"Deleted task {task_id}")
            await self.governor.after_delete()

        self.log.info(f"Rollback complete: deleted {deleted_count} items")
        return deleted_count
