import logging
import time
from datetime import datetime, timezone

import httpx
from fastapi import HTTPException

from app.models.deployments import DeploymentResult
from app.services import clickup

logger = logging.getLogger(__name__)

DEPLOY_COUNT_FIELD = "Deploy Count"
LAST_DEPLOYED_FIELD = "Last Deployed"


def _deployment_report(result: DeploymentResult, timestamp: str) -> str:
    status = "Success" if result.success else "Failed"
    return (
        f"{status} - Deployment Report\n"
        "Deployed from template\n"
        f"Timestamp: {timestamp}\n"
        f"Target List: {result.list_id}\n"
        "\n"
        "Results:\n"
        f"- Phases: {len(result.phases)}\n"
        f"- Actions: {len(result.actions)}\n"
        f"- Checklists: {len(result.checklists)}"
    )


def _field_by_name(task: dict, name: str) -> dict | None:
    fields = task.get("custom_fields")
    if not isinstance(fields, list):
        return None
    for field in fields:
        if isinstance(field, dict) and field.get("name") == name and field.get("id"):
            return field
    return None


def _as_count(value: object) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return 0


async def report_template_deployment(
    client: httpx.AsyncClient,
    template_task_id: str,
    result: DeploymentResult,
) -> bool:
    """Comment on the library task and bump its deploy counters.

    Reporting never changes the deployment outcome, so failures are only logged.
    """
    timestamp = datetime.now(timezone.utc).isoformat()
    try:
        await clickup.create_task_comment(
            client,
            template_task_id,
            _deployment_report(result, timestamp),
        )
        if not result.success:
            return True

        task = await clickup.get_task(client, template_task_id)
        deploy_count = _field_by_name(task, DEPLOY_COUNT_FIELD)
        if deploy_count is not None:
            new_count = _as_count(deploy_count.get("value")) + 1
            await clickup.set_custom_field_value(
                client, template_task_id, str(deploy_count["id"]), new_count
            )
            logger.info("Template %s deploy count is now %s", template_task_id, new_count)

        last_deployed = _field_by_name(task, LAST_DEPLOYED_FIELD)
        if last_deployed is not None:
            await clickup.set_custom_field_value(
                client, template_task_id, str(last_deployed["id"]), int(time.time() * 1000)
            )
    except HTTPException as exc:
        logger.error(
            "Failed to report deployment to template %s: %s",
            template_task_id,
            clickup.error_message(exc),
        )
        return False
    return True
