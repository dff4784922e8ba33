import httpx
from fastapi import HTTPException

from app.models.deployments import RemoteChecklist, RemoteChecklistItem
from app.services import clickup
from app.services.deploy_log import DeploymentLog
from app.services.rate_limit import RateLimitGovernor

DEFAULT_CHECKLIST_TITLE = "Steps"


async def create_checklist(
    client: httpx.AsyncClient,
    task_id: str,
    title: str,
    items: list[str],
    governor: RateLimitGovernor,
) -> RemoteChecklist:
    checklist = await clickup.create_checklist(client, task_id, title)
    checklist_id = str(checklist["id"])

    created_items: list[RemoteChecklistItem] = []
    for index, item_name in enumerate(items):
        await governor.before_checklist_item(index)
        await clickup.create_checklist_item(
            client,
            checklist_id,
            item_name,
            orderindex=index,
            resolved=False,
        )
        created_items.append(RemoteChecklistItem(name=item_name, orderindex=index, resolved=False))

    return RemoteChecklist(
        id=checklist_id,
        name=str(checklist.get("name") or title),
        task_id=task_id,
        items=created_items,
    )


def resolve_watcher_ids(
    emails: list[str],
    user_map: dict[str, str],
    log: DeploymentLog,
    warnings: list[str],
) -> list[int | str]:
    watcher_ids: list[int | str] = []
    for email in emails:
        user_id = user_map.get(email)
        if not user_id:
            message = f"Watcher {email} not found in team"
            log.warning(f"    {message}")
            warnings.append(message)
            continue
        watcher_ids.append(int(user_id) if user_id.isdigit() else user_id)
    return watcher_ids


async def attach_watchers(
    client: httpx.AsyncClient,
    task_id: str,
    emails: list[str],
    user_map: dict[str, str],
    governor: RateLimitGovernor,
    log: DeploymentLog,
    warnings: list[str],
) -> int:
    """Add the resolvable watchers to a task, keeping the ones it already has."""
    watcher_ids = resolve_watcher_ids(emails, user_map, log, warnings)
    if not watcher_ids:
        return 0

    await governor.before_attachment()
    try:
        await clickup.update_task(client, task_id, {"watchers_add": watcher_ids})
    except HTTPException as exc:
        message = clickup.error_message(exc)
        log.warning(f"    Failed to add watchers: {message}")
        warnings.append(f"Could not add watchers: {message}")
        await governor.after_failure(exc, log)
        return 0

    log.info(f"    Added {len(watcher_ids)} watchers to task")
    return len(watcher_ids)
