from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

import httpx

from app.models.deployments import RemoteTask
from app.models.templates import Action, Phase, Template
from app.services import clickup
from app.services.deploy_log import DeploymentLog
from app.services.field_mapper import lookup_field_id

DEFAULT_PRIORITY = 3


@dataclass
class TaskSpec:
    name: str
    description: str = ""
    parent: str | None = None
    priority: int = DEFAULT_PRIORITY
    tags: list[str] = field(default_factory=list)
    assignees: list[str] = field(default_factory=list)
    custom_fields: list[dict] = field(default_factory=list)
    start_date: str | int | None = None
    due_date: str | int | None = None


def to_epoch_millis(value: Any) -> int | None:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return int(value)

    text = str(value).strip()
    if not text:
        return None
    if text.isdigit():
        return int(text)

    try:
        parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
    except ValueError as exc:
        raise ValueError(f"Invalid date value {text!r}") from exc
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return int(parsed.timestamp() * 1000)


def merge_custom_fields(defaults: dict[str, Any], specific: dict[str, Any]) -> dict[str, Any]:
    return {**defaults, **specific}


def format_custom_fields(
    values: dict[str, Any],
    field_map: dict[str, str],
    log: DeploymentLog,
) -> list[dict]:
    formatted: list[dict] = []
    for name, value in values.items():
        field_id = lookup_field_id(field_map, name)
        if not field_id:
            log.info(f'    Skipping field "{name}" - no match found')
            continue

        if "date" in name.lower() and isinstance(value, str):
            value = to_epoch_millis(value)
        formatted.append({"id": field_id, "value": value})
    return formatted


def resolve_assignees(
    role: str | None,
    roles_map: dict[str, str],
    user_map: dict[str, str],
    log: DeploymentLog,
    warnings: list[str],
    item_name: str,
) -> list[str]:
    if not role:
        return []

    email = roles_map.get(role)
    if not email:
        message = f'No assignee for "{item_name}": role "{role}" is not in roles_map'
        log.warning(f"  {message}")
        warnings.append(message)
        return []

    user_id = user_map.get(email)
    log.info(f"  Resolving assignee: {role} => {email} => {user_id or 'NOT FOUND'}")
    if not user_id:
        message = f'No assignee for "{item_name}": user {email} not found in workspace'
        log.warning(f"  {message}")
        warnings.append(message)
        return []
    return [user_id]


def phase_task_spec(
    phase: Phase,
    template: Template,
    field_map: dict[str, str],
    user_map: dict[str, str],
    log: DeploymentLog,
    warnings: list[str],
) -> TaskSpec:
    defaults = template.defaults
    return TaskSpec(
        name=phase.name,
        description=phase.description,
        priority=phase.priority or defaults.priority or DEFAULT_PRIORITY,
        tags=[*defaults.tags, *phase.tags],
        assignees=resolve_assignees(
            phase.assignee_role, template.roles_map, user_map, log, warnings, phase.name
        ),
        custom_fields=format_custom_fields(
            merge_custom_fields(defaults.custom_fields, phase.custom_fields),
            field_map,
            log,
        ),
        start_date=phase.start_date,
        due_date=phase.due_date,
    )


def action_task_spec(
    action: Action,
    parent_id: str,
    template: Template,
    field_map: dict[str, str],
    user_map: dict[str, str],
    log: DeploymentLog,
    warnings: list[str],
) -> TaskSpec:
    return TaskSpec(
        name=action.name,
        description=action.description,
        parent=parent_id,
        priority=action.priority or DEFAULT_PRIORITY,
        tags=list(action.tags),
        assignees=resolve_assignees(
            action.assignee_role, template.roles_map, user_map, log, warnings, action.name
        ),
        custom_fields=format_custom_fields(action.custom_fields, field_map, log),
        start_date=action.start_date,
        due_date=action.due_date,
    )


def build_task_payload(spec: TaskSpec) -> dict:
    # status is left out so ClickUp applies the list's default status
    payload: dict = {
        "name": spec.name,
        "description": spec.description,
        "priority": spec.priority,
        "tags": spec.tags,
        "assignees": [int(user_id) if user_id.isdigit() else user_id for user_id in spec.assignees],
        "custom_fields": spec.custom_fields,
    }
    if spec.parent:
        payload["parent"] = spec.parent

    due_date = to_epoch_millis(spec.due_date)
    if due_date is not None:
        payload["due_date"] = due_date
        payload["due_date_time"] = False
    start_date = to_epoch_millis(spec.start_date)
    if start_date is not None:
        payload["start_date"] = start_date
        payload["start_date_time"] = False
    return payload


def _assignee_ids(raw_assignees: object) -> list[str]:
    if not isinstance(raw_assignees, list):
        return []
    ids: list[str] = []
    for assignee in raw_assignees:
        if isinstance(assignee, dict):
            if assignee.get("id") is not None:
                ids.append(str(assignee["id"]))
        elif assignee is not None:
            ids.append(str(assignee))
    return ids


async def create_task(
    client: httpx.AsyncClient,
    list_id: str,
    spec: TaskSpec,
    log: DeploymentLog,
) -> RemoteTask:
    payload = build_task_payload(spec)
    log.info(f"  Creating task with assignees: {', '.join(spec.assignees) or 'NONE'}")
    body = await clickup.create_task(client, list_id, payload)

    parent = body.get("parent") or spec.parent
    task = RemoteTask(
        id=str(body["id"]),
        name=str(body.get("name") or spec.name),
        parent=str(parent) if parent else None,
        assignees=_assignee_ids(body.get("assignees")) or list(spec.assignees),
        custom_fields=spec.custom_fields,
        url=body.get("url"),
    )
    if not task.assignees:
        log.warning(f"  Task {task.name} ({task.id}) created with NO ASSIGNEE")
    return task
