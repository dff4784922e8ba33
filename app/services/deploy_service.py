import logging
import time
from enum import Enum

import httpx
from fastapi import HTTPException

from app.config import settings
from app.models.deployments import DeployOptions, DeploymentResult
from app.models.templates import Action, Phase, Template
from app.services import clickup, field_mapper
from app.services.checklists import DEFAULT_CHECKLIST_TITLE, attach_watchers, create_checklist
from app.services.deploy_log import DeploymentLog
from app.services.directory_resolver import (
    ResolvedDestination,
    first_team_id,
    resolve_destination,
)
from app.services.rate_limit import RateLimitGovernor
from app.services.rollback import RollbackManager
from app.services.task_materializer import action_task_spec, create_task, phase_task_spec

logger = logging.getLogger(__name__)

RATE_LIMITED_MESSAGE = "Rate limit exceeded - too many requests"
FOLDER_REQUIRED_ECODE = "SUBCAT_114"
NEW_LIST_STATUSES = (
    ("to do", "#d3d3d3"),
    ("in progress", "#3397dd"),
    ("complete", "#6bc950"),
)
STATUS_SETTLE_DELAY_MS = 1000
STATUS_ADD_DELAY_MS = 200


class DeploymentState(str, Enum):
    VALIDATING_CONNECTION = "validating_connection"
    RESOLVING_DESTINATION = "resolving_destination"
    VALIDATING_FIELDS = "validating_fields"
    ENSURING_ACCESS = "ensuring_access"
    MAPPING_ROLES = "mapping_roles"
    DEPLOYING_PHASES = "deploying_phases"
    SUMMARIZING = "summarizing"
    FAILED = "failed"


class DeploymentAborted(Exception):
    """An item failed while rollback is enabled; the whole run stops."""

    def __init__(self, cause: Exception) -> None:
        super().__init__(str(cause))
        self.cause = cause


def describe_error(error: Exception) -> str:
    if clickup.is_rate_limited(error):
        return RATE_LIMITED_MESSAGE
    return clickup.error_message(error)


def template_emails(template: Template) -> list[str]:
    emails: dict[str, None] = dict.fromkeys(template.roles_map.values())
    for phase in template.phases:
        for action in field_mapper.iter_actions(phase.actions):
            emails.update(dict.fromkeys(action.watchers))
    return [email for email in emails if email]


def team_user_map(members: list[dict]) -> dict[str, str]:
    user_map: dict[str, str] = {}
    for member in members:
        user = member.get("user") if isinstance(member, dict) else None
        if not isinstance(user, dict):
            continue
        email = user.get("email")
        user_id = user.get("id")
        if email and user_id is not None:
            user_map[str(email)] = str(user_id)
    return user_map


class TemplateDeployment:
    def __init__(
        self,
        client: httpx.AsyncClient,
        template: Template,
        options: DeployOptions,
        governor: RateLimitGovernor,
        *,
        max_action_depth: int,
    ) -> None:
        self.client = client
        self.template = template
        self.options = options
        self.governor = governor
        self.max_action_depth = max_action_depth
        self.log = DeploymentLog(logger=logger)
        self.result = DeploymentResult()
        self.rollback_manager = RollbackManager(client=client, governor=governor, log=self.log)
        self.field_map: dict[str, str] = {}
        self.user_map: dict[str, str] = {}
        self._team_members: list[dict] | None = None

    def _enter(self, state: DeploymentState) -> None:
        self.result.state = state.value
        logger.debug("Deployment state -> %s", state.value)

    def _fail(self, message: str) -> DeploymentResult:
        self.result.success = False
        self.result.state = DeploymentState.FAILED.value
        self.result.message = message
        self.result.logs = self.log.lines()
        return self.result

    async def run(self) -> DeploymentResult:
        try:
            self._enter(DeploymentState.VALIDATING_CONNECTION)
            if not self.template.phases:
                self.result.errors.append("Template has no phases to deploy")
                return self._fail("Deployment failed - template has no phases")
            await self._validate_connection()

            self._enter(DeploymentState.RESOLVING_DESTINATION)
            list_id = await self._resolve_destination()
            if list_id is None:
                return self._fail(self.result.errors[-1])
            self.result.list_id = list_id

            self._enter(DeploymentState.VALIDATING_FIELDS)
            if not await self._validate_fields(list_id):
                return self._fail(
                    "STOPPED: Missing custom fields detected. Please create them in ClickUp first."
                )

            self._enter(DeploymentState.ENSURING_ACCESS)
            await self._ensure_access(list_id)

            self._enter(DeploymentState.MAPPING_ROLES)
            await self._map_roles()

            self._enter(DeploymentState.DEPLOYING_PHASES)
            await self._deploy_phases(list_id)
        except DeploymentAborted as exc:
            message = describe_error(exc.cause)
            self.result.rolled_back_count = await self.rollback_manager.rollback()
            return self._fail(
                f"Deployment aborted: {message}. "
                f"Rolled back {self.result.rolled_back_count} created tasks"
            )
        except HTTPException as exc:
            message = describe_error(exc)
            self.log.error(f"Deployment error: {message}")
            self.result.errors.append(message)
            if self.options.enable_rollback and self.rollback_manager.created_task_ids:
                self.result.rolled_back_count = await self.rollback_manager.rollback()
            return self._fail(message)

        self._enter(DeploymentState.SUMMARIZING)
        self._summarize()
        self.result.logs = self.log.lines()
        return self.result

    async def _validate_connection(self) -> None:
        self.log.info("Validating API connection...")
        try:
            user = await clickup.get_current_user(self.client)
        except HTTPException as exc:
            raise HTTPException(
                status_code=exc.status_code,
                detail={
                    "code": "connection_failed",
                    "message": f"Could not connect to ClickUp: {clickup.error_message(exc)}",
                    "status_code": clickup.error_status(exc),
                },
            ) from exc
        self.log.info(f"Connected as: {user.get('username') or user.get('email') or user.get('id')}")

    async def _resolve_destination(self) -> str | None:
        destination = self.template.destination
        resolved = await resolve_destination(self.client, destination)
        for kind, name, resolved_id in (
            ("space", destination.space_name, resolved.space_id),
            ("folder", destination.folder_name, resolved.folder_id),
            ("list", destination.list_name, resolved.list_id),
        ):
            if name and resolved_id:
                self.log.info(f'{kind.capitalize()} "{name}" resolved to ID: {resolved_id}')

        if resolved.list_id:
            return resolved.list_id

        if not (resolved.folder_id or resolved.space_id):
            self.result.errors.append("No list_id, folder_id, or space_id provided in template")
            return None

        if not self.options.create_new_list_if_needed:
            self.result.errors.append(
                "No list_id provided and create_new_list_if_needed is false"
            )
            return None

        self.log.info("Creating new list...")
        list_id = await self._create_new_list(resolved)
        self.result.mode = "new_list"
        self.result.warnings.append(
            "New list created. Custom fields must be added manually in ClickUp UI."
        )
        return list_id

    async def _create_new_list(self, resolved: ResolvedDestination) -> str:
        slug = self.template.meta.slug or "template"
        timestamp = int(time.time() * 1000)
        list_name = f"{slug}_{timestamp}"

        if resolved.folder_id:
            return await self._create_list_with_statuses(resolved.folder_id, "folder", list_name)

        try:
            return await self._create_list_with_statuses(resolved.space_id, "space", list_name)
        except HTTPException as exc:
            if clickup.error_code(exc) != FOLDER_REQUIRED_ECODE:
                raise

        self.log.warning("Space requires folder - creating one automatically...")
        folder = await clickup.create_folder(
            self.client, resolved.space_id, f"{slug}_folder_{timestamp}"
        )
        self.log.info(f"Created folder: {folder.get('name')} ({folder['id']})")
        await self.governor.pause(STATUS_SETTLE_DELAY_MS)
        return await self._create_list_with_statuses(str(folder["id"]), "folder", list_name)

    async def _create_list_with_statuses(
        self,
        parent_id: str,
        parent_type: str,
        list_name: str,
    ) -> str:
        payload = {
            "name": list_name,
            "content": self.template.meta.slug,
            "statuses": [
                {"status": status, "color": color, "orderindex": index}
                for index, (status, color) in enumerate(NEW_LIST_STATUSES)
            ],
        }
        try:
            created = await clickup.create_list(self.client, parent_id, parent_type, payload)
        except HTTPException as exc:
            if clickup.error_code(exc) == FOLDER_REQUIRED_ECODE or clickup.error_status(exc) != 400:
                raise
            self.log.warning("Failed with statuses, creating simple list...")
            created = await clickup.create_list(
                self.client,
                parent_id,
                parent_type,
                {"name": list_name, "content": self.template.meta.slug},
            )
            await self._add_statuses(str(created["id"]))

        self.log.info(f"Created new list: {list_name} ({created['id']})")
        return str(created["id"])

    async def _add_statuses(self, list_id: str) -> None:
        self.log.info(f"Adding statuses to list {list_id}...")
        await self.governor.pause(STATUS_SETTLE_DELAY_MS)
        for index, (status, color) in enumerate(NEW_LIST_STATUSES):
            if index > 0:
                await self.governor.pause(STATUS_ADD_DELAY_MS)
            try:
                await clickup.add_list_status(self.client, list_id, status, color)
            except HTTPException as exc:
                message = f'Could not add status "{status}" to new list: {clickup.error_message(exc)}'
                self.log.warning(message)
                self.result.warnings.append(message)
                continue
            self.log.info(f'  "{status}" status added')

    async def _validate_fields(self, list_id: str) -> bool:
        self.log.info("Checking custom fields...")
        validation = await field_mapper.validate_fields(self.client, list_id, self.template, self.log)
        self.field_map = validation.field_map
        self.result.field_mapping = dict(validation.field_map)

        if not validation.missing_fields:
            self.log.info("All required custom fields exist")
            return True

        missing = ", ".join(validation.missing_fields)
        self.result.missing_fields = list(validation.missing_fields)
        if self.options.stop_on_missing_fields:
            self.result.errors.extend(
                [
                    f"Missing fields: {missing}",
                    "To fix: Go to List Settings -> Custom Fields -> Add Field",
                    "Then run deployment again",
                ]
            )
            return False

        self.result.warnings.append(f"Continuing without fields: {missing}")
        return True

    async def _fetch_team_members(self) -> list[dict]:
        if self._team_members is None:
            team_id = await first_team_id(self.client)
            team = await clickup.get_team(self.client, team_id)
            members = team.get("members")
            if not isinstance(members, list):
                members = []
            self._team_members = [member for member in members if isinstance(member, dict)]
        return self._team_members

    async def _ensure_access(self, list_id: str) -> None:
        self.log.info("Ensuring user access...")
        emails = template_emails(self.template)
        self.log.info(f"Found {len(emails)} users in template")

        try:
            known = team_user_map(await self._fetch_team_members())
            missing_users = [email for email in emails if email not in known]
            if missing_users:
                self.log.warning(
                    f"These users are NOT in your workspace: {', '.join(missing_users)}. "
                    "They need to be invited to the workspace first."
                )

            # list access cannot be granted through the API, only inspected
            list_members = await clickup.list_list_members(self.client, list_id)
            self.log.info(f"List currently has {len(list_members)} members with access")
        except HTTPException as exc:
            message = f"Could not verify list access: {clickup.error_message(exc)}"
            self.log.warning(message)
            self.result.warnings.append(message)

    async def _map_roles(self) -> None:
        self.log.info("Mapping team roles...")
        try:
            self.user_map = team_user_map(await self._fetch_team_members())
        except HTTPException as exc:
            message = f"Could not fetch team members: {clickup.error_message(exc)}"
            self.log.warning(message)
            self.result.warnings.append(message)
            self.user_map = {}
            return

        self.log.info("Email to ID mapping created:")
        for email, user_id in self.user_map.items():
            self.log.info(f"  {email} => {user_id}")

    async def _deploy_phases(self, list_id: str) -> None:
        self.log.info("Starting deployment...")
        self.log.info(
            f"Using {self.governor.delay_between_calls_ms}ms delay between API calls "
            "to avoid rate limiting"
        )
        for phase in self.template.phases:
            await self._deploy_phase(list_id, phase)

    async def _item_failed(self, kind: str, name: str, error: Exception, indent: str) -> None:
        message = describe_error(error)
        self.result.errors.append(f'Failed to create {kind} "{name}": {message}')
        self.log.error(f"{indent}Failed to create {kind}: {message}")
        if self.options.enable_rollback:
            raise DeploymentAborted(error)
        await self.governor.after_failure(error, self.log)

    async def _deploy_phase(self, list_id: str, phase: Phase) -> None:
        self.log.info(f"Creating phase: {phase.name}")
        try:
            await self.governor.before_task(0)
            spec = phase_task_spec(
                phase,
                self.template,
                self.field_map,
                self.user_map,
                self.log,
                self.result.warnings,
            )
            task = await create_task(self.client, list_id, spec, self.log)
        except Exception as exc:
            await self._item_failed("phase", phase.name, exc, "")
            return

        self.rollback_manager.record(task.id)
        self.result.phases.append(task)
        self.log.info(f"Created phase: {task.name} ({task.id})")

        for action in phase.actions:
            await self._deploy_action(list_id, action, task.id, depth=1)

    async def _deploy_action(self, list_id: str, action: Action, parent_id: str, depth: int) -> None:
        indent = "  " * depth
        kind = "action" if depth == 1 else "nested subtask"

        if depth > self.max_action_depth:
            message = (
                f'Skipped {kind} "{action.name}": nesting deeper than '
                f"{self.max_action_depth} levels"
            )
            self.result.errors.append(message)
            self.log.error(f"{indent}{message}")
            return

        self.log.info(f"{indent}Creating {kind}: {action.name}")
        try:
            await self.governor.before_task(depth)
            spec = action_task_spec(
                action,
                parent_id,
                self.template,
                self.field_map,
                self.user_map,
                self.log,
                self.result.warnings,
            )
            task = await create_task(self.client, list_id, spec, self.log)
        except Exception as exc:
            await self._item_failed(kind, action.name, exc, indent)
            return

        self.rollback_manager.record(task.id)
        self.result.actions.append(task)
        self.log.info(f"{indent}Created {kind}: {task.name} ({task.id})")

        if action.checklist and action.checklist.items:
            title = action.checklist.title or DEFAULT_CHECKLIST_TITLE
            try:
                await self.governor.before_attachment()
                checklist = await create_checklist(
                    self.client, task.id, title, action.checklist.items, self.governor
                )
            except Exception as exc:
                await self._item_failed("checklist for", action.name, exc, indent)
            else:
                self.result.checklists.append(checklist)
                self.log.info(f"{indent}  Created checklist with {len(checklist.items)} items")

        if action.watchers:
            self.log.info(f"{indent}  Adding {len(action.watchers)} watchers...")
            await attach_watchers(
                self.client,
                task.id,
                action.watchers,
                self.user_map,
                self.governor,
                self.log,
                self.result.warnings,
            )

        if action.actions:
            self.log.info(f"{indent}  Creating {len(action.actions)} nested subtasks for \"{action.name}\"")
        for child in action.actions:
            await self._deploy_action(list_id, child, task.id, depth + 1)

    def _summarize(self) -> None:
        result = self.result
        result.success = len(result.phases) > 0
        if result.success:
            target = "NEW" if result.mode == "new_list" else "existing"
            result.message = (
                f"Successfully deployed {len(result.phases)} phases, {len(result.actions)} actions, "
                f"{len(result.checklists)} checklists to {target} list"
            )
        else:
            result.message = "Deployment failed - check errors"
        self.log.info(result.message)


async def deploy_template(
    template: Template,
    api_token: str,
    options: DeployOptions | None = None,
    *,
    client: httpx.AsyncClient | None = None,
    governor: RateLimitGovernor | None = None,
) -> DeploymentResult:
    options = options or DeployOptions()
    governor = governor or RateLimitGovernor(delay_between_calls_ms=options.delay_between_calls)

    if client is not None:
        deployment = TemplateDeployment(
            client, template, options, governor, max_action_depth=settings.max_action_depth
        )
        return await deployment.run()

    async with clickup.build_client(api_token) as owned_client:
        deployment = TemplateDeployment(
            owned_client, template, options, governor, max_action_depth=settings.max_action_depth
        )
        return await deployment.run()
