from __future__ import annotations

from collections import Counter
from typing import Any

from fastapi import HTTPException
from pydantic import ValidationError as PydanticValidationError

from app.config import settings
from app.models.templates import Template
from app.services.task_materializer import to_epoch_millis

ValidationError = dict[str, str]

MAX_DESCRIPTION_LENGTH = 500
DATE_KEYS = ("start_date", "due_date")


def _add_error(errors: list[ValidationError], field: str, message: str) -> None:
    errors.append({"field": field, "message": message})


def _is_non_empty_string(value: Any) -> bool:
    return isinstance(value, str) and bool(value.strip())


def _validate_required_string(
    *,
    errors: list[ValidationError],
    payload: dict[str, Any],
    key: str,
    path: str,
    label: str | None = None,
) -> str:
    value = payload.get(key)
    if _is_non_empty_string(value):
        return str(value).strip()
    _add_error(errors, f"{path}.{key}", f"{label or key} must be a non-empty string")
    return ""


def _validate_description(
    *,
    errors: list[ValidationError],
    payload: dict[str, Any],
    path: str,
    owner: str,
) -> None:
    description = payload.get("description")
    if description is None:
        return
    if not isinstance(description, str):
        _add_error(errors, f"{path}.description", "description must be a string when provided")
        return
    if len(description) > MAX_DESCRIPTION_LENGTH:
        _add_error(
            errors,
            f"{path}.description",
            f"{owner} description exceeds {MAX_DESCRIPTION_LENGTH} characters",
        )


def _validate_dates(*, errors: list[ValidationError], payload: dict[str, Any], path: str) -> None:
    for key in DATE_KEYS:
        value = payload.get(key)
        if value is None:
            continue
        try:
            to_epoch_millis(value)
        except ValueError:
            _add_error(errors, f"{path}.{key}", f"{key} must be an ISO date or epoch milliseconds")


def _validate_custom_fields(*, errors: list[ValidationError], payload: dict[str, Any], path: str) -> None:
    custom_fields = payload.get("custom_fields")
    if custom_fields is None:
        return
    if not isinstance(custom_fields, dict):
        _add_error(errors, f"{path}.custom_fields", "custom_fields must be an object when provided")
        return

    # date-named string values are sent to ClickUp as epoch milliseconds
    for name, value in custom_fields.items():
        if "date" not in str(name).lower() or not isinstance(value, str):
            continue
        try:
            to_epoch_millis(value)
        except ValueError:
            _add_error(
                errors,
                f"{path}.custom_fields.{name}",
                f'Custom field "{name}" must be an ISO date or epoch milliseconds',
            )


def _validate_string_list(
    *,
    errors: list[ValidationError],
    payload: dict[str, Any],
    key: str,
    path: str,
) -> None:
    value = payload.get(key)
    if value is None:
        return
    if not isinstance(value, list) or not all(isinstance(item, str) for item in value):
        _add_error(errors, f"{path}.{key}", f"{key} must be a list of strings when provided")


def _validate_actions(
    *,
    errors: list[ValidationError],
    actions: Any,
    path: str,
    owner: str,
    depth: int,
    max_depth: int,
) -> None:
    if actions is None:
        return
    if not isinstance(actions, list):
        _add_error(errors, path, "actions must be a list when provided")
        return
    if actions and depth > max_depth:
        _add_error(errors, path, f"Actions under {owner} exceed the maximum nesting depth of {max_depth}")
        return

    for index, action in enumerate(actions):
        action_path = f"{path}[{index}]"
        if not isinstance(action, dict):
            _add_error(errors, action_path, "action entry must be an object")
            continue

        name = _validate_required_string(
            errors=errors,
            payload=action,
            key="name",
            path=action_path,
            label=f"Action {index} in {owner} name",
        )
        label = f"Action {name}" if name else f"Action {index} in {owner}"
        _validate_description(errors=errors, payload=action, path=action_path, owner=label)
        _validate_dates(errors=errors, payload=action, path=action_path)
        _validate_custom_fields(errors=errors, payload=action, path=action_path)
        _validate_string_list(errors=errors, payload=action, key="tags", path=action_path)
        _validate_string_list(errors=errors, payload=action, key="watchers", path=action_path)

        checklist = action.get("checklist")
        if checklist is not None:
            if not isinstance(checklist, dict):
                _add_error(errors, f"{action_path}.checklist", "checklist must be an object when provided")
            else:
                _validate_string_list(
                    errors=errors,
                    payload=checklist,
                    key="items",
                    path=f"{action_path}.checklist",
                )

        _validate_actions(
            errors=errors,
            actions=action.get("actions"),
            path=f"{action_path}.actions",
            owner=f"action {name or index}",
            depth=depth + 1,
            max_depth=max_depth,
        )


def validate_template(
    template: dict,
    *,
    max_depth: int | None = None,
    require_meta: bool = True,
) -> list[ValidationError]:
    """Structural checks for a template document.

    ``require_meta`` enforces the library metadata (slug and version); deploying
    an ad hoc template does not need it.
    """
    errors: list[ValidationError] = []
    if not isinstance(template, dict):
        return [{"field": "template", "message": "Template must be an object"}]
    if max_depth is None:
        max_depth = settings.max_action_depth

    meta = template.get("meta")
    if meta is None and not require_meta:
        pass
    elif not isinstance(meta, dict):
        _add_error(errors, "meta", "meta must be an object")
    elif require_meta:
        _validate_required_string(errors=errors, payload=meta, key="slug", path="meta")
        _validate_required_string(errors=errors, payload=meta, key="version", path="meta")

    defaults = template.get("defaults")
    if defaults is not None:
        if not isinstance(defaults, dict):
            _add_error(errors, "defaults", "defaults must be an object when provided")
        else:
            _validate_custom_fields(errors=errors, payload=defaults, path="defaults")

    destination = template.get("destination")
    if destination is not None and not isinstance(destination, dict):
        _add_error(errors, "destination", "destination must be an object when provided")

    roles_map = template.get("roles_map")
    if roles_map is not None and not isinstance(roles_map, dict):
        _add_error(errors, "roles_map", "roles_map must be an object when provided")

    phases = template.get("phases")
    if phases is None:
        phases = []
    if not isinstance(phases, list):
        _add_error(errors, "phases", "phases must be a list")
        return errors

    keys = [
        phase.get("key").strip()
        for phase in phases
        if isinstance(phase, dict) and _is_non_empty_string(phase.get("key"))
    ]
    for key, count in Counter(keys).items():
        if count > 1:
            _add_error(errors, "phases", f"Duplicate phase key: {key}")

    for index, phase in enumerate(phases):
        phase_path = f"phases[{index}]"
        if not isinstance(phase, dict):
            _add_error(errors, phase_path, "phase entry must be an object")
            continue

        name = _validate_required_string(
            errors=errors,
            payload=phase,
            key="name",
            path=phase_path,
            label=f"Phase {index} name",
        )
        _validate_required_string(
            errors=errors,
            payload=phase,
            key="key",
            path=phase_path,
            label=f"Phase {index} key",
        )
        owner = f"phase {name}" if name else f"phase {index}"
        _validate_description(
            errors=errors,
            payload=phase,
            path=phase_path,
            owner=f"Phase {name or index}",
        )
        _validate_dates(errors=errors, payload=phase, path=phase_path)
        _validate_custom_fields(errors=errors, payload=phase, path=phase_path)
        _validate_string_list(errors=errors, payload=phase, key="tags", path=phase_path)
        _validate_actions(
            errors=errors,
            actions=phase.get("actions"),
            path=f"{phase_path}.actions",
            owner=owner,
            depth=1,
            max_depth=max_depth,
        )

    return errors


def _pydantic_errors(error: PydanticValidationError) -> list[ValidationError]:
    return [
        {
            "field": ".".join(str(part) for part in item.get("loc", ())) or "template",
            "message": str(item.get("msg") or "Invalid value"),
        }
        for item in error.errors()
    ]


def parse_template(payload: dict, *, require_meta: bool = True) -> Template:
    errors = validate_template(payload, require_meta=require_meta)
    if not errors:
        try:
            return Template.model_validate(payload)
        except PydanticValidationError as exc:
            errors = _pydantic_errors(exc)

    raise HTTPException(
        status_code=400,
        detail={"code": "invalid_template", "errors": errors},
    )
