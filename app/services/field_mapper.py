from collections.abc import Iterable, Iterator
from dataclasses import dataclass, field

import httpx

from app.models.templates import Action, Template
from app.services import clickup
from app.services.deploy_log import DeploymentLog


@dataclass
class FieldValidation:
    field_map: dict[str, str] = field(default_factory=dict)
    missing_fields: list[str] = field(default_factory=list)
    existing_fields: list[str] = field(default_factory=list)


def normalize_field_name(name: object) -> str:
    return str(name).strip().lower()


def iter_actions(actions: Iterable[Action]) -> Iterator[Action]:
    for action in actions:
        yield action
        yield from iter_actions(action.actions)


def collect_field_names(template: Template) -> list[str]:
    names: dict[str, None] = dict.fromkeys(template.defaults.custom_fields)
    for phase in template.phases:
        names.update(dict.fromkeys(phase.custom_fields))
        for action in iter_actions(phase.actions):
            names.update(dict.fromkeys(action.custom_fields))
    return list(names)


def lookup_field_id(field_map: dict[str, str], name: str) -> str | None:
    if name in field_map:
        return field_map[name]
    normalized = normalize_field_name(name)
    for mapped_name, field_id in field_map.items():
        if normalize_field_name(mapped_name) == normalized:
            return field_id
    return None


def match_fields(live_fields: list[dict], names: Iterable[str]) -> FieldValidation:
    exact: dict[str, str] = {}
    folded: dict[str, str] = {}
    for live_field in live_fields:
        name = live_field.get("name")
        field_id = live_field.get("id")
        if not isinstance(name, str) or not field_id:
            continue
        exact.setdefault(name, str(field_id))
        folded.setdefault(normalize_field_name(name), str(field_id))

    validation = FieldValidation(existing_fields=list(exact))
    for name in names:
        # exact match first so visually distinct fields are never merged
        field_id = exact.get(name) or folded.get(normalize_field_name(name))
        if field_id:
            validation.field_map[name] = field_id
        else:
            validation.missing_fields.append(name)
    return validation


async def validate_fields(
    client: httpx.AsyncClient,
    list_id: str,
    template: Template,
    log: DeploymentLog,
) -> FieldValidation:
    live_fields = await clickup.list_custom_fields(client, list_id)
    for live_field in live_fields:
        log.info(
            f'  - field "{live_field.get("name")}" ({live_field.get("type")}) '
            f'[ID: {live_field.get("id")}]'
        )

    validation = match_fields(live_fields, collect_field_names(template))
    for name in validation.field_map:
        log.info(f'  Found field: "{name}"')
    for name in validation.missing_fields:
        log.warning(f'  Field NOT FOUND: "{name}"')
    return validation
