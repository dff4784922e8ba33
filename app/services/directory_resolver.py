import logging
from dataclasses import dataclass

import httpx
from fastapi import HTTPException

from app.models.templates import Destination
from app.services import clickup

logger = logging.getLogger(__name__)


class DestinationNotFoundError(HTTPException):
    def __init__(self, kind: str, name: str, scope: str, available: list[str]) -> None:
        listed = ", ".join(available) if available else "none"
        super().__init__(
            status_code=404,
            detail={
                "code": "destination_not_found",
                "message": (
                    f'{kind.capitalize()} "{name}" not found in {scope}. '
                    f"Available {kind}s: {listed}"
                ),
                "kind": kind,
                "name": name,
                "available": available,
            },
        )


@dataclass
class ResolvedDestination:
    space_id: str | None = None
    folder_id: str | None = None
    list_id: str | None = None


def _normalize_name(name: object) -> str:
    return str(name or "").strip().lower()


def match_by_name(items: list[dict], name: str) -> dict | None:
    target = _normalize_name(name)
    for item in items:
        if _normalize_name(item.get("name")) == target:
            return item
    return None


def _resolve_from(items: list[dict], kind: str, name: str, scope: str) -> str:
    match = match_by_name(items, name)
    if match is None or not match.get("id"):
        available = [str(item.get("name")) for item in items if item.get("name")]
        raise DestinationNotFoundError(kind, name, scope, available)
    logger.info('Resolved %s "%s" to %s', kind, match.get("name"), match["id"])
    return str(match["id"])


async def first_team_id(client: httpx.AsyncClient) -> str:
    teams = await clickup.list_teams(client)
    if not teams or not teams[0].get("id"):
        raise HTTPException(
            status_code=404,
            detail={
                "code": "destination_not_found",
                "message": "No ClickUp workspace is available for this API token",
            },
        )
    return str(teams[0]["id"])


async def resolve_space_id(client: httpx.AsyncClient, team_id: str, space_name: str) -> str:
    spaces = await clickup.list_spaces(client, team_id)
    return _resolve_from(spaces, "space", space_name, "workspace")


async def resolve_folder_id(client: httpx.AsyncClient, space_id: str, folder_name: str) -> str:
    folders = await clickup.list_folders(client, space_id)
    return _resolve_from(folders, "folder", folder_name, f"space {space_id}")


async def resolve_list_id(
    client: httpx.AsyncClient,
    parent_id: str,
    parent_type: str,
    list_name: str,
) -> str:
    lists = await clickup.list_lists(client, parent_id, parent_type)
    return _resolve_from(lists, "list", list_name, f"{parent_type} {parent_id}")


async def resolve_destination(
    client: httpx.AsyncClient,
    destination: Destination,
) -> ResolvedDestination:
    """Turn the template's destination names into IDs without creating anything.

    IDs given explicitly always win over names at the same level.
    """
    resolved = ResolvedDestination(
        space_id=destination.space_id,
        folder_id=destination.folder_id,
        list_id=destination.list_id,
    )

    if destination.space_name and not resolved.space_id:
        team_id = await first_team_id(client)
        resolved.space_id = await resolve_space_id(client, team_id, destination.space_name)

    if destination.folder_name and not resolved.folder_id:
        if not resolved.space_id:
            raise HTTPException(
                status_code=400,
                detail={
                    "code": "destination_incomplete",
                    "message": "space_id or space_name is required to resolve folder_name",
                },
            )
        resolved.folder_id = await resolve_folder_id(
            client, resolved.space_id, destination.folder_name
        )

    if destination.list_name and not resolved.list_id:
        if resolved.folder_id:
            parent_id, parent_type = resolved.folder_id, "folder"
        elif resolved.space_id:
            parent_id, parent_type = resolved.space_id, "space"
        else:
            raise HTTPException(
                status_code=400,
                detail={
                    "code": "destination_incomplete",
                    "message": (
                        "space_id/space_name or folder_id/folder_name is required "
                        "to resolve list_name"
                    ),
                },
            )
        resolved.list_id = await resolve_list_id(
            client, parent_id, parent_type, destination.list_name
        )

    return resolved
