import logging

from fastapi import APIRouter

from app.models.directory import (
    DirectoryItem,
    DirectoryResponse,
    FolderCreateRequest,
    FolderCreateResponse,
    FolderListRequest,
    ListListRequest,
    SpaceListRequest,
)
from app.services import clickup

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/directory", tags=["directory"])


def _item(raw: dict, **scope: str | None) -> DirectoryItem:
    return DirectoryItem(id=str(raw["id"]), name=str(raw.get("name") or ""), **scope)


@router.post("/spaces", response_model=DirectoryResponse)
async def list_spaces(body: SpaceListRequest) -> DirectoryResponse:
    api_token = clickup.resolve_api_token(body.api_token)
    async with clickup.build_client(api_token) as client:
        if body.team_id:
            team_ids = [body.team_id]
        else:
            team_ids = [str(team["id"]) for team in await clickup.list_teams(client) if team.get("id")]

        items: list[DirectoryItem] = []
        for team_id in team_ids:
            spaces = await clickup.list_spaces(client, team_id)
            items.extend(_item(space, team_id=team_id) for space in spaces if space.get("id"))

    logger.info("Listed %s spaces across %s teams", len(items), len(team_ids))
    return DirectoryResponse(items=items)


@router.post("/folders", response_model=DirectoryResponse)
async def list_folders(body: FolderListRequest) -> DirectoryResponse:
    api_token = clickup.resolve_api_token(body.api_token)
    async with clickup.build_client(api_token) as client:
        folders = await clickup.list_folders(client, body.space_id)

    return DirectoryResponse(
        items=[_item(folder, space_id=body.space_id) for folder in folders if folder.get("id")]
    )


@router.post("/lists", response_model=DirectoryResponse)
async def list_lists(body: ListListRequest) -> DirectoryResponse:
    api_token = clickup.resolve_api_token(body.api_token)
    async with clickup.build_client(api_token) as client:
        if body.folder_id:
            lists = await clickup.list_lists(client, body.folder_id, "folder")
        else:
            lists = await clickup.list_lists(client, body.space_id, "space")

    return DirectoryResponse(
        items=[
            _item(item, space_id=body.space_id, folder_id=body.folder_id)
            for item in lists
            if item.get("id")
        ]
    )


@router.post("/folders/create", response_model=FolderCreateResponse)
async def create_folder(body: FolderCreateRequest) -> FolderCreateResponse:
    api_token = clickup.resolve_api_token(body.api_token)
    async with clickup.build_client(api_token) as client:
        folder = await clickup.create_folder(client, body.space_id, body.name.strip())

    logger.info("Created folder %s in space %s", folder["id"], body.space_id)
    return FolderCreateResponse(folder=_item(folder, space_id=body.space_id))
