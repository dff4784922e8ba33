from pydantic import BaseModel, Field, model_validator


class DirectoryRequest(BaseModel):
    api_token: str | None = None


class SpaceListRequest(DirectoryRequest):
    team_id: str | None = None


class FolderListRequest(DirectoryRequest):
    space_id: str


class ListListRequest(DirectoryRequest):
    space_id: str | None = None
    folder_id: str | None = None

    @model_validator(mode="after")
    def require_parent(self) -> "ListListRequest":
        if not self.space_id and not self.folder_id:
            raise ValueError("space_id or folder_id is required")
        return self


class FolderCreateRequest(DirectoryRequest):
    space_id: str
    name: str = Field(min_length=1)


class DirectoryItem(BaseModel):
    id: str
    name: str
    team_id: str | None = None
    space_id: str | None = None
    folder_id: str | None = None


class DirectoryResponse(BaseModel):
    items: list[DirectoryItem]


class FolderCreateResponse(BaseModel):
    folder: DirectoryItem
