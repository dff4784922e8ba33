from typing import Literal

from pydantic import BaseModel, Field

from app.config import settings

DeploymentMode = Literal["existing_list", "new_list"]


class DeployOptions(BaseModel):
    stop_on_missing_fields: bool = False
    create_new_list_if_needed: bool = False
    delay_between_calls: int = Field(
        default_factory=lambda: settings.default_delay_between_calls_ms,
        ge=0,
    )
    enable_rollback: bool = False


class DeployRequest(BaseModel):
    template: dict
    api_token: str | None = None
    options: DeployOptions = Field(default_factory=DeployOptions)
    selected_template_id: str | None = None


class RemoteTask(BaseModel):
    id: str
    name: str
    parent: str | None = None
    assignees: list[str] = Field(default_factory=list)
    custom_fields: list[dict] = Field(default_factory=list)
    url: str | None = None


class RemoteChecklistItem(BaseModel):
    name: str
    orderindex: int
    resolved: bool = False


class RemoteChecklist(BaseModel):
    id: str
    name: str
    task_id: str
    items: list[RemoteChecklistItem] = Field(default_factory=list)


class DeploymentResult(BaseModel):
    success: bool = False
    mode: DeploymentMode = "existing_list"
    list_id: str = ""
    state: str = "validating_connection"
    phases: list[RemoteTask] = Field(default_factory=list)
    actions: list[RemoteTask] = Field(default_factory=list)
    checklists: list[RemoteChecklist] = Field(default_factory=list)
    errors: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)
    message: str = ""
    missing_fields: list[str] = Field(default_factory=list)
    field_mapping: dict[str, str] = Field(default_factory=dict)
    rolled_back_count: int = 0
    logs: list[str] = Field(default_factory=list)
