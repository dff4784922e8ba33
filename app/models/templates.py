from typing import Any

from pydantic import BaseModel, Field


class TemplateMeta(BaseModel):
    slug: str = ""
    version: str = ""


class Destination(BaseModel):
    space_id: str | None = None
    space_name: str | None = None
    folder_id: str | None = None
    folder_name: str | None = None
    list_id: str | None = None
    list_name: str | None = None


class TemplateDefaults(BaseModel):
    status: str | None = None
    priority: int | None = Field(default=None, ge=1, le=4)
    tags: list[str] = Field(default_factory=list)
    custom_fields: dict[str, Any] = Field(default_factory=dict)


class ChecklistSpec(BaseModel):
    title: str | None = None
    items: list[str] = Field(default_factory=list)


class Action(BaseModel):
    name: str = ""
    description: str = ""
    assignee_role: str | None = None
    start_date: str | int | None = None
    due_date: str | int | None = None
    status: str | None = None
    priority: int | None = Field(default=None, ge=1, le=4)
    tags: list[str] = Field(default_factory=list)
    custom_fields: dict[str, Any] = Field(default_factory=dict)
    watchers: list[str] = Field(default_factory=list)
    checklist: ChecklistSpec | None = None
    actions: list["Action"] = Field(default_factory=list)


class Phase(BaseModel):
    key: str = ""
    name: str = ""
    description: str = ""
    assignee_role: str | None = None
    start_date: str | int | None = None
    due_date: str | int | None = None
    status: str | None = None
    priority: int | None = Field(default=None, ge=1, le=4)
    tags: list[str] = Field(default_factory=list)
    custom_fields: dict[str, Any] = Field(default_factory=dict)
    actions: list[Action] = Field(default_factory=list)


class Template(BaseModel):
    meta: TemplateMeta = Field(default_factory=TemplateMeta)
    destination: Destination = Field(default_factory=Destination)
    defaults: TemplateDefaults = Field(default_factory=TemplateDefaults)
    roles_map: dict[str, str] = Field(default_factory=dict)
    phases: list[Phase] = Field(default_factory=list)


Action.model_rebuild()


class TemplateValidateRequest(BaseModel):
    template: dict


class TemplateValidateResponse(BaseModel):
    valid: bool
    errors: list[dict[str, str]]
