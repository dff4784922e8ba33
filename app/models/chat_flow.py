from typing import Literal

from pydantic import BaseModel, Field

FlowStage = Literal[
    "initial",
    "select_space",
    "select_folder_option",
    "create_new_folder",
    "select_existing_folder",
    "select_existing_list",
]


class FlowOption(BaseModel):
    id: str
    name: str


class FlowOptions(BaseModel):
    spaces: list[FlowOption] = Field(default_factory=list)
    folders: list[FlowOption] = Field(default_factory=list)
    lists: list[FlowOption] = Field(default_factory=list)


class FlowAction(BaseModel):
    type: Literal["select_option", "input_text"]
    choice: str | None = None
    text: str | None = None


class ChatFlowRequest(BaseModel):
    message: str
    stage: FlowStage | None = None
    waiting_for_input: bool = False
    available_options: FlowOptions = Field(default_factory=FlowOptions)


class ChatFlowResponse(BaseModel):
    message: str
    flow_action: FlowAction | None = None
    selected: FlowOption | None = None
