from fastapi import APIRouter

from app.models.chat_flow import ChatFlowRequest, ChatFlowResponse
from app.services import chat_flow

router = APIRouter(prefix="/api/chat-flow", tags=["chat-flow"])


@router.post("", response_model=ChatFlowResponse)
async def chat_flow_message(body: ChatFlowRequest) -> ChatFlowResponse:
    return chat_flow.interpret_message(body)
