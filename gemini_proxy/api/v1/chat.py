"""
聊天相关 API 路由
"""
from typing import Optional

from fastapi import APIRouter, Depends, Request

from gemini_proxy.api.dependencies import (
    get_default_api_key,
    get_gemini_client,
    get_inbound_request,
    to_response,
)
from gemini_proxy.models.http import InboundRequest
from gemini_proxy.services.gemini_client import GeminiClient
from gemini_proxy.services.proxy_service import handle_chat_completions

router = APIRouter(tags=["chat"])


@router.post("/chat/completions")
async def chat_completions(
    request: Request,
    inbound: InboundRequest = Depends(get_inbound_request),
    client: GeminiClient = Depends(get_gemini_client),
    default_api_key: Optional[str] = Depends(get_default_api_key),
):
    """
    Chat completions endpoint compatible with OpenAI API format.
    stream=true 时返回 text/event-stream，客户端断开后停止读取上游。
    """
    response = await handle_chat_completions(
        inbound,
        client,
        default_api_key,
        is_disconnected=request.is_disconnected,
    )
    return to_response(response)
