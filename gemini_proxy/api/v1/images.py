"""
图片生成 API 路由
"""
from typing import Optional

from fastapi import APIRouter, Depends

from gemini_proxy.api.dependencies import (
    get_default_api_key,
    get_gemini_client,
    get_inbound_request,
    to_response,
)
from gemini_proxy.models.http import InboundRequest
from gemini_proxy.services.gemini_client import GeminiClient
from gemini_proxy.services.proxy_service import handle_image_generation

router = APIRouter(tags=["images"])


@router.post("/images/generations")
async def image_generations(
    inbound: InboundRequest = Depends(get_inbound_request),
    client: GeminiClient = Depends(get_gemini_client),
    default_api_key: Optional[str] = Depends(get_default_api_key),
):
    """Image generation endpoint compatible with OpenAI API format."""
    return to_response(await handle_image_generation(inbound, client, default_api_key))
