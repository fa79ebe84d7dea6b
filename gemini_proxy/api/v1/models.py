"""
模型相关 API 路由
"""
from fastapi import APIRouter

from gemini_proxy.api.dependencies import to_response
from gemini_proxy.services.proxy_service import handle_models

router = APIRouter(tags=["models"])


@router.get("/models")
async def get_models():
    """
    Get available models endpoint compatible with OpenAI API format.
    """
    return to_response(handle_models())
