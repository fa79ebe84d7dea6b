"""
API 依赖项
"""
from typing import Optional

from fastapi import Request
from fastapi.responses import Response, StreamingResponse

from gemini_proxy.models.http import InboundRequest, ProxyResponse, new_request_id
from gemini_proxy.services.gemini_client import GeminiClient


async def get_inbound_request(request: Request) -> InboundRequest:
    """
    把 FastAPI 请求转换为 InboundRequest

    请求体按原始文本读取，JSON 解析和校验由业务层完成，
    这样格式错误也能返回统一的错误结构。
    """
    body = await request.body()
    return InboundRequest(
        method=request.method,
        path=request.url.path,
        headers=dict(request.headers),
        body=body.decode('utf-8', 'replace'),
        request_id=getattr(request.state, 'request_id', None) or new_request_id(),
    )


def get_gemini_client(request: Request) -> GeminiClient:
    """应用启动时创建的 GeminiClient"""
    return request.app.state.gemini_client


def get_default_api_key(request: Request) -> Optional[str]:
    """进程级默认 API Key（GEMINI_API_KEY）"""
    return request.app.state.settings.gemini_api_key or None


def to_response(proxy_response: ProxyResponse) -> Response:
    """ProxyResponse 转换为 FastAPI 响应"""
    if proxy_response.is_stream:
        return StreamingResponse(
            proxy_response.body,
            status_code=proxy_response.status_code,
            headers=proxy_response.headers,
        )
    return Response(
        content=proxy_response.body,
        status_code=proxy_response.status_code,
        headers=proxy_response.headers,
    )
