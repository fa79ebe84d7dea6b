"""
Serverless 入口（阿里云函数计算等 HTTP 触发器）

入站事件可能是 bytes、JSON 字符串或字典，先统一转换为 InboundRequest
再路由。这类平台不支持边生成边输出，流式响应会收集为完整字符串后返回。
"""
import asyncio
import base64
import binascii
import json
import time
from typing import Any, Dict, Optional

import httpx

from gemini_proxy.config import Settings, settings as default_settings
from gemini_proxy.exceptions import InvalidRequestError, ProxyError
from gemini_proxy.models.http import InboundRequest, ProxyResponse, new_request_id
from gemini_proxy.routing import dispatch
from gemini_proxy.services.gemini_client import build_gemini_client
from gemini_proxy.services.proxy_service import error_response, internal_error_response
from gemini_proxy.services.stream_translator import collect_stream
from gemini_proxy.utils.http_client import build_async_client
from gemini_proxy.utils.logger import get_logger

logger = get_logger(__name__)


def _context_request_id(context: Any) -> Optional[str]:
    if context is None:
        return None
    if isinstance(context, dict):
        return context.get('request_id') or context.get('requestId')
    return getattr(context, 'request_id', None) or getattr(context, 'requestId', None)


def normalize_event(event: Any, request_id: Optional[str] = None) -> InboundRequest:
    """
    把平台事件转换为 InboundRequest

    兼容两种常见格式：
    - HTTP 触发器 2.0：rawPath + requestContext.http.method
    - API 网关：path + httpMethod

    Raises:
        InvalidRequestError: 事件无法解析，或 base64 请求体无效
    """
    if isinstance(event, (bytes, bytearray)):
        event = event.decode('utf-8', 'replace')
    if isinstance(event, str):
        try:
            event = json.loads(event) if event.strip() else {}
        except json.JSONDecodeError as e:
            raise InvalidRequestError(f'无法解析事件: {e.msg}', code='invalid_event') from e
    if not isinstance(event, dict):
        raise InvalidRequestError('无法解析事件: 事件必须是 JSON 对象', code='invalid_event')

    request_context = event.get('requestContext') or {}
    http = request_context.get('http') or {}

    method = http.get('method') or event.get('httpMethod') or 'GET'
    path = event.get('rawPath') or event.get('path') or http.get('path') or '/'
    headers = event.get('headers') or {}
    body = event.get('body') or ''
    is_base64_encoded = bool(event.get('isBase64Encoded'))

    if is_base64_encoded and body:
        try:
            body = base64.b64decode(body).decode('utf-8')
        except (binascii.Error, ValueError) as e:
            raise InvalidRequestError('请求体 base64 解码失败', code='invalid_body') from e
    elif not isinstance(body, str):
        # 部分网关会把 JSON 请求体直接解析成对象
        body = json.dumps(body, ensure_ascii=False)

    return InboundRequest(
        method=method,
        path=path,
        headers=headers,
        body=body,
        is_base64_encoded=is_base64_encoded,
        request_id=request_id or request_context.get('requestId') or new_request_id(),
    )


def _to_platform_response(response: ProxyResponse, body: str) -> Dict[str, Any]:
    return {
        'statusCode': response.status_code,
        'headers': response.headers,
        'body': body,
        'isBase64Encoded': False,
    }


async def handle_event(
    event: Any,
    context: Any = None,
    settings: Optional[Settings] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> Dict[str, Any]:
    """
    处理一次函数调用

    Args:
        event: 平台事件
        context: 平台上下文，用于获取 request id
        settings: 应用配置，默认使用全局配置
        transport: 自定义 httpx transport，测试时使用

    Returns:
        {"statusCode", "headers", "body", "isBase64Encoded"}
    """
    settings = settings or default_settings
    start = time.monotonic()
    request_id = _context_request_id(context) or new_request_id()
    logger.info(f"=== 开始处理请求 {request_id} ===")

    try:
        inbound = normalize_event(event, request_id)
    except InvalidRequestError as e:
        logger.error(f"[{request_id}] 事件解析失败: {e.message}")
        response = error_response(e, request_id)
        return _to_platform_response(response, response.body)

    try:
        async with build_async_client(settings, transport=transport) as http_client:
            client = build_gemini_client(settings, http_client)
            response = await dispatch(inbound, client, settings.gemini_api_key)

            if response.is_stream:
                try:
                    body = await collect_stream(response.body)
                except ProxyError as e:
                    response = error_response(e, request_id)
                    body = response.body
                except Exception as e:
                    # 尚未向客户端输出任何内容，可以返回完整的错误响应
                    logger.error(f"[{request_id}] 处理流式响应失败: {e}", exc_info=True)
                    response = internal_error_response(request_id, code='gemini_proxy_error')
                    body = response.body
            else:
                body = response.body
    except Exception as e:
        logger.error(f"[{request_id}] 处理请求失败: {e}", exc_info=True)
        response = internal_error_response(request_id)
        body = response.body

    elapsed_ms = (time.monotonic() - start) * 1000
    logger.info(f"[{request_id}] 请求处理完成，耗时: {elapsed_ms:.0f}ms, 状态码: {response.status_code}")
    return _to_platform_response(response, body)


def handler(event: Any, context: Any = None) -> Dict[str, Any]:
    """函数计算入口"""
    return asyncio.run(handle_event(event, context))
