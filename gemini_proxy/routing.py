"""
请求路由

(method, path) -> Route 是纯函数；同时支持带 /v1 前缀和不带前缀的路径，
兼容不同的 OpenAI 客户端。OPTIONS 对任何路径都视为 CORS 预检。
"""
import enum
from typing import Dict, Optional, Tuple

from gemini_proxy.models.http import InboundRequest, ProxyResponse
from gemini_proxy.services import proxy_service
from gemini_proxy.services.gemini_client import GeminiClient
from gemini_proxy.services.stream_translator import DisconnectCheck
from gemini_proxy.utils.logger import get_logger

logger = get_logger(__name__)


class Route(enum.Enum):
    HEALTH = 'health'
    LIST_MODELS = 'list_models'
    CHAT_COMPLETIONS = 'chat_completions'
    IMAGE_GENERATION = 'image_generation'
    CORS_PREFLIGHT = 'cors_preflight'
    NOT_FOUND = 'not_found'


ROUTE_TABLE: Dict[Tuple[str, str], Route] = {
    ('GET', '/'): Route.HEALTH,
    ('GET', '/health'): Route.HEALTH,
    ('GET', '/v1/models'): Route.LIST_MODELS,
    ('GET', '/models'): Route.LIST_MODELS,
    ('POST', '/v1/chat/completions'): Route.CHAT_COMPLETIONS,
    ('POST', '/chat/completions'): Route.CHAT_COMPLETIONS,
    ('POST', '/v1/images/generations'): Route.IMAGE_GENERATION,
    ('POST', '/images/generations'): Route.IMAGE_GENERATION,
}


def normalize_path(path: Optional[str]) -> str:
    """去掉查询字符串和末尾的 /（根路径除外）"""
    path = (path or '/').split('?', 1)[0] or '/'
    if not path.startswith('/'):
        path = '/' + path
    if len(path) > 1:
        path = path.rstrip('/') or '/'
    return path


def route(method: Optional[str], path: Optional[str]) -> Route:
    """
    匹配路由

    Args:
        method: HTTP 方法（大小写不敏感）
        path: 请求路径

    Returns:
        Route 枚举，未匹配返回 Route.NOT_FOUND
    """
    method = (method or 'GET').upper()
    if method == 'OPTIONS':
        return Route.CORS_PREFLIGHT
    return ROUTE_TABLE.get((method, normalize_path(path)), Route.NOT_FOUND)


async def dispatch(
    inbound: InboundRequest,
    client: GeminiClient,
    default_api_key: Optional[str] = None,
    is_disconnected: Optional[DisconnectCheck] = None,
) -> ProxyResponse:
    """执行匹配到的处理函数"""
    matched = route(inbound.method, inbound.path)
    logger.info(f"[{inbound.request_id}] HTTP {inbound.method} {inbound.path} -> {matched.value}")

    if matched is Route.CORS_PREFLIGHT:
        return proxy_service.handle_preflight()
    if matched is Route.HEALTH:
        return proxy_service.handle_health()
    if matched is Route.LIST_MODELS:
        return proxy_service.handle_models()
    if matched is Route.CHAT_COMPLETIONS:
        return await proxy_service.handle_chat_completions(
            inbound, client, default_api_key, is_disconnected
        )
    if matched is Route.IMAGE_GENERATION:
        return await proxy_service.handle_image_generation(inbound, client, default_api_key)
    return proxy_service.handle_not_found(inbound.method, inbound.path, inbound.request_id)
