"""
HTTP 客户端工具函数

AsyncClient 由调用方（应用 lifespan 或 Serverless 单次调用）显式创建并传入，
不再使用进程级单例。
"""
from typing import Dict, Optional

import httpx

from gemini_proxy.config import Settings
from gemini_proxy.utils.logger import get_logger

logger = get_logger(__name__)

USER_AGENT = 'gemini-proxy/1.0.0'


def build_async_client(
    settings: Settings,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> httpx.AsyncClient:
    """
    创建异步 HTTP 客户端

    Args:
        settings: 应用配置，决定默认超时
        transport: 自定义 transport，测试时传入 httpx.MockTransport

    Returns:
        httpx.AsyncClient 实例，使用完毕需调用 aclose()
    """
    limits = httpx.Limits(
        max_keepalive_connections=20,  # 保持活跃的连接数
        max_connections=50,            # 最大连接数
        keepalive_expiry=30.0          # 连接保持时间（秒）
    )
    timeout = httpx.Timeout(
        settings.upstream_timeout,
        connect=settings.connect_timeout,
    )
    client = httpx.AsyncClient(
        limits=limits,
        timeout=timeout,
        transport=transport,
        headers={'user-agent': USER_AGENT},
    )
    logger.debug("已创建异步HTTP客户端")
    return client


def build_headers(
    api_key: Optional[str] = None,
    *,
    native: bool = False,
    accept: str = 'application/json',
) -> Dict[str, str]:
    """
    构建上游请求头

    Args:
        api_key: Gemini API Key
        native: 原生接口使用 x-goog-api-key，OpenAI 兼容接口使用 Bearer
        accept: Accept 头

    Returns:
        请求头字典
    """
    headers = {
        'accept': accept,
        'content-type': 'application/json',
    }
    if api_key:
        if native:
            headers['x-goog-api-key'] = api_key
        else:
            headers['authorization'] = f'Bearer {api_key}'
    return headers
