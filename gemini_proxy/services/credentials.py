"""
API Key 提取
"""
import re
from typing import Mapping, Optional

from gemini_proxy.utils.logger import get_logger

logger = get_logger(__name__)

BEARER_PATTERN = re.compile(r'^Bearer\s+(.+)$', re.IGNORECASE)


def _lookup_header(headers: Mapping[str, str], name: str) -> Optional[str]:
    """大小写不敏感地读取 header"""
    if not headers:
        return None
    value = headers.get(name)
    if value is not None:
        return value
    lowered = name.lower()
    for key, val in headers.items():
        if str(key).lower() == lowered:
            return val
    return None


def extract_api_key(
    headers: Mapping[str, str],
    default: Optional[str] = None
) -> Optional[str]:
    """
    获取本次请求使用的 Gemini API Key

    优先级：
    1. Authorization: Bearer <token>（scheme 大小写不敏感）
    2. 进程级默认 Key（GEMINI_API_KEY 环境变量）

    Args:
        headers: 请求头
        default: 默认 Key

    Returns:
        API Key，都没有时返回 None，是否致命由调用方决定
    """
    authorization = _lookup_header(headers, 'Authorization')
    if authorization:
        match = BEARER_PATTERN.match(authorization.strip())
        if match and match.group(1).strip():
            logger.debug("从 Authorization header 获取到 API Key")
            return match.group(1).strip()

    if default:
        logger.debug("从环境变量获取到 API Key")
        return default

    return None


def mask_key(api_key: Optional[str]) -> str:
    """日志中只显示 Key 的前几位"""
    if not api_key:
        return '<none>'
    if len(api_key) <= 8:
        return '***'
    return f"{api_key[:6]}..."
