"""
图片引用处理工具函数
"""
import base64
from typing import Optional, Tuple

import httpx

from gemini_proxy.exceptions import ImageFetchError
from gemini_proxy.utils.logger import get_logger

logger = get_logger(__name__)

DEFAULT_IMAGE_MIME_TYPE = 'image/jpeg'


def guess_mime_type_from_url(url: str) -> str:
    """
    根据 URL 中的扩展名猜测图片 MIME 类型

    Args:
        url: 图片 URL

    Returns:
        .png 返回 image/png，.webp 返回 image/webp，其余返回 image/jpeg
    """
    lowered = url.lower()
    if '.png' in lowered:
        return 'image/png'
    if '.webp' in lowered:
        return 'image/webp'
    return DEFAULT_IMAGE_MIME_TYPE


def normalize_content_type(content_type: Optional[str]) -> Optional[str]:
    """去掉 Content-Type 中的参数部分，如 "image/png; charset=binary" -> "image/png" """
    if not content_type:
        return None
    value = content_type.split(';', 1)[0].strip().lower()
    return value or None


def parse_data_url(data_url: str) -> Tuple[str, str]:
    """
    解析 data:<mime>;base64,<data> 格式

    在第一个逗号处切分，base64 数据原样返回。

    Returns:
        (base64 数据, MIME 类型)

    Raises:
        ImageFetchError: 缺少逗号分隔
    """
    if ',' not in data_url:
        raise ImageFetchError('无效的 data URL：缺少数据部分')
    header, payload = data_url.split(',', 1)
    mime_type = header[len('data:'):].split(';', 1)[0].strip() if header.startswith('data:') else ''
    return payload, mime_type or DEFAULT_IMAGE_MIME_TYPE


class HttpxImageFetcher:
    """使用 httpx 异步下载远程图片并转为 base64"""

    def __init__(self, client: httpx.AsyncClient, timeout: float = 30.0):
        self.client = client
        self.timeout = timeout

    async def __call__(self, url: str) -> Tuple[str, str]:
        """
        下载图片

        Returns:
            (base64 数据, MIME 类型)

        Raises:
            ImageFetchError: 下载失败或状态码非 2xx
        """
        logger.info(f"正在下载图片: {url[:100]}")
        try:
            resp = await self.client.get(url, timeout=self.timeout, follow_redirects=True)
            resp.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise ImageFetchError(
                f"无法下载图片 {url}: HTTP {e.response.status_code}"
            ) from e
        except httpx.HTTPError as e:
            raise ImageFetchError(f"无法下载图片 {url}: {e}") from e

        content = resp.content
        mime_type = normalize_content_type(resp.headers.get('Content-Type')) or guess_mime_type_from_url(url)
        logger.info(f"图片下载成功，大小: {len(content)} bytes, MIME类型: {mime_type}")
        return base64.b64encode(content).decode('ascii'), mime_type
