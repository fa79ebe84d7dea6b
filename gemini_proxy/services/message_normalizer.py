"""
消息格式转换

把 OpenAI 风格的消息列表转换为上游可直接发送的结构：
- 纯文本消息原样保留
- 多段纯文本合并为一个字符串
- 含图片的消息转换为 Gemini 原生 parts（inline_data）
"""
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple, Union

from pydantic import BaseModel

from gemini_proxy.exceptions import ImageFetchError
from gemini_proxy.utils.file_utils import DEFAULT_IMAGE_MIME_TYPE, parse_data_url
from gemini_proxy.utils.logger import get_logger

logger = get_logger(__name__)

# 下载远程图片的函数签名：url -> (base64 数据, MIME 类型)
ImageFetcher = Callable[[str], Awaitable[Tuple[str, str]]]

IMAGE_PART_TYPES = ('image_url', 'image')


def _as_dict(message: Union[BaseModel, Dict[str, Any]]) -> Dict[str, Any]:
    if isinstance(message, BaseModel):
        msg = message.model_dump(exclude_none=True)
        # content 为 None 时也保留该字段
        msg.setdefault('content', None)
        return msg
    return dict(message)


def _is_image_part(part: Any) -> bool:
    return isinstance(part, dict) and part.get('type') in IMAGE_PART_TYPES


def _is_native_image(part: Any) -> bool:
    return isinstance(part, dict) and 'inline_data' in part


def _is_text_part(part: Any) -> bool:
    # OpenAI 格式带 type，已转换的原生 part 只有 text 字段
    return isinstance(part, dict) and part.get('type', 'text') == 'text' and 'text' in part


def _part_text(part: Dict[str, Any]) -> str:
    # text 为 null 时按空串处理
    text = part.get('text')
    return '' if text is None else str(text)


def _image_reference(part: Dict[str, Any]) -> str:
    """取出图片引用，兼容 {"image_url": {"url": ...}} 和 {"image_url": "..."} 两种写法"""
    image_url = part.get('image_url', part.get('url', ''))
    if isinstance(image_url, dict):
        image_url = image_url.get('url', '')
    return image_url if isinstance(image_url, str) else ''


async def resolve_image_reference(reference: str, fetch_image: ImageFetcher) -> Tuple[str, str]:
    """
    将图片引用解析为 (base64 数据, MIME 类型)

    - http(s):// 远程图片：调用 fetch_image 下载
    - data:<mime>;base64,<data>：直接拆分
    - 其他：按纯 base64 处理，MIME 默认为 image/jpeg

    Raises:
        ImageFetchError: 引用为空、data URL 无效或下载失败
    """
    reference = (reference or '').strip()
    if not reference:
        raise ImageFetchError('图片地址为空')

    if reference.startswith(('http://', 'https://')):
        logger.info(f"处理URL图片: {reference[:50]}...")
        return await fetch_image(reference)

    if reference.startswith('data:'):
        logger.info("处理base64图片数据")
        return parse_data_url(reference)

    logger.info("处理纯base64图片数据")
    return reference, DEFAULT_IMAGE_MIME_TYPE


async def _convert_parts(parts: List[Any], fetch_image: ImageFetcher) -> List[Dict[str, Any]]:
    converted: List[Dict[str, Any]] = []
    for part in parts:
        if not isinstance(part, dict):
            continue
        if _is_native_image(part):
            converted.append(dict(part))
        elif _is_text_part(part):
            converted.append({'text': _part_text(part)})
        elif _is_image_part(part):
            try:
                data, mime_type = await resolve_image_reference(_image_reference(part), fetch_image)
            except ImageFetchError as e:
                logger.error(f"处理图片失败: {e}")
                converted.append({'text': f"[图片处理失败: {e}]"})
                continue
            converted.append({'inline_data': {'mime_type': mime_type, 'data': data}})
            logger.info(f"成功处理图片，MIME类型: {mime_type}")
    return converted


async def normalize_messages(
    messages: List[Union[BaseModel, Dict[str, Any]]],
    fetch_image: ImageFetcher,
) -> List[Dict[str, Any]]:
    """
    转换消息列表

    Args:
        messages: OpenAI 格式的消息（字典或 ChatMessage）
        fetch_image: 远程图片下载函数

    Returns:
        新的消息字典列表，顺序与输入一致，不修改输入
    """
    normalized: List[Dict[str, Any]] = []
    for message in messages:
        msg = _as_dict(message)
        content = msg.get('content')

        if isinstance(content, list):
            if any(_is_image_part(part) or _is_native_image(part) for part in content):
                logger.info("检测到图片内容，正在处理图片数据")
                parts = await _convert_parts(content, fetch_image)
                if any('inline_data' in part for part in parts):
                    msg['content'] = parts
                else:
                    # 图片全部处理失败，只剩占位文本，退回纯文本格式
                    msg['content'] = '\n'.join(part['text'] for part in parts)
            else:
                # 多段文本按换行合并，段落边界信息会丢失
                msg['content'] = '\n'.join(
                    _part_text(part) for part in content if _is_text_part(part)
                )

        normalized.append(msg)
    return normalized


def has_image_parts(messages: List[Dict[str, Any]]) -> bool:
    """转换后的消息中是否包含 inline_data 图片"""
    for message in messages:
        content = message.get('content')
        if isinstance(content, list) and any(
            isinstance(part, dict) and 'inline_data' in part for part in content
        ):
            return True
    return False


def last_user_text(messages: List[Dict[str, Any]]) -> Optional[str]:
    """最后一条用户文本，仅用于日志预览"""
    for message in reversed(messages):
        content = message.get('content')
        if message.get('role') == 'user' and isinstance(content, str):
            return content
    return None
