"""
模型注册表

支持的对话模型和图片生成模型均为静态常量，进程内只读。
列表顺序即 /v1/models 的返回顺序。
"""
from types import MappingProxyType
from typing import Mapping, Tuple

# 支持的 Gemini 对话模型
CHAT_MODELS: Tuple[str, ...] = (
    'gemini-2.5-flash',
    'gemini-2.5-pro',
    'gemini-2.5-flash-lite-preview-06-17',
    'gemini-2.0-flash',
    'gemini-2.0-flash-lite',
    'gemini-1.5-pro',
    'gemini-1.5-flash',
    'gemini-1.5-flash-8b',
)

# 支持的图片生成模型
IMAGE_MODELS: Tuple[str, ...] = (
    'imagen-3.0-generate-001',
    'imagen-3.0-fast-generate-001',
    'imagen-2.0-generate-001',
)

ALL_MODELS: Tuple[str, ...] = CHAT_MODELS + IMAGE_MODELS

DEFAULT_CHAT_MODEL = 'gemini-2.0-flash'
DEFAULT_IMAGE_MODEL = 'imagen-3.0-generate-001'

# OpenAI size 参数到 Imagen aspectRatio 的映射
SIZE_TO_ASPECT_RATIO: Mapping[str, str] = MappingProxyType({
    '256x256': '1:1',
    '512x512': '1:1',
    '1024x1024': '1:1',
    '1024x1792': '9:16',
    '512x896': '9:16',
    '1792x1024': '16:9',
    '896x512': '16:9',
})

# Imagen 单次请求最多生成的图片数
MAX_IMAGES_PER_REQUEST = 4


def is_chat_model(model: str) -> bool:
    return model in CHAT_MODELS


def is_image_model(model: str) -> bool:
    return model in IMAGE_MODELS
