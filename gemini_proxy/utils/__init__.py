"""
工具函数模块
"""
from .http_client import build_async_client, build_headers
from .file_utils import (
    HttpxImageFetcher,
    guess_mime_type_from_url,
    normalize_content_type,
    parse_data_url,
)
from .logger import get_logger, parse_log_level, configure_root_logger

__all__ = [
    'build_async_client',
    'build_headers',
    'HttpxImageFetcher',
    'guess_mime_type_from_url',
    'normalize_content_type',
    'parse_data_url',
    'get_logger',
    'parse_log_level',
    'configure_root_logger',
]
