"""
代理错误类型

所有可预期的失败都表示为 ProxyError 子类，处理层据此生成统一的
{"error": {"message", "type", "code"}} 响应体，不再临时探测异常字段。
"""
import json
from typing import Any, Dict, Optional

from gemini_proxy.models.schemas import ErrorDetail, ErrorResponse


class ProxyError(Exception):
    """代理错误基类"""

    status_code: int = 500
    error_type: str = 'internal_error'
    code: str = 'server_error'

    def __init__(
        self,
        message: str,
        *,
        code: Optional[str] = None,
        status_code: Optional[int] = None,
    ):
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code
        if status_code is not None:
            self.status_code = status_code

    def to_dict(self, request_id: Optional[str] = None) -> Dict[str, Any]:
        """
        转换为 OpenAI 风格的错误响应体

        5xx 错误附带 request_id，便于与日志关联。
        """
        error = ErrorDetail(
            message=self.message,
            type=self.error_type,
            code=self.code,
            request_id=(request_id or None) if self.status_code >= 500 else None,
        )
        return ErrorResponse(error=error).model_dump(exclude_none=True)

    def __repr__(self) -> str:
        return f"{type(self).__name__}(status={self.status_code}, code={self.code!r}, message={self.message!r})"


class InvalidRequestError(ProxyError):
    """请求参数校验失败"""
    status_code = 400
    error_type = 'invalid_request_error'
    code = 'invalid_request'


class NoCredentialError(ProxyError):
    """请求头和环境变量中都没有可用的 API Key，不会访问上游"""
    status_code = 401
    error_type = 'authentication_error'
    code = 'missing_api_key'

    def __init__(self, message: str = '请在 Authorization header 中提供 Gemini API Key: Bearer YOUR_API_KEY'):
        super().__init__(message)


class UpstreamConnectionError(ProxyError):
    """无法连接上游（DNS 失败、连接拒绝、超时）"""
    code = 'upstream_unreachable'


class UpstreamAuthError(ProxyError):
    """上游拒绝了 API Key（401）"""
    status_code = 401
    error_type = 'authentication_error'
    code = 'invalid_api_key'


class UpstreamAccessDenied(ProxyError):
    """上游拒绝访问（403）"""
    status_code = 403
    error_type = 'permission_error'
    code = 'access_denied'


class UpstreamRateLimited(ProxyError):
    """上游限流（429）"""
    status_code = 429
    error_type = 'rate_limit_error'
    code = 'rate_limit_exceeded'


class UpstreamServerError(ProxyError):
    """上游 5xx"""
    code = 'upstream_server_error'


class UpstreamError(ProxyError):
    """其他非 2xx 上游响应，消息原样透传"""
    code = 'gemini_proxy_error'


class ImageFetchError(Exception):
    """图片引用无法解析或下载失败，由消息转换器降级为占位文本"""


def upstream_error_message(payload: Any, default: str = '') -> str:
    """
    从上游错误响应中提取错误信息

    Gemini 原生接口返回 {"error": {...}}，OpenAI 兼容接口有时返回
    [{"error": {...}}]，两种都需要兼容。

    Args:
        payload: 已解析的 JSON 或原始文本
        default: 提取失败时的默认信息

    Returns:
        错误信息字符串
    """
    if isinstance(payload, (str, bytes)):
        text = payload.decode('utf-8', 'replace') if isinstance(payload, bytes) else payload
        try:
            payload = json.loads(text)
        except (json.JSONDecodeError, ValueError):
            return text.strip()[:500] or default

    if isinstance(payload, list) and payload:
        payload = payload[0]

    if isinstance(payload, dict):
        error = payload.get('error', payload)
        if isinstance(error, dict):
            message = error.get('message')
            if message:
                return str(message)
        elif isinstance(error, str) and error:
            return error

    return default


def from_status(status_code: int, message: str, *, default_code: Optional[str] = None) -> ProxyError:
    """
    根据上游 HTTP 状态码构造对应的错误类型

    Args:
        status_code: 上游返回的状态码
        message: 上游错误信息
        default_code: 非特定状态码时使用的 code

    Returns:
        ProxyError 子类实例
    """
    if status_code == 401:
        return UpstreamAuthError(f"Gemini API Key 无效或已过期: {message}", status_code=status_code)
    if status_code == 403:
        return UpstreamAccessDenied(f"Gemini API 访问被拒绝，请检查 API Key 权限: {message}")
    if status_code == 429:
        return UpstreamRateLimited(f"Gemini API 请求频率超限，请稍后重试: {message}")
    if status_code >= 500:
        return UpstreamServerError(f"Gemini API 服务器错误 ({status_code})，请稍后重试: {message}")
    return UpstreamError(f"Gemini API 错误 ({status_code}): {message}", code=default_code)
