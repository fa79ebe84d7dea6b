"""
与具体 HTTP 框架无关的请求/响应结构

FastAPI 路由和 Serverless 入口都先把请求转换为 InboundRequest，
处理函数统一返回 ProxyResponse，再由各自的适配层输出。
"""
import json
import uuid
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Dict, Mapping, Optional, Union

CORS_HEADERS: Dict[str, str] = {
    'Access-Control-Allow-Origin': '*',
    'Access-Control-Allow-Methods': 'GET, POST, OPTIONS',
    'Access-Control-Allow-Headers': 'Content-Type, Authorization',
}

SSE_HEADERS: Dict[str, str] = {
    'Content-Type': 'text/event-stream',
    'Cache-Control': 'no-cache',
    'Connection': 'keep-alive',
}


def new_request_id() -> str:
    return uuid.uuid4().hex


@dataclass
class InboundRequest:
    """规范化后的入站请求"""
    method: str
    path: str
    headers: Dict[str, str] = field(default_factory=dict)
    body: str = ''
    is_base64_encoded: bool = False
    request_id: str = field(default_factory=new_request_id)

    def __post_init__(self):
        self.method = (self.method or 'GET').upper()
        self.path = self.path or '/'
        # header 名统一转小写，查找时大小写不敏感
        self.headers = {str(k).lower(): str(v) for k, v in (self.headers or {}).items()}

    def header(self, name: str, default: Optional[str] = None) -> Optional[str]:
        return self.headers.get(name.lower(), default)


@dataclass
class ProxyResponse:
    """统一的处理结果：状态码、响应头和 JSON 字符串或 SSE 字节流"""
    status_code: int
    headers: Dict[str, str]
    body: Union[str, AsyncIterator[bytes]] = ''

    @property
    def is_stream(self) -> bool:
        return not isinstance(self.body, str)

    @classmethod
    def json(
        cls,
        payload: Any,
        status_code: int = 200,
        headers: Optional[Mapping[str, str]] = None,
    ) -> 'ProxyResponse':
        merged = {'Content-Type': 'application/json', **CORS_HEADERS}
        if headers:
            merged.update(headers)
        return cls(
            status_code=status_code,
            headers=merged,
            body=json.dumps(payload, ensure_ascii=False),
        )

    @classmethod
    def stream(
        cls,
        frames: AsyncIterator[bytes],
        headers: Optional[Mapping[str, str]] = None,
    ) -> 'ProxyResponse':
        merged = {**SSE_HEADERS, **CORS_HEADERS}
        if headers:
            merged.update(headers)
        return cls(status_code=200, headers=merged, body=frames)

    @classmethod
    def error(
        cls,
        error_body: Dict[str, Any],
        status_code: int,
        request_id: Optional[str] = None,
    ) -> 'ProxyResponse':
        headers = {'X-Request-Id': request_id} if request_id else None
        return cls.json(error_body, status_code=status_code, headers=headers)
