"""
测试公共设施：模拟 Gemini 上游的 httpx.MockTransport
"""
import base64
import json
from typing import Any, Callable, Dict, List, Optional

import httpx
import pytest

from gemini_proxy.config import Settings
from gemini_proxy.services.gemini_client import build_gemini_client

OPENAI_BASE = 'https://gemini.test/v1beta/openai'
NATIVE_BASE = 'https://gemini.test/v1beta'

PNG_BYTES = b'\x89PNG\r\n\x1a\nfake-png'


def sse_body(chunks: List[Any], done: bool = True) -> bytes:
    lines = [': keep-alive comment', '']
    for chunk in chunks:
        data = chunk if isinstance(chunk, str) else json.dumps(chunk)
        lines.append(f'data: {data}')
        lines.append('')
    if done:
        lines.append('data: [DONE]')
        lines.append('')
    return ('\n'.join(lines) + '\n').encode('utf-8')


def text_chunk(text: str, index: int = 0) -> Dict[str, Any]:
    return {
        'id': f'chatcmpl-{index}',
        'object': 'chat.completion.chunk',
        'created': 1700000000,
        'model': 'gemini-2.0-flash',
        'choices': [{'index': 0, 'delta': {'content': text}, 'finish_reason': None}],
    }


def chat_completion(text: str = 'pong') -> Dict[str, Any]:
    return {
        'id': 'chatcmpl-upstream',
        'object': 'chat.completion',
        'created': 1700000000,
        'model': 'gemini-2.0-flash',
        'choices': [{
            'index': 0,
            'message': {'role': 'assistant', 'content': text},
            'finish_reason': 'stop',
        }],
        'usage': {'prompt_tokens': 3, 'completion_tokens': 1, 'total_tokens': 4},
    }


def native_result(text: str = '一只猫', finish_reason: str = 'STOP') -> Dict[str, Any]:
    return {
        'candidates': [{
            'content': {'role': 'model', 'parts': [{'text': text}]},
            'finishReason': finish_reason,
        }],
        'usageMetadata': {'promptTokenCount': 10, 'candidatesTokenCount': 2, 'totalTokenCount': 12},
    }


class FakeGemini:
    """
    模拟的 Gemini 上游

    按 URL 分发：OpenAI 兼容 chat/completions、原生 generateContent、
    Imagen predict，以及 img.test 上的远程图片。记录收到的所有请求。
    """

    def __init__(self):
        self.requests: List[httpx.Request] = []
        self.stream_chunks: List[Any] = [text_chunk('Hel', 0), text_chunk('lo', 1)]
        self.completion: Dict[str, Any] = chat_completion()
        self.native: Dict[str, Any] = native_result()
        self.predictions: Dict[str, Any] = {
            'predictions': [{'bytesBase64Encoded': 'aW1hZ2U=', 'mimeType': 'image/png'}]
        }
        # 设置后所有上游请求返回该错误
        self.error: Optional[httpx.Response] = None
        self.on_request: Optional[Callable[[httpx.Request], None]] = None

    def json_body(self, index: int = -1) -> Dict[str, Any]:
        return json.loads(self.requests[index].content)

    def upstream_requests(self) -> List[httpx.Request]:
        return [r for r in self.requests if r.url.host == 'gemini.test']

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.on_request is not None:
            self.on_request(request)

        if request.url.host == 'img.test':
            if request.url.path.endswith('/missing.png'):
                return httpx.Response(404, content=b'not found')
            return httpx.Response(200, content=PNG_BYTES, headers={'Content-Type': 'image/png'})

        if self.error is not None:
            return self.error

        path = request.url.path
        if path.endswith('/openai/chat/completions'):
            body = json.loads(request.content)
            if body.get('stream'):
                return httpx.Response(
                    200,
                    content=sse_body(self.stream_chunks),
                    headers={'Content-Type': 'text/event-stream'},
                )
            return httpx.Response(200, json=self.completion)
        if path.endswith(':generateContent'):
            return httpx.Response(200, json=self.native)
        if path.endswith(':predict'):
            return httpx.Response(200, json=self.predictions)
        return httpx.Response(404, json={'error': {'message': f'unknown path {path}'}})


def make_settings(**overrides) -> Settings:
    values = {
        'GEMINI_API_KEY': '',
        'GEMINI_OPENAI_BASE_URL': OPENAI_BASE,
        'GEMINI_NATIVE_BASE_URL': NATIVE_BASE,
        'LOG_LEVEL': 'DEBUG',
    }
    values.update(overrides)
    return Settings(_env_file=None, **values)


def data_url(payload: bytes = PNG_BYTES, mime_type: str = 'image/png') -> str:
    return f"data:{mime_type};base64,{base64.b64encode(payload).decode('ascii')}"


@pytest.fixture
def fake_gemini() -> FakeGemini:
    return FakeGemini()


@pytest.fixture
def transport(fake_gemini) -> httpx.MockTransport:
    return httpx.MockTransport(fake_gemini)


@pytest.fixture
def settings() -> Settings:
    return make_settings()


@pytest.fixture
async def http_client(transport):
    async with httpx.AsyncClient(transport=transport) as client:
        yield client


@pytest.fixture
def gemini_client(settings, http_client):
    return build_gemini_client(settings, http_client)
