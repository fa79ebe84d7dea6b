"""
Gemini API 客户端服务

两种调用方式：
- 纯文本：Gemini 的 OpenAI 兼容接口 /chat/completions，支持流式
- 含图片：Gemini 原生接口 models/{model}:generateContent，一次性返回，
  流式请求时包装为只有一个分块的序列
"""
import time
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Union

import httpx

from gemini_proxy.config import Settings
from gemini_proxy.exceptions import (
    NoCredentialError,
    UpstreamConnectionError,
    UpstreamError,
    from_status,
    upstream_error_message,
)
from gemini_proxy.models.schemas import ChatCompletionRequest
from gemini_proxy.services.chunk_stream import ChunkStream, SSEChunkStream, StaticChunkStream
from gemini_proxy.services.message_normalizer import has_image_parts
from gemini_proxy.utils.file_utils import HttpxImageFetcher
from gemini_proxy.utils.http_client import build_headers
from gemini_proxy.utils.logger import get_logger

logger = get_logger(__name__)

# Gemini finishReason 到 OpenAI finish_reason 的映射
FINISH_REASON_MAP = {
    'STOP': 'stop',
    'MAX_TOKENS': 'length',
    'SAFETY': 'content_filter',
    'RECITATION': 'content_filter',
    'BLOCKLIST': 'content_filter',
    'PROHIBITED_CONTENT': 'content_filter',
}


def build_chat_payload(
    request: ChatCompletionRequest,
    messages: List[Dict[str, Any]],
    stream: bool,
) -> Dict[str, Any]:
    """构建 OpenAI 兼容接口的请求体"""
    payload: Dict[str, Any] = {
        'model': request.model,
        'messages': messages,
        'temperature': request.temperature,
        'max_tokens': request.max_tokens,
        'stream': stream,
    }
    # 添加工具函数支持
    if request.tools:
        payload['tools'] = request.tools
        logger.info(f"添加了 {len(request.tools)} 个工具函数")
        if request.tool_choice is not None:
            payload['tool_choice'] = request.tool_choice
    return payload


def build_native_payload(
    messages: List[Dict[str, Any]],
    temperature: float,
    max_tokens: int,
) -> Dict[str, Any]:
    """
    构建原生 generateContent 请求体

    assistant 映射为 model，其他角色映射为 user；system 消息放入 systemInstruction。
    """
    contents: List[Dict[str, Any]] = []
    system_parts: List[Dict[str, Any]] = []

    for message in messages:
        content = message.get('content')
        parts = content if isinstance(content, list) else [{'text': content or ''}]
        role = message.get('role')
        if role == 'system':
            system_parts.extend(parts)
            continue
        contents.append({
            'role': 'model' if role == 'assistant' else 'user',
            'parts': parts,
        })

    payload: Dict[str, Any] = {
        'contents': contents,
        'generationConfig': {
            'temperature': temperature,
            'maxOutputTokens': max_tokens,
        },
    }
    if system_parts:
        payload['systemInstruction'] = {'parts': system_parts}
    return payload


def native_to_openai(result: Dict[str, Any], model: str) -> Dict[str, Any]:
    """
    将原生接口响应转换为 OpenAI chat.completion 格式

    Raises:
        UpstreamError: 没有候选结果
    """
    candidates = result.get('candidates') or []
    if not candidates:
        reason = (result.get('promptFeedback') or {}).get('blockReason')
        message = 'API返回了空的候选结果'
        if reason:
            message += f" (blockReason={reason})"
        raise UpstreamError(message)

    candidate = candidates[0]
    parts = (candidate.get('content') or {}).get('parts') or []
    text = ''.join(part.get('text', '') for part in parts if isinstance(part, dict))

    usage_metadata = result.get('usageMetadata') or {}
    now = time.time()
    return {
        'id': f"chatcmpl-{int(now * 1000)}",
        'object': 'chat.completion',
        'created': int(now),
        'model': model,
        'choices': [{
            'index': 0,
            'message': {'role': 'assistant', 'content': text},
            'finish_reason': FINISH_REASON_MAP.get(candidate.get('finishReason'), 'stop'),
        }],
        'usage': {
            'prompt_tokens': usage_metadata.get('promptTokenCount', 0),
            'completion_tokens': usage_metadata.get('candidatesTokenCount', 0),
            'total_tokens': usage_metadata.get('totalTokenCount', 0),
        },
    }


def completion_to_chunk(completion: Dict[str, Any]) -> Dict[str, Any]:
    """把完整响应转换为携带全部文本的单个流式分块"""
    choice = completion['choices'][0]
    return {
        'id': completion['id'],
        'object': 'chat.completion.chunk',
        'created': completion['created'],
        'model': completion['model'],
        'choices': [{
            'index': 0,
            'delta': {'role': 'assistant', 'content': choice['message']['content']},
            'finish_reason': None,
        }],
    }


@dataclass(frozen=True)
class GeminiClient:
    """Gemini API 客户端，按请求显式传入处理流程"""

    http_client: httpx.AsyncClient
    openai_base_url: str
    native_base_url: str
    timeout: float = 30.0
    stream_timeout: float = 180.0
    connect_timeout: float = 5.0
    image_fetch_timeout: float = 30.0

    @property
    def image_fetcher(self) -> HttpxImageFetcher:
        return HttpxImageFetcher(self.http_client, timeout=self.image_fetch_timeout)

    def _timeout(self, read: Optional[float] = None) -> httpx.Timeout:
        return httpx.Timeout(read or self.timeout, connect=self.connect_timeout)

    @staticmethod
    def _require_key(api_key: Optional[str]) -> str:
        if not api_key:
            logger.error("未提供 GEMINI_API_KEY")
            raise NoCredentialError()
        return api_key

    async def _post_json(
        self,
        url: str,
        headers: Dict[str, str],
        payload: Dict[str, Any],
        default_code: Optional[str] = None,
    ) -> Any:
        """
        发送 JSON 请求并返回解析后的响应，失败时抛出对应的 ProxyError
        """
        start = time.monotonic()
        try:
            response = await self.http_client.post(
                url,
                headers=headers,
                json=payload,
                timeout=self._timeout(),
            )
        except httpx.TimeoutException as e:
            logger.error(f"请求超时 POST {url}: {e!r}")
            raise UpstreamConnectionError(f"Gemini API 请求超时: {e!r}") from e
        except httpx.RequestError as e:
            logger.error(f"请求失败 POST {url}: {e!r}")
            raise UpstreamConnectionError(f"无法连接到 Gemini API 服务器: {e!r}") from e

        elapsed_ms = (time.monotonic() - start) * 1000
        if response.is_error:
            message = upstream_error_message(response.text, response.reason_phrase)
            logger.error(f"Gemini API 调用失败: {response.status_code} {message} ({elapsed_ms:.0f}ms)")
            raise from_status(response.status_code, message, default_code=default_code)

        logger.info(f"Gemini API 调用成功，耗时: {elapsed_ms:.0f}ms")
        try:
            return response.json()
        except ValueError as e:
            raise UpstreamError('Gemini API 返回了无法解析的响应', code=default_code) from e

    async def chat_completion(
        self,
        api_key: Optional[str],
        request: ChatCompletionRequest,
        messages: List[Dict[str, Any]],
    ) -> Dict[str, Any]:
        """纯文本、非流式调用，返回上游响应原样"""
        api_key = self._require_key(api_key)
        url = f"{self.openai_base_url}/chat/completions"
        logger.info(f"调用 Gemini API，模型: {request.model}, 消息数量: {len(messages)}, 流模式: False")
        return await self._post_json(
            url,
            build_headers(api_key),
            build_chat_payload(request, messages, stream=False),
        )

    async def stream_chat_completion(
        self,
        api_key: Optional[str],
        request: ChatCompletionRequest,
        messages: List[Dict[str, Any]],
    ) -> SSEChunkStream:
        """
        纯文本流式调用

        先检查上游状态码再返回序列，错误状态在响应头发出前就能转换为 JSON 错误。
        """
        api_key = self._require_key(api_key)
        url = f"{self.openai_base_url}/chat/completions"
        logger.info(f"开始流式调用 Gemini API，模型: {request.model}, 消息数量: {len(messages)}")

        upstream_request = self.http_client.build_request(
            'POST',
            url,
            headers=build_headers(api_key, accept='text/event-stream'),
            json=build_chat_payload(request, messages, stream=True),
            timeout=self._timeout(self.stream_timeout),
        )
        try:
            response = await self.http_client.send(upstream_request, stream=True)
        except httpx.TimeoutException as e:
            logger.error(f"流式请求超时: {e!r}")
            raise UpstreamConnectionError(f"Gemini API 请求超时: {e!r}") from e
        except httpx.RequestError as e:
            logger.error(f"流式请求错误: {e!r}")
            raise UpstreamConnectionError(f"无法连接到 Gemini API 服务器: {e!r}") from e

        if response.is_error:
            try:
                await response.aread()
                message = upstream_error_message(response.text, response.reason_phrase)
            except httpx.HTTPError:
                message = response.reason_phrase
            finally:
                await response.aclose()
            logger.error(f"流式响应状态码错误: {response.status_code} {message}")
            raise from_status(response.status_code, message)

        logger.info("流式调用创建成功")
        return SSEChunkStream(response)

    async def generate_content(
        self,
        api_key: Optional[str],
        model: str,
        messages: List[Dict[str, Any]],
        temperature: float = 0.7,
        max_tokens: int = 8000,
    ) -> Dict[str, Any]:
        """
        原生多模态调用，结果转换为 OpenAI chat.completion 格式

        Args:
            api_key: Gemini API Key
            model: 模型名称
            messages: 已转换的消息（图片为 inline_data parts）
            temperature: 温度
            max_tokens: 最大输出 token 数

        Returns:
            OpenAI 格式的完整响应
        """
        api_key = self._require_key(api_key)
        url = f"{self.native_base_url}/models/{model}:generateContent"
        logger.info(f"使用原生Gemini API处理包含图片的请求，模型: {model}")
        result = await self._post_json(
            url,
            build_headers(api_key, native=True),
            build_native_payload(messages, temperature, max_tokens),
        )
        return native_to_openai(result, model)

    async def invoke_chat(
        self,
        api_key: Optional[str],
        request: ChatCompletionRequest,
        messages: List[Dict[str, Any]],
    ) -> Union[Dict[str, Any], ChunkStream]:
        """
        根据消息内容选择调用方式

        Returns:
            非流式返回响应字典，流式返回 ChunkStream
        """
        self._require_key(api_key)

        if has_image_parts(messages):
            logger.info("检测到图片内容，使用原生Gemini API")
            completion = await self.generate_content(
                api_key,
                request.model,
                messages,
                temperature=request.temperature,
                max_tokens=request.max_tokens,
            )
            if request.stream:
                return StaticChunkStream([completion_to_chunk(completion)])
            return completion

        logger.info("纯文本内容，使用OpenAI兼容API")
        if request.stream:
            return await self.stream_chat_completion(api_key, request, messages)
        return await self.chat_completion(api_key, request, messages)

    async def generate_images(
        self,
        api_key: Optional[str],
        model: str,
        prompt: str,
        aspect_ratio: str = '1:1',
        n: int = 1,
    ) -> List[Dict[str, str]]:
        """
        调用 Imagen 生成图片

        Returns:
            [{"b64": base64 数据, "mime_type": MIME 类型}, ...]
        """
        api_key = self._require_key(api_key)
        url = f"{self.native_base_url}/models/{model}:predict"
        payload = {
            'instances': [{'prompt': prompt}],
            'parameters': {'sampleCount': n, 'aspectRatio': aspect_ratio},
        }
        logger.info(f"调用图片生成API，模型: {model}, 提示词长度: {len(prompt)}")
        result = await self._post_json(
            url,
            build_headers(api_key, native=True),
            payload,
            default_code='image_generation_error',
        )

        images: List[Dict[str, str]] = []
        for item in result.get('predictions') or result.get('generatedImages') or []:
            if not isinstance(item, dict):
                continue
            data = item.get('bytesBase64Encoded') or (item.get('image') or {}).get('imageBytes')
            if not data:
                continue
            images.append({'b64': data, 'mime_type': item.get('mimeType') or 'image/jpeg'})
        return images


def build_gemini_client(settings: Settings, http_client: httpx.AsyncClient) -> GeminiClient:
    """根据配置创建 GeminiClient"""
    return GeminiClient(
        http_client=http_client,
        openai_base_url=settings.gemini_openai_base_url,
        native_base_url=settings.gemini_native_base_url,
        timeout=settings.upstream_timeout,
        stream_timeout=settings.stream_timeout,
        connect_timeout=settings.connect_timeout,
        image_fetch_timeout=settings.image_fetch_timeout,
    )
