"""
代理业务逻辑

每个处理函数接收规范化后的 InboundRequest，返回 ProxyResponse，
不依赖具体 HTTP 框架。校验错误和上游错误都在这里转换为 JSON 错误响应，
不会抛出到请求边界之外。
"""
import json
import time
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from pydantic import ValidationError

from gemini_proxy import __version__
from gemini_proxy.exceptions import InvalidRequestError, NoCredentialError, ProxyError
from gemini_proxy.models.http import CORS_HEADERS, InboundRequest, ProxyResponse
from gemini_proxy.models.registry import (
    ALL_MODELS,
    CHAT_MODELS,
    DEFAULT_CHAT_MODEL,
    DEFAULT_IMAGE_MODEL,
    IMAGE_MODELS,
    MAX_IMAGES_PER_REQUEST,
    SIZE_TO_ASPECT_RATIO,
    is_chat_model,
    is_image_model,
)
from gemini_proxy.models.schemas import (
    ChatCompletionRequest,
    ErrorDetail,
    ErrorResponse,
    HealthResponse,
    ImageData,
    ImageGenerationRequest,
    ImageGenerationResponse,
    ModelInfo,
    ModelsResponse,
)
from gemini_proxy.services.chunk_stream import ChunkStream
from gemini_proxy.services.credentials import extract_api_key, mask_key
from gemini_proxy.services.gemini_client import GeminiClient
from gemini_proxy.services.message_normalizer import last_user_text, normalize_messages
from gemini_proxy.services.stream_translator import DisconnectCheck, translate_stream
from gemini_proxy.utils.logger import get_logger

logger = get_logger(__name__)

SERVICE_NAME = 'gemini-proxy'


# ============================================================================
# 请求解析与校验
# ============================================================================

def _parse_json_body(body: str) -> Dict[str, Any]:
    if not body or not body.strip():
        raise InvalidRequestError('请求体为空', code='empty_body')
    try:
        data = json.loads(body)
    except json.JSONDecodeError as e:
        raise InvalidRequestError(f'请求体不是有效的 JSON: {e.msg}', code='invalid_json') from e
    if not isinstance(data, dict):
        raise InvalidRequestError('请求体必须是 JSON 对象', code='invalid_json')
    return data


def _describe_validation_error(error: ValidationError) -> str:
    first = error.errors()[0]
    location = '.'.join(str(part) for part in first.get('loc', ()))
    return f"参数 {location} 无效: {first.get('msg')}"


def parse_chat_request(body: str) -> ChatCompletionRequest:
    """
    解析并校验聊天请求

    Raises:
        InvalidRequestError: 请求体无效、模型不支持或 messages 为空
    """
    data = _parse_json_body(body)

    model = data.get('model', DEFAULT_CHAT_MODEL)
    if not isinstance(model, str) or not is_chat_model(model):
        logger.error(f"不支持的模型: {model}, 支持的模型: {', '.join(CHAT_MODELS)}")
        raise InvalidRequestError(
            f"不支持的模型: {model}。支持的模型: {', '.join(CHAT_MODELS)}",
            code='model_not_supported',
        )

    messages = data.get('messages')
    if not isinstance(messages, list) or not messages:
        raise InvalidRequestError('messages 参数必须是非空数组', code='invalid_messages')

    try:
        return ChatCompletionRequest.model_validate(data)
    except ValidationError as e:
        raise InvalidRequestError(_describe_validation_error(e)) from e


def parse_image_request(body: str) -> ImageGenerationRequest:
    """
    解析并校验图片生成请求

    Raises:
        InvalidRequestError: 模型不支持、prompt 为空、size 或 n 无效
    """
    data = _parse_json_body(body)

    model = data.get('model', DEFAULT_IMAGE_MODEL)
    if not isinstance(model, str) or not is_image_model(model):
        raise InvalidRequestError(
            f"不支持的图片生成模型: {model}。支持的模型: {', '.join(IMAGE_MODELS)}",
            code='model_not_supported',
        )

    prompt = data.get('prompt')
    if not isinstance(prompt, str) or not prompt.strip():
        raise InvalidRequestError('prompt 参数必须是非空字符串', code='invalid_prompt')

    try:
        request = ImageGenerationRequest.model_validate(data)
    except ValidationError as e:
        raise InvalidRequestError(_describe_validation_error(e)) from e

    if request.size not in SIZE_TO_ASPECT_RATIO:
        raise InvalidRequestError(
            f"不支持的图片尺寸: {request.size}。支持的尺寸: {', '.join(SIZE_TO_ASPECT_RATIO)}",
            code='invalid_size',
        )
    if not 1 <= request.n <= MAX_IMAGES_PER_REQUEST:
        raise InvalidRequestError(f'n 参数必须在 1 到 {MAX_IMAGES_PER_REQUEST} 之间', code='invalid_n')
    return request


# ============================================================================
# 响应构造
# ============================================================================

def error_response(error: ProxyError, request_id: str) -> ProxyResponse:
    return ProxyResponse.error(error.to_dict(request_id), error.status_code, request_id)


def internal_error_response(request_id: str, code: str = 'server_error') -> ProxyResponse:
    """未预期的异常：只返回通用信息，不暴露堆栈"""
    return error_response(ProxyError('内部服务器错误', code=code), request_id)


def handle_health() -> ProxyResponse:
    """健康检查"""
    payload = HealthResponse(
        timestamp=datetime.now(timezone.utc).isoformat().replace('+00:00', 'Z'),
        message='Gemini 代理运行正常',
        service=SERVICE_NAME,
        version=__version__,
        models=len(ALL_MODELS),
        usage='请在 Authorization header 中提供 Gemini API Key: Bearer YOUR_API_KEY',
        features={
            'streaming': True,
            'cors': True,
            'flexible_auth': True,
            'function_calling': True,
            'image_generation': True,
            'vision': True,
        },
    )
    return ProxyResponse.json(payload.model_dump())


def handle_models() -> ProxyResponse:
    """模型列表，顺序与注册表一致"""
    created = int(time.time())
    payload = ModelsResponse(data=[
        ModelInfo(id=model, created=created, root=model)
        for model in ALL_MODELS
    ])
    logger.info(f"模型列表请求处理成功，返回 {len(ALL_MODELS)} 个模型")
    return ProxyResponse.json(payload.model_dump())


def handle_preflight() -> ProxyResponse:
    """CORS 预检"""
    return ProxyResponse(status_code=200, headers=dict(CORS_HEADERS), body='')


def handle_not_found(method: str, path: str, request_id: str = '') -> ProxyResponse:
    logger.warning(f"路由未匹配: {method} {path}")
    error = ErrorDetail(message=f'路径 {path} 不存在', type='not_found', code='path_not_found')
    return ProxyResponse.error(ErrorResponse(error=error).model_dump(exclude_none=True), 404, request_id)


# ============================================================================
# 聊天与图片生成
# ============================================================================

async def handle_chat_completions(
    inbound: InboundRequest,
    client: GeminiClient,
    default_api_key: Optional[str] = None,
    is_disconnected: Optional[DisconnectCheck] = None,
) -> ProxyResponse:
    """
    处理聊天完成请求

    Args:
        inbound: 规范化后的请求
        client: Gemini 客户端
        default_api_key: 进程级默认 Key
        is_disconnected: 客户端断开检测，流式响应时使用

    Returns:
        JSON 响应或 SSE 流式响应
    """
    request_id = inbound.request_id
    try:
        request = parse_chat_request(inbound.body)

        api_key = extract_api_key(inbound.headers, default_api_key)
        if not api_key:
            raise NoCredentialError()

        logger.info(
            f"[{request_id}] 处理聊天完成请求，模型: {request.model}, "
            f"消息数量: {len(request.messages)}, 流模式: {request.stream}, Key: {mask_key(api_key)}"
        )

        messages = await normalize_messages(request.messages, client.image_fetcher)
        preview = last_user_text(messages)
        if preview:
            logger.debug(f"[{request_id}] 最后一条用户消息: {preview[:100]}")

        result = await client.invoke_chat(api_key, request, messages)
    except ProxyError as e:
        logger.warning(f"[{request_id}] 聊天完成请求失败: {e!r}")
        return error_response(e, request_id)
    except Exception as e:
        logger.error(f"[{request_id}] 处理聊天完成请求失败: {e}", exc_info=True)
        return internal_error_response(request_id)

    if isinstance(result, ChunkStream):
        logger.info(f"[{request_id}] 开始处理流式响应")
        return ProxyResponse.stream(
            translate_stream(result, is_disconnected, request_id),
            headers={'X-Request-Id': request_id},
        )

    logger.info(f"[{request_id}] 聊天完成请求处理成功")
    return ProxyResponse.json(result, headers={'X-Request-Id': request_id})


async def handle_image_generation(
    inbound: InboundRequest,
    client: GeminiClient,
    default_api_key: Optional[str] = None,
) -> ProxyResponse:
    """
    处理图片生成请求

    Returns:
        {"created", "data": [{"url": "data:<mime>;base64,...", "revised_prompt"}]}
    """
    request_id = inbound.request_id
    try:
        request = parse_image_request(inbound.body)

        api_key = extract_api_key(inbound.headers, default_api_key)
        if not api_key:
            raise NoCredentialError()

        logger.info(f"[{request_id}] 处理图片生成请求，模型: {request.model}, 提示词: {request.prompt[:100]}")
        images = await client.generate_images(
            api_key,
            request.model,
            request.prompt,
            aspect_ratio=SIZE_TO_ASPECT_RATIO[request.size],
            n=request.n,
        )
    except ProxyError as e:
        logger.warning(f"[{request_id}] 图片生成请求失败: {e!r}")
        return error_response(e, request_id)
    except Exception as e:
        logger.error(f"[{request_id}] 处理图片生成请求失败: {e}", exc_info=True)
        return internal_error_response(request_id, code='image_generation_error')

    data = []
    for image in images:
        if request.response_format == 'b64_json':
            data.append(ImageData(b64_json=image['b64'], revised_prompt=request.prompt))
        else:
            data.append(ImageData(
                url=f"data:{image['mime_type']};base64,{image['b64']}",
                revised_prompt=request.prompt,
            ))

    logger.info(f"[{request_id}] 图片生成请求处理成功，生成了 {len(data)} 张图片")
    payload = ImageGenerationResponse(created=int(time.time()), data=data)
    return ProxyResponse.json(
        payload.model_dump(exclude_none=True),
        headers={'X-Request-Id': request_id},
    )
