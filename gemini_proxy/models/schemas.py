"""
Pydantic 数据模型定义
"""
from typing import Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationInfo, field_validator

from gemini_proxy.models.registry import DEFAULT_CHAT_MODEL, DEFAULT_IMAGE_MODEL


class ChatMessage(BaseModel):
    """聊天消息模型"""
    model_config = ConfigDict(extra='allow')

    role: Literal['user', 'assistant', 'system', 'tool']
    # 支持文本或多模态内容（文本+图片），assistant 发起工具调用时可以为空
    content: Union[str, List[Dict[str, Any]], None] = None
    name: Optional[str] = None
    tool_calls: Optional[List[Dict[str, Any]]] = None
    tool_call_id: Optional[str] = None


class ChatCompletionRequest(BaseModel):
    """聊天完成请求模型"""
    model_config = ConfigDict(extra='ignore')

    model: str = DEFAULT_CHAT_MODEL
    messages: List[ChatMessage] = Field(default_factory=list)
    temperature: float = 0.7
    max_tokens: int = 8000
    stream: bool = False
    tools: Optional[List[Dict[str, Any]]] = None
    tool_choice: Optional[Any] = None

    @field_validator('temperature', 'max_tokens', 'stream', mode='before')
    @classmethod
    def null_as_default(cls, value: Any, info: ValidationInfo) -> Any:
        """显式传入 null 时使用默认值"""
        if value is None:
            return cls.model_fields[info.field_name].default
        return value


class ImageGenerationRequest(BaseModel):
    """图片生成请求模型"""
    model_config = ConfigDict(extra='ignore')

    model: str = DEFAULT_IMAGE_MODEL
    prompt: str = ''
    size: str = '1024x1024'
    n: int = 1
    response_format: Optional[str] = None


class ModelInfo(BaseModel):
    """模型信息模型"""
    id: str
    object: str = 'model'
    created: int
    owned_by: str = 'google'
    permission: List[Any] = Field(default_factory=list)
    root: Optional[str] = None
    parent: Optional[str] = None


class ModelsResponse(BaseModel):
    """模型列表响应模型"""
    object: str = 'list'
    data: List[ModelInfo]


class ImageData(BaseModel):
    """单张图片，url 为 data URL；response_format=b64_json 时改为 b64_json"""
    url: Optional[str] = None
    b64_json: Optional[str] = None
    revised_prompt: Optional[str] = None


class ImageGenerationResponse(BaseModel):
    created: int
    data: List[ImageData]


class HealthResponse(BaseModel):
    """健康检查响应模型"""
    status: str = 'ok'
    timestamp: str
    message: str
    service: str
    version: str
    models: int
    usage: str
    features: Dict[str, bool]


class ErrorDetail(BaseModel):
    message: str
    type: str
    code: Optional[str] = None
    request_id: Optional[str] = None


class ErrorResponse(BaseModel):
    error: ErrorDetail
