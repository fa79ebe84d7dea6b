"""
应用配置
使用 pydantic-settings 从环境变量或 .env 文件中读取配置
"""
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """应用配置类"""

    model_config = SettingsConfigDict(
        env_file='.env',
        env_file_encoding='utf-8',
        case_sensitive=False,
        extra='ignore',  # 忽略未定义的字段
    )

    # 进程级默认 Gemini API Key，请求未携带 Authorization 时使用
    gemini_api_key: str = Field(
        default='',
        alias='GEMINI_API_KEY',
        description='默认 Gemini API Key'
    )

    # Gemini OpenAI 兼容端点
    gemini_openai_base_url: str = Field(
        default='https://generativelanguage.googleapis.com/v1beta/openai',
        alias='GEMINI_OPENAI_BASE_URL',
        description='Gemini OpenAI 兼容接口基础 URL'
    )

    # Gemini 原生端点（多模态、图片生成）
    gemini_native_base_url: str = Field(
        default='https://generativelanguage.googleapis.com/v1beta',
        alias='GEMINI_NATIVE_BASE_URL',
        description='Gemini 原生接口基础 URL'
    )

    # 超时配置（秒）
    upstream_timeout: float = Field(
        default=30.0,
        alias='UPSTREAM_TIMEOUT',
        description='非流式上游请求超时'
    )
    stream_timeout: float = Field(
        default=180.0,
        alias='STREAM_TIMEOUT',
        description='流式上游请求单次读取超时'
    )
    connect_timeout: float = Field(
        default=5.0,
        alias='CONNECT_TIMEOUT',
        description='上游连接超时'
    )
    image_fetch_timeout: float = Field(
        default=30.0,
        alias='IMAGE_FETCH_TIMEOUT',
        description='远程图片下载超时'
    )

    # 独立运行时的监听地址
    host: str = Field(default='0.0.0.0', alias='HOST')
    port: int = Field(default=8080, alias='PORT')

    log_level: str = Field(
        default='INFO',
        alias='LOG_LEVEL',
        description='日志级别 (DEBUG, INFO, WARNING, ERROR, CRITICAL, NONE)'
    )

    @field_validator('gemini_openai_base_url', 'gemini_native_base_url', mode='after')
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        """统一去掉末尾的 /，拼接路径时不会出现双斜杠"""
        return v.rstrip('/')

    @field_validator('log_level', mode='before')
    @classmethod
    def normalize_log_level(cls, v):
        if v is None:
            return 'INFO'
        return str(v).strip().upper() or 'INFO'


# 创建全局配置实例
settings = Settings()

# 导出常用的配置项（大写）
GEMINI_API_KEY = settings.gemini_api_key
GEMINI_OPENAI_BASE_URL = settings.gemini_openai_base_url
GEMINI_NATIVE_BASE_URL = settings.gemini_native_base_url
LOG_LEVEL = settings.log_level

__all__ = [
    'Settings',
    'settings',
    'GEMINI_API_KEY',
    'GEMINI_OPENAI_BASE_URL',
    'GEMINI_NATIVE_BASE_URL',
    'LOG_LEVEL',
]
