"""
FastAPI 应用主入口
"""
import logging
import time
from contextlib import asynccontextmanager
from typing import Optional

import httpx
import uvicorn
from fastapi import FastAPI, Request
from starlette.exceptions import HTTPException as StarletteHTTPException

from gemini_proxy import __version__
from gemini_proxy.api.dependencies import to_response
from gemini_proxy.api.v1 import bare_router, router as v1_router
from gemini_proxy.config import Settings, settings as default_settings
from gemini_proxy.models.http import ProxyResponse, new_request_id
from gemini_proxy.models.registry import ALL_MODELS
from gemini_proxy.models.schemas import ErrorDetail, ErrorResponse
from gemini_proxy.routing import normalize_path
from gemini_proxy.services.credentials import mask_key
from gemini_proxy.services.gemini_client import build_gemini_client
from gemini_proxy.services.proxy_service import (
    handle_health,
    handle_not_found,
    handle_preflight,
)
from gemini_proxy.utils.http_client import build_async_client
from gemini_proxy.utils.logger import configure_root_logger, get_logger, parse_log_level

logger = get_logger(__name__)
# 定义一些颜色代码
CYAN = "\033[36m"
GREEN = "\033[32m"
RESET = "\033[0m"


def _banner(settings: Settings) -> str:
    return f"""{GREEN}
Gemini Proxy - OpenAI 兼容的 Gemini API 代理
--------------------------------------------------
版本           : {__version__}
OpenAI 兼容端点 : {settings.gemini_openai_base_url}
原生端点        : {settings.gemini_native_base_url}
默认 API Key    : {mask_key(settings.gemini_api_key) if settings.gemini_api_key else '未配置'}
可用模型数量    : {len(ALL_MODELS)}
日志级别        : {settings.log_level}{RESET}"""


def create_app(
    settings: Optional[Settings] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> FastAPI:
    """
    创建 FastAPI 应用

    Args:
        settings: 应用配置，默认使用全局配置
        transport: 上游 HTTP transport，测试时传入 httpx.MockTransport

    Returns:
        FastAPI 应用实例
    """
    settings = settings or default_settings

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """
        应用生命周期管理

        - 启动时创建共享的 AsyncClient 和 GeminiClient
        - 关闭时释放连接池
        """
        http_client = build_async_client(settings, transport=transport)
        app.state.settings = settings
        app.state.http_client = http_client
        app.state.gemini_client = build_gemini_client(settings, http_client)

        print(f"{GREEN}{'=' * 50}{RESET}")
        print(f"{GREEN}🚀Gemini Proxy 启动成功{RESET}")
        print(_banner(settings))
        print(f"{GREEN}{'=' * 50}{RESET}")
        if not settings.gemini_api_key:
            logger.warning("⚠️ 未配置 GEMINI_API_KEY，请求必须携带 Authorization: Bearer <key>")

        yield

        logger.info("🛑 正在关闭应用...")
        await http_client.aclose()
        logger.info("✅ 异步HTTP客户端已关闭")
        logger.info("✅ 应用关闭完成")

    # 末尾斜杠在中间件里统一去掉，不做 307 重定向
    app = FastAPI(
        title="Gemini Proxy",
        version=__version__,
        lifespan=lifespan,
        redirect_slashes=False,
    )

    @app.middleware("http")
    async def request_context(request: Request, call_next):
        """分配请求 ID、处理 CORS 预检并记录访问日志"""
        request_id = new_request_id()
        request.state.request_id = request_id
        request.scope["path"] = normalize_path(request.scope["path"])
        start = time.perf_counter()

        if request.method == "OPTIONS":
            response = to_response(handle_preflight())
        else:
            response = await call_next(request)

        response.headers.setdefault("Access-Control-Allow-Origin", "*")
        response.headers.setdefault("X-Request-Id", request_id)
        elapsed = (time.perf_counter() - start) * 1000
        logger.info(
            f"{CYAN}[{request_id}]{RESET} {request.method} {request.url.path} "
            f"-> {response.status_code} ({elapsed:.1f}ms)"
        )
        return response

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        # 未注册的路径和不支持的方法都按 404 返回
        if exc.status_code in (404, 405):
            request_id = getattr(request.state, "request_id", "")
            return to_response(handle_not_found(request.method, request.url.path, request_id))
        return to_response(_plain_error(exc))

    # 注册 API 路由
    app.include_router(v1_router)
    app.include_router(bare_router)

    @app.get("/")
    @app.get("/health")
    async def health():
        """健康检查端点"""
        return to_response(handle_health())

    return app


def _plain_error(exc: StarletteHTTPException) -> ProxyResponse:
    error = ErrorDetail(message=str(exc.detail), type='http_error', code=str(exc.status_code))
    return ProxyResponse.json(
        ErrorResponse(error=error).model_dump(exclude_none=True),
        status_code=exc.status_code,
    )


configure_root_logger(level=default_settings.log_level, use_color=True)

app = create_app()


def main():
    """命令行入口：gemini-proxy"""
    level = parse_log_level(default_settings.log_level)
    uvicorn.run(
        app,
        host=default_settings.host,
        port=default_settings.port,
        log_level=min(level, logging.CRITICAL),
    )


if __name__ == "__main__":
    main()
