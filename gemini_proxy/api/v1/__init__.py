"""
API v1 路由模块

同一组路由挂载两次：/v1 前缀和不带前缀，兼容不同的 OpenAI 客户端。
"""
from fastapi import APIRouter

from . import chat, images, models

router = APIRouter(prefix="/v1")
bare_router = APIRouter()

for _sub_router in (chat.router, images.router, models.router):
    router.include_router(_sub_router)
    bare_router.include_router(_sub_router, include_in_schema=False)
