"""
上游流式分块序列

ChunkStream 是单生产者、单消费者的惰性拉取序列：
- 只能迭代一次，重复迭代抛出 RuntimeError
- aclose() 是取消钩子，客户端断开时调用以停止读取上游
"""
import json
from abc import ABC, abstractmethod
from typing import Any, AsyncIterator, Dict, Iterable

import httpx

from gemini_proxy.exceptions import UpstreamConnectionError, UpstreamError, upstream_error_message
from gemini_proxy.utils.logger import get_logger

logger = get_logger(__name__)


class ChunkStream(ABC):
    """上游分块序列基类"""

    def __init__(self):
        self._consumed = False

    def __aiter__(self) -> AsyncIterator[Dict[str, Any]]:
        if self._consumed:
            raise RuntimeError("ChunkStream 只能消费一次")
        self._consumed = True
        return self._iterate()

    @abstractmethod
    def _iterate(self) -> AsyncIterator[Dict[str, Any]]:
        """逐个产出上游分块"""

    async def aclose(self) -> None:
        """释放上游资源，可重复调用"""


class StaticChunkStream(ChunkStream):
    """由已知分块构成的序列，用于原生接口一次性结果的流式包装"""

    def __init__(self, chunks: Iterable[Dict[str, Any]]):
        super().__init__()
        self._chunks = list(chunks)

    async def _iterate(self) -> AsyncIterator[Dict[str, Any]]:
        for chunk in self._chunks:
            yield chunk


class SSEChunkStream(ChunkStream):
    """
    解析上游 SSE 响应的序列

    每个 data: 行解析为一个分块字典；跳过注释行和空行，遇到 [DONE] 结束。
    """

    def __init__(self, response: httpx.Response):
        super().__init__()
        self._response = response
        self.chunk_count = 0

    async def _iterate(self) -> AsyncIterator[Dict[str, Any]]:
        try:
            async for line in self._response.aiter_lines():
                # 跳过注释行、空行和 event:/id: 等非数据行
                if not line or not line.startswith('data:'):
                    continue

                data = line[len('data:'):].strip()
                if not data:
                    continue
                if data == '[DONE]':
                    break

                try:
                    chunk = json.loads(data)
                except json.JSONDecodeError:
                    logger.warning(f"跳过无效的 JSON 行: {data[:100]}")
                    continue

                if isinstance(chunk, dict) and 'error' in chunk and 'choices' not in chunk:
                    raise UpstreamError(
                        f"Gemini API 流式响应错误: {upstream_error_message(chunk, data[:200])}"
                    )

                self.chunk_count += 1
                if self.chunk_count == 1:
                    logger.debug("✅ 收到第一个数据块")
                yield chunk

            logger.debug(f"✅ 上游流式响应接收完成，共 {self.chunk_count} 个数据块")
        except httpx.HTTPError as e:
            raise UpstreamConnectionError(f"上游流式响应中断: {e}") from e
        finally:
            await self.aclose()

    async def aclose(self) -> None:
        if not self._response.is_closed:
            await self._response.aclose()
