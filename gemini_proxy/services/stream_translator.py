"""
流式响应转换

把上游分块序列转换为 OpenAI 客户端可读的 SSE 字节流：

    STREAMING  -- 上游序列正常结束 -->  FINALIZING  -->  DONE

- STREAMING：每个上游分块原样序列化为一帧 data: <json>
- FINALIZING：追加一个 finish_reason=stop 的结束分块和 data: [DONE]
- 上游中途出错时直接向上抛出，不补发结束帧，客户端据此判断响应不完整
"""
import enum
import json
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, Iterable, Optional, Union

from gemini_proxy.services.chunk_stream import ChunkStream
from gemini_proxy.utils.logger import get_logger

logger = get_logger(__name__)

DONE_FRAME = b'data: [DONE]\n\n'

# 结束分块的固定结构
FINAL_CHUNK: Dict[str, Any] = {
    'choices': [{
        'delta': {},
        'finish_reason': 'stop',
    }]
}

DisconnectCheck = Callable[[], Awaitable[bool]]


class StreamState(enum.Enum):
    STREAMING = 'streaming'
    FINALIZING = 'finalizing'
    DONE = 'done'


def format_sse(data: Any) -> bytes:
    """格式化为一帧 SSE 数据"""
    return f"data: {json.dumps(data, ensure_ascii=False)}\n\n".encode('utf-8')


class StreamTranslator:
    """
    单次使用的流式转换器

    每次只从上游拉取一个分块，下游发送完成后才拉取下一个，
    因此下游的背压会自然传递到上游。
    """

    def __init__(
        self,
        chunks: ChunkStream,
        is_disconnected: Optional[DisconnectCheck] = None,
        request_id: str = '',
    ):
        self.chunks = chunks
        self.is_disconnected = is_disconnected
        self.request_id = request_id
        self.state = StreamState.STREAMING
        self.chunk_count = 0

    async def _client_gone(self) -> bool:
        if self.is_disconnected is None:
            return False
        return await self.is_disconnected()

    async def frames(self) -> AsyncIterator[bytes]:
        """生成 SSE 帧"""
        iterator = self.chunks.__aiter__()
        try:
            while self.state is StreamState.STREAMING:
                if await self._client_gone():
                    logger.warning(f"[{self.request_id}] 客户端已断开，停止读取上游 ({self.chunk_count} 个数据块)")
                    self.state = StreamState.DONE
                    return

                try:
                    chunk = await iterator.__anext__()
                except StopAsyncIteration:
                    self.state = StreamState.FINALIZING
                    break
                except Exception as e:
                    # 已发出的帧无法撤回，只能中断连接
                    logger.error(f"[{self.request_id}] 流式响应中断: {e}", exc_info=True)
                    self.state = StreamState.DONE
                    raise

                self.chunk_count += 1
                logger.debug(f"[{self.request_id}] 收到流式数据块 {self.chunk_count}")
                yield format_sse(chunk)

            yield format_sse(FINAL_CHUNK)
            yield DONE_FRAME
            self.state = StreamState.DONE
            logger.info(f"[{self.request_id}] 流式响应处理完成，共 {self.chunk_count} 个数据块")
        finally:
            aclose = getattr(iterator, 'aclose', None)
            if aclose is not None:
                await aclose()
            await self.chunks.aclose()


def translate_stream(
    chunks: ChunkStream,
    is_disconnected: Optional[DisconnectCheck] = None,
    request_id: str = '',
) -> AsyncIterator[bytes]:
    """
    把上游分块序列转换为 SSE 字节流

    Args:
        chunks: 上游分块序列
        is_disconnected: 返回客户端是否已断开的协程函数
        request_id: 请求 ID，用于日志

    Returns:
        SSE 帧的异步迭代器，N 个上游分块对应 N+2 帧
    """
    return StreamTranslator(chunks, is_disconnected, request_id).frames()


async def collect_stream(frames: Union[AsyncIterator[bytes], Iterable[bytes]]) -> str:
    """把 SSE 帧拼接为字符串，用于不支持流式输出的运行环境"""
    buffer = bytearray()
    if hasattr(frames, '__aiter__'):
        async for frame in frames:
            buffer.extend(frame)
    else:
        for frame in frames:
            buffer.extend(frame)
    return buffer.decode('utf-8')
